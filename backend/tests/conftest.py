"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from database import Base, get_db
from main import app
from services.lot_store import SqlLotStore
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import memory_store  # noqa: F401


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine with the lot and preference tables."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(name="db")
def db_fixture(engine):
    """Session bound to the in-memory engine."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="sql_store")
def sql_store_fixture(db: Session) -> SqlLotStore:
    """Lot store persisting through the test session."""
    return SqlLotStore(db)


@pytest.fixture(name="client")
def client_fixture(db):
    """Test client whose requests share the test session."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
