"""Tests for centralized logging configuration and settings validation."""

import logging
from decimal import Decimal

import pytest
from pydantic import ValidationError

from config import Settings
from logging_config import setup_logging


class TestSetupLogging:
    """Tests for setup_logging()."""

    @pytest.mark.parametrize(("level", "expected"), [("INFO", logging.INFO), ("DEBUG", logging.DEBUG)])
    def test_root_logger_level_from_settings(self, monkeypatch, level, expected):
        monkeypatch.setenv("LOG_LEVEL", level)
        monkeypatch.setattr("logging_config.settings", Settings())

        setup_logging()

        assert logging.getLogger().level == expected

    def test_third_party_loggers_suppressed(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.setattr("logging_config.settings", Settings())

        setup_logging()

        for name in ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "uvicorn.access"):
            assert logging.getLogger(name).level == logging.WARNING, (
                f"{name} logger not suppressed"
            )


class TestSettings:
    def test_invalid_log_level_rejected(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "VERBOS")
        with pytest.raises(ValidationError, match="LOG_LEVEL"):
            Settings()

    def test_log_level_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        assert Settings().LOG_LEVEL == "DEBUG"

    def test_tracking_method_normalized(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_TRACKING_METHOD", " lifo")
        assert Settings().DEFAULT_TRACKING_METHOD == "LIFO"

    def test_unknown_tracking_method_rejected(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_TRACKING_METHOD", "HIFO")
        with pytest.raises(ValidationError, match="DEFAULT_TRACKING_METHOD"):
            Settings()

    def test_tolerances(self, monkeypatch):
        monkeypatch.setenv("QUANTITY_TOLERANCE", "0.01")
        assert Settings().QUANTITY_TOLERANCE == Decimal("0.01")

        monkeypatch.setenv("QUANTITY_TOLERANCE", "-1")
        with pytest.raises(ValidationError, match="non-negative"):
            Settings()


class TestLedgerLogLevel:
    def test_services_logger_overridden(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        monkeypatch.setenv("LEDGER_LOG_LEVEL", "debug")
        monkeypatch.setattr("logging_config.settings", Settings())

        setup_logging()

        assert logging.getLogger().level == logging.WARNING
        assert logging.getLogger("services").level == logging.DEBUG
        assert logging.getLogger("services.lot_ledger_service").isEnabledFor(logging.DEBUG)

    def test_services_logger_follows_root_when_unset(self, monkeypatch):
        monkeypatch.delenv("LEDGER_LOG_LEVEL", raising=False)
        monkeypatch.setenv("LOG_LEVEL", "INFO")
        monkeypatch.setattr("logging_config.settings", Settings())

        setup_logging()

        assert logging.getLogger("services").level == logging.NOTSET
        assert not logging.getLogger("services.lot_ledger_service").isEnabledFor(logging.DEBUG)
