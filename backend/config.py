"""Application configuration using pydantic-settings."""

from decimal import Decimal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

TRACKING_METHODS = ("FIFO", "LIFO", "SPECIFIC_ID")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database (lot store and preferences)
    DATABASE_URL: str = "sqlite:///./lots.db"

    # Lot matching
    DEFAULT_TRACKING_METHOD: str = "FIFO"

    # Reconciliation tolerances
    QUANTITY_TOLERANCE: Decimal = Decimal("0.001")
    MARKET_VALUE_TOLERANCE: Decimal = Decimal("1")
    TICKER_CHANGE_TOLERANCE: Decimal = Decimal("0.01")

    @field_validator("LOG_LEVEL", "LEDGER_LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | None) -> str | None:
        """Validate and normalize a level name to an uppercase Python logging level."""
        if v is None or v == "":
            return None
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"log level must be one of {valid}, got {v!r}")
        return v.upper()

    @field_validator("DEFAULT_TRACKING_METHOD", mode="before")
    @classmethod
    def validate_tracking_method(cls, v: str) -> str:
        """Normalize DEFAULT_TRACKING_METHOD and reject unknown methods."""
        normalized = str(v).strip().upper()
        if normalized not in TRACKING_METHODS:
            raise ValueError(
                f"DEFAULT_TRACKING_METHOD must be one of {TRACKING_METHODS}, got {v!r}"
            )
        return normalized

    @field_validator(
        "QUANTITY_TOLERANCE", "MARKET_VALUE_TOLERANCE", "TICKER_CHANGE_TOLERANCE"
    )
    @classmethod
    def validate_tolerance(cls, v: Decimal) -> Decimal:
        """Tolerances must be non-negative."""
        if v < 0:
            raise ValueError("tolerances must be non-negative")
        return v

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LEDGER_LOG_LEVEL: str | None = None


settings = Settings()
