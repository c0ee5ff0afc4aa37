"""Centralized logging configuration."""

import logging

from config import settings

# Loggers that are chatty at DEBUG but never carry ledger information
NOISY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "httpx",
    "httpcore",
    "uvicorn.access",
)


def setup_logging() -> None:
    """Configure logging for the application.

    The root level comes from settings.LOG_LEVEL. When
    settings.LEDGER_LOG_LEVEL is set it overrides the level of the
    ``services`` loggers only, so lot matching and reconciliation can be
    traced without turning on DEBUG everywhere.
    """
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
        datefmt="%H:%M:%S",
        level=getattr(logging, settings.LOG_LEVEL),
        force=True,
    )

    services_logger = logging.getLogger("services")
    if settings.LEDGER_LOG_LEVEL:
        services_logger.setLevel(getattr(logging, settings.LEDGER_LOG_LEVEL))
    else:
        services_logger.setLevel(logging.NOTSET)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
