"""API route handlers."""
from . import lots, preferences, reconciliation

__all__ = ["lots", "preferences", "reconciliation"]
