"""Shared column defaults for ORM models and ledger records."""

import uuid
from datetime import datetime, timezone


def generate_uuid() -> str:
    """Random id for lots, disposal groups and interpolated transactions."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Timezone-aware creation/update timestamp."""
    return datetime.now(timezone.utc)
