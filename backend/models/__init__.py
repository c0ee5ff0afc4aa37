"""SQLAlchemy ORM models."""

from .holding_lot import HoldingLot
from .lot_adjustment import LotAdjustment
from .lot_disposal import LotDisposal
from .user_preference import UserPreference
from .utils import generate_uuid

__all__ = ["HoldingLot", "LotAdjustment", "LotDisposal", "UserPreference", "generate_uuid"]
