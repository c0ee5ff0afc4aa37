"""UserPreference model - JSON values keyed by dotted names such as lots.trackingMethod."""

from sqlalchemy import Column, DateTime, String, Text

from database import Base
from models.utils import generate_uuid, utc_now


class UserPreference(Base):
    """One preference; the tracking method is stored here under lots.trackingMethod."""

    __tablename__ = "user_preferences"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    key = Column(String, unique=True, index=True, nullable=False)
    value = Column(Text, nullable=False)  # JSON-serialized
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(
        DateTime,
        default=utc_now,
        onupdate=utc_now,
    )
