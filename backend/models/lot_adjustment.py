"""LotAdjustment model - records a corporate-action rescale of a lot."""

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class LotAdjustment(Base):
    """A split or symbol change applied to a holding lot."""

    __tablename__ = "lot_adjustments"
    __table_args__ = (
        CheckConstraint("ratio > 0", name="ck_lot_adjustment_ratio_positive"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    holding_lot_id = Column(String(36), ForeignKey("holding_lots.id"), nullable=False, index=True)
    kind = Column(String, nullable=False)  # "Stock Split" / "Reverse Split" / "Ticker Change"
    effective_date = Column(Date, nullable=True)
    ratio = Column(Numeric(24, 12), nullable=False)
    description = Column(String, nullable=False, default="")
    sequence = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    holding_lot = relationship("HoldingLot", back_populates="adjustments")
