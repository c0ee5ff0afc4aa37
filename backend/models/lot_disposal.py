"""LotDisposal model - one lot's share of a matched disposal."""

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class LotDisposal(Base):
    """Quantity and allocated cost removed from one lot by a disposal.

    A disposal matched across several lots writes one row per lot; the rows
    share a disposal_group_id. ``proceeds`` is null when no price was given.
    """

    __tablename__ = "lot_disposals"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_lot_disposal_quantity_non_negative"),
        CheckConstraint("cost_basis_removed >= 0", name="ck_lot_disposal_cost_basis_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    holding_lot_id = Column(String(36), ForeignKey("holding_lots.id"), nullable=False, index=True)
    disposal_date = Column(Date, nullable=True)
    quantity = Column(Numeric(18, 8), nullable=False)
    cost_basis_removed = Column(Numeric(18, 6), nullable=False)
    proceeds = Column(Numeric(18, 6), nullable=True)
    method = Column(String, nullable=False)  # "FIFO" / "LIFO" / "SPECIFIC_ID"
    disposal_group_id = Column(String(36), nullable=True, index=True)
    sequence = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    holding_lot = relationship("HoldingLot", back_populates="disposals")
