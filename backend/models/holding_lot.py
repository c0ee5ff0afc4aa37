"""HoldingLot model - persistent record of one tax lot."""

from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Column, Date, DateTime, Integer, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class HoldingLot(Base):
    """A lot representing an acquisition of a symbol in an account.

    Rows for one account+symbol pair share a ``store_key`` and are loaded
    and replaced together by the SQL lot store. ``sequence`` preserves the
    in-ledger order used to break FIFO/LIFO ties.
    """

    __tablename__ = "holding_lots"
    __table_args__ = (
        CheckConstraint("cost_basis >= 0", name="ck_holding_lot_cost_basis_non_negative"),
        CheckConstraint("original_quantity > 0", name="ck_holding_lot_original_quantity_positive"),
        CheckConstraint("remaining_quantity >= 0", name="ck_holding_lot_remaining_quantity_non_negative"),
        CheckConstraint(
            "remaining_quantity <= original_quantity",
            name="ck_holding_lot_remaining_within_original",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    store_key = Column(String, nullable=False, index=True)
    account = Column(String, nullable=False, index=True)
    symbol = Column(String, nullable=False)
    acquisition_date = Column(Date, nullable=True)
    original_quantity = Column(Numeric(18, 8), nullable=False)
    remaining_quantity = Column(Numeric(18, 8), nullable=False)
    cost_basis = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    status = Column(String, nullable=False, default="OPEN", index=True)  # "OPEN" / "CLOSED"
    is_transaction_derived = Column(Boolean, nullable=False, default=False)
    source_transaction_id = Column(String, nullable=True)
    sequence = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(
        DateTime,
        default=utc_now,
        onupdate=utc_now,
    )

    # Relationships
    disposals = relationship(
        "LotDisposal",
        back_populates="holding_lot",
        cascade="all, delete-orphan",
        order_by="LotDisposal.sequence",
    )
    adjustments = relationship(
        "LotAdjustment",
        back_populates="holding_lot",
        cascade="all, delete-orphan",
        order_by="LotAdjustment.sequence",
    )
