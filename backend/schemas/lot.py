"""Pydantic schemas for lot-based cost basis tracking."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from services.ledger_protocol import (
    AdjustmentKind,
    Confidence,
    CorporateActionKind,
    LotStatus,
    TrackingMethod,
    TransactionCategory,
)


class LotCreate(BaseModel):
    """Schema for creating a manual lot."""

    quantity: Decimal = Field(gt=0)
    cost_basis: Decimal = Field(ge=0)
    acquisition_date: date | None = None


class LotAdjustmentResponse(BaseModel):
    kind: AdjustmentKind
    effective_date: date | None = None
    ratio: Decimal
    description: str

    model_config = ConfigDict(from_attributes=True)


class LotDisposalResponse(BaseModel):
    """Schema for one lot's share of a disposal."""

    disposal_date: date | None = None
    quantity: Decimal
    cost_basis_removed: Decimal
    method: TrackingMethod
    proceeds: Decimal | None = None
    realized_gain_loss: Decimal | None = None
    disposal_group_id: str | None = None

    model_config = ConfigDict(from_attributes=True)


class LotResponse(BaseModel):
    """Schema for Lot API response."""

    id: str
    account: str
    symbol: str
    acquisition_date: date | None
    original_quantity: Decimal
    remaining_quantity: Decimal
    cost_basis: Decimal
    status: LotStatus
    is_transaction_derived: bool
    source_transaction_id: str | None = None
    created_at: datetime

    # Derived from the quantities, not stored
    allocated_cost_basis: Decimal
    cost_per_share: Decimal
    adjustments: list[LotAdjustmentResponse] = []
    disposals: list[LotDisposalResponse] = []

    model_config = ConfigDict(from_attributes=True)


class LotSummaryResponse(BaseModel):
    """Aggregated lot data for one account+symbol pair."""

    account: str
    symbol: str
    open_lot_count: int
    closed_lot_count: int
    open_quantity: Decimal
    remaining_cost_basis: Decimal
    weighted_average_cost: Decimal
    realized_gain_loss: Decimal
    unrealized_gain_loss: Decimal | None = None
    earliest_acquisition_date: date | None = None

    model_config = ConfigDict(from_attributes=True)


class LotListResponse(BaseModel):
    lots: list[LotResponse]
    summary: LotSummaryResponse


class LotSelectionRequest(BaseModel):
    """A lot chosen for SPECIFIC_ID matching; omit quantity to take what is needed."""

    lot_id: str
    quantity: Decimal | None = Field(default=None, gt=0)


class DisposeRequest(BaseModel):
    """Schema for disposing shares against stored lots.

    ``method`` falls back to the stored tracking-method preference.
    SPECIFIC_ID requires ``lot_selections``, consumed in the given order.
    """

    quantity: Decimal = Field(gt=0)
    method: TrackingMethod | None = None
    lot_selections: list[LotSelectionRequest] = []
    disposal_date: date | None = None
    price: Decimal | None = Field(default=None, ge=0)
    allow_short: bool = False


class LotMatchResponse(BaseModel):
    lot_id: str
    acquisition_date: date | None = None
    quantity: Decimal
    cost_basis_removed: Decimal
    proceeds: Decimal | None = None
    realized_gain_loss: Decimal | None = None
    closed_lot: bool

    model_config = ConfigDict(from_attributes=True)


class DisposalResponse(BaseModel):
    """Result of a disposal-matching run."""

    requested_quantity: Decimal
    method: TrackingMethod
    matches: list[LotMatchResponse]
    matched_quantity: Decimal
    unmatched_quantity: Decimal
    insufficient: bool
    cost_basis_removed: Decimal
    proceeds: Decimal | None = None
    realized_gain_loss: Decimal | None = None
    disposal_group_id: str | None = None

    model_config = ConfigDict(from_attributes=True)


class CorporateActionRequest(BaseModel):
    """A split or reverse split; ``post_quantity`` is the post-event total."""

    kind: CorporateActionKind
    post_quantity: Decimal = Field(gt=0)
    effective_date: date | None = None


class SplitOutcomeResponse(BaseModel):
    kind: CorporateActionKind
    pre_quantity: Decimal
    post_quantity: Decimal
    ratio: Decimal | None = None
    skipped: bool
    warning: str | None = None

    model_config = ConfigDict(from_attributes=True)


class TickerChangeConfirm(BaseModel):
    """Explicit confirmation of a suggested ticker change."""

    old_symbol: str = Field(min_length=1)
    new_symbol: str = Field(min_length=1)
    effective_date: date | None = None


class InterpolationConfirm(BaseModel):
    """A previously suggested interpolated transaction, confirmed by the user."""

    id: str
    trade_date: date
    category: TransactionCategory
    quantity: Decimal = Field(gt=0)
    price: Decimal = Field(default=Decimal("0"), ge=0)
    confidence: Confidence = Confidence.LOW
    method: TrackingMethod | None = None
    lot_selections: list[LotSelectionRequest] = []
    allow_short: bool = False


class InterpolationConfirmResponse(BaseModel):
    transaction_id: str
    lot: LotResponse | None = None
    disposal: DisposalResponse | None = None


class TrackingMethodUpdate(BaseModel):
    method: TrackingMethod


class TrackingMethodResponse(BaseModel):
    method: TrackingMethod
