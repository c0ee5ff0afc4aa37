"""Pydantic schemas for holdings calculation and reconciliation."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from services.ledger_protocol import (
    Confidence,
    PortfolioSnapshot,
    SnapshotPosition,
    Transaction,
    TransactionCategory,
)
from services.reconciliation_service import DiscrepancyType, Severity, SuggestionType
from services.ticker_change_service import ChangeType
from utils.transaction_actions import build_transaction


class TransactionIn(BaseModel):
    """A broker transaction row; ``action`` is the broker's label (e.g. "Buy")."""

    trade_date: date | None = None
    symbol: str | None = None
    action: str
    quantity: Decimal
    price: Decimal = Decimal("0")
    amount: Decimal = Decimal("0")
    id: str | None = None

    def to_transaction(self) -> Transaction | None:
        """Engine transaction, or None for holdings-neutral labels."""
        return build_transaction(
            self.action,
            self.trade_date,
            self.symbol,
            self.quantity,
            price=self.price,
            amount=self.amount,
            transaction_id=self.id,
        )


def to_transactions(rows: list[TransactionIn]) -> list[Transaction]:
    return [tx for tx in (row.to_transaction() for row in rows) if tx is not None]


class SnapshotPositionIn(BaseModel):
    symbol: str
    quantity: Decimal
    market_value: Decimal = Decimal("0")
    price: Decimal = Decimal("0")

    def to_position(self) -> SnapshotPosition:
        return SnapshotPosition(
            symbol=self.symbol,
            quantity=self.quantity,
            market_value=self.market_value,
            price=self.price,
        )


class SnapshotIn(BaseModel):
    snapshot_date: date | None = None
    positions: list[SnapshotPositionIn] = []

    def to_snapshot(self) -> PortfolioSnapshot:
        return PortfolioSnapshot(
            snapshot_date=self.snapshot_date,
            positions=tuple(p.to_position() for p in self.positions),
        )


class HoldingsRequest(BaseModel):
    transactions: list[TransactionIn]
    target_date: date
    symbol: str | None = None


class CalculatedHoldingsResponse(BaseModel):
    quantity: Decimal
    total_cost_basis: Decimal
    average_cost_per_share: Decimal
    earliest_acquisition_date: date | None = None
    applied_count: int = 0
    skipped_count: int = 0
    warnings: list[str] = []


class DiscrepancyResponse(BaseModel):
    type: DiscrepancyType
    severity: Severity
    calculated: Decimal | None = None
    actual: Decimal | None = None
    difference: Decimal
    description: str
    symbol: str | None = None
    percent_difference: Decimal | None = None
    direction: TransactionCategory | None = None
    estimated_date: date | None = None
    transaction_id: str | None = None
    period_start: date | None = None
    period_end: date | None = None

    model_config = ConfigDict(from_attributes=True)


class ResolutionSuggestionResponse(BaseModel):
    type: SuggestionType
    action: str
    description: str
    priority: Severity

    model_config = ConfigDict(from_attributes=True)


class ReconciliationResultResponse(BaseModel):
    symbol: str | None = None
    has_discrepancies: bool
    discrepancies: list[DiscrepancyResponse]
    resolution_suggestions: list[ResolutionSuggestionResponse]

    model_config = ConfigDict(from_attributes=True)


class PositionReconciliationResponse(BaseModel):
    symbol: str
    calculated: CalculatedHoldingsResponse
    actual: SnapshotPositionIn
    reconciliation: ReconciliationResultResponse
    has_acquisition_date: bool
    earliest_acquisition_date: date | None = None


class ReconciliationSummary(BaseModel):
    total_positions: int
    with_acquisition_dates: int
    with_discrepancies: int


class ReconcileRequest(BaseModel):
    transactions: list[TransactionIn]
    snapshot: SnapshotIn
    as_of: date | None = None
    previous_snapshots: list[SnapshotIn] = []


class ReconcileResponse(BaseModel):
    as_of: date
    results: list[PositionReconciliationResponse]
    summary: ReconciliationSummary
    inconsistencies: list[DiscrepancyResponse] = []
    prioritized: list[DiscrepancyResponse] = []


class InterpolateRequest(BaseModel):
    """A gap to close: calculated quantity against an observed position."""

    symbol: str = Field(min_length=1)
    calculated_quantity: Decimal
    actual: SnapshotPositionIn
    estimated_date: date | None = None
    confidence: Confidence | None = None


class InterpolatedTransactionResponse(BaseModel):
    id: str
    symbol: str
    trade_date: date
    action: str
    category: TransactionCategory
    quantity: Decimal
    price: Decimal
    amount: Decimal
    confidence: Confidence
    description: str
    is_interpolated: bool
    confirmed: bool

    model_config = ConfigDict(from_attributes=True)


class TickerChangesRequest(BaseModel):
    previous: SnapshotIn | None = None
    current: SnapshotIn
    transactions: list[TransactionIn] = []


class PositionChangeResponse(BaseModel):
    symbol: str
    quantity: Decimal
    market_value: Decimal
    change_type: ChangeType
    change_date: date | None = None

    model_config = ConfigDict(from_attributes=True)


class QuantityChangeResponse(BaseModel):
    symbol: str
    previous_quantity: Decimal
    current_quantity: Decimal
    delta: Decimal
    change_type: ChangeType
    change_date: date | None = None

    model_config = ConfigDict(from_attributes=True)


class TickerChangeCandidateResponse(BaseModel):
    old_symbol: str
    new_symbol: str
    quantity: Decimal
    new_quantity: Decimal
    old_market_value: Decimal
    new_market_value: Decimal
    confidence: Confidence
    effective_date: date | None = None

    model_config = ConfigDict(from_attributes=True)


class TickerChangesResponse(BaseModel):
    sold: list[PositionChangeResponse]
    acquired: list[PositionChangeResponse]
    quantity_changes: list[QuantityChangeResponse]
    possible_ticker_changes: list[TickerChangeCandidateResponse]
    missing_transactions: list[DiscrepancyResponse] = []
