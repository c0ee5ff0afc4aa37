"""Shared types for the tax-lot engine.

Transactions, lots and snapshot positions are plain dataclasses so the
engine stays independent of the ORM and the HTTP schemas. The Lot Store
protocol is the only persistence seam the engine knows about.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol

from models.utils import generate_uuid, utc_now

ZERO = Decimal("0")

# Share epsilon for lot closing, mismatch detection and invariant checks.
QUANTITY_TOLERANCE = Decimal("0.001")


class TransactionCategory(str, Enum):
    """Effect a transaction has on holdings."""

    ACQUISITION = "ACQUISITION"
    DISPOSITION = "DISPOSITION"
    CORPORATE_ACTION = "CORPORATE_ACTION"


class CorporateActionKind(str, Enum):
    """Sub-variant carried by CORPORATE_ACTION transactions."""

    STOCK_SPLIT = "Stock Split"
    REVERSE_SPLIT = "Reverse Split"


class AdjustmentKind(str, Enum):
    """Share-count or identity change recorded on a lot."""

    STOCK_SPLIT = "Stock Split"
    REVERSE_SPLIT = "Reverse Split"
    TICKER_CHANGE = "Ticker Change"


class TrackingMethod(str, Enum):
    """Rule for choosing which open lots absorb a disposal."""

    FIFO = "FIFO"
    LIFO = "LIFO"
    SPECIFIC_ID = "SPECIFIC_ID"


class Confidence(str, Enum):
    """Confidence attached to advisory output."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class LotStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class Transaction:
    """A single observed transaction for one symbol.

    ``quantity`` is always a positive share count; the category carries
    the direction. For corporate actions ``quantity`` is the post-event
    total share count and ``corporate_action`` names the event.
    """

    trade_date: date | None
    symbol: str | None
    category: TransactionCategory
    action: str
    quantity: Decimal
    price: Decimal = ZERO
    amount: Decimal = ZERO
    corporate_action: CorporateActionKind | None = None
    id: str | None = None
    is_interpolated: bool = False

    def __post_init__(self):
        if self.category == TransactionCategory.CORPORATE_ACTION:
            if self.corporate_action is None:
                raise ValueError(
                    "corporate action transactions must name a CorporateActionKind"
                )
        elif self.corporate_action is not None:
            raise ValueError(
                f"{self.category.value} transactions cannot carry a corporate action"
            )

    @property
    def is_malformed(self) -> bool:
        """Undated or symbol-less rows are skipped by every replay."""
        return self.trade_date is None or not (self.symbol or "").strip()


@dataclass(frozen=True)
class LotAdjustment:
    """A split rescale or symbol change recorded on a lot.

    Ticker changes carry a ratio of 1.
    """

    kind: AdjustmentKind
    effective_date: date | None
    ratio: Decimal
    description: str


@dataclass(frozen=True)
class LotDisposal:
    """The part of one disposal absorbed by a single lot."""

    disposal_date: date | None
    quantity: Decimal
    cost_basis_removed: Decimal
    method: TrackingMethod
    proceeds: Decimal | None = None
    disposal_group_id: str | None = None

    @property
    def realized_gain_loss(self) -> Decimal | None:
        if self.proceeds is None:
            return None
        return self.proceeds - self.cost_basis_removed


@dataclass
class Lot:
    """A discrete acquisition of shares tracked for cost basis.

    ``cost_basis`` is the absolute amount paid at acquisition and is never
    rescaled; the allocated cost of what is still held is derived from
    the remaining/original quantity ratio.
    """

    account: str
    symbol: str
    acquisition_date: date | None
    original_quantity: Decimal
    remaining_quantity: Decimal
    cost_basis: Decimal
    id: str = field(default_factory=generate_uuid)
    status: LotStatus = LotStatus.OPEN
    is_transaction_derived: bool = False
    source_transaction_id: str | None = None
    adjustments: list[LotAdjustment] = field(default_factory=list)
    disposals: list[LotDisposal] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_open(self) -> bool:
        return self.status == LotStatus.OPEN

    @property
    def allocated_cost_basis(self) -> Decimal:
        """Cost basis attributable to the remaining shares."""
        if self.original_quantity == 0:
            return ZERO
        return self.cost_basis * (self.remaining_quantity / self.original_quantity)

    @property
    def cost_per_share(self) -> Decimal:
        if self.original_quantity == 0:
            return ZERO
        return self.cost_basis / self.original_quantity


@dataclass(frozen=True)
class SnapshotPosition:
    """An externally supplied position; read-only to the engine."""

    symbol: str
    quantity: Decimal
    market_value: Decimal
    price: Decimal


@dataclass(frozen=True)
class PortfolioSnapshot:
    """A dated set of snapshot positions for one account."""

    snapshot_date: date | None
    positions: tuple[SnapshotPosition, ...] = ()


def lot_store_key(account: str, symbol: str) -> str:
    """Key under which an account+symbol lot set is stored."""
    return f"{account}_{symbol}"


class LotStore(Protocol):
    """Key-value persistence for lot arrays, keyed by ``{account}_{symbol}``.

    The engine calls but does not implement persistence. Callers must
    serialize concurrent writers for the same key.
    """

    def get(self, key: str) -> list[Lot]:
        ...

    def save(self, key: str, lots: list[Lot]) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self) -> list[str]:
        ...
