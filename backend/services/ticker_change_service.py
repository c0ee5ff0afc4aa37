"""Snapshot-to-snapshot change analysis and ticker change detection.

When a symbol disappears from one snapshot and another symbol appears
with (almost) the same quantity, the pair is more likely a rename than a
sale followed by a purchase. Pairs are only ever suggested; lot history
moves to the new symbol solely through ``apply_ticker_change``.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from enum import Enum

from services.exceptions import LedgerError
from services.ledger_protocol import (
    ZERO,
    AdjustmentKind,
    Confidence,
    Lot,
    LotAdjustment,
    LotStore,
    PortfolioSnapshot,
    lot_store_key,
)
from utils.ticker import normalize_symbol

logger = logging.getLogger(__name__)

TICKER_CHANGE_TOLERANCE = Decimal("0.01")

# Market values within this fraction of each other raise pair confidence
MARKET_VALUE_AGREEMENT = Decimal("0.01")


class ChangeType(str, Enum):
    SOLD = "SOLD"
    ACQUIRED = "ACQUIRED"
    QUANTITY_INCREASE = "QUANTITY_INCREASE"
    QUANTITY_DECREASE = "QUANTITY_DECREASE"
    TICKER_CHANGE = "TICKER_CHANGE"


@dataclass(frozen=True)
class PositionChange:
    """A position that appeared or disappeared between two snapshots."""

    symbol: str
    quantity: Decimal
    market_value: Decimal
    change_type: ChangeType
    change_date: date | None = None


@dataclass(frozen=True)
class QuantityChange:
    """A position held in both snapshots whose quantity moved."""

    symbol: str
    previous_quantity: Decimal
    current_quantity: Decimal
    change_date: date | None = None

    @property
    def delta(self) -> Decimal:
        return self.current_quantity - self.previous_quantity

    @property
    def change_type(self) -> ChangeType:
        if self.delta > 0:
            return ChangeType.QUANTITY_INCREASE
        return ChangeType.QUANTITY_DECREASE


@dataclass(frozen=True)
class TickerChangeCandidate:
    """A suggested rename awaiting user confirmation."""

    old_symbol: str
    new_symbol: str
    quantity: Decimal
    new_quantity: Decimal
    old_market_value: Decimal = ZERO
    new_market_value: Decimal = ZERO
    confidence: Confidence = Confidence.MEDIUM
    effective_date: date | None = None


@dataclass(frozen=True)
class SnapshotChanges:
    sold: tuple[PositionChange, ...] = ()
    acquired: tuple[PositionChange, ...] = ()
    quantity_changes: tuple[QuantityChange, ...] = ()
    possible_ticker_changes: tuple[TickerChangeCandidate, ...] = ()
    previous_date: date | None = None
    current_date: date | None = None

    @property
    def has_changes(self) -> bool:
        return bool(
            self.sold or self.acquired or self.quantity_changes or self.possible_ticker_changes
        )


def _index_positions(snapshot: PortfolioSnapshot | None) -> dict[str, tuple[Decimal, Decimal]]:
    """Map normalized symbol -> (quantity, market value).

    Repeated symbols within one snapshot are summed.
    """
    index: dict[str, tuple[Decimal, Decimal]] = {}
    if snapshot is None:
        return index
    for position in snapshot.positions:
        symbol = normalize_symbol(position.symbol)
        if not symbol:
            continue
        quantity, market_value = index.get(symbol, (ZERO, ZERO))
        index[symbol] = (quantity + position.quantity, market_value + position.market_value)
    return index


def _market_values_agree(first: Decimal, second: Decimal) -> bool:
    if first <= 0 or second <= 0:
        return False
    return abs(first - second) <= max(first, second) * MARKET_VALUE_AGREEMENT


def _pair_ticker_changes(
    sold: list[PositionChange],
    acquired: list[PositionChange],
    tolerance: Decimal,
    effective_date: date | None,
) -> list[TickerChangeCandidate]:
    """Pair disappearing and appearing symbols one-to-one, first match wins."""
    candidates = []
    used: set[str] = set()
    for old in sold:
        for new in acquired:
            if new.symbol in used:
                continue
            if abs(old.quantity - new.quantity) >= tolerance:
                continue
            used.add(new.symbol)
            confidence = (
                Confidence.HIGH
                if _market_values_agree(old.market_value, new.market_value)
                else Confidence.MEDIUM
            )
            candidates.append(
                TickerChangeCandidate(
                    old_symbol=old.symbol,
                    new_symbol=new.symbol,
                    quantity=old.quantity,
                    new_quantity=new.quantity,
                    old_market_value=old.market_value,
                    new_market_value=new.market_value,
                    confidence=confidence,
                    effective_date=effective_date,
                )
            )
            logger.info(
                "Possible ticker change: %s -> %s (%s shares, confidence: %s)",
                old.symbol, new.symbol, old.quantity, confidence.value,
            )
            break
    return candidates


def analyze_snapshot_changes(
    previous: PortfolioSnapshot | None,
    current: PortfolioSnapshot,
    *,
    as_of: date | None = None,
    tolerance: Decimal = TICKER_CHANGE_TOLERANCE,
) -> SnapshotChanges:
    """Classify what changed between two ordered snapshots.

    Symbols are compared after normalization. Symbols paired as possible
    ticker changes are left out of ``sold``/``acquired``. Neither snapshot
    is modified.

    Args:
        previous: Earlier snapshot, or None when there is nothing to
            compare against (no changes are reported).
        current: Later snapshot.
        as_of: Date attached to the changes; defaults to the current
            snapshot's date.
        tolerance: Share tolerance for pairing and for quantity changes.
    """
    change_date = as_of or current.snapshot_date
    if previous is None:
        return SnapshotChanges(current_date=current.snapshot_date)

    before = _index_positions(previous)
    after = _index_positions(current)

    sold = [
        PositionChange(symbol, quantity, market_value, ChangeType.SOLD, change_date)
        for symbol, (quantity, market_value) in before.items()
        if symbol not in after
    ]
    acquired = [
        PositionChange(symbol, quantity, market_value, ChangeType.ACQUIRED, change_date)
        for symbol, (quantity, market_value) in after.items()
        if symbol not in before
    ]
    quantity_changes = [
        QuantityChange(symbol, before[symbol][0], quantity, change_date)
        for symbol, (quantity, _) in after.items()
        if symbol in before and abs(quantity - before[symbol][0]) > tolerance
    ]

    ticker_changes = _pair_ticker_changes(sold, acquired, tolerance, change_date)
    renamed_from = {c.old_symbol for c in ticker_changes}
    renamed_to = {c.new_symbol for c in ticker_changes}

    return SnapshotChanges(
        sold=tuple(c for c in sold if c.symbol not in renamed_from),
        acquired=tuple(c for c in acquired if c.symbol not in renamed_to),
        quantity_changes=tuple(quantity_changes),
        possible_ticker_changes=tuple(ticker_changes),
        previous_date=previous.snapshot_date,
        current_date=current.snapshot_date,
    )


def apply_ticker_change(
    store: LotStore,
    account: str,
    change: TickerChangeCandidate,
    *,
    effective_date: date | None = None,
) -> list[Lot]:
    """Move an account's lots from the old symbol to the new one.

    Lot ids, quantities, cost basis and disposal history carry over; each
    lot records a TICKER_CHANGE adjustment.

    Raises:
        LedgerError: If the old symbol has no lots, or the new symbol
            already has lots (histories are never merged).
    """
    old_symbol = normalize_symbol(change.old_symbol)
    new_symbol = normalize_symbol(change.new_symbol)
    if not old_symbol or not new_symbol or old_symbol == new_symbol:
        raise LedgerError(
            f"Invalid ticker change {change.old_symbol!r} -> {change.new_symbol!r}", account
        )
    old_key = lot_store_key(account, old_symbol)
    new_key = lot_store_key(account, new_symbol)

    lots = store.get(old_key)
    if not lots:
        raise LedgerError(f"No lots stored for {old_key}", account, old_symbol)
    if store.get(new_key):
        raise LedgerError(
            f"Lots already exist for {new_key}; refusing to merge {old_symbol} into it",
            account, new_symbol,
        )

    adjustment = LotAdjustment(
        kind=AdjustmentKind.TICKER_CHANGE,
        effective_date=effective_date or change.effective_date,
        ratio=Decimal("1"),
        description=f"Renamed from {old_symbol} to {new_symbol}",
    )
    moved = [
        replace(
            lot,
            symbol=new_symbol,
            adjustments=[*lot.adjustments, adjustment],
            disposals=list(lot.disposals),
        )
        for lot in lots
    ]
    store.delete(old_key)
    store.save(new_key, moved)
    logger.info(
        "Applied ticker change %s -> %s in account %s (%d lots)",
        old_symbol, new_symbol, account, len(moved),
    )
    return moved
