"""Lot ledger: per account+symbol tax lots and disposal matching.

``LotLedger`` is the in-memory engine. It owns one lot collection and
mutates only that collection; the tracking method is always passed in by
the caller. ``LotLedgerService`` binds ledgers to a Lot Store and reads
the stored tracking-method preference at the start of each run.

Concurrent disposals against the same account+symbol must be serialized
by the caller; the ledger does no locking.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from config import settings
from models import generate_uuid
from services.corporate_action_service import (
    CorporateActionProcessor,
    SplitOutcome,
    apply_split_to_lots,
)
from services.exceptions import InsufficientLotsError, LedgerError, LotSelectionError
from services.ledger_protocol import (
    QUANTITY_TOLERANCE,
    ZERO,
    Lot,
    LotDisposal,
    LotStatus,
    LotStore,
    TrackingMethod,
    Transaction,
    TransactionCategory,
    lot_store_key,
)
from services.lot_store import SqlLotStore
from services.preference_service import PreferenceService
from utils.ticker import normalize_symbol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LotSelection:
    """A caller-chosen lot for SPECIFIC_ID matching.

    ``quantity=None`` takes as much of the lot as the disposal still needs.
    """

    lot_id: str
    quantity: Decimal | None = None


@dataclass(frozen=True)
class LotMatch:
    """The part of a disposal absorbed by one lot."""

    lot_id: str
    acquisition_date: date | None
    quantity: Decimal
    cost_basis_removed: Decimal
    proceeds: Decimal | None
    closed_lot: bool

    @property
    def realized_gain_loss(self) -> Decimal | None:
        if self.proceeds is None:
            return None
        return self.proceeds - self.cost_basis_removed


@dataclass(frozen=True)
class DisposalResult:
    """Outcome of one disposal-matching run.

    ``insufficient`` means open lots ran out before the requested quantity
    was matched; the matched part is still applied. ``error`` is set when
    the run was rejected outright and no lot was touched.
    """

    requested_quantity: Decimal
    method: TrackingMethod
    matches: tuple[LotMatch, ...] = ()
    unmatched_quantity: Decimal = ZERO
    insufficient: bool = False
    error: str | None = None
    disposal_group_id: str | None = None

    @property
    def matched_quantity(self) -> Decimal:
        return sum((m.quantity for m in self.matches), ZERO)

    @property
    def cost_basis_removed(self) -> Decimal:
        return sum((m.cost_basis_removed for m in self.matches), ZERO)

    @property
    def proceeds(self) -> Decimal | None:
        if any(m.proceeds is None for m in self.matches) or not self.matches:
            return None
        return sum((m.proceeds for m in self.matches), ZERO)

    @property
    def realized_gain_loss(self) -> Decimal | None:
        proceeds = self.proceeds
        if proceeds is None:
            return None
        return proceeds - self.cost_basis_removed

    @property
    def ok(self) -> bool:
        return self.error is None and not self.insufficient


@dataclass(frozen=True)
class ReplayIssue:
    """A transaction that a replay could not apply as recorded."""

    transaction_id: str | None
    trade_date: date | None
    message: str
    unmatched_quantity: Decimal = ZERO


@dataclass(frozen=True)
class LotSummary:
    """Aggregate view of a ledger's lots."""

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


def _lot_order_key(indexed_lot: tuple[int, Lot]):
    sequence, lot = indexed_lot
    # Undated lots sort as the oldest
    return (lot.acquisition_date or date.min, sequence)


def _match_proceeds(
    take: Decimal, quantity: Decimal, price: Decimal | None, amount: Decimal | None
) -> Decimal | None:
    if amount is not None:
        return amount * take / quantity
    if price is not None:
        return price * take
    return None


def _replay_issue(transaction: Transaction, outcome) -> ReplayIssue | None:
    if isinstance(outcome, DisposalResult):
        if outcome.error:
            message = outcome.error
        elif outcome.insufficient:
            message = f"left {outcome.unmatched_quantity} shares unmatched"
        else:
            return None
        return ReplayIssue(
            transaction_id=transaction.id,
            trade_date=transaction.trade_date,
            message=message,
            unmatched_quantity=outcome.unmatched_quantity,
        )
    if isinstance(outcome, SplitOutcome) and outcome.skipped:
        return ReplayIssue(
            transaction_id=transaction.id,
            trade_date=transaction.trade_date,
            message=outcome.warning or "corporate action skipped",
        )
    return None


class LotLedger:
    """Open and closed lots for one account+symbol pair."""

    def __init__(
        self,
        account: str,
        symbol: str,
        lots: Iterable[Lot] = (),
        *,
        tolerance: Decimal = QUANTITY_TOLERANCE,
    ):
        self.account = account
        self.symbol = normalize_symbol(symbol)
        if not self.symbol:
            raise LedgerError("Lot ledger requires a symbol", account, symbol or "")
        self.tolerance = tolerance
        self._lots: list[Lot] = list(lots)
        # Filled by from_transactions
        self.replay_issues: list[ReplayIssue] = []

    @property
    def store_key(self) -> str:
        return lot_store_key(self.account, self.symbol)

    @property
    def lots(self) -> list[Lot]:
        """All lots in insertion order (a new list; the lots are live)."""
        return list(self._lots)

    @property
    def open_lots(self) -> list[Lot]:
        return [lot for lot in self._lots if lot.is_open]

    def get_lot(self, lot_id: str) -> Lot | None:
        for lot in self._lots:
            if lot.id == lot_id:
                return lot
        return None

    def _selected_lot(self, reference: str) -> Lot | None:
        """Find a lot by its id, or by the id of the transaction that opened it."""
        lot = self.get_lot(reference)
        if lot is not None:
            return lot
        for lot in self._lots:
            if lot.source_transaction_id == reference:
                return lot
        return None

    # --- Acquisition ---

    def acquire(
        self,
        quantity: Decimal,
        cost_basis: Decimal,
        acquisition_date: date | None,
        *,
        is_transaction_derived: bool = True,
        source_transaction_id: str | None = None,
    ) -> Lot:
        """Open a new lot.

        Raises LedgerError if quantity is not positive or cost basis is
        negative.
        """
        if quantity <= 0:
            raise LedgerError(
                f"Lot quantity must be positive, got {quantity}", self.account, self.symbol
            )
        if cost_basis < 0:
            raise LedgerError(
                f"Lot cost basis cannot be negative, got {cost_basis}", self.account, self.symbol
            )
        lot = Lot(
            account=self.account,
            symbol=self.symbol,
            acquisition_date=acquisition_date,
            original_quantity=quantity,
            remaining_quantity=quantity,
            cost_basis=cost_basis,
            is_transaction_derived=is_transaction_derived,
            source_transaction_id=source_transaction_id,
        )
        self._lots.append(lot)
        logger.info(
            "Created lot: %s shares of %s in account %s (cost basis %s)",
            quantity, self.symbol, self.account, cost_basis,
        )
        return lot

    def add_lot(
        self, quantity: Decimal, cost_basis: Decimal, acquisition_date: date | None
    ) -> Lot:
        """Open a manually entered lot."""
        return self.acquire(
            quantity, cost_basis, acquisition_date, is_transaction_derived=False
        )

    # --- Disposal matching ---

    def _ordered_open_lots(self, method: TrackingMethod) -> list[Lot]:
        indexed = [(i, lot) for i, lot in enumerate(self._lots) if lot.is_open]
        indexed.sort(key=_lot_order_key, reverse=method == TrackingMethod.LIFO)
        return [lot for _, lot in indexed]

    def _plan_ordered(
        self, quantity: Decimal, method: TrackingMethod
    ) -> tuple[list[tuple[Lot, Decimal]], Decimal]:
        plan = []
        remaining = quantity
        for lot in self._ordered_open_lots(method):
            if remaining <= 0:
                break
            take = min(lot.remaining_quantity, remaining)
            if take <= 0:
                continue
            plan.append((lot, take))
            remaining -= take
        return plan, remaining

    def _plan_specific(
        self, quantity: Decimal, lot_selections: Sequence[LotSelection] | None
    ) -> list[tuple[Lot, Decimal]]:
        """Validate a SPECIFIC_ID selection; raises LotSelectionError."""
        if not lot_selections:
            raise LotSelectionError(
                "SPECIFIC_ID disposal requires at least one lot selection",
                self.account, self.symbol,
            )
        plan = []
        seen: set[str] = set()
        remaining = quantity
        for selection in lot_selections:
            lot = self._selected_lot(selection.lot_id)
            if lot is None:
                raise LotSelectionError(
                    f"Lot {selection.lot_id} does not belong to {self.store_key}",
                    self.account, self.symbol,
                )
            if lot.id in seen:
                raise LotSelectionError(
                    f"Lot {selection.lot_id} selected more than once", self.account, self.symbol
                )
            seen.add(lot.id)
            if not lot.is_open:
                raise LotSelectionError(
                    f"Lot {selection.lot_id} is closed", self.account, self.symbol
                )
            if selection.quantity is not None:
                if selection.quantity <= 0:
                    raise LotSelectionError(
                        f"Selected quantity for lot {selection.lot_id} must be positive",
                        self.account, self.symbol,
                    )
                if selection.quantity > lot.remaining_quantity + self.tolerance:
                    raise LotSelectionError(
                        f"Lot {selection.lot_id} holds {lot.remaining_quantity} shares, "
                        f"{selection.quantity} selected",
                        self.account, self.symbol,
                    )
            if remaining <= 0:
                continue
            wanted = lot.remaining_quantity if selection.quantity is None else selection.quantity
            take = min(wanted, lot.remaining_quantity, remaining)
            plan.append((lot, take))
            remaining -= take

        if remaining > self.tolerance:
            raise LotSelectionError(
                f"Selected lots cover {quantity - remaining} of {quantity} shares",
                self.account, self.symbol,
            )
        return plan

    def _apply_match(
        self,
        lot: Lot,
        quantity: Decimal,
        method: TrackingMethod,
        disposal_date: date | None,
        proceeds: Decimal | None,
        disposal_group_id: str,
    ) -> LotMatch:
        cost_per_share = lot.cost_per_share
        new_remaining = lot.remaining_quantity - quantity
        closed = new_remaining <= self.tolerance
        if closed:
            # Snap to zero so residual cost basis leaves with the last shares
            cost_removed = lot.allocated_cost_basis
            lot.remaining_quantity = ZERO
            lot.status = LotStatus.CLOSED
        else:
            cost_removed = cost_per_share * quantity
            lot.remaining_quantity = new_remaining
        lot.disposals.append(
            LotDisposal(
                disposal_date=disposal_date,
                quantity=quantity,
                cost_basis_removed=cost_removed,
                method=method,
                proceeds=proceeds,
                disposal_group_id=disposal_group_id,
            )
        )
        logger.debug(
            "Matched %s shares of %s against lot %s (remaining %s)",
            quantity, self.symbol, lot.id[:8], lot.remaining_quantity,
        )
        return LotMatch(
            lot_id=lot.id,
            acquisition_date=lot.acquisition_date,
            quantity=quantity,
            cost_basis_removed=cost_removed,
            proceeds=proceeds,
            closed_lot=closed,
        )

    def dispose(
        self,
        quantity: Decimal,
        method: TrackingMethod | str,
        *,
        lot_selections: Sequence[LotSelection] | None = None,
        disposal_date: date | None = None,
        price: Decimal | None = None,
        amount: Decimal | None = None,
    ) -> DisposalResult:
        """Match a disposal against open lots.

        FIFO consumes the oldest lots first, LIFO the newest. SPECIFIC_ID
        consumes exactly the selected lots in the order given; a missing or
        unusable selection rejects the whole disposal (``result.error``)
        and never falls back to another ordering.

        When FIFO/LIFO runs out of open lots, everything available is
        matched and the result reports ``insufficient`` with the
        ``unmatched_quantity``; whether a short position is acceptable is
        the caller's decision.

        Proceeds come from ``amount`` (the net cash of the disposition)
        split across the matched lots by quantity, or from ``price`` per
        share when no amount is known.

        Raises:
            LedgerError: If quantity is not positive.
        """
        method = TrackingMethod(method)
        if quantity <= 0:
            raise LedgerError(
                f"Disposal quantity must be positive, got {quantity}", self.account, self.symbol
            )

        if method == TrackingMethod.SPECIFIC_ID:
            try:
                plan = self._plan_specific(quantity, lot_selections)
            except LotSelectionError as e:
                logger.warning(
                    "SPECIFIC_ID disposal of %s %s rejected: %s", quantity, self.symbol, e
                )
                return DisposalResult(
                    requested_quantity=quantity,
                    method=method,
                    unmatched_quantity=quantity,
                    error=str(e),
                )
            unmatched = ZERO
        else:
            plan, unmatched = self._plan_ordered(quantity, method)

        if not plan:
            logger.warning(
                "No open lots for %s disposal: %s shares of %s in account %s",
                method.value, quantity, self.symbol, self.account,
            )

        disposal_group_id = generate_uuid()
        matches = tuple(
            self._apply_match(
                lot,
                take,
                method,
                disposal_date,
                _match_proceeds(take, quantity, price, amount),
                disposal_group_id,
            )
            for lot, take in plan
        )
        insufficient = unmatched > self.tolerance
        if insufficient and plan:
            logger.warning(
                "%s disposal incomplete: %s shares of %s unallocated",
                method.value, unmatched, self.symbol,
            )
        logger.info(
            "Disposed %s shares of %s in account %s via %s across %d lots",
            quantity - unmatched, self.symbol, self.account, method.value, len(matches),
        )
        return DisposalResult(
            requested_quantity=quantity,
            method=method,
            matches=matches,
            unmatched_quantity=unmatched if insufficient else ZERO,
            insufficient=insufficient,
            disposal_group_id=disposal_group_id,
        )

    def dispose_or_raise(
        self,
        quantity: Decimal,
        method: TrackingMethod | str,
        *,
        allow_short: bool = False,
        lot_selections: Sequence[LotSelection] | None = None,
        disposal_date: date | None = None,
        price: Decimal | None = None,
        amount: Decimal | None = None,
    ) -> DisposalResult:
        """Like ``dispose`` but raise instead of reporting problems.

        Nothing is mutated when an error is raised.

        Raises:
            LotSelectionError: SPECIFIC_ID selection rejected.
            InsufficientLotsError: Open lots fall short and ``allow_short``
                is False.
        """
        method = TrackingMethod(method)
        if (
            not allow_short
            and method != TrackingMethod.SPECIFIC_ID
            and quantity - self.open_quantity() > self.tolerance
        ):
            shortfall = quantity - self.open_quantity()
            raise InsufficientLotsError(
                f"Cannot dispose {quantity} shares of {self.symbol}: "
                f"only {self.open_quantity()} held in open lots",
                self.account, self.symbol, unmatched_quantity=shortfall,
            )
        result = self.dispose(
            quantity,
            method,
            lot_selections=lot_selections,
            disposal_date=disposal_date,
            price=price,
            amount=amount,
        )
        if result.error:
            raise LotSelectionError(result.error, self.account, self.symbol)
        return result

    # --- Transactions & corporate actions ---

    def apply_corporate_action(self, transaction: Transaction) -> SplitOutcome:
        """Rescale open lots for a split or reverse split.

        The post-event total in ``transaction.quantity`` is compared with
        the current open quantity to recover the ratio. Skipped actions
        leave the lots untouched.
        """
        outcome = CorporateActionProcessor.process(transaction, self.open_quantity())
        if not outcome.skipped:
            self._lots = apply_split_to_lots(
                self._lots, outcome.ratio, outcome.kind, transaction.trade_date
            )
        return outcome

    def apply_transaction(
        self,
        transaction: Transaction,
        method: TrackingMethod | str,
        *,
        lot_selections: Sequence[LotSelection] | None = None,
    ) -> Lot | DisposalResult | SplitOutcome | None:
        """Apply one transaction; returns None when it is skipped."""
        if transaction.is_malformed:
            logger.warning(
                "Skipping malformed transaction %s (date=%s, symbol=%r)",
                transaction.id, transaction.trade_date, transaction.symbol,
            )
            return None
        if normalize_symbol(transaction.symbol) != self.symbol:
            return None

        category = transaction.category
        if category == TransactionCategory.ACQUISITION:
            if transaction.quantity <= 0:
                return None
            return self.acquire(
                transaction.quantity,
                abs(transaction.amount),
                transaction.trade_date,
                is_transaction_derived=not transaction.is_interpolated,
                source_transaction_id=transaction.id,
            )
        if category == TransactionCategory.DISPOSITION:
            if transaction.quantity <= 0:
                return None
            return self.dispose(
                transaction.quantity,
                method,
                lot_selections=lot_selections,
                disposal_date=transaction.trade_date,
                price=transaction.price or None,
                amount=abs(transaction.amount) or None,
            )
        if category == TransactionCategory.CORPORATE_ACTION:
            return self.apply_corporate_action(transaction)
        raise ValueError(f"Unhandled transaction category: {category!r}")

    @classmethod
    def from_transactions(
        cls,
        account: str,
        symbol: str,
        transactions: Iterable[Transaction],
        method: TrackingMethod | str,
        *,
        lot_selections: Mapping[str, Sequence[LotSelection]] | None = None,
        tolerance: Decimal = QUANTITY_TOLERANCE,
    ) -> "LotLedger":
        """Replay a transaction history into a fresh ledger.

        Rejected or short disposals and skipped corporate actions do not
        stop the replay; each one is recorded in ``ledger.replay_issues``.

        Args:
            lot_selections: SPECIFIC_ID selections keyed by disposition
                transaction id. A selection may name a lot by its id or by
                the id of the acquisition that opened it.
        """
        ledger = cls(account, symbol, tolerance=tolerance)
        selections = lot_selections or {}
        dated = sorted(
            transactions, key=lambda t: t.trade_date or date.min
        )
        for transaction in dated:
            outcome = ledger.apply_transaction(
                transaction, method, lot_selections=selections.get(transaction.id)
            )
            issue = _replay_issue(transaction, outcome)
            if issue is not None:
                logger.warning(
                    "Replay of %s in account %s: transaction %s: %s",
                    ledger.symbol, account, issue.transaction_id, issue.message,
                )
                ledger.replay_issues.append(issue)
        return ledger

    # --- Aggregation ---

    def open_quantity(self) -> Decimal:
        return sum((lot.remaining_quantity for lot in self.open_lots), ZERO)

    def remaining_cost_basis(self) -> Decimal:
        """Allocated cost basis of the shares still held."""
        return sum((lot.allocated_cost_basis for lot in self.open_lots), ZERO)

    def weighted_average_cost(self) -> Decimal:
        """Sum of cost basis over sum of original quantity, open lots only."""
        open_lots = self.open_lots
        total_quantity = sum((lot.original_quantity for lot in open_lots), ZERO)
        if total_quantity <= 0:
            return ZERO
        return sum((lot.cost_basis for lot in open_lots), ZERO) / total_quantity

    def unrealized_gain_loss(self, current_price: Decimal) -> Decimal:
        return sum(
            (
                lot.remaining_quantity * current_price - lot.allocated_cost_basis
                for lot in self.open_lots
            ),
            ZERO,
        )

    def realized_gain_loss(self) -> Decimal:
        """Gain/loss over every disposal that recorded proceeds."""
        total = ZERO
        for lot in self._lots:
            for disposal in lot.disposals:
                gain = disposal.realized_gain_loss
                if gain is not None:
                    total += gain
        return total

    def summary(self, current_price: Decimal | None = None) -> LotSummary:
        open_lots = self.open_lots
        dates = [lot.acquisition_date for lot in open_lots if lot.acquisition_date]
        return LotSummary(
            account=self.account,
            symbol=self.symbol,
            open_lot_count=len(open_lots),
            closed_lot_count=len(self._lots) - len(open_lots),
            open_quantity=self.open_quantity(),
            remaining_cost_basis=self.remaining_cost_basis(),
            weighted_average_cost=self.weighted_average_cost(),
            realized_gain_loss=self.realized_gain_loss(),
            unrealized_gain_loss=(
                self.unrealized_gain_loss(current_price) if current_price is not None else None
            ),
            earliest_acquisition_date=min(dates) if dates else None,
        )

    def check_invariants(self, expected_quantity: Decimal | None = None) -> list[str]:
        """Return a description of every broken lot invariant."""
        violations = []
        for lot in self._lots:
            if lot.remaining_quantity > lot.original_quantity + self.tolerance:
                violations.append(
                    f"Lot {lot.id}: remaining {lot.remaining_quantity} exceeds "
                    f"original {lot.original_quantity}"
                )
            if lot.remaining_quantity < 0:
                violations.append(f"Lot {lot.id}: negative remaining {lot.remaining_quantity}")
            if lot.cost_basis < 0:
                violations.append(f"Lot {lot.id}: negative cost basis {lot.cost_basis}")
            if not lot.is_open and lot.remaining_quantity != 0:
                violations.append(
                    f"Lot {lot.id}: closed with {lot.remaining_quantity} shares remaining"
                )
        if expected_quantity is not None:
            open_quantity = self.open_quantity()
            if abs(open_quantity - expected_quantity) > self.tolerance:
                violations.append(
                    f"Open lots hold {open_quantity} shares of {self.symbol}, "
                    f"expected {expected_quantity}"
                )
        return violations


class LotLedgerService:
    """Loads, mutates and saves ledgers through a Lot Store."""

    @staticmethod
    def _store(db: Session, store: LotStore | None) -> LotStore:
        if store is not None:
            return store
        return SqlLotStore(db)

    @staticmethod
    def load(
        db: Session, account: str, symbol: str, store: LotStore | None = None
    ) -> LotLedger:
        store = LotLedgerService._store(db, store)
        symbol = normalize_symbol(symbol)
        return LotLedger(
            account,
            symbol,
            store.get(lot_store_key(account, symbol)),
            tolerance=settings.QUANTITY_TOLERANCE,
        )

    @staticmethod
    def save(db: Session, ledger: LotLedger, store: LotStore | None = None) -> None:
        LotLedgerService._store(db, store).save(ledger.store_key, ledger.lots)

    @staticmethod
    def add_lot(
        db: Session,
        account: str,
        symbol: str,
        quantity: Decimal,
        cost_basis: Decimal,
        acquisition_date: date | None,
        store: LotStore | None = None,
    ) -> Lot:
        """Create a manual lot and save the ledger."""
        ledger = LotLedgerService.load(db, account, symbol, store)
        lot = ledger.add_lot(quantity, cost_basis, acquisition_date)
        LotLedgerService.save(db, ledger, store)
        return lot

    @staticmethod
    def dispose(
        db: Session,
        account: str,
        symbol: str,
        quantity: Decimal,
        *,
        method: TrackingMethod | str | None = None,
        lot_selections: Sequence[LotSelection] | None = None,
        disposal_date: date | None = None,
        price: Decimal | None = None,
        allow_short: bool = True,
        store: LotStore | None = None,
    ) -> DisposalResult:
        """Run one disposal and save the result.

        When ``method`` is None the stored tracking-method preference is
        read once here and handed to the ledger.

        Raises:
            LotSelectionError: SPECIFIC_ID selection rejected.
            InsufficientLotsError: Shortfall with ``allow_short=False``.
        """
        if method is None:
            method = PreferenceService.get_tracking_method(db)
        ledger = LotLedgerService.load(db, account, symbol, store)
        result = ledger.dispose_or_raise(
            quantity,
            method,
            allow_short=allow_short,
            lot_selections=lot_selections,
            disposal_date=disposal_date,
            price=price,
        )
        LotLedgerService.save(db, ledger, store)
        return result

    @staticmethod
    def apply_corporate_action(
        db: Session,
        account: str,
        transaction: Transaction,
        store: LotStore | None = None,
    ) -> SplitOutcome:
        """Rescale the stored lots of ``transaction.symbol``."""
        ledger = LotLedgerService.load(db, account, transaction.symbol, store)
        outcome = ledger.apply_corporate_action(transaction)
        if not outcome.skipped:
            LotLedgerService.save(db, ledger, store)
        return outcome
