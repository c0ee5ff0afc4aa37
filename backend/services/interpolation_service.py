"""Interpolation synthesizer: advisory placeholder transactions.

A placeholder closes the quantity gap between calculated and actual
holdings. It is never persisted by this module; it only becomes a real
Transaction (and touches lots) through ``confirm_interpolated_transaction``.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal

from models import generate_uuid
from services.exceptions import InsufficientLotsError, LedgerError, ReconciliationInputError
from services.holdings_calculator import CalculatedHoldings
from services.ledger_protocol import (
    ZERO,
    Confidence,
    Lot,
    SnapshotPosition,
    TrackingMethod,
    Transaction,
    TransactionCategory,
)
from services.lot_ledger_service import DisposalResult, LotLedger, LotSelection
from services.reconciliation_service import Discrepancy, DiscrepancyType
from utils.ticker import normalize_symbol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GapDescriptor:
    estimated_date: date | None = None
    confidence: Confidence | None = None


@dataclass(frozen=True)
class InterpolationContext:
    """What is known around a gap.

    ``snapshot_date`` is the date of the snapshot that exposed the gap;
    the previous/current dates bracket it when two snapshots are known.
    """

    symbol: str
    calculated: CalculatedHoldings
    actual: SnapshotPosition
    snapshot_date: date | None = None
    previous_snapshot_date: date | None = None
    current_snapshot_date: date | None = None


@dataclass(frozen=True)
class InterpolatedTransaction:
    """An unconfirmed placeholder transaction."""

    id: str
    symbol: str
    trade_date: date
    action: str
    category: TransactionCategory
    quantity: Decimal
    price: Decimal
    amount: Decimal
    confidence: Confidence = Confidence.LOW
    description: str = ""
    is_interpolated: bool = True
    confirmed: bool = False

    def to_transaction(self) -> Transaction:
        return Transaction(
            trade_date=self.trade_date,
            symbol=self.symbol,
            category=self.category,
            action=self.action,
            quantity=self.quantity,
            price=self.price,
            amount=self.amount,
            id=self.id,
            is_interpolated=True,
        )


@dataclass(frozen=True)
class ConfirmationResult:
    """Outcome of confirming a placeholder against a ledger."""

    pending: InterpolatedTransaction
    transaction: Transaction
    lot: Lot | None = None
    disposal: DisposalResult | None = None


def _build(
    symbol: str,
    quantity_diff: Decimal,
    price: Decimal,
    trade_date: date,
    confidence: Confidence,
    description: str,
) -> InterpolatedTransaction:
    is_buy = quantity_diff > 0
    quantity = abs(quantity_diff)
    return InterpolatedTransaction(
        id=f"interpolated_{symbol}_{generate_uuid()}",
        symbol=symbol,
        trade_date=trade_date,
        action="Buy" if is_buy else "Sell",
        category=TransactionCategory.ACQUISITION if is_buy else TransactionCategory.DISPOSITION,
        quantity=quantity,
        price=price,
        amount=quantity * price,
        confidence=confidence,
        description=description,
    )


def _check_context(context: InterpolationContext) -> None:
    if context is None:
        raise ReconciliationInputError("interpolation context is required")
    if context.calculated is None or context.actual is None:
        raise ReconciliationInputError("calculated and actual records are required")
    if not normalize_symbol(context.symbol):
        raise ReconciliationInputError("interpolation context needs a symbol")


def generate_interpolated_transaction(
    gap: GapDescriptor | None,
    context: InterpolationContext,
    now: date | None = None,
) -> InterpolatedTransaction:
    """Propose one transaction closing ``actual - calculated``.

    A positive gap becomes a Buy, anything else a Sell, for the absolute
    difference at the snapshot price. The date defaults to ``now`` (today
    when omitted) and the confidence to LOW.
    """
    _check_context(context)
    gap = gap or GapDescriptor()
    symbol = normalize_symbol(context.symbol)
    quantity_diff = context.actual.quantity - context.calculated.quantity
    pending = _build(
        symbol,
        quantity_diff,
        context.actual.price,
        gap.estimated_date or now or date.today(),
        gap.confidence or Confidence.LOW,
        "Interpolated transaction to reconcile quantity discrepancy",
    )
    logger.debug(
        "Proposed interpolated %s of %s %s", pending.action, pending.quantity, symbol
    )
    return pending


def estimate_transaction_date(context: InterpolationContext, now: date | None = None) -> date:
    """Best guess for when a missing transaction happened.

    The snapshot date, else the midpoint between the bracketing snapshots,
    else ``now``.
    """
    if context.snapshot_date:
        return context.snapshot_date
    if context.previous_snapshot_date and context.current_snapshot_date:
        span = context.current_snapshot_date - context.previous_snapshot_date
        return context.previous_snapshot_date + span // 2
    return now or date.today()


def estimate_confidence(
    discrepancy: Discrepancy, context: InterpolationContext | None = None
) -> Confidence:
    score = Decimal("0")
    if discrepancy.estimated_date:
        score += Decimal("0.3")
    if context is not None and context.snapshot_date:
        score += Decimal("0.2")
    if context is not None and context.actual is not None and context.actual.price > 0:
        score += Decimal("0.2")
    percent = discrepancy.percent_difference
    if percent is not None:
        if percent < 5:
            score += Decimal("0.2")
        elif percent < 20:
            score += Decimal("0.1")

    if score >= Decimal("0.7"):
        return Confidence.HIGH
    if score >= Decimal("0.4"):
        return Confidence.MEDIUM
    return Confidence.LOW


def suggest_interpolation(
    discrepancy: Discrepancy,
    context: InterpolationContext,
    now: date | None = None,
) -> InterpolatedTransaction | None:
    """Propose a placeholder for a discrepancy, or None if none applies.

    QUANTITY_MISMATCH closes the context's gap; MISSING_TRANSACTION
    proposes the missing quantity in the discrepancy's direction.
    Confidence is scored from the available evidence.
    """
    _check_context(context)
    confidence = estimate_confidence(discrepancy, context)
    trade_date = discrepancy.estimated_date or estimate_transaction_date(context, now)

    if discrepancy.type == DiscrepancyType.QUANTITY_MISMATCH:
        return generate_interpolated_transaction(
            GapDescriptor(estimated_date=trade_date, confidence=confidence), context, now
        )
    if discrepancy.type == DiscrepancyType.MISSING_TRANSACTION:
        quantity = abs(discrepancy.difference)
        signed = quantity if discrepancy.direction == TransactionCategory.ACQUISITION else -quantity
        return _build(
            normalize_symbol(discrepancy.symbol or context.symbol),
            signed,
            context.actual.price,
            trade_date,
            confidence,
            f"Interpolated transaction for {discrepancy.description.lower()}",
        )
    return None


def confirm_interpolated_transaction(
    pending: InterpolatedTransaction,
    ledger: LotLedger,
    method: TrackingMethod | str,
    *,
    lot_selections: Sequence[LotSelection] | None = None,
    allow_short: bool = False,
) -> ConfirmationResult:
    """Turn a placeholder into a real transaction applied to ``ledger``.

    A Buy opens a manual (not transaction-derived) lot; a Sell is matched
    with ``method`` and, unless ``allow_short`` is set, must not exceed the
    shares held in open lots. The transaction keeps ``is_interpolated=True``.
    Nothing is persisted until the caller saves the ledger.

    Raises:
        LedgerError: If the placeholder was already confirmed, belongs to
            another symbol, or has no quantity.
        InsufficientLotsError: A Sell exceeds the open lots and
            ``allow_short`` is False. The ledger is left untouched.
    """
    if pending.confirmed:
        raise LedgerError(f"Interpolated transaction {pending.id} is already confirmed")
    if normalize_symbol(pending.symbol) != ledger.symbol:
        raise LedgerError(
            f"Interpolated transaction for {pending.symbol} cannot be applied to {ledger.symbol}",
            ledger.account, ledger.symbol,
        )
    if pending.quantity <= ZERO:
        raise LedgerError(
            f"Interpolated transaction {pending.id} has no quantity to confirm",
            ledger.account, ledger.symbol,
        )

    transaction = pending.to_transaction()
    method = TrackingMethod(method)
    shortfall = transaction.quantity - ledger.open_quantity()
    if (
        transaction.category == TransactionCategory.DISPOSITION
        and not allow_short
        and method != TrackingMethod.SPECIFIC_ID
        and shortfall > ledger.tolerance
    ):
        raise InsufficientLotsError(
            f"Interpolated sale of {transaction.quantity} {ledger.symbol} exceeds "
            f"the {ledger.open_quantity()} shares held in open lots",
            ledger.account, ledger.symbol, unmatched_quantity=shortfall,
        )
    outcome = ledger.apply_transaction(transaction, method, lot_selections=lot_selections)
    logger.info(
        "Confirmed interpolated %s of %s %s in account %s",
        pending.action, pending.quantity, ledger.symbol, ledger.account,
    )
    return ConfirmationResult(
        pending=replace(pending, confirmed=True),
        transaction=transaction,
        lot=outcome if isinstance(outcome, Lot) else None,
        disposal=outcome if isinstance(outcome, DisposalResult) else None,
    )
