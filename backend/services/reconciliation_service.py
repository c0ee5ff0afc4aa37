"""Reconciliation engine.

Compares transaction-derived holdings (from the holdings calculator or a
lot ledger) with an externally supplied snapshot position, classifies
each mismatch as a Discrepancy and proposes resolutions. Numeric
mismatches never raise; only structurally unusable input does.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from services.exceptions import ReconciliationInputError
from services.holdings_calculator import (
    CalculatedHoldings,
    HoldingsCalculator,
    calculate_holdings_at_date,
)
from services.ledger_protocol import (
    QUANTITY_TOLERANCE,
    ZERO,
    PortfolioSnapshot,
    SnapshotPosition,
    Transaction,
    TransactionCategory,
)
from services.lot_ledger_service import LotLedger
from services.ticker_change_service import SnapshotChanges
from utils.ticker import normalize_symbol

logger = logging.getLogger(__name__)

MARKET_VALUE_TOLERANCE = Decimal("1")
AMOUNT_TOLERANCE = Decimal("0.01")
SPLIT_RATIO_TOLERANCE = Decimal("0.001")

_ONE_PERCENT = Decimal("0.01")
_TEN_PERCENT = Decimal("0.1")
_HUNDRED = Decimal("100")


class DiscrepancyType(str, Enum):
    QUANTITY_MISMATCH = "QUANTITY_MISMATCH"
    MISSING_TRANSACTION = "MISSING_TRANSACTION"
    MATHEMATICAL_ERROR = "MATHEMATICAL_ERROR"
    CORPORATE_ACTION_NEEDED = "CORPORATE_ACTION_NEEDED"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        """0 for CRITICAL up to 3 for LOW."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class SuggestionType(str, Enum):
    MISSING_TRANSACTION = "MISSING_TRANSACTION"
    VERIFY_DATA = "VERIFY_DATA"
    CORPORATE_ACTION = "CORPORATE_ACTION"


@dataclass(frozen=True)
class Discrepancy:
    """A mismatch between derived holdings and observed data.

    ``difference`` is signed as actual minus calculated.
    """

    type: DiscrepancyType
    severity: Severity
    calculated: Decimal | None
    actual: Decimal | None
    difference: Decimal
    description: str
    symbol: str | None = None
    percent_difference: Decimal | None = None
    price: Decimal | None = None
    direction: TransactionCategory | None = None
    estimated_date: date | None = None
    transaction_id: str | None = None
    period_start: date | None = None
    period_end: date | None = None

    @property
    def financial_impact(self) -> Decimal:
        if self.price is None:
            return ZERO
        return abs(self.difference) * self.price


@dataclass(frozen=True)
class ResolutionSuggestion:
    type: SuggestionType
    action: str
    description: str
    priority: Severity


@dataclass(frozen=True)
class ReconciliationResult:
    discrepancies: tuple[Discrepancy, ...] = ()
    resolution_suggestions: tuple[ResolutionSuggestion, ...] = ()
    symbol: str | None = None

    @property
    def has_discrepancies(self) -> bool:
        return bool(self.discrepancies)


@dataclass(frozen=True)
class PositionReconciliation:
    """Reconciliation of one snapshot position."""

    symbol: str
    calculated: CalculatedHoldings
    actual: SnapshotPosition
    reconciliation: ReconciliationResult

    @property
    def has_acquisition_date(self) -> bool:
        return self.calculated.earliest_acquisition_date is not None

    @property
    def earliest_acquisition_date(self) -> date | None:
        return self.calculated.earliest_acquisition_date


@dataclass(frozen=True)
class PortfolioReconciliation:
    results: tuple[PositionReconciliation, ...] = ()
    as_of: date | None = None

    @property
    def total_positions(self) -> int:
        return len(self.results)

    @property
    def with_acquisition_dates(self) -> int:
        return sum(1 for r in self.results if r.has_acquisition_date)

    @property
    def with_discrepancies(self) -> int:
        return sum(1 for r in self.results if r.reconciliation.has_discrepancies)


def _require_numbers(record, name: str, fields: Sequence[str]) -> dict[str, Decimal]:
    if record is None:
        raise ReconciliationInputError(f"{name} record is required")
    values = {}
    for field_name in fields:
        value = getattr(record, field_name, None)
        if isinstance(value, bool) or not isinstance(value, (Decimal, int)):
            raise ReconciliationInputError(
                f"{name}.{field_name} must be a Decimal, got {value!r}"
            )
        values[field_name] = Decimal(value)
    return values


def _near_split_ratio(calculated: Decimal, actual: Decimal) -> Decimal | None:
    """Return N when one quantity is (almost) exactly N times the other, N >= 2."""
    if calculated <= 0 or actual <= 0:
        return None
    ratio = max(actual, calculated) / min(actual, calculated)
    nearest = ratio.to_integral_value()
    if nearest >= 2 and abs(ratio - nearest) <= SPLIT_RATIO_TOLERANCE:
        return nearest
    return None


def suggest_resolutions(discrepancies: Iterable[Discrepancy]) -> list[ResolutionSuggestion]:
    """Map each discrepancy to the action most likely to resolve it."""
    suggestions = []
    for discrepancy in discrepancies:
        kind = discrepancy.type
        if kind == DiscrepancyType.QUANTITY_MISMATCH:
            if discrepancy.difference > 0:
                suggestions.append(ResolutionSuggestion(
                    type=SuggestionType.MISSING_TRANSACTION,
                    action="Add missing transactions",
                    description=(
                        f"Consider adding {discrepancy.difference} share transactions "
                        "to reconcile holdings"
                    ),
                    priority=discrepancy.severity,
                ))
            elif discrepancy.difference < 0:
                suggestions.append(ResolutionSuggestion(
                    type=SuggestionType.MISSING_TRANSACTION,
                    action="Add missing disposals",
                    description=(
                        f"Transactions account for {abs(discrepancy.difference)} more shares "
                        "than the snapshot holds"
                    ),
                    priority=discrepancy.severity,
                ))
        elif kind == DiscrepancyType.MATHEMATICAL_ERROR:
            suggestions.append(ResolutionSuggestion(
                type=SuggestionType.VERIFY_DATA,
                action="Verify market value / pricing",
                description="Check for pricing or quantity errors in portfolio data",
                priority=discrepancy.severity,
            ))
        elif kind == DiscrepancyType.CORPORATE_ACTION_NEEDED:
            suggestions.append(ResolutionSuggestion(
                type=SuggestionType.CORPORATE_ACTION,
                action="Record corporate action",
                description=discrepancy.description,
                priority=discrepancy.severity,
            ))
        elif kind == DiscrepancyType.MISSING_TRANSACTION:
            label = (
                "disposal" if discrepancy.direction == TransactionCategory.DISPOSITION
                else "acquisition"
            )
            suggestions.append(ResolutionSuggestion(
                type=SuggestionType.MISSING_TRANSACTION,
                action=f"Add missing {label}",
                description=discrepancy.description,
                priority=discrepancy.severity,
            ))
        else:
            raise ValueError(f"Unhandled discrepancy type: {kind!r}")
    return suggestions


def resolve_discrepancies(
    calculated: CalculatedHoldings,
    actual: SnapshotPosition,
    *,
    symbol: str | None = None,
    quantity_tolerance: Decimal = QUANTITY_TOLERANCE,
    market_value_tolerance: Decimal = MARKET_VALUE_TOLERANCE,
) -> ReconciliationResult:
    """Compare calculated holdings with a snapshot position.

    Args:
        calculated: Holdings derived from transactions (or a lot ledger).
        actual: The observed snapshot position.
        symbol: Label for the result; defaults to ``actual.symbol``.

    Returns:
        ReconciliationResult with discrepancies and suggestions.

    Raises:
        ReconciliationInputError: If either record is missing or its
            quantity/price fields are not numbers.
    """
    calc = _require_numbers(calculated, "calculated", ("quantity",))
    act = _require_numbers(actual, "actual", ("quantity", "market_value", "price"))
    symbol = normalize_symbol(symbol or getattr(actual, "symbol", None)) or None

    calc_quantity = calc["quantity"]
    actual_quantity = act["quantity"]
    price = act["price"]
    market_value = act["market_value"]
    discrepancies = []

    quantity_diff = actual_quantity - calc_quantity
    if abs(quantity_diff) > quantity_tolerance:
        severity = (
            Severity.HIGH if abs(quantity_diff) > abs(actual_quantity) * _TEN_PERCENT
            else Severity.MEDIUM
        )
        discrepancies.append(Discrepancy(
            type=DiscrepancyType.QUANTITY_MISMATCH,
            severity=severity,
            calculated=calc_quantity,
            actual=actual_quantity,
            difference=quantity_diff,
            description="Quantity mismatch between transactions and portfolio",
            symbol=symbol,
            percent_difference=(
                abs(quantity_diff) / abs(actual_quantity) * _HUNDRED if actual_quantity else None
            ),
            price=price,
        ))

    expected_value = calc_quantity * price
    value_diff = market_value - expected_value
    # Market value is only checked against a known price
    if price > 0 and abs(value_diff) > market_value_tolerance:
        severity = (
            Severity.HIGH if abs(value_diff) > abs(market_value) * _ONE_PERCENT
            else Severity.LOW
        )
        discrepancies.append(Discrepancy(
            type=DiscrepancyType.MATHEMATICAL_ERROR,
            severity=severity,
            calculated=expected_value,
            actual=market_value,
            difference=value_diff,
            description="Market value inconsistency",
            symbol=symbol,
        ))

    skipped_actions = getattr(calculated, "skipped_corporate_actions", ())
    split_ratio = _near_split_ratio(calc_quantity, actual_quantity)
    if skipped_actions:
        discrepancies.append(Discrepancy(
            type=DiscrepancyType.CORPORATE_ACTION_NEEDED,
            severity=Severity.HIGH,
            calculated=calc_quantity,
            actual=actual_quantity,
            difference=quantity_diff,
            description=(
                f"{len(skipped_actions)} corporate action(s) could not be applied: "
                "no shares were held before the event"
            ),
            symbol=symbol,
            price=price,
        ))
    elif split_ratio is not None:
        kind = "split" if actual_quantity > calc_quantity else "reverse split"
        discrepancies.append(Discrepancy(
            type=DiscrepancyType.CORPORATE_ACTION_NEEDED,
            severity=Severity.HIGH,
            calculated=calc_quantity,
            actual=actual_quantity,
            difference=quantity_diff,
            description=f"Quantities differ by a factor of {split_ratio}: possible unrecorded {kind}",
            symbol=symbol,
            price=price,
        ))

    if discrepancies:
        logger.debug(
            "Reconciliation of %s found %d discrepancies", symbol, len(discrepancies)
        )
    return ReconciliationResult(
        discrepancies=tuple(discrepancies),
        resolution_suggestions=tuple(suggest_resolutions(discrepancies)),
        symbol=symbol,
    )


def _quantity_severity(percent_difference: Decimal) -> Severity:
    if percent_difference > 50:
        return Severity.CRITICAL
    if percent_difference > 20:
        return Severity.HIGH
    if percent_difference > 5:
        return Severity.MEDIUM
    return Severity.LOW


def detect_quantity_discrepancy(
    calculated_quantity: Decimal,
    actual_quantity: Decimal,
    symbol: str | None = None,
    *,
    tolerance: Decimal = QUANTITY_TOLERANCE,
) -> Discrepancy | None:
    """Standalone quantity check ranked by percent difference.

    A zero actual quantity with a non-zero calculated one counts as a
    100% difference.
    """
    difference = actual_quantity - calculated_quantity
    if abs(difference) <= tolerance:
        return None
    if actual_quantity == 0:
        percent = _HUNDRED
    else:
        percent = abs(difference) / abs(actual_quantity) * _HUNDRED
    return Discrepancy(
        type=DiscrepancyType.QUANTITY_MISMATCH,
        severity=_quantity_severity(percent),
        calculated=calculated_quantity,
        actual=actual_quantity,
        difference=difference,
        description=(
            f"Quantity mismatch: Expected {actual_quantity}, "
            f"calculated {calculated_quantity} from transactions"
        ),
        symbol=normalize_symbol(symbol) or None,
        percent_difference=percent,
    )


def _has_matching(
    transactions: Sequence[Transaction],
    symbol: str,
    category: TransactionCategory,
    quantity: Decimal,
    tolerance: Decimal,
) -> bool:
    return any(
        t.category == category
        and normalize_symbol(t.symbol) == symbol
        and abs(t.quantity - quantity) < tolerance
        for t in transactions
    )


def _missing(
    symbol: str,
    quantity: Decimal,
    direction: TransactionCategory,
    estimated_date: date | None,
) -> Discrepancy:
    label = "acquisition" if direction == TransactionCategory.ACQUISITION else "sale"
    signed = quantity if direction == TransactionCategory.ACQUISITION else -quantity
    return Discrepancy(
        type=DiscrepancyType.MISSING_TRANSACTION,
        severity=Severity.HIGH,
        calculated=ZERO,
        actual=signed,
        difference=signed,
        description=f"Missing {label} transaction for {quantity} shares of {symbol}",
        symbol=symbol,
        direction=direction,
        estimated_date=estimated_date,
    )


def find_missing_transactions(
    transactions: Sequence[Transaction],
    changes: SnapshotChanges,
    *,
    tolerance: Decimal = QUANTITY_TOLERANCE,
) -> list[Discrepancy]:
    """Find snapshot changes that no recorded transaction explains.

    New and grown positions need an Acquisition of the same quantity;
    vanished and shrunk positions need a matching Disposition. Pairs the
    change detector flagged as possible ticker changes are not reported.
    """
    missing = []
    for change in changes.acquired:
        if not _has_matching(
            transactions, change.symbol, TransactionCategory.ACQUISITION, change.quantity, tolerance
        ):
            missing.append(_missing(
                change.symbol, change.quantity, TransactionCategory.ACQUISITION, change.change_date
            ))
    for change in changes.sold:
        if not _has_matching(
            transactions, change.symbol, TransactionCategory.DISPOSITION, change.quantity, tolerance
        ):
            missing.append(_missing(
                change.symbol, change.quantity, TransactionCategory.DISPOSITION, change.change_date
            ))
    for change in changes.quantity_changes:
        direction = (
            TransactionCategory.ACQUISITION if change.delta > 0
            else TransactionCategory.DISPOSITION
        )
        quantity = abs(change.delta)
        if not _has_matching(transactions, change.symbol, direction, quantity, tolerance):
            missing.append(_missing(change.symbol, quantity, direction, change.change_date))

    if missing:
        logger.info("Found %d snapshot changes without matching transactions", len(missing))
    return missing


def flag_inconsistencies(
    transactions: Sequence[Transaction],
    snapshots: Sequence[PortfolioSnapshot],
    *,
    tolerance: Decimal = QUANTITY_TOLERANCE,
) -> list[Discrepancy]:
    """Flag internally inconsistent transactions and unexplained changes.

    A transaction whose ``quantity * price`` disagrees with ``|amount|`` by
    more than 0.01 is a MATHEMATICAL_ERROR. Between two consecutive dated
    snapshots, a held position whose quantity change is not explained by
    the transactions dated after the earlier snapshot and up to the later
    one is a MISSING_TRANSACTION.
    """
    flagged = []

    for transaction in transactions:
        if transaction.category == TransactionCategory.CORPORATE_ACTION:
            continue
        if not (transaction.quantity and transaction.price and transaction.amount):
            continue
        expected = transaction.quantity * transaction.price
        recorded = abs(transaction.amount)
        gap = recorded - expected
        if abs(gap) > AMOUNT_TOLERANCE:
            flagged.append(Discrepancy(
                type=DiscrepancyType.MATHEMATICAL_ERROR,
                severity=Severity.HIGH if abs(gap) > expected * _ONE_PERCENT else Severity.LOW,
                calculated=expected,
                actual=recorded,
                difference=gap,
                description=(
                    f"Mathematical inconsistency in transaction: {expected} expected, "
                    f"{recorded} actual"
                ),
                symbol=normalize_symbol(transaction.symbol) or None,
                transaction_id=transaction.id,
                estimated_date=transaction.trade_date,
            ))

    dated = sorted(
        (s for s in snapshots if s.snapshot_date is not None), key=lambda s: s.snapshot_date
    )
    for previous, current in zip(dated, dated[1:]):
        window = [
            t for t in transactions
            if not t.is_malformed
            and previous.snapshot_date < t.trade_date <= current.snapshot_date
        ]
        previous_quantities = {}
        for position in previous.positions:
            key = normalize_symbol(position.symbol)
            previous_quantities[key] = previous_quantities.get(key, ZERO) + position.quantity
        current_quantities = {}
        for position in current.positions:
            key = normalize_symbol(position.symbol)
            current_quantities[key] = current_quantities.get(key, ZERO) + position.quantity

        for symbol, quantity in current_quantities.items():
            if not symbol or symbol not in previous_quantities:
                continue
            change = quantity - previous_quantities[symbol]
            explained = ZERO
            for t in window:
                if normalize_symbol(t.symbol) != symbol:
                    continue
                if t.category == TransactionCategory.ACQUISITION:
                    explained += t.quantity
                elif t.category == TransactionCategory.DISPOSITION:
                    explained -= t.quantity
            unexplained = change - explained
            if abs(unexplained) <= tolerance:
                continue
            flagged.append(Discrepancy(
                type=DiscrepancyType.MISSING_TRANSACTION,
                severity=(
                    Severity.HIGH if abs(unexplained) > abs(change) * _TEN_PERCENT
                    else Severity.MEDIUM
                ),
                calculated=explained,
                actual=change,
                difference=unexplained,
                description=(
                    f"Unexplained quantity change of {abs(unexplained)} shares of {symbol} "
                    "between snapshots"
                ),
                symbol=symbol,
                direction=(
                    TransactionCategory.ACQUISITION if unexplained > 0
                    else TransactionCategory.DISPOSITION
                ),
                period_start=previous.snapshot_date,
                period_end=current.snapshot_date,
            ))
    return flagged


def prioritize_discrepancies(discrepancies: Iterable[Discrepancy]) -> list[Discrepancy]:
    """Sort by severity (CRITICAL first), then by financial impact descending."""
    return sorted(
        discrepancies, key=lambda d: (d.severity.rank, -d.financial_impact)
    )


def reconcile_portfolio(
    transactions: Sequence[Transaction],
    snapshot: PortfolioSnapshot,
    as_of: date | None = None,
    *,
    quantity_tolerance: Decimal = QUANTITY_TOLERANCE,
    market_value_tolerance: Decimal = MARKET_VALUE_TOLERANCE,
) -> PortfolioReconciliation:
    """Reconcile every snapshot position against its transaction history.

    Holdings are calculated as of ``as_of``, falling back to the snapshot
    date and then today.
    """
    if snapshot is None:
        raise ReconciliationInputError("snapshot is required")
    target = as_of or snapshot.snapshot_date or date.today()
    by_symbol = HoldingsCalculator.group_by_symbol(list(transactions))

    results = []
    for position in snapshot.positions:
        symbol = normalize_symbol(position.symbol)
        if not symbol:
            logger.warning("Skipping snapshot position without a symbol")
            continue
        calculated = calculate_holdings_at_date(by_symbol.get(symbol, []), target, symbol=symbol)
        results.append(PositionReconciliation(
            symbol=symbol,
            calculated=calculated,
            actual=position,
            reconciliation=resolve_discrepancies(
                calculated,
                position,
                symbol=symbol,
                quantity_tolerance=quantity_tolerance,
                market_value_tolerance=market_value_tolerance,
            ),
        ))

    reconciliation = PortfolioReconciliation(results=tuple(results), as_of=target)
    logger.info(
        "Reconciled %d positions as of %s: %d with discrepancies",
        reconciliation.total_positions, target, reconciliation.with_discrepancies,
    )
    return reconciliation


def holdings_from_ledger(ledger: LotLedger) -> CalculatedHoldings:
    """Aggregate a lot ledger into the calculator's holdings shape."""
    quantity = ledger.open_quantity()
    cost_basis = ledger.remaining_cost_basis()
    dates = [lot.acquisition_date for lot in ledger.open_lots if lot.acquisition_date]
    return CalculatedHoldings(
        quantity=quantity,
        total_cost_basis=cost_basis,
        average_cost_per_share=cost_basis / quantity if quantity > 0 else ZERO,
        earliest_acquisition_date=min(dates) if dates else None,
    )


def reconcile_lots(
    ledger: LotLedger,
    actual: SnapshotPosition,
    *,
    market_value_tolerance: Decimal = MARKET_VALUE_TOLERANCE,
) -> ReconciliationResult:
    """Reconcile a lot ledger's open lots against a snapshot position."""
    if ledger is None:
        raise ReconciliationInputError("calculated record is required")
    return resolve_discrepancies(
        holdings_from_ledger(ledger),
        actual,
        symbol=ledger.symbol,
        quantity_tolerance=ledger.tolerance,
        market_value_tolerance=market_value_tolerance,
    )
