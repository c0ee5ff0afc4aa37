"""Holdings calculator: replays a symbol's transactions into a position.

Aggregate model only: shares and total cost basis, no lot granularity.
On a sale the cost basis shrinks proportionally to the shares sold. This
is a reconciliation approximation; lot-level cost basis from the Lot
Ledger is authoritative for tax reporting.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from services.corporate_action_service import CorporateActionProcessor
from services.ledger_protocol import ZERO, Transaction, TransactionCategory
from utils.ticker import normalize_symbol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalculatedHoldings:
    """Point-in-time holdings derived from transactions."""

    quantity: Decimal
    total_cost_basis: Decimal
    average_cost_per_share: Decimal
    earliest_acquisition_date: date | None = None
    applied_transactions: tuple[Transaction, ...] = ()
    skipped_transactions: tuple[Transaction, ...] = ()
    skipped_corporate_actions: tuple[Transaction, ...] = ()
    warnings: tuple[str, ...] = ()


def _sort_key(transaction: Transaction):
    # Undated rows are skipped anyway; keep them at the front of the sort.
    return transaction.trade_date or date.min


def calculate_holdings_at_date(
    transactions: list[Transaction],
    target_date: date,
    symbol: str | None = None,
) -> CalculatedHoldings:
    """Replay transactions dated on or before ``target_date``.

    Args:
        transactions: Transactions for one symbol, in any order.
        target_date: Inclusive cut-off date.
        symbol: When given, rows for other symbols are skipped.

    Returns:
        CalculatedHoldings. The function is pure: the input list is not
        reordered and identical inputs give identical outputs.
    """
    wanted = normalize_symbol(symbol) if symbol else None

    shares = ZERO
    cost_basis = ZERO
    applied: list[Transaction] = []
    skipped: list[Transaction] = []
    skipped_actions: list[Transaction] = []
    warnings: list[str] = []

    for transaction in sorted(transactions, key=_sort_key):
        if transaction.is_malformed:
            logger.warning(
                "Skipping malformed transaction %s (date=%s, symbol=%r)",
                transaction.id, transaction.trade_date, transaction.symbol,
            )
            skipped.append(transaction)
            continue
        if wanted and normalize_symbol(transaction.symbol) != wanted:
            skipped.append(transaction)
            continue
        if transaction.trade_date > target_date:
            continue

        category = transaction.category
        if category == TransactionCategory.ACQUISITION:
            if transaction.quantity > 0:
                shares += transaction.quantity
                cost_basis += abs(transaction.amount)
        elif category == TransactionCategory.DISPOSITION:
            if transaction.quantity > 0:
                shares_before = shares
                shares -= transaction.quantity
                if shares >= 0 and shares_before > 0:
                    percentage_sold = transaction.quantity / shares_before
                    cost_basis -= cost_basis * percentage_sold
        elif category == TransactionCategory.CORPORATE_ACTION:
            outcome = CorporateActionProcessor.process(transaction, shares)
            if outcome.skipped:
                skipped_actions.append(transaction)
                warnings.append(outcome.warning)
                continue
            else:
                shares = outcome.post_quantity
        else:
            raise ValueError(f"Unhandled transaction category: {category!r}")
        applied.append(transaction)

    average_cost = cost_basis / shares if shares > 0 else ZERO
    acquisition_dates = [
        t.trade_date for t in applied if t.category == TransactionCategory.ACQUISITION
    ]

    return CalculatedHoldings(
        quantity=shares,
        total_cost_basis=cost_basis,
        average_cost_per_share=average_cost,
        earliest_acquisition_date=min(acquisition_dates) if acquisition_dates else None,
        applied_transactions=tuple(applied),
        skipped_transactions=tuple(skipped),
        skipped_corporate_actions=tuple(skipped_actions),
        warnings=tuple(warnings),
    )


class HoldingsCalculator:
    """Groups transactions by symbol and replays each group."""

    @staticmethod
    def group_by_symbol(transactions: list[Transaction]) -> dict[str, list[Transaction]]:
        """Group transactions by normalized symbol, dropping symbol-less rows."""
        groups: dict[str, list[Transaction]] = {}
        for transaction in transactions:
            key = normalize_symbol(transaction.symbol)
            if not key:
                continue
            groups.setdefault(key, []).append(transaction)
        return groups

    @staticmethod
    def calculate_all(
        transactions: list[Transaction], target_date: date
    ) -> dict[str, CalculatedHoldings]:
        """Calculate holdings for every symbol present in ``transactions``."""
        return {
            symbol: calculate_holdings_at_date(group, target_date, symbol=symbol)
            for symbol, group in HoldingsCalculator.group_by_symbol(transactions).items()
        }
