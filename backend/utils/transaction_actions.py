"""Broker action labels and the holdings effect they map to.

Labels that move cash but not shares (dividends, interest, option opens)
classify as ``None`` and never become engine transactions.
"""

import logging
from datetime import date
from decimal import Decimal

from services.ledger_protocol import (
    ZERO,
    CorporateActionKind,
    Transaction,
    TransactionCategory,
)
from utils.ticker import normalize_symbol

logger = logging.getLogger(__name__)

ACQUISITION_ACTIONS = frozenset({
    "Buy",
    "Reinvest Shares",
    "Assigned",
})

DISPOSITION_ACTIONS = frozenset({
    "Sell",
})

CORPORATE_ACTIONS = {
    "Stock Split": CorporateActionKind.STOCK_SPLIT,
    "Reverse Split": CorporateActionKind.REVERSE_SPLIT,
}

NEUTRAL_ACTIONS = frozenset({
    "Reinvest Dividend",
    "Qual Div Reinvest",
    "Long Term Cap Gain Reinvest",
    "Sell to Open",
    "Expired",
    "Cash Dividend",
    "Qualified Dividend",
    "Special Qual Div",
    "Non-Qualified Div",
    "Bank Interest",
    "ADR Mgmt Fee",
    "Cash In Lieu",
})


def classify_action(
    label: str,
) -> tuple[TransactionCategory, CorporateActionKind | None] | None:
    """Map a broker action label to its category and corporate-action kind.

    Returns None for holdings-neutral and unknown labels.
    """
    label = (label or "").strip()
    if label in ACQUISITION_ACTIONS:
        return TransactionCategory.ACQUISITION, None
    if label in DISPOSITION_ACTIONS:
        return TransactionCategory.DISPOSITION, None
    if label in CORPORATE_ACTIONS:
        return TransactionCategory.CORPORATE_ACTION, CORPORATE_ACTIONS[label]
    if label not in NEUTRAL_ACTIONS:
        logger.warning("Unknown transaction action %r treated as neutral", label)
    return None


def build_transaction(
    label: str,
    trade_date: date | None,
    symbol: str | None,
    quantity: Decimal,
    price: Decimal = ZERO,
    amount: Decimal = ZERO,
    transaction_id: str | None = None,
) -> Transaction | None:
    """Build an engine Transaction from a labelled broker row.

    Quantities are stored unsigned; broker exports sign sells negative.
    Returns None when the label does not affect holdings.
    """
    classified = classify_action(label)
    if classified is None:
        return None
    category, kind = classified
    return Transaction(
        trade_date=trade_date,
        symbol=normalize_symbol(symbol) or None,
        category=category,
        action=label.strip(),
        quantity=abs(quantity),
        price=price,
        amount=amount,
        corporate_action=kind,
        id=transaction_id,
    )
