"""Test fixtures and sample data."""
import pytest
from datetime import date
from decimal import Decimal

from services.ledger_protocol import (
    CorporateActionKind,
    PortfolioSnapshot,
    SnapshotPosition,
    Transaction,
    TransactionCategory,
)
from services.lot_store import InMemoryLotStore


def make_buy(
    trade_date: date | None,
    quantity: str,
    price: str = "0",
    symbol: str | None = "AAPL",
    amount: str | None = None,
    tx_id: str | None = None,
) -> Transaction:
    """Build an acquisition; amount defaults to quantity * price."""
    qty = Decimal(quantity)
    px = Decimal(price)
    return Transaction(
        trade_date=trade_date,
        symbol=symbol,
        category=TransactionCategory.ACQUISITION,
        action="Buy",
        quantity=qty,
        price=px,
        amount=Decimal(amount) if amount is not None else qty * px,
        id=tx_id,
    )


def make_sell(
    trade_date: date | None,
    quantity: str,
    price: str = "0",
    symbol: str | None = "AAPL",
    tx_id: str | None = None,
) -> Transaction:
    qty = Decimal(quantity)
    px = Decimal(price)
    return Transaction(
        trade_date=trade_date,
        symbol=symbol,
        category=TransactionCategory.DISPOSITION,
        action="Sell",
        quantity=qty,
        price=px,
        amount=qty * px,
        id=tx_id,
    )


def make_split(
    trade_date: date | None,
    post_quantity: str,
    kind: CorporateActionKind = CorporateActionKind.STOCK_SPLIT,
    symbol: str | None = "AAPL",
) -> Transaction:
    """Build a corporate action carrying the post-event total share count."""
    return Transaction(
        trade_date=trade_date,
        symbol=symbol,
        category=TransactionCategory.CORPORATE_ACTION,
        action=kind.value,
        quantity=Decimal(post_quantity),
        corporate_action=kind,
    )


def make_snapshot(snapshot_date: date | None, *positions: tuple) -> PortfolioSnapshot:
    """Build a snapshot from (symbol, quantity, market_value[, price]) tuples."""
    built = []
    for position in positions:
        symbol, quantity, market_value, *rest = position
        built.append(
            SnapshotPosition(
                symbol=symbol,
                quantity=Decimal(quantity),
                market_value=Decimal(market_value),
                price=Decimal(rest[0]) if rest else Decimal("0"),
            )
        )
    return PortfolioSnapshot(snapshot_date=snapshot_date, positions=tuple(built))


@pytest.fixture
def memory_store() -> InMemoryLotStore:
    """An empty in-memory lot store."""
    return InMemoryLotStore()
