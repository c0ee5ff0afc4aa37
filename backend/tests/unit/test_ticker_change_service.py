"""Tests for snapshot change analysis and ticker change handling."""

from datetime import date
from decimal import Decimal

import pytest

from services.exceptions import LedgerError
from services.ledger_protocol import AdjustmentKind, Confidence, TrackingMethod
from services.lot_ledger_service import LotLedger
from services.lot_store import InMemoryLotStore
from services.ticker_change_service import (
    ChangeType,
    TickerChangeCandidate,
    analyze_snapshot_changes,
    apply_ticker_change,
)
from tests.fixtures import make_snapshot


class TestAnalyzeSnapshotChanges:
    def test_no_previous_snapshot(self):
        current = make_snapshot(date(2024, 1, 1), ("AAPL", "10", "100"))
        changes = analyze_snapshot_changes(None, current)
        assert not changes.has_changes
        assert changes.current_date == date(2024, 1, 1)

    def test_identical_snapshots(self):
        snap = make_snapshot(date(2024, 1, 1), ("AAPL", "10", "100"))
        assert not analyze_snapshot_changes(snap, snap).has_changes

    def test_sold_acquired_and_quantity_changes(self):
        previous = make_snapshot(
            date(2024, 1, 1), ("AAPL", "10", "1000"), ("MSFT", "5", "500"), ("GOOG", "2", "200")
        )
        current = make_snapshot(
            date(2024, 2, 1), ("aapl", "12", "1200"), ("GOOG", "1", "100"), ("NVDA", "7", "700")
        )

        changes = analyze_snapshot_changes(previous, current)

        assert [(c.symbol, c.change_type) for c in changes.sold] == [("MSFT", ChangeType.SOLD)]
        assert [(c.symbol, c.change_type) for c in changes.acquired] == [
            ("NVDA", ChangeType.ACQUIRED)
        ]
        by_symbol = {c.symbol: c for c in changes.quantity_changes}
        assert by_symbol["AAPL"].delta == Decimal("2")
        assert by_symbol["AAPL"].change_type == ChangeType.QUANTITY_INCREASE
        assert by_symbol["GOOG"].change_type == ChangeType.QUANTITY_DECREASE
        assert changes.possible_ticker_changes == ()
        assert all(c.change_date == date(2024, 2, 1) for c in changes.sold)

    def test_quantity_change_within_tolerance_ignored(self):
        previous = make_snapshot(date(2024, 1, 1), ("AAPL", "10", "100"))
        current = make_snapshot(date(2024, 2, 1), ("AAPL", "10.005", "100"))
        assert analyze_snapshot_changes(previous, current).quantity_changes == ()

    def test_ticker_change_detected(self):
        previous = make_snapshot(date(2024, 1, 1), ("FB", "100", "30000"))
        current = make_snapshot(date(2024, 2, 1), ("META", "100.005", "30100"))

        changes = analyze_snapshot_changes(previous, current)

        [candidate] = changes.possible_ticker_changes
        assert candidate.old_symbol == "FB"
        assert candidate.new_symbol == "META"
        assert candidate.confidence == Confidence.HIGH
        assert candidate.effective_date == date(2024, 2, 1)
        assert changes.sold == ()
        assert changes.acquired == ()

    def test_ticker_change_medium_when_values_disagree(self):
        previous = make_snapshot(date(2024, 1, 1), ("FB", "100", "30000"))
        current = make_snapshot(date(2024, 2, 1), ("META", "100", "0"))
        [candidate] = analyze_snapshot_changes(previous, current).possible_ticker_changes
        assert candidate.confidence == Confidence.MEDIUM

    def test_quantity_outside_tolerance_is_not_a_rename(self):
        previous = make_snapshot(date(2024, 1, 1), ("FB", "100", "100"))
        current = make_snapshot(date(2024, 2, 1), ("META", "100.01", "100"))
        changes = analyze_snapshot_changes(previous, current)
        assert changes.possible_ticker_changes == ()
        assert len(changes.sold) == 1
        assert len(changes.acquired) == 1

    def test_pairing_is_one_to_one(self):
        previous = make_snapshot(date(2024, 1, 1), ("OLD1", "50", "0"), ("OLD2", "50", "0"))
        current = make_snapshot(date(2024, 2, 1), ("NEW1", "50", "0"))

        changes = analyze_snapshot_changes(previous, current)

        [candidate] = changes.possible_ticker_changes
        assert (candidate.old_symbol, candidate.new_symbol) == ("OLD1", "NEW1")
        assert [c.symbol for c in changes.sold] == ["OLD2"]

    def test_duplicate_symbols_are_summed(self):
        previous = make_snapshot(date(2024, 1, 1), ("AAPL", "5", "50"), ("AAPL", "5", "50"))
        current = make_snapshot(date(2024, 2, 1), ("AAPL", "10", "100"))
        assert not analyze_snapshot_changes(previous, current).has_changes

    def test_inputs_not_modified(self):
        previous = make_snapshot(date(2024, 1, 1), ("FB", "100", "100"))
        current = make_snapshot(date(2024, 2, 1), ("META", "100", "100"))
        before = (previous, current)
        analyze_snapshot_changes(previous, current)
        assert (previous, current) == before


class TestApplyTickerChange:
    @pytest.fixture
    def store_with_lots(self) -> InMemoryLotStore:
        store = InMemoryLotStore()
        ledger = LotLedger("acct-1", "FB")
        ledger.acquire(Decimal("10"), Decimal("1000"), date(2020, 1, 1))
        ledger.acquire(Decimal("5"), Decimal("600"), date(2021, 1, 1))
        ledger.dispose(Decimal("10"), TrackingMethod.FIFO, price=Decimal("150"))
        store.save(ledger.store_key, ledger.lots)
        return store

    def test_moves_lots_with_history(self, store_with_lots):
        old_lots = store_with_lots.get("acct-1_FB")
        change = TickerChangeCandidate(
            old_symbol="fb", new_symbol="META", quantity=Decimal("5"), new_quantity=Decimal("5")
        )

        moved = apply_ticker_change(
            store_with_lots, "acct-1", change, effective_date=date(2022, 6, 9)
        )

        assert store_with_lots.get("acct-1_FB") == []
        stored = store_with_lots.get("acct-1_META")
        assert [lot.id for lot in stored] == [lot.id for lot in old_lots]
        assert [lot.id for lot in moved] == [lot.id for lot in old_lots]
        assert all(lot.symbol == "META" for lot in stored)
        assert stored[0].disposals == old_lots[0].disposals
        assert stored[1].remaining_quantity == Decimal("5")
        assert stored[1].cost_basis == Decimal("600")
        adjustment = stored[1].adjustments[-1]
        assert adjustment.kind == AdjustmentKind.TICKER_CHANGE
        assert adjustment.ratio == Decimal("1")
        assert adjustment.effective_date == date(2022, 6, 9)

    def test_refuses_to_merge_into_existing_lots(self, store_with_lots):
        other = LotLedger("acct-1", "META")
        other.acquire(Decimal("1"), Decimal("1"), None)
        store_with_lots.save(other.store_key, other.lots)

        change = TickerChangeCandidate("FB", "META", Decimal("5"), Decimal("5"))
        with pytest.raises(LedgerError, match="already exist"):
            apply_ticker_change(store_with_lots, "acct-1", change)
        assert len(store_with_lots.get("acct-1_FB")) == 2

    def test_requires_old_lots(self, memory_store):
        change = TickerChangeCandidate("FB", "META", Decimal("5"), Decimal("5"))
        with pytest.raises(LedgerError, match="No lots"):
            apply_ticker_change(memory_store, "acct-1", change)

    @pytest.mark.parametrize(("old", "new"), [("FB", "fb "), ("", "META"), ("FB", " ")])
    def test_invalid_symbols(self, memory_store, old, new):
        change = TickerChangeCandidate(old, new, Decimal("5"), Decimal("5"))
        with pytest.raises(LedgerError, match="Invalid ticker change"):
            apply_ticker_change(memory_store, "acct-1", change)
