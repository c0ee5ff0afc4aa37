"""Tests for the reconciliation engine."""

from datetime import date
from decimal import Decimal

import pytest

from services.exceptions import ReconciliationInputError
from services.holdings_calculator import CalculatedHoldings, calculate_holdings_at_date
from services.ledger_protocol import SnapshotPosition, TrackingMethod, TransactionCategory
from services.lot_ledger_service import LotLedger
from services.reconciliation_service import (
    Discrepancy,
    DiscrepancyType,
    Severity,
    SuggestionType,
    detect_quantity_discrepancy,
    find_missing_transactions,
    flag_inconsistencies,
    holdings_from_ledger,
    prioritize_discrepancies,
    reconcile_lots,
    reconcile_portfolio,
    resolve_discrepancies,
    suggest_resolutions,
)
from services.ticker_change_service import analyze_snapshot_changes
from tests.fixtures import make_buy, make_sell, make_snapshot, make_split


def _calculated(quantity: str) -> CalculatedHoldings:
    return CalculatedHoldings(
        quantity=Decimal(quantity),
        total_cost_basis=Decimal("0"),
        average_cost_per_share=Decimal("0"),
    )


def _position(quantity: str, price: str = "0", market_value: str | None = None) -> SnapshotPosition:
    qty = Decimal(quantity)
    px = Decimal(price)
    return SnapshotPosition(
        symbol="AAPL",
        quantity=qty,
        market_value=Decimal(market_value) if market_value is not None else qty * px,
        price=px,
    )


def _discrepancy(severity: Severity, difference: str, price: str | None) -> Discrepancy:
    return Discrepancy(
        type=DiscrepancyType.QUANTITY_MISMATCH,
        severity=severity,
        calculated=Decimal("0"),
        actual=Decimal(difference),
        difference=Decimal(difference),
        description="test",
        price=Decimal(price) if price is not None else None,
    )


class TestResolveDiscrepancies:
    def test_matching_holdings_have_no_discrepancies(self):
        result = resolve_discrepancies(_calculated("100"), _position("100", "10"))
        assert not result.has_discrepancies
        assert result.resolution_suggestions == ()
        assert result.symbol == "AAPL"

    def test_small_quantity_mismatch_is_medium(self):
        result = resolve_discrepancies(_calculated("100"), _position("105", "0"))

        mismatch = result.discrepancies[0]
        assert mismatch.type == DiscrepancyType.QUANTITY_MISMATCH
        assert mismatch.difference == Decimal("5")
        assert mismatch.severity == Severity.MEDIUM
        assert result.resolution_suggestions[0].action == "Add missing transactions"
        assert result.resolution_suggestions[0].type == SuggestionType.MISSING_TRANSACTION

    def test_large_quantity_mismatch_is_high(self):
        result = resolve_discrepancies(_calculated("50"), _position("70", "0"))
        assert result.discrepancies[0].severity == Severity.HIGH

    def test_negative_difference_suggests_disposals(self):
        result = resolve_discrepancies(_calculated("110"), _position("100", "0"))
        mismatch = result.discrepancies[0]
        assert mismatch.difference == Decimal("-10")
        assert result.resolution_suggestions[0].action == "Add missing disposals"

    def test_mismatch_within_tolerance_ignored(self):
        result = resolve_discrepancies(_calculated("100"), _position("100.0005", "0"))
        assert not result.has_discrepancies

    def test_market_value_inconsistency(self):
        result = resolve_discrepancies(
            _calculated("100"), _position("100", "10", market_value="1100")
        )

        error = result.discrepancies[0]
        assert error.type == DiscrepancyType.MATHEMATICAL_ERROR
        assert error.difference == Decimal("100")
        assert error.severity == Severity.HIGH
        assert result.resolution_suggestions[0].type == SuggestionType.VERIFY_DATA

    def test_small_market_value_gap_is_low(self):
        result = resolve_discrepancies(
            _calculated("1000"), _position("1000", "10", market_value="10005")
        )
        assert result.discrepancies[0].severity == Severity.LOW

    def test_market_value_within_one_dollar_ignored(self):
        result = resolve_discrepancies(
            _calculated("100"), _position("100", "10", market_value="1000.99")
        )
        assert not result.has_discrepancies

    def test_market_value_without_price_not_checked(self):
        result = resolve_discrepancies(
            _calculated("100"), _position("100", "0", market_value="1500")
        )
        assert not result.has_discrepancies

    def test_integer_ratio_flags_corporate_action(self):
        result = resolve_discrepancies(_calculated("100"), _position("200", "0"))

        types = [d.type for d in result.discrepancies]
        assert types == [DiscrepancyType.QUANTITY_MISMATCH, DiscrepancyType.CORPORATE_ACTION_NEEDED]
        assert "split" in result.discrepancies[1].description
        assert result.resolution_suggestions[1].action == "Record corporate action"

    def test_skipped_split_flags_corporate_action(self):
        calculated = calculate_holdings_at_date(
            [make_split(date(2023, 1, 1), "20"), make_buy(date(2023, 2, 1), "10", "1")],
            date(2023, 12, 31),
        )
        result = resolve_discrepancies(calculated, _position("10", "0"))
        assert [d.type for d in result.discrepancies] == [DiscrepancyType.CORPORATE_ACTION_NEEDED]

    def test_missing_records_rejected(self):
        with pytest.raises(ReconciliationInputError):
            resolve_discrepancies(None, _position("1"))
        with pytest.raises(ReconciliationInputError):
            resolve_discrepancies(_calculated("1"), None)

    def test_non_numeric_quantity_rejected(self):
        bad = SnapshotPosition(symbol="AAPL", quantity="ten", market_value=Decimal("0"), price=Decimal("0"))
        with pytest.raises(ReconciliationInputError, match="quantity"):
            resolve_discrepancies(_calculated("1"), bad)

    def test_idempotent(self):
        first = resolve_discrepancies(_calculated("100"), _position("130", "5"))
        second = resolve_discrepancies(_calculated("100"), _position("130", "5"))
        assert first == second


class TestDetectQuantityDiscrepancy:
    @pytest.mark.parametrize(
        ("calculated", "actual", "severity"),
        [
            ("96", "100", Severity.LOW),
            ("90", "100", Severity.MEDIUM),
            ("70", "100", Severity.HIGH),
            ("40", "100", Severity.CRITICAL),
        ],
    )
    def test_severity_ladder(self, calculated, actual, severity):
        discrepancy = detect_quantity_discrepancy(Decimal(calculated), Decimal(actual), "aapl")
        assert discrepancy.severity == severity
        assert discrepancy.symbol == "AAPL"

    def test_zero_actual_counts_as_full_difference(self):
        discrepancy = detect_quantity_discrepancy(Decimal("5"), Decimal("0"))
        assert discrepancy.percent_difference == Decimal("100")
        assert discrepancy.severity == Severity.CRITICAL

    def test_within_tolerance(self):
        assert detect_quantity_discrepancy(Decimal("5"), Decimal("5.0001")) is None


class TestSuggestResolutions:
    def test_missing_transaction_direction(self):
        discrepancy = Discrepancy(
            type=DiscrepancyType.MISSING_TRANSACTION,
            severity=Severity.HIGH,
            calculated=Decimal("0"),
            actual=Decimal("-3"),
            difference=Decimal("-3"),
            description="Missing sale",
            direction=TransactionCategory.DISPOSITION,
        )
        [suggestion] = suggest_resolutions([discrepancy])
        assert suggestion.action == "Add missing disposal"
        assert suggestion.priority == Severity.HIGH


class TestPrioritizeDiscrepancies:
    def test_severity_then_financial_impact(self):
        low = _discrepancy(Severity.LOW, "1000", "100")
        high_small = _discrepancy(Severity.HIGH, "1", "10")
        high_large = _discrepancy(Severity.HIGH, "-50", "10")
        critical = _discrepancy(Severity.CRITICAL, "1", None)

        ordered = prioritize_discrepancies([low, high_small, critical, high_large])
        assert ordered == [critical, high_large, high_small, low]

    def test_financial_impact_without_price_is_zero(self):
        assert _discrepancy(Severity.LOW, "10", None).financial_impact == Decimal("0")


class TestFindMissingTransactions:
    def test_unexplained_changes_reported(self):
        previous = make_snapshot(date(2024, 1, 1), ("AAPL", "10", "1000"), ("MSFT", "5", "500"))
        current = make_snapshot(date(2024, 2, 1), ("AAPL", "15", "1500"), ("GOOG", "3", "300"))
        changes = analyze_snapshot_changes(previous, current)

        missing = find_missing_transactions([make_buy(date(2024, 1, 15), "5", "100")], changes)

        by_symbol = {d.symbol: d for d in missing}
        assert set(by_symbol) == {"MSFT", "GOOG"}
        assert by_symbol["MSFT"].direction == TransactionCategory.DISPOSITION
        assert by_symbol["MSFT"].difference == Decimal("-5")
        assert by_symbol["GOOG"].direction == TransactionCategory.ACQUISITION
        assert by_symbol["GOOG"].estimated_date == date(2024, 2, 1)


class TestFlagInconsistencies:
    def test_amount_mismatch_flagged(self):
        txs = [
            make_buy(date(2024, 1, 1), "10", "10", amount="100"),
            make_buy(date(2024, 1, 2), "10", "10", amount="150", tx_id="bad"),
        ]
        [flag] = flag_inconsistencies(txs, [])
        assert flag.type == DiscrepancyType.MATHEMATICAL_ERROR
        assert flag.transaction_id == "bad"
        assert flag.difference == Decimal("50")
        assert flag.severity == Severity.HIGH

    def test_unexplained_snapshot_change_flagged(self):
        snapshots = [
            make_snapshot(date(2024, 2, 1), ("AAPL", "18", "0")),
            make_snapshot(date(2024, 1, 1), ("AAPL", "10", "0")),
        ]
        txs = [
            make_buy(date(2024, 1, 1), "100", "1"),
            make_buy(date(2024, 1, 10), "5", "1"),
        ]

        [flag] = flag_inconsistencies(txs, snapshots)

        assert flag.type == DiscrepancyType.MISSING_TRANSACTION
        assert flag.difference == Decimal("3")
        assert flag.direction == TransactionCategory.ACQUISITION
        assert flag.period_start == date(2024, 1, 1)
        assert flag.period_end == date(2024, 2, 1)

    def test_explained_change_not_flagged(self):
        snapshots = [
            make_snapshot(date(2024, 1, 1), ("AAPL", "10", "0")),
            make_snapshot(date(2024, 2, 1), ("AAPL", "7", "0")),
        ]
        txs = [make_sell(date(2024, 2, 1), "3", "1")]
        assert flag_inconsistencies(txs, snapshots) == []


class TestReconcilePortfolio:
    def test_reconciles_every_position(self):
        txs = [
            make_buy(date(2023, 1, 1), "10", "100", symbol="AAPL"),
            make_buy(date(2023, 1, 1), "5", "20", symbol="MSFT"),
        ]
        snapshot = make_snapshot(
            date(2024, 1, 1),
            ("aapl", "10", "1500", "150"),
            ("MSFT", "8", "200", "25"),
            ("NEW", "1", "10", "10"),
        )

        result = reconcile_portfolio(txs, snapshot)

        assert result.as_of == date(2024, 1, 1)
        assert result.total_positions == 3
        assert result.with_acquisition_dates == 2
        by_symbol = {r.symbol: r for r in result.results}
        assert not by_symbol["AAPL"].reconciliation.has_discrepancies
        assert by_symbol["MSFT"].reconciliation.discrepancies[0].difference == Decimal("3")
        assert by_symbol["NEW"].has_acquisition_date is False
        assert result.with_discrepancies == 2

    def test_requires_snapshot(self):
        with pytest.raises(ReconciliationInputError):
            reconcile_portfolio([], None)


class TestReconcileLots:
    def test_lot_ledger_against_snapshot(self):
        ledger = LotLedger("acct-1", "AAPL")
        ledger.acquire(Decimal("10"), Decimal("100"), date(2023, 1, 1))
        ledger.acquire(Decimal("10"), Decimal("200"), date(2023, 2, 1))
        ledger.dispose(Decimal("5"), TrackingMethod.FIFO)

        holdings = holdings_from_ledger(ledger)
        assert holdings.quantity == Decimal("15")
        assert holdings.total_cost_basis == Decimal("250")
        assert holdings.earliest_acquisition_date == date(2023, 1, 1)

        result = reconcile_lots(ledger, _position("15", "20"))
        assert not result.has_discrepancies

        result = reconcile_lots(ledger, _position("20", "20"))
        assert result.discrepancies[0].difference == Decimal("5")
