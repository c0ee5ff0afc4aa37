"""Holdings calculation and reconciliation API endpoints.

These endpoints are stateless: transactions and snapshots travel in the
request body and nothing is persisted.
"""

import logging
from decimal import Decimal

from fastapi import APIRouter, HTTPException

from api.helpers import holdings_response_dict
from config import settings
from schemas.reconciliation import (
    CalculatedHoldingsResponse,
    DiscrepancyResponse,
    HoldingsRequest,
    InterpolatedTransactionResponse,
    InterpolateRequest,
    PositionChangeResponse,
    QuantityChangeResponse,
    ReconcileRequest,
    ReconcileResponse,
    ReconciliationResultResponse,
    TickerChangeCandidateResponse,
    TickerChangesRequest,
    TickerChangesResponse,
    to_transactions,
)
from services.holdings_calculator import (
    CalculatedHoldings,
    HoldingsCalculator,
    calculate_holdings_at_date,
)
from services.interpolation_service import (
    GapDescriptor,
    InterpolationContext,
    generate_interpolated_transaction,
)
from services.reconciliation_service import (
    find_missing_transactions,
    flag_inconsistencies,
    prioritize_discrepancies,
    reconcile_portfolio,
)
from services.ticker_change_service import analyze_snapshot_changes
from utils.ticker import normalize_symbol

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reconciliation", tags=["reconciliation"])


@router.post("/holdings", response_model=dict[str, CalculatedHoldingsResponse])
def calculate_holdings(body: HoldingsRequest):
    """Replay transactions into holdings per symbol as of ``target_date``."""
    transactions = to_transactions(body.transactions)
    if body.symbol:
        symbol = normalize_symbol(body.symbol)
        holdings = {
            symbol: calculate_holdings_at_date(transactions, body.target_date, symbol=symbol)
        }
    else:
        holdings = HoldingsCalculator.calculate_all(transactions, body.target_date)
    return {symbol: holdings_response_dict(h) for symbol, h in holdings.items()}


@router.post("/reconcile", response_model=ReconcileResponse)
def reconcile(body: ReconcileRequest):
    """Reconcile every snapshot position against the transaction history."""
    transactions = to_transactions(body.transactions)
    snapshot = body.snapshot.to_snapshot()
    try:
        portfolio = reconcile_portfolio(
            transactions,
            snapshot,
            body.as_of,
            quantity_tolerance=settings.QUANTITY_TOLERANCE,
            market_value_tolerance=settings.MARKET_VALUE_TOLERANCE,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    snapshots = [s.to_snapshot() for s in body.previous_snapshots] + [snapshot]
    inconsistencies = flag_inconsistencies(
        transactions, snapshots, tolerance=settings.QUANTITY_TOLERANCE
    )
    all_discrepancies = [
        d for r in portfolio.results for d in r.reconciliation.discrepancies
    ] + inconsistencies

    return {
        "as_of": portfolio.as_of,
        "results": [
            {
                "symbol": r.symbol,
                "calculated": holdings_response_dict(r.calculated),
                "actual": {
                    "symbol": r.actual.symbol,
                    "quantity": r.actual.quantity,
                    "market_value": r.actual.market_value,
                    "price": r.actual.price,
                },
                "reconciliation": ReconciliationResultResponse.model_validate(r.reconciliation),
                "has_acquisition_date": r.has_acquisition_date,
                "earliest_acquisition_date": r.earliest_acquisition_date,
            }
            for r in portfolio.results
        ],
        "summary": {
            "total_positions": portfolio.total_positions,
            "with_acquisition_dates": portfolio.with_acquisition_dates,
            "with_discrepancies": portfolio.with_discrepancies,
        },
        "inconsistencies": [DiscrepancyResponse.model_validate(d) for d in inconsistencies],
        "prioritized": [
            DiscrepancyResponse.model_validate(d)
            for d in prioritize_discrepancies(all_discrepancies)
        ],
    }


@router.post("/interpolate", response_model=InterpolatedTransactionResponse)
def interpolate(body: InterpolateRequest):
    """Propose an unconfirmed placeholder transaction closing a quantity gap."""
    symbol = normalize_symbol(body.symbol)
    if not symbol:
        raise HTTPException(status_code=400, detail="Symbol must not be blank")
    context = InterpolationContext(
        symbol=symbol,
        calculated=CalculatedHoldings(
            quantity=body.calculated_quantity,
            total_cost_basis=Decimal("0"),
            average_cost_per_share=Decimal("0"),
        ),
        actual=body.actual.to_position(),
    )
    gap = GapDescriptor(estimated_date=body.estimated_date, confidence=body.confidence)
    return InterpolatedTransactionResponse.model_validate(
        generate_interpolated_transaction(gap, context)
    )


@router.post("/ticker-changes", response_model=TickerChangesResponse)
def detect_ticker_changes(body: TickerChangesRequest):
    """Compare two snapshots and suggest ticker changes.

    Suggestions are advisory; lots move only through the confirm endpoint.
    """
    changes = analyze_snapshot_changes(
        body.previous.to_snapshot() if body.previous else None,
        body.current.to_snapshot(),
        tolerance=settings.TICKER_CHANGE_TOLERANCE,
    )
    missing = []
    if body.transactions:
        missing = find_missing_transactions(
            to_transactions(body.transactions), changes, tolerance=settings.QUANTITY_TOLERANCE
        )
    return {
        "sold": [PositionChangeResponse.model_validate(c) for c in changes.sold],
        "acquired": [PositionChangeResponse.model_validate(c) for c in changes.acquired],
        "quantity_changes": [
            QuantityChangeResponse.model_validate(c) for c in changes.quantity_changes
        ],
        "possible_ticker_changes": [
            TickerChangeCandidateResponse.model_validate(c)
            for c in changes.possible_ticker_changes
        ],
        "missing_transactions": [DiscrepancyResponse.model_validate(d) for d in missing],
    }
