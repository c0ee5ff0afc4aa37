"""Shared API helpers for route handlers.

Error translation and response builders used across the lot and
reconciliation routers.
"""

from fastapi import HTTPException

from services.exceptions import InsufficientLotsError
from services.holdings_calculator import CalculatedHoldings
from services.lot_ledger_service import DisposalResult
from utils.ticker import normalize_symbol


def require_symbol(symbol: str) -> str:
    """Normalize a path symbol or raise 400.

    Raises:
        HTTPException: 400 if the symbol is blank after normalization.
    """
    normalized = normalize_symbol(symbol)
    if not normalized:
        raise HTTPException(status_code=400, detail="Symbol must not be blank")
    return normalized


def ledger_http_error(error: ValueError) -> HTTPException:
    """Map a ledger error to the HTTP error the routers raise.

    Args:
        error: A LedgerError subclass or plain ValueError from a service.

    Returns:
        409 for insufficient lots, 400 for everything else.
    """
    if isinstance(error, InsufficientLotsError):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


def disposal_response_dict(result: DisposalResult) -> dict:
    """Build a DisposalResponse-compatible dict including derived totals."""
    return {
        "requested_quantity": result.requested_quantity,
        "method": result.method,
        "matches": [
            {
                "lot_id": m.lot_id,
                "acquisition_date": m.acquisition_date,
                "quantity": m.quantity,
                "cost_basis_removed": m.cost_basis_removed,
                "proceeds": m.proceeds,
                "realized_gain_loss": m.realized_gain_loss,
                "closed_lot": m.closed_lot,
            }
            for m in result.matches
        ],
        "matched_quantity": result.matched_quantity,
        "unmatched_quantity": result.unmatched_quantity,
        "insufficient": result.insufficient,
        "cost_basis_removed": result.cost_basis_removed,
        "proceeds": result.proceeds,
        "realized_gain_loss": result.realized_gain_loss,
        "disposal_group_id": result.disposal_group_id,
    }


def holdings_response_dict(holdings: CalculatedHoldings) -> dict:
    """Build a CalculatedHoldingsResponse-compatible dict."""
    return {
        "quantity": holdings.quantity,
        "total_cost_basis": holdings.total_cost_basis,
        "average_cost_per_share": holdings.average_cost_per_share,
        "earliest_acquisition_date": holdings.earliest_acquisition_date,
        "applied_count": len(holdings.applied_transactions),
        "skipped_count": len(holdings.skipped_transactions),
        "warnings": list(holdings.warnings),
    }
