"""Lot management API endpoints."""

import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.helpers import disposal_response_dict, ledger_http_error, require_symbol
from database import get_db
from schemas.lot import (
    CorporateActionRequest,
    DisposalResponse,
    DisposeRequest,
    InterpolationConfirm,
    InterpolationConfirmResponse,
    LotCreate,
    LotListResponse,
    LotResponse,
    LotSummaryResponse,
    SplitOutcomeResponse,
    TickerChangeConfirm,
    TrackingMethodResponse,
    TrackingMethodUpdate,
)
from services.interpolation_service import (
    InterpolatedTransaction,
    confirm_interpolated_transaction,
)
from services.ledger_protocol import Transaction, TransactionCategory, lot_store_key
from services.lot_ledger_service import LotLedgerService, LotSelection
from services.lot_store import SqlLotStore
from services.preference_service import PreferenceService
from services.ticker_change_service import TickerChangeCandidate, apply_ticker_change

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounts", tags=["lots"])
tracking_router = APIRouter(prefix="/api/lots", tags=["lots"])


@tracking_router.get("/tracking-method", response_model=TrackingMethodResponse)
def get_tracking_method(db: Session = Depends(get_db)):
    """Get the tracking method used when a disposal does not name one."""
    return {"method": PreferenceService.get_tracking_method(db)}


@tracking_router.put("/tracking-method", response_model=TrackingMethodResponse)
def set_tracking_method(body: TrackingMethodUpdate, db: Session = Depends(get_db)):
    """Change the tracking method for subsequent disposals."""
    method = PreferenceService.set_tracking_method(db, body.method)
    return {"method": method}


@router.get("/{account}/lots/{symbol}", response_model=LotListResponse)
def get_lots(
    account: str,
    symbol: str,
    include_closed: bool = Query(default=True),
    current_price: Decimal | None = Query(default=None, ge=0),
    db: Session = Depends(get_db),
):
    """Get the lots and summary for one account+symbol pair."""
    ledger = LotLedgerService.load(db, account, require_symbol(symbol))
    lots = ledger.lots if include_closed else ledger.open_lots
    return {
        "lots": [LotResponse.model_validate(lot) for lot in lots],
        "summary": LotSummaryResponse.model_validate(ledger.summary(current_price)),
    }


@router.post("/{account}/lots/{symbol}", response_model=LotResponse, status_code=201)
def create_lot(
    account: str,
    symbol: str,
    lot_data: LotCreate,
    db: Session = Depends(get_db),
):
    """Create a new manual lot."""
    try:
        lot = LotLedgerService.add_lot(
            db,
            account,
            require_symbol(symbol),
            lot_data.quantity,
            lot_data.cost_basis,
            lot_data.acquisition_date,
        )
        db.commit()
        return LotResponse.model_validate(lot)
    except ValueError as e:
        raise ledger_http_error(e)


@router.post("/{account}/lots/{symbol}/dispose", response_model=DisposalResponse)
def dispose_lots(
    account: str,
    symbol: str,
    body: DisposeRequest,
    db: Session = Depends(get_db),
):
    """Match a disposal against open lots.

    Uses the stored tracking method unless the body names one. Returns 409
    when open lots fall short and ``allow_short`` is false.
    """
    selections = [LotSelection(s.lot_id, s.quantity) for s in body.lot_selections]
    try:
        result = LotLedgerService.dispose(
            db,
            account,
            require_symbol(symbol),
            body.quantity,
            method=body.method,
            lot_selections=selections or None,
            disposal_date=body.disposal_date,
            price=body.price,
            allow_short=body.allow_short,
        )
        db.commit()
        return disposal_response_dict(result)
    except ValueError as e:
        db.rollback()
        raise ledger_http_error(e)


@router.post(
    "/{account}/lots/{symbol}/corporate-actions", response_model=SplitOutcomeResponse
)
def apply_corporate_action(
    account: str,
    symbol: str,
    body: CorporateActionRequest,
    db: Session = Depends(get_db),
):
    """Apply a split or reverse split to the stored open lots."""
    transaction = Transaction(
        trade_date=body.effective_date,
        symbol=require_symbol(symbol),
        category=TransactionCategory.CORPORATE_ACTION,
        action=body.kind.value,
        quantity=body.post_quantity,
        corporate_action=body.kind,
    )
    try:
        outcome = LotLedgerService.apply_corporate_action(db, account, transaction)
        db.commit()
        return SplitOutcomeResponse.model_validate(outcome)
    except ValueError as e:
        raise ledger_http_error(e)


@router.post(
    "/{account}/lots/{symbol}/interpolations/confirm",
    response_model=InterpolationConfirmResponse,
)
def confirm_interpolation(
    account: str,
    symbol: str,
    body: InterpolationConfirm,
    db: Session = Depends(get_db),
):
    """Confirm a suggested interpolated transaction and apply it to the lots."""
    if body.category == TransactionCategory.CORPORATE_ACTION:
        raise HTTPException(
            status_code=400, detail="Interpolated transactions are Buy or Sell only"
        )
    symbol = require_symbol(symbol)
    is_buy = body.category == TransactionCategory.ACQUISITION
    pending = InterpolatedTransaction(
        id=body.id,
        symbol=symbol,
        trade_date=body.trade_date,
        action="Buy" if is_buy else "Sell",
        category=body.category,
        quantity=body.quantity,
        price=body.price,
        amount=body.quantity * body.price,
        confidence=body.confidence,
    )
    method = body.method or PreferenceService.get_tracking_method(db)
    selections = [LotSelection(s.lot_id, s.quantity) for s in body.lot_selections]
    try:
        ledger = LotLedgerService.load(db, account, symbol)
        confirmation = confirm_interpolated_transaction(
            pending,
            ledger,
            method,
            lot_selections=selections or None,
            allow_short=body.allow_short,
        )
        if confirmation.disposal is not None and confirmation.disposal.error:
            raise HTTPException(status_code=400, detail=confirmation.disposal.error)
        LotLedgerService.save(db, ledger)
        db.commit()
    except ValueError as e:
        raise ledger_http_error(e)
    return {
        "transaction_id": confirmation.transaction.id,
        "lot": LotResponse.model_validate(confirmation.lot) if confirmation.lot else None,
        "disposal": (
            disposal_response_dict(confirmation.disposal) if confirmation.disposal else None
        ),
    }


@router.post("/{account}/ticker-changes/confirm", response_model=list[LotResponse])
def confirm_ticker_change(
    account: str,
    body: TickerChangeConfirm,
    db: Session = Depends(get_db),
):
    """Move lots from the old symbol to the new one after user confirmation.

    Returns 409 when the new symbol already has lots.
    """
    change = TickerChangeCandidate(
        old_symbol=require_symbol(body.old_symbol),
        new_symbol=require_symbol(body.new_symbol),
        quantity=Decimal("0"),
        new_quantity=Decimal("0"),
        effective_date=body.effective_date,
    )
    store = SqlLotStore(db)
    if store.get(lot_store_key(account, change.new_symbol)):
        raise HTTPException(
            status_code=409, detail=f"Lots already exist for {change.new_symbol}"
        )
    try:
        lots = apply_ticker_change(store, account, change)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise ledger_http_error(e)
    return [LotResponse.model_validate(lot) for lot in lots]
