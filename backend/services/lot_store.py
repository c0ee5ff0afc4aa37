"""Lot Store adapters.

``InMemoryLotStore`` backs tests and embedded use; ``SqlLotStore`` keeps
each account+symbol lot array as HoldingLot rows with their disposal and
adjustment children. Both hand out copies, so a ledger mutating its lots
never touches stored state until it is saved.
"""

import copy
import logging
from datetime import timezone

from sqlalchemy.orm import Session, selectinload

from models import HoldingLot, LotAdjustment, LotDisposal
from services.ledger_protocol import (
    AdjustmentKind,
    Lot,
    LotAdjustment as LotAdjustmentRecord,
    LotDisposal as LotDisposalRecord,
    LotStatus,
    TrackingMethod,
)

logger = logging.getLogger(__name__)


class InMemoryLotStore:
    """Dict-backed lot store."""

    def __init__(self):
        self._lots: dict[str, list[Lot]] = {}

    def get(self, key: str) -> list[Lot]:
        return copy.deepcopy(self._lots.get(key, []))

    def save(self, key: str, lots: list[Lot]) -> None:
        self._lots[key] = copy.deepcopy(list(lots))

    def delete(self, key: str) -> None:
        self._lots.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(key for key, lots in self._lots.items() if lots)


def _to_record(row: HoldingLot) -> Lot:
    created_at = row.created_at
    if created_at is not None and created_at.tzinfo is None:
        # SQLite drops tzinfo; stored values are UTC
        created_at = created_at.replace(tzinfo=timezone.utc)
    lot = Lot(
        account=row.account,
        symbol=row.symbol,
        acquisition_date=row.acquisition_date,
        original_quantity=row.original_quantity,
        remaining_quantity=row.remaining_quantity,
        cost_basis=row.cost_basis,
        id=row.id,
        status=LotStatus(row.status),
        is_transaction_derived=bool(row.is_transaction_derived),
        source_transaction_id=row.source_transaction_id,
        adjustments=[
            LotAdjustmentRecord(
                kind=AdjustmentKind(adj.kind),
                effective_date=adj.effective_date,
                ratio=adj.ratio,
                description=adj.description,
            )
            for adj in row.adjustments
        ],
        disposals=[
            LotDisposalRecord(
                disposal_date=disp.disposal_date,
                quantity=disp.quantity,
                cost_basis_removed=disp.cost_basis_removed,
                method=TrackingMethod(disp.method),
                proceeds=disp.proceeds,
                disposal_group_id=disp.disposal_group_id,
            )
            for disp in row.disposals
        ],
    )
    if created_at is not None:
        lot.created_at = created_at
    return lot


def _to_row(key: str, lot: Lot, sequence: int) -> HoldingLot:
    row = HoldingLot(
        id=lot.id,
        store_key=key,
        account=lot.account,
        symbol=lot.symbol,
        acquisition_date=lot.acquisition_date,
        original_quantity=lot.original_quantity,
        remaining_quantity=lot.remaining_quantity,
        cost_basis=lot.cost_basis,
        status=lot.status.value,
        is_transaction_derived=lot.is_transaction_derived,
        source_transaction_id=lot.source_transaction_id,
        sequence=sequence,
        created_at=lot.created_at,
    )
    row.adjustments = [
        LotAdjustment(
            kind=adj.kind.value,
            effective_date=adj.effective_date,
            ratio=adj.ratio,
            description=adj.description,
            sequence=i,
        )
        for i, adj in enumerate(lot.adjustments)
    ]
    row.disposals = [
        LotDisposal(
            disposal_date=disp.disposal_date,
            quantity=disp.quantity,
            cost_basis_removed=disp.cost_basis_removed,
            proceeds=disp.proceeds,
            method=disp.method.value,
            disposal_group_id=disp.disposal_group_id,
            sequence=i,
        )
        for i, disp in enumerate(lot.disposals)
    ]
    return row


class SqlLotStore:
    """Lot store over a SQLAlchemy session.

    Writes are flushed, not committed; the caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def _rows(self, key: str) -> list[HoldingLot]:
        return (
            self.db.query(HoldingLot)
            .options(selectinload(HoldingLot.disposals), selectinload(HoldingLot.adjustments))
            .filter(HoldingLot.store_key == key)
            .order_by(HoldingLot.sequence)
            .all()
        )

    def get(self, key: str) -> list[Lot]:
        return [_to_record(row) for row in self._rows(key)]

    def save(self, key: str, lots: list[Lot]) -> None:
        """Replace every lot stored under ``key`` with ``lots``."""
        self.delete(key)
        for sequence, lot in enumerate(lots):
            self.db.add(_to_row(key, lot, sequence))
        self.db.flush()
        logger.debug("Saved %d lots under %s", len(lots), key)

    def delete(self, key: str) -> None:
        for row in self._rows(key):
            self.db.delete(row)
        self.db.flush()

    def keys(self) -> list[str]:
        rows = self.db.query(HoldingLot.store_key).distinct().order_by(HoldingLot.store_key).all()
        return [row[0] for row in rows]
