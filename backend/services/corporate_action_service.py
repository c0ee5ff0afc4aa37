"""Corporate action processing: split ratio detection and share rescaling.

A split transaction's quantity is the post-event total share count, so
the ratio is recovered from the running pre-event quantity. Only share
counts rescale; lot cost basis is left untouched so cost per share moves
implicitly.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal

from services.ledger_protocol import (
    AdjustmentKind,
    CorporateActionKind,
    Lot,
    LotAdjustment,
    Transaction,
    TransactionCategory,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SplitOutcome:
    """Result of processing one corporate action transaction."""

    kind: CorporateActionKind
    pre_quantity: Decimal
    post_quantity: Decimal
    ratio: Decimal | None
    warning: str | None = None

    @property
    def skipped(self) -> bool:
        return self.ratio is None


def detect_split_ratio(
    transaction: Transaction, pre_quantity: Decimal
) -> Decimal | None:
    """Recover the split ratio from a post-event share count.

    Forward splits return ``post / pre`` (applied by multiplying); reverse
    splits return ``pre / post`` (applied by dividing), so both land on the
    post-event total. Returns None when the pre-event quantity or the
    post-event quantity is not positive.
    """
    post_quantity = transaction.quantity
    if pre_quantity <= 0 or post_quantity <= 0:
        return None
    if transaction.corporate_action == CorporateActionKind.REVERSE_SPLIT:
        return pre_quantity / post_quantity
    return post_quantity / pre_quantity


def apply_split_to_quantity(
    quantity: Decimal, ratio: Decimal, kind: CorporateActionKind
) -> Decimal:
    """Rescale a share count: multiply for a split, divide for a reverse split."""
    if kind == CorporateActionKind.REVERSE_SPLIT:
        return quantity / ratio
    return quantity * ratio


def describe_split(ratio: Decimal, kind: CorporateActionKind) -> str:
    if kind == CorporateActionKind.REVERSE_SPLIT:
        return f"1:{ratio.normalize():f} reverse split"
    return f"{ratio.normalize():f}:1 split"


def apply_split_to_lots(
    lots: list[Lot],
    ratio: Decimal,
    kind: CorporateActionKind,
    effective_date: date | None = None,
) -> list[Lot]:
    """Return new lots with open-lot share counts rescaled.

    Closed lots are copied unchanged. Cost basis is never altered.
    """
    adjustment = LotAdjustment(
        kind=AdjustmentKind(kind.value),
        effective_date=effective_date,
        ratio=ratio,
        description=describe_split(ratio, kind),
    )
    result = []
    for lot in lots:
        if not lot.is_open:
            result.append(replace(lot, adjustments=list(lot.adjustments), disposals=list(lot.disposals)))
            continue
        result.append(
            replace(
                lot,
                original_quantity=apply_split_to_quantity(lot.original_quantity, ratio, kind),
                remaining_quantity=apply_split_to_quantity(lot.remaining_quantity, ratio, kind),
                adjustments=[*lot.adjustments, adjustment],
                disposals=list(lot.disposals),
            )
        )
    return result


class CorporateActionProcessor:
    """Turns corporate action transactions into split outcomes."""

    @staticmethod
    def process(transaction: Transaction, pre_quantity: Decimal) -> SplitOutcome:
        """Compute the split outcome for a running pre-event quantity.

        A non-positive pre-event quantity cannot be resolved from the data:
        the action is skipped with a warning instead of failing the replay.
        """
        if transaction.category != TransactionCategory.CORPORATE_ACTION:
            raise ValueError(
                f"Not a corporate action transaction: {transaction.category.value}"
            )
        kind = transaction.corporate_action
        ratio = detect_split_ratio(transaction, pre_quantity)
        if ratio is None:
            warning = (
                f"{kind.value} on {transaction.trade_date} for {transaction.symbol} "
                f"skipped: pre-event quantity {pre_quantity}, "
                f"post-event quantity {transaction.quantity}"
            )
            logger.warning(warning)
            return SplitOutcome(
                kind=kind,
                pre_quantity=pre_quantity,
                post_quantity=pre_quantity,
                ratio=None,
                warning=warning,
            )

        post_quantity = apply_split_to_quantity(pre_quantity, ratio, kind)
        logger.info(
            "Applied %s to %s: %s -> %s shares",
            describe_split(ratio, kind),
            transaction.symbol,
            pre_quantity,
            post_quantity,
        )
        return SplitOutcome(
            kind=kind,
            pre_quantity=pre_quantity,
            post_quantity=post_quantity,
            ratio=ratio,
        )
