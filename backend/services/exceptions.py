"""Typed exception hierarchy for ledger and reconciliation errors.

All errors subclass ValueError so the API layer's ValueError -> HTTP 400
mapping covers them unless a router handles a subclass specifically.
"""

from decimal import Decimal


class LedgerError(ValueError):
    """Base exception for lot ledger errors.

    Carries the account and symbol so callers can identify the lot set.
    """

    def __init__(self, message: str, account: str = "", symbol: str = ""):
        self.account = account
        self.symbol = symbol
        super().__init__(message)


class LotSelectionError(LedgerError):
    """SPECIFIC_ID selection is missing, names unusable lots, or falls short."""

    pass


class InsufficientLotsError(LedgerError):
    """Open lots cannot cover a disposal and short positions are refused."""

    def __init__(
        self,
        message: str,
        account: str = "",
        symbol: str = "",
        unmatched_quantity: Decimal | None = None,
    ):
        self.unmatched_quantity = unmatched_quantity
        super().__init__(message, account, symbol)


class ReconciliationInputError(ValueError):
    """The calculated or actual record handed to reconciliation is unusable."""

    pass
