"""
Error Taxonomy

Every failure the ledger or the projection engine reports is one of
these. Callers can branch on the class or on the short `code`.

IMPORTANT: Raising any of these inside a storage unit of work discards
the whole unit. Nothing is partially applied.
"""


class WalletwiseError(Exception):
    """Base exception for all domain errors."""

    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(WalletwiseError):
    """Wallet, transaction, planned expense or income source missing or inactive."""

    code = "not_found"


class InvalidInputError(WalletwiseError):
    """Non-positive amount, same-wallet transfer, malformed date or id."""

    code = "invalid_input"


class InsufficientFundsError(WalletwiseError):
    """Transfer (plus fee) exceeds the source wallet balance."""

    code = "insufficient_funds"

    def __init__(self, message: str, available=None, required=None):
        super().__init__(message)
        self.available = available
        self.required = required


class InvalidLinkError(WalletwiseError):
    """Planned-expense link violates kind, status or remaining-budget rules."""

    code = "invalid_link"


class InvalidRangeError(WalletwiseError):
    """Target date lies before today."""

    code = "invalid_range"


class UnavailableError(WalletwiseError):
    """Storage or text-generation collaborator unreachable or timed out."""

    code = "unavailable"


class StorageError(WalletwiseError):
    """Backend failure while reading or writing ledger state."""

    code = "storage_error"
