"""
Ledger Error Taxonomy

Domain errors raised by the ledger engine. The HTTP adapter maps these to
status codes; batch jobs catch them per loan and keep going.
"""


class LedgerError(Exception):
    """Base exception for all ledger errors."""


class NotFoundError(LedgerError):
    """Raised when a referenced loan, payment or penalty does not exist."""


class ConflictError(LedgerError):
    """Raised when an operation conflicts with the current ledger state."""


class DuplicateRecordError(ConflictError):
    """Raised by create-only inserts when the record key is already taken."""


class ValidationError(LedgerError):
    """Raised for non-positive amounts, malformed dates and similar input errors."""
