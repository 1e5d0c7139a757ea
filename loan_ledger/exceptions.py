"""Exception hierarchy for the loan ledger."""


class LoanLedgerError(Exception):
    """Base exception for all loan ledger errors."""


class InvalidArgumentError(LoanLedgerError, ValueError):
    """Raised when an operation receives an unacceptable value (e.g. a non-positive payment)."""


class InvalidStateError(LoanLedgerError):
    """Raised when an entity is in the wrong state for the requested operation."""


class ClientNotEligibleError(InvalidStateError):
    """Raised when a client may not apply for a loan."""


class LoanNotFoundError(LoanLedgerError, LookupError):
    """Raised when a referenced loan does not exist."""


class PenaltyNotFoundError(LoanLedgerError, LookupError):
    """Raised when a referenced penalty does not exist."""


class ConcurrentModificationError(LoanLedgerError):
    """Raised when a loan was changed by someone else since it was loaded."""
