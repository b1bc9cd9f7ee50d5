"""Exception hierarchy for the loan ledger.

Every error is local to a single operation and leaves prior state untouched.
"""


class LedgerError(Exception):
    """Base exception for all loan ledger errors."""


class ValidationError(LedgerError, ValueError):
    """Raised when an input has a bad shape or is out of range."""


class InvalidAmountError(ValidationError):
    """Raised when a payment amount is non-positive or exceeds what is due."""


class PenaltyNotAllowedError(ValidationError):
    """Raised when a penalty is charged on an installment that is not overdue."""


class StateConflictError(LedgerError):
    """Raised when an operation conflicts with the current loan state."""


class AlreadyPaidError(StateConflictError):
    """Raised when paying an installment that is already PAID."""


class LoanHasPaymentsError(StateConflictError):
    """Raised when editing, regenerating, cancelling or deleting a loan with payments."""


class NotFoundError(LedgerError, LookupError):
    """Raised when a referenced entity does not exist."""


class LoanNotFoundError(NotFoundError):
    """Raised when a loan id does not resolve."""


class InstallmentNotFoundError(NotFoundError):
    """Raised when an installment id does not resolve within its loan."""


class CollectorNotFoundError(NotFoundError):
    """Raised when a collector id is missing or unknown."""
