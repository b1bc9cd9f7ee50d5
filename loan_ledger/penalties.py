"""
Penalty (mora) policy for late installments.

Penalties are entered by the operator at payment time. This module only
suggests a figure and validates what the operator typed; it never accrues or
compounds anything across periods.
"""

from decimal import Decimal
from datetime import date
from typing import Optional

from .amortization import Installment
from .currency import Money
from .exceptions import ValidationError, PenaltyNotAllowedError


def days_overdue(installment: Installment, reference_date: date) -> int:
    """Days an unpaid installment is past its due date (0 if not overdue)"""
    if not installment.is_overdue(reference_date):
        return 0
    return (reference_date - installment.date).days


def compute_penalty(installment: Installment, reference_date: date,
                    default_penalty_rate: Decimal) -> Money:
    """
    Suggested penalty for an installment.

    ``default_penalty_rate`` percent of the installment payment when the
    installment is overdue and unpaid, zero otherwise. The result is a
    placeholder for the operator, not a cap.
    """
    if not installment.is_overdue(reference_date):
        return Money.zero(installment.payment.currency)
    return installment.payment * (Decimal(default_penalty_rate) / Decimal('100'))


def validate_penalty(installment: Installment, reference_date: date,
                     penalty: Optional[Money], force: bool = False) -> Money:
    """
    Check an operator-entered penalty against the installment.

    Raises:
        ValidationError: penalty is negative or in another currency
        PenaltyNotAllowedError: positive penalty on an installment that is
            not overdue at ``reference_date`` and ``force`` is not set
    """
    currency = installment.payment.currency
    if penalty is None:
        return Money.zero(currency)
    if penalty.currency != currency:
        raise ValidationError(
            f"Penalty currency {penalty.currency.code} does not match loan currency {currency.code}"
        )
    if penalty.is_negative():
        raise ValidationError("Penalty amount cannot be negative")
    if penalty.is_positive() and not force and not installment.is_overdue(reference_date):
        raise PenaltyNotAllowedError(
            f"Installment {installment.number} is not overdue on {reference_date.isoformat()}"
        )
    return penalty
