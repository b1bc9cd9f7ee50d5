"""
Loan Module

The Loan aggregate (terms, schedule and running totals) and its pure state
transitions: origination, revision of terms, cancellation, archiving and
default. Payments are applied by the payments module; persistence lives in
the ledger module.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .amortization import (
    AmortizationType, Frequency, Installment, RateBasis,
    generate_schedule, total_interest
)
from .currency import Money, Currency
from .exceptions import ValidationError, StateConflictError, LoanHasPaymentsError, InstallmentNotFoundError
from .storage import StorageRecord


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "ACTIVE"          # Repaying
    PAID = "PAID"              # Every installment paid
    DEFAULTED = "DEFAULTED"    # Set by overdue aging outside the payment engine
    CANCELLED = "CANCELLED"    # Voided before any payment


@dataclass
class Loan(StorageRecord):
    """Loan with its repayment schedule and aggregate totals"""
    client_id: str
    amount: Money                       # Principal, including financed closing costs
    rate: Decimal                       # Percent, or absolute amount for FIXED_* types
    term: int
    frequency: Frequency
    start_date: date
    amortization_type: AmortizationType = AmortizationType.FRENCH
    rate_basis: RateBasis = RateBasis.ANNUAL
    schedule: List[Installment] = field(default_factory=list)
    total_interest: Optional[Money] = None
    total_paid: Optional[Money] = None  # Principal + interest collected, no penalties
    status: LoanStatus = LoanStatus.ACTIVE
    archived: bool = False
    closing_costs: Optional[Money] = None

    def __post_init__(self):
        zero = Money.zero(self.amount.currency)
        if self.total_interest is None:
            self.total_interest = total_interest(self.schedule, self.amount.currency)
        if self.total_paid is None:
            self.total_paid = zero
        if self.closing_costs is None:
            self.closing_costs = zero

    @property
    def currency(self) -> Currency:
        return self.amount.currency

    @property
    def has_payments(self) -> bool:
        """True once anything has been collected on any installment"""
        return self.total_paid.is_positive() or any(
            inst.is_paid or inst.paid_amount.is_positive() for inst in self.schedule
        )

    @property
    def is_paid_off(self) -> bool:
        return bool(self.schedule) and all(inst.is_paid for inst in self.schedule)

    @property
    def progress(self) -> int:
        """Percentage of installments paid, 0-100"""
        if not self.schedule:
            return 0
        paid = sum(1 for inst in self.schedule if inst.is_paid)
        return round(paid * 100 / len(self.schedule))

    @property
    def next_installment(self) -> Optional[Installment]:
        """First installment not yet paid"""
        return next((inst for inst in self.schedule if not inst.is_paid), None)

    @property
    def outstanding_amount(self) -> Money:
        """Everything still due on the schedule"""
        return Money.sum((inst.amount_due for inst in self.schedule), self.currency)

    def overdue_count(self, as_of: date) -> int:
        """Number of unpaid installments past due at ``as_of``"""
        return sum(1 for inst in self.schedule if inst.is_overdue(as_of))

    def get_installment(self, installment_id: str) -> Installment:
        for inst in self.schedule:
            if inst.id == installment_id:
                return inst
        raise InstallmentNotFoundError(f"Installment {installment_id} not found in loan {self.id}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert loan to dictionary"""
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'client_id': self.client_id,
            'currency': self.currency.code,
            'amount': str(self.amount.amount),
            'rate': str(self.rate),
            'term': self.term,
            'frequency': self.frequency.value,
            'start_date': self.start_date.isoformat(),
            'amortization_type': self.amortization_type.value,
            'rate_basis': self.rate_basis.value,
            'schedule': [inst.to_dict() for inst in self.schedule],
            'total_interest': str(self.total_interest.amount),
            'total_paid': str(self.total_paid.amount),
            'status': self.status.value,
            'archived': self.archived,
            'closing_costs': str(self.closing_costs.amount),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        """Convert dictionary to loan"""
        currency = Currency[data['currency']]

        def money(key: str) -> Money:
            return Money(Decimal(data[key]), currency)

        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            client_id=data['client_id'],
            amount=money('amount'),
            rate=Decimal(data['rate']),
            term=data['term'],
            frequency=Frequency(data['frequency']),
            start_date=date.fromisoformat(data['start_date']),
            amortization_type=AmortizationType(data['amortization_type']),
            rate_basis=RateBasis(data['rate_basis']),
            schedule=[Installment.from_dict(inst, currency) for inst in data['schedule']],
            total_interest=money('total_interest'),
            total_paid=money('total_paid'),
            status=LoanStatus(data['status']),
            archived=data.get('archived', False),
            closing_costs=money('closing_costs'),
        )


@dataclass
class ReviseLoanTerms:
    """Command replacing the terms (and therefore the schedule) of an unpaid loan"""
    amount: Money
    rate: Decimal
    term: int
    frequency: Frequency
    start_date: date
    amortization_type: Optional[AmortizationType] = None  # Keep current when None
    closing_costs: Optional[Money] = None


def _build_schedule(amount: Money, rate: Decimal, term: int, frequency: Frequency,
                    start_date: date, amortization_type: AmortizationType,
                    rate_basis: RateBasis) -> List[Installment]:
    if rate is None or Decimal(rate) < 0:
        raise ValidationError("Interest rate cannot be negative")
    if term is None or term < 1:
        raise ValidationError("Term must be at least 1 installment")
    if not amount.is_positive():
        raise ValidationError("Loan amount must be greater than 0")

    schedule = generate_schedule(amount, rate, term, frequency, start_date, amortization_type, rate_basis)
    if not schedule:
        raise ValidationError(
            f"Cannot build a {amortization_type.value} schedule for "
            f"{amount.to_string()} at {rate} over {term} installments"
        )
    return schedule


def originate_loan(
    client_id: str,
    amount: Money,
    rate: Decimal,
    term: int,
    frequency: Frequency,
    start_date: date,
    amortization_type: AmortizationType = AmortizationType.FRENCH,
    rate_basis: RateBasis = RateBasis.ANNUAL,
    closing_costs: Optional[Money] = None,
    loan_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> Loan:
    """
    Create a new ACTIVE loan with a freshly generated schedule

    Financed closing costs are added to the principal before the schedule is
    built.

    Raises:
        ValidationError: missing client, non-positive amount, negative rate,
            term below 1, or inputs that produce no schedule
    """
    if not client_id:
        raise ValidationError("A client is required")
    if closing_costs is not None and closing_costs.is_negative():
        raise ValidationError("Closing costs cannot be negative")

    principal = amount + closing_costs if closing_costs is not None else amount
    schedule = _build_schedule(principal, rate, term, frequency, start_date, amortization_type, rate_basis)
    now = now or datetime.now(timezone.utc)

    return Loan(
        id=loan_id or str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        client_id=client_id,
        amount=principal,
        rate=Decimal(rate),
        term=term,
        frequency=frequency,
        start_date=start_date,
        amortization_type=amortization_type,
        rate_basis=rate_basis,
        schedule=schedule,
        closing_costs=closing_costs,
    )


def ensure_no_payments(loan: Loan, action: str) -> None:
    """Raise LoanHasPaymentsError if anything was collected on the loan"""
    if loan.has_payments:
        raise LoanHasPaymentsError(f"Cannot {action} loan {loan.id}: it already has payments recorded")


def revise_terms(loan: Loan, command: ReviseLoanTerms, now: Optional[datetime] = None) -> Loan:
    """
    Regenerate an unpaid loan's schedule from new terms

    The loan keeps its id, client and rate basis. Loans with any payment are
    rejected outright; their totals are never reset.
    """
    ensure_no_payments(loan, "revise terms of")
    if loan.status != LoanStatus.ACTIVE:
        raise StateConflictError(f"Cannot revise terms of a {loan.status.value} loan")

    amortization_type = command.amortization_type or loan.amortization_type
    principal = command.amount + command.closing_costs if command.closing_costs is not None else command.amount
    schedule = _build_schedule(
        principal, command.rate, command.term, command.frequency,
        command.start_date, amortization_type, loan.rate_basis
    )

    return replace(
        loan,
        updated_at=now or datetime.now(timezone.utc),
        amount=principal,
        rate=Decimal(command.rate),
        term=command.term,
        frequency=command.frequency,
        start_date=command.start_date,
        amortization_type=amortization_type,
        schedule=schedule,
        total_interest=total_interest(schedule, principal.currency),
        total_paid=Money.zero(principal.currency),
        closing_costs=command.closing_costs or Money.zero(principal.currency),
    )


def cancel(loan: Loan, now: Optional[datetime] = None) -> Loan:
    """Void a loan that has no payments"""
    ensure_no_payments(loan, "cancel")
    if loan.status == LoanStatus.CANCELLED:
        raise StateConflictError(f"Loan {loan.id} is already cancelled")
    return replace(loan, status=LoanStatus.CANCELLED, updated_at=now or datetime.now(timezone.utc))


def set_archived(loan: Loan, archived: bool, now: Optional[datetime] = None) -> Loan:
    """Hide or show an ACTIVE or PAID loan"""
    if loan.status not in (LoanStatus.ACTIVE, LoanStatus.PAID):
        raise StateConflictError(f"Only ACTIVE or PAID loans can be archived, loan is {loan.status.value}")
    return replace(loan, archived=archived, updated_at=now or datetime.now(timezone.utc))


def mark_defaulted(loan: Loan, now: Optional[datetime] = None) -> Loan:
    """Flag an ACTIVE loan as defaulted (overdue aging decision made by the caller)"""
    if loan.status != LoanStatus.ACTIVE:
        raise StateConflictError(f"Only ACTIVE loans can default, loan is {loan.status.value}")
    return replace(loan, status=LoanStatus.DEFAULTED, updated_at=now or datetime.now(timezone.utc))
