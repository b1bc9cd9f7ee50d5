"""
Payment Application Module

Applies a collected amount to a loan's schedule: the target installment
first, then any surplus cascading forward into later installments. The
engine is pure: it takes a loan and returns an updated copy together with the
receipt describing what happened. The caller persists both atomically.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional
import uuid

from .amortization import Installment, InstallmentStatus
from .currency import Money, Currency
from .exceptions import (
    ValidationError, InvalidAmountError, AlreadyPaidError, StateConflictError
)
from .loans import Loan, LoanStatus
from .penalties import validate_penalty
from .storage import StorageRecord


@dataclass(frozen=True)
class PaidInstallment:
    """Share of a payment that landed on one installment"""
    number: int
    amount: Money
    fully_paid: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'number': self.number,
            'amount': str(self.amount.amount),
            'fully_paid': self.fully_paid,
        }


@dataclass
class PaymentRequest:
    """
    What the collector hands in for one installment

    base_amount defaults to what is still due on the target installment.
    The penalty is collected on top and never reduces the schedule.
    """
    base_amount: Optional[Money] = None
    penalty: Optional[Money] = None
    force_penalty: bool = False
    collector_id: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self):
        if self.base_amount is not None and not self.base_amount.is_positive():
            raise InvalidAmountError("Payment amount must be greater than 0")
        if self.penalty is not None and self.penalty.is_negative():
            raise ValidationError("Penalty amount cannot be negative")


@dataclass
class Receipt(StorageRecord):
    """Proof of one collected payment; written once, never modified"""
    loan_id: str
    client_id: str
    date: datetime
    amount: Money                      # Applied to the schedule
    penalty_amount: Money
    installment_number: int
    remaining_balance: Money
    paid_installments: List[PaidInstallment] = field(default_factory=list)
    collector_id: Optional[str] = None
    installment_date: Optional[date] = None
    loan_amount: Optional[Money] = None
    total_paid_after: Optional[Money] = None
    full_installment_amount: Optional[Money] = None
    is_partial_payment: bool = False
    remaining_on_installment: Optional[Money] = None
    notes: Optional[str] = None

    @property
    def currency(self) -> Currency:
        return self.amount.currency

    @property
    def total_collected(self) -> Money:
        """Cash taken from the client: schedule amount plus penalty"""
        return self.amount + self.penalty_amount

    def to_dict(self) -> Dict[str, Any]:
        def money(value: Optional[Money]) -> Optional[str]:
            return str(value.amount) if value is not None else None

        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'loan_id': self.loan_id,
            'client_id': self.client_id,
            'date': self.date.isoformat(),
            'currency': self.currency.code,
            'amount': money(self.amount),
            'penalty_amount': money(self.penalty_amount),
            'installment_number': self.installment_number,
            'remaining_balance': money(self.remaining_balance),
            'paid_installments': [p.to_dict() for p in self.paid_installments],
            'collector_id': self.collector_id,
            'installment_date': self.installment_date.isoformat() if self.installment_date else None,
            'loan_amount': money(self.loan_amount),
            'total_paid_after': money(self.total_paid_after),
            'full_installment_amount': money(self.full_installment_amount),
            'is_partial_payment': self.is_partial_payment,
            'remaining_on_installment': money(self.remaining_on_installment),
            'notes': self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Receipt':
        currency = Currency[data['currency']]

        def money(key: str) -> Optional[Money]:
            value = data.get(key)
            return Money(Decimal(value), currency) if value is not None else None

        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            client_id=data['client_id'],
            date=datetime.fromisoformat(data['date']),
            amount=money('amount'),
            penalty_amount=money('penalty_amount'),
            installment_number=data['installment_number'],
            remaining_balance=money('remaining_balance'),
            paid_installments=[
                PaidInstallment(
                    number=p['number'],
                    amount=Money(Decimal(p['amount']), currency),
                    fully_paid=p['fully_paid']
                )
                for p in data.get('paid_installments', [])
            ],
            collector_id=data.get('collector_id'),
            installment_date=date.fromisoformat(data['installment_date']) if data.get('installment_date') else None,
            loan_amount=money('loan_amount'),
            total_paid_after=money('total_paid_after'),
            full_installment_amount=money('full_installment_amount'),
            is_partial_payment=data.get('is_partial_payment', False),
            remaining_on_installment=money('remaining_on_installment'),
            notes=data.get('notes'),
        )


@dataclass
class PaymentResult:
    """Updated loan plus the receipt produced by one payment"""
    loan: Loan
    receipt: Receipt


def _remaining_balance(loan: Loan, schedule: List[Installment], last: PaidInstallment) -> Money:
    """Balance owed after the last installment the payment touched"""
    if last.fully_paid:
        return schedule[last.number - 1].balance
    if last.number > 1:
        return schedule[last.number - 2].balance
    return loan.amount


def apply_payment(
    loan: Loan,
    installment_id: str,
    request: PaymentRequest,
    paid_at: Optional[datetime] = None,
    reference_date: Optional[date] = None
) -> PaymentResult:
    """
    Apply a payment to ``installment_id`` and cascade any surplus forward

    Args:
        loan: Current loan state (left untouched)
        installment_id: Installment the collector is paying
        request: Amount, penalty and collector
        paid_at: Payment timestamp, defaults to now (UTC)
        reference_date: Business date used for the overdue check on the
            penalty, defaults to ``paid_at``'s date

    Returns:
        PaymentResult with the updated loan copy and a new receipt

    Raises:
        InstallmentNotFoundError: installment is not part of the loan
        AlreadyPaidError: target installment is already PAID
        StateConflictError: loan is cancelled
        InvalidAmountError: amount exceeds everything due from the target on
        ValidationError / PenaltyNotAllowedError: penalty rejected
    """
    paid_at = paid_at or datetime.now(timezone.utc)
    reference_date = reference_date or paid_at.date()

    if loan.status == LoanStatus.CANCELLED:
        raise StateConflictError(f"Loan {loan.id} is cancelled")

    target = loan.get_installment(installment_id)
    if target.is_paid:
        raise AlreadyPaidError(f"Installment {target.number} of loan {loan.id} is already paid")

    penalty = validate_penalty(target, reference_date, request.penalty, request.force_penalty)

    amount = request.base_amount if request.base_amount is not None else target.amount_due
    if amount.currency != loan.currency:
        raise ValidationError(
            f"Payment currency {amount.currency.code} does not match loan currency {loan.currency.code}"
        )

    due_from_target = Money.sum(
        (inst.amount_due for inst in loan.schedule if inst.number >= target.number),
        loan.currency
    )
    if amount > due_from_target:
        raise InvalidAmountError(
            f"Payment {amount.to_string()} exceeds the {due_from_target.to_string()} "
            f"still due from installment {target.number}"
        )

    remaining = amount
    schedule: List[Installment] = []
    touched: List[PaidInstallment] = []

    for inst in loan.schedule:
        if remaining.is_zero() or inst.number < target.number or inst.is_paid:
            schedule.append(replace(inst))
            continue

        applied = min(remaining, inst.amount_due)
        cumulative = inst.paid_amount + applied
        fully_paid = cumulative >= inst.payment

        if fully_paid:
            schedule.append(replace(
                inst,
                status=InstallmentStatus.PAID,
                paid_amount=inst.payment,
                paid_date=paid_at
            ))
        else:
            schedule.append(replace(inst, paid_amount=cumulative))

        touched.append(PaidInstallment(number=inst.number, amount=applied, fully_paid=fully_paid))
        remaining = remaining - applied

    all_paid = all(inst.is_paid for inst in schedule)
    updated = replace(
        loan,
        schedule=schedule,
        total_paid=loan.total_paid + amount,
        status=LoanStatus.PAID if all_paid else loan.status,
        updated_at=paid_at
    )

    target_after = schedule[target.number - 1]
    receipt = Receipt(
        id=str(uuid.uuid4()),
        created_at=paid_at,
        updated_at=paid_at,
        loan_id=loan.id,
        client_id=loan.client_id,
        date=paid_at,
        amount=amount,
        penalty_amount=penalty,
        installment_number=target.number,
        remaining_balance=_remaining_balance(loan, schedule, touched[-1]),
        paid_installments=touched if len(touched) > 1 else [],
        collector_id=request.collector_id,
        installment_date=target.date,
        loan_amount=loan.amount,
        total_paid_after=updated.total_paid,
        full_installment_amount=target.payment,
        is_partial_payment=not touched[0].fully_paid,
        remaining_on_installment=target_after.amount_due,
        notes=request.notes,
    )

    return PaymentResult(loan=updated, receipt=receipt)
