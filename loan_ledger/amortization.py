"""
Amortization Module

Schedule generation for microfinance loans: level-payment annuities
(FLAT/FRENCH), interest-only lines, and the fixed-profit / fixed-payment
conventions of informal lending. Generation is pure: the same inputs always
produce the same schedule (installment ids aside).
"""

from decimal import Decimal, InvalidOperation
from datetime import date, datetime, timedelta
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .currency import Money, Currency


class Frequency(Enum):
    """Payment frequency options"""
    DAILY = "daily"          # 365 periods per year, 1 day apart
    WEEKLY = "weekly"        # 52 periods per year, 7 days apart
    BIWEEKLY = "biweekly"    # 24 periods per year, 15 days apart
    MONTHLY = "monthly"      # 12 periods per year, 30 days apart

    @property
    def periods_per_year(self) -> int:
        return _PERIODS_PER_YEAR[self]

    @property
    def days_per_period(self) -> int:
        return _DAYS_PER_PERIOD[self]

    @classmethod
    def parse(cls, value: str) -> 'Frequency':
        """Parse a frequency name, accepting the Spanish labels used by lenders"""
        key = value.strip().lower()
        if key in _FREQUENCY_ALIASES:
            return _FREQUENCY_ALIASES[key]
        return cls(key)


_PERIODS_PER_YEAR = {
    Frequency.DAILY: 365,
    Frequency.WEEKLY: 52,
    Frequency.BIWEEKLY: 24,
    Frequency.MONTHLY: 12,
}

_DAYS_PER_PERIOD = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 15,
    Frequency.MONTHLY: 30,
}

_FREQUENCY_ALIASES = {
    "diario": Frequency.DAILY,
    "semanal": Frequency.WEEKLY,
    "quincenal": Frequency.BIWEEKLY,
    "mensual": Frequency.MONTHLY,
}


class AmortizationType(Enum):
    """Methods for building a repayment schedule"""
    FLAT = "FLAT"                    # Level payment annuity
    FRENCH = "FRENCH"                # Level payment annuity
    INTEREST_ONLY = "INTEREST_ONLY"  # Interest every period, principal paid off separately
    OPEN = "OPEN"                    # Open line, no fixed schedule
    FIXED_PROFIT = "FIXED_PROFIT"    # rate is an absolute profit amount
    FIXED_PAYMENT = "FIXED_PAYMENT"  # rate is the absolute installment amount


class RateBasis(Enum):
    """How the loan rate relates to a payment period"""
    ANNUAL = "annual"          # Divided by periods_per_year
    PER_PERIOD = "per_period"  # Applied to each period as-is


class InstallmentStatus(Enum):
    PENDING = "PENDING"
    PAID = "PAID"


@dataclass
class Installment:
    """Single installment in a loan's repayment schedule"""
    id: str
    number: int
    date: date
    payment: Money
    interest: Money
    principal: Money
    balance: Money
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_amount: Optional[Money] = None
    paid_date: Optional[datetime] = None

    def __post_init__(self):
        if self.paid_amount is None:
            self.paid_amount = Money.zero(self.payment.currency)

    @property
    def is_paid(self) -> bool:
        return self.status == InstallmentStatus.PAID

    @property
    def amount_due(self) -> Money:
        """What is still owed on this installment"""
        if self.is_paid:
            return Money.zero(self.payment.currency)
        return self.payment - self.paid_amount

    def is_overdue(self, as_of: date) -> bool:
        """Check if the installment is unpaid past its due date"""
        return not self.is_paid and as_of > self.date

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'number': self.number,
            'date': self.date.isoformat(),
            'payment': str(self.payment.amount),
            'interest': str(self.interest.amount),
            'principal': str(self.principal.amount),
            'balance': str(self.balance.amount),
            'status': self.status.value,
            'paid_amount': str(self.paid_amount.amount),
            'paid_date': self.paid_date.isoformat() if self.paid_date else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], currency: Currency) -> 'Installment':
        def money(key: str) -> Money:
            return Money(Decimal(data[key]), currency)

        return cls(
            id=data['id'],
            number=data['number'],
            date=date.fromisoformat(data['date']),
            payment=money('payment'),
            interest=money('interest'),
            principal=money('principal'),
            balance=money('balance'),
            status=InstallmentStatus(data['status']),
            paid_amount=money('paid_amount'),
            paid_date=datetime.fromisoformat(data['paid_date']) if data.get('paid_date') else None,
        )


def rate_per_period(rate_percent: Decimal, frequency: Frequency, rate_basis: RateBasis) -> Decimal:
    """Convert a percentage rate into a per-period fraction"""
    rate = Decimal(rate_percent) / Decimal('100')
    if rate_basis == RateBasis.PER_PERIOD:
        return rate
    return rate / Decimal(frequency.periods_per_year)


def level_payment(principal: Money, periodic_rate: Decimal, term: int) -> Money:
    """Annuity payment P*r / (1 - (1+r)^-n), or P/n without interest"""
    if periodic_rate == Decimal('0'):
        return principal / Decimal(term)
    factor = (Decimal('1') + periodic_rate) ** -term
    return Money(principal.amount * periodic_rate / (Decimal('1') - factor), principal.currency)


def due_dates(start_date: date, term: int, frequency: Frequency) -> List[date]:
    """Due date i is start_date + i periods, for i in 1..term"""
    step = frequency.days_per_period
    return [start_date + timedelta(days=i * step) for i in range(1, term + 1)]


def generate_schedule(
    principal: Money,
    rate_percent: Decimal,
    term: int,
    frequency: Frequency,
    start_date: date,
    amortization_type: AmortizationType = AmortizationType.FRENCH,
    rate_basis: RateBasis = RateBasis.ANNUAL
) -> List[Installment]:
    """
    Generate a loan's repayment schedule

    Args:
        principal: Amount financed
        rate_percent: Interest rate in percent, or an absolute amount for
            FIXED_PROFIT (profit) and FIXED_PAYMENT (installment)
        term: Number of installments
        frequency: Payment frequency
        start_date: Loan start; the first installment is due one period later
        amortization_type: Schedule method
        rate_basis: Whether rate_percent is annual or per period

    Returns:
        Installments ordered by number. Empty when the inputs are invalid,
        callers must check before use.
    """
    try:
        rate = Decimal(str(rate_percent))
    except InvalidOperation:
        return []

    if amortization_type == AmortizationType.OPEN:
        return []
    if not principal.is_positive() or term is None or term <= 0 or rate < 0:
        return []

    dates = due_dates(start_date, term, frequency)

    if amortization_type in (AmortizationType.FLAT, AmortizationType.FRENCH):
        return _annuity_schedule(principal, rate_per_period(rate, frequency, rate_basis), dates)
    if amortization_type == AmortizationType.INTEREST_ONLY:
        return _interest_only_schedule(principal, rate_per_period(rate, frequency, rate_basis), dates)
    if amortization_type == AmortizationType.FIXED_PROFIT:
        return _fixed_profit_schedule(principal, Money(rate, principal.currency), dates)
    if amortization_type == AmortizationType.FIXED_PAYMENT:
        return _fixed_payment_schedule(principal, Money(rate, principal.currency), dates)
    return []


def _installment(number: int, due: date, payment: Money, interest: Money,
                 principal: Money, balance: Money) -> Installment:
    return Installment(
        id=str(uuid.uuid4()),
        number=number,
        date=due,
        payment=payment,
        interest=interest,
        principal=principal,
        balance=balance
    )


def _annuity_schedule(principal: Money, periodic_rate: Decimal, dates: List[date]) -> List[Installment]:
    term = len(dates)
    pmt = level_payment(principal, periodic_rate, term)
    balance = principal
    schedule = []

    for number, due in enumerate(dates, start=1):
        interest = balance * periodic_rate

        if number == term:
            # Last installment absorbs all rounding residue
            principal_part = balance
        else:
            principal_part = min(pmt - interest, balance)

        balance = balance - principal_part
        schedule.append(_installment(
            number, due, principal_part + interest, interest, principal_part, balance
        ))

    return schedule


def _interest_only_schedule(principal: Money, periodic_rate: Decimal, dates: List[date]) -> List[Installment]:
    interest = principal * periodic_rate
    zero = Money.zero(principal.currency)
    return [
        _installment(number, due, interest, interest, zero, principal)
        for number, due in enumerate(dates, start=1)
    ]


def _fixed_profit_schedule(principal: Money, profit: Money, dates: List[date]) -> List[Installment]:
    if profit.is_negative():
        return []

    term = len(dates)
    principal_each = principal / term
    interest_each = profit / term
    balance = principal
    schedule = []

    for number, due in enumerate(dates, start=1):
        if number == term:
            principal_part = balance
            interest = profit - interest_each * (term - 1)
        else:
            principal_part = principal_each
            interest = interest_each

        balance = balance - principal_part
        schedule.append(_installment(
            number, due, principal_part + interest, interest, principal_part, balance
        ))

    return schedule


def _fixed_payment_schedule(principal: Money, installment_amount: Money, dates: List[date]) -> List[Installment]:
    term = len(dates)
    if installment_amount * term < principal:
        return []

    principal_each = principal / term
    balance = principal
    schedule = []

    for number, due in enumerate(dates, start=1):
        principal_part = balance if number == term else principal_each
        interest = installment_amount - principal_part
        if interest.is_negative():
            interest = Money.zero(principal.currency)

        balance = balance - principal_part
        schedule.append(_installment(
            number, due, principal_part + interest, interest, principal_part, balance
        ))

    return schedule


def total_interest(schedule: List[Installment], currency: Currency) -> Money:
    """Sum of interest over a schedule"""
    return Money.sum((inst.interest for inst in schedule), currency)


def total_principal(schedule: List[Installment], currency: Currency) -> Money:
    """Sum of principal over a schedule"""
    return Money.sum((inst.principal for inst in schedule), currency)
