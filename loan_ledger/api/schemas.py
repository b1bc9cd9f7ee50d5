"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import date, datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..amortization import AmortizationType, Frequency, RateBasis
from ..currency import Money, Currency, decimal_from_string
from ..exceptions import ValidationError
from ..loans import Loan, ReviseLoanTerms
from ..payments import PaymentRequest, Receipt
from ..route_closing import RouteClosing


def parse_decimal(value: str, name: str) -> Decimal:
    try:
        return decimal_from_string(value)
    except ValueError:
        raise ValidationError(f"Invalid {name}: {value!r}")


def parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid {name}: {value!r}, expected YYYY-MM-DD")


def parse_frequency(value: str) -> Frequency:
    try:
        return Frequency.parse(value)
    except ValueError:
        raise ValidationError(f"Unknown frequency: {value!r}")


def parse_amortization_type(value: str) -> AmortizationType:
    try:
        return AmortizationType(value.upper())
    except ValueError:
        raise ValidationError(f"Unknown amortization type: {value!r}")


def parse_rate_basis(value: str) -> RateBasis:
    try:
        return RateBasis(value.lower())
    except ValueError:
        raise ValidationError(f"Unknown rate basis: {value!r}")


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (DOP, USD, etc.)")

    def to_money(self) -> Money:
        if self.currency not in Currency.__members__:
            raise ValidationError(f"Unknown currency: {self.currency!r}")
        return Money(parse_decimal(self.amount, "amount"), Currency[self.currency])

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


# Loan schemas
class CreateLoanRequest(BaseModel):
    client_id: str
    amount: MoneyModel
    rate: str = Field(..., description="Percent rate, or absolute amount for FIXED_* types")
    term: int
    frequency: str = Field(..., description="daily, weekly, biweekly or monthly")
    start_date: str  # ISO date string
    amortization_type: str = "FRENCH"
    rate_basis: Optional[str] = None  # Configured default when omitted
    closing_costs: Optional[MoneyModel] = None


class ReviseTermsRequest(BaseModel):
    amount: MoneyModel
    rate: str
    term: int
    frequency: str
    start_date: str
    amortization_type: Optional[str] = None
    closing_costs: Optional[MoneyModel] = None

    def to_command(self) -> ReviseLoanTerms:
        return ReviseLoanTerms(
            amount=self.amount.to_money(),
            rate=parse_decimal(self.rate, "rate"),
            term=self.term,
            frequency=parse_frequency(self.frequency),
            start_date=parse_date(self.start_date, "start_date"),
            amortization_type=parse_amortization_type(self.amortization_type) if self.amortization_type else None,
            closing_costs=self.closing_costs.to_money() if self.closing_costs else None
        )


# Payment schemas
class RegisterPaymentRequest(BaseModel):
    installment_id: str
    amount: Optional[MoneyModel] = None  # Defaults to what is due on the installment
    penalty: Optional[MoneyModel] = None
    force_penalty: bool = False
    collector_id: Optional[str] = None
    notes: Optional[str] = None
    paid_at: Optional[str] = None  # ISO datetime string

    def to_request(self) -> PaymentRequest:
        return PaymentRequest(
            base_amount=self.amount.to_money() if self.amount else None,
            penalty=self.penalty.to_money() if self.penalty else None,
            force_penalty=self.force_penalty,
            collector_id=self.collector_id,
            notes=self.notes
        )

    def payment_time(self) -> Optional[datetime]:
        if not self.paid_at:
            return None
        try:
            return datetime.fromisoformat(self.paid_at)
        except ValueError:
            raise ValidationError(f"Invalid paid_at: {self.paid_at!r}")


# Route closing schemas
class CloseRouteRequest(BaseModel):
    collector_id: str
    business_date: str  # ISO date
    notes: Optional[str] = None


def loan_response(loan: Loan, as_of: date) -> Dict[str, Any]:
    data = loan.to_dict()
    data['progress'] = loan.progress
    data['outstanding_amount'] = MoneyModel.from_money(loan.outstanding_amount).model_dump()
    data['overdue_count'] = loan.overdue_count(as_of)
    return data


def receipt_response(receipt: Receipt) -> Dict[str, Any]:
    data = receipt.to_dict()
    data['total_collected'] = str(receipt.total_collected.amount)
    return data


def closing_response(closing: RouteClosing) -> Dict[str, Any]:
    return closing.to_dict()
