"""
Test suite for payments module

Tests payment application: exact, partial and overpayments, surplus cascade,
receipts, penalties and the guards that keep a failed payment from touching
the loan.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date

from loan_ledger.currency import Money, Currency
from loan_ledger.amortization import AmortizationType, Frequency, InstallmentStatus
from loan_ledger.exceptions import (
    ValidationError, InvalidAmountError, PenaltyNotAllowedError,
    AlreadyPaidError, StateConflictError, InstallmentNotFoundError
)
from loan_ledger.loans import LoanStatus, originate_loan, cancel
from loan_ledger.payments import PaymentRequest, PaidInstallment, Receipt, apply_payment


def dop(value: str) -> Money:
    return Money(Decimal(value), Currency.DOP)


PAID_AT = datetime(2024, 1, 8, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def loan():
    """1,000 principal + 200 profit in 4 weekly installments of 300"""
    return originate_loan(
        client_id="CLIENT001",
        amount=dop('1000'),
        rate=Decimal('200'),
        term=4,
        frequency=Frequency.WEEKLY,
        start_date=date(2024, 1, 1),
        amortization_type=AmortizationType.FIXED_PROFIT
    )


def installment_id(loan, number):
    return loan.schedule[number - 1].id


class TestPaymentRequest:
    """Test request validation at construction"""

    def test_non_positive_amount(self):
        with pytest.raises(InvalidAmountError):
            PaymentRequest(base_amount=dop('0'))
        with pytest.raises(InvalidAmountError):
            PaymentRequest(base_amount=dop('-5'))

    def test_negative_penalty(self):
        with pytest.raises(ValidationError):
            PaymentRequest(penalty=dop('-1'))

    def test_defaults(self):
        request = PaymentRequest()
        assert request.base_amount is None
        assert request.penalty is None
        assert not request.force_penalty


class TestExactPayment:
    """Paying exactly what is due"""

    def test_default_amount_pays_installment(self, loan):
        result = apply_payment(loan, installment_id(loan, 1), PaymentRequest(), paid_at=PAID_AT)

        first = result.loan.schedule[0]
        assert first.status == InstallmentStatus.PAID
        assert first.paid_amount == dop('300')
        assert first.paid_date == PAID_AT
        assert result.loan.total_paid == dop('300')
        assert result.loan.status == LoanStatus.ACTIVE

        receipt = result.receipt
        assert receipt.amount == dop('300')
        assert receipt.installment_number == 1
        assert receipt.remaining_balance == dop('750')
        assert receipt.paid_installments == []
        assert not receipt.is_partial_payment
        assert receipt.remaining_on_installment.is_zero()
        assert receipt.full_installment_amount == dop('300')
        assert receipt.installment_date == date(2024, 1, 8)
        assert receipt.loan_amount == dop('1000')
        assert receipt.total_paid_after == dop('300')

    def test_input_loan_not_mutated(self, loan):
        apply_payment(loan, installment_id(loan, 1), PaymentRequest(), paid_at=PAID_AT)
        assert loan.schedule[0].status == InstallmentStatus.PENDING
        assert loan.schedule[0].paid_amount.is_zero()
        assert loan.total_paid.is_zero()

    def test_cannot_pay_twice(self, loan):
        result = apply_payment(loan, installment_id(loan, 1), PaymentRequest(), paid_at=PAID_AT)
        with pytest.raises(AlreadyPaidError):
            apply_payment(result.loan, installment_id(loan, 1), PaymentRequest(), paid_at=PAID_AT)

    def test_already_paid_is_a_state_conflict(self):
        assert issubclass(AlreadyPaidError, StateConflictError)


class TestPartialPayment:
    """Payments smaller than the installment"""

    def test_partial_payment_accumulates(self, loan):
        result = apply_payment(
            loan, installment_id(loan, 1), PaymentRequest(base_amount=dop('100')), paid_at=PAID_AT
        )
        first = result.loan.schedule[0]
        assert first.status == InstallmentStatus.PENDING
        assert first.paid_amount == dop('100')
        assert first.amount_due == dop('200')

        receipt = result.receipt
        assert receipt.is_partial_payment
        assert receipt.remaining_on_installment == dop('200')
        assert receipt.remaining_balance == dop('1000')

    def test_shortfall_not_split_forward(self, loan):
        result = apply_payment(
            loan, installment_id(loan, 1), PaymentRequest(base_amount=dop('100')), paid_at=PAID_AT
        )
        assert all(inst.paid_amount.is_zero() for inst in result.loan.schedule[1:])

    def test_second_payment_completes_installment(self, loan):
        first = apply_payment(
            loan, installment_id(loan, 1), PaymentRequest(base_amount=dop('100')), paid_at=PAID_AT
        )
        second = apply_payment(first.loan, installment_id(loan, 1), PaymentRequest(), paid_at=PAID_AT)

        assert second.receipt.amount == dop('200')
        assert second.loan.schedule[0].status == InstallmentStatus.PAID
        assert second.loan.schedule[0].paid_amount == dop('300')
        assert second.loan.total_paid == dop('300')

    def test_partial_on_later_installment_reports_previous_balance(self, loan):
        result = apply_payment(
            loan, installment_id(loan, 3), PaymentRequest(base_amount=dop('50')), paid_at=PAID_AT
        )
        assert result.receipt.remaining_balance == dop('500')


class TestOverpayment:
    """Surplus cascades forward over later installments"""

    def test_surplus_cascades(self, loan):
        result = apply_payment(
            loan, installment_id(loan, 1), PaymentRequest(base_amount=dop('450')), paid_at=PAID_AT
        )
        schedule = result.loan.schedule
        assert schedule[0].status == InstallmentStatus.PAID
        assert schedule[1].status == InstallmentStatus.PENDING
        assert schedule[1].paid_amount == dop('150')

        receipt = result.receipt
        assert receipt.paid_installments == [
            PaidInstallment(number=1, amount=dop('300'), fully_paid=True),
            PaidInstallment(number=2, amount=dop('150'), fully_paid=False),
        ]
        assert receipt.remaining_balance == dop('750')
        assert not receipt.is_partial_payment

    def test_cascade_skips_earlier_installments(self, loan):
        result = apply_payment(
            loan, installment_id(loan, 3), PaymentRequest(base_amount=dop('400')), paid_at=PAID_AT
        )
        schedule = result.loan.schedule
        assert schedule[0].paid_amount.is_zero()
        assert schedule[1].paid_amount.is_zero()
        assert schedule[2].status == InstallmentStatus.PAID
        assert schedule[3].paid_amount == dop('100')

    def test_cascade_skips_paid_installments(self, loan):
        paid_second = apply_payment(loan, installment_id(loan, 2), PaymentRequest(), paid_at=PAID_AT)
        result = apply_payment(
            paid_second.loan, installment_id(loan, 1), PaymentRequest(base_amount=dop('400')), paid_at=PAID_AT
        )
        schedule = result.loan.schedule
        assert schedule[0].status == InstallmentStatus.PAID
        assert schedule[1].paid_amount == dop('300')
        assert schedule[2].paid_amount == dop('100')
        assert [p.number for p in result.receipt.paid_installments] == [1, 3]

    def test_payoff_marks_loan_paid(self, loan):
        result = apply_payment(
            loan, installment_id(loan, 1), PaymentRequest(base_amount=dop('1200')), paid_at=PAID_AT
        )
        assert result.loan.status == LoanStatus.PAID
        assert all(inst.is_paid for inst in result.loan.schedule)
        assert result.loan.total_paid == dop('1200')
        assert result.receipt.remaining_balance.is_zero()
        assert len(result.receipt.paid_installments) == 4

    def test_amount_beyond_total_due_rejected(self, loan):
        with pytest.raises(InvalidAmountError, match="exceeds"):
            apply_payment(
                loan, installment_id(loan, 1), PaymentRequest(base_amount=dop('1200.01')), paid_at=PAID_AT
            )

    def test_total_due_counts_from_target_only(self, loan):
        with pytest.raises(InvalidAmountError):
            apply_payment(
                loan, installment_id(loan, 4), PaymentRequest(base_amount=dop('301')), paid_at=PAID_AT
            )

    def test_french_loan_two_and_a_half_installments(self):
        french = originate_loan(
            client_id="CLIENT001",
            amount=dop('1000'),
            rate=Decimal('12'),
            term=3,
            frequency=Frequency.MONTHLY,
            start_date=date(2024, 1, 1),
            amortization_type=AmortizationType.FRENCH
        )
        first, second, third = french.schedule
        principal = Money.zero(Currency.DOP)
        for inst in french.schedule:
            principal = principal + inst.principal
        assert principal == dop('1000')

        amount = first.payment * Decimal('2.5')
        result = apply_payment(
            french, first.id, PaymentRequest(base_amount=amount), paid_at=PAID_AT
        )
        schedule = result.loan.schedule
        assert schedule[0].status == InstallmentStatus.PAID
        assert schedule[1].status == InstallmentStatus.PAID
        assert schedule[2].status == InstallmentStatus.PENDING
        assert schedule[2].paid_amount == amount - first.payment - second.payment
        assert result.receipt.paid_installments == [
            PaidInstallment(number=1, amount=first.payment, fully_paid=True),
            PaidInstallment(number=2, amount=second.payment, fully_paid=True),
            PaidInstallment(number=3, amount=amount - first.payment - second.payment, fully_paid=False),
        ]
        assert result.loan.total_paid == amount
        assert result.loan.status == LoanStatus.ACTIVE


class TestPenalty:
    """Penalties are recorded on the receipt only"""

    def test_penalty_on_overdue_installment(self, loan):
        paid_at = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)
        result = apply_payment(
            loan, installment_id(loan, 1), PaymentRequest(penalty=dop('15')), paid_at=paid_at
        )
        assert result.receipt.penalty_amount == dop('15')
        assert result.receipt.total_collected == dop('315')
        assert result.loan.total_paid == dop('300')

    def test_penalty_before_due_date_rejected(self, loan):
        with pytest.raises(PenaltyNotAllowedError):
            apply_payment(loan, installment_id(loan, 1), PaymentRequest(penalty=dop('15')), paid_at=PAID_AT)

    def test_reference_date_overrides_payment_date(self, loan):
        result = apply_payment(
            loan, installment_id(loan, 1), PaymentRequest(penalty=dop('15')),
            paid_at=PAID_AT, reference_date=date(2024, 1, 9)
        )
        assert result.receipt.penalty_amount == dop('15')

    def test_forced_penalty(self, loan):
        result = apply_payment(
            loan, installment_id(loan, 1), PaymentRequest(penalty=dop('15'), force_penalty=True),
            paid_at=PAID_AT
        )
        assert result.receipt.penalty_amount == dop('15')


class TestGuards:
    """Rejected payments"""

    def test_unknown_installment(self, loan):
        with pytest.raises(InstallmentNotFoundError):
            apply_payment(loan, "NOPE", PaymentRequest(), paid_at=PAID_AT)

    def test_cancelled_loan(self, loan):
        with pytest.raises(StateConflictError, match="cancelled"):
            apply_payment(cancel(loan), installment_id(loan, 1), PaymentRequest(), paid_at=PAID_AT)

    def test_currency_mismatch(self, loan):
        request = PaymentRequest(base_amount=Money(Decimal('300'), Currency.USD))
        with pytest.raises(ValidationError, match="currency"):
            apply_payment(loan, installment_id(loan, 1), request, paid_at=PAID_AT)


class TestReceipt:
    """Test receipt serialization"""

    def test_dict_round_trip(self, loan):
        request = PaymentRequest(base_amount=dop('450'), collector_id="COL001", notes="Paid at market")
        receipt = apply_payment(loan, installment_id(loan, 1), request, paid_at=PAID_AT).receipt

        restored = Receipt.from_dict(receipt.to_dict())
        assert restored == receipt
        assert restored.collector_id == "COL001"
        assert restored.notes == "Paid at market"
        assert len(restored.paid_installments) == 2
