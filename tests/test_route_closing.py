"""
Test suite for route_closing module

Tests aggregation of a collector's receipts over a local business day,
append-only persistence of closings, and reconciliation against what was due.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date, timedelta
from zoneinfo import ZoneInfo

from loan_ledger.config import LedgerConfig
from loan_ledger.currency import Money, Currency
from loan_ledger.storage import InMemoryStorage
from loan_ledger.audit import AuditTrail, AuditEventType
from loan_ledger.amortization import AmortizationType, Frequency
from loan_ledger.exceptions import CollectorNotFoundError, ValidationError
from loan_ledger.ledger import LoanManager
from loan_ledger.loans import originate_loan, cancel, mark_defaulted
from loan_ledger.payments import PaymentRequest, Receipt, apply_payment
from loan_ledger.route_closing import (
    RouteClosing, RouteClosingManager, business_day_window, close_route,
    pending_total, reconcile
)


SANTO_DOMINGO = ZoneInfo("America/Santo_Domingo")
BUSINESS_DATE = date(2024, 1, 8)


def dop(value: str) -> Money:
    return Money(Decimal(value), Currency.DOP)


def make_receipt(collector_id, when, amount, penalty='0'):
    return Receipt(
        id=f"R-{collector_id}-{when.isoformat()}",
        created_at=when,
        updated_at=when,
        loan_id="LOAN001",
        client_id="CLIENT001",
        date=when,
        amount=dop(amount),
        penalty_amount=dop(penalty),
        installment_number=1,
        remaining_balance=dop('0'),
        collector_id=collector_id
    )


def make_loan():
    return originate_loan(
        client_id="CLIENT001",
        amount=dop('1000'),
        rate=Decimal('200'),
        term=4,
        frequency=Frequency.WEEKLY,
        start_date=date(2024, 1, 1),
        amortization_type=AmortizationType.FIXED_PROFIT
    )


class TestBusinessDayWindow:
    """Test local-midnight day boundaries"""

    def test_window_in_utc(self):
        start, end = business_day_window(BUSINESS_DATE, SANTO_DOMINGO)
        assert start == datetime(2024, 1, 8, 4, 0, tzinfo=timezone.utc)
        assert end == datetime(2024, 1, 9, 4, 0, tzinfo=timezone.utc)
        assert end - start == timedelta(days=1)


class TestCloseRoute:
    """Test the pure closing aggregation"""

    def test_aggregates_receipts_in_window(self):
        receipts = [
            make_receipt("COL001", datetime(2024, 1, 8, 12, 0, tzinfo=timezone.utc), '300', '10'),
            make_receipt("COL001", datetime(2024, 1, 9, 3, 59, tzinfo=timezone.utc), '100'),
            make_receipt("COL001", datetime(2024, 1, 9, 4, 0, tzinfo=timezone.utc), '500'),
            make_receipt("COL001", datetime(2024, 1, 8, 3, 0, tzinfo=timezone.utc), '700'),
            make_receipt("COL002", datetime(2024, 1, 8, 12, 0, tzinfo=timezone.utc), '900'),
        ]
        closing = close_route("COL001", BUSINESS_DATE, receipts, SANTO_DOMINGO)

        assert closing.total_amount == dop('410')
        assert closing.receipts_count == 2
        assert closing.collector_id == "COL001"
        assert closing.date == BUSINESS_DATE
        assert set(closing.receipt_ids) == {receipts[0].id, receipts[1].id}

    def test_three_receipts_for_one_collector(self):
        noon = datetime(2024, 1, 8, 16, 0, tzinfo=timezone.utc)
        receipts = [
            make_receipt("X", noon, '100'),
            make_receipt("X", noon + timedelta(hours=1), '200', '10'),
            make_receipt("X", noon + timedelta(hours=2), '50'),
            make_receipt("Y", noon, '75'),
        ]
        closing = close_route("X", BUSINESS_DATE, receipts, SANTO_DOMINGO)

        assert closing.total_amount == dop('360')
        assert closing.receipts_count == 3

    def test_empty_day(self):
        closing = close_route("COL001", BUSINESS_DATE, [], SANTO_DOMINGO, currency=Currency.USD)
        assert closing.total_amount == Money.zero(Currency.USD)
        assert closing.receipts_count == 0

    def test_collector_required(self):
        with pytest.raises(CollectorNotFoundError):
            close_route("", BUSINESS_DATE, [], SANTO_DOMINGO)

    def test_dict_round_trip(self):
        receipts = [make_receipt("COL001", datetime(2024, 1, 8, 12, 0, tzinfo=timezone.utc), '300')]
        closing = close_route("COL001", BUSINESS_DATE, receipts, SANTO_DOMINGO, notes="Route north")
        assert RouteClosing.from_dict(closing.to_dict()) == closing


class TestReconciliation:
    """Test pending amounts and closing differences"""

    def test_pending_total(self):
        loan = make_loan()
        assert pending_total([loan], date(2024, 1, 15)) == dop('600')
        assert pending_total([loan], date(2024, 1, 7)).is_zero()

    def test_pending_after_partial_payment(self):
        loan = make_loan()
        paid = apply_payment(
            loan, loan.schedule[0].id, PaymentRequest(base_amount=dop('100')),
            paid_at=datetime(2024, 1, 8, 15, 0, tzinfo=timezone.utc)
        ).loan
        assert pending_total([paid], date(2024, 1, 15)) == dop('500')

    def test_cancelled_loans_not_pending(self):
        assert pending_total([cancel(make_loan())], date(2024, 1, 15)).is_zero()

    def test_defaulted_loans_still_pending(self):
        loan = make_loan()
        defaulted = mark_defaulted(loan)
        assert pending_total([defaulted], date(2024, 1, 20)) == pending_total([loan], date(2024, 1, 20))
        assert pending_total([defaulted], date(2024, 1, 20)) == dop('600')

        collected = apply_payment(
            defaulted, defaulted.schedule[0].id, PaymentRequest(),
            paid_at=datetime(2024, 1, 20, 15, 0, tzinfo=timezone.utc)
        )
        assert collected.receipt.amount == dop('300')
        assert pending_total([collected.loan], date(2024, 1, 20)) == dop('300')

    def test_reconcile(self):
        receipts = [make_receipt("COL001", datetime(2024, 1, 8, 12, 0, tzinfo=timezone.utc), '250')]
        closing = close_route("COL001", BUSINESS_DATE, receipts, SANTO_DOMINGO)
        diff = reconcile(closing, dop('300'))
        assert diff.collected == dop('250')
        assert diff.pending == dop('300')
        assert diff.difference == dop('-50')
        assert diff.is_short

    def test_reconcile_currency_mismatch(self):
        closing = close_route("COL001", BUSINESS_DATE, [], SANTO_DOMINGO)
        with pytest.raises(ValidationError):
            reconcile(closing, Money.zero(Currency.USD))


class TestRouteClosingManager:
    """Test persisted closings"""

    @pytest.fixture
    def storage(self):
        return InMemoryStorage()

    @pytest.fixture
    def config(self):
        return LedgerConfig(database_url="memory://", timezone="America/Santo_Domingo", currency="DOP")

    @pytest.fixture
    def audit_trail(self, storage):
        return AuditTrail(storage)

    @pytest.fixture
    def loan_manager(self, storage, audit_trail, config):
        return LoanManager(storage, audit_trail, config)

    @pytest.fixture
    def closings(self, storage, audit_trail, config):
        return RouteClosingManager(storage, audit_trail, config)

    def test_close_from_stored_receipts(self, loan_manager, closings, audit_trail):
        loan = loan_manager.create_loan(
            "CLIENT001", dop('1000'), Decimal('200'), 4, Frequency.WEEKLY, date(2024, 1, 1),
            AmortizationType.FIXED_PROFIT
        )
        loan_manager.register_payment(
            loan.id, loan.schedule[0].id,
            PaymentRequest(collector_id="COL001"),
            paid_at=datetime(2024, 1, 8, 15, 0, tzinfo=timezone.utc)
        )
        loan_manager.register_payment(
            loan.id, loan.schedule[1].id,
            PaymentRequest(collector_id="COL001", penalty=dop('20')),
            paid_at=datetime(2024, 1, 20, 15, 0, tzinfo=timezone.utc)
        )

        closing = closings.close_route("COL001", BUSINESS_DATE)
        assert closing.total_amount == dop('300')
        assert closing.receipts_count == 1
        assert len(audit_trail.get_events_by_type(AuditEventType.ROUTE_CLOSED)) == 1

        diff = closings.reconcile_day(closing, loan_manager.list_loans())
        assert diff.pending.is_zero()
        assert diff.difference == dop('300')

    def test_closings_are_append_only(self, closings):
        first = closings.close_route("COL001", BUSINESS_DATE)
        second = closings.close_route("COL001", BUSINESS_DATE, notes="Recount")

        listed = closings.get_closings("COL001")
        assert len(listed) == 2
        assert {c.id for c in listed} == {first.id, second.id}

    def test_newest_first(self, closings):
        closings.close_route("COL001", date(2024, 1, 7))
        latest = closings.close_route("COL001", date(2024, 1, 8))
        closings.close_route("COL002", date(2024, 1, 9))

        assert [c.date for c in closings.get_closings("COL001")] == [date(2024, 1, 8), date(2024, 1, 7)]
        assert closings.last_closing("COL001").id == latest.id
        assert closings.last_closing("COL999") is None
        assert len(closings.get_closings()) == 3
