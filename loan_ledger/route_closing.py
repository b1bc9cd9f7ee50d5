"""
Route Closing Module

End-of-day reconciliation of a collector's route: every receipt the
collector took during a local business day is summed into an append-only
RouteClosing record, and can be compared with what was due that day.
"""

from decimal import Decimal
from datetime import datetime, timezone, date, time, timedelta, tzinfo
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo
import uuid

from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .currency import Money, Currency
from .exceptions import CollectorNotFoundError, ValidationError
from .loans import Loan, LoanStatus
from .logging_config import get_logger, log_action
from .payments import Receipt
from .storage import StorageInterface, StorageRecord


logger = get_logger(__name__)


@dataclass
class RouteClosing(StorageRecord):
    """Snapshot of one collector's collections for one business day"""
    collector_id: str
    date: date
    total_amount: Money        # Schedule amounts plus penalties
    receipts_count: int
    receipt_ids: List[str] = field(default_factory=list)
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'collector_id': self.collector_id,
            'date': self.date.isoformat(),
            'currency': self.total_amount.currency.code,
            'total_amount': str(self.total_amount.amount),
            'receipts_count': self.receipts_count,
            'receipt_ids': list(self.receipt_ids),
            'notes': self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RouteClosing':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            collector_id=data['collector_id'],
            date=date.fromisoformat(data['date']),
            total_amount=Money(Decimal(data['total_amount']), Currency[data['currency']]),
            receipts_count=data['receipts_count'],
            receipt_ids=data.get('receipt_ids', []),
            notes=data.get('notes'),
        )


@dataclass(frozen=True)
class ClosingDiff:
    """Collected versus due for a closed business day"""
    collected: Money
    pending: Money
    difference: Money  # collected - pending; negative means short

    @property
    def is_short(self) -> bool:
        return self.difference.is_negative()


def business_day_window(business_date: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """[local midnight, next local midnight) of a business date"""
    start = datetime.combine(business_date, time.min, tzinfo=tz)
    end = datetime.combine(business_date + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def _aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def receipts_for_day(collector_id: str, business_date: date,
                     receipts: Iterable[Receipt], tz: tzinfo) -> List[Receipt]:
    """Receipts taken by a collector inside the local business day"""
    start, end = business_day_window(business_date, tz)
    return [
        r for r in receipts
        if r.collector_id == collector_id and start <= _aware(r.date) < end
    ]


def close_route(
    collector_id: str,
    business_date: date,
    receipts: Iterable[Receipt],
    tz: tzinfo,
    currency: Currency = Currency.DOP,
    notes: Optional[str] = None,
    closed_at: Optional[datetime] = None
) -> RouteClosing:
    """
    Aggregate one collector's receipts for a business day

    Args:
        collector_id: Collector whose route is closed
        business_date: Local calendar date being closed
        receipts: Candidate receipts, filtered here by collector and day
        tz: Tenant time zone defining the day boundaries
        currency: Currency of the total when there are no receipts
        notes: Free text from the collector

    Returns:
        New RouteClosing (not persisted)
    """
    if not collector_id:
        raise CollectorNotFoundError("A collector is required to close a route")

    day_receipts = receipts_for_day(collector_id, business_date, receipts, tz)
    if day_receipts:
        currency = day_receipts[0].currency
    total = Money.sum((r.total_collected for r in day_receipts), currency)

    now = closed_at or datetime.now(timezone.utc)
    return RouteClosing(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        collector_id=collector_id,
        date=business_date,
        total_amount=total,
        receipts_count=len(day_receipts),
        receipt_ids=[r.id for r in day_receipts],
        notes=notes,
    )


def pending_total(loans: Iterable[Loan], business_date: date, currency: Currency = Currency.DOP) -> Money:
    """Amount still due on installments dated on or before the business date"""
    total = Money.zero(currency)
    for loan in loans:
        if loan.status not in (LoanStatus.ACTIVE, LoanStatus.DEFAULTED) or loan.currency != currency:
            continue
        for inst in loan.schedule:
            if not inst.is_paid and inst.date <= business_date:
                total = total + inst.amount_due
    return total


def reconcile(closing: RouteClosing, pending: Money) -> ClosingDiff:
    if pending.currency != closing.total_amount.currency:
        raise ValidationError(
            f"Pending currency {pending.currency.code} does not match closing currency "
            f"{closing.total_amount.currency.code}"
        )
    return ClosingDiff(
        collected=closing.total_amount,
        pending=pending,
        difference=closing.total_amount - pending
    )


class RouteClosingManager:
    """
    Persists route closings and answers questions about them
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: Optional[AuditTrail] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.tz = ZoneInfo(self.config.timezone)
        self.closings_table = "route_closings"
        self.receipts_table = "receipts"

    def close_route(self, collector_id: str, business_date: date,
                    notes: Optional[str] = None) -> RouteClosing:
        """
        Close a collector's business day from the stored receipts

        Closing the same day twice records a second closing; earlier
        closings are never modified.
        """
        receipts = [
            Receipt.from_dict(data)
            for data in self.storage.find(self.receipts_table, {'collector_id': collector_id})
        ]
        closing = close_route(
            collector_id, business_date, receipts, self.tz,
            currency=Currency[self.config.currency], notes=notes
        )

        with self.storage.atomic():
            self.storage.save(self.closings_table, closing.id, closing.to_dict())
            if self.audit_trail is not None and self.config.enable_audit_logging:
                self.audit_trail.log_event(
                    event_type=AuditEventType.ROUTE_CLOSED,
                    entity_type="route_closing",
                    entity_id=closing.id,
                    metadata={
                        "collector_id": collector_id,
                        "date": business_date.isoformat(),
                        "total_amount": closing.total_amount.to_string(),
                        "receipts_count": closing.receipts_count
                    },
                    user_id=collector_id
                )

        log_action(
            logger, "info", f"Route closed for {business_date.isoformat()}",
            user_id=collector_id, action="close_route", resource=f"route_closing:{closing.id}",
            extra={"total_amount": closing.total_amount.to_string(), "receipts_count": closing.receipts_count}
        )
        return closing

    def get_closings(self, collector_id: Optional[str] = None) -> List[RouteClosing]:
        """Closings, newest first"""
        if collector_id is None:
            records = self.storage.load_all(self.closings_table)
        else:
            records = self.storage.find(self.closings_table, {'collector_id': collector_id})
        closings = [RouteClosing.from_dict(data) for data in records]
        closings.sort(key=lambda c: (c.date, c.created_at), reverse=True)
        return closings

    def last_closing(self, collector_id: str) -> Optional[RouteClosing]:
        closings = self.get_closings(collector_id)
        return closings[0] if closings else None

    def reconcile_day(self, closing: RouteClosing, loans: Iterable[Loan]) -> ClosingDiff:
        """Compare a closing with what was due on its business date"""
        pending = pending_total(loans, closing.date, closing.total_amount.currency)
        return reconcile(closing, pending)
