"""
Loan Ledger Module

LoanManager is the repository and transaction boundary for loans and
receipts: it loads records from storage, runs the pure transitions of the
loans and payments modules, and writes the results back together with an
audit event.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from .amortization import AmortizationType, Frequency, Installment, RateBasis
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .currency import Money
from .exceptions import LoanNotFoundError
from .loans import (
    Loan, LoanStatus, ReviseLoanTerms,
    originate_loan, revise_terms, cancel, set_archived, mark_defaulted, ensure_no_payments
)
from .logging_config import get_logger, log_action
from .payments import PaymentRequest, PaymentResult, Receipt, apply_payment
from .penalties import compute_penalty
from .storage import StorageInterface


logger = get_logger(__name__)


class LoanManager:
    """
    Manages loans from creation through payoff
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

        self.loans_table = "loans"
        self.receipts_table = "receipts"

    def create_loan(
        self,
        client_id: str,
        amount: Money,
        rate: Decimal,
        term: int,
        frequency: Frequency,
        start_date: date,
        amortization_type: AmortizationType = AmortizationType.FRENCH,
        rate_basis: Optional[RateBasis] = None,
        closing_costs: Optional[Money] = None,
        user_id: Optional[str] = None
    ) -> Loan:
        """
        Create a loan and its repayment schedule

        Args:
            client_id: Borrower
            amount: Principal (closing costs are added on top when given)
            rate: Percent rate, or absolute amount for FIXED_* types
            term: Number of installments
            frequency: Payment frequency
            start_date: Loan start; first installment is due one period later
            amortization_type: Schedule method
            rate_basis: Annual or per-period rate, defaults to configuration
            closing_costs: Financed closing costs
            user_id: Operator creating the loan

        Returns:
            Created Loan
        """
        loan = originate_loan(
            client_id=client_id,
            amount=amount,
            rate=rate,
            term=term,
            frequency=frequency,
            start_date=start_date,
            amortization_type=amortization_type,
            rate_basis=rate_basis or RateBasis(self.config.rate_basis),
            closing_costs=closing_costs
        )

        with self.storage.atomic():
            self._save_loan(loan)
            self._audit(AuditEventType.LOAN_CREATED, loan, user_id, {
                "client_id": client_id,
                "amount": loan.amount.to_string(),
                "rate": str(loan.rate),
                "term": term,
                "frequency": frequency.value,
                "amortization_type": amortization_type.value,
                "rate_basis": loan.rate_basis.value,
                "total_interest": loan.total_interest.to_string()
            })

        log_action(
            logger, "info", f"Loan created for client {client_id}",
            user_id=user_id, action="create_loan", resource=f"loan:{loan.id}",
            extra={"amount": loan.amount.to_string(), "installments": len(loan.schedule)}
        )
        return loan

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return Loan.from_dict(data)
        return None

    def require_loan(self, loan_id: str) -> Loan:
        """Get loan by ID or raise LoanNotFoundError"""
        loan = self.get_loan(loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return loan

    def get_schedule(self, loan_id: str) -> List[Installment]:
        return self.require_loan(loan_id).schedule

    def get_client_loans(self, client_id: str) -> List[Loan]:
        """Get all loans of a client, oldest first"""
        loans = [Loan.from_dict(data) for data in self.storage.find(self.loans_table, {'client_id': client_id})]
        loans.sort(key=lambda l: l.created_at)
        return loans

    def list_loans(self, include_archived: bool = False, status: Optional[LoanStatus] = None) -> List[Loan]:
        """List loans, hiding archived ones unless asked"""
        loans = [Loan.from_dict(data) for data in self.storage.load_all(self.loans_table)]
        if not include_archived:
            loans = [l for l in loans if not l.archived]
        if status is not None:
            loans = [l for l in loans if l.status == status]
        loans.sort(key=lambda l: l.created_at)
        return loans

    def revise_loan_terms(self, loan_id: str, command: ReviseLoanTerms,
                          user_id: Optional[str] = None) -> Loan:
        """Replace terms and schedule of a loan without payments"""
        def transition(loan: Loan) -> Loan:
            return revise_terms(loan, command)

        return self._transition(
            loan_id, transition, AuditEventType.LOAN_TERMS_REVISED, user_id,
            lambda loan: {
                "amount": loan.amount.to_string(),
                "rate": str(loan.rate),
                "term": loan.term,
                "frequency": loan.frequency.value,
                "amortization_type": loan.amortization_type.value
            }
        )

    def cancel_loan(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        return self._transition(loan_id, cancel, AuditEventType.LOAN_CANCELLED, user_id)

    def archive_loan(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        return self._transition(
            loan_id, lambda loan: set_archived(loan, True), AuditEventType.LOAN_ARCHIVED, user_id
        )

    def unarchive_loan(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        return self._transition(
            loan_id, lambda loan: set_archived(loan, False), AuditEventType.LOAN_UNARCHIVED, user_id
        )

    def mark_defaulted(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        """Flag a loan as defaulted; the aging policy lives with the caller"""
        return self._transition(
            loan_id, mark_defaulted, AuditEventType.LOAN_DEFAULTED, user_id,
            lambda loan: {"overdue_installments": loan.overdue_count(self.local_date())}
        )

    def delete_loan(self, loan_id: str, user_id: Optional[str] = None) -> None:
        """Delete a loan that never received a payment"""
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            ensure_no_payments(loan, "delete")
            self.storage.delete(self.loans_table, loan_id)
            self._audit(AuditEventType.LOAN_DELETED, loan, user_id, {"client_id": loan.client_id})

        log_action(
            logger, "info", f"Loan {loan_id} deleted",
            user_id=user_id, action="delete_loan", resource=f"loan:{loan_id}"
        )

    def suggest_penalty(self, loan_id: str, installment_id: str,
                        as_of: Optional[date] = None) -> Money:
        """Suggested penalty for an installment using the configured rate"""
        loan = self.require_loan(loan_id)
        installment = loan.get_installment(installment_id)
        return compute_penalty(
            installment, as_of or self.local_date(), Decimal(self.config.default_penalty_rate)
        )

    def register_payment(
        self,
        loan_id: str,
        installment_id: str,
        request: PaymentRequest,
        paid_at: Optional[datetime] = None
    ) -> PaymentResult:
        """
        Apply a payment and persist the loan and its receipt atomically

        Args:
            loan_id: Loan ID
            installment_id: Installment being paid
            request: Amount, penalty and collector
            paid_at: Payment timestamp (defaults to now)

        Returns:
            PaymentResult with the stored loan and receipt
        """
        paid_at = paid_at or datetime.now(timezone.utc)
        if paid_at.tzinfo is None:
            paid_at = paid_at.replace(tzinfo=timezone.utc)

        with self.storage.atomic():
            # Read inside the transaction so concurrent payments serialize
            loan = self.require_loan(loan_id)
            result = apply_payment(
                loan, installment_id, request,
                paid_at=paid_at,
                reference_date=self.local_date(paid_at)
            )

            self._save_loan(result.loan)
            self.storage.save(self.receipts_table, result.receipt.id, result.receipt.to_dict())

            receipt = result.receipt
            self._audit(AuditEventType.PAYMENT_APPLIED, result.loan, request.collector_id, {
                "receipt_id": receipt.id,
                "installment_number": receipt.installment_number,
                "amount": receipt.amount.to_string(),
                "penalty_amount": receipt.penalty_amount.to_string(),
                "remaining_balance": receipt.remaining_balance.to_string(),
                "paid_installments": [p.number for p in receipt.paid_installments]
            })
            if result.loan.status == LoanStatus.PAID and loan.status != LoanStatus.PAID:
                self._audit(AuditEventType.LOAN_PAID_OFF, result.loan, request.collector_id, {
                    "total_paid": result.loan.total_paid.to_string()
                })

        log_action(
            logger, "info", f"Payment applied to installment {receipt.installment_number}",
            user_id=request.collector_id, action="register_payment", resource=f"loan:{loan_id}",
            extra={
                "receipt_id": receipt.id,
                "amount": receipt.amount.to_string(),
                "penalty": receipt.penalty_amount.to_string(),
                "status": result.loan.status.value
            }
        )
        return result

    def get_loan_receipts(self, loan_id: str) -> List[Receipt]:
        """Receipts of a loan in payment order"""
        receipts = [Receipt.from_dict(data) for data in self.storage.find(self.receipts_table, {'loan_id': loan_id})]
        receipts.sort(key=lambda r: r.date)
        return receipts

    def get_receipts(self, collector_id: Optional[str] = None) -> List[Receipt]:
        """All receipts, optionally only those taken by one collector"""
        if collector_id is None:
            records = self.storage.load_all(self.receipts_table)
        else:
            records = self.storage.find(self.receipts_table, {'collector_id': collector_id})
        receipts = [Receipt.from_dict(data) for data in records]
        receipts.sort(key=lambda r: r.date)
        return receipts

    def local_date(self, moment: Optional[datetime] = None) -> date:
        """Business date of ``moment`` in the configured time zone"""
        moment = moment or datetime.now(timezone.utc)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz).date()

    def _transition(
        self,
        loan_id: str,
        transition: Callable[[Loan], Loan],
        event_type: AuditEventType,
        user_id: Optional[str] = None,
        metadata: Optional[Callable[[Loan], dict]] = None
    ) -> Loan:
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            updated = transition(loan)
            self._save_loan(updated)
            details = {"status": updated.status.value, "archived": updated.archived}
            if metadata:
                details.update(metadata(updated))
            self._audit(event_type, updated, user_id, details)

        log_action(
            logger, "info", f"Loan {loan_id}: {event_type.value}",
            user_id=user_id, action=event_type.value, resource=f"loan:{loan_id}"
        )
        return updated

    def _audit(self, event_type: AuditEventType, loan: Loan,
               user_id: Optional[str], metadata: dict) -> None:
        if self.audit_trail is None or not self.config.enable_audit_logging:
            return
        self.audit_trail.log_event(
            event_type=event_type,
            entity_type="loan",
            entity_id=loan.id,
            metadata=metadata,
            user_id=user_id
        )

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())
