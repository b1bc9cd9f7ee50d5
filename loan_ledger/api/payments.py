"""
Payment endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .dependencies import LedgerSystem, get_ledger_system, to_http_exception
from .schemas import RegisterPaymentRequest, MoneyModel, receipt_response, parse_date
from ..exceptions import LedgerError


router = APIRouter()


@router.post("/{loan_id}/payments", status_code=status.HTTP_201_CREATED)
async def register_payment(
    loan_id: str,
    request: RegisterPaymentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Apply a payment to an installment and issue a receipt"""
    try:
        result = system.loan_manager.register_payment(
            loan_id=loan_id,
            installment_id=request.installment_id,
            request=request.to_request(),
            paid_at=request.payment_time()
        )

        return {
            "receipt": receipt_response(result.receipt),
            "loan_status": result.loan.status.value,
            "total_paid": MoneyModel.from_money(result.loan.total_paid).model_dump(),
            "message": "Payment applied successfully"
        }

    except LedgerError as e:
        raise to_http_exception(e)


@router.get("/{loan_id}/receipts")
async def get_receipts(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Receipts issued for a loan"""
    try:
        manager = system.loan_manager
        manager.require_loan(loan_id)
        return {"loan_id": loan_id, "receipts": [receipt_response(r) for r in manager.get_loan_receipts(loan_id)]}

    except LedgerError as e:
        raise to_http_exception(e)


@router.get("/{loan_id}/installments/{installment_id}/penalty")
async def suggest_penalty(
    loan_id: str,
    installment_id: str,
    as_of: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Suggested penalty for an installment"""
    try:
        reference = parse_date(as_of, "as_of") if as_of else None
        penalty = system.loan_manager.suggest_penalty(loan_id, installment_id, reference)
        return {"installment_id": installment_id, "penalty": MoneyModel.from_money(penalty).model_dump()}

    except LedgerError as e:
        raise to_http_exception(e)
