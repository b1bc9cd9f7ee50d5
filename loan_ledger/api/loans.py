"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, Response, status

from .dependencies import LedgerSystem, get_ledger_system, to_http_exception
from .schemas import (
    CreateLoanRequest, ReviseTermsRequest, MoneyModel, loan_response,
    parse_amortization_type, parse_date, parse_decimal, parse_frequency, parse_rate_basis
)
from ..exceptions import LedgerError
from ..loans import LoanStatus


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a loan and generate its schedule"""
    try:
        manager = system.loan_manager
        loan = manager.create_loan(
            client_id=request.client_id,
            amount=request.amount.to_money(),
            rate=parse_decimal(request.rate, "rate"),
            term=request.term,
            frequency=parse_frequency(request.frequency),
            start_date=parse_date(request.start_date, "start_date"),
            amortization_type=parse_amortization_type(request.amortization_type),
            rate_basis=parse_rate_basis(request.rate_basis) if request.rate_basis else None,
            closing_costs=request.closing_costs.to_money() if request.closing_costs else None
        )

        return {
            "loan_id": loan.id,
            "status": loan.status.value,
            "installments": len(loan.schedule),
            "total_interest": MoneyModel.from_money(loan.total_interest).model_dump(),
            "message": "Loan created successfully"
        }

    except LedgerError as e:
        raise to_http_exception(e)


@router.get("")
async def list_loans(
    client_id: Optional[str] = None,
    include_archived: bool = False,
    loan_status: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List loans, optionally for one client"""
    manager = system.loan_manager
    if client_id:
        loans = manager.get_client_loans(client_id)
        if not include_archived:
            loans = [l for l in loans if not l.archived]
    else:
        try:
            wanted = LoanStatus(loan_status.upper()) if loan_status else None
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown loan status: {loan_status}")
        loans = manager.list_loans(include_archived=include_archived, status=wanted)

    today = manager.local_date()
    return {"loans": [loan_response(loan, today) for loan in loans]}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get loan details"""
    try:
        manager = system.loan_manager
        loan = manager.require_loan(loan_id)
        return loan_response(loan, manager.local_date())

    except LedgerError as e:
        raise to_http_exception(e)


@router.get("/{loan_id}/schedule")
async def get_schedule(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get the repayment schedule of a loan"""
    try:
        schedule = system.loan_manager.get_schedule(loan_id)
        return {"loan_id": loan_id, "schedule": [inst.to_dict() for inst in schedule]}

    except LedgerError as e:
        raise to_http_exception(e)


@router.put("/{loan_id}/terms")
async def revise_terms(
    loan_id: str,
    request: ReviseTermsRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Replace the terms of a loan that has no payments"""
    try:
        manager = system.loan_manager
        loan = manager.revise_loan_terms(loan_id, request.to_command())
        return loan_response(loan, manager.local_date())

    except LedgerError as e:
        raise to_http_exception(e)


@router.post("/{loan_id}/cancel")
async def cancel_loan(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Cancel a loan that has no payments"""
    try:
        loan = system.loan_manager.cancel_loan(loan_id)
        return {"loan_id": loan.id, "status": loan.status.value, "message": "Loan cancelled"}

    except LedgerError as e:
        raise to_http_exception(e)


@router.post("/{loan_id}/archive")
async def archive_loan(
    loan_id: str,
    archived: bool = True,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Archive (or with archived=false, restore) a loan"""
    try:
        manager = system.loan_manager
        loan = manager.archive_loan(loan_id) if archived else manager.unarchive_loan(loan_id)
        return {"loan_id": loan.id, "archived": loan.archived}

    except LedgerError as e:
        raise to_http_exception(e)


@router.post("/{loan_id}/default")
async def mark_defaulted(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Flag a loan as defaulted"""
    try:
        loan = system.loan_manager.mark_defaulted(loan_id)
        return {"loan_id": loan.id, "status": loan.status.value}

    except LedgerError as e:
        raise to_http_exception(e)


@router.delete("/{loan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_loan(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Delete a loan that has no payments"""
    try:
        system.loan_manager.delete_loan(loan_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    except LedgerError as e:
        raise to_http_exception(e)
