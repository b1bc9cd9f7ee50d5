"""
Route closing endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .dependencies import LedgerSystem, get_ledger_system, to_http_exception
from .schemas import CloseRouteRequest, MoneyModel, closing_response, parse_date
from ..exceptions import LedgerError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def close_route(
    request: CloseRouteRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Close a collector's business day"""
    try:
        business_date = parse_date(request.business_date, "business_date")
        closing = system.route_closing_manager.close_route(
            collector_id=request.collector_id,
            business_date=business_date,
            notes=request.notes
        )
        diff = system.route_closing_manager.reconcile_day(closing, system.loan_manager.list_loans(include_archived=True))

        return {
            "closing": closing_response(closing),
            "pending": MoneyModel.from_money(diff.pending).model_dump(),
            "difference": MoneyModel.from_money(diff.difference).model_dump(),
            "message": "Route closed successfully"
        }

    except LedgerError as e:
        raise to_http_exception(e)


@router.get("")
async def list_closings(
    collector_id: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Route closings, newest first"""
    closings = system.route_closing_manager.get_closings(collector_id)
    return {"closings": [closing_response(c) for c in closings]}
