"""
Shared dependencies for the API routers
"""

from typing import Optional

from fastapi import HTTPException, status

from ..audit import AuditTrail
from ..config import LedgerConfig, get_config
from ..exceptions import LedgerError, NotFoundError, StateConflictError
from ..ledger import LoanManager
from ..route_closing import RouteClosingManager
from ..storage import create_storage


class LedgerSystem:
    """Loan ledger with all components initialized"""

    def __init__(self, config: Optional[LedgerConfig] = None):
        self.config = config or get_config()
        self.storage = create_storage(self.config.database_url)
        self.audit_trail = AuditTrail(self.storage)
        self.loan_manager = LoanManager(self.storage, self.audit_trail, self.config)
        self.route_closing_manager = RouteClosingManager(self.storage, self.audit_trail, self.config)

    def close(self) -> None:
        self.storage.close()


# Global ledger system instance, built on first request
ledger_system: Optional[LedgerSystem] = None


def get_ledger_system() -> LedgerSystem:
    global ledger_system
    if ledger_system is None:
        ledger_system = LedgerSystem()
    return ledger_system


def to_http_exception(error: LedgerError) -> HTTPException:
    """Map a ledger error onto its HTTP status"""
    if isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, StateConflictError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(error))
