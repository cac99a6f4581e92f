"""API Dependencies - Common dependencies for routes"""
from typing import Optional
from fastapi import Depends, Header, HTTPException, status

from ..domain.models import ActorContext
from ..domain.errors import AuthenticationError
from ..engine.engine import ApprovalEngine
from ..services.directory_service import DirectoryService
from ..services.expense_service import ExpenseService
from ..services.workflow_service import WorkflowService
from ..utils.logger import set_correlation_id
from ..utils.idgen import generate_correlation_id


async def get_correlation_id_dep(
    x_correlation_id: Optional[str] = Header(None, alias="X-Correlation-Id")
) -> str:
    """
    Get or generate correlation ID for request tracing

    If client provides X-Correlation-Id, use it.
    Otherwise generate a new one.
    """
    correlation_id = x_correlation_id or generate_correlation_id()
    set_correlation_id(correlation_id)
    return correlation_id


# ============================================================================
# Service providers (overridden in tests)
# ============================================================================

def get_directory_service() -> DirectoryService:
    return DirectoryService()


def get_workflow_service() -> WorkflowService:
    return WorkflowService()


def get_expense_service() -> ExpenseService:
    return ExpenseService()


def get_approval_engine() -> ApprovalEngine:
    return ApprovalEngine()


async def get_current_user_dep(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    directory: DirectoryService = Depends(get_directory_service)
) -> ActorContext:
    """
    Resolve the calling user from the X-User-Id header

    The identity is trusted as given (an upstream gateway authenticates);
    the directory decides tenant and role.

    Raises:
        HTTPException: 401 if the header is missing or the user is unknown/inactive
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": {"code": "AUTHENTICATION_ERROR", "message": "X-User-Id header is missing", "details": {}}}
        )

    try:
        return directory.resolve_actor(x_user_id)
    except AuthenticationError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.to_dict())
