"""Approval API Routes - Approver inbox, decisions, override and escalation"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..deps import get_current_user_dep, get_correlation_id_dep, get_approval_engine
from ...domain.models import ActorContext
from ...domain.enums import ApprovalAction, ExpenseStatus
from ...domain.errors import DomainError
from ...engine.engine import ApprovalEngine
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request Models
# ============================================================================

class ApproveRequest(BaseModel):
    comments: Optional[str] = Field(None, max_length=2000)
    entry_id: Optional[str] = Field(None, description="Pick one entry when the actor holds several")


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)
    comments: Optional[str] = Field(None, max_length=2000)
    entry_id: Optional[str] = None


class OverrideRequest(BaseModel):
    action: ApprovalAction
    reason: str = Field(..., min_length=1, max_length=2000)
    comments: Optional[str] = Field(None, max_length=2000)


# ============================================================================
# Routes
# ============================================================================

@router.get("/pending")
async def list_pending(
    actor: ActorContext = Depends(get_current_user_dep),
    engine: ApprovalEngine = Depends(get_approval_engine),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Expenses waiting on the current user at their open level"""
    try:
        expenses = engine.list_pending_for_approver(actor)
        return {"items": [e.model_dump(mode="json") for e in expenses], "total": len(expenses)}
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/history")
async def list_history(
    status: Optional[ExpenseStatus] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    actor: ActorContext = Depends(get_current_user_dep),
    engine: ApprovalEngine = Depends(get_approval_engine),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Expenses whose chain includes the current user"""
    try:
        expenses = engine.list_approval_history(
            actor, status=status, skip=(page - 1) * page_size, limit=page_size
        )
        return {
            "items": [e.model_dump(mode="json") for e in expenses],
            "page": page,
            "page_size": page_size
        }
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/stats")
async def approval_stats(
    start_date: Optional[datetime] = Query(None, description="Only expenses updated at or after this time"),
    end_date: Optional[datetime] = Query(None, description="Only expenses updated at or before this time"),
    actor: ActorContext = Depends(get_current_user_dep),
    engine: ApprovalEngine = Depends(get_approval_engine),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Per-status totals of the expenses on the current user's chains (managers and admins)"""
    try:
        return engine.get_approval_stats(actor, updated_from=start_date, updated_to=end_date)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{expense_id}/approve")
async def approve_expense(
    expense_id: str,
    request: ApproveRequest,
    actor: ActorContext = Depends(get_current_user_dep),
    engine: ApprovalEngine = Depends(get_approval_engine),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        expense = engine.approve(expense_id, actor, comments=request.comments, entry_id=request.entry_id)
        return expense.model_dump(mode="json")
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{expense_id}/reject")
async def reject_expense(
    expense_id: str,
    request: RejectRequest,
    actor: ActorContext = Depends(get_current_user_dep),
    engine: ApprovalEngine = Depends(get_approval_engine),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        expense = engine.reject(
            expense_id, actor,
            reason=request.reason,
            comments=request.comments,
            entry_id=request.entry_id
        )
        return expense.model_dump(mode="json")
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{expense_id}/override")
async def override_expense(
    expense_id: str,
    request: OverrideRequest,
    actor: ActorContext = Depends(get_current_user_dep),
    engine: ApprovalEngine = Depends(get_approval_engine),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Admin-only: force approved or rejected regardless of the chain"""
    try:
        expense = engine.admin_override(
            expense_id, actor,
            action=request.action,
            reason=request.reason,
            comments=request.comments
        )
        return expense.model_dump(mode="json")
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{expense_id}/escalation-check")
async def check_escalation(
    expense_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    engine: ApprovalEngine = Depends(get_approval_engine),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Run the escalation check for one expense now instead of waiting for the sweep"""
    try:
        entries = engine.check_escalation(expense_id, actor)
        return {
            "expense_id": expense_id,
            "escalated": bool(entries),
            "entries": [entry.model_dump(mode="json") for entry in entries]
        }
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
