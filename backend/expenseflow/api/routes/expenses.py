"""Expense API Routes - Drafts and submission"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..deps import (
    get_current_user_dep, get_correlation_id_dep, get_approval_engine, get_expense_service
)
from ...domain.models import ActorContext
from ...domain.enums import ExpenseCategory
from ...domain.errors import DomainError
from ...engine.engine import ApprovalEngine
from ...services.expense_service import ExpenseService
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


class CreateExpenseRequest(BaseModel):
    """Request to create a draft expense"""
    amount: float = Field(..., ge=0)
    category: ExpenseCategory
    description: str = Field("", max_length=2000)
    currency: str = Field("USD", min_length=3, max_length=3)
    expense_date: Optional[datetime] = None


class SubmitExpenseRequest(BaseModel):
    workflow_id: Optional[str] = Field(None, description="Use this workflow instead of automatic selection")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_expense(
    request: CreateExpenseRequest,
    actor: ActorContext = Depends(get_current_user_dep),
    service: ExpenseService = Depends(get_expense_service),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        expense = service.create_expense(
            actor,
            amount=request.amount,
            category=request.category,
            description=request.description,
            currency=request.currency,
            expense_date=request.expense_date
        )
        return expense.model_dump(mode="json")
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{expense_id}")
async def get_expense(
    expense_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    service: ExpenseService = Depends(get_expense_service),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return service.get_expense(expense_id, actor).model_dump(mode="json")
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{expense_id}/submit")
async def submit_expense(
    expense_id: str,
    request: Optional[SubmitExpenseRequest] = None,
    actor: ActorContext = Depends(get_current_user_dep),
    engine: ApprovalEngine = Depends(get_approval_engine),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    Submit a draft for approval

    Selects the workflow, builds the chain and notifies the first approvers.
    """
    try:
        workflow_id = request.workflow_id if request else None
        expense = engine.submit_for_approval(expense_id, actor, workflow_id=workflow_id)
        logger.info(
            f"Submitted expense: {expense_id}",
            extra={"expense_id": expense_id, "workflow_id": expense.workflow_id, "actor_id": actor.user_id}
        )
        return expense.model_dump(mode="json")
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{expense_id}/audit")
async def get_audit_trail(
    expense_id: str,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    actor: ActorContext = Depends(get_current_user_dep),
    service: ExpenseService = Depends(get_expense_service),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Audit events of the expense, newest first"""
    try:
        events = service.get_audit_trail(expense_id, actor, skip=skip, limit=limit)
        return {
            "expense_id": expense_id,
            "items": [e.model_dump(mode="json") for e in events],
        }
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
