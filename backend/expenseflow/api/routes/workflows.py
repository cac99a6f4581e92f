"""Workflow API Routes - Admin management of approval workflows"""
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..deps import get_current_user_dep, get_correlation_id_dep, get_workflow_service
from ...domain.models import (
    ActorContext, ApprovalStep, AutoApproveRule, EscalationSettings, WorkflowRule
)
from ...domain.enums import ExpenseCategory
from ...domain.errors import DomainError
from ...services.workflow_service import WorkflowService
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class CreateWorkflowRequest(BaseModel):
    """Request to create a workflow"""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    rules: List[WorkflowRule] = Field(default_factory=list)
    approval_sequence: List[ApprovalStep] = Field(default_factory=list)
    conditional_rules: List[AutoApproveRule] = Field(default_factory=list)
    default_approvers: List[str] = Field(default_factory=list)
    escalation_settings: EscalationSettings = Field(default_factory=EscalationSettings)
    is_active: bool = True


class UpdateWorkflowRequest(BaseModel):
    """Partial update; omitted fields are left unchanged"""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    rules: Optional[List[WorkflowRule]] = None
    approval_sequence: Optional[List[ApprovalStep]] = None
    conditional_rules: Optional[List[AutoApproveRule]] = None
    default_approvers: Optional[List[str]] = None
    escalation_settings: Optional[EscalationSettings] = None
    is_active: Optional[bool] = None
    expected_version: Optional[int] = Field(None, description="Reject the update if the stored version differs")


class TestWorkflowRequest(BaseModel):
    """Hypothetical expense for a dry run"""
    amount: float = Field(..., ge=0)
    category: ExpenseCategory = ExpenseCategory.OTHER
    currency: str = "USD"
    description: str = ""


class WorkflowListResponse(BaseModel):
    items: List[Dict[str, Any]]
    total: int


# ============================================================================
# Routes
# ============================================================================

@router.get("", response_model=WorkflowListResponse)
async def list_workflows(
    include_inactive: bool = Query(False),
    actor: ActorContext = Depends(get_current_user_dep),
    service: WorkflowService = Depends(get_workflow_service),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """List the tenant's workflows in selection order"""
    try:
        workflows = service.list_workflows(actor, include_inactive=include_inactive)
        return WorkflowListResponse(
            items=[w.model_dump(mode="json") for w in workflows],
            total=len(workflows)
        )
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: CreateWorkflowRequest,
    actor: ActorContext = Depends(get_current_user_dep),
    service: WorkflowService = Depends(get_workflow_service),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Create a workflow (admins only)"""
    try:
        workflow = service.create_workflow(request.model_dump(), actor)
        return workflow.model_dump(mode="json")
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/approvers/available")
async def list_available_approvers(
    actor: ActorContext = Depends(get_current_user_dep),
    service: WorkflowService = Depends(get_workflow_service),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Managers and admins that can be placed on a workflow"""
    try:
        users = service.list_available_approvers(actor)
        return {"items": [u.model_dump(mode="json") for u in users]}
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{workflow_id}")
async def get_workflow(
    workflow_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    service: WorkflowService = Depends(get_workflow_service),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return service.get_workflow(workflow_id, actor).model_dump(mode="json")
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.put("/{workflow_id}")
async def update_workflow(
    workflow_id: str,
    request: UpdateWorkflowRequest,
    actor: ActorContext = Depends(get_current_user_dep),
    service: WorkflowService = Depends(get_workflow_service),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    Update a workflow

    Expenses already in flight keep their chain.
    """
    try:
        data = request.model_dump(exclude_unset=True, exclude={"expected_version"})
        workflow = service.update_workflow(
            workflow_id, data, actor, expected_version=request.expected_version
        )
        return workflow.model_dump(mode="json")
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.delete("/{workflow_id}")
async def delete_workflow(
    workflow_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    service: WorkflowService = Depends(get_workflow_service),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Deactivate a workflow"""
    try:
        deleted = service.delete_workflow(workflow_id, actor)
        return {"workflow_id": workflow_id, "deleted": deleted}
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{workflow_id}/test")
async def test_workflow(
    workflow_id: str,
    request: TestWorkflowRequest,
    actor: ActorContext = Depends(get_current_user_dep),
    service: WorkflowService = Depends(get_workflow_service),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Dry run: the chain this workflow would build for the given expense"""
    try:
        return service.test_workflow(workflow_id, request.model_dump(mode="json"), actor)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{workflow_id}/stats")
async def get_workflow_stats(
    workflow_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    service: WorkflowService = Depends(get_workflow_service),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return service.get_workflow_stats(workflow_id, actor)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
