"""Workflow Service - Workflow management business logic"""
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..domain.models import ActorContext, Expense, User, Workflow
from ..domain.enums import AutoApproveRuleType
from ..domain.errors import (
    InvalidStateError, PermissionDeniedError, WorkflowNotFoundError, WorkflowValidationError
)
from ..engine.chain_builder import ChainBuilder
from ..engine.workflow_selector import WorkflowSelector
from ..repositories.expense_repo import ExpenseRepository
from ..repositories.workflow_repo import WorkflowRepository
from ..utils.idgen import generate_workflow_id
from ..utils.time import utc_now
from ..utils.logger import get_logger
from .directory_service import DirectoryService

logger = get_logger(__name__)

# Fields a client may set on a workflow; everything else is server-owned
EDITABLE_FIELDS = {
    "name", "description", "rules", "approval_sequence", "conditional_rules",
    "default_approvers", "escalation_settings", "is_active",
}


class WorkflowService:
    """Service for workflow operations"""

    def __init__(
        self,
        repo: Optional[WorkflowRepository] = None,
        expense_repo: Optional[ExpenseRepository] = None,
        directory: Optional[DirectoryService] = None
    ):
        self.repo = repo or WorkflowRepository()
        self.expense_repo = expense_repo or ExpenseRepository()
        self.directory = directory or DirectoryService()

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_workflow(self, data: Dict[str, Any], actor: ActorContext) -> Workflow:
        """Create a workflow for the actor's tenant (admins only)"""
        self._ensure_admin(actor)

        now = utc_now()
        fields = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        workflow = self._build(
            workflow_id=generate_workflow_id(),
            tenant_id=actor.tenant_id,
            created_at=now,
            updated_at=now,
            version=1,
            **fields
        )
        self._raise_if_invalid(workflow)

        created = self.repo.create_workflow(workflow)
        logger.info(
            f"Workflow created: {created.name}",
            extra={"workflow_id": created.workflow_id, "tenant_id": actor.tenant_id, "actor_id": actor.user_id}
        )
        return created

    def get_workflow(self, workflow_id: str, actor: ActorContext) -> Workflow:
        """Get a workflow of the actor's tenant"""
        workflow = self.repo.get_workflow(workflow_id)
        if not workflow or workflow.tenant_id != actor.tenant_id:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    def list_workflows(self, actor: ActorContext, include_inactive: bool = False) -> List[Workflow]:
        return self.repo.list_workflows(actor.tenant_id, active_only=not include_inactive)

    def update_workflow(
        self,
        workflow_id: str,
        data: Dict[str, Any],
        actor: ActorContext,
        expected_version: Optional[int] = None
    ) -> Workflow:
        """
        Partially update a workflow

        In-flight expenses keep the chain they were built with; only new
        submissions see the change.
        """
        self._ensure_admin(actor)
        current = self.get_workflow(workflow_id, actor)

        fields = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        if current.is_default and fields.get("is_active") is False:
            raise InvalidStateError("The default workflow cannot be deactivated")
        if not fields:
            return current

        merged = self._build(**{**current.model_dump(), **fields})
        self._raise_if_invalid(merged)

        updates = {k: v for k, v in merged.model_dump().items() if k in fields}
        updated = self.repo.update_workflow(
            workflow_id=workflow_id,
            updates=updates,
            expected_version=expected_version if expected_version is not None else current.version
        )
        logger.info(
            f"Workflow updated: {workflow_id}",
            extra={"workflow_id": workflow_id, "actor_id": actor.user_id, "details": sorted(fields)}
        )
        return updated

    def delete_workflow(self, workflow_id: str, actor: ActorContext) -> bool:
        """Soft delete; the tenant default cannot be removed"""
        self._ensure_admin(actor)
        workflow = self.get_workflow(workflow_id, actor)

        if workflow.is_default:
            raise InvalidStateError("The default workflow cannot be deleted")

        success = self.repo.deactivate_workflow(workflow_id)
        if success:
            logger.info(
                f"Deactivated workflow: {workflow_id}",
                extra={"workflow_id": workflow_id, "actor_id": actor.user_id}
            )
        return success

    # =========================================================================
    # Dry Run & Stats
    # =========================================================================

    def test_workflow(
        self,
        workflow_id: str,
        expense_data: Dict[str, Any],
        actor: ActorContext
    ) -> Dict[str, Any]:
        """
        Show what a workflow would do with a hypothetical expense

        The actor stands in as the employee. Nothing is persisted.
        """
        self._ensure_admin(actor)
        workflow = self.get_workflow(workflow_id, actor)
        employee = self.directory.get_user(actor.user_id)

        try:
            expense = Expense(
                expense_id="DRY-RUN",
                tenant_id=actor.tenant_id,
                employee_id=actor.user_id,
                amount=expense_data.get("amount", 0),
                currency=expense_data.get("currency", "USD"),
                category=expense_data.get("category", "other"),
                description=expense_data.get("description", "")
            )
        except PydanticValidationError as e:
            raise WorkflowValidationError(
                "Invalid expense data",
                details={"errors": e.errors(include_url=False, include_context=False)}
            )

        selector = WorkflowSelector(self.repo)
        chain = ChainBuilder(self.directory).build(expense, workflow, employee)

        return {
            "workflow_id": workflow.workflow_id,
            "workflow": workflow.name,
            "is_applicable": workflow.is_default or selector.is_applicable(workflow, expense, employee),
            "approval_chain": [entry.model_dump(mode="json") for entry in chain],
        }

    def get_workflow_stats(self, workflow_id: str, actor: ActorContext) -> Dict[str, Any]:
        """Expense counts and totals per status for a workflow"""
        workflow = self.get_workflow(workflow_id, actor)
        breakdown = self.expense_repo.get_status_breakdown(actor.tenant_id, workflow_id)

        return {
            "workflow_id": workflow.workflow_id,
            "workflow_name": workflow.name,
            "total_expenses": sum(row["count"] for row in breakdown),
            "total_amount": sum(row["total_amount"] for row in breakdown),
            "by_status": breakdown,
        }

    def list_available_approvers(self, actor: ActorContext) -> List[User]:
        return self.directory.list_available_approvers(actor.tenant_id)

    # =========================================================================
    # Validation
    # =========================================================================

    @staticmethod
    def _ensure_admin(actor: ActorContext) -> None:
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can manage approval workflows")

    @staticmethod
    def _build(**fields: Any) -> Workflow:
        try:
            return Workflow.model_validate(fields)
        except PydanticValidationError as e:
            raise WorkflowValidationError(
                "Invalid workflow definition",
                details={"errors": e.errors(include_url=False, include_context=False)}
            )

    def _raise_if_invalid(self, workflow: Workflow) -> None:
        errors = self._validate_definition(workflow)
        if errors:
            raise WorkflowValidationError("Workflow validation failed", details={"errors": errors})

    def _validate_definition(self, workflow: Workflow) -> List[Dict[str, Any]]:
        """
        Structural checks pydantic cannot express on its own

        Returns:
            List of {"type", "message", "path"} errors; empty when valid
        """
        errors: List[Dict[str, Any]] = []

        if not workflow.name.strip():
            errors.append({"type": "MISSING_NAME", "message": "Workflow name is required", "path": "name"})

        seen_steps = set()
        for i, step in enumerate(workflow.approval_sequence):
            if step.step < 1:
                errors.append({
                    "type": "INVALID_STEP_NUMBER",
                    "message": f"Step numbers must be positive, got {step.step}",
                    "path": f"approval_sequence[{i}].step"
                })
            if step.step in seen_steps:
                errors.append({
                    "type": "DUPLICATE_STEP",
                    "message": f"Step {step.step} is defined more than once",
                    "path": f"approval_sequence[{i}].step"
                })
            seen_steps.add(step.step)

        for i, rule in enumerate(workflow.conditional_rules):
            path = f"conditional_rules[{i}]"
            if rule.type in (AutoApproveRuleType.PERCENTAGE, AutoApproveRuleType.HYBRID) and rule.percentage is None:
                errors.append({
                    "type": "MISSING_PERCENTAGE",
                    "message": f"{rule.type.value} rules need a percentage",
                    "path": f"{path}.percentage"
                })
            if rule.type in (AutoApproveRuleType.SPECIFIC_APPROVER, AutoApproveRuleType.HYBRID) and not rule.specific_approvers:
                errors.append({
                    "type": "MISSING_SPECIFIC_APPROVERS",
                    "message": f"{rule.type.value} rules need at least one specific approver",
                    "path": f"{path}.specific_approvers"
                })

        escalation = workflow.escalation_settings
        if escalation.escalation_time_hours <= 0:
            errors.append({
                "type": "INVALID_ESCALATION_TIME",
                "message": "Escalation time must be positive",
                "path": "escalation_settings.escalation_time_hours"
            })
        if escalation.enabled and not escalation.escalation_approvers:
            errors.append({
                "type": "MISSING_ESCALATION_APPROVERS",
                "message": "Escalation is enabled but has no approvers",
                "path": "escalation_settings.escalation_approvers"
            })

        referenced = workflow.referenced_approver_ids()
        if referenced:
            active = {u.user_id for u in self.directory.lookup_active_users(referenced, workflow.tenant_id)}
            unknown = [user_id for user_id in referenced if user_id not in active]
            if unknown:
                errors.append({
                    "type": "UNKNOWN_APPROVERS",
                    "message": "Some approvers are not active users of this company",
                    "path": None,
                    "approver_ids": unknown
                })

        return errors
