"""Workflow Selector - Pick the one workflow that governs an expense"""
from typing import Optional

from ..domain.models import Expense, User, Workflow, WorkflowRule
from ..domain.enums import RuleCondition
from ..domain.errors import WorkflowNotFoundError
from ..repositories.workflow_repo import WorkflowRepository
from ..config.settings import settings
from ..utils.idgen import generate_workflow_id
from ..utils.logger import get_logger
from .condition_evaluator import ConditionEvaluator

logger = get_logger(__name__)


class WorkflowSelector:
    """
    Resolve the workflow for an expense

    Order of precedence:
    1. The workflow the employee picked explicitly (must be active, same tenant)
    2. The first active non-default workflow whose rules match, oldest first
    3. The tenant's default workflow, created on first use
    """

    def __init__(
        self,
        workflow_repo: Optional[WorkflowRepository] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None
    ):
        self.workflow_repo = workflow_repo or WorkflowRepository()
        self.conditions = condition_evaluator or ConditionEvaluator()

    def select(
        self,
        expense: Expense,
        employee: Optional[User],
        explicit_workflow_id: Optional[str] = None
    ) -> Workflow:
        if explicit_workflow_id:
            workflow = self.workflow_repo.get_workflow(explicit_workflow_id)
            if not workflow or not workflow.is_active or workflow.tenant_id != expense.tenant_id:
                raise WorkflowNotFoundError(
                    "Selected workflow not found or inactive",
                    details={"workflow_id": explicit_workflow_id}
                )
            self._log_selected(expense, workflow, "explicit")
            return workflow

        for workflow in self.workflow_repo.list_workflows(expense.tenant_id, active_only=True):
            if workflow.is_default:
                continue
            if self.is_applicable(workflow, expense, employee):
                self._log_selected(expense, workflow, "rules")
                return workflow

        workflow = self.get_default_workflow(expense.tenant_id)
        self._log_selected(expense, workflow, "default")
        return workflow

    def is_applicable(self, workflow: Workflow, expense: Expense, employee: Optional[User]) -> bool:
        """Any one matching rule makes the workflow applicable"""
        return any(self.conditions.matches_rule(rule, expense, employee) for rule in workflow.rules)

    def get_default_workflow(self, tenant_id: str) -> Workflow:
        """Fetch or lazily create the tenant's catch-all workflow"""
        candidate = Workflow(
            workflow_id=generate_workflow_id(),
            tenant_id=tenant_id,
            name=settings.default_workflow_name,
            description="Default approval workflow for all expenses",
            rules=[
                WorkflowRule(
                    condition=RuleCondition.AMOUNT_THRESHOLD,
                    value=0,
                    level=1,
                    is_required=False
                )
            ],
            is_default=True
        )

        workflow = self.workflow_repo.get_or_create_default_workflow(candidate)
        if workflow.workflow_id == candidate.workflow_id:
            logger.info(
                f"Created default workflow for tenant {tenant_id}",
                extra={"event": "default_workflow_created", "tenant_id": tenant_id, "workflow_id": workflow.workflow_id}
            )
        return workflow

    @staticmethod
    def _log_selected(expense: Expense, workflow: Workflow, how: str) -> None:
        logger.info(
            f"Selected workflow {workflow.name} for {expense.expense_id}",
            extra={
                "event": "workflow_selected",
                "expense_id": expense.expense_id,
                "workflow_id": workflow.workflow_id,
                "tenant_id": expense.tenant_id,
                "details": how
            }
        )
