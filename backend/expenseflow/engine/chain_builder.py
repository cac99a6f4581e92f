"""Chain Builder - Turn a workflow into an expense's approval chain

The builder is pure apart from directory reads: it never persists anything
and never notifies anyone. Exactly one resolution strategy runs per build;
`default_approvers` only kick in when that strategy resolves nobody.
"""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

from ..domain.models import ApprovalStep, ChainEntry, Expense, User, Workflow, WorkflowRule
from ..domain.enums import ChainRuleTag
from ..utils.idgen import generate_chain_entry_id
from ..utils.logger import get_logger
from .condition_evaluator import ConditionEvaluator

if TYPE_CHECKING:
    from ..services.directory_service import DirectoryService

logger = get_logger(__name__)


class ResolutionStrategy(ABC):
    """Resolves a workflow definition into chain entries"""

    def __init__(self, directory: "DirectoryService", condition_evaluator: ConditionEvaluator):
        self.directory = directory
        self.conditions = condition_evaluator

    @abstractmethod
    def resolve(self, expense: Expense, workflow: Workflow, employee: Optional[User]) -> List[ChainEntry]:
        ...

    def _manager_of(self, employee: Optional[User]) -> Optional[User]:
        if employee is None:
            return None
        return self.directory.lookup_manager(employee.user_id)


class SequenceStrategy(ResolutionStrategy):
    """
    Multi-level chain from `approval_sequence`

    Every resolved approver of a step gets its own entry at `level = step`,
    so a step with several approvers is a parallel step.
    """

    def resolve(self, expense: Expense, workflow: Workflow, employee: Optional[User]) -> List[ChainEntry]:
        entries: List[ChainEntry] = []

        for step in sorted(workflow.approval_sequence, key=lambda s: s.step):
            if step.conditions and not self.conditions.evaluate_conditions(step.conditions, expense, employee):
                logger.info(
                    f"Skipping step {step.step}: conditions not met",
                    extra={"expense_id": expense.expense_id, "level": step.step}
                )
                continue

            approvers = self._approvers_for_step(step, expense, employee)
            logger.info(
                f"Resolved {len(approvers)} approvers for step {step.step}",
                extra={
                    "event": "entry_resolved",
                    "expense_id": expense.expense_id,
                    "level": step.step,
                    "entry_count": len(approvers)
                }
            )

            for approver in approvers:
                entries.append(ChainEntry(
                    entry_id=generate_chain_entry_id(),
                    approver_id=approver.user_id,
                    level=step.step,
                    step_name=step.name,
                    is_required=step.is_required,
                    is_manager_approver=step.is_manager_approver,
                    rule=ChainRuleTag.APPROVAL_SEQUENCE.value
                ))

        return entries

    def _approvers_for_step(
        self,
        step: ApprovalStep,
        expense: Expense,
        employee: Optional[User]
    ) -> List[User]:
        approvers: List[User] = []
        if step.approvers:
            approvers.extend(self.directory.lookup_active_users(step.approvers, expense.tenant_id))

        if step.is_manager_approver:
            manager = self._manager_of(employee)
            if manager and all(a.user_id != manager.user_id for a in approvers):
                approvers.append(manager)

        if not approvers:
            approvers = self.directory.lookup_admins(expense.tenant_id)
        return approvers


class LegacyRuleStrategy(ResolutionStrategy):
    """
    Single-approver-per-level chain from the legacy `rules` list

    Rules are walked in definition order; the first matching rule for a
    level claims it.
    """

    def resolve(self, expense: Expense, workflow: Workflow, employee: Optional[User]) -> List[ChainEntry]:
        entries: List[ChainEntry] = []
        processed_levels = set()

        for rule in workflow.rules:
            if rule.level in processed_levels:
                continue
            if not self.conditions.matches_rule(rule, expense, employee):
                continue

            approvers = self._approvers_for_rule(rule, expense, employee)
            if not approvers:
                continue

            entries.append(ChainEntry(
                entry_id=generate_chain_entry_id(),
                approver_id=approvers[0].user_id,
                level=rule.level,
                is_required=rule.is_required,
                is_manager_approver=rule.is_manager_approver,
                rule=rule.condition.value
            ))
            processed_levels.add(rule.level)

        return entries

    def _approvers_for_rule(
        self,
        rule: WorkflowRule,
        expense: Expense,
        employee: Optional[User]
    ) -> List[User]:
        if rule.approvers:
            users = self.directory.lookup_active_users(rule.approvers, expense.tenant_id)
            if users:
                return users

        manager = self._manager_of(employee)
        if manager:
            return [manager]

        return self.directory.lookup_admins(expense.tenant_id)


class ChainBuilder:
    """Build the approval chain for an expense"""

    def __init__(
        self,
        directory: "DirectoryService",
        condition_evaluator: Optional[ConditionEvaluator] = None
    ):
        self.directory = directory
        self.conditions = condition_evaluator or ConditionEvaluator()

    def strategy_for(self, workflow: Workflow) -> ResolutionStrategy:
        if workflow.approval_sequence:
            return SequenceStrategy(self.directory, self.conditions)
        return LegacyRuleStrategy(self.directory, self.conditions)

    def build(self, expense: Expense, workflow: Workflow, employee: Optional[User]) -> List[ChainEntry]:
        """
        Build the chain, sorted by level

        Returns:
            Chain entries; an empty list means nothing needs approving
        """
        strategy = self.strategy_for(workflow)
        entries = strategy.resolve(expense, workflow, employee)

        if not entries and workflow.default_approvers:
            entries = self._default_entries(expense, workflow)

        # sorted() is stable, parallel entries keep their resolution order
        entries = sorted(entries, key=lambda e: e.level)

        logger.info(
            f"Built approval chain for {expense.expense_id}",
            extra={
                "event": "chain_built",
                "expense_id": expense.expense_id,
                "workflow_id": workflow.workflow_id,
                "entry_count": len(entries),
                "details": type(strategy).__name__
            }
        )
        return entries

    def _default_entries(self, expense: Expense, workflow: Workflow) -> List[ChainEntry]:
        """One sequential level per active default approver"""
        approvers = self.directory.lookup_active_users(workflow.default_approvers, expense.tenant_id)
        return [
            ChainEntry(
                entry_id=generate_chain_entry_id(),
                approver_id=approver.user_id,
                level=index,
                is_required=True,
                rule=ChainRuleTag.DEFAULT_APPROVERS.value
            )
            for index, approver in enumerate(approvers, start=1)
        ]
