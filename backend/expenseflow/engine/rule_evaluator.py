"""Conditional Rule Evaluator - Auto-approval short-circuits"""
from typing import Optional

from ..domain.models import AutoApproveRule, ChainEntry, Expense, User, Workflow
from ..domain.enums import ApprovalAction, AutoApproveRuleType, ChainEntryStatus
from ..utils.logger import get_logger
from .condition_evaluator import ConditionEvaluator

logger = get_logger(__name__)


class ConditionalRuleEvaluator:
    """
    Decide whether a workflow's conditional rules resolve an expense early

    Rules are tried in order; the first one whose conditions and type check
    both hold decides the outcome through its `auto_approve` flag.
    """

    def __init__(self, condition_evaluator: Optional[ConditionEvaluator] = None):
        self.conditions = condition_evaluator or ConditionEvaluator()

    def evaluate(
        self,
        workflow: Optional[Workflow],
        expense: Expense,
        acted_entry: Optional[ChainEntry],
        action: ApprovalAction,
        employee: Optional[User]
    ) -> bool:
        """True when a matched rule auto-approves the expense"""
        return self.fired_rule(workflow, expense, acted_entry, action, employee) is not None

    def fired_rule(
        self,
        workflow: Optional[Workflow],
        expense: Expense,
        acted_entry: Optional[ChainEntry],
        action: ApprovalAction,
        employee: Optional[User]
    ) -> Optional[AutoApproveRule]:
        """The matched rule if it auto-approves; a matched rule with auto_approve off is a no-op"""
        rule = self.match_rule(workflow, expense, action, employee)
        if rule is None or not rule.auto_approve:
            return None

        logger.info(
            f"Conditional rule fired on {expense.expense_id}",
            extra={
                "event": "rule_fired",
                "expense_id": expense.expense_id,
                "rule_name": rule.name or rule.type.value,
                "entry_id": acted_entry.entry_id if acted_entry else None
            }
        )
        return rule

    def match_rule(
        self,
        workflow: Optional[Workflow],
        expense: Expense,
        action: ApprovalAction,
        employee: Optional[User]
    ) -> Optional[AutoApproveRule]:
        """First rule that matches, or None. Only approvals can match."""
        if workflow is None or action != ApprovalAction.APPROVE:
            return None

        for rule in workflow.conditional_rules:
            if not self.conditions.evaluate_conditions(rule.conditions, expense, employee):
                continue
            if self._type_check(rule, expense):
                return rule
        return None

    def _type_check(self, rule: AutoApproveRule, expense: Expense) -> bool:
        if rule.type == AutoApproveRuleType.PERCENTAGE:
            return self._percentage_met(rule, expense)
        if rule.type == AutoApproveRuleType.SPECIFIC_APPROVER:
            return self._specific_approver_met(rule, expense)
        if rule.type == AutoApproveRuleType.HYBRID:
            return self._percentage_met(rule, expense) or self._specific_approver_met(rule, expense)
        return False

    @staticmethod
    def _percentage_met(rule: AutoApproveRule, expense: Expense) -> bool:
        total = len(expense.approval_chain)
        if total == 0 or rule.percentage is None:
            return False
        approved = sum(1 for e in expense.approval_chain if e.status == ChainEntryStatus.APPROVED)
        return approved / total * 100 >= rule.percentage

    @staticmethod
    def _specific_approver_met(rule: AutoApproveRule, expense: Expense) -> bool:
        listed = set(rule.specific_approvers)
        return any(
            e.status == ChainEntryStatus.APPROVED and e.approver_id in listed
            for e in expense.approval_chain
        )
