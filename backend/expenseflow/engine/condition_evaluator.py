"""Condition Evaluator - Safe evaluation of workflow conditions"""
from typing import Any, List, Optional

from ..domain.models import Condition, Expense, User, WorkflowRule
from ..domain.enums import ConditionField, ConditionOperator, RuleCondition
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ConditionEvaluator:
    """
    Evaluate workflow conditions against an expense and its employee

    Fields and operators are closed enums - no eval(), no dotted paths.
    """

    def evaluate_conditions(
        self,
        conditions: List[Condition],
        expense: Expense,
        employee: Optional[User]
    ) -> bool:
        """
        All conditions must hold (AND). An empty list always holds.
        """
        return all(self._evaluate_single(c, expense, employee) for c in conditions)

    def matches_rule(
        self,
        rule: WorkflowRule,
        expense: Expense,
        employee: Optional[User]
    ) -> bool:
        """Does a legacy workflow rule apply to this expense"""
        if rule.condition == RuleCondition.AMOUNT_THRESHOLD:
            return self._compare_numeric(expense.amount, rule.value, lambda a, b: a >= b)

        if rule.condition == RuleCondition.CATEGORY:
            return expense.category == rule.value

        if rule.condition == RuleCondition.DEPARTMENT:
            return employee is not None and employee.department == rule.value

        if rule.condition == RuleCondition.EMPLOYEE_LEVEL:
            return employee is not None and employee.role.value == rule.value

        return False

    def _evaluate_single(
        self,
        condition: Condition,
        expense: Expense,
        employee: Optional[User]
    ) -> bool:
        """Evaluate a single condition"""
        field_value = self._get_field_value(condition.field, expense, employee)
        return self._compare(field_value, condition.operator, condition.value)

    def _get_field_value(
        self,
        field: ConditionField,
        expense: Expense,
        employee: Optional[User]
    ) -> Any:
        if field == ConditionField.AMOUNT:
            return expense.amount
        if field == ConditionField.CATEGORY:
            return expense.category
        if employee is None:
            return None
        if field == ConditionField.DEPARTMENT:
            return employee.department
        if field == ConditionField.ROLE:
            return employee.role.value
        return None

    def _compare(
        self,
        field_value: Any,
        operator: ConditionOperator,
        compare_value: Any
    ) -> bool:
        """Compare values using operator"""

        if operator == ConditionOperator.EQUALS:
            return field_value == compare_value

        elif operator == ConditionOperator.GREATER_THAN:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a > b)

        elif operator == ConditionOperator.LESS_THAN:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a < b)

        elif operator == ConditionOperator.CONTAINS:
            # Case-insensitive substring
            if field_value is None or compare_value is None:
                return False
            return str(compare_value).lower() in str(field_value).lower()

        return False

    def _compare_numeric(
        self,
        field_value: Any,
        compare_value: Any,
        comparator
    ) -> bool:
        """Compare numeric values; anything non-numeric fails closed"""
        if field_value is None or compare_value is None:
            return False
        try:
            return comparator(float(field_value), float(compare_value))
        except (ValueError, TypeError):
            logger.warning(f"Non-numeric comparison: {field_value!r} vs {compare_value!r}")
            return False
