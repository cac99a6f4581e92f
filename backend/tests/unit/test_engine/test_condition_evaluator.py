"""Condition and legacy rule matching"""
import pytest

from expenseflow.domain.enums import ConditionField, ConditionOperator, RuleCondition
from expenseflow.domain.models import Condition, WorkflowRule
from expenseflow.engine.condition_evaluator import ConditionEvaluator

from tests.conftest import make_expense


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


@pytest.fixture
def employee(directory):
    return directory.get_user("u-employee")


def cond(field, operator, value):
    return Condition(field=field, operator=operator, value=value)


@pytest.mark.parametrize("condition,expected", [
    (cond(ConditionField.AMOUNT, ConditionOperator.GREATER_THAN, 100), True),
    (cond(ConditionField.AMOUNT, ConditionOperator.GREATER_THAN, 250), False),
    (cond(ConditionField.AMOUNT, ConditionOperator.LESS_THAN, "300"), True),
    (cond(ConditionField.CATEGORY, ConditionOperator.EQUALS, "travel"), True),
    (cond(ConditionField.DEPARTMENT, ConditionOperator.CONTAINS, "ENGINEER"), True),
    (cond(ConditionField.ROLE, ConditionOperator.EQUALS, "employee"), True),
    (cond(ConditionField.ROLE, ConditionOperator.EQUALS, "manager"), False),
])
def test_single_condition(evaluator, employee, condition, expected):
    expense = make_expense(amount=250, category="travel")
    assert evaluator.evaluate_conditions([condition], expense, employee) is expected


def test_conditions_are_anded(evaluator, employee):
    expense = make_expense(amount=250, category="travel")
    conditions = [
        cond(ConditionField.AMOUNT, ConditionOperator.GREATER_THAN, 100),
        cond(ConditionField.CATEGORY, ConditionOperator.EQUALS, "meals"),
    ]
    assert evaluator.evaluate_conditions(conditions, expense, employee) is False


def test_empty_conditions_hold(evaluator):
    assert evaluator.evaluate_conditions([], make_expense(), None) is True


def test_non_numeric_comparison_fails_closed(evaluator, employee):
    condition = cond(ConditionField.AMOUNT, ConditionOperator.GREATER_THAN, "lots")
    assert evaluator.evaluate_conditions([condition], make_expense(), employee) is False


def test_employee_fields_without_employee_fail(evaluator):
    condition = cond(ConditionField.DEPARTMENT, ConditionOperator.EQUALS, "Engineering")
    assert evaluator.evaluate_conditions([condition], make_expense(), None) is False


class TestMatchesRule:

    def test_amount_threshold_is_inclusive(self, evaluator, employee):
        rule = WorkflowRule(condition=RuleCondition.AMOUNT_THRESHOLD, value=250, level=1)
        assert evaluator.matches_rule(rule, make_expense(amount=250), employee)
        assert not evaluator.matches_rule(rule, make_expense(amount=249.99), employee)

    def test_category(self, evaluator, employee):
        rule = WorkflowRule(condition=RuleCondition.CATEGORY, value="meals", level=1)
        assert evaluator.matches_rule(rule, make_expense(category="meals"), employee)
        assert not evaluator.matches_rule(rule, make_expense(category="travel"), employee)

    def test_department_and_level_use_the_employee(self, evaluator, employee):
        department = WorkflowRule(condition=RuleCondition.DEPARTMENT, value="Engineering", level=1)
        level = WorkflowRule(condition=RuleCondition.EMPLOYEE_LEVEL, value="employee", level=1)

        assert evaluator.matches_rule(department, make_expense(), employee)
        assert evaluator.matches_rule(level, make_expense(), employee)
        assert not evaluator.matches_rule(department, make_expense(), None)
