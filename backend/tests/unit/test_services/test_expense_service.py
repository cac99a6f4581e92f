"""Draft creation and expense visibility"""
import pytest

from expenseflow.domain.enums import AuditEventType, ExpenseCategory, ExpenseStatus
from expenseflow.domain.errors import ExpenseNotFoundError
from expenseflow.engine.audit_writer import AuditWriter

from tests.conftest import hours_after_t0, make_entry, make_expense


def test_create_draft(expense_service, expense_repo, actor):
    expense = expense_service.create_expense(
        actor("u-employee"), amount=120.5, category=ExpenseCategory.MEALS,
        description="Team lunch", currency="eur"
    )

    assert expense.status == ExpenseStatus.DRAFT
    assert expense.employee_id == "u-employee"
    assert expense.tenant_id == "acme"
    assert expense.category == "meals"
    assert expense.currency == "EUR"
    assert expense.expense_id.startswith("EXP-")
    assert expense_repo.get_expense(expense.expense_id) is not None


@pytest.fixture
def on_chain(expense_repo):
    expense = make_expense(
        status=ExpenseStatus.SUBMITTED,
        approval_chain=[make_entry("APR-1", "u-manager", 1)]
    )
    expense_repo.create_expense(expense)
    return expense


@pytest.mark.parametrize("viewer", ["u-employee", "u-manager", "u-admin"])
def test_visible_to_owner_approvers_and_admins(expense_service, on_chain, actor, viewer):
    assert expense_service.get_expense(on_chain.expense_id, actor(viewer)).expense_id == on_chain.expense_id


@pytest.mark.parametrize("viewer", ["u-lead", "u-outsider"])
def test_hidden_from_everyone_else(expense_service, on_chain, actor, viewer):
    with pytest.raises(ExpenseNotFoundError):
        expense_service.get_expense(on_chain.expense_id, actor(viewer))


def test_audit_trail_newest_first(expense_service, audit_repo, on_chain, actor):
    writer = AuditWriter(repo=audit_repo)
    writer.write_event(on_chain.expense_id, "acme", AuditEventType.SUBMIT_EXPENSE, actor_id="u-employee")
    writer.write_event(on_chain.expense_id, "acme", AuditEventType.CHAIN_BUILT)
    writer.write_event("EXP-other", "acme", AuditEventType.SUBMIT_EXPENSE, actor_id="u-employee")
    audit_repo.events[0].timestamp = hours_after_t0(0)
    audit_repo.events[1].timestamp = hours_after_t0(1)

    events = expense_service.get_audit_trail(on_chain.expense_id, actor("u-manager"))

    assert [e.event_type for e in events] == [AuditEventType.CHAIN_BUILT, AuditEventType.SUBMIT_EXPENSE]
    assert events[0].actor_id is None


def test_audit_trail_requires_visibility(expense_service, on_chain, actor):
    with pytest.raises(ExpenseNotFoundError):
        expense_service.get_audit_trail(on_chain.expense_id, actor("u-lead"))
