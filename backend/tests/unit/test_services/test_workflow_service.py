"""Workflow management: validation, permissions, dry run, stats"""
import pytest

from expenseflow.domain.enums import ExpenseStatus
from expenseflow.domain.errors import (
    ConcurrencyError, InvalidStateError, PermissionDeniedError, WorkflowNotFoundError,
    WorkflowValidationError
)
from expenseflow.engine.workflow_selector import WorkflowSelector

from tests.conftest import make_expense


def sequence_definition(**overrides):
    data = {
        "name": "Travel approvals",
        "rules": [{"condition": "category", "value": "travel", "level": 1}],
        "approval_sequence": [
            {"step": 1, "name": "Manager", "is_manager_approver": True},
            {"step": 2, "name": "Finance", "approvers": ["u-cfo"]},
        ],
    }
    data.update(overrides)
    return data


def error_types(exc_info):
    return [e["type"] for e in exc_info.value.details["errors"]]


class TestCreate:

    def test_admin_creates_workflow(self, workflow_service, workflow_repo, actor):
        workflow = workflow_service.create_workflow(sequence_definition(), actor("u-admin"))

        assert workflow.tenant_id == "acme"
        assert workflow.version == 1
        assert [s.step for s in workflow.approval_sequence] == [1, 2]
        assert workflow_repo.get_workflow(workflow.workflow_id) is not None

    def test_server_owned_fields_are_ignored(self, workflow_service, actor):
        workflow = workflow_service.create_workflow(
            sequence_definition(tenant_id="globex", is_default=True, version=7), actor("u-admin")
        )

        assert (workflow.tenant_id, workflow.is_default, workflow.version) == ("acme", False, 1)

    def test_non_admin_is_refused(self, workflow_service, actor):
        with pytest.raises(PermissionDeniedError):
            workflow_service.create_workflow(sequence_definition(), actor("u-manager"))

    def test_unknown_enum_value_is_a_validation_error(self, workflow_service, actor):
        definition = sequence_definition(rules=[{"condition": "weather", "value": "sunny", "level": 1}])

        with pytest.raises(WorkflowValidationError):
            workflow_service.create_workflow(definition, actor("u-admin"))

    @pytest.mark.parametrize("overrides,expected", [
        ({"approval_sequence": [{"step": 1}, {"step": 1}]}, "DUPLICATE_STEP"),
        ({"approval_sequence": [{"step": 0}]}, "INVALID_STEP_NUMBER"),
        ({"conditional_rules": [{"type": "percentage", "auto_approve": True}]}, "MISSING_PERCENTAGE"),
        ({"conditional_rules": [{"type": "hybrid", "percentage": 50}]}, "MISSING_SPECIFIC_APPROVERS"),
        ({"escalation_settings": {"enabled": False, "escalation_time_hours": 0}}, "INVALID_ESCALATION_TIME"),
        ({"escalation_settings": {"enabled": True, "escalation_time_hours": 24}}, "MISSING_ESCALATION_APPROVERS"),
        ({"default_approvers": ["u-retired", "u-outsider", "u-ghost"]}, "UNKNOWN_APPROVERS"),
        ({"name": "   "}, "MISSING_NAME"),
    ])
    def test_structural_errors(self, workflow_service, actor, overrides, expected):
        with pytest.raises(WorkflowValidationError) as exc_info:
            workflow_service.create_workflow(sequence_definition(**overrides), actor("u-admin"))

        assert expected in error_types(exc_info)

    def test_unknown_approvers_are_listed(self, workflow_service, actor):
        with pytest.raises(WorkflowValidationError) as exc_info:
            workflow_service.create_workflow(
                sequence_definition(default_approvers=["u-cfo", "u-ghost"]), actor("u-admin")
            )

        assert exc_info.value.details["errors"][0]["approver_ids"] == ["u-ghost"]

    def test_percentage_out_of_range(self, workflow_service, actor):
        definition = sequence_definition(conditional_rules=[{"type": "percentage", "percentage": 150}])

        with pytest.raises(WorkflowValidationError):
            workflow_service.create_workflow(definition, actor("u-admin"))


class TestUpdateAndDelete:

    @pytest.fixture
    def workflow(self, workflow_service, actor):
        return workflow_service.create_workflow(sequence_definition(), actor("u-admin"))

    def test_partial_update_bumps_version(self, workflow_service, workflow, actor):
        updated = workflow_service.update_workflow(
            workflow.workflow_id, {"description": "Now with notes"}, actor("u-admin")
        )

        assert updated.description == "Now with notes"
        assert updated.name == workflow.name
        assert updated.version == workflow.version + 1

    def test_stale_version_conflicts(self, workflow_service, workflow, actor):
        workflow_service.update_workflow(workflow.workflow_id, {"description": "first"}, actor("u-admin"))

        with pytest.raises(ConcurrencyError):
            workflow_service.update_workflow(
                workflow.workflow_id, {"description": "second"}, actor("u-admin"),
                expected_version=workflow.version
            )

    def test_invalid_update_is_rejected(self, workflow_service, workflow, actor):
        with pytest.raises(WorkflowValidationError):
            workflow_service.update_workflow(
                workflow.workflow_id, {"approval_sequence": [{"step": 2}, {"step": 2}]}, actor("u-admin")
            )

    def test_delete_deactivates(self, workflow_service, workflow, actor):
        assert workflow_service.delete_workflow(workflow.workflow_id, actor("u-admin"))

        assert workflow_service.list_workflows(actor("u-admin")) == []
        assert len(workflow_service.list_workflows(actor("u-admin"), include_inactive=True)) == 1

    def test_default_cannot_be_deleted(self, workflow_service, actor):
        default = WorkflowSelector(workflow_service.repo).get_default_workflow("acme")

        with pytest.raises(InvalidStateError):
            workflow_service.delete_workflow(default.workflow_id, actor("u-admin"))

    def test_default_cannot_be_deactivated_by_update(self, workflow_service, actor):
        selector = WorkflowSelector(workflow_service.repo)
        default = selector.get_default_workflow("acme")

        with pytest.raises(InvalidStateError):
            workflow_service.update_workflow(default.workflow_id, {"is_active": False}, actor("u-admin"))

        assert selector.get_default_workflow("acme").is_active
        renamed = workflow_service.update_workflow(default.workflow_id, {"name": "Fallback"}, actor("u-admin"))
        assert (renamed.name, renamed.is_active) == ("Fallback", True)

    def test_other_tenant_cannot_see_it(self, workflow_service, workflow, actor):
        with pytest.raises(WorkflowNotFoundError):
            workflow_service.get_workflow(workflow.workflow_id, actor("u-outsider"))


class TestDryRunAndStats:

    @pytest.fixture
    def workflow(self, workflow_service, actor):
        return workflow_service.create_workflow(sequence_definition(), actor("u-admin"))

    def test_dry_run_builds_chain_without_persisting(self, workflow_service, expense_repo, workflow, actor):
        result = workflow_service.test_workflow(
            workflow.workflow_id, {"amount": 400, "category": "travel"}, actor("u-admin")
        )

        assert result["is_applicable"] is True
        # the admin has no manager, so step 1 falls back to admins
        assert [(e["approver_id"], e["level"]) for e in result["approval_chain"]] == [("u-admin", 1), ("u-cfo", 2)]
        assert expense_repo.expenses == {}

    def test_dry_run_reports_inapplicable(self, workflow_service, workflow, actor):
        result = workflow_service.test_workflow(workflow.workflow_id, {"amount": 400, "category": "meals"}, actor("u-admin"))

        assert result["is_applicable"] is False

    def test_stats_group_by_status(self, workflow_service, expense_repo, workflow, actor):
        for amount, status in [(100, ExpenseStatus.APPROVED), (50, ExpenseStatus.APPROVED), (30, ExpenseStatus.REJECTED)]:
            expense_repo.create_expense(make_expense(amount=amount, status=status, workflow_id=workflow.workflow_id))
        expense_repo.create_expense(make_expense(amount=999, status=ExpenseStatus.APPROVED))

        stats = workflow_service.get_workflow_stats(workflow.workflow_id, actor("u-manager"))

        assert stats["total_expenses"] == 3
        assert stats["total_amount"] == 180
        assert stats["by_status"] == [
            {"status": "approved", "count": 2, "total_amount": 150},
            {"status": "rejected", "count": 1, "total_amount": 30},
        ]

    def test_available_approvers(self, workflow_service, actor):
        approvers = workflow_service.list_available_approvers(actor("u-employee"))

        assert [u.user_id for u in approvers] == ["u-admin", "u-cfo", "u-lead", "u-manager"]
