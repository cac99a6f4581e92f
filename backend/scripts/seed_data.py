"""
Seed Data Script - Creates a demo company with a two-step approval workflow
Run: python -m scripts.seed_data
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from expenseflow.repositories.mongo_client import get_collection, create_indexes
from expenseflow.repositories.user_repo import UserRepository
from expenseflow.repositories.workflow_repo import WorkflowRepository
from expenseflow.domain.models import (
    User, Workflow, WorkflowRule, ApprovalStep, AutoApproveRule, Condition, EscalationSettings
)
from expenseflow.domain.enums import (
    UserRole, RuleCondition, AutoApproveRuleType, ConditionField, ConditionOperator
)
from expenseflow.utils.idgen import generate_workflow_id

TENANT_ID = "acme"

DEMO_USERS = [
    User(user_id="u-admin", tenant_id=TENANT_ID, email="admin@acme.test",
         display_name="Alex Admin", role=UserRole.ADMIN, department="Finance"),
    User(user_id="u-cfo", tenant_id=TENANT_ID, email="cfo@acme.test",
         display_name="Casey CFO", role=UserRole.MANAGER, department="Finance"),
    User(user_id="u-manager", tenant_id=TENANT_ID, email="manager@acme.test",
         display_name="Morgan Manager", role=UserRole.MANAGER, department="Engineering"),
    User(user_id="u-employee", tenant_id=TENANT_ID, email="employee@acme.test",
         display_name="Jordan Employee", role=UserRole.EMPLOYEE,
         manager_id="u-manager", department="Engineering"),
]


def create_demo_users(repo: UserRepository) -> None:
    for user in DEMO_USERS:
        if repo.get_user(user.user_id):
            print(f"User exists: {user.user_id}")
            continue
        repo.create_user(user)
        print(f"Created user: {user.user_id} ({user.role.value})")


def create_sample_workflow(repo: WorkflowRepository) -> None:
    """Manager approval, then Finance sign-off for large amounts"""
    if get_collection("workflows").count_documents({"tenant_id": TENANT_ID, "is_default": False}) > 0:
        print("Workflows already seeded. Skipping.")
        return

    workflow = Workflow(
        workflow_id=generate_workflow_id(),
        tenant_id=TENANT_ID,
        name="Standard Expense Approval",
        description="Direct manager, then Finance for amounts of 1000 or more.",
        # Applies to every amount; the sequence below decides who approves
        rules=[WorkflowRule(condition=RuleCondition.AMOUNT_THRESHOLD, value=0, level=1)],
        approval_sequence=[
            ApprovalStep(step=1, name="Manager Approval", is_manager_approver=True),
            ApprovalStep(
                step=2,
                name="Finance Approval",
                approvers=["u-cfo"],
                conditions=[Condition(
                    field=ConditionField.AMOUNT,
                    operator=ConditionOperator.GREATER_THAN,
                    value=999.99
                )]
            ),
        ],
        conditional_rules=[
            AutoApproveRule(
                name="CFO sign-off",
                type=AutoApproveRuleType.SPECIFIC_APPROVER,
                specific_approvers=["u-cfo"],
                auto_approve=True
            )
        ],
        escalation_settings=EscalationSettings(
            enabled=True,
            escalation_time_hours=48,
            escalation_approvers=["u-admin"]
        )
    )
    repo.create_workflow(workflow)
    print(f"Created workflow: {workflow.workflow_id}")


def main():
    print("=== Seeding database ===")
    print("-" * 40)

    create_indexes()
    create_demo_users(UserRepository())
    create_sample_workflow(WorkflowRepository())

    print("-" * 40)
    print("Done! Call the API with header X-User-Id: u-employee")


if __name__ == "__main__":
    main()
