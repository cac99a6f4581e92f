"""
Pytest Configuration and Fixtures

In-memory stand-ins for the MongoDB repositories so the engine, services
and API can be exercised without a database.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest

from expenseflow.domain.models import (
    ActorContext, ApprovalStep, AuditEvent, ChainEntry, Expense, User, Workflow, WorkflowRule
)
from expenseflow.domain.enums import (
    ACTIONABLE_EXPENSE_STATUSES, ChainEntryStatus, ExpenseStatus, RuleCondition, UserRole
)
from expenseflow.domain.errors import (
    ConcurrencyError, ExpenseNotFoundError, WorkflowNotFoundError
)
from expenseflow.engine.audit_writer import AuditWriter
from expenseflow.engine.engine import ApprovalEngine
from expenseflow.services.directory_service import DirectoryService
from expenseflow.services.notification_service import NotificationService
from expenseflow.services.workflow_service import WorkflowService
from expenseflow.services.expense_service import ExpenseService
from expenseflow.utils.idgen import generate_expense_id, generate_workflow_id
from expenseflow.utils.time import utc_now

TENANT = "acme"
OTHER_TENANT = "globex"
T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)
NEVER = datetime.min.replace(tzinfo=timezone.utc)


# ============================================================================
# In-memory repositories
# ============================================================================

class FakeUserRepository:
    def __init__(self, users: Optional[List[User]] = None):
        self.users: Dict[str, User] = {u.user_id: u for u in users or []}

    def create_user(self, user: User) -> User:
        self.users[user.user_id] = user
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    def find_active_by_ids(self, user_ids: List[str], tenant_id: str) -> List[User]:
        found = []
        for user_id in dict.fromkeys(user_ids):
            user = self.users.get(user_id)
            if user and user.is_active and user.tenant_id == tenant_id:
                found.append(user)
        return found

    def find_active_by_roles(self, tenant_id: str, roles: List[UserRole]) -> List[User]:
        matches = [
            u for u in self.users.values()
            if u.tenant_id == tenant_id and u.is_active and u.role in roles
        ]
        return sorted(matches, key=lambda u: (u.display_name, u.user_id))


class FakeWorkflowRepository:
    def __init__(self):
        self.workflows: Dict[str, Workflow] = {}

    def create_workflow(self, workflow: Workflow) -> Workflow:
        self.workflows[workflow.workflow_id] = workflow.model_copy(deep=True)
        return workflow

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        workflow = self.workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    def list_workflows(self, tenant_id: str, active_only: bool = True) -> List[Workflow]:
        found = [
            w.model_copy(deep=True) for w in self.workflows.values()
            if w.tenant_id == tenant_id and (w.is_active or not active_only)
        ]
        return sorted(found, key=lambda w: (w.created_at, w.workflow_id))

    def update_workflow(
        self,
        workflow_id: str,
        updates: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> Workflow:
        stored = self.workflows.get(workflow_id)
        if stored is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        if expected_version is not None and stored.version != expected_version:
            raise ConcurrencyError(f"Workflow {workflow_id} was modified")

        data = stored.model_dump()
        data.update(updates)
        data["version"] = stored.version + 1
        data["updated_at"] = utc_now()
        self.workflows[workflow_id] = Workflow.model_validate(data)
        return self.get_workflow(workflow_id)

    def deactivate_workflow(self, workflow_id: str) -> bool:
        stored = self.workflows.get(workflow_id)
        if stored is None:
            return False
        stored.is_active = False
        stored.version += 1
        return True

    def get_or_create_default_workflow(self, default: Workflow) -> Workflow:
        for workflow in self.workflows.values():
            if workflow.tenant_id == default.tenant_id and workflow.is_default:
                return workflow.model_copy(deep=True)
        return self.create_workflow(default)


class FakeExpenseRepository:
    """Stores snapshots; every write checks and bumps the version like the Mongo repository"""

    def __init__(self):
        self.expenses: Dict[str, Expense] = {}

    def create_expense(self, expense: Expense) -> Expense:
        self.expenses[expense.expense_id] = expense.model_copy(deep=True)
        return expense

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        expense = self.expenses.get(expense_id)
        return expense.model_copy(deep=True) if expense else None

    def get_expense_or_raise(self, expense_id: str, tenant_id: Optional[str] = None) -> Expense:
        expense = self.get_expense(expense_id)
        if not expense or (tenant_id is not None and expense.tenant_id != tenant_id):
            raise ExpenseNotFoundError(f"Expense {expense_id} not found")
        return expense

    def _compare_and_set(
        self,
        expense_id: str,
        expected_version: int,
        apply: Callable[[Dict[str, Any]], None]
    ) -> Expense:
        stored = self.expenses.get(expense_id)
        if stored is None:
            raise ExpenseNotFoundError(f"Expense {expense_id} not found")
        if stored.version != expected_version:
            raise ConcurrencyError(
                f"Expense {expense_id} was modified",
                details={"expected_version": expected_version}
            )

        data = stored.model_dump()
        apply(data)
        data["version"] = stored.version + 1
        data["updated_at"] = utc_now()
        self.expenses[expense_id] = Expense.model_validate(data)
        return self.get_expense(expense_id)

    def update_expense(self, expense_id: str, updates: Dict[str, Any], expected_version: int) -> Expense:
        return self._compare_and_set(expense_id, expected_version, lambda data: data.update(updates))

    def save_chain(self, expense: Expense, updates: Optional[Dict[str, Any]] = None) -> Expense:
        fields = dict(updates or {})
        fields["approval_chain"] = [entry.model_dump() for entry in expense.approval_chain]
        return self.update_expense(expense.expense_id, fields, expected_version=expense.version)

    def append_chain_entries(self, expense_id: str, entries: List[ChainEntry], expected_version: int) -> Expense:
        dumped = [entry.model_dump() for entry in entries]
        return self._compare_and_set(
            expense_id, expected_version, lambda data: data["approval_chain"].extend(dumped)
        )

    def find_with_pending_entry(self, tenant_id: str, approver_id: str) -> List[Expense]:
        return [
            e.model_copy(deep=True) for e in self.expenses.values()
            if e.tenant_id == tenant_id
            and e.status in ACTIONABLE_EXPENSE_STATUSES
            and any(c.approver_id == approver_id and c.is_pending for c in e.approval_chain)
        ]

    def list_by_approver(
        self,
        tenant_id: str,
        approver_id: str,
        status: Optional[ExpenseStatus] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[Expense]:
        found = [
            e.model_copy(deep=True) for e in self.expenses.values()
            if e.tenant_id == tenant_id
            and any(c.approver_id == approver_id for c in e.approval_chain)
            and (status is None or e.status == status)
        ]
        return found[skip:skip + limit]

    def list_actionable(self, limit: int = 500, after: Optional[Tuple[datetime, str]] = None) -> List[Expense]:
        def key(e: Expense):
            return (e.submitted_at or NEVER, e.expense_id)

        found = sorted(
            (e for e in self.expenses.values() if e.status in ACTIONABLE_EXPENSE_STATUSES), key=key
        )
        if after:
            found = [e for e in found if key(e) > (after[0] or NEVER, after[1])]
        return [e.model_copy(deep=True) for e in found[:limit]]

    def _breakdown(self, expenses: List[Expense]) -> List[Dict[str, Any]]:
        rows: Dict[str, Dict[str, Any]] = {}
        for e in expenses:
            row = rows.setdefault(e.status.value, {"status": e.status.value, "count": 0, "total_amount": 0})
            row["count"] += 1
            row["total_amount"] += e.amount
        return [rows[key] for key in sorted(rows)]

    def get_status_breakdown(self, tenant_id: str, workflow_id: str) -> List[Dict[str, Any]]:
        return self._breakdown([
            e for e in self.expenses.values() if e.tenant_id == tenant_id and e.workflow_id == workflow_id
        ])

    def _on_chain(self, tenant_id, approver_id, updated_from, updated_to) -> List[Expense]:
        return [
            e for e in self.expenses.values()
            if e.tenant_id == tenant_id
            and any(c.approver_id == approver_id for c in e.approval_chain)
            and (updated_from is None or e.updated_at >= updated_from)
            and (updated_to is None or e.updated_at <= updated_to)
        ]

    def get_approver_breakdown(self, tenant_id, approver_id, updated_from=None, updated_to=None) -> List[Dict[str, Any]]:
        return self._breakdown(self._on_chain(tenant_id, approver_id, updated_from, updated_to))

    def count_pending_for_approver(self, tenant_id, approver_id, updated_from=None, updated_to=None) -> int:
        return sum(
            1 for e in self._on_chain(tenant_id, approver_id, updated_from, updated_to)
            if e.status in ACTIONABLE_EXPENSE_STATUSES
            and any(c.approver_id == approver_id and c.is_pending for c in e.approval_chain)
        )


class FakeAuditRepository:
    def __init__(self):
        self.events: List[AuditEvent] = []

    def create_event(self, event: AuditEvent) -> AuditEvent:
        self.events.append(event)
        return event

    def get_events_for_expense(self, expense_id: str, event_types=None, skip: int = 0, limit: int = 100) -> List[AuditEvent]:
        found = [
            e for e in self.events
            if e.expense_id == expense_id and (not event_types or e.event_type in event_types)
        ]
        found.sort(key=lambda e: e.timestamp, reverse=True)
        return found[skip:skip + limit]


# ============================================================================
# Factories
# ============================================================================

def make_user(user_id: str, role: UserRole = UserRole.EMPLOYEE, **overrides) -> User:
    data = {
        "user_id": user_id,
        "tenant_id": TENANT,
        "email": f"{user_id}@acme.test",
        "display_name": user_id.replace("u-", "").title(),
        "role": role,
    }
    data.update(overrides)
    return User(**data)


def make_workflow(**overrides) -> Workflow:
    data = {
        "workflow_id": generate_workflow_id(),
        "tenant_id": TENANT,
        "name": "Test Workflow",
        "rules": [WorkflowRule(condition=RuleCondition.AMOUNT_THRESHOLD, value=0, level=1)],
    }
    data.update(overrides)
    return Workflow(**data)


def make_expense(**overrides) -> Expense:
    data = {
        "expense_id": generate_expense_id(),
        "tenant_id": TENANT,
        "employee_id": "u-employee",
        "amount": 250.0,
        "category": "travel",
        "description": "Client visit",
    }
    data.update(overrides)
    return Expense(**data)


def make_entry(entry_id: str, approver_id: str, level: int, **overrides) -> ChainEntry:
    data = {
        "entry_id": entry_id,
        "approver_id": approver_id,
        "level": level,
        "is_required": True,
        "rule": "approval_sequence",
    }
    data.update(overrides)
    return ChainEntry(**data)


def manager_then_admin_sequence() -> List[ApprovalStep]:
    return [
        ApprovalStep(step=1, name="Manager", is_manager_approver=True),
        ApprovalStep(step=2, name="Finance", approvers=["u-admin"]),
    ]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def users() -> List[User]:
    return [
        make_user("u-admin", UserRole.ADMIN, display_name="Alex Admin", department="Finance"),
        make_user("u-cfo", UserRole.MANAGER, display_name="Casey CFO", department="Finance"),
        make_user("u-manager", UserRole.MANAGER, display_name="Morgan Manager", department="Engineering"),
        make_user("u-lead", UserRole.MANAGER, display_name="Lee Lead", department="Engineering"),
        make_user("u-employee", manager_id="u-manager", department="Engineering"),
        make_user("u-orphan", department="Sales"),
        make_user("u-retired", UserRole.MANAGER, is_active=False),
        make_user("u-outsider", UserRole.ADMIN, tenant_id=OTHER_TENANT),
    ]


@pytest.fixture
def user_repo(users) -> FakeUserRepository:
    return FakeUserRepository(users)


@pytest.fixture
def directory(user_repo) -> DirectoryService:
    return DirectoryService(user_repo=user_repo)


@pytest.fixture
def workflow_repo() -> FakeWorkflowRepository:
    return FakeWorkflowRepository()


@pytest.fixture
def expense_repo() -> FakeExpenseRepository:
    return FakeExpenseRepository()


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock(spec=NotificationService)


@pytest.fixture
def audit_writer() -> MagicMock:
    return MagicMock(spec=AuditWriter)


@pytest.fixture
def engine(expense_repo, workflow_repo, directory, notifier, audit_writer) -> ApprovalEngine:
    return ApprovalEngine(
        expense_repo=expense_repo,
        workflow_repo=workflow_repo,
        directory=directory,
        notification_service=notifier,
        audit_writer=audit_writer
    )


@pytest.fixture
def workflow_service(workflow_repo, expense_repo, directory) -> WorkflowService:
    return WorkflowService(repo=workflow_repo, expense_repo=expense_repo, directory=directory)


@pytest.fixture
def audit_repo() -> FakeAuditRepository:
    return FakeAuditRepository()


@pytest.fixture
def expense_service(expense_repo, audit_repo) -> ExpenseService:
    return ExpenseService(repo=expense_repo, audit_repo=audit_repo)


@pytest.fixture
def actor(directory) -> Callable[[str], ActorContext]:
    """actor("u-manager") -> ActorContext resolved through the directory"""
    return directory.resolve_actor


def audit_types(audit_writer: MagicMock) -> List[str]:
    return [c.kwargs["event_type"].value for c in audit_writer.write_event.call_args_list]


def hours_after_t0(hours: float) -> datetime:
    return T0 + timedelta(hours=hours)
