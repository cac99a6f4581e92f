"""Expense Service - Draft expenses owned by employees"""
from datetime import datetime
from typing import List, Optional

from ..domain.models import ActorContext, AuditEvent, Expense
from ..domain.enums import ExpenseCategory, ExpenseStatus, UserRole
from ..domain.errors import ExpenseNotFoundError
from ..repositories.audit_repo import AuditRepository
from ..repositories.expense_repo import ExpenseRepository
from ..utils.idgen import generate_expense_id
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ExpenseService:
    """Service for expense drafts; submission and decisions live in the approval engine"""

    def __init__(
        self,
        repo: Optional[ExpenseRepository] = None,
        audit_repo: Optional[AuditRepository] = None
    ):
        self.repo = repo or ExpenseRepository()
        self.audit_repo = audit_repo or AuditRepository()

    def create_expense(
        self,
        actor: ActorContext,
        amount: float,
        category: ExpenseCategory,
        description: str,
        currency: str = "USD",
        expense_date: Optional[datetime] = None
    ) -> Expense:
        """Create a draft expense for the actor"""
        now = utc_now()
        expense = Expense(
            expense_id=generate_expense_id(),
            tenant_id=actor.tenant_id,
            employee_id=actor.user_id,
            amount=amount,
            currency=currency.upper(),
            category=category.value,
            description=description,
            expense_date=expense_date,
            status=ExpenseStatus.DRAFT,
            created_at=now,
            updated_at=now
        )
        return self.repo.create_expense(expense)

    def get_expense(self, expense_id: str, actor: ActorContext) -> Expense:
        """
        Get an expense visible to the actor

        Employees see their own expenses, approvers see what is on their
        chain, admins see everything in the tenant.
        """
        expense = self.repo.get_expense_or_raise(expense_id, tenant_id=actor.tenant_id)

        if actor.role == UserRole.ADMIN or expense.employee_id == actor.user_id:
            return expense
        if any(e.approver_id == actor.user_id for e in expense.approval_chain):
            return expense

        # Hide existence from users without access
        raise ExpenseNotFoundError(f"Expense {expense_id} not found")

    def get_audit_trail(
        self,
        expense_id: str,
        actor: ActorContext,
        skip: int = 0,
        limit: int = 100
    ) -> List[AuditEvent]:
        """Audit events of an expense the actor can see, newest first"""
        expense = self.get_expense(expense_id, actor)
        return self.audit_repo.get_events_for_expense(expense.expense_id, skip=skip, limit=limit)
