"""Approval Guard - Who may act on an expense right now"""
from typing import List, Optional

from ..domain.models import ActorContext, ChainEntry, Expense
from ..domain.enums import UserRole
from ..domain.errors import AlreadyResolvedError, NotEligibleApproverError, PermissionDeniedError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ApprovalGuard:
    """
    Eligibility rules for approval decisions

    - Approve: the entry is pending, belongs to the actor and sits on the
      lowest pending level. Every entry on that level may act, in any order.
    - Reject: the entry is pending and belongs to the actor; no level gate.
    - Override: admins only, from any expense state.
    """

    def ensure_actionable(self, expense: Expense) -> None:
        if not expense.is_actionable:
            raise AlreadyResolvedError(
                f"Expense {expense.expense_id} is already {expense.status.value}",
                details={"status": expense.status.value}
            )

    def eligible_entries(self, actor: ActorContext, expense: Expense) -> List[ChainEntry]:
        """Entries the actor may approve now"""
        level = expense.min_pending_level()
        if level is None:
            return []
        return [
            e for e in expense.pending_entries()
            if e.approver_id == actor.user_id and e.level == level
        ]

    def can_approve(self, actor: ActorContext, expense: Expense) -> bool:
        return expense.is_actionable and bool(self.eligible_entries(actor, expense))

    def entry_for_approval(
        self,
        actor: ActorContext,
        expense: Expense,
        entry_id: Optional[str] = None
    ) -> ChainEntry:
        """Pick the entry an approval acts on, or raise NotEligibleApproverError"""
        self.ensure_actionable(expense)
        eligible = self.eligible_entries(actor, expense)

        if entry_id is not None:
            eligible = [e for e in eligible if e.entry_id == entry_id]

        if not eligible:
            logger.info(
                f"Approval refused for {actor.user_id}",
                extra={"expense_id": expense.expense_id, "actor_id": actor.user_id, "entry_id": entry_id}
            )
            raise NotEligibleApproverError(
                "No pending approval for you at the current level",
                details={"current_level": expense.min_pending_level()}
            )
        return eligible[0]

    def entry_for_rejection(
        self,
        actor: ActorContext,
        expense: Expense,
        entry_id: Optional[str] = None
    ) -> ChainEntry:
        """Pick the entry a rejection acts on, or raise NotEligibleApproverError"""
        self.ensure_actionable(expense)
        owned = [e for e in expense.pending_entries() if e.approver_id == actor.user_id]

        if entry_id is not None:
            owned = [e for e in owned if e.entry_id == entry_id]

        if not owned:
            raise NotEligibleApproverError("No pending approval found for you on this expense")
        return min(owned, key=lambda e: e.level)

    def ensure_admin(self, actor: ActorContext) -> None:
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can override approvals")

    def ensure_approver_role(self, actor: ActorContext) -> None:
        if actor.role not in (UserRole.MANAGER, UserRole.ADMIN):
            raise PermissionDeniedError("Only managers and admins have approval statistics")
