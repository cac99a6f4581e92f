"""
Approval Engine - Submission and advancement of expense approval chains

=============================================================================
MODULE STRUCTURE
=============================================================================

1. SUBMISSION
   - submit_for_approval: select workflow, build chain, open it

2. DECISIONS
   - approve: resolve one entry, run conditional rules, advance or resolve
   - reject: resolve one entry and reject the expense
   - admin_override: force a terminal status from any state

3. QUERIES
   - list_pending_for_approver / list_approval_history

4. ESCALATION
   - check_escalation: single-expense passthrough to the EscalationMonitor

Every write goes through the expense repository's versioned compare-and-set;
a lost race surfaces as ConcurrencyError and is never retried here.
Notifications are queued only after the write has committed.
=============================================================================
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..domain.models import ActorContext, ChainEntry, Expense, User, Workflow
from ..domain.enums import (
    ApprovalAction, AuditEventType, ChainEntryStatus, ChainRuleTag, ExpenseStatus
)
from ..domain.errors import InvalidStateError, PermissionDeniedError, ValidationError
from ..repositories.expense_repo import ExpenseRepository
from ..repositories.workflow_repo import WorkflowRepository
from ..services.directory_service import DirectoryService
from ..services.notification_service import NotificationService, notify_safely
from ..utils.idgen import generate_chain_entry_id
from ..utils.time import ensure_utc, utc_now
from ..utils.logger import get_logger
from .audit_writer import AuditWriter
from .chain_builder import ChainBuilder
from .condition_evaluator import ConditionEvaluator
from .escalation_monitor import EscalationMonitor, ESCALATION_LEVEL
from .permission_guard import ApprovalGuard
from .rule_evaluator import ConditionalRuleEvaluator
from .workflow_selector import WorkflowSelector

logger = get_logger(__name__)

OVERRIDE_LEVEL = ESCALATION_LEVEL


class ApprovalEngine:
    """
    Orchestrates the approval lifecycle of an expense

    Collaborators can be injected; anything not passed is built against
    MongoDB.
    """

    def __init__(
        self,
        expense_repo: Optional[ExpenseRepository] = None,
        workflow_repo: Optional[WorkflowRepository] = None,
        directory: Optional[DirectoryService] = None,
        notification_service: Optional[NotificationService] = None,
        audit_writer: Optional[AuditWriter] = None
    ):
        self.expense_repo = expense_repo or ExpenseRepository()
        self.workflow_repo = workflow_repo or WorkflowRepository()
        self.directory = directory or DirectoryService()
        self.notification_service = notification_service or NotificationService(directory=self.directory)
        self.audit_writer = audit_writer or AuditWriter()

        self.guard = ApprovalGuard()
        self.condition_evaluator = ConditionEvaluator()
        self.selector = WorkflowSelector(self.workflow_repo, self.condition_evaluator)
        self.chain_builder = ChainBuilder(self.directory, self.condition_evaluator)
        self.rule_evaluator = ConditionalRuleEvaluator(self.condition_evaluator)
        self.escalation_monitor = EscalationMonitor(
            expense_repo=self.expense_repo,
            workflow_repo=self.workflow_repo,
            directory=self.directory,
            notification_service=self.notification_service,
            audit_writer=self.audit_writer
        )

    # =========================================================================
    # Submission
    # =========================================================================

    def submit_for_approval(
        self,
        expense_id: str,
        actor: ActorContext,
        workflow_id: Optional[str] = None
    ) -> Expense:
        """
        Submit a draft expense and build its approval chain

        An empty chain means nothing needs approving, so the expense is
        approved on the spot.
        """
        expense = self.expense_repo.get_expense_or_raise(expense_id, tenant_id=actor.tenant_id)

        if expense.employee_id != actor.user_id:
            raise PermissionDeniedError("You can only submit your own expenses")
        if expense.status != ExpenseStatus.DRAFT:
            raise InvalidStateError(
                f"Only draft expenses can be submitted, this one is {expense.status.value}",
                details={"status": expense.status.value}
            )

        employee = self.directory.get_user(expense.employee_id)
        workflow = self.selector.select(expense, employee, explicit_workflow_id=workflow_id)
        chain = self.chain_builder.build(expense, workflow, employee)

        now = utc_now()
        updates: Dict[str, Any] = {
            "workflow_id": workflow.workflow_id,
            "approval_chain": [entry.model_dump() for entry in chain],
            "status": ExpenseStatus.SUBMITTED.value,
            "submitted_at": now,
        }
        if not chain:
            logger.warning(
                f"Workflow {workflow.name} resolved no approvers, approving {expense_id}",
                extra={"expense_id": expense_id, "workflow_id": workflow.workflow_id}
            )
            updates.update(self._approval_fields(expense, now))

        saved = self.expense_repo.update_expense(expense_id, updates, expected_version=expense.version)

        self.audit_writer.write_event(
            expense_id=expense_id,
            tenant_id=expense.tenant_id,
            event_type=AuditEventType.SUBMIT_EXPENSE,
            actor_id=actor.user_id,
            details={"workflow_id": workflow.workflow_id, "workflow_name": workflow.name}
        )
        self.audit_writer.write_event(
            expense_id=expense_id,
            tenant_id=expense.tenant_id,
            event_type=AuditEventType.CHAIN_BUILT,
            details={
                "entry_count": len(chain),
                "levels": sorted({e.level for e in chain}),
                "approvers": [e.approver_id for e in chain]
            }
        )

        if saved.status == ExpenseStatus.APPROVED:
            self._record_approved(saved, actor.user_id, reason="no_approvers")
        else:
            self._notify_current_approvers(saved, employee)

        return saved

    # =========================================================================
    # Decisions
    # =========================================================================

    def approve(
        self,
        expense_id: str,
        actor: ActorContext,
        comments: Optional[str] = None,
        entry_id: Optional[str] = None
    ) -> Expense:
        """
        Approve the actor's entry on the current level

        The expense resolves when a conditional rule fires or no required
        entry is left pending; otherwise it stays open for the next level.
        """
        expense = self.expense_repo.get_expense_or_raise(expense_id, tenant_id=actor.tenant_id)
        entry = self.guard.entry_for_approval(actor, expense, entry_id)
        level_before = expense.min_pending_level()

        now = utc_now()
        entry.status = ChainEntryStatus.APPROVED
        entry.comments = comments
        entry.action_date = now

        logger.info(
            f"Entry approved on {expense_id}",
            extra={
                "event": "entry_approved",
                "expense_id": expense_id,
                "entry_id": entry.entry_id,
                "approver_id": actor.user_id,
                "level": entry.level
            }
        )

        workflow = self._workflow_of(expense)
        employee = self.directory.get_user(expense.employee_id)
        fired = self.rule_evaluator.fired_rule(workflow, expense, entry, ApprovalAction.APPROVE, employee)

        closed: List[str] = []
        if fired is not None:
            closed = self._close_pending_entries(expense, fired.name or fired.type.value, now)
            updates = self._approval_fields(expense, now)
        elif not self._pending_required(expense):
            updates = self._approval_fields(expense, now)
        else:
            updates = {"status": ExpenseStatus.PENDING_APPROVAL.value}

        saved = self.expense_repo.save_chain(expense, updates)

        self.audit_writer.write_event(
            expense_id=expense_id,
            tenant_id=expense.tenant_id,
            event_type=AuditEventType.APPROVE,
            actor_id=actor.user_id,
            details={"entry_id": entry.entry_id, "level": entry.level, "comments": comments}
        )
        if fired is not None:
            self.audit_writer.write_event(
                expense_id=expense_id,
                tenant_id=expense.tenant_id,
                event_type=AuditEventType.AUTO_APPROVE,
                actor_id=actor.user_id,
                details={"rule_name": fired.name, "rule_type": fired.type.value, "closed_entries": closed}
            )

        approver = self.directory.get_user(actor.user_id)
        if approver:
            notify_safely(self.notification_service.notify_approved, saved, approver, comments)

        if saved.status == ExpenseStatus.APPROVED:
            self._record_approved(saved, actor.user_id, reason="rule" if fired else "chain_complete")
        elif saved.min_pending_level() != level_before:
            # Level advanced; the next approvers have not been asked yet
            self._notify_current_approvers(saved, employee)

        return saved

    def reject(
        self,
        expense_id: str,
        actor: ActorContext,
        reason: Optional[str] = None,
        comments: Optional[str] = None,
        entry_id: Optional[str] = None
    ) -> Expense:
        """
        Reject the expense through one of the actor's pending entries

        Terminal. Other pending entries stay pending and no longer matter.
        """
        expense = self.expense_repo.get_expense_or_raise(expense_id, tenant_id=actor.tenant_id)
        entry = self.guard.entry_for_rejection(actor, expense, entry_id)

        now = utc_now()
        rejection_reason = reason or comments or "Rejected by approver"
        entry.status = ChainEntryStatus.REJECTED
        entry.comments = comments or reason
        entry.action_date = now

        saved = self.expense_repo.save_chain(expense, {
            "status": ExpenseStatus.REJECTED.value,
            "rejection_reason": rejection_reason,
        })

        logger.info(
            f"Entry rejected on {expense_id}",
            extra={
                "event": "entry_rejected",
                "expense_id": expense_id,
                "entry_id": entry.entry_id,
                "approver_id": actor.user_id,
                "level": entry.level
            }
        )
        logger.info(
            f"Expense {expense_id} rejected",
            extra={"event": "expense_rejected", "expense_id": expense_id, "actor_id": actor.user_id}
        )
        self.audit_writer.write_event(
            expense_id=expense_id,
            tenant_id=expense.tenant_id,
            event_type=AuditEventType.REJECT,
            actor_id=actor.user_id,
            details={"entry_id": entry.entry_id, "level": entry.level, "reason": rejection_reason}
        )

        approver = self.directory.get_user(actor.user_id)
        if approver:
            notify_safely(self.notification_service.notify_rejected, saved, approver, rejection_reason)

        return saved

    def admin_override(
        self,
        expense_id: str,
        actor: ActorContext,
        action: ApprovalAction,
        reason: str,
        comments: Optional[str] = None
    ) -> Expense:
        """
        Force an expense to approved or rejected, from any state

        The decision is appended to the chain as an override entry; existing
        entries are left as they are.
        """
        self.guard.ensure_admin(actor)
        if not reason or not reason.strip():
            raise ValidationError("A reason is required for an admin override")

        expense = self.expense_repo.get_expense_or_raise(expense_id, tenant_id=actor.tenant_id)
        previous_status = expense.status

        now = utc_now()
        approved = action == ApprovalAction.APPROVE
        expense.approval_chain.append(ChainEntry(
            entry_id=generate_chain_entry_id(),
            approver_id=actor.user_id,
            level=OVERRIDE_LEVEL,
            status=ChainEntryStatus.APPROVED if approved else ChainEntryStatus.REJECTED,
            is_override=True,
            rule=ChainRuleTag.ADMIN_OVERRIDE.value,
            comments=f"Admin override: {comments or reason}",
            action_date=now,
            created_at=now
        ))

        if approved:
            updates = self._approval_fields(expense, now)
        else:
            updates = {"status": ExpenseStatus.REJECTED.value, "rejection_reason": reason}

        saved = self.expense_repo.save_chain(expense, updates)

        logger.info(
            f"Admin override on {expense_id}: {action.value}",
            extra={
                "event": "admin_override",
                "expense_id": expense_id,
                "actor_id": actor.user_id,
                "action": action.value,
                "status": saved.status.value
            }
        )
        self.audit_writer.write_event(
            expense_id=expense_id,
            tenant_id=expense.tenant_id,
            event_type=AuditEventType.ADMIN_OVERRIDE,
            actor_id=actor.user_id,
            details={
                "action": action.value,
                "reason": reason,
                "comments": comments,
                "previous_status": previous_status.value
            }
        )

        admin = self.directory.get_user(actor.user_id)
        if admin:
            if approved:
                notify_safely(self.notification_service.notify_approved, saved, admin, comments or reason)
            else:
                notify_safely(self.notification_service.notify_rejected, saved, admin, reason)

        return saved

    # =========================================================================
    # Queries
    # =========================================================================

    def list_pending_for_approver(self, actor: ActorContext) -> List[Expense]:
        """Expenses the actor can approve right now"""
        candidates = self.expense_repo.find_with_pending_entry(actor.tenant_id, actor.user_id)
        return [e for e in candidates if self.guard.can_approve(actor, e)]

    def list_approval_history(
        self,
        actor: ActorContext,
        status: Optional[ExpenseStatus] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[Expense]:
        """Expenses whose chain includes the actor"""
        return self.expense_repo.list_by_approver(actor.tenant_id, actor.user_id, status, skip, limit)

    def get_approval_stats(
        self,
        actor: ActorContext,
        updated_from: Optional[datetime] = None,
        updated_to: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Per-status count and amount of the expenses on the actor's chains

        `total_pending` counts the actionable ones still waiting on the
        actor. Both figures honour the optional `updated_at` window.
        """
        self.guard.ensure_approver_role(actor)
        args = (
            actor.tenant_id,
            actor.user_id,
            ensure_utc(updated_from) if updated_from else None,
            ensure_utc(updated_to) if updated_to else None,
        )
        return {
            "stats": self.expense_repo.get_approver_breakdown(*args),
            "total_pending": self.expense_repo.count_pending_for_approver(*args),
        }

    # =========================================================================
    # Escalation
    # =========================================================================

    def check_escalation(self, expense_id: str, actor: ActorContext) -> List[ChainEntry]:
        """Run the escalation check for one expense on demand"""
        expense = self.expense_repo.get_expense_or_raise(expense_id, tenant_id=actor.tenant_id)
        return self.escalation_monitor.check_escalation(expense)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _workflow_of(self, expense: Expense) -> Optional[Workflow]:
        """The workflow the chain was built from, even if since deactivated"""
        if not expense.workflow_id:
            return None
        return self.workflow_repo.get_workflow(expense.workflow_id)

    @staticmethod
    def _pending_required(expense: Expense) -> List[ChainEntry]:
        return [e for e in expense.pending_entries() if e.is_required]

    @staticmethod
    def _approval_fields(expense: Expense, now) -> Dict[str, Any]:
        return {
            "status": ExpenseStatus.APPROVED.value,
            "approved_at": now,
            "total_approved_amount": expense.amount,
        }

    @staticmethod
    def _close_pending_entries(expense: Expense, rule_name: str, now) -> List[str]:
        """Mark every pending entry approved on behalf of a conditional rule"""
        closed = []
        for entry in expense.pending_entries():
            entry.status = ChainEntryStatus.APPROVED
            entry.auto_closed_by = rule_name
            entry.comments = f"Auto-approved by rule: {rule_name}"
            entry.action_date = now
            closed.append(entry.entry_id)
        return closed

    def _record_approved(self, expense: Expense, actor_id: Optional[str], reason: str) -> None:
        logger.info(
            f"Expense {expense.expense_id} approved",
            extra={
                "event": "expense_approved",
                "expense_id": expense.expense_id,
                "actor_id": actor_id,
                "details": reason
            }
        )
        self.audit_writer.write_event(
            expense_id=expense.expense_id,
            tenant_id=expense.tenant_id,
            event_type=AuditEventType.EXPENSE_APPROVED,
            actor_id=actor_id,
            details={"reason": reason, "total_approved_amount": expense.total_approved_amount}
        )

    def _notify_current_approvers(self, expense: Expense, employee: Optional[User]) -> None:
        approver_ids = expense.current_approver_ids()
        if not approver_ids:
            return
        approvers = self.directory.lookup_active_users(approver_ids, expense.tenant_id)
        notify_safely(self.notification_service.notify_submitted, expense, employee, approvers)
