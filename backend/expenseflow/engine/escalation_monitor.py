"""Escalation Monitor - Time-based escalation of stalled approvals

Escalation is additive: stale entries stay untouched and escalation
approvers are appended at level 999 as a final sign-off.
"""
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from ..domain.models import ChainEntry, Expense
from ..domain.enums import AuditEventType, ChainRuleTag
from ..domain.errors import DomainError
from ..repositories.expense_repo import ExpenseRepository
from ..repositories.workflow_repo import WorkflowRepository
from ..services.notification_service import notify_safely
from ..utils.idgen import generate_chain_entry_id
from ..utils.time import hours_since, utc_now
from ..utils.logger import get_logger
from .audit_writer import AuditWriter

if TYPE_CHECKING:
    from ..services.directory_service import DirectoryService
    from ..services.notification_service import NotificationService

logger = get_logger(__name__)

ESCALATION_LEVEL = 999


class EscalationMonitor:
    """Append escalation approvers to chains whose required entries sat too long"""

    def __init__(
        self,
        expense_repo: ExpenseRepository,
        workflow_repo: WorkflowRepository,
        directory: "DirectoryService",
        notification_service: "NotificationService",
        audit_writer: AuditWriter
    ):
        self.expense_repo = expense_repo
        self.workflow_repo = workflow_repo
        self.directory = directory
        self.notification_service = notification_service
        self.audit_writer = audit_writer

    def check_escalation(self, expense: Expense, now: Optional[datetime] = None) -> List[ChainEntry]:
        """
        Escalate one expense if due

        Returns:
            The appended entries; empty when nothing was escalated
        """
        if not expense.is_actionable or not expense.workflow_id:
            return []

        workflow = self.workflow_repo.get_workflow(expense.workflow_id)
        if not workflow or not workflow.escalation_settings.enabled:
            return []

        now = now or utc_now()
        stale = self._stale_entries(expense, workflow.escalation_settings.escalation_time_hours, now)
        if not stale:
            return []

        approvers = self.directory.lookup_active_users(
            workflow.escalation_settings.escalation_approvers, expense.tenant_id
        )
        holding = {e.approver_id for e in expense.pending_entries() if e.is_escalation}
        approvers = [a for a in approvers if a.user_id not in holding]
        if not approvers:
            logger.warning(
                f"No escalation approvers available for {expense.expense_id}",
                extra={"expense_id": expense.expense_id, "workflow_id": workflow.workflow_id}
            )
            return []

        stale_ids = [e.entry_id for e in stale]
        entries = [
            ChainEntry(
                entry_id=generate_chain_entry_id(),
                approver_id=approver.user_id,
                level=ESCALATION_LEVEL,
                is_required=True,
                is_escalation=True,
                rule=ChainRuleTag.ESCALATION.value,
                escalated_from=stale_ids,
                created_at=now
            )
            for approver in approvers
        ]

        updated = self.expense_repo.append_chain_entries(
            expense.expense_id, entries, expected_version=expense.version
        )

        logger.info(
            f"Escalated {expense.expense_id} to {len(entries)} approvers",
            extra={
                "event": "escalation_triggered",
                "expense_id": expense.expense_id,
                "workflow_id": workflow.workflow_id,
                "entry_count": len(entries),
                "details": stale_ids
            }
        )
        self.audit_writer.write_event(
            expense_id=expense.expense_id,
            tenant_id=expense.tenant_id,
            event_type=AuditEventType.ESCALATION,
            details={
                "escalated_from": stale_ids,
                "escalation_approvers": [a.user_id for a in approvers],
                "escalation_time_hours": workflow.escalation_settings.escalation_time_hours
            }
        )

        employee = self.directory.get_user(expense.employee_id)
        notify_safely(
            self.notification_service.notify_submitted,
            updated, employee, approvers, is_escalation=True
        )
        return entries

    def _stale_entries(self, expense: Expense, threshold_hours: float, now: datetime) -> List[ChainEntry]:
        """Pending required entries past the threshold that no escalation covers yet"""
        covered = {
            entry_id
            for e in expense.approval_chain if e.is_escalation
            for entry_id in e.escalated_from
        }
        return [
            e for e in expense.pending_entries()
            if e.is_required
            and not e.is_escalation
            and not e.is_override
            and e.entry_id not in covered
            and hours_since(e.created_at, now) >= threshold_hours
        ]

    def run_escalation_sweep(self, now: Optional[datetime] = None, limit: int = 500) -> int:
        """
        Check every actionable expense, reading `limit` expenses per page

        Returns:
            Number of expenses escalated
        """
        now = now or utc_now()
        escalated = 0
        after = None

        while True:
            page = self.expense_repo.list_actionable(limit=limit, after=after)
            for expense in page:
                try:
                    if self.check_escalation(expense, now=now):
                        escalated += 1
                except DomainError as e:
                    # Typically a concurrent approval; the next sweep retries
                    logger.warning(
                        f"Escalation skipped for {expense.expense_id}: {e.message}",
                        extra={"expense_id": expense.expense_id, "error_code": e.error_code}
                    )

            if not page or len(page) < limit:
                break
            after = (page[-1].submitted_at, page[-1].expense_id)

        if escalated:
            logger.info(f"Escalation sweep escalated {escalated} expenses")
        return escalated
