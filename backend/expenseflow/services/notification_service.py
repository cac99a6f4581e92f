"""Notification Service - Outbox enqueueing and mail relay delivery

The approval engine only ever enqueues; delivery happens later from the
scheduler, so a slow or broken mail relay never blocks an approval.
"""
from typing import Any, Callable, Dict, List, Optional
import httpx

from ..domain.models import Expense, NotificationOutbox, User
from ..domain.enums import NotificationStatus, NotificationTemplateKey
from ..domain.errors import NotificationSendError
from ..repositories.notification_repo import NotificationRepository
from ..templates import get_email_template
from ..config.settings import settings
from ..utils.idgen import generate_notification_id
from ..utils.time import utc_now
from ..utils.logger import get_logger
from .directory_service import DirectoryService

logger = get_logger(__name__)


def notify_safely(send: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    """
    Run a notify_* call without letting it fail the caller

    Used after a state change has been committed; the transition stands
    even when the notification cannot be queued.
    """
    try:
        send(*args, **kwargs)
    except Exception as e:
        logger.error(
            f"Notification failed: {getattr(send, '__name__', send)}",
            extra={"details": str(e)},
            exc_info=True
        )


class NotificationService:
    """Service for sending notifications"""

    def __init__(
        self,
        repo: Optional[NotificationRepository] = None,
        directory: Optional[DirectoryService] = None
    ):
        self.repo = repo or NotificationRepository()
        self.directory = directory or DirectoryService()

    # =========================================================================
    # Outbox Creation
    # =========================================================================

    def enqueue_notification(
        self,
        template_key: NotificationTemplateKey,
        recipients: List[str],
        payload: Dict[str, Any],
        expense_id: Optional[str] = None
    ) -> Optional[NotificationOutbox]:
        """
        Enqueue a notification for sending

        Returns None when there is nobody to send to.
        """
        recipients = [r for r in dict.fromkeys(recipients) if r]
        if not recipients:
            logger.debug(f"No recipients for {template_key.value}", extra={"expense_id": expense_id})
            return None

        notification = NotificationOutbox(
            notification_id=generate_notification_id(),
            expense_id=expense_id,
            template_key=template_key,
            recipients=recipients,
            payload=payload,
            status=NotificationStatus.PENDING,
            created_at=utc_now()
        )
        return self.repo.create_notification(notification)

    def _expense_payload(self, expense: Expense, employee: Optional[User]) -> Dict[str, Any]:
        return {
            "expense_id": expense.expense_id,
            "description": expense.description,
            "category": expense.category,
            "amount": expense.amount,
            "currency": expense.currency,
            "expense_status": expense.status.value,
            "employee_name": employee.display_name if employee else None,
        }

    def notify_submitted(
        self,
        expense: Expense,
        employee: Optional[User],
        approvers: List[User],
        is_escalation: bool = False
    ) -> Optional[NotificationOutbox]:
        """Ask approvers for a decision"""
        payload = self._expense_payload(expense, employee)
        payload["is_escalation"] = is_escalation
        return self.enqueue_notification(
            template_key=NotificationTemplateKey.EXPENSE_SUBMITTED,
            recipients=[a.email for a in approvers],
            payload=payload,
            expense_id=expense.expense_id
        )

    def notify_approved(
        self,
        expense: Expense,
        approver: User,
        comments: Optional[str] = None
    ) -> Optional[NotificationOutbox]:
        """Tell the employee someone approved their expense"""
        employee = self.directory.get_user(expense.employee_id)
        if not employee:
            logger.warning(f"Employee {expense.employee_id} not found", extra={"expense_id": expense.expense_id})
            return None

        payload = self._expense_payload(expense, employee)
        payload.update({"approver_name": approver.display_name, "comments": comments})
        return self.enqueue_notification(
            template_key=NotificationTemplateKey.EXPENSE_APPROVED,
            recipients=[employee.email],
            payload=payload,
            expense_id=expense.expense_id
        )

    def notify_rejected(
        self,
        expense: Expense,
        approver: User,
        reason: Optional[str]
    ) -> Optional[NotificationOutbox]:
        """Tell the employee their expense was rejected"""
        employee = self.directory.get_user(expense.employee_id)
        if not employee:
            logger.warning(f"Employee {expense.employee_id} not found", extra={"expense_id": expense.expense_id})
            return None

        payload = self._expense_payload(expense, employee)
        payload.update({"approver_name": approver.display_name, "reason": reason})
        return self.enqueue_notification(
            template_key=NotificationTemplateKey.EXPENSE_REJECTED,
            recipients=[employee.email],
            payload=payload,
            expense_id=expense.expense_id
        )

    # =========================================================================
    # Email Sending
    # =========================================================================

    async def send_notification(self, notification: NotificationOutbox) -> bool:
        """
        Deliver a single outbox item through the mail relay

        Locking is handled by the scheduler before this is called.

        Returns:
            True if sent successfully, False otherwise
        """
        try:
            content = get_email_template(
                template_key=notification.template_key,
                payload=notification.payload,
                app_url=settings.frontend_url
            )
            await self._post_to_relay(notification.recipients, content["subject"], content["body"])
            self.repo.mark_sent(notification.notification_id)
            return True

        except (NotificationSendError, httpx.HTTPError) as e:
            self.repo.mark_failed(notification.notification_id, str(e))
            logger.error(
                f"Failed to send notification: {notification.notification_id}",
                extra={
                    "notification_id": notification.notification_id,
                    "expense_id": notification.expense_id,
                    "details": str(e)
                }
            )
            return False

    async def _post_to_relay(self, recipients: List[str], subject: str, body: str) -> None:
        if not settings.mail_relay_url:
            logger.info(
                f"Mail relay not configured, logging email instead: {subject}",
                extra={"details": recipients}
            )
            return

        headers = {"Content-Type": "application/json"}
        if settings.mail_relay_token:
            headers["Authorization"] = f"Bearer {settings.mail_relay_token}"

        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(
                settings.mail_relay_url,
                headers=headers,
                json={
                    "from": settings.mail_sender,
                    "to": recipients,
                    "subject": subject,
                    "html": body
                }
            )

        if response.status_code not in (200, 201, 202):
            raise NotificationSendError(
                f"Mail relay error: {response.status_code}",
                details={"response": response.text[:500]}
            )
