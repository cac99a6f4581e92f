"""Approval Scheduler - Background jobs for the approval engine

Runs in-process with APScheduler and is safe to run on several servers:
- Notification delivery claims each outbox item with a MongoDB lock
- Escalation appends are versioned writes, so two sweeps cannot double-escalate
"""
import os
import socket
from datetime import datetime
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config.settings import settings
from ..engine.engine import ApprovalEngine
from ..repositories.notification_repo import NotificationRepository
from ..services.notification_service import NotificationService
from ..utils.logger import get_logger, set_correlation_id
from ..utils.idgen import generate_correlation_id, generate_id

logger = get_logger(__name__)


class ApprovalScheduler:
    """
    APScheduler wrapper owning the periodic jobs

    Responsibilities:
    - Send pending notifications from the outbox
    - Sweep actionable expenses for stalled approvals
    """

    def __init__(
        self,
        notification_repo: Optional[NotificationRepository] = None,
        notification_service: Optional[NotificationService] = None,
        engine: Optional[ApprovalEngine] = None
    ):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.notification_repo = notification_repo or NotificationRepository()
        self.notification_service = notification_service or NotificationService(repo=self.notification_repo)
        self.engine = engine or ApprovalEngine(notification_service=self.notification_service)
        self._is_running = False
        self._server_id = self._generate_server_id()

    def _generate_server_id(self) -> str:
        """Unique identifier used as the outbox lock owner"""
        return f"{socket.gethostname()}-{os.getpid()}-{generate_id()[:8]}"

    def start(self) -> None:
        """Start the scheduler"""
        if self._is_running:
            logger.warning("Scheduler already running")
            return

        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            self._process_notifications,
            trigger=IntervalTrigger(seconds=settings.scheduler_interval_seconds),
            id="process_notifications",
            name="Process pending notifications",
            replace_existing=True
        )

        self.scheduler.add_job(
            self._check_escalations,
            trigger=IntervalTrigger(seconds=settings.escalation_check_interval_seconds),
            id="check_escalations",
            name="Escalate stalled approvals",
            replace_existing=True
        )

        self.scheduler.start()
        self._is_running = True
        logger.info(
            "Scheduler started",
            extra={"details": {
                "server_id": self._server_id,
                "notification_interval": settings.scheduler_interval_seconds,
                "escalation_interval": settings.escalation_check_interval_seconds
            }}
        )

    def stop(self) -> None:
        """Stop the scheduler"""
        if self.scheduler:
            self.scheduler.shutdown()
            self._is_running = False
            logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def _process_notifications(self) -> int:
        """
        Deliver due outbox items, one lock per item

        Returns:
            Number of notifications sent
        """
        set_correlation_id(generate_correlation_id())
        sent = failed = skipped = 0

        try:
            notifications = self.notification_repo.get_pending_notifications(limit=50)

            for notification in notifications:
                lock_id = f"{self._server_id}-{generate_id()[:8]}"
                if not self.notification_repo.acquire_lock(
                    notification.notification_id,
                    lock_id,
                    lock_duration_seconds=settings.notification_lock_duration_seconds
                ):
                    skipped += 1
                    continue

                try:
                    if await self.notification_service.send_notification(notification):
                        sent += 1
                    else:
                        failed += 1
                finally:
                    self.notification_repo.release_lock(notification.notification_id, lock_id)

        except Exception as e:
            logger.error(f"Error in notification processing job: {e}", exc_info=True)

        if sent or failed:
            logger.info(f"Notification cycle complete: {sent} sent, {failed} failed, {skipped} skipped")
        return sent

    async def _check_escalations(self, now: Optional[datetime] = None) -> int:
        """Run the escalation sweep over every actionable expense"""
        set_correlation_id(generate_correlation_id())
        try:
            return self.engine.escalation_monitor.run_escalation_sweep(now=now)
        except Exception as e:
            logger.error(f"Error in escalation job: {e}", exc_info=True)
            return 0


# Global scheduler instance
_scheduler: Optional[ApprovalScheduler] = None


def get_scheduler() -> ApprovalScheduler:
    """Get or create scheduler instance"""
    global _scheduler
    if _scheduler is None:
        _scheduler = ApprovalScheduler()
    return _scheduler


def start_scheduler() -> None:
    """Start the global scheduler"""
    get_scheduler().start()


def stop_scheduler() -> None:
    """Stop the global scheduler"""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None
