"""Background jobs: outbox delivery and escalation sweep"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from expenseflow.domain.enums import NotificationTemplateKey
from expenseflow.domain.models import NotificationOutbox
from expenseflow.scheduler.approval_scheduler import ApprovalScheduler


def outbox_item(notification_id):
    return NotificationOutbox(
        notification_id=notification_id,
        template_key=NotificationTemplateKey.EXPENSE_SUBMITTED,
        recipients=["someone@acme.test"]
    )


@pytest.fixture
def outbox_repo():
    repo = MagicMock()
    repo.get_pending_notifications.return_value = [outbox_item("NTF-1"), outbox_item("NTF-2")]
    # NTF-2 is already claimed by another server
    repo.acquire_lock.side_effect = lambda notification_id, lock_by, **kw: notification_id == "NTF-1"
    return repo


@pytest.fixture
def sender():
    service = MagicMock()
    service.send_notification = AsyncMock(return_value=True)
    return service


@pytest.fixture
def scheduler(outbox_repo, sender):
    return ApprovalScheduler(notification_repo=outbox_repo, notification_service=sender, engine=MagicMock())


def test_sends_only_locked_notifications(scheduler, outbox_repo, sender):
    assert asyncio.run(scheduler._process_notifications()) == 1

    sender.send_notification.assert_awaited_once()
    assert sender.send_notification.await_args.args[0].notification_id == "NTF-1"
    outbox_repo.release_lock.assert_called_once()
    assert outbox_repo.release_lock.call_args.args[0] == "NTF-1"


def test_lock_is_released_when_sending_blows_up(scheduler, outbox_repo, sender):
    sender.send_notification.side_effect = RuntimeError("relay exploded")

    assert asyncio.run(scheduler._process_notifications()) == 0
    outbox_repo.release_lock.assert_called_once()


def test_escalation_job_runs_the_sweep(scheduler):
    scheduler.engine.escalation_monitor.run_escalation_sweep.return_value = 2

    assert asyncio.run(scheduler._check_escalations()) == 2


def test_escalation_job_survives_errors(scheduler):
    scheduler.engine.escalation_monitor.run_escalation_sweep.side_effect = RuntimeError("mongo down")

    assert asyncio.run(scheduler._check_escalations()) == 0


def test_start_registers_both_jobs(scheduler):
    async def start_and_stop():
        scheduler.start()
        try:
            return scheduler.is_running, sorted(job.id for job in scheduler.scheduler.get_jobs())
        finally:
            scheduler.stop()

    running, job_ids = asyncio.run(start_and_stop())

    assert running
    assert job_ids == ["check_escalations", "process_notifications"]
    assert not scheduler.is_running
