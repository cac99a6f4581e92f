"""Outbox enqueueing, relay delivery and retry backoff"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from expenseflow.config.settings import settings
from expenseflow.domain.enums import ExpenseStatus, NotificationStatus, NotificationTemplateKey
from expenseflow.domain.errors import NotificationSendError
from expenseflow.domain.models import NotificationOutbox
from expenseflow.repositories.notification_repo import NotificationRepository
from expenseflow.services import notification_service as notification_module
from expenseflow.services.notification_service import NotificationService, notify_safely
from expenseflow.utils.time import utc_now

from tests.conftest import make_expense


@pytest.fixture
def outbox_repo():
    repo = MagicMock(spec=NotificationRepository)
    repo.create_notification.side_effect = lambda notification: notification
    return repo


@pytest.fixture
def service(outbox_repo, directory):
    return NotificationService(repo=outbox_repo, directory=directory)


def outbox_item(**overrides):
    data = {
        "notification_id": "NTF-1",
        "expense_id": "EXP-1",
        "template_key": NotificationTemplateKey.EXPENSE_APPROVED,
        "recipients": ["u-employee@acme.test"],
        "payload": {"expense_id": "EXP-1", "amount": 10, "currency": "USD", "approver_name": "Morgan"},
    }
    data.update(overrides)
    return NotificationOutbox(**data)


class TestEnqueue:

    def test_submitted_goes_to_approvers_once_each(self, service, directory):
        manager = directory.get_user("u-manager")
        notification = service.notify_submitted(
            make_expense(status=ExpenseStatus.SUBMITTED), directory.get_user("u-employee"), [manager, manager]
        )

        assert notification.template_key == NotificationTemplateKey.EXPENSE_SUBMITTED
        assert notification.recipients == ["u-manager@acme.test"]
        assert notification.payload["employee_name"] == "Employee"
        assert notification.payload["is_escalation"] is False

    def test_no_recipients_enqueues_nothing(self, service, outbox_repo):
        assert service.notify_submitted(make_expense(), None, []) is None
        outbox_repo.create_notification.assert_not_called()

    def test_approved_and_rejected_go_to_the_employee(self, service, directory):
        approver = directory.get_user("u-manager")

        approved = service.notify_approved(make_expense(), approver, comments="ok")
        rejected = service.notify_rejected(make_expense(), approver, reason="No receipt")

        assert approved.recipients == rejected.recipients == ["u-employee@acme.test"]
        assert rejected.payload["reason"] == "No receipt"

    def test_notify_safely_swallows_failures(self):
        failing = MagicMock(side_effect=RuntimeError("boom"))
        notify_safely(failing, "a", flag=True)
        failing.assert_called_once_with("a", flag=True)


class TestDelivery:

    def test_unconfigured_relay_logs_and_marks_sent(self, service, outbox_repo, monkeypatch):
        monkeypatch.setattr(settings, "mail_relay_url", "")

        assert asyncio.run(service.send_notification(outbox_item())) is True
        outbox_repo.mark_sent.assert_called_once_with("NTF-1")

    def test_relay_receives_rendered_email(self, service, outbox_repo, monkeypatch):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["auth"] = request.headers.get("Authorization")
            captured["body"] = request.read()
            return httpx.Response(202)

        real_client = httpx.AsyncClient
        monkeypatch.setattr(settings, "mail_relay_url", "https://relay.test/send")
        monkeypatch.setattr(settings, "mail_relay_token", "secret")
        monkeypatch.setattr(
            notification_module.httpx, "AsyncClient",
            lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs)
        )

        assert asyncio.run(service.send_notification(outbox_item())) is True
        assert captured["auth"] == "Bearer secret"
        assert b"u-employee@acme.test" in captured["body"]
        outbox_repo.mark_sent.assert_called_once()

    def test_relay_error_marks_failed(self, service, outbox_repo, monkeypatch):
        monkeypatch.setattr(service, "_post_to_relay", AsyncMock(side_effect=NotificationSendError("Mail relay error: 500")))

        assert asyncio.run(service.send_notification(outbox_item())) is False
        outbox_repo.mark_failed.assert_called_once_with("NTF-1", "Mail relay error: 500")
        outbox_repo.mark_sent.assert_not_called()


class TestRetryBackoff:

    @pytest.fixture
    def collection(self):
        return MagicMock()

    def stored(self, retry_count):
        return outbox_item(retry_count=retry_count).model_dump()

    def test_backs_off_exponentially(self, collection):
        collection.find_one.side_effect = lambda *a, **kw: self.stored(2)
        collection.find_one_and_update.side_effect = lambda *a, **kw: self.stored(3)
        repo = NotificationRepository(collection=collection)

        before = utc_now()
        repo.mark_failed("NTF-1", "timeout")

        update = collection.find_one_and_update.call_args.args[1]["$set"]
        assert update["status"] == NotificationStatus.PENDING.value
        assert update["retry_count"] == 3
        assert update["next_retry_at"] >= before + timedelta(minutes=4)
        assert update["next_retry_at"] < before + timedelta(minutes=5)

    def test_gives_up_after_max_retries(self, collection, monkeypatch):
        monkeypatch.setattr(settings, "notification_max_retries", 3)
        collection.find_one.side_effect = lambda *a, **kw: self.stored(2)
        collection.find_one_and_update.side_effect = lambda *a, **kw: self.stored(3)
        repo = NotificationRepository(collection=collection)

        repo.mark_failed("NTF-1", "timeout")

        update = collection.find_one_and_update.call_args.args[1]["$set"]
        assert update["status"] == NotificationStatus.FAILED.value
        assert update["next_retry_at"] is None
