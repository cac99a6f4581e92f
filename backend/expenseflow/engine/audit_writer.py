"""Audit Writer - Append-only audit events"""
from typing import Any, Dict, Optional

from ..domain.models import AuditEvent
from ..domain.enums import AuditEventType
from ..repositories.audit_repo import AuditRepository
from ..utils.idgen import generate_audit_event_id
from ..utils.logger import get_correlation_id
from ..utils.time import utc_now


class AuditWriter:
    """
    Write audit events (append-only)

    Every engine transition produces one event. System-driven events
    (escalation) carry no actor.
    """

    def __init__(self, repo: Optional[AuditRepository] = None):
        self.repo = repo or AuditRepository()

    def write_event(
        self,
        expense_id: str,
        tenant_id: str,
        event_type: AuditEventType,
        actor_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> AuditEvent:
        """Write a single audit event"""
        event = AuditEvent(
            audit_event_id=generate_audit_event_id(),
            expense_id=expense_id,
            tenant_id=tenant_id,
            event_type=event_type,
            actor_id=actor_id,
            details=details or {},
            timestamp=utc_now(),
            correlation_id=get_correlation_id()
        )
        return self.repo.create_event(event)
