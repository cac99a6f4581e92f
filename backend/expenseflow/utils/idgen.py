"""ID Generation Utilities

Entity IDs are a type prefix plus 12 hex characters, e.g. EXP-a1b2c3d4e5f6.
"""
import uuid
from typing import Optional

from .time import utc_now

WORKFLOW_PREFIX = "WF"
EXPENSE_PREFIX = "EXP"
CHAIN_ENTRY_PREFIX = "APR"
NOTIFICATION_PREFIX = "NTF"
AUDIT_EVENT_PREFIX = "AUD"


def generate_id(prefix: Optional[str] = None) -> str:
    """Random 12-hex-character ID, prefixed when a prefix is given"""
    token = uuid.uuid4().hex[:12]
    return f"{prefix}-{token}" if prefix else token


def generate_workflow_id() -> str:
    return generate_id(WORKFLOW_PREFIX)


def generate_expense_id() -> str:
    return generate_id(EXPENSE_PREFIX)


def generate_chain_entry_id() -> str:
    return generate_id(CHAIN_ENTRY_PREFIX)


def generate_notification_id() -> str:
    return generate_id(NOTIFICATION_PREFIX)


def generate_audit_event_id() -> str:
    return generate_id(AUDIT_EVENT_PREFIX)


def generate_correlation_id() -> str:
    """COR-<UTC yyyymmddHHMMSS>-<8 hex>, sortable by creation time"""
    return f"COR-{utc_now():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8]}"
