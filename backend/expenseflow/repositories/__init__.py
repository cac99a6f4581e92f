"""Repository modules - Data access layer"""
from .mongo_client import get_database, get_collection
from .workflow_repo import WorkflowRepository
from .expense_repo import ExpenseRepository
from .user_repo import UserRepository
from .audit_repo import AuditRepository
from .notification_repo import NotificationRepository

__all__ = [
    "get_database",
    "get_collection",
    "WorkflowRepository",
    "ExpenseRepository",
    "UserRepository",
    "AuditRepository",
    "NotificationRepository",
]
