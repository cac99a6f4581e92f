"""Service modules - Business logic layer"""
from .directory_service import DirectoryService
from .notification_service import NotificationService
from .workflow_service import WorkflowService
from .expense_service import ExpenseService

__all__ = [
    "DirectoryService",
    "NotificationService",
    "WorkflowService",
    "ExpenseService",
]
