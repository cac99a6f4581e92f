"""Domain Enumerations - All status and type definitions"""
from enum import Enum


class ExpenseStatus(str, Enum):
    """Expense lifecycle status"""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PENDING_APPROVAL = "pending_approval"  # At least one entry approved, chain still open
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


# Statuses in which the chain advancer still accepts decisions
ACTIONABLE_EXPENSE_STATUSES = (ExpenseStatus.SUBMITTED, ExpenseStatus.PENDING_APPROVAL)


class ExpenseCategory(str, Enum):
    """Expense categories"""
    TRAVEL = "travel"
    MEALS = "meals"
    ACCOMMODATION = "accommodation"
    TRANSPORT = "transport"
    OFFICE_SUPPLIES = "office_supplies"
    ENTERTAINMENT = "entertainment"
    TRAINING = "training"
    COMMUNICATION = "communication"
    OTHER = "other"


class ChainEntryStatus(str, Enum):
    """Per-approver decision state"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UserRole(str, Enum):
    """Directory roles"""
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


class RuleCondition(str, Enum):
    """Legacy workflow rule matchers"""
    AMOUNT_THRESHOLD = "amount_threshold"
    CATEGORY = "category"
    DEPARTMENT = "department"
    EMPLOYEE_LEVEL = "employee_level"


class AutoApproveRuleType(str, Enum):
    """Conditional auto-approval rule types"""
    PERCENTAGE = "percentage"
    SPECIFIC_APPROVER = "specific_approver"
    HYBRID = "hybrid"  # percentage OR specific approver


class ConditionField(str, Enum):
    """Fields a condition may inspect"""
    AMOUNT = "amount"
    CATEGORY = "category"
    DEPARTMENT = "department"
    ROLE = "role"


class ConditionOperator(str, Enum):
    """Condition comparison operators"""
    EQUALS = "equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


class ApprovalAction(str, Enum):
    """Approver decisions"""
    APPROVE = "approve"
    REJECT = "reject"


class ChainRuleTag(str, Enum):
    """Origin of a chain entry"""
    APPROVAL_SEQUENCE = "approval_sequence"
    DEFAULT_APPROVERS = "default_approvers"
    ESCALATION = "escalation"
    ADMIN_OVERRIDE = "admin_override"


class NotificationStatus(str, Enum):
    """Notification outbox status"""
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class NotificationTemplateKey(str, Enum):
    """Notification template identifiers"""
    EXPENSE_SUBMITTED = "EXPENSE_SUBMITTED"
    EXPENSE_APPROVED = "EXPENSE_APPROVED"
    EXPENSE_REJECTED = "EXPENSE_REJECTED"


class AuditEventType(str, Enum):
    """Types of audit events"""
    SUBMIT_EXPENSE = "SUBMIT_EXPENSE"
    CHAIN_BUILT = "CHAIN_BUILT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    AUTO_APPROVE = "AUTO_APPROVE"
    EXPENSE_APPROVED = "EXPENSE_APPROVED"
    ADMIN_OVERRIDE = "ADMIN_OVERRIDE"
    ESCALATION = "ESCALATION"
