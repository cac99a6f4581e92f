"""Domain Models - Pydantic schemas for all entities"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict

from .enums import (
    ExpenseStatus, ChainEntryStatus, UserRole, RuleCondition, AutoApproveRuleType,
    ConditionField, ConditionOperator, NotificationStatus, NotificationTemplateKey,
    AuditEventType, ACTIONABLE_EXPENSE_STATUSES
)
from ..config.settings import settings
from ..utils.time import utc_now


# ============================================================================
# Directory & Identity
# ============================================================================

class User(BaseModel):
    """Directory user as seen by the approval engine"""
    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(..., description="Directory user ID")
    tenant_id: str = Field(..., description="Company the user belongs to")
    email: str = Field(..., description="User email")
    display_name: str = Field(..., description="User display name")
    role: UserRole = Field(default=UserRole.EMPLOYEE)
    manager_id: Optional[str] = Field(None, description="Direct manager user ID")
    department: Optional[str] = None
    is_active: bool = Field(default=True)


class ActorContext(BaseModel):
    """Current actor resolved from the request identity"""
    model_config = ConfigDict(extra="forbid")

    user_id: str
    tenant_id: str
    email: str
    display_name: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# ============================================================================
# Workflow Definition
# ============================================================================

class Condition(BaseModel):
    """Field/operator/value test against an expense and its employee"""
    model_config = ConfigDict(extra="forbid")

    field: ConditionField = Field(..., description="Field to evaluate")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(..., description="Value to compare against")


class WorkflowRule(BaseModel):
    """Legacy single-level matcher, used only when no approval sequence exists"""
    model_config = ConfigDict(extra="forbid")

    condition: RuleCondition
    value: Any = None
    approvers: List[str] = Field(default_factory=list)
    level: int = Field(..., ge=1)
    is_required: bool = Field(default=True)
    is_manager_approver: bool = Field(default=False)


class ApprovalStep(BaseModel):
    """One ordered stage of an approval sequence"""
    model_config = ConfigDict(extra="forbid")

    step: int = Field(..., description="Step number, doubles as chain level")
    name: Optional[str] = None
    approvers: List[str] = Field(default_factory=list)
    is_manager_approver: bool = Field(default=False)
    is_required: bool = Field(default=True)
    conditions: List[Condition] = Field(default_factory=list)


class AutoApproveRule(BaseModel):
    """Conditional rule that can resolve an expense before the chain completes"""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    type: AutoApproveRuleType
    percentage: Optional[float] = Field(None, ge=0, le=100)
    specific_approvers: List[str] = Field(default_factory=list)
    auto_approve: bool = Field(default=False)
    conditions: List[Condition] = Field(default_factory=list)


class EscalationSettings(BaseModel):
    """Time-based escalation of stalled required approvals"""
    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=False)
    escalation_time_hours: float = Field(default_factory=lambda: settings.default_escalation_hours)
    escalation_approvers: List[str] = Field(default_factory=list)


class Workflow(BaseModel):
    """Tenant-scoped approval workflow"""
    model_config = ConfigDict(extra="ignore")

    workflow_id: str = Field(..., description="Unique workflow ID")
    tenant_id: str = Field(..., description="Owning company")
    name: str
    description: Optional[str] = None
    rules: List[WorkflowRule] = Field(default_factory=list)
    approval_sequence: List[ApprovalStep] = Field(default_factory=list)
    conditional_rules: List[AutoApproveRule] = Field(default_factory=list)
    default_approvers: List[str] = Field(default_factory=list)
    escalation_settings: EscalationSettings = Field(default_factory=EscalationSettings)
    is_active: bool = Field(default=True)
    is_default: bool = Field(default=False, description="Lazily created tenant fallback")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, description="Optimistic concurrency version")

    def referenced_approver_ids(self) -> List[str]:
        """All user IDs the definition points at, de-duplicated in order"""
        ids: List[str] = list(self.default_approvers)
        for rule in self.rules:
            ids.extend(rule.approvers)
        for step in self.approval_sequence:
            ids.extend(step.approvers)
        for auto_rule in self.conditional_rules:
            ids.extend(auto_rule.specific_approvers)
        ids.extend(self.escalation_settings.escalation_approvers)
        return list(dict.fromkeys(ids))


# ============================================================================
# Expense & Approval Chain
# ============================================================================

class ChainEntry(BaseModel):
    """One approver-step pairing on an expense's approval chain"""
    model_config = ConfigDict(extra="ignore")

    entry_id: str = Field(..., description="Unique entry ID")
    approver_id: str
    level: int = Field(..., description="Ordering key; equal levels are parallel")
    step_name: Optional[str] = None
    status: ChainEntryStatus = Field(default=ChainEntryStatus.PENDING)
    is_required: bool = Field(default=False)
    is_manager_approver: bool = Field(default=False)
    is_escalation: bool = Field(default=False)
    is_override: bool = Field(default=False)
    rule: Optional[str] = Field(None, description="What produced this entry")
    comments: Optional[str] = None
    action_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    escalated_from: List[str] = Field(default_factory=list, description="Stale entries this escalation covers")
    auto_closed_by: Optional[str] = Field(None, description="Conditional rule that closed this entry")

    @property
    def is_pending(self) -> bool:
        return self.status == ChainEntryStatus.PENDING


class Expense(BaseModel):
    """Expense report with its embedded approval chain"""
    model_config = ConfigDict(extra="ignore")

    expense_id: str = Field(..., description="Unique expense ID")
    tenant_id: str
    employee_id: str
    amount: float = Field(..., ge=0)
    currency: str = Field(default="USD")
    category: str
    description: str = Field(default="")
    expense_date: Optional[datetime] = None
    status: ExpenseStatus = Field(default=ExpenseStatus.DRAFT)
    workflow_id: Optional[str] = Field(None, description="Workflow the chain was built from")
    approval_chain: List[ChainEntry] = Field(default_factory=list)
    total_approved_amount: float = Field(default=0)
    rejection_reason: Optional[str] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, description="Optimistic concurrency version")

    @property
    def is_actionable(self) -> bool:
        return self.status in ACTIONABLE_EXPENSE_STATUSES

    def pending_entries(self) -> List[ChainEntry]:
        return [entry for entry in self.approval_chain if entry.is_pending]

    def min_pending_level(self) -> Optional[int]:
        """Level currently open for decisions, or None when nothing is pending"""
        levels = [entry.level for entry in self.pending_entries()]
        return min(levels) if levels else None

    def current_approver_ids(self) -> List[str]:
        """Approvers with a pending entry at the minimum pending level"""
        level = self.min_pending_level()
        if level is None:
            return []
        ids = [e.approver_id for e in self.pending_entries() if e.level == level]
        return list(dict.fromkeys(ids))


# ============================================================================
# Notification Outbox & Audit
# ============================================================================

class NotificationOutbox(BaseModel):
    """Notification outbox item"""
    model_config = ConfigDict(extra="ignore")

    notification_id: str
    expense_id: Optional[str] = None
    template_key: NotificationTemplateKey
    recipients: List[str] = Field(default_factory=list)
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: NotificationStatus = Field(default=NotificationStatus.PENDING)
    retry_count: int = Field(default=0)
    next_retry_at: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    locked_by: Optional[str] = None
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    sent_at: Optional[datetime] = None


class AuditEvent(BaseModel):
    """Append-only audit record of an engine transition"""
    model_config = ConfigDict(extra="ignore")

    audit_event_id: str
    expense_id: str
    tenant_id: str
    event_type: AuditEventType
    actor_id: Optional[str] = Field(None, description="None for system-driven events")
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
    correlation_id: Optional[str] = None
