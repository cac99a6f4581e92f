"""Approval Engine - Workflow resolution and chain execution"""
from .engine import ApprovalEngine
from .permission_guard import ApprovalGuard
from .workflow_selector import WorkflowSelector
from .chain_builder import ChainBuilder, SequenceStrategy, LegacyRuleStrategy
from .condition_evaluator import ConditionEvaluator
from .rule_evaluator import ConditionalRuleEvaluator
from .escalation_monitor import EscalationMonitor
from .audit_writer import AuditWriter

__all__ = [
    "ApprovalEngine",
    "ApprovalGuard",
    "WorkflowSelector",
    "ChainBuilder",
    "SequenceStrategy",
    "LegacyRuleStrategy",
    "ConditionEvaluator",
    "ConditionalRuleEvaluator",
    "EscalationMonitor",
    "AuditWriter",
]
