"""
Pure domain layer.

This module contains pure data transfer objects with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (except the injectable Clock abstraction itself)
- I/O

All domain objects are immutable and deterministic.
"""

from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalFlow,
    ApprovalRequest,
    ApprovalStatus,
    ApprovalStep,
    ApprovalType,
    Approver,
    ApproverType,
    ConditionalApprover,
    FlowApplicability,
    FlowConditions,
    FlowConfig,
    Principal,
    RequestAction,
    RequestPermissions,
    StateGate,
    StaticApprover,
    StepEvaluation,
    SubStatus,
    Vote,
    VoteAction,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.conditions import (
    ALWAYS,
    ConditionGroup,
    ConditionLeaf,
    ConditionNode,
    GroupOperator,
    Operator,
    all_of,
    any_of,
    leaf,
    negate,
)
from approval_kernel.domain.context import MISSING, EvaluationContext, Namespace, is_path
from approval_kernel.domain.policy import (
    AccessPolicy,
    Decision,
    Effect,
    PolicyDecision,
    PolicyEvaluation,
)

__all__ = [
    "ALWAYS",
    "APPROVAL_TRANSITIONS",
    "AccessPolicy",
    "ApprovalFlow",
    "ApprovalRequest",
    "ApprovalStatus",
    "ApprovalStep",
    "ApprovalType",
    "Approver",
    "ApproverType",
    "Clock",
    "ConditionGroup",
    "ConditionLeaf",
    "ConditionNode",
    "ConditionalApprover",
    "Decision",
    "DeterministicClock",
    "Effect",
    "EvaluationContext",
    "FlowApplicability",
    "FlowConditions",
    "FlowConfig",
    "GroupOperator",
    "MISSING",
    "Namespace",
    "Operator",
    "PolicyDecision",
    "PolicyEvaluation",
    "Principal",
    "RequestAction",
    "RequestPermissions",
    "StateGate",
    "StaticApprover",
    "StepEvaluation",
    "SubStatus",
    "SystemClock",
    "TERMINAL_APPROVAL_STATUSES",
    "Vote",
    "VoteAction",
    "all_of",
    "any_of",
    "is_path",
    "leaf",
    "negate",
]
