"""
Pure evaluation engines.

Engines are stateless functions over immutable domain objects.  They
never touch a database, a clock or global state; the kernel services
feed them snapshots and act on the results.
"""

from approval_engines.approvers import (
    find_unsatisfiable_conditionals,
    is_step_approver,
    principal_matches,
    resolve_approvers,
    resolve_step_approvers,
)
from approval_engines.conditions import (
    ConditionTrace,
    evaluate_condition,
    explain_condition,
)
from approval_engines.flow_selector import (
    FlowSelector,
    check_applicability,
    matches_flow_conditions,
    select_flow,
)
from approval_engines.policy_resolver import PolicyResolver, resolve_decision
from approval_engines.step_evaluation import evaluate_step, required_approvals

__all__ = [
    "ConditionTrace",
    "FlowSelector",
    "PolicyResolver",
    "check_applicability",
    "evaluate_condition",
    "evaluate_step",
    "explain_condition",
    "find_unsatisfiable_conditionals",
    "is_step_approver",
    "matches_flow_conditions",
    "principal_matches",
    "required_approvals",
    "resolve_approvers",
    "resolve_decision",
    "resolve_step_approvers",
    "select_flow",
]
