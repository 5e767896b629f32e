"""
Configuration Validator (``approval_config.validator``).

Responsibility
--------------
Validates a loaded set of access policies and approval flows before it
is activated, so structural defects surface at load time instead of as
a stuck approval request.

Architecture position
---------------------
**Config layer** -- load-time validation.  Called by
``approval_config.load_configuration`` after parsing.  Uses the pure
approver checks from ``approval_engines.approvers``.

Invariants enforced
-------------------
* Unique policy ids and unique flow ids.
* Non-negative priorities.
* Condition trees: ``not`` has exactly one child, every field is a
  namespaced path, ordering operators carry a scalar value and
  membership operators a list.
* Flow steps: unique numbers, contiguous from 0, at least one and at
  most ``MAX_VOTING_STEPS`` voting steps, every voting step has an
  approver, and every conditional approver branch ends in a static one.
* ``amount_min <= amount_max`` when both are present.

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``)  -> configuration
  MUST NOT be activated.
* Validation warnings (``ConfigValidationResult.warnings``)  ->
  configuration may be activated but should be reviewed.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field

from approval_engines.approvers import find_unsatisfiable_conditionals
from approval_kernel.domain.approval import (
    ApprovalFlow,
    ApprovalType,
    ConditionalApprover,
)
from approval_kernel.domain.conditions import (
    MEMBERSHIP_OPERATORS,
    ORDERING_OPERATORS,
    ConditionGroup,
    ConditionLeaf,
    ConditionNode,
    GroupOperator,
)
from approval_kernel.domain.context import is_path
from approval_kernel.domain.policy import AccessPolicy

MAX_VOTING_STEPS = 5


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings do not block activation but should be reviewed.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(
    policies: Sequence[AccessPolicy],
    flows: Sequence[ApprovalFlow],
) -> ConfigValidationResult:
    """
    Validate a configuration set.

    Postconditions:
        - Returns a ``ConfigValidationResult`` with errors and warnings.
        - A configuration with errors MUST NOT be activated.
    """
    result = ConfigValidationResult()

    _validate_unique_ids("policy", [p.id for p in policies], result)
    _validate_unique_ids("flow", [f.id for f in flows], result)

    for policy in policies:
        _validate_policy(policy, result)
    for flow in flows:
        _validate_flow(flow, result)

    return result


def _validate_unique_ids(kind: str, ids: list[int], result: ConfigValidationResult) -> None:
    for value, count in sorted(Counter(ids).items()):
        if count > 1:
            result.add_error(f"Duplicate {kind} id {value} ({count} definitions)")


def validate_condition(node: ConditionNode | None, where: str, result: ConfigValidationResult) -> None:
    """Structural checks on one condition tree."""
    if node is None:
        return
    if isinstance(node, ConditionGroup):
        if node.operator is GroupOperator.NOT and len(node.rules) != 1:
            result.add_error(
                f"{where}: 'not' group must have exactly one rule, has {len(node.rules)}"
            )
        if node.operator is GroupOperator.OR and not node.rules:
            result.add_warning(f"{where}: empty 'or' group never matches")
        for index, child in enumerate(node.rules):
            validate_condition(child, f"{where}.rules[{index}]", result)
        return

    if not isinstance(node, ConditionLeaf):
        result.add_error(f"{where}: unknown condition node {type(node).__name__}")
        return
    if not is_path(node.field):
        result.add_error(f"{where}: field {node.field!r} is not a namespaced path")
    if node.operator in MEMBERSHIP_OPERATORS and not (
        isinstance(node.value, (tuple, list)) or is_path(node.value)
    ):
        result.add_error(f"{where}: '{node.operator.value}' needs a list value")
    if node.operator in ORDERING_OPERATORS and isinstance(node.value, (tuple, list, dict)):
        result.add_error(f"{where}: '{node.operator.value}' needs a scalar value")


def _validate_policy(policy: AccessPolicy, result: ConfigValidationResult) -> None:
    where = f"policy {policy.id}"
    if policy.priority < 0:
        result.add_error(f"{where}: priority must be non-negative, got {policy.priority}")
    validate_condition(policy.conditions, f"{where}.conditions", result)
    validate_condition(policy.scope, f"{where}.scope", result)


def _validate_flow(flow: ApprovalFlow, result: ConfigValidationResult) -> None:
    where = f"flow {flow.id}"
    if flow.priority < 0:
        result.add_error(f"{where}: priority must be non-negative, got {flow.priority}")

    conditions = flow.conditions
    if (
        conditions.amount_min is not None
        and conditions.amount_max is not None
        and conditions.amount_min > conditions.amount_max
    ):
        result.add_error(
            f"{where}: amount_min {conditions.amount_min} exceeds amount_max {conditions.amount_max}"
        )

    numbers = [s.step for s in flow.approval_steps]
    for value, count in sorted(Counter(numbers).items()):
        if count > 1:
            result.add_error(f"{where}: duplicate step number {value}")
    unique = sorted(set(numbers))
    if unique and unique != list(range(unique[0], unique[0] + len(unique))):
        result.add_error(f"{where}: step numbers are not contiguous: {unique}")
    if unique and unique[0] != 0:
        result.add_error(f"{where}: steps must start at 0 (request creation step)")
    if any(n < 0 for n in unique):
        result.add_error(f"{where}: step numbers must be non-negative")

    voting = flow.voting_steps()
    if not voting:
        result.add_error(f"{where}: flow has no voting step")
    elif len(voting) > MAX_VOTING_STEPS:
        result.add_error(
            f"{where}: {len(voting)} voting steps exceed the maximum of {MAX_VOTING_STEPS}"
        )

    if flow.flow_config.return_to_step is not None and flow.get_step(
        flow.flow_config.return_to_step
    ) is None:
        result.add_error(
            f"{where}: return_to_step {flow.flow_config.return_to_step} is not a step of the flow"
        )

    for step in voting:
        step_where = f"{where} step {step.step}"
        if not step.approvers:
            result.add_error(f"{step_where}: voting step has no approvers")
            continue
        errors, warnings = find_unsatisfiable_conditionals(step.approvers)
        for msg in errors:
            result.add_error(f"{step_where}: {msg}")
        for msg in warnings:
            result.add_warning(f"{step_where}: {msg}")
        _validate_approver_conditions(step.approvers, step_where, result)
        if step.approval_type is ApprovalType.MAJORITY and len(step.approvers) < 2:
            result.add_warning(f"{step_where}: majority step with a single approver")


def _validate_approver_conditions(approvers, where: str, result: ConfigValidationResult) -> None:
    for index, approver in enumerate(approvers):
        if isinstance(approver, ConditionalApprover):
            validate_condition(approver.condition, f"{where}.approvers[{index}].condition", result)
            _validate_approver_conditions(
                approver.approvers, f"{where}.approvers[{index}]", result,
            )
