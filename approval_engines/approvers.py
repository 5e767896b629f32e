"""
approval_engines.approvers -- Approver references to concrete principals.

Responsibility:
    Decide whether an acting principal fills an approver reference, and
    flatten a step's approver list (including conditional branches) into
    the concrete static approvers that apply to one request.

Architecture position:
    Engines -- pure functions.  Conditional guards are evaluated with
    ``approval_engines.conditions`` against the request's data context.

Invariants enforced:
    - Reference values compare after string normalization, so a stored
      ``"12"`` and an integer ``12`` refer to the same principal.
    - ``resolve_approvers`` output is de-duplicated and keeps first-seen
      order.
    - A voting step that resolves to nobody is a configuration defect and
      raises ``UnsatisfiableStepError`` instead of silently stalling.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from approval_engines.conditions import evaluate_condition
from approval_kernel.domain.approval import (
    ApprovalStep,
    Approver,
    ApproverType,
    ConditionalApprover,
    Principal,
    StaticApprover,
)
from approval_kernel.domain.context import EvaluationContext
from approval_kernel.exceptions import UnsatisfiableStepError
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.approvers")


def _norm(value: Any) -> str:
    return "" if value is None else str(value)


def principal_matches(approver: StaticApprover, principal: Principal) -> bool:
    """True if ``principal`` is (a member of) the static ``approver`` reference."""
    target = _norm(approver.value)
    if approver.type is ApproverType.USER:
        return _norm(principal.id) == target
    if approver.type is ApproverType.DEPARTMENT:
        return any(_norm(d) == target for d in principal.department_ids)
    if approver.type is ApproverType.POSITION:
        return principal.position_id is not None and _norm(principal.position_id) == target
    if approver.type is ApproverType.SYSTEM_LEVEL:
        return principal.system_level is not None and _norm(principal.system_level) == target
    return False


def matches_any(approvers: Iterable[StaticApprover], principal: Principal) -> bool:
    return any(principal_matches(a, principal) for a in approvers)


def _flatten(approvers: Iterable[Approver], ctx: EvaluationContext, out: list[StaticApprover]) -> None:
    for approver in approvers:
        if isinstance(approver, ConditionalApprover):
            if evaluate_condition(approver.condition, ctx):
                _flatten(approver.approvers, ctx, out)
        elif approver not in out:
            out.append(approver)


def resolve_approvers(
    approvers: Sequence[Approver],
    ctx: EvaluationContext,
    *,
    flow_id: Any = None,
    step: int | None = None,
) -> tuple[StaticApprover, ...]:
    """Concrete approvers for a step given the request data.

    Raises:
        UnsatisfiableStepError: nothing resolved for a voting step.
    """
    resolved: list[StaticApprover] = []
    _flatten(approvers, ctx, resolved)

    if not resolved and step is not None and step > 0:
        logger.warning(
            "step_unsatisfiable",
            extra={"flow_id": str(flow_id), "step": step, "configured": len(approvers)},
        )
        raise UnsatisfiableStepError(
            str(flow_id), step, "no approver branch applies to the request data",
        )
    return tuple(resolved)


def resolve_step_approvers(
    step: ApprovalStep,
    ctx: EvaluationContext,
    flow_id: Any = None,
) -> tuple[StaticApprover, ...]:
    return resolve_approvers(step.approvers, ctx, flow_id=flow_id, step=step.step)


def is_step_approver(
    step: ApprovalStep,
    principal: Principal,
    ctx: EvaluationContext,
    flow_id: Any = None,
) -> bool:
    """Whether ``principal`` resolves as an approver of ``step`` for this request."""
    if not step.is_voting:
        return False
    return matches_any(resolve_step_approvers(step, ctx, flow_id), principal)


def find_unsatisfiable_conditionals(approvers: Sequence[Approver]) -> tuple[list[str], list[str]]:
    """Static check of an approver list.

    Returns ``(errors, warnings)``:

    * error -- a conditional branch with no static approver anywhere
      beneath it can never produce an approver.
    * warning -- every top-level entry is conditional, so request data
      that satisfies no guard leaves the step with nobody to approve.
    """
    errors: list[str] = []
    warnings: list[str] = []

    def has_static(items: Iterable[Approver]) -> bool:
        return any(
            isinstance(a, StaticApprover)
            or (isinstance(a, ConditionalApprover) and has_static(a.approvers))
            for a in items
        )

    def walk(items: Iterable[Approver], path: str) -> None:
        for index, approver in enumerate(items):
            if isinstance(approver, ConditionalApprover):
                where = f"{path}[{index}]"
                if not has_static(approver.approvers):
                    errors.append(f"conditional approver {where} has no static approver")
                walk(approver.approvers, where + ".approvers")

    walk(approvers, "approvers")

    if approvers and all(isinstance(a, ConditionalApprover) for a in approvers):
        warnings.append("all approvers are conditional; no unconditional fallback")
    return errors, warnings
