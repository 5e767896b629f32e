"""
approval_engines.flow_selector -- Pick the approval flow for a submission.

Responsibility:
    Given a ``flow_type`` and the business data being submitted, find the
    single authoritative ``ApprovalFlow``: the most specific (lowest
    ``priority`` value) active flow whose structural conditions match.

Architecture position:
    Engines -- pure functions plus a thin ``FlowSelector`` wrapper around
    a ``FlowRepository``.

Invariants enforced:
    - Amount bounds are inclusive: ``amount_min <= amount <= amount_max``.
    - A bound that is present fails when the data attribute is missing.
    - Empty conditions match every submission (catch-all flow).
    - Lowest priority wins; ties are broken by ascending id.
    - When a requester is supplied and the flow restricts requesters, the
      requester must match one of them.

Failure modes:
    - No applicable flow -> ``None`` (a normal result, not an exception).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Union

from approval_engines.approvers import matches_any
from approval_engines.conditions import to_decimal, values_equal
from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval import (
    ApprovalFlow,
    FlowApplicability,
    FlowConditions,
    Principal,
)
from approval_kernel.domain.context import MISSING, EvaluationContext
from approval_kernel.domain.repositories import FlowRepository
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.flow_selector")

DataSource = Union[EvaluationContext, Mapping[str, Any]]


def _data_value(data: DataSource, key: str) -> Any:
    if isinstance(data, EvaluationContext):
        value = data.resolve(f"data.{key}")
    else:
        value = data.get(key, MISSING)
    return MISSING if value is None else value


def _member(value: Any, allowed: Iterable[Any]) -> bool:
    return value is not MISSING and any(values_equal(value, a) for a in allowed)


def condition_failures(conditions: FlowConditions, data: DataSource) -> list[str]:
    """Human-readable reasons ``conditions`` reject ``data`` (empty if they match)."""
    reasons: list[str] = []

    if conditions.amount_min is not None or conditions.amount_max is not None:
        amount = to_decimal(_data_value(data, "amount"))
        if amount is None:
            reasons.append("amount is missing or not numeric")
        else:
            if conditions.amount_min is not None and amount < conditions.amount_min:
                reasons.append(f"amount {amount} is below minimum {conditions.amount_min}")
            if conditions.amount_max is not None and amount > conditions.amount_max:
                reasons.append(f"amount {amount} exceeds maximum {conditions.amount_max}")

    for key, allowed in (
        ("department_id", conditions.departments),
        ("vendor_type", conditions.vendor_types),
        ("project_type", conditions.project_types),
    ):
        if allowed and not _member(_data_value(data, key), allowed):
            reasons.append(f"{key} is not one of {list(allowed)}")

    return reasons


def matches_flow_conditions(conditions: FlowConditions, data: DataSource) -> bool:
    if conditions.is_empty:
        return True
    return not condition_failures(conditions, data)


def check_applicability(
    flow: ApprovalFlow,
    data: DataSource,
    requester: Principal | None = None,
) -> FlowApplicability:
    """Explain whether ``flow`` applies, listing every failed check."""
    reasons: list[str] = []
    if not flow.is_active:
        reasons.append("flow is inactive")
    reasons.extend(condition_failures(flow.conditions, data))
    if requester is not None and flow.requesters and not matches_any(flow.requesters, requester):
        reasons.append(f"requester {requester.id} is not permitted to use this flow")
    return FlowApplicability(flow_id=flow.id, applicable=not reasons, reasons=tuple(reasons))


def _eligible(flow: ApprovalFlow, data: DataSource, requester: Principal | None) -> bool:
    if not flow.is_active or not matches_flow_conditions(flow.conditions, data):
        return False
    if requester is not None and flow.requesters:
        return matches_any(flow.requesters, requester)
    return True


@traced_engine("flow_selector", "1.0", fingerprint_fields=("flow_type",))
def select_flow(
    flows: Iterable[ApprovalFlow],
    data: DataSource,
    *,
    flow_type: str | None = None,
    requester: Principal | None = None,
) -> ApprovalFlow | None:
    """Most specific applicable flow, or ``None``."""
    candidates = [
        f for f in flows
        if (flow_type is None or f.flow_type == flow_type) and _eligible(f, data, requester)
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda f: (f.priority, f.id))


class FlowSelector:
    """Repository-backed flow selection."""

    def __init__(self, repository: FlowRepository):
        self._repository = repository

    def select(
        self,
        flow_type: str,
        data_ctx: DataSource,
        requester: Principal | None = None,
    ) -> ApprovalFlow | None:
        flows = self._repository.find_flows(flow_type)
        flow = select_flow(flows, data_ctx, flow_type=flow_type, requester=requester)
        logger.info(
            "flow_selected" if flow else "flow_not_found",
            extra={
                "flow_type": flow_type,
                "selected_flow_id": flow.id if flow else None,
                "candidates": len(flows),
            },
        )
        return flow

    def applicability(
        self,
        flow_type: str,
        data_ctx: DataSource,
        requester: Principal | None = None,
    ) -> list[FlowApplicability]:
        """Applicability report for every flow of ``flow_type``, in id order."""
        flows = sorted(self._repository.find_flows(flow_type), key=lambda f: f.id)
        return [check_applicability(f, data_ctx, requester) for f in flows]
