"""
approval_engines.policy_resolver -- ABAC decision for one (business_code, action, resource_type).

Responsibility:
    Order the candidate policies, evaluate each one's ``conditions`` and
    ``scope`` trees against the context, and return the effect of the
    first policy that matches.  No match means DENY.

Architecture position:
    Engines -- pure functions over immutable policy records.  The only
    collaborator is a ``PolicyRepository`` supplying the candidates.

Invariants enforced:
    - Priority order: higher ``priority`` first; equal priorities are
      ordered by ascending ``id`` so the outcome never depends on the
      order the repository returned them in.
    - First match wins; a policy matches only when both ``conditions``
      and ``scope`` evaluate true.
    - Default deny: zero candidates, or zero matches, yields DENY.
    - Inactive policies are skipped even if the repository returns them.

Failure modes:
    - None.  Condition evaluation never raises; an unresolvable attribute
      simply fails its leaf.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from approval_engines.conditions import evaluate_condition, explain_condition
from approval_engines.tracer import traced_engine
from approval_kernel.domain.context import EvaluationContext
from approval_kernel.domain.policy import (
    AccessPolicy,
    Decision,
    Effect,
    PolicyDecision,
    PolicyEvaluation,
)
from approval_kernel.domain.repositories import PolicyRepository
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.policy_resolver")


def order_policies(policies: Iterable[AccessPolicy]) -> list[AccessPolicy]:
    """Active policies, highest priority first, ties by ascending id."""
    return sorted(
        (p for p in policies if p.is_active),
        key=lambda p: (-p.priority, p.id),
    )


def _evaluate_policy(
    policy: AccessPolicy,
    ctx: EvaluationContext,
    *,
    with_trace: bool,
) -> PolicyEvaluation:
    if with_trace:
        conditions_trace = explain_condition(policy.conditions, ctx)
        scope_trace = explain_condition(policy.scope, ctx)
        return PolicyEvaluation(
            policy_id=policy.id,
            name=policy.name,
            effect=policy.effect,
            priority=policy.priority,
            conditions_passed=conditions_trace.result,
            scope_passed=scope_trace.result,
            conditions_trace=conditions_trace,
            scope_trace=scope_trace,
        )

    conditions_passed = evaluate_condition(policy.conditions, ctx)
    # scope is only consulted once conditions hold
    scope_passed = conditions_passed and evaluate_condition(policy.scope, ctx)
    return PolicyEvaluation(
        policy_id=policy.id,
        name=policy.name,
        effect=policy.effect,
        priority=policy.priority,
        conditions_passed=conditions_passed,
        scope_passed=scope_passed,
    )


@traced_engine(
    "policy_resolver", "1.0",
    fingerprint_fields=("business_code", "action", "resource_type"),
)
def resolve_decision(
    policies: Sequence[AccessPolicy],
    ctx: EvaluationContext,
    *,
    business_code: str = "",
    action: str = "",
    resource_type: str = "",
    with_trace: bool = False,
) -> PolicyDecision:
    """Pure core of the resolver.

    With ``with_trace`` every candidate is evaluated (not only up to the
    first match) so the returned trail explains the whole policy set.
    """
    evaluations: list[PolicyEvaluation] = []
    winner: AccessPolicy | None = None

    for policy in order_policies(policies):
        evaluation = _evaluate_policy(policy, ctx, with_trace=with_trace)
        evaluations.append(evaluation)
        if evaluation.matched and winner is None:
            winner = policy
            if not with_trace:
                break

    if winner is None:
        decision = Decision.DENY
        reason = (
            "No policies defined" if not evaluations
            else "No matching policy (default deny)"
        )
    else:
        decision = Decision.ALLOW if winner.effect is Effect.ALLOW else Decision.DENY
        reason = f"Matched policy {winner.id} ({winner.effect.value}, priority {winner.priority})"

    return PolicyDecision(
        decision=decision,
        business_code=business_code,
        action=action,
        resource_type=resource_type,
        matched_policy_id=winner.id if winner else None,
        evaluations=tuple(evaluations),
        reason=reason,
    )


class PolicyResolver:
    """Answers "is this allowed?" against a ``PolicyRepository``."""

    def __init__(self, repository: PolicyRepository):
        self._repository = repository

    def _candidates(self, business_code: str, action: str, resource_type: str) -> list[AccessPolicy]:
        return [
            p for p in self._repository.find_policies(business_code, action, resource_type)
            if p.applies_to(business_code, action, resource_type)
        ]

    def decide(
        self,
        business_code: str,
        action: str,
        resource_type: str,
        ctx: EvaluationContext,
    ) -> Decision:
        return self._resolve(business_code, action, resource_type, ctx, with_trace=False).decision

    def explain(
        self,
        business_code: str,
        action: str,
        resource_type: str,
        ctx: EvaluationContext,
    ) -> PolicyDecision:
        """Same decision as ``decide`` plus the per-policy evaluation trail."""
        return self._resolve(business_code, action, resource_type, ctx, with_trace=True)

    def _resolve(
        self,
        business_code: str,
        action: str,
        resource_type: str,
        ctx: EvaluationContext,
        *,
        with_trace: bool,
    ) -> PolicyDecision:
        candidates = self._candidates(business_code, action, resource_type)
        result = resolve_decision(
            candidates,
            ctx,
            business_code=business_code,
            action=action,
            resource_type=resource_type,
            with_trace=with_trace,
        )
        logger.info(
            "policy_decision",
            extra={
                "business_code": business_code,
                "action": action,
                "resource_type": resource_type,
                "decision": result.decision.value,
                "matched_policy_id": result.matched_policy_id,
                "candidates": len(candidates),
            },
        )
        return result
