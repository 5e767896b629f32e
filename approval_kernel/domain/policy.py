"""
Access policy domain types (``approval_kernel.domain.policy``).

Responsibility
--------------
Pure value objects for attribute-based access decisions: the configured
``AccessPolicy`` record, the ``Decision`` it produces, and the
per-policy evaluation trail returned by ``PolicyResolver.explain``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Exactly one ``effect`` per policy.
* ``priority`` is the ordering key; higher is evaluated first.
* Policies are read-only to the engine and never mutated during evaluation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from approval_kernel.domain.conditions import ConditionNode

if TYPE_CHECKING:
    from approval_engines.conditions import ConditionTrace


class Effect(str, Enum):
    """What a matching policy decides."""

    ALLOW = "allow"
    DENY = "deny"


class Decision(str, Enum):
    """Outcome of an access decision."""

    ALLOW = "allow"
    DENY = "deny"

    @property
    def allowed(self) -> bool:
        return self is Decision.ALLOW


@dataclass(frozen=True)
class AccessPolicy:
    """A configured ABAC policy for one ``(business_code, action, resource_type)``.

    ``conditions`` and ``scope`` must both hold for the policy to apply;
    ``None`` means unconditional.
    """

    id: int
    business_code: str
    action: str
    resource_type: str
    effect: Effect
    priority: int = 0
    conditions: ConditionNode | None = None
    scope: ConditionNode | None = None
    name: str = ""
    is_active: bool = True

    def applies_to(self, business_code: str, action: str, resource_type: str) -> bool:
        return (
            self.business_code == business_code
            and self.action == action
            and self.resource_type == resource_type
        )


@dataclass(frozen=True)
class PolicyEvaluation:
    """How a single candidate policy fared against the context."""

    policy_id: int
    name: str
    effect: Effect
    priority: int
    conditions_passed: bool
    scope_passed: bool
    conditions_trace: ConditionTrace | None = None
    scope_trace: ConditionTrace | None = None

    @property
    def matched(self) -> bool:
        return self.conditions_passed and self.scope_passed


@dataclass(frozen=True)
class PolicyDecision:
    """Decision plus the evaluation trail that produced it."""

    decision: Decision
    business_code: str
    action: str
    resource_type: str
    matched_policy_id: int | None = None
    evaluations: tuple[PolicyEvaluation, ...] = ()
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.decision.allowed
