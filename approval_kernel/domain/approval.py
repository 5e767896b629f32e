"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the approval workflow engine.  Defines the
request lifecycle state machine, configured flows/steps/approvers,
vote records and the request snapshot the state machine produces.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Lifecycle state machine -- ``APPROVAL_TRANSITIONS`` defines the only
  valid status changes.  Terminal states have no outgoing edges.
* Step 0 is the synthetic "request creation" step and never votes.
* Votes are append-only; a request snapshot is never mutated, every
  transition yields a new snapshot with ``version + 1``.
* Among matching flows of one ``flow_type`` the lowest ``priority``
  value is authoritative (ties: lowest id).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Union
from uuid import UUID

from approval_kernel.domain.conditions import ConditionNode


# =========================================================================
# Request Status Lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    REVIEWING = "reviewing"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class SubStatus(str, Enum):
    """Detail state within a main status (``None`` means plain pending)."""

    REVIEWING = "reviewing"
    STEP_APPROVED = "step_approved"
    EXPIRED = "expired"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.REVIEWING,
        ApprovalStatus.APPROVED,
        ApprovalStatus.CANCELLED,
        ApprovalStatus.EXPIRED,
    }),
    ApprovalStatus.REVIEWING: frozenset({
        ApprovalStatus.PENDING,
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.RETURNED,
        ApprovalStatus.CANCELLED,
        ApprovalStatus.EXPIRED,
    }),
    ApprovalStatus.RETURNED: frozenset({
        ApprovalStatus.PENDING,
        ApprovalStatus.CANCELLED,
        ApprovalStatus.EXPIRED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
    ApprovalStatus.EXPIRED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
    ApprovalStatus.EXPIRED,
})

OPEN_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset(
    set(ApprovalStatus) - TERMINAL_APPROVAL_STATUSES
)


def can_transition(current: ApprovalStatus, target: ApprovalStatus) -> bool:
    return target in APPROVAL_TRANSITIONS.get(current, frozenset())


class VoteAction(str, Enum):
    """What an approver records on a step."""

    APPROVE = "approve"
    REJECT = "reject"
    RETURN = "return"


class RequestAction(str, Enum):
    """Actions accepted by the single ``act`` dispatch surface."""

    START_REVIEW = "start_review"
    APPROVE = "approve"
    REJECT = "reject"
    RETURN = "return"
    CANCEL = "cancel"

    @property
    def vote_action(self) -> VoteAction | None:
        try:
            return VoteAction(self.value)
        except ValueError:
            return None


# =========================================================================
# Approvers
# =========================================================================


class ApproverType(str, Enum):
    """Approver/requester reference kinds (stored strings preserved)."""

    SYSTEM_LEVEL = "system_level"
    DEPARTMENT = "department"
    POSITION = "position"
    USER = "user"
    CONDITIONAL = "conditional"


class ApprovalType(str, Enum):
    """How many of a step's approvers must approve."""

    REQUIRED = "required"
    OPTIONAL = "optional"
    MAJORITY = "majority"
    UNANIMOUS = "unanimous"


@dataclass(frozen=True)
class StaticApprover:
    """A concrete principal reference: a user, department, position or level."""

    type: ApproverType
    value: Any
    display_name: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.type.value, str(self.value))


@dataclass(frozen=True)
class ConditionalApprover:
    """Branch: ``approvers`` apply only when ``condition`` holds for the request data."""

    condition: ConditionNode
    approvers: tuple[Approver, ...] = ()
    display_name: str = ""

    type: ApproverType = field(default=ApproverType.CONDITIONAL, init=False)


Approver = Union[StaticApprover, ConditionalApprover]


@dataclass(frozen=True)
class Principal:
    """The acting user, as seen by approver matching and the ``user.*`` namespace."""

    id: Any
    department_ids: tuple[Any, ...] = ()
    position_id: Any = None
    system_level: Any = None
    name: str = ""
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def as_context_mapping(self) -> dict[str, Any]:
        """Attributes exposed to conditions as ``user.*``."""
        mapping: dict[str, Any] = dict(self.attributes)
        mapping.update({
            "id": self.id,
            "name": self.name,
            "department_id": self.department_ids[0] if self.department_ids else None,
            "department_ids": list(self.department_ids),
            "position_id": self.position_id,
            "system_level": self.system_level,
        })
        return mapping


# =========================================================================
# Steps and Flows
# =========================================================================


@dataclass(frozen=True)
class StateGate:
    """Per-step boolean gate keyed by the request's sub-status.

    Used for both ``editing_conditions`` and ``cancellation_conditions``.
    Defaults mirror the stored configuration: allowed while plain
    pending, denied otherwise unless explicitly configured.
    """

    allow_during_pending: bool = True
    allow_during_reviewing: bool = False
    allow_during_step_approved: bool = False
    allow_during_expired: bool = False

    def permits(self, sub_status: SubStatus | None) -> bool:
        if sub_status is SubStatus.REVIEWING:
            return self.allow_during_reviewing
        if sub_status is SubStatus.STEP_APPROVED:
            return self.allow_during_step_approved
        if sub_status is SubStatus.EXPIRED:
            return self.allow_during_expired
        return self.allow_during_pending


@dataclass(frozen=True)
class ApprovalStep:
    """One stage of a flow.  ``step == 0`` is the creation step."""

    step: int
    name: str
    approvers: tuple[Approver, ...] = ()
    approval_type: ApprovalType = ApprovalType.REQUIRED
    auto_approve_if_requester: bool = False
    editing_conditions: StateGate = field(default_factory=StateGate)
    cancellation_conditions: StateGate = field(default_factory=StateGate)

    @property
    def is_voting(self) -> bool:
        return self.step > 0


@dataclass(frozen=True)
class FlowConditions:
    """Flat structural matcher deciding whether a flow applies to data."""

    amount_min: Decimal | None = None
    amount_max: Decimal | None = None
    departments: tuple[Any, ...] | None = None
    vendor_types: tuple[str, ...] | None = None
    project_types: tuple[str, ...] | None = None

    @property
    def is_empty(self) -> bool:
        return (
            self.amount_min is None
            and self.amount_max is None
            and not self.departments
            and not self.vendor_types
            and not self.project_types
        )


@dataclass(frozen=True)
class FlowConfig:
    """Flow-level switches.

    ``return_to_step`` -- step a Return restarts at; ``None`` means the
    first voting step.  ``expires_after_hours`` -- lifetime of a request
    created from this flow; ``None`` means it never expires.
    """

    allow_editing_after_request: bool = True
    allow_cancellation_after_request: bool = True
    return_to_step: int | None = None
    expires_after_hours: int | None = None


@dataclass(frozen=True)
class ApprovalFlow:
    """A configured approval pipeline for one business area."""

    id: int
    name: str
    flow_type: str
    approval_steps: tuple[ApprovalStep, ...]
    conditions: FlowConditions = field(default_factory=FlowConditions)
    requesters: tuple[StaticApprover, ...] = ()
    priority: int = 0
    is_active: bool = True
    flow_config: FlowConfig = field(default_factory=FlowConfig)

    def get_step(self, step: int) -> ApprovalStep | None:
        for s in self.approval_steps:
            if s.step == step:
                return s
        return None

    def voting_steps(self) -> tuple[ApprovalStep, ...]:
        return tuple(sorted(
            (s for s in self.approval_steps if s.is_voting),
            key=lambda s: s.step,
        ))

    def first_voting_step(self) -> ApprovalStep | None:
        steps = self.voting_steps()
        return steps[0] if steps else None

    def next_voting_step(self, after: int) -> ApprovalStep | None:
        for s in self.voting_steps():
            if s.step > after:
                return s
        return None

    def return_target(self) -> int | None:
        target = self.flow_config.return_to_step
        if target is not None and self.get_step(target) is not None and target > 0:
            return target
        first = self.first_voting_step()
        return first.step if first else None


# =========================================================================
# Votes and Requests
# =========================================================================


@dataclass(frozen=True)
class Vote:
    """One approver's recorded action on one step.  Immutable.

    The voter's department, position and system level are copied from the
    acting principal when the vote is cast, so department and position
    slots can be matched again later without looking the voter up.
    """

    approver_id: Any
    step: int
    action: VoteAction
    acted_at: datetime
    comment: str | None = None
    is_automatic: bool = False
    round: int = 0
    department_ids: tuple[Any, ...] = ()
    position_id: Any = None
    system_level: Any = None

    @classmethod
    def cast(
        cls,
        voter: Principal,
        step: int,
        action: VoteAction,
        acted_at: datetime,
        **extra: Any,
    ) -> Vote:
        """Vote by ``voter`` carrying its current department, position and level."""
        return cls(
            approver_id=voter.id,
            step=step,
            action=action,
            acted_at=acted_at,
            department_ids=tuple(voter.department_ids),
            position_id=voter.position_id,
            system_level=voter.system_level,
            **extra,
        )

    def voter(self) -> Principal:
        """The voter as it was when the vote was cast."""
        return Principal(
            id=self.approver_id,
            department_ids=self.department_ids,
            position_id=self.position_id,
            system_level=self.system_level,
        )


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of an approval request.

    ``data`` is the business data snapshot taken at submission; it is
    the ``data.*`` namespace for conditional approvers.  ``round`` counts
    Return cycles; only votes from the current round count toward a step.
    ``requester_attributes`` is the requester's ``user.*`` view captured at
    submission, so conditional approvers resolve the same way for every
    service instance that later loads the request.
    """

    id: UUID
    flow_id: int
    flow_type: str
    business_code: str
    data_ref: str
    created_by: Any
    created_at: datetime
    current_step: int
    status: ApprovalStatus = ApprovalStatus.PENDING
    sub_status: SubStatus | None = None
    data: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    requester_attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    votes: tuple[Vote, ...] = ()
    updated_at: datetime | None = None
    expires_at: datetime | None = None
    reviewing_by: Any = None
    resolved_at: datetime | None = None
    round: int = 0
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES

    def votes_for_step(self, step: int) -> tuple[Vote, ...]:
        """Votes on ``step`` in the current round, in recorded order."""
        return tuple(
            v for v in self.votes if v.step == step and v.round == self.round
        )

    def has_voted(self, approver_id: Any, step: int) -> bool:
        return any(
            str(v.approver_id) == str(approver_id)
            for v in self.votes_for_step(step)
        )

    def is_overdue(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def evolve(self, **changes: Any) -> ApprovalRequest:
        """New snapshot with ``changes`` applied and the version bumped."""
        changes.setdefault("version", self.version + 1)
        return replace(self, **changes)


# =========================================================================
# Results
# =========================================================================


@dataclass(frozen=True)
class StepEvaluation:
    """Result of checking a step's votes against its approval type."""

    satisfied: bool = False
    rejected: bool = False
    returned: bool = False
    approvals: int = 0
    required: int = 0
    reason: str = ""


@dataclass(frozen=True)
class FlowApplicability:
    """Why a flow does or does not apply to a submission."""

    flow_id: int
    applicable: bool
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class RequestPermissions:
    """What an actor may currently do with a request."""

    can_edit: bool = False
    can_cancel: bool = False
    can_start_review: bool = False
    can_approve: bool = False
    can_reject: bool = False
    can_return: bool = False
    is_requester: bool = False
    is_approver: bool = False
