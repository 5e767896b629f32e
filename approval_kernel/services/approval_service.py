"""
approval_kernel.services.approval_service -- Approval request lifecycle.

Responsibility:
    Drives an approval request from submission through its flow's voting
    steps to a terminal outcome: creation (with requester auto-approval),
    review, votes, step advancement, return/resubmit, cancellation and
    expiry.  Approver resolution and step satisfaction are delegated to
    the pure engines.

Architecture position:
    Kernel > Services.  May import from domain/, engines, and the request
    store.  Time comes only from the injected Clock.

Invariants enforced:
    - Lifecycle state machine: every status change is checked against
      ``APPROVAL_TRANSITIONS`` before it is persisted.
    - Terminal requests are never mutated; any action on one raises
      ``InvalidStateTransitionError`` and leaves votes untouched.
    - Only resolved approvers of the current step may review or vote,
      and each may vote once per step per round.
    - Serialized per request: every mutation holds the request's lock
      from load to store write, and the store write is a compare-and-set
      on ``version``.
    - Overdue requests expire lazily on the next mutating call.
    - Step outcomes depend only on stored state: each vote carries its
      voter's departments, position and level, and the request carries
      the requester's attributes from submission.

Failure modes:
    - ApprovalRequestNotFoundError if request_id not found.
    - ApprovalFlowNotFoundError if the request's flow disappeared.
    - InvalidStateTransitionError on an illegal action for the status.
    - PermissionDeniedError when the actor may not perform the action.
    - DuplicateVoteError on a second vote by the same approver.
    - UnsatisfiableStepError when a step resolves to no approver.
    - ConcurrencyConflictError when another writer saved first.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from approval_engines.approvers import matches_any, resolve_step_approvers
from approval_engines.step_evaluation import evaluate_step
from approval_kernel.domain.approval import (
    ApprovalFlow,
    ApprovalRequest,
    ApprovalStatus,
    ApprovalStep,
    Principal,
    RequestAction,
    RequestPermissions,
    StaticApprover,
    StepEvaluation,
    SubStatus,
    Vote,
    VoteAction,
    can_transition,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.context import EvaluationContext, freeze_value
from approval_kernel.domain.repositories import ApprovalRequestStore, FlowRepository
from approval_kernel.exceptions import (
    ApprovalFlowNotFoundError,
    ApprovalRequestNotFoundError,
    ConcurrencyConflictError,
    ConfigurationError,
    DuplicateVoteError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    UnsatisfiableStepError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.services.locking import RequestLockManager

logger = get_logger("services.approval_service")

AUTO_APPROVAL_COMMENT = "Automatically approved: requester is an approver of this step"


def _same_id(a: Any, b: Any) -> bool:
    return a is not None and b is not None and str(a) == str(b)


class ApprovalService:
    """Manages the approval request lifecycle."""

    def __init__(
        self,
        flow_repository: FlowRepository,
        request_store: ApprovalRequestStore,
        clock: Clock | None = None,
        lock_manager: RequestLockManager | None = None,
    ) -> None:
        self._flows = flow_repository
        self._store = request_store
        self._clock = clock or SystemClock()
        self._locks = lock_manager or RequestLockManager()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, request_id: UUID) -> ApprovalRequest:
        request = self._store.get(request_id)
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return request

    def can_edit(self, request_id: UUID, actor: Principal) -> bool:
        """Whether ``actor`` may currently edit the request's business data."""
        request = self.get(request_id)
        flow = self._flow_for(request)
        return self._can_edit(flow, request, actor, self._clock.now())

    def permissions_for(self, request_id: UUID, actor: Principal) -> RequestPermissions:
        """Summary of what ``actor`` may do with the request right now."""
        request = self.get(request_id)
        flow = self._flow_for(request)
        now = self._clock.now()

        is_requester = _same_id(actor.id, request.created_by)
        is_approver = False
        step = flow.get_step(request.current_step)
        if not request.is_terminal and step is not None and step.is_voting:
            try:
                approvers = self._approvers_for(flow, step, request, now)
            except UnsatisfiableStepError:
                logger.warning(
                    "permissions_step_unsatisfiable",
                    extra={"request_id": str(request.id), "step": step.step},
                )
                approvers = ()
            is_approver = matches_any(approvers, actor)

        overdue = request.is_overdue(now)
        may_vote = (
            is_approver
            and not overdue
            and not request.has_voted(actor.id, request.current_step)
        )
        reviewing = request.status is ApprovalStatus.REVIEWING

        return RequestPermissions(
            can_edit=self._can_edit(flow, request, actor, now),
            can_cancel=(
                is_requester and not overdue and self._cancellation_allowed(flow, request)
            ),
            can_start_review=may_vote and request.status is ApprovalStatus.PENDING,
            can_approve=may_vote and reviewing,
            can_reject=may_vote and reviewing,
            can_return=may_vote and reviewing,
            is_requester=is_requester,
            is_approver=is_approver,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        flow: ApprovalFlow,
        data: Mapping[str, Any] | EvaluationContext,
        requester: Principal,
        business_code: str,
        data_ref: str,
        request_ctx: Mapping[str, Any] | None = None,
    ) -> ApprovalRequest:
        """Create a request at the flow's first voting step.

        Consecutive steps the requester could approve themselves are
        auto-approved when the step allows it.
        """
        first = flow.first_voting_step()
        if first is None:
            raise ConfigurationError(f"Flow {flow.id} has no voting step")
        if flow.requesters and not matches_any(flow.requesters, requester):
            raise PermissionDeniedError(
                "(new)", str(requester.id), "submit",
                reason=f"requester may not use flow {flow.id}",
            )

        now = self._clock.now()
        snapshot = data.data if isinstance(data, EvaluationContext) else data
        expires_at = None
        if flow.flow_config.expires_after_hours is not None:
            expires_at = now + timedelta(hours=flow.flow_config.expires_after_hours)

        request = ApprovalRequest(
            id=uuid4(),
            flow_id=flow.id,
            flow_type=flow.flow_type,
            business_code=business_code,
            data_ref=data_ref,
            created_by=requester.id,
            created_at=now,
            current_step=first.step,
            data=freeze_value(dict(snapshot or {})),
            requester_attributes=freeze_value(requester.as_context_mapping()),
            updated_at=now,
            expires_at=expires_at,
        )

        # Fail before storing anything if the first step cannot be staffed.
        self._approvers_for(flow, first, request, now, request_ctx)
        request = self._auto_approve(flow, request, requester, now, request_ctx)
        self._store.add(request)

        logger.info(
            "approval_request_submitted",
            extra={
                "request_id": str(request.id),
                "flow_id": flow.id,
                "business_code": business_code,
                "data_ref": data_ref,
                "created_by": str(requester.id),
                "status": request.status.value,
                "current_step": request.current_step,
                "auto_votes": sum(1 for v in request.votes if v.is_automatic),
            },
        )
        return request

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def start_reviewing(self, request_id: UUID, actor: Principal) -> ApprovalRequest:
        """pending -> reviewing by an approver of the current step."""
        with self._locks.hold(request_id):
            request = self.get(request_id)
            flow = self._flow_for(request)
            now = self._clock.now()
            self._expire_if_overdue(request, now, RequestAction.START_REVIEW)

            if request.status is ApprovalStatus.REVIEWING:
                if _same_id(request.reviewing_by, actor.id):
                    return request
                raise InvalidStateTransitionError(
                    str(request.id), request.status.value, RequestAction.START_REVIEW.value,
                    reason=f"already under review by {request.reviewing_by}",
                )
            self._require_transition(request, ApprovalStatus.REVIEWING, RequestAction.START_REVIEW)

            step = self._current_step(flow, request)
            self._require_approver(flow, step, request, actor, now, RequestAction.START_REVIEW)
            if request.has_voted(actor.id, step.step):
                raise DuplicateVoteError(str(request.id), str(actor.id), step.step)

            updated = replace(
                request,
                status=ApprovalStatus.REVIEWING,
                sub_status=SubStatus.REVIEWING,
                reviewing_by=actor.id,
            ).evolve(updated_at=now)
            self._save(updated, request)

        logger.info(
            "approval_review_started",
            extra={
                "request_id": str(request_id),
                "actor_id": str(actor.id),
                "step": updated.current_step,
            },
        )
        return updated

    def act(
        self,
        request_id: UUID,
        actor: Principal,
        action: VoteAction,
        comment: str | None = None,
    ) -> ApprovalRequest:
        """Record an approve/reject/return vote and apply its outcome."""
        action = VoteAction(action)
        request_action = RequestAction(action.value)

        with self._locks.hold(request_id):
            request = self.get(request_id)
            flow = self._flow_for(request)
            now = self._clock.now()
            self._expire_if_overdue(request, now, request_action)

            if request.status is not ApprovalStatus.REVIEWING:
                raise InvalidStateTransitionError(
                    str(request.id), request.status.value, action.value,
                    reason="request is not under review",
                )

            step = self._current_step(flow, request)
            approvers = self._require_approver(flow, step, request, actor, now, request_action)
            if request.has_voted(actor.id, step.step):
                raise DuplicateVoteError(str(request.id), str(actor.id), step.step)

            vote = Vote.cast(
                actor, step.step, action, now,
                comment=comment,
                round=request.round,
            )
            voted = replace(request, votes=request.votes + (vote,))
            evaluation = self._evaluate(step, voted, approvers)
            updated = self._apply_evaluation(flow, voted, evaluation, now)
            updated = updated.evolve(updated_at=now)
            self._save(updated, request)

        logger.info(
            "approval_vote_recorded",
            extra={
                "request_id": str(request_id),
                "actor_id": str(actor.id),
                "step": step.step,
                "vote": action.value,
                "approvals": evaluation.approvals,
                "required": evaluation.required,
                "new_status": updated.status.value,
                "current_step": updated.current_step,
            },
        )
        return updated

    def resubmit(self, request_id: UUID, actor: Principal) -> ApprovalRequest:
        """returned -> pending, by the requester."""
        with self._locks.hold(request_id):
            request = self.get(request_id)
            flow = self._flow_for(request)
            now = self._clock.now()
            self._expire_if_overdue(request, now, "resubmit")

            if not _same_id(actor.id, request.created_by):
                raise PermissionDeniedError(
                    str(request.id), str(actor.id), "resubmit",
                    reason="only the requester may resubmit",
                )
            if request.status is not ApprovalStatus.RETURNED:
                raise InvalidStateTransitionError(
                    str(request.id), request.status.value, "resubmit",
                    reason="only returned requests can be resubmitted",
                )
            self._require_transition(request, ApprovalStatus.PENDING, "resubmit")

            updated = replace(
                request,
                status=ApprovalStatus.PENDING,
                sub_status=None,
                reviewing_by=None,
            )
            updated = self._auto_approve(flow, updated, actor, now)
            updated = updated.evolve(updated_at=now)
            self._save(updated, request)

        logger.info(
            "approval_request_resubmitted",
            extra={
                "request_id": str(request_id),
                "round": updated.round,
                "current_step": updated.current_step,
                "status": updated.status.value,
            },
        )
        return updated

    def cancel(self, request_id: UUID, actor: Principal) -> ApprovalRequest:
        """Withdraw the request.  Requester only, subject to the step's gate."""
        with self._locks.hold(request_id):
            request = self.get(request_id)
            flow = self._flow_for(request)
            now = self._clock.now()
            self._expire_if_overdue(request, now, RequestAction.CANCEL)

            self._require_transition(request, ApprovalStatus.CANCELLED, RequestAction.CANCEL)
            if not _same_id(actor.id, request.created_by):
                raise PermissionDeniedError(
                    str(request.id), str(actor.id), RequestAction.CANCEL.value,
                    step=request.current_step,
                    reason="only the requester may cancel",
                )
            if not self._cancellation_allowed(flow, request):
                raise PermissionDeniedError(
                    str(request.id), str(actor.id), RequestAction.CANCEL.value,
                    step=request.current_step,
                    reason="cancellation is not allowed in the current state",
                )

            updated = replace(
                request,
                status=ApprovalStatus.CANCELLED,
                sub_status=None,
                reviewing_by=None,
                resolved_at=now,
            ).evolve(updated_at=now)
            self._save(updated, request)

        logger.info(
            "approval_request_cancelled",
            extra={"request_id": str(request_id), "actor_id": str(actor.id)},
        )
        return updated

    def expire(self, request_id: UUID) -> ApprovalRequest:
        """Expire one overdue request."""
        with self._locks.hold(request_id):
            request = self.get(request_id)
            now = self._clock.now()
            if request.is_terminal:
                raise InvalidStateTransitionError(
                    str(request.id), request.status.value, "expire",
                    reason="request is already closed",
                )
            if not request.is_overdue(now):
                raise InvalidStateTransitionError(
                    str(request.id), request.status.value, "expire",
                    reason="request is not past its expiry time",
                )
            return self._mark_expired(request, now)

    def expire_due(self, as_of: datetime | None = None) -> list[ApprovalRequest]:
        """Expire every open request whose ``expires_at`` has passed.

        Requests changed concurrently by another writer are skipped and
        picked up again on the next sweep.
        """
        as_of = as_of or self._clock.now()
        expired: list[ApprovalRequest] = []
        for candidate in self._store.list_open():
            if not candidate.is_overdue(as_of):
                continue
            with self._locks.hold(candidate.id):
                request = self._store.get(candidate.id)
                if request is None or request.is_terminal or not request.is_overdue(as_of):
                    continue
                try:
                    expired.append(self._mark_expired(request, as_of))
                except ConcurrencyConflictError as exc:
                    logger.warning(
                        "approval_expiry_conflict",
                        extra={"request_id": str(request.id), "actual_version": exc.actual_version},
                    )
        logger.info(
            "approval_expiry_sweep",
            extra={"as_of": as_of, "expired": len(expired)},
        )
        return expired

    def process(
        self,
        request_id: UUID,
        actor: Principal,
        action: RequestAction | str,
        comment: str | None = None,
    ) -> ApprovalRequest:
        """Single dispatch surface for the external ``act`` operation."""
        action = RequestAction(action)
        if action is RequestAction.START_REVIEW:
            return self.start_reviewing(request_id, actor)
        if action is RequestAction.CANCEL:
            return self.cancel(request_id, actor)
        return self.act(request_id, actor, action.vote_action, comment)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _flow_for(self, request: ApprovalRequest) -> ApprovalFlow:
        flow = self._flows.get_flow(request.flow_id)
        if flow is None:
            raise ApprovalFlowNotFoundError(str(request.flow_id))
        return flow

    def _current_step(self, flow: ApprovalFlow, request: ApprovalRequest) -> ApprovalStep:
        step = flow.get_step(request.current_step)
        if step is None or not step.is_voting:
            raise ConfigurationError(
                f"Flow {flow.id} has no voting step {request.current_step}"
            )
        return step

    def _context_for(
        self,
        request: ApprovalRequest,
        now: datetime,
        request_ctx: Mapping[str, Any] | None = None,
    ) -> EvaluationContext:
        user = request.requester_attributes or {"id": request.created_by}
        meta = {
            "id": str(request.id),
            "flow_id": request.flow_id,
            "business_code": request.business_code,
            "data_ref": request.data_ref,
            "created_by": request.created_by,
            "current_step": request.current_step,
            "status": request.status.value,
        }
        if request_ctx:
            meta.update(request_ctx)
        return EvaluationContext.build(
            user=user, data=request.data, current_time=now, request=meta,
        )

    def _approvers_for(
        self,
        flow: ApprovalFlow,
        step: ApprovalStep,
        request: ApprovalRequest,
        now: datetime,
        request_ctx: Mapping[str, Any] | None = None,
    ) -> tuple[StaticApprover, ...]:
        ctx = self._context_for(request, now, request_ctx)
        return resolve_step_approvers(step, ctx, flow.id)

    def _require_approver(
        self,
        flow: ApprovalFlow,
        step: ApprovalStep,
        request: ApprovalRequest,
        actor: Principal,
        now: datetime,
        action: RequestAction,
    ) -> tuple[StaticApprover, ...]:
        approvers = self._approvers_for(flow, step, request, now)
        if not matches_any(approvers, actor):
            raise PermissionDeniedError(
                str(request.id), str(actor.id), action.value,
                step=step.step,
                reason="actor is not an approver of the current step",
            )
        return approvers

    def _require_transition(
        self,
        request: ApprovalRequest,
        target: ApprovalStatus,
        action: RequestAction | str,
    ) -> None:
        if not can_transition(request.status, target):
            action_name = action.value if isinstance(action, RequestAction) else action
            raise InvalidStateTransitionError(
                str(request.id), request.status.value, action_name,
                reason=f"cannot move from {request.status.value} to {target.value}",
            )

    def _evaluate(
        self,
        step: ApprovalStep,
        request: ApprovalRequest,
        approvers: tuple[StaticApprover, ...],
    ) -> StepEvaluation:
        return evaluate_step(step, approvers, request.votes_for_step(step.step))

    def _apply_evaluation(
        self,
        flow: ApprovalFlow,
        request: ApprovalRequest,
        evaluation: StepEvaluation,
        now: datetime,
    ) -> ApprovalRequest:
        if evaluation.rejected:
            self._require_transition(request, ApprovalStatus.REJECTED, RequestAction.REJECT)
            return replace(
                request,
                status=ApprovalStatus.REJECTED,
                sub_status=None,
                reviewing_by=None,
                resolved_at=now,
            )
        if evaluation.returned:
            self._require_transition(request, ApprovalStatus.RETURNED, RequestAction.RETURN)
            target = flow.return_target()
            return replace(
                request,
                status=ApprovalStatus.RETURNED,
                sub_status=None,
                reviewing_by=None,
                current_step=target if target is not None else request.current_step,
                round=request.round + 1,
            )
        if evaluation.satisfied:
            return self._advance(flow, request, now)
        return request

    def _advance(self, flow: ApprovalFlow, request: ApprovalRequest, now: datetime) -> ApprovalRequest:
        nxt = flow.next_voting_step(request.current_step)
        if nxt is None:
            self._require_transition(request, ApprovalStatus.APPROVED, RequestAction.APPROVE)
            return replace(
                request,
                status=ApprovalStatus.APPROVED,
                sub_status=None,
                reviewing_by=None,
                resolved_at=now,
            )
        if request.status is not ApprovalStatus.PENDING:
            self._require_transition(request, ApprovalStatus.PENDING, RequestAction.APPROVE)
        return replace(
            request,
            status=ApprovalStatus.PENDING,
            sub_status=SubStatus.STEP_APPROVED,
            reviewing_by=None,
            current_step=nxt.step,
        )

    def _auto_approve(
        self,
        flow: ApprovalFlow,
        request: ApprovalRequest,
        requester: Principal,
        now: datetime,
        request_ctx: Mapping[str, Any] | None = None,
    ) -> ApprovalRequest:
        while request.status is ApprovalStatus.PENDING:
            step = flow.get_step(request.current_step)
            if step is None or not step.auto_approve_if_requester:
                break
            approvers = self._approvers_for(flow, step, request, now, request_ctx)
            if not matches_any(approvers, requester) or request.has_voted(requester.id, step.step):
                break

            vote = Vote.cast(
                requester, step.step, VoteAction.APPROVE, now,
                comment=AUTO_APPROVAL_COMMENT,
                is_automatic=True,
                round=request.round,
            )
            request = replace(request, votes=request.votes + (vote,))
            logger.info(
                "approval_step_auto_approved",
                extra={"request_id": str(request.id), "step": step.step},
            )
            evaluation = self._evaluate(step, request, approvers)
            if not evaluation.satisfied:
                break
            request = self._advance(flow, request, now)
        return request

    def _cancellation_allowed(self, flow: ApprovalFlow, request: ApprovalRequest) -> bool:
        if request.is_terminal or not flow.flow_config.allow_cancellation_after_request:
            return False
        step = flow.get_step(request.current_step)
        if step is None:
            return True
        return step.cancellation_conditions.permits(request.sub_status)

    def _can_edit(
        self,
        flow: ApprovalFlow,
        request: ApprovalRequest,
        actor: Principal,
        now: datetime,
    ) -> bool:
        if request.is_terminal or request.is_overdue(now):
            return False
        if not _same_id(actor.id, request.created_by):
            return False
        if request.status is ApprovalStatus.RETURNED:
            return True
        if not flow.flow_config.allow_editing_after_request:
            return False
        step = flow.get_step(request.current_step)
        if step is None:
            return True
        return step.editing_conditions.permits(request.sub_status)

    def _mark_expired(self, request: ApprovalRequest, now: datetime) -> ApprovalRequest:
        self._require_transition(request, ApprovalStatus.EXPIRED, "expire")
        updated = replace(
            request,
            status=ApprovalStatus.EXPIRED,
            sub_status=SubStatus.EXPIRED,
            reviewing_by=None,
            resolved_at=now,
        ).evolve(updated_at=now)
        self._save(updated, request)
        logger.info(
            "approval_request_expired",
            extra={"request_id": str(request.id), "expires_at": request.expires_at},
        )
        return updated

    def _expire_if_overdue(
        self,
        request: ApprovalRequest,
        now: datetime,
        action: RequestAction | str,
    ) -> None:
        if request.is_terminal or not request.is_overdue(now):
            return
        self._mark_expired(request, now)
        action_name = action.value if isinstance(action, RequestAction) else action
        raise InvalidStateTransitionError(
            str(request.id), ApprovalStatus.EXPIRED.value, action_name,
            reason="request expired",
        )

    def _save(self, updated: ApprovalRequest, loaded: ApprovalRequest) -> None:
        self._store.save(updated, expected_version=loaded.version)
