"""
approval_kernel.services.access_gateway -- The four external operations.

Responsibility:
    One entry point for callers (HTTP handlers, jobs):

        decide(business_code, action, resource_type, ctx) -> Decision
        select_flow(flow_type, data_ctx, requester=None)  -> ApprovalFlow | None
        submit_request(flow_ref, data_ctx, requester, business_code, data_ref)
        act(request_id, actor, action, comment=None)

    Each call runs inside a ``LogContext`` binding so every log line it
    produces carries the same correlation fields.

Architecture position:
    Kernel > Services.  Composes the policy resolver, the flow selector
    and ``ApprovalService``; adds no rules of its own.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID, uuid4

from approval_engines.flow_selector import FlowSelector
from approval_engines.policy_resolver import PolicyResolver
from approval_kernel.domain.approval import (
    ApprovalFlow,
    ApprovalRequest,
    Principal,
    RequestAction,
)
from approval_kernel.domain.clock import Clock
from approval_kernel.domain.context import EvaluationContext
from approval_kernel.domain.policy import Decision, PolicyDecision
from approval_kernel.domain.repositories import (
    ApprovalRequestStore,
    FlowRepository,
    PolicyRepository,
)
from approval_kernel.exceptions import ApprovalFlowNotFoundError
from approval_kernel.logging_config import LogContext
from approval_kernel.services.approval_service import ApprovalService
from approval_kernel.services.locking import RequestLockManager


class AccessGateway:
    """Facade over access decisions and the approval workflow."""

    def __init__(
        self,
        policy_repository: PolicyRepository,
        flow_repository: FlowRepository,
        request_store: ApprovalRequestStore,
        clock: Clock | None = None,
        lock_manager: RequestLockManager | None = None,
    ) -> None:
        self._flows = flow_repository
        self.resolver = PolicyResolver(policy_repository)
        self.selector = FlowSelector(flow_repository)
        self.approvals = ApprovalService(
            flow_repository,
            request_store,
            clock=clock,
            lock_manager=lock_manager,
        )

    def decide(
        self,
        business_code: str,
        action: str,
        resource_type: str,
        ctx: EvaluationContext,
    ) -> Decision:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            business_code=business_code,
            actor_id=ctx.user.get("id"),
        ):
            return self.resolver.decide(business_code, action, resource_type, ctx)

    def explain_decision(
        self,
        business_code: str,
        action: str,
        resource_type: str,
        ctx: EvaluationContext,
    ) -> PolicyDecision:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            business_code=business_code,
            actor_id=ctx.user.get("id"),
        ):
            return self.resolver.explain(business_code, action, resource_type, ctx)

    def select_flow(
        self,
        flow_type: str,
        data_ctx: EvaluationContext | Mapping[str, Any],
        requester: Principal | None = None,
    ) -> ApprovalFlow | None:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=requester.id if requester else None,
        ):
            return self.selector.select(flow_type, data_ctx, requester)

    def submit_request(
        self,
        flow_ref: ApprovalFlow | int | str,
        data_ctx: EvaluationContext | Mapping[str, Any],
        requester: Principal,
        business_code: str,
        data_ref: str,
    ) -> ApprovalRequest:
        """Submit against a flow given as a flow, a flow id or a flow type.

        A flow type is resolved with the selector; an unknown id or a type
        with no applicable flow raises ``ApprovalFlowNotFoundError``.
        """
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=requester.id,
            business_code=business_code,
        ):
            flow = self._resolve_flow(flow_ref, data_ctx, requester)
            with LogContext.bind(flow_id=flow.id):
                return self.approvals.submit(
                    flow, data_ctx, requester, business_code, data_ref,
                )

    def act(
        self,
        request_id: UUID,
        actor: Principal,
        action: RequestAction | str,
        comment: str | None = None,
    ) -> ApprovalRequest:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            request_id=request_id,
            actor_id=actor.id,
        ):
            return self.approvals.process(request_id, actor, action, comment)

    def _resolve_flow(
        self,
        flow_ref: ApprovalFlow | int | str,
        data_ctx: EvaluationContext | Mapping[str, Any],
        requester: Principal,
    ) -> ApprovalFlow:
        if isinstance(flow_ref, ApprovalFlow):
            return flow_ref
        if isinstance(flow_ref, int):
            flow = self._flows.get_flow(flow_ref)
        else:
            flow = self.selector.select(flow_ref, data_ctx, requester)
        if flow is None:
            raise ApprovalFlowNotFoundError(str(flow_ref))
        return flow
