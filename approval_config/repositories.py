"""In-memory configuration repositories backed by loaded policy and flow lists."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from approval_kernel.domain.approval import ApprovalFlow
from approval_kernel.domain.policy import AccessPolicy


class InMemoryPolicyRepository:
    """``PolicyRepository`` over a fixed list of policies, indexed by triple."""

    def __init__(self, policies: Iterable[AccessPolicy] = ()):
        self._by_triple: dict[tuple[str, str, str], list[AccessPolicy]] = {}
        for policy in policies:
            self.add(policy)

    def add(self, policy: AccessPolicy) -> None:
        key = (policy.business_code, policy.action, policy.resource_type)
        self._by_triple.setdefault(key, []).append(policy)

    def find_policies(
        self,
        business_code: str,
        action: str,
        resource_type: str,
    ) -> Sequence[AccessPolicy]:
        return [
            p for p in self._by_triple.get((business_code, action, resource_type), [])
            if p.is_active
        ]

    def all(self) -> list[AccessPolicy]:
        return [p for policies in self._by_triple.values() for p in policies]


class InMemoryFlowRepository:
    """``FlowRepository`` over a fixed list of flows."""

    def __init__(self, flows: Iterable[ApprovalFlow] = ()):
        self._flows: dict[int, ApprovalFlow] = {}
        for flow in flows:
            self.add(flow)

    def add(self, flow: ApprovalFlow) -> None:
        self._flows[flow.id] = flow

    def find_flows(self, flow_type: str) -> Sequence[ApprovalFlow]:
        return [
            f for f in self._flows.values()
            if f.flow_type == flow_type and f.is_active
        ]

    def get_flow(self, flow_id: int) -> ApprovalFlow | None:
        return self._flows.get(flow_id)

    def all(self) -> list[ApprovalFlow]:
        return list(self._flows.values())
