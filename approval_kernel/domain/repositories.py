"""
Collaborator interfaces (``approval_kernel.domain.repositories``).

The engines never query a database.  Configuration and request state
arrive through these protocols as already-materialized typed records.
In-memory implementations live in ``approval_config.repositories`` (for
configuration) and ``approval_kernel.services.request_store`` (for
requests); ``SqlAlchemyRequestStore`` persists requests via the ORM.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol
from uuid import UUID

from approval_kernel.domain.approval import ApprovalFlow, ApprovalRequest
from approval_kernel.domain.policy import AccessPolicy


class PolicyRepository(Protocol):
    """Source of access policies."""

    def find_policies(
        self,
        business_code: str,
        action: str,
        resource_type: str,
    ) -> Sequence[AccessPolicy]:
        """Return active policies for the triple (any order)."""
        ...


class FlowRepository(Protocol):
    """Source of approval flows."""

    def find_flows(self, flow_type: str) -> Sequence[ApprovalFlow]:
        """Return active flows of ``flow_type`` (any order)."""
        ...

    def get_flow(self, flow_id: int) -> ApprovalFlow | None:
        """Return the flow with ``flow_id`` regardless of active state."""
        ...


class ApprovalRequestStore(Protocol):
    """Persistence for approval request snapshots.

    ``save`` is a compare-and-set: it must fail with
    ``ConcurrencyConflictError`` unless the stored version equals
    ``expected_version``.
    """

    def get(self, request_id: UUID) -> ApprovalRequest | None:
        ...

    def add(self, request: ApprovalRequest) -> None:
        ...

    def save(self, request: ApprovalRequest, expected_version: int) -> None:
        ...

    def list_open(self) -> Sequence[ApprovalRequest]:
        ...
