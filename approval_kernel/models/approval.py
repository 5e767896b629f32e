"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval requests and their votes.

Architecture position: Kernel > Models.  May import from db/base.py and
    kernel exceptions only.  Domain types are imported lazily inside
    to_dto/from_dto.

Invariants enforced:
    - Status and sub-status values are limited by check constraints; the
      service layer enforces which transitions are legal.
    - ``version`` is the optimistic concurrency counter.  The store only
      updates a row whose version equals the caller's expected version.
    - Votes are append-only: ORM listeners reject UPDATE and DELETE.
      UNIQUE(request_id, sequence) keeps vote order stable.

Failure modes:
    - IntegrityError on a duplicate request_id or vote sequence.
    - ImmutabilityViolationError on vote UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, JSONDocument, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.approval import ApprovalRequest, Vote


def _text_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


class ApprovalRequestModel(Base):
    """Persistent approval request snapshot.

    Contract:
        One row per request; every state change rewrites the row and
        bumps ``version``.  Votes live in ``approval_votes``.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'reviewing', 'approved', 'rejected', "
            "'returned', 'cancelled', 'expired')",
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint(
            "sub_status IS NULL OR sub_status IN "
            "('reviewing', 'step_approved', 'expired')",
            name="ck_approval_requests_valid_sub_status",
        ),
        CheckConstraint("version >= 1", name="ck_approval_requests_version"),
        Index("ix_approval_requests_business", "business_code", "data_ref"),
        Index("ix_approval_requests_status_expiry", "status", "expires_at"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    flow_id: Mapped[int] = mapped_column(nullable=False)
    flow_type: Mapped[str] = mapped_column(String(100), nullable=False)
    business_code: Mapped[str] = mapped_column(String(100), nullable=False)
    data_ref: Mapped[str] = mapped_column(String(200), nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    current_step: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    sub_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONDocument(), nullable=False, default=dict)
    requester_attributes: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument(), nullable=False, default=dict,
    )
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reviewing_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    round: Mapped[int] = mapped_column(nullable=False, default=0)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    votes: Mapped[list[ApprovalVoteModel]] = relationship(
        "ApprovalVoteModel",
        primaryjoin="ApprovalRequestModel.request_id == ApprovalVoteModel.request_id",
        order_by="ApprovalVoteModel.sequence",
        lazy="selectin",
        viewonly=True,
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_id} "
            f"{self.business_code}/{self.data_ref} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        from types import MappingProxyType

        from approval_kernel.domain.approval import (
            ApprovalRequest as ApprovalRequestDTO,
            ApprovalStatus,
            SubStatus,
        )

        return ApprovalRequestDTO(
            id=self.request_id,
            flow_id=self.flow_id,
            flow_type=self.flow_type,
            business_code=self.business_code,
            data_ref=self.data_ref,
            created_by=self.created_by,
            created_at=self.created_at,
            current_step=self.current_step,
            status=ApprovalStatus(self.status),
            sub_status=SubStatus(self.sub_status) if self.sub_status else None,
            data=MappingProxyType(dict(self.data or {})),
            requester_attributes=MappingProxyType(dict(self.requester_attributes or {})),
            votes=tuple(v.to_dto() for v in self.votes),
            updated_at=self.updated_at,
            expires_at=self.expires_at,
            reviewing_by=self.reviewing_by,
            resolved_at=self.resolved_at,
            round=self.round,
            version=self.version,
        )

    @staticmethod
    def row_values(dto: ApprovalRequest) -> dict[str, Any]:
        """Column values for ``dto`` (used for INSERT and guarded UPDATE)."""
        return {
            "request_id": dto.id,
            "flow_id": dto.flow_id,
            "flow_type": dto.flow_type,
            "business_code": dto.business_code,
            "data_ref": dto.data_ref,
            "created_by": str(dto.created_by),
            "created_at": dto.created_at,
            "current_step": dto.current_step,
            "status": dto.status.value,
            "sub_status": dto.sub_status.value if dto.sub_status else None,
            "data": dict(dto.data),
            "requester_attributes": dict(dto.requester_attributes),
            "updated_at": dto.updated_at,
            "expires_at": dto.expires_at,
            "reviewing_by": str(dto.reviewing_by) if dto.reviewing_by is not None else None,
            "resolved_at": dto.resolved_at,
            "round": dto.round,
            "version": dto.version,
        }

    @classmethod
    def from_dto(cls, dto: ApprovalRequest) -> ApprovalRequestModel:
        """Create ORM model from domain DTO (votes are added separately)."""
        return cls(**cls.row_values(dto))


class ApprovalVoteModel(Base):
    """Persistent vote record. Append-only.

    Contract:
        Votes are immutable once created -- no UPDATE, no DELETE.
    """

    __tablename__ = "approval_votes"

    __table_args__ = (
        Index("ix_approval_votes_request_id", "request_id"),
        UniqueConstraint(
            "request_id", "sequence",
            name="uq_approval_votes_sequence",
        ),
        CheckConstraint(
            "action IN ('approve', 'reject', 'return')",
            name="ck_approval_votes_valid_action",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.request_id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    step: Mapped[int] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_automatic: Mapped[bool] = mapped_column(nullable=False, default=False)
    round: Mapped[int] = mapped_column(nullable=False, default=0)
    acted_at: Mapped[datetime] = mapped_column(nullable=False)
    # Voter attributes at the time of the vote; department and position
    # slots are matched against these.
    voter_department_ids: Mapped[list[Any]] = mapped_column(
        JSONDocument(), nullable=False, default=list,
    )
    voter_position_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    voter_system_level: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ApprovalVote request={self.request_id} "
            f"#{self.sequence} step={self.step} action={self.action}>"
        )

    def to_dto(self) -> Vote:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import Vote as VoteDTO, VoteAction

        return VoteDTO(
            approver_id=self.approver_id,
            step=self.step,
            action=VoteAction(self.action),
            acted_at=self.acted_at,
            comment=self.comment,
            is_automatic=self.is_automatic,
            round=self.round,
            department_ids=tuple(self.voter_department_ids or ()),
            position_id=self.voter_position_id,
            system_level=self.voter_system_level,
        )

    @classmethod
    def from_dto(cls, request_id: UUID, sequence: int, dto: Vote) -> ApprovalVoteModel:
        """Create ORM model from domain DTO."""
        return cls(
            request_id=request_id,
            sequence=sequence,
            approver_id=str(dto.approver_id),
            step=dto.step,
            action=dto.action.value,
            comment=dto.comment,
            is_automatic=dto.is_automatic,
            round=dto.round,
            acted_at=dto.acted_at,
            voter_department_ids=list(dto.department_ids),
            voter_position_id=_text_or_none(dto.position_id),
            voter_system_level=_text_or_none(dto.system_level),
        )


# =============================================================================
# ORM-Level Immutability for Votes (Append-Only)
# =============================================================================


@event.listens_for(ApprovalVoteModel, "before_update")
def prevent_vote_update(mapper, connection, target):
    """Prevent updates to vote records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalVote",
        entity_id=f"{target.request_id}#{target.sequence}",
        reason="Approval votes are immutable -- cannot modify",
    )


@event.listens_for(ApprovalVoteModel, "before_delete")
def prevent_vote_delete(mapper, connection, target):
    """Prevent deletion of vote records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalVote",
        entity_id=f"{target.request_id}#{target.sequence}",
        reason="Approval votes are immutable -- cannot delete",
    )
