"""ORM models for the approval kernel."""

from approval_kernel.models.approval import ApprovalRequestModel, ApprovalVoteModel

__all__ = [
    "ApprovalRequestModel",
    "ApprovalVoteModel",
]
