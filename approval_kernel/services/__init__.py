"""Stateful kernel services: request storage, locking and the approval lifecycle."""

from approval_kernel.services.access_gateway import AccessGateway
from approval_kernel.services.approval_service import ApprovalService
from approval_kernel.services.locking import RequestLockManager
from approval_kernel.services.request_store import (
    InMemoryRequestStore,
    SqlAlchemyRequestStore,
)

__all__ = [
    "AccessGateway",
    "ApprovalService",
    "InMemoryRequestStore",
    "RequestLockManager",
    "SqlAlchemyRequestStore",
]
