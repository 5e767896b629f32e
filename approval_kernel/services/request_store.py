"""
approval_kernel.services.request_store -- Approval request persistence.

Responsibility:
    Store and load ``ApprovalRequest`` snapshots.  ``save`` is a
    compare-and-set on ``version`` so two writers that loaded the same
    snapshot cannot both commit.

Architecture position:
    Kernel > Services.  ``InMemoryRequestStore`` needs nothing but the
    domain; ``SqlAlchemyRequestStore`` uses models/ and a session factory
    from db/engine.py.

Invariants enforced:
    - Optimistic concurrency: a save whose ``expected_version`` does not
      match the stored version raises ``ConcurrencyConflictError`` and
      changes nothing.
    - Votes are append-only: a save may only add votes after the ones
      already stored.

Failure modes:
    - ConcurrencyConflictError on version mismatch or vote history rewrite.
    - ApprovalRequestNotFoundError when saving an unknown request.
    - IntegrityError when adding a request id twice (SQL store).
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.domain.approval import (
    OPEN_APPROVAL_STATUSES,
    ApprovalRequest,
)
from approval_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    ConcurrencyConflictError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalRequestModel, ApprovalVoteModel

logger = get_logger("services.request_store")


def _check_votes_appended(stored: ApprovalRequest, new: ApprovalRequest) -> None:
    if new.votes[: len(stored.votes)] != stored.votes:
        raise ConcurrencyConflictError(str(new.id), stored.version, stored.version)


class InMemoryRequestStore:
    """Dict-backed store.  Thread-safe; used by tests and embedded callers."""

    def __init__(self) -> None:
        self._requests: dict[UUID, ApprovalRequest] = {}
        self._lock = threading.Lock()

    def get(self, request_id: UUID) -> ApprovalRequest | None:
        with self._lock:
            return self._requests.get(request_id)

    def add(self, request: ApprovalRequest) -> None:
        with self._lock:
            if request.id in self._requests:
                raise ConcurrencyConflictError(
                    str(request.id), 0, self._requests[request.id].version,
                )
            self._requests[request.id] = request

    def save(self, request: ApprovalRequest, expected_version: int) -> None:
        with self._lock:
            stored = self._requests.get(request.id)
            if stored is None:
                raise ApprovalRequestNotFoundError(str(request.id))
            if stored.version != expected_version:
                raise ConcurrencyConflictError(
                    str(request.id), expected_version, stored.version,
                )
            _check_votes_appended(stored, request)
            self._requests[request.id] = request

    def list_open(self) -> Sequence[ApprovalRequest]:
        with self._lock:
            return [
                r for r in self._requests.values()
                if r.status in OPEN_APPROVAL_STATUSES
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)


class SqlAlchemyRequestStore:
    """SQL store over ``approval_requests`` / ``approval_votes``.

    Each call runs in its own session and transaction from
    ``session_factory``, so one store may be shared between threads.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get(self, request_id: UUID) -> ApprovalRequest | None:
        with self._session_factory() as session:
            model = session.execute(
                select(ApprovalRequestModel).where(
                    ApprovalRequestModel.request_id == request_id,
                )
            ).scalar_one_or_none()
            return model.to_dto() if model is not None else None

    def add(self, request: ApprovalRequest) -> None:
        with self._session_factory() as session, session.begin():
            session.add(ApprovalRequestModel.from_dto(request))
            session.flush()
            self._append_votes(session, request, start=0)

        logger.debug(
            "request_stored",
            extra={"request_id": str(request.id), "version": request.version},
        )

    def save(self, request: ApprovalRequest, expected_version: int) -> None:
        with self._session_factory() as session, session.begin():
            values = ApprovalRequestModel.row_values(request)
            del values["request_id"]
            result = session.execute(
                update(ApprovalRequestModel)
                .where(
                    ApprovalRequestModel.request_id == request.id,
                    ApprovalRequestModel.version == expected_version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount != 1:
                actual = session.execute(
                    select(ApprovalRequestModel.version).where(
                        ApprovalRequestModel.request_id == request.id,
                    )
                ).scalar_one_or_none()
                if actual is None:
                    raise ApprovalRequestNotFoundError(str(request.id))
                raise ConcurrencyConflictError(str(request.id), expected_version, actual)

            stored_count = session.execute(
                select(func.count()).select_from(ApprovalVoteModel).where(
                    ApprovalVoteModel.request_id == request.id,
                )
            ).scalar_one()
            if stored_count > len(request.votes):
                raise ConcurrencyConflictError(str(request.id), expected_version, expected_version)
            self._append_votes(session, request, start=stored_count)

    def list_open(self) -> Sequence[ApprovalRequest]:
        with self._session_factory() as session:
            models = session.execute(
                select(ApprovalRequestModel)
                .where(ApprovalRequestModel.status.in_(
                    [s.value for s in OPEN_APPROVAL_STATUSES]
                ))
                .order_by(ApprovalRequestModel.created_at)
            ).scalars().all()
            return [m.to_dto() for m in models]

    @staticmethod
    def _append_votes(session: Session, request: ApprovalRequest, *, start: int) -> None:
        for sequence, vote in enumerate(request.votes[start:], start=start):
            session.add(ApprovalVoteModel.from_dto(request.id, sequence, vote))
