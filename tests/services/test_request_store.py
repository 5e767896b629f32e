"""
Tests for approval request persistence.

Both stores share the same contract: add/get/list_open, and a save that
is a compare-and-set on ``version`` and never rewrites vote history.
"""

from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

import pytest

from approval_config.repositories import InMemoryFlowRepository
from approval_kernel.domain.approval import (
    ApprovalRequest,
    ApprovalStatus,
    ConditionalApprover,
    SubStatus,
    Vote,
    VoteAction,
)
from approval_kernel.domain.conditions import Operator, leaf
from approval_kernel.exceptions import ApprovalRequestNotFoundError, ConcurrencyConflictError
from approval_kernel.services.approval_service import ApprovalService
from approval_kernel.services.locking import RequestLockManager
from approval_kernel.services.request_store import InMemoryRequestStore
from tests.conftest import FIXED_NOW, department_ref, make_flow, make_principal, make_step, user_ref


def make_request(**overrides) -> ApprovalRequest:
    values = dict(
        id=uuid4(),
        flow_id=1,
        flow_type="purchase",
        business_code="construction",
        data_ref="PO-1",
        created_by="1",
        created_at=FIXED_NOW,
        current_step=1,
        data={"amount": "2500.00", "lines": [{"sku": "C-30", "qty": 4}]},
        updated_at=FIXED_NOW,
    )
    values.update(overrides)
    return ApprovalRequest(**values)


def make_vote(approver_id="100", action=VoteAction.APPROVE, step=1) -> Vote:
    return Vote(approver_id=approver_id, step=step, action=action, acted_at=FIXED_NOW)


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return InMemoryRequestStore()
    return request.getfixturevalue("sql_store")


class TestStoreContract:
    def test_add_and_get(self, store):
        request = make_request()
        store.add(request)
        loaded = store.get(request.id)
        assert loaded.id == request.id
        assert loaded.status is ApprovalStatus.PENDING
        assert loaded.version == 1
        assert loaded.data["amount"] == "2500.00"
        assert loaded.created_at == FIXED_NOW

    def test_get_unknown(self, store):
        assert store.get(uuid4()) is None

    def test_save_with_current_version(self, store):
        request = make_request()
        store.add(request)
        updated = replace(
            request,
            status=ApprovalStatus.REVIEWING,
            sub_status=SubStatus.REVIEWING,
            reviewing_by="100",
        ).evolve()
        store.save(updated, expected_version=1)
        loaded = store.get(request.id)
        assert loaded.version == 2
        assert loaded.sub_status is SubStatus.REVIEWING
        assert loaded.reviewing_by == "100"

    def test_stale_version_conflicts(self, store):
        request = make_request()
        store.add(request)
        store.save(request.evolve(current_step=2), expected_version=1)
        with pytest.raises(ConcurrencyConflictError) as exc_info:
            store.save(request.evolve(current_step=3), expected_version=1)
        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        assert store.get(request.id).current_step == 2

    def test_save_unknown_request(self, store):
        with pytest.raises(ApprovalRequestNotFoundError):
            store.save(make_request().evolve(), expected_version=1)

    def test_votes_are_appended_in_order(self, store):
        request = make_request()
        store.add(request)
        first = replace(request, votes=(make_vote("100"),)).evolve()
        store.save(first, expected_version=1)
        second = replace(first, votes=first.votes + (make_vote("200", VoteAction.REJECT),)).evolve()
        store.save(second, expected_version=2)

        votes = store.get(request.id).votes
        assert [(v.approver_id, v.action) for v in votes] == [
            ("100", VoteAction.APPROVE),
            ("200", VoteAction.REJECT),
        ]
        assert votes[0].acted_at == FIXED_NOW

    def test_dropping_votes_conflicts(self, store):
        request = make_request(votes=(make_vote("100"),))
        store.add(request)
        with pytest.raises(ConcurrencyConflictError):
            store.save(replace(request, votes=()).evolve(), expected_version=1)
        assert len(store.get(request.id).votes) == 1

    def test_list_open_excludes_terminal(self, store):
        open_request = make_request()
        closed = make_request(status=ApprovalStatus.APPROVED, resolved_at=FIXED_NOW)
        store.add(open_request)
        store.add(closed)
        assert [r.id for r in store.list_open()] == [open_request.id]


class TestInMemoryStore:
    def test_duplicate_add_conflicts(self):
        store = InMemoryRequestStore()
        request = make_request()
        store.add(request)
        with pytest.raises(ConcurrencyConflictError):
            store.add(request)
        assert len(store) == 1


class TestServiceOverSqlStore:
    def test_lifecycle_round_trips_through_sql(
        self, sql_store, purchase_flow, deterministic_clock, requester, manager, finance_officer,
    ):
        service = ApprovalService(
            InMemoryFlowRepository([purchase_flow]), sql_store, clock=deterministic_clock,
        )
        request = service.submit(
            purchase_flow, {"amount": Decimal("2500.00")}, requester, "construction", "PO-1",
        )
        service.start_reviewing(request.id, manager)
        deterministic_clock.advance(60)
        service.act(request.id, manager, VoteAction.APPROVE, "fine")
        service.start_reviewing(request.id, finance_officer)
        final = service.act(request.id, finance_officer, VoteAction.APPROVE)

        loaded = sql_store.get(request.id)
        assert loaded.status is ApprovalStatus.APPROVED == final.status
        assert loaded.version == final.version == 5
        assert [v.approver_id for v in loaded.votes] == ["100", "200"]
        assert loaded.votes[0].comment == "fine"
        assert loaded.resolved_at == deterministic_clock.now()
        assert loaded.expires_at == final.expires_at

    def test_sql_store_expiry_sweep(
        self, sql_store, purchase_flow, deterministic_clock, requester,
    ):
        service = ApprovalService(
            InMemoryFlowRepository([purchase_flow]), sql_store, clock=deterministic_clock,
        )
        request = service.submit(purchase_flow, {}, requester, "construction", "PO-1")
        deterministic_clock.advance_hours(50)
        assert [r.id for r in service.expire_due()] == [request.id]
        assert sql_store.list_open() == []


class TestServicesSharingAStore:
    """Two service instances (separate workers) over one store."""

    @staticmethod
    def _workers(flow, store, clock):
        flows, locks = InMemoryFlowRepository([flow]), RequestLockManager()
        return (
            ApprovalService(flows, store, clock=clock, lock_manager=locks),
            ApprovalService(flows, store, clock=clock, lock_manager=locks),
        )

    def test_department_votes_cast_on_other_worker_still_count(
        self, store, deterministic_clock, requester,
    ):
        flow = make_flow(steps=[
            make_step(0),
            make_step(1, [department_ref(10), department_ref(20)]),
        ])
        worker_a, worker_b = self._workers(flow, store, deterministic_clock)
        site_lead = make_principal(41, department_ids=[10])
        estimator = make_principal(42, department_ids=[20])

        request = worker_a.submit(flow, {}, requester, "construction", "PO-1")
        worker_a.start_reviewing(request.id, site_lead)
        worker_a.act(request.id, site_lead, VoteAction.APPROVE)

        final = worker_b.act(request.id, estimator, VoteAction.APPROVE)
        assert final.status is ApprovalStatus.APPROVED
        assert store.get(request.id).status is ApprovalStatus.APPROVED

    def test_fresh_worker_resolves_requester_guards_from_the_request(
        self, store, deterministic_clock, requester, manager,
    ):
        flow = make_flow(steps=[
            make_step(0),
            make_step(1, [
                ConditionalApprover(
                    condition=leaf("user.department_id", Operator.EQ, 10),
                    approvers=(user_ref(manager.id),),
                ),
            ]),
        ])
        worker_a, worker_b = self._workers(flow, store, deterministic_clock)
        request = worker_a.submit(flow, {}, requester, "construction", "PO-1")

        worker_b.start_reviewing(request.id, manager)
        final = worker_b.act(request.id, manager, VoteAction.APPROVE)
        assert final.status is ApprovalStatus.APPROVED
