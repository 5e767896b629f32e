"""
Tests for the approval domain value objects.

Covers the lifecycle transition table, step gates, flow step navigation
and request snapshot helpers.
"""

from dataclasses import FrozenInstanceError
from datetime import timedelta
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    OPEN_APPROVAL_STATUSES,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalRequest,
    ApprovalStatus,
    FlowConfig,
    RequestAction,
    StateGate,
    SubStatus,
    Vote,
    VoteAction,
    can_transition,
)
from tests.conftest import FIXED_NOW, make_flow, make_principal, make_step, user_ref


def make_request(**overrides) -> ApprovalRequest:
    values = dict(
        id=uuid4(),
        flow_id=1,
        flow_type="purchase",
        business_code="construction",
        data_ref="PO-1",
        created_by=1,
        created_at=FIXED_NOW,
        current_step=1,
    )
    values.update(overrides)
    return ApprovalRequest(**values)


class TestTransitions:
    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_APPROVAL_STATUSES:
            assert APPROVAL_TRANSITIONS[status] == frozenset()

    def test_open_and_terminal_partition_all_statuses(self):
        assert OPEN_APPROVAL_STATUSES | TERMINAL_APPROVAL_STATUSES == set(ApprovalStatus)
        assert not OPEN_APPROVAL_STATUSES & TERMINAL_APPROVAL_STATUSES

    @pytest.mark.parametrize("current,target,allowed", [
        (ApprovalStatus.PENDING, ApprovalStatus.REVIEWING, True),
        (ApprovalStatus.REVIEWING, ApprovalStatus.RETURNED, True),
        (ApprovalStatus.RETURNED, ApprovalStatus.PENDING, True),
        (ApprovalStatus.PENDING, ApprovalStatus.REJECTED, False),
        (ApprovalStatus.RETURNED, ApprovalStatus.APPROVED, False),
        (ApprovalStatus.APPROVED, ApprovalStatus.PENDING, False),
    ])
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_vote_action_mapping(self):
        assert RequestAction.APPROVE.vote_action is VoteAction.APPROVE
        assert RequestAction.RETURN.vote_action is VoteAction.RETURN
        assert RequestAction.CANCEL.vote_action is None
        assert RequestAction.START_REVIEW.vote_action is None


class TestStateGate:
    def test_defaults_allow_only_plain_pending(self):
        gate = StateGate()
        assert gate.permits(None)
        assert not gate.permits(SubStatus.REVIEWING)
        assert not gate.permits(SubStatus.STEP_APPROVED)
        assert not gate.permits(SubStatus.EXPIRED)

    def test_configured_gate(self):
        gate = StateGate(allow_during_pending=False, allow_during_step_approved=True)
        assert not gate.permits(None)
        assert gate.permits(SubStatus.STEP_APPROVED)


class TestFlowNavigation:
    def test_voting_steps_skip_creation_step(self):
        flow = make_flow(steps=[make_step(0), make_step(2, [user_ref(1)]), make_step(1, [user_ref(2)])])
        assert [s.step for s in flow.voting_steps()] == [1, 2]
        assert flow.first_voting_step().step == 1
        assert flow.next_voting_step(1).step == 2
        assert flow.next_voting_step(2) is None

    def test_return_target_defaults_to_first_voting_step(self):
        flow = make_flow(steps=[make_step(0), make_step(1, [user_ref(1)]), make_step(2, [user_ref(2)])])
        assert flow.return_target() == 1

    def test_return_target_uses_configured_step(self):
        flow = make_flow(
            steps=[make_step(0), make_step(1, [user_ref(1)]), make_step(2, [user_ref(2)])],
            flow_config=FlowConfig(return_to_step=2),
        )
        assert flow.return_target() == 2

    def test_return_target_ignores_creation_step_and_unknown_steps(self):
        steps = [make_step(0), make_step(1, [user_ref(1)])]
        assert make_flow(steps=steps, flow_config=FlowConfig(return_to_step=0)).return_target() == 1
        assert make_flow(steps=steps, flow_config=FlowConfig(return_to_step=7)).return_target() == 1


class TestApprovalRequest:
    def test_evolve_bumps_version_and_keeps_original(self):
        request = make_request()
        updated = request.evolve(current_step=2)
        assert updated.version == request.version + 1
        assert updated.current_step == 2
        assert request.current_step == 1

    def test_request_is_frozen(self):
        request = make_request()
        with pytest.raises(FrozenInstanceError):
            request.status = ApprovalStatus.APPROVED

    def test_votes_for_step_only_counts_current_round(self):
        old = Vote(approver_id=100, step=1, action=VoteAction.APPROVE, acted_at=FIXED_NOW, round=0)
        new = Vote(approver_id=200, step=1, action=VoteAction.APPROVE, acted_at=FIXED_NOW, round=1)
        request = make_request(votes=(old, new), round=1)
        assert request.votes_for_step(1) == (new,)
        assert not request.has_voted(100, 1)
        assert request.has_voted("200", 1)

    def test_is_overdue(self):
        request = make_request(expires_at=FIXED_NOW + timedelta(hours=1))
        assert not request.is_overdue(FIXED_NOW)
        assert request.is_overdue(FIXED_NOW + timedelta(hours=1))
        assert not make_request().is_overdue(FIXED_NOW + timedelta(days=365))


class TestPrincipal:
    def test_context_mapping_exposes_primary_department(self):
        principal = make_principal(7, department_ids=[3, 4], position_id=9, region="north")
        mapping = principal.as_context_mapping()
        assert mapping["id"] == 7
        assert mapping["department_id"] == 3
        assert mapping["department_ids"] == [3, 4]
        assert mapping["region"] == "north"

    def test_context_mapping_without_department(self):
        assert make_principal(7).as_context_mapping()["department_id"] is None
