"""
Tests for step satisfaction.

Tests cover:
- required / optional / majority / unanimous thresholds
- Department slots filled by any member, matched from the vote's own attributes
- One slot per voter
- Reject and Return outcomes
- Ignored votes (non-approvers, repeated voters, other steps)
"""

import pytest

from approval_engines.step_evaluation import evaluate_step, required_approvals
from approval_kernel.domain.approval import ApprovalType, Vote, VoteAction
from tests.conftest import FIXED_NOW, department_ref, make_principal, make_step, position_ref, user_ref


def vote(approver_id, action=VoteAction.APPROVE, step=1):
    return Vote(approver_id=approver_id, step=step, action=action, acted_at=FIXED_NOW)


def vote_by(principal, action=VoteAction.APPROVE, step=1):
    return Vote.cast(principal, step, action, FIXED_NOW)


THREE_USERS = (user_ref(1), user_ref(2), user_ref(3))


class TestRequiredApprovals:
    @pytest.mark.parametrize("approval_type,slots,expected", [
        (ApprovalType.REQUIRED, 3, 3),
        (ApprovalType.UNANIMOUS, 3, 3),
        (ApprovalType.OPTIONAL, 3, 1),
        (ApprovalType.MAJORITY, 3, 2),
        (ApprovalType.MAJORITY, 4, 3),
        (ApprovalType.MAJORITY, 1, 1),
        (ApprovalType.REQUIRED, 0, 0),
    ])
    def test_thresholds(self, approval_type, slots, expected):
        assert required_approvals(approval_type, slots) == expected


class TestEvaluateStep:
    @pytest.mark.parametrize("approval_type,voters,satisfied", [
        (ApprovalType.REQUIRED, [1, 2], False),
        (ApprovalType.REQUIRED, [1, 2, 3], True),
        (ApprovalType.OPTIONAL, [2], True),
        (ApprovalType.MAJORITY, [1], False),
        (ApprovalType.MAJORITY, [1, 3], True),
        (ApprovalType.UNANIMOUS, [3, 2, 1], True),
    ])
    def test_approval_types(self, approval_type, voters, satisfied):
        step = make_step(1, THREE_USERS, approval_type=approval_type)
        result = evaluate_step(step, THREE_USERS, [vote(v) for v in voters])
        assert result.satisfied is satisfied
        assert result.approvals == len(voters)

    def test_any_reject_rejects_even_for_optional(self):
        step = make_step(1, THREE_USERS, approval_type=ApprovalType.OPTIONAL)
        result = evaluate_step(step, THREE_USERS, [vote(1), vote(2, VoteAction.REJECT)])
        assert result.rejected
        assert not result.satisfied

    def test_return_outcome(self):
        step = make_step(1, THREE_USERS)
        result = evaluate_step(step, THREE_USERS, [vote(1, VoteAction.RETURN)])
        assert result.returned
        assert not result.rejected

    def test_reject_beats_return(self):
        step = make_step(1, THREE_USERS)
        votes = [vote(1, VoteAction.RETURN), vote(2, VoteAction.REJECT)]
        result = evaluate_step(step, THREE_USERS, votes)
        assert result.rejected
        assert not result.returned

    def test_non_approver_votes_are_ignored(self):
        step = make_step(1, THREE_USERS, approval_type=ApprovalType.OPTIONAL)
        result = evaluate_step(step, THREE_USERS, [vote(99), vote(98, VoteAction.REJECT)])
        assert not result.satisfied
        assert not result.rejected
        assert result.approvals == 0

    def test_repeated_voter_counted_once(self):
        step = make_step(1, THREE_USERS, approval_type=ApprovalType.MAJORITY)
        result = evaluate_step(step, THREE_USERS, [vote(1), vote("1")])
        assert result.approvals == 1
        assert not result.satisfied

    def test_votes_on_other_steps_ignored(self):
        step = make_step(2, THREE_USERS, approval_type=ApprovalType.OPTIONAL)
        result = evaluate_step(step, THREE_USERS, [vote(1, step=1)])
        assert not result.satisfied

    def test_department_slot_filled_by_member(self):
        approvers = (department_ref(30), user_ref(100))
        step = make_step(1, approvers)
        member = make_principal(55, department_ids=[30])
        result = evaluate_step(step, approvers, [vote_by(member), vote(100)])
        assert result.satisfied
        assert result.approvals == 2

    def test_vote_without_stored_department_does_not_fill_department_slot(self):
        approvers = (department_ref(30),)
        step = make_step(1, approvers)
        assert not evaluate_step(step, approvers, [vote(55)]).satisfied

    def test_no_slots_never_satisfied(self):
        step = make_step(1, ())
        assert not evaluate_step(step, (), [vote(1)]).satisfied

    def test_reason_describes_progress(self):
        step = make_step(1, THREE_USERS, approval_type=ApprovalType.MAJORITY)
        result = evaluate_step(step, THREE_USERS, [vote(1)])
        assert result.reason == "majority: 1/3 approvals (2 needed)"


class TestOneSlotPerVoter:
    def test_voter_matching_two_slots_fills_one(self):
        approvers = (user_ref(2), position_ref(7), user_ref(4))
        step = make_step(1, approvers, approval_type=ApprovalType.MAJORITY)
        holder = make_principal(2, position_id=7)

        result = evaluate_step(step, approvers, [vote_by(holder)])
        assert result.approvals == 1
        assert not result.satisfied

    def test_second_voter_completes_majority(self):
        approvers = (user_ref(2), position_ref(7), user_ref(4))
        step = make_step(1, approvers, approval_type=ApprovalType.MAJORITY)
        votes = [vote_by(make_principal(2, position_id=7)), vote(4)]
        assert evaluate_step(step, approvers, votes).satisfied

    def test_assignment_does_not_depend_on_vote_order(self):
        # 9 can fill either slot; 8 only the department slot.
        approvers = (department_ref(30), user_ref(9))
        step = make_step(1, approvers)
        flexible = make_principal(9, department_ids=[30])
        member = make_principal(8, department_ids=[30])

        first = evaluate_step(step, approvers, [vote_by(flexible), vote_by(member)])
        second = evaluate_step(step, approvers, [vote_by(member), vote_by(flexible)])
        assert first.satisfied and second.satisfied
        assert first.approvals == second.approvals == 2

    def test_stored_position_matches_without_the_principal(self):
        approvers = (position_ref(7),)
        step = make_step(1, approvers)
        stored = Vote(
            approver_id="2", step=1, action=VoteAction.APPROVE, acted_at=FIXED_NOW,
            position_id="7",
        )
        assert evaluate_step(step, approvers, [stored]).satisfied
