"""
approval_engines.step_evaluation -- Is the current step decided?

Responsibility:
    Check the votes recorded on a step against its ``approval_type`` and
    the step's resolved approver slots.

Architecture position:
    Engines -- pure function, no I/O.

Invariants enforced:
    - Each resolved static approver is one slot.  A voter is matched with
      the attributes stored on their vote (a ``department`` slot is
      filled by any one member).
    - One approving voter fills at most one slot.  Slots are assigned by
      maximum bipartite matching, so a voter who matches several slots
      never blocks another voter from the slot only they can fill.
    - ``required`` / ``unanimous``: every slot filled.
    - ``optional``: at least one slot filled.
    - ``majority``: filled slots * 2 > slots.
    - Any Reject decides the step as rejected, whatever the approval type.
      Otherwise any Return decides it as returned.
    - Votes from voters who match no slot are ignored; a voter is counted
      once no matter how often they appear.
"""

from __future__ import annotations

from collections.abc import Sequence

from approval_engines.approvers import principal_matches
from approval_kernel.domain.approval import (
    ApprovalStep,
    ApprovalType,
    StaticApprover,
    StepEvaluation,
    Vote,
    VoteAction,
)


def required_approvals(approval_type: ApprovalType, slots: int) -> int:
    """Number of filled slots needed to satisfy a step."""
    if slots == 0:
        return 0
    if approval_type is ApprovalType.OPTIONAL:
        return 1
    if approval_type is ApprovalType.MAJORITY:
        return slots // 2 + 1
    return slots


def _fill_slots(candidates: Sequence[list[int]]) -> int:
    """Size of a maximum matching of voters (their slot lists) onto slots."""
    owner: dict[int, int] = {}

    def assign(voter: int, visited: set[int]) -> bool:
        for slot in candidates[voter]:
            if slot in visited:
                continue
            visited.add(slot)
            if slot not in owner or assign(owner[slot], visited):
                owner[slot] = voter
                return True
        return False

    for voter in range(len(candidates)):
        assign(voter, set())
    return len(owner)


def evaluate_step(
    step: ApprovalStep,
    resolved_approvers: Sequence[StaticApprover],
    votes: Sequence[Vote],
) -> StepEvaluation:
    """Evaluate ``votes`` (already restricted to this step and round)."""
    slots = len(resolved_approvers)
    required = required_approvals(step.approval_type, slots)

    seen: set[str] = set()
    approving: list[list[int]] = []
    rejected = returned = False

    for vote in votes:
        if vote.step != step.step:
            continue
        voter_key = str(vote.approver_id)
        if voter_key in seen:
            continue
        voter = vote.voter()
        matched = [i for i, a in enumerate(resolved_approvers) if principal_matches(a, voter)]
        if not matched:
            continue
        seen.add(voter_key)

        if vote.action is VoteAction.REJECT:
            rejected = True
        elif vote.action is VoteAction.RETURN:
            returned = True
        else:
            approving.append(matched)

    approvals = _fill_slots(approving)

    if rejected:
        return StepEvaluation(
            rejected=True, approvals=approvals, required=required,
            reason="Rejected by an approver",
        )
    if returned:
        return StepEvaluation(
            returned=True, approvals=approvals, required=required,
            reason="Returned by an approver",
        )

    satisfied = slots > 0 and approvals >= required
    reason = (
        f"{step.approval_type.value}: {approvals}/{slots} approvals"
        f" ({'satisfied' if satisfied else f'{required} needed'})"
    )
    return StepEvaluation(
        satisfied=satisfied, approvals=approvals, required=required, reason=reason,
    )
