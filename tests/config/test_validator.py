"""
Tests for load-time configuration validation.

Every check reports a message naming where the defect is; errors block
activation, warnings do not.
"""

from decimal import Decimal

import pytest

from approval_config.validator import (
    MAX_VOTING_STEPS,
    ConfigValidationResult,
    validate_condition,
    validate_configuration,
)
from approval_kernel.domain.approval import ApprovalType, ConditionalApprover, FlowConditions, FlowConfig
from approval_kernel.domain.conditions import ConditionGroup, GroupOperator, Operator, leaf
from tests.conftest import department_ref, make_flow, make_policy, make_step, user_ref


def errors_for(policies=(), flows=()):
    return validate_configuration(list(policies), list(flows)).errors


def guard(amount=1000):
    return leaf("data.amount", Operator.GTE, amount)


class TestResult:
    def test_valid_without_errors(self):
        result = ConfigValidationResult()
        result.add_warning("look at this")
        assert result.is_valid
        result.add_error("broken")
        assert not result.is_valid

    def test_fixture_configuration_is_valid(self, policies, purchase_flow):
        result = validate_configuration(policies, [purchase_flow])
        assert result.is_valid
        assert result.warnings == []


class TestUniqueIds:
    def test_duplicate_policy_ids(self):
        assert errors_for(policies=[make_policy(id=4), make_policy(id=4)]) == [
            "Duplicate policy id 4 (2 definitions)"
        ]

    def test_duplicate_flow_ids(self):
        assert errors_for(flows=[make_flow(id=2), make_flow(id=2), make_flow(id=2)]) == [
            "Duplicate flow id 2 (3 definitions)"
        ]


class TestConditions:
    def _check(self, node):
        result = ConfigValidationResult()
        validate_condition(node, "policy 1.conditions", result)
        return result

    def test_not_arity(self):
        node = ConditionGroup(GroupOperator.NOT, (guard(), guard(5)))
        assert self._check(node).errors == [
            "policy 1.conditions: 'not' group must have exactly one rule, has 2"
        ]

    def test_empty_or_warns(self):
        result = self._check(ConditionGroup(GroupOperator.OR, ()))
        assert result.is_valid
        assert result.warnings == ["policy 1.conditions: empty 'or' group never matches"]

    def test_unnamespaced_field(self):
        result = self._check(leaf("amount", Operator.GT, 1))
        assert result.errors == ["policy 1.conditions: field 'amount' is not a namespaced path"]

    def test_membership_needs_list(self):
        result = self._check(leaf("user.position_id", Operator.IN, 20))
        assert result.errors == ["policy 1.conditions: 'in' needs a list value"]

    def test_membership_accepts_path(self):
        assert self._check(leaf("user.id", Operator.NIN, "data.watchers")).is_valid

    def test_ordering_needs_scalar(self):
        result = self._check(leaf("data.amount", Operator.LT, (1, 2)))
        assert result.errors == ["policy 1.conditions: 'lt' needs a scalar value"]

    def test_nested_location_reported(self):
        node = ConditionGroup(GroupOperator.AND, (guard(), leaf("amount", Operator.EXISTS)))
        assert self._check(node).errors == [
            "policy 1.conditions.rules[1]: field 'amount' is not a namespaced path"
        ]

    def test_policy_scope_checked(self):
        policy = make_policy(id=9, scope=leaf("id", Operator.EQ, 1))
        assert errors_for(policies=[policy]) == [
            "policy 9.scope: field 'id' is not a namespaced path"
        ]

    def test_negative_priority(self):
        assert errors_for(policies=[make_policy(priority=-1)]) == [
            "policy 1: priority must be non-negative, got -1"
        ]


class TestFlows:
    def test_amount_bounds(self):
        flow = make_flow(conditions=FlowConditions(amount_min=Decimal("500"), amount_max=Decimal("100")))
        assert errors_for(flows=[flow]) == ["flow 1: amount_min 500 exceeds amount_max 100"]

    def test_duplicate_step_number(self):
        flow = make_flow(steps=[make_step(0), make_step(1, [user_ref(1)]), make_step(1, [user_ref(2)])])
        assert "flow 1: duplicate step number 1" in errors_for(flows=[flow])

    def test_gap_in_steps(self):
        flow = make_flow(steps=[make_step(0), make_step(1, [user_ref(1)]), make_step(3, [user_ref(2)])])
        assert errors_for(flows=[flow]) == ["flow 1: step numbers are not contiguous: [0, 1, 3]"]

    def test_steps_must_start_at_zero(self):
        flow = make_flow(steps=[make_step(1, [user_ref(1)])])
        assert errors_for(flows=[flow]) == [
            "flow 1: steps must start at 0 (request creation step)"
        ]

    def test_no_voting_step(self):
        assert errors_for(flows=[make_flow(steps=[make_step(0)])]) == [
            "flow 1: flow has no voting step"
        ]

    def test_too_many_voting_steps(self):
        steps = [make_step(0)] + [
            make_step(n, [user_ref(n)]) for n in range(1, MAX_VOTING_STEPS + 2)
        ]
        assert errors_for(flows=[make_flow(steps=steps)]) == [
            f"flow 1: {MAX_VOTING_STEPS + 1} voting steps exceed the maximum of {MAX_VOTING_STEPS}"
        ]

    def test_return_to_unknown_step(self):
        flow = make_flow(flow_config=FlowConfig(return_to_step=4))
        assert errors_for(flows=[flow]) == [
            "flow 1: return_to_step 4 is not a step of the flow"
        ]

    def test_voting_step_without_approvers(self):
        flow = make_flow(steps=[make_step(0), make_step(1)])
        assert errors_for(flows=[flow]) == ["flow 1 step 1: voting step has no approvers"]

    def test_conditional_without_static_approver(self):
        empty_branch = ConditionalApprover(condition=guard(), approvers=())
        flow = make_flow(steps=[make_step(0), make_step(1, [user_ref(1), empty_branch])])
        assert errors_for(flows=[flow]) == [
            "flow 1 step 1: conditional approver approvers[1] has no static approver"
        ]

    def test_all_conditional_warns(self):
        only_branch = ConditionalApprover(condition=guard(), approvers=(department_ref(30),))
        flow = make_flow(steps=[make_step(0), make_step(1, [only_branch])])
        result = validate_configuration([], [flow])
        assert result.is_valid
        assert result.warnings == [
            "flow 1 step 1: all approvers are conditional; no unconditional fallback"
        ]

    def test_guard_conditions_validated(self):
        branch = ConditionalApprover(
            condition=leaf("amount", Operator.GTE, 1), approvers=(user_ref(5),),
        )
        flow = make_flow(steps=[make_step(0), make_step(1, [user_ref(1), branch])])
        assert errors_for(flows=[flow]) == [
            "flow 1 step 1.approvers[1].condition: field 'amount' is not a namespaced path"
        ]

    def test_single_approver_majority_warns(self):
        flow = make_flow(steps=[
            make_step(0), make_step(1, [user_ref(1)], approval_type=ApprovalType.MAJORITY),
        ])
        assert validate_configuration([], [flow]).warnings == [
            "flow 1 step 1: majority step with a single approver"
        ]

    def test_negative_flow_priority(self):
        assert errors_for(flows=[make_flow(priority=-5)]) == [
            "flow 1: priority must be non-negative, got -5"
        ]

    @pytest.mark.parametrize("approval_type", list(ApprovalType))
    def test_all_approval_types_accepted(self, approval_type):
        flow = make_flow(steps=[
            make_step(0),
            make_step(1, [user_ref(1), user_ref(2)], approval_type=approval_type),
        ])
        assert errors_for(flows=[flow]) == []
