"""
Shared fixtures for the approval engine test suite.

Fixtures here build small, fully in-memory worlds: a principal per role,
a two-step purchase flow, a handful of access policies and a gateway
wired to an in-memory request store.  SQL tests use SQLite in memory
through the kernel's own engine helpers.
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest

from approval_config.repositories import InMemoryFlowRepository, InMemoryPolicyRepository
from approval_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.approval import (
    ApprovalFlow,
    ApprovalStep,
    ApprovalType,
    ApproverType,
    ConditionalApprover,
    FlowConditions,
    FlowConfig,
    Principal,
    StateGate,
    StaticApprover,
)
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.conditions import Operator, leaf
from approval_kernel.domain.context import EvaluationContext
from approval_kernel.domain.policy import AccessPolicy, Effect
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.access_gateway import AccessGateway
from approval_kernel.services.request_store import InMemoryRequestStore, SqlAlchemyRequestStore

FIXED_NOW = datetime(2025, 4, 1, 9, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, gateway):
            gateway.decide(...)
            logs = captured_logs()
            assert any(r["message"] == "policy_decision" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Factories
# =============================================================================


def make_principal(
    id,
    department_ids=(),
    position_id=None,
    system_level=None,
    **attributes,
) -> Principal:
    return Principal(
        id=id,
        department_ids=tuple(department_ids),
        position_id=position_id,
        system_level=system_level,
        name=f"user-{id}",
        attributes=attributes,
    )


def user_ref(value, display_name="") -> StaticApprover:
    return StaticApprover(ApproverType.USER, value, display_name)


def department_ref(value) -> StaticApprover:
    return StaticApprover(ApproverType.DEPARTMENT, value)


def position_ref(value) -> StaticApprover:
    return StaticApprover(ApproverType.POSITION, value)


def level_ref(value) -> StaticApprover:
    return StaticApprover(ApproverType.SYSTEM_LEVEL, value)


def make_step(
    step: int,
    approvers=(),
    approval_type: ApprovalType = ApprovalType.REQUIRED,
    auto_approve_if_requester: bool = False,
    editing_conditions: StateGate | None = None,
    cancellation_conditions: StateGate | None = None,
    name: str = "",
) -> ApprovalStep:
    return ApprovalStep(
        step=step,
        name=name or ("Request" if step == 0 else f"Step {step}"),
        approvers=tuple(approvers),
        approval_type=approval_type,
        auto_approve_if_requester=auto_approve_if_requester,
        editing_conditions=editing_conditions or StateGate(),
        cancellation_conditions=cancellation_conditions or StateGate(),
    )


def make_flow(
    id: int = 1,
    steps=None,
    flow_type: str = "purchase",
    priority: int = 10,
    conditions: FlowConditions | None = None,
    requesters=(),
    is_active: bool = True,
    flow_config: FlowConfig | None = None,
    name: str = "",
) -> ApprovalFlow:
    if steps is None:
        steps = [make_step(0), make_step(1, [user_ref(100)])]
    return ApprovalFlow(
        id=id,
        name=name or f"flow-{id}",
        flow_type=flow_type,
        approval_steps=tuple(steps),
        conditions=conditions or FlowConditions(),
        requesters=tuple(requesters),
        priority=priority,
        is_active=is_active,
        flow_config=flow_config or FlowConfig(),
    )


def make_policy(
    id: int = 1,
    effect: Effect = Effect.ALLOW,
    priority: int = 0,
    conditions=None,
    scope=None,
    business_code: str = "construction",
    action: str = "view",
    resource_type: str = "estimate",
    is_active: bool = True,
) -> AccessPolicy:
    return AccessPolicy(
        id=id,
        name=f"policy-{id}",
        business_code=business_code,
        action=action,
        resource_type=resource_type,
        effect=effect,
        priority=priority,
        conditions=conditions,
        scope=scope,
        is_active=is_active,
    )


def make_context(user=None, data=None, now=FIXED_NOW, request=None) -> EvaluationContext:
    return EvaluationContext.build(
        user=user or {}, data=data or {}, current_time=now, request=request or {},
    )


# =============================================================================
# Clock / principals
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def requester():
    return make_principal(1, department_ids=[10], position_id=5, system_level=1)


@pytest.fixture
def manager():
    return make_principal(100, department_ids=[10], position_id=20, system_level=3)


@pytest.fixture
def finance_officer():
    return make_principal(200, department_ids=[30], position_id=40, system_level=3)


@pytest.fixture
def director():
    return make_principal(300, department_ids=[10], position_id=90, system_level=5)


@pytest.fixture
def outsider():
    return make_principal(999, department_ids=[77], position_id=1, system_level=1)


# =============================================================================
# Configuration fixtures
# =============================================================================


@pytest.fixture
def purchase_flow():
    """Two voting steps: manager (user 100), then finance (department 30).

    Orders of 1,000,000 or more also need the director (position 90) at
    step 2.
    """
    return make_flow(
        id=1,
        steps=[
            make_step(0),
            make_step(1, [user_ref(100)], name="Manager"),
            make_step(
                2,
                [
                    department_ref(30),
                    ConditionalApprover(
                        condition=leaf("data.amount", Operator.GTE, 1_000_000),
                        approvers=(position_ref(90),),
                    ),
                ],
                name="Finance",
            ),
        ],
        flow_config=FlowConfig(expires_after_hours=48),
    )


@pytest.fixture
def policies():
    return [
        make_policy(
            id=1, priority=10, effect=Effect.ALLOW,
            conditions=leaf("user.position_id", Operator.IN, [20, 90]),
        ),
        make_policy(
            id=2, priority=5, effect=Effect.ALLOW,
            conditions=leaf("user.id", Operator.EQ, "data.created_by"),
        ),
        make_policy(
            id=3, priority=50, effect=Effect.DENY,
            conditions=leaf("data.status", Operator.EQ, "archived"),
        ),
    ]


@pytest.fixture
def policy_repository(policies):
    return InMemoryPolicyRepository(policies)


@pytest.fixture
def flow_repository(purchase_flow):
    return InMemoryFlowRepository([purchase_flow])


@pytest.fixture
def request_store():
    return InMemoryRequestStore()


@pytest.fixture
def gateway(policy_repository, flow_repository, request_store, deterministic_clock):
    return AccessGateway(
        policy_repository,
        flow_repository,
        request_store,
        clock=deterministic_clock,
    )


@pytest.fixture
def approvals(gateway):
    return gateway.approvals


@pytest.fixture
def order_data():
    return {"amount": Decimal("2500.00"), "department_id": 10, "vendor_type": "supplier"}


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def sqlite_session_factory():
    """Fresh in-memory SQLite schema per test."""
    init_engine_from_url("sqlite://")
    create_tables()
    yield get_session_factory()
    reset_engine()


@pytest.fixture
def sql_store(sqlite_session_factory):
    return SqlAlchemyRequestStore(sqlite_session_factory)
