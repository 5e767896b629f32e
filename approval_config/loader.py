"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Decodes stored policy and flow records (plain dicts, typically from YAML
files or JSON columns) into the typed, frozen domain trees the engines
consume.  Decoding happens once at load time; the engines never see an
untyped condition dict.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on
``approval_kernel.domain`` types only; no engines, no services.

Invariants enforced
-------------------
* Operator, approver type and approval type strings are preserved
  bit-for-bit; an unknown string raises ``ValueError``.
* Field references are canonicalised to namespaced paths.  Legacy flat
  fields are mapped into a default namespace: ``user`` for access policy
  trees, ``data`` for conditional approver guards (``user_id`` becomes
  ``user.id``).
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown enum strings / malformed nodes  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from approval_kernel.domain.approval import (
    ApprovalFlow,
    ApprovalStep,
    ApprovalType,
    Approver,
    ApproverType,
    ConditionalApprover,
    FlowConditions,
    FlowConfig,
    StateGate,
    StaticApprover,
)
from approval_kernel.domain.conditions import (
    ConditionGroup,
    ConditionLeaf,
    ConditionNode,
    GroupOperator,
    Operator,
)
from approval_kernel.domain.context import NAMESPACES
from approval_kernel.domain.policy import AccessPolicy, Effect

_GROUP_OPERATORS = frozenset(op.value for op in GroupOperator)

# Flat legacy field names with a non-obvious namespaced equivalent
_FIELD_ALIASES: dict[str, str] = {
    "user_id": "user.id",
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


# =========================================================================
# Conditions
# =========================================================================


def normalize_field(field: str, default_namespace: str = "user") -> str:
    """Canonical namespaced path for a stored field reference."""
    if field in _FIELD_ALIASES:
        return _FIELD_ALIASES[field]
    head, sep, _ = field.partition(".")
    if sep and head in NAMESPACES:
        return field
    return f"{default_namespace}.{field}"


def _parse_value(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_parse_value(v) for v in value)
    if isinstance(value, float):
        return Decimal(repr(value))
    return value


def parse_condition(
    data: dict[str, Any] | None,
    default_namespace: str = "user",
) -> ConditionNode | None:
    """
    Parse a stored condition tree.

    A group is ``{"operator": "and"|"or"|"not", "rules": [...]}``; a leaf
    is ``{"field": ..., "operator": ..., "value": ...}``.  ``None`` or an
    empty dict means "no condition".

    Raises:
        ValueError: unknown operator, or a node that is neither shape.
    """
    if not data:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"Condition node must be a mapping, got {type(data).__name__}")

    operator = data.get("operator")
    if "field" in data:
        if operator is None:
            raise ValueError(f"Condition leaf on {data['field']!r} has no operator")
        return ConditionLeaf(
            field=normalize_field(str(data["field"]), default_namespace),
            operator=Operator(operator),
            value=_parse_value(data.get("value")),
        )

    if "rules" in data or operator in _GROUP_OPERATORS:
        rules = data.get("rules") or []
        if not isinstance(rules, list):
            raise ValueError("Condition group 'rules' must be a list")
        children = tuple(
            child
            for child in (parse_condition(r, default_namespace) for r in rules)
            if child is not None
        )
        return ConditionGroup(
            operator=GroupOperator(operator or "and"),
            rules=children,
        )

    raise ValueError(f"Unrecognised condition node: {sorted(data)}")


# =========================================================================
# Policies
# =========================================================================


def parse_policy(data: dict[str, Any]) -> AccessPolicy:
    """Parse an ``AccessPolicy`` from a stored record."""
    return AccessPolicy(
        id=int(data["id"]),
        name=data.get("name", ""),
        business_code=data["business_code"],
        action=data["action"],
        resource_type=data["resource_type"],
        effect=Effect(data["effect"]),
        priority=int(data.get("priority", 0)),
        conditions=parse_condition(data.get("conditions"), "user"),
        scope=parse_condition(data.get("scope"), "user"),
        is_active=bool(data.get("is_active", True)),
    )


# =========================================================================
# Flows
# =========================================================================


def parse_approver(data: dict[str, Any]) -> Approver:
    """Parse one approver reference (static or conditional)."""
    kind = ApproverType(data["type"])
    if kind is ApproverType.CONDITIONAL:
        condition = parse_condition(data.get("condition"), "data")
        if condition is None:
            raise ValueError("Conditional approver requires a 'condition'")
        return ConditionalApprover(
            condition=condition,
            approvers=tuple(parse_approver(a) for a in data.get("approvers") or []),
            display_name=data.get("display_name", ""),
        )
    return StaticApprover(
        type=kind,
        value=data["value"],
        display_name=data.get("display_name", ""),
    )


def parse_state_gate(data: dict[str, Any] | None) -> StateGate:
    data = data or {}
    return StateGate(
        allow_during_pending=bool(data.get("allow_during_pending", True)),
        allow_during_reviewing=bool(data.get("allow_during_reviewing", False)),
        allow_during_step_approved=bool(data.get("allow_during_step_approved", False)),
        allow_during_expired=bool(data.get("allow_during_expired", False)),
    )


def parse_step(data: dict[str, Any]) -> ApprovalStep:
    return ApprovalStep(
        step=int(data["step"]),
        name=data.get("name", ""),
        approvers=tuple(parse_approver(a) for a in data.get("approvers") or []),
        approval_type=ApprovalType(data.get("approval_type", ApprovalType.REQUIRED.value)),
        auto_approve_if_requester=bool(data.get("auto_approve_if_requester", False)),
        editing_conditions=parse_state_gate(data.get("editing_conditions")),
        cancellation_conditions=parse_state_gate(data.get("cancellation_conditions")),
    )


def _optional_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _optional_tuple(value: Any) -> tuple[Any, ...] | None:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        value = [value]
    return tuple(value)


def parse_flow_conditions(data: dict[str, Any] | None) -> FlowConditions:
    data = data or {}
    return FlowConditions(
        amount_min=_optional_decimal(data.get("amount_min")),
        amount_max=_optional_decimal(data.get("amount_max")),
        departments=_optional_tuple(data.get("departments")),
        vendor_types=_optional_tuple(data.get("vendor_types")),
        project_types=_optional_tuple(data.get("project_types")),
    )


def parse_flow_config(data: dict[str, Any] | None) -> FlowConfig:
    data = data or {}
    return FlowConfig(
        allow_editing_after_request=bool(data.get("allow_editing_after_request", True)),
        allow_cancellation_after_request=bool(data.get("allow_cancellation_after_request", True)),
        return_to_step=(
            int(data["return_to_step"]) if data.get("return_to_step") is not None else None
        ),
        expires_after_hours=(
            int(data["expires_after_hours"]) if data.get("expires_after_hours") is not None else None
        ),
    )


def parse_flow(data: dict[str, Any]) -> ApprovalFlow:
    """Parse an ``ApprovalFlow`` from a stored record."""
    steps = tuple(
        sorted(
            (parse_step(s) for s in data.get("approval_steps") or []),
            key=lambda s: s.step,
        )
    )
    requesters = tuple(parse_approver(r) for r in data.get("requesters") or [])
    for requester in requesters:
        if not isinstance(requester, StaticApprover):
            raise ValueError(f"Flow {data.get('id')}: requesters must be static references")
    return ApprovalFlow(
        id=int(data["id"]),
        name=data.get("name", ""),
        flow_type=data["flow_type"],
        approval_steps=steps,
        conditions=parse_flow_conditions(data.get("conditions")),
        requesters=requesters,
        priority=int(data.get("priority", 0)),
        is_active=bool(data.get("is_active", True)),
        flow_config=parse_flow_config(data.get("flow_config")),
    )


# =========================================================================
# Files
# =========================================================================


def load_policies_file(path: Path) -> tuple[list[AccessPolicy], str]:
    """Load ``policies:`` from a YAML file.  Returns ``(policies, checksum)``."""
    raw = load_yaml_file(Path(path))
    records = raw.get("policies") or []
    return [parse_policy(r) for r in records], compute_checksum(raw)


def load_flows_file(path: Path) -> tuple[list[ApprovalFlow], str]:
    """Load ``flows:`` from a YAML file.  Returns ``(flows, checksum)``."""
    raw = load_yaml_file(Path(path))
    records = raw.get("flows") or []
    return [parse_flow(r) for r in records], compute_checksum(raw)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
