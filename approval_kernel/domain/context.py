"""
Evaluation context (``approval_kernel.domain.context``).

Responsibility
--------------
Read-only view of the four attribute namespaces a condition tree may
reference: ``user.*``, ``data.*``, ``current_time.*`` and ``request.*``.
A context is built once per evaluation at the call boundary; the current
time and request metadata are passed in explicitly, never read from
ambient global state.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Closed namespace set -- a path whose first segment is not one of the
  four namespaces never resolves.
* Read-only -- all nested mappings are frozen at construction; lists
  become tuples.
* ``resolve`` never raises; an unresolvable path yields ``MISSING``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any


class _Missing:
    """Sentinel for a path that did not resolve."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"

    def __reduce__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


class Namespace(str, Enum):
    """The four attribute namespaces a path may start with."""

    USER = "user"
    DATA = "data"
    CURRENT_TIME = "current_time"
    REQUEST = "request"


NAMESPACES: frozenset[str] = frozenset(ns.value for ns in Namespace)


def is_path(value: Any) -> bool:
    """True iff ``value`` is a dotted reference into one of the namespaces.

    ``"data.department_id"`` is a path; ``"data"``, ``"estimate.amount"``
    and ``"new"`` are plain literals.
    """
    if not isinstance(value, str):
        return False
    head, sep, rest = value.partition(".")
    return bool(sep) and head in NAMESPACES and bool(rest)


def freeze_value(value: Any) -> Any:
    """Deep read-only copy: mappings become MappingProxyType, lists tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): freeze_value(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze_value(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(value)
    return value


def time_attributes(now: datetime) -> dict[str, Any]:
    """Expand a datetime into the ``current_time`` namespace attributes."""
    return {
        "iso": now.isoformat(),
        "datetime": now,
        "date": now.date(),
        "year": now.year,
        "month": now.month,
        "day": now.day,
        "hour": now.hour,
        "minute": now.minute,
        "weekday": now.weekday(),
        "timestamp": int(now.timestamp()),
    }


_EMPTY: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True)
class EvaluationContext:
    """Immutable attribute view presented to the condition evaluator."""

    user: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    data: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    current_time: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    request: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)

    @classmethod
    def build(
        cls,
        *,
        user: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
        current_time: datetime | Mapping[str, Any] | None = None,
        request: Mapping[str, Any] | None = None,
    ) -> EvaluationContext:
        """Construct a frozen context.

        ``current_time`` may be a ``datetime`` (expanded via
        ``time_attributes``) or an already-expanded mapping.
        """
        if isinstance(current_time, datetime):
            time_ns: Mapping[str, Any] = time_attributes(current_time)
        else:
            time_ns = current_time or {}
        return cls(
            user=freeze_value(user or {}),
            data=freeze_value(data or {}),
            current_time=freeze_value(time_ns),
            request=freeze_value(request or {}),
        )

    def namespace(self, name: str) -> Mapping[str, Any] | None:
        if name not in NAMESPACES:
            return None
        return getattr(self, name)

    def resolve(self, path: str) -> Any:
        """Resolve ``"ns.key[.subkey...]"`` to a value, or ``MISSING``."""
        if not isinstance(path, str) or not path:
            return MISSING
        head, _, rest = path.partition(".")
        current: Any = self.namespace(head)
        if current is None or not rest:
            return MISSING
        for part in rest.split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
            else:
                return MISSING
        return current

    def with_data(self, **values: Any) -> EvaluationContext:
        """Return a new context with extra or overridden ``data`` keys."""
        merged = dict(self.data)
        merged.update(values)
        return EvaluationContext(
            user=self.user,
            data=freeze_value(merged),
            current_time=self.current_time,
            request=self.request,
        )

    def with_user(self, user: Mapping[str, Any]) -> EvaluationContext:
        return EvaluationContext(
            user=freeze_value(user),
            data=self.data,
            current_time=self.current_time,
            request=self.request,
        )
