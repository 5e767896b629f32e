"""
approval_engines.tracer -- ``@traced_engine`` and input fingerprints.

Responsibility:
    Wrap each pure engine entry point so that one debug record,
    ``APPROVAL_ENGINE_TRACE``, is written per call.  The record names the
    engine and its version, carries a short fingerprint of the selected
    inputs, and reports how long the call took and whether it raised.

Architecture position:
    Engines -- support for the pure evaluation layer.  Writes a log
    record only; inputs and results pass through untouched.

Invariants enforced:
    - The fingerprint covers only the arguments named in
      ``fingerprint_fields``.  It groups calls for correlation in the
      logs; it does not identify the full input (the policy resolver, for
      example, leaves the evaluation context out).
    - Arguments are matched to fingerprint fields by parameter name,
      whether passed positionally or by keyword.  A parameter left at its
      default is fingerprinted as null.
    - Mapping key order does not change the fingerprint.

Failure modes:
    - Exceptions from the wrapped engine propagate unchanged, after the
      trace record (``outcome="error"``) is written.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import json
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from approval_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE_EVENT = "APPROVAL_ENGINE_TRACE"


def _plain(value: Any) -> Any:
    """Reduce ``value`` to JSON-native types with a stable ordering."""
    if isinstance(value, Enum):
        return _plain(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_plain(item) for item in value), key=repr)
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: Mapping[str, Any],
) -> str:
    """First 16 hex chars of the SHA-256 of the named inputs.

    Mapping key order does not affect the result.
    """
    document = {name: _plain(kwargs.get(name)) for name in fingerprint_fields}
    encoded = json.dumps(document, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Wrap an engine function so each call emits ``APPROVAL_ENGINE_TRACE``."""

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs).arguments
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound)

            outcome = "error"
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                outcome = "ok"
                return result
            finally:
                _logger.debug(
                    TRACE_EVENT,
                    extra={
                        "trace_type": TRACE_EVENT,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                        "outcome": outcome,
                        "function": func.__qualname__,
                    },
                )

        return wrapper

    return decorator
