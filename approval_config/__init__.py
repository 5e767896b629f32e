"""
approval_config -- public entrypoint for policy and flow configuration.

Responsibility:
    Provides ``load_configuration()``: read the policy and flow YAML
    files, decode them into typed domain trees, validate them, and hand
    back in-memory repositories the engines and services can use.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and beside
    ``approval_engines``.  The kernel never imports from this package.

Invariants enforced:
    - Build-time validation: a configuration with validation errors is
      never returned.
    - Deterministic identity: the same YAML always yields the same
      checksums.

Failure modes:
    - ``FileNotFoundError`` / ``yaml.YAMLError`` from the loader.
    - ``ValueError`` / ``KeyError`` for malformed records.
    - ``InvalidConfigurationError`` when validation reports errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from approval_config.loader import load_flows_file, load_policies_file
from approval_config.repositories import InMemoryFlowRepository, InMemoryPolicyRepository
from approval_config.validator import ConfigValidationResult, validate_configuration
from approval_kernel.exceptions import InvalidConfigurationError
from approval_kernel.logging_config import get_logger

_logger = get_logger("config")


@dataclass(frozen=True)
class EngineConfiguration:
    """Validated configuration ready to be served to the engines."""

    policies: InMemoryPolicyRepository
    flows: InMemoryFlowRepository
    policies_checksum: str
    flows_checksum: str
    warnings: tuple[str, ...] = field(default=())


def load_configuration(
    policies_path: Path | str,
    flows_path: Path | str,
) -> EngineConfiguration:
    """Load, validate and index the policy and flow files.

    Raises:
        InvalidConfigurationError: If validation reports any error.
    """
    policies, policies_checksum = load_policies_file(Path(policies_path))
    flows, flows_checksum = load_flows_file(Path(flows_path))

    validation = validate_configuration(policies, flows)
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"detail": warning})
    if not validation.is_valid:
        _logger.error(
            "config_validation_failed",
            extra={"error_count": len(validation.errors), "errors": validation.errors},
        )
        raise InvalidConfigurationError(validation.errors)

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "policies_checksum": policies_checksum,
            "flows_checksum": flows_checksum,
            "policy_count": len(policies),
            "flow_count": len(flows),
            "warning_count": len(validation.warnings),
        },
    )

    return EngineConfiguration(
        policies=InMemoryPolicyRepository(policies),
        flows=InMemoryFlowRepository(flows),
        policies_checksum=policies_checksum,
        flows_checksum=flows_checksum,
        warnings=tuple(validation.warnings),
    )


__all__ = [
    "ConfigValidationResult",
    "EngineConfiguration",
    "load_configuration",
    "validate_configuration",
]
