"""
compliance_config -- single public entrypoint for kernel configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.  Returns a frozen
    ``KernelConfig``.

Architecture position:
    Configuration.  Sits above ``compliance_kernel``; the kernel MUST NEVER
    import from ``compliance_config``.  ``compliance_config.bridges``
    turns a KernelConfig into configured kernel services.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - The hierarchy rule table is validated before a config is returned.
    - Deterministic checksum: the same YAML always produces the same
      ``KernelConfig.checksum``.

Environment overrides:
    - ``COMPLIANCE_DATABASE_URL``: replaces ``database.url``.
    - ``COMPLIANCE_DISABLE_CHANGE_TRACKING``: ``1``/``true``/``yes`` turns
      change tracking off.  Every tracked write then logs a warning.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``KeyError`` / ``ValueError`` -- structural errors.
    - ``InvalidHierarchyRuleError`` -- inconsistent rule table.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``COMPLIANCE_CONFIG_TRACE`` log entry with the config id, version,
    checksum and applied overrides.  The trace ties every validation
    decision to the exact rule table that made it.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path

from compliance_config.loader import load_yaml_file, parse_config
from compliance_config.schema import ChangeTrackingDef, DatabaseDef, KernelConfig
from compliance_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

ENV_DATABASE_URL = "COMPLIANCE_DATABASE_URL"
ENV_DISABLE_CHANGE_TRACKING = "COMPLIANCE_DISABLE_CHANGE_TRACKING"

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def get_active_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> KernelConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML configuration set.  Defaults to
            compliance_config/sets/default.yaml.
        environ: Environment to read overrides from.  Defaults to
            ``os.environ``.

    Returns:
        KernelConfig with a validated rule table.
    """
    path = config_path or _DEFAULT_CONFIG_PATH
    env = os.environ if environ is None else environ

    config = parse_config(load_yaml_file(path))
    config = _apply_overrides(config, env)

    _logger.info(
        "COMPLIANCE_CONFIG_TRACE",
        extra={
            "trace_type": "COMPLIANCE_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "rule_count": len(config.rule_table),
            "change_tracking_enabled": config.change_tracking_enabled,
            "overrides": list(config.overrides),
        },
    )
    return config


def _apply_overrides(config: KernelConfig, env: Mapping[str, str]) -> KernelConfig:
    applied: list[str] = []

    database = config.database
    if env.get(ENV_DATABASE_URL):
        database = DatabaseDef(url=env[ENV_DATABASE_URL])
        applied.append(ENV_DATABASE_URL)

    tracking = config.change_tracking
    if env.get(ENV_DISABLE_CHANGE_TRACKING, "").strip().lower() in _TRUTHY:
        tracking = ChangeTrackingDef(enabled=False)
        applied.append(ENV_DISABLE_CHANGE_TRACKING)

    if not applied:
        return config
    return replace(config, database=database, change_tracking=tracking, overrides=tuple(applied))


__all__ = [
    "ENV_DATABASE_URL",
    "ENV_DISABLE_CHANGE_TRACKING",
    "KernelConfig",
    "get_active_config",
]
