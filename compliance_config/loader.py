"""
Configuration Loader (``compliance_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the typed
``compliance_config.schema`` dataclasses.  This is internal tooling; the
single public entry point for runtime config is
``compliance_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required keys have no silent defaults.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Inconsistent rule table  -> ``InvalidHierarchyRuleError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from compliance_config.schema import (
    ChangeTrackingDef,
    DatabaseDef,
    HierarchyRuleDef,
    KernelConfig,
    TraversalDef,
)
from compliance_kernel.domain.hierarchy_rules import HierarchyRule, HierarchyRuleTable
from compliance_kernel.domain.node_types import AgreementType, HierarchyKind, NodeType
from compliance_kernel.exceptions import InvalidHierarchyRuleError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_rule_def(node_type: str, data: dict[str, Any]) -> HierarchyRuleDef:
    """Parse one ``hierarchy_rules`` entry."""
    if "can_have_parent" not in data:
        raise KeyError(f"hierarchy_rules.{node_type}: 'can_have_parent' is required")
    return HierarchyRuleDef(
        node_type=node_type,
        can_have_parent=bool(data["can_have_parent"]),
        allowed_parent_types=tuple(data.get("allowed_parent_types") or ()),
        max_depth=int(data.get("max_depth", 0)),
        hierarchy_kind=data.get("hierarchy_kind"),
        requires_parent=bool(data.get("requires_parent", False)),
        requires_external_org=bool(data.get("requires_external_org", False)),
        required_agreement_types=tuple(data.get("required_agreement_types") or ()),
    )


def _enum_value(enum_cls: type, value: str, node_type: str, key: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidHierarchyRuleError(node_type, f"{key}: unknown value {value!r}") from None


def build_rule_table(defs: tuple[HierarchyRuleDef, ...]) -> HierarchyRuleTable:
    """
    Convert rule definitions into a validated HierarchyRuleTable.

    Raises:
        InvalidHierarchyRuleError: unknown enum values, duplicate types, or
            any HierarchyRuleTable consistency violation.
    """
    rules: dict[NodeType, HierarchyRule] = {}
    for rule_def in defs:
        node_type = _enum_value(NodeType, rule_def.node_type, rule_def.node_type, "node_type")
        if node_type in rules:
            raise InvalidHierarchyRuleError(rule_def.node_type, "defined more than once")
        rules[node_type] = HierarchyRule(
            can_have_parent=rule_def.can_have_parent,
            allowed_parent_types=frozenset(
                _enum_value(NodeType, t, rule_def.node_type, "allowed_parent_types")
                for t in rule_def.allowed_parent_types
            ),
            max_depth=rule_def.max_depth,
            hierarchy_kind=(
                _enum_value(HierarchyKind, rule_def.hierarchy_kind, rule_def.node_type, "hierarchy_kind")
                if rule_def.hierarchy_kind
                else None
            ),
            requires_parent=rule_def.requires_parent,
            requires_external_org=rule_def.requires_external_org,
            required_agreement_types=frozenset(
                _enum_value(AgreementType, a, rule_def.node_type, "required_agreement_types")
                for a in rule_def.required_agreement_types
            ),
        )
    return HierarchyRuleTable(rules)


def parse_config(data: dict[str, Any]) -> KernelConfig:
    """
    Parse a whole configuration document.

    Raises:
        KeyError: ``config_id`` or ``hierarchy_rules`` missing.
        ValueError: ``hierarchy_rules`` is not a mapping, or the ancestor
            ceiling does not exceed the largest ``max_depth``.
        InvalidHierarchyRuleError: inconsistent rules.
    """
    config_id = data["config_id"]
    raw_rules = data["hierarchy_rules"]
    if not isinstance(raw_rules, dict):
        raise ValueError("hierarchy_rules must be a mapping of node type to rule")

    defs = tuple(parse_rule_def(str(t), r or {}) for t, r in sorted(raw_rules.items()))
    rule_table = build_rule_table(defs)

    traversal_data = data.get("traversal") or {}
    traversal = TraversalDef(ancestor_ceiling=int(traversal_data.get("ancestor_ceiling", 15)))
    if traversal.ancestor_ceiling <= rule_table.max_configured_depth:
        raise ValueError(
            f"traversal.ancestor_ceiling must exceed the largest max_depth "
            f"({rule_table.max_configured_depth})"
        )

    tracking_data = data.get("change_tracking") or {}
    database_data = data.get("database") or {}

    return KernelConfig(
        config_id=config_id,
        version=int(data.get("version", 1)),
        checksum=compute_checksum(data),
        rule_table=rule_table,
        rule_defs=defs,
        traversal=traversal,
        change_tracking=ChangeTrackingDef(enabled=bool(tracking_data.get("enabled", True))),
        database=DatabaseDef(url=database_data.get("url")),
    )
