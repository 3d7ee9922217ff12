"""
KernelConfig schema.

Source artifact (YAML configuration set) and runtime artifact
(KernelConfig) for the compliance kernel.  The runtime artifact carries an
already-validated HierarchyRuleTable so no caller re-parses rules.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from compliance_kernel.domain.hierarchy_rules import HierarchyRuleTable

# ---------------------------------------------------------------------------
# Source definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HierarchyRuleDef:
    """One ``hierarchy_rules`` entry as authored in YAML."""

    node_type: str
    can_have_parent: bool
    allowed_parent_types: tuple[str, ...] = ()
    max_depth: int = 0
    hierarchy_kind: str | None = None
    requires_parent: bool = False
    requires_external_org: bool = False
    required_agreement_types: tuple[str, ...] = ()


@dataclass(frozen=True)
class TraversalDef:
    ancestor_ceiling: int = 15


@dataclass(frozen=True)
class ChangeTrackingDef:
    enabled: bool = True


@dataclass(frozen=True)
class DatabaseDef:
    url: str | None = None


# ---------------------------------------------------------------------------
# Runtime artifact
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KernelConfig:
    """
    Frozen runtime configuration.

    Guarantees:
        - ``rule_table`` has passed HierarchyRuleTable validation.
        - ``checksum`` is the SHA-256 of the canonical source document,
          before environment overrides.
    """

    config_id: str
    version: int
    checksum: str
    rule_table: HierarchyRuleTable
    rule_defs: tuple[HierarchyRuleDef, ...]
    traversal: TraversalDef = field(default_factory=TraversalDef)
    change_tracking: ChangeTrackingDef = field(default_factory=ChangeTrackingDef)
    database: DatabaseDef = field(default_factory=DatabaseDef)
    overrides: tuple[str, ...] = ()

    @property
    def ancestor_ceiling(self) -> int:
        return self.traversal.ancestor_ceiling

    @property
    def change_tracking_enabled(self) -> bool:
        return self.change_tracking.enabled

    @property
    def database_url(self) -> str | None:
        return self.database.url
