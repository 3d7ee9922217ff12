"""
Hierarchy rule table -- type-indexed parent/depth rules for nodes.

Responsibility:
    Holds, per NodeType, whether the type may have a parent, which parent
    types are allowed, the maximum depth, the derived HierarchyKind, and
    the advisory requirements (external organization, agreements).

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Built once at startup (from the
    defaults below or from ``compliance_config``) and injected into
    HierarchyValidationService and GraphQueryEngine.  Never mutated.

Invariants enforced:
    - Every NodeType has exactly one rule.
    - ``can_have_parent`` is False  =>  ``max_depth`` == 0 and no allowed
      parent types.
    - ``can_have_parent`` is True  =>  ``max_depth`` >= 1 and at least one
      allowed parent type.
    - ``requires_parent`` implies ``can_have_parent``.

Failure modes:
    - InvalidHierarchyRuleError at construction for any violation above.

Audit relevance:
    The rule table decides which recipient chains are legal under GDPR
    Art. 28 (processor / sub-processor) and which internal structures may
    nest.  Its values are fixed for the lifetime of the process so every
    validation in a run is made against the same rules.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from compliance_kernel.domain.node_types import AgreementType, HierarchyKind, NodeType
from compliance_kernel.exceptions import InvalidHierarchyRuleError

# Fallback descendant ceiling when no type allows a parent
DEFAULT_DEPTH_CEILING = 10


@dataclass(frozen=True)
class HierarchyRule:
    """
    Rules for one node type.

    Contract:
        Immutable.  ``allowed_parent_types`` and ``required_agreement_types``
        are frozensets.
    """

    can_have_parent: bool
    allowed_parent_types: frozenset[NodeType] = field(default_factory=frozenset)
    max_depth: int = 0
    hierarchy_kind: HierarchyKind | None = None
    requires_parent: bool = False
    requires_external_org: bool = False
    required_agreement_types: frozenset[AgreementType] = field(default_factory=frozenset)

    def allows_parent(self, parent_type: NodeType | str) -> bool:
        return NodeType(parent_type) in self.allowed_parent_types


class HierarchyRuleTable:
    """
    Immutable mapping NodeType -> HierarchyRule.

    Contract:
        Constructed once and passed by reference.  Validation happens in
        the constructor, so an instance is always consistent.

    Guarantees:
        - ``rule_for`` returns a rule for every NodeType.
        - ``max_configured_depth`` is the largest ``max_depth`` across all
          types, or DEFAULT_DEPTH_CEILING when no type may have a parent.
    """

    def __init__(self, rules: Mapping[NodeType, HierarchyRule]):
        normalized = {NodeType(k): v for k, v in rules.items()}
        self._validate(normalized)
        self._rules: Mapping[NodeType, HierarchyRule] = MappingProxyType(normalized)

    @staticmethod
    def _validate(rules: Mapping[NodeType, HierarchyRule]) -> None:
        for node_type in NodeType:
            if node_type not in rules:
                raise InvalidHierarchyRuleError(node_type.value, "no rule defined")

        for node_type, rule in rules.items():
            name = node_type.value
            if rule.max_depth < 0:
                raise InvalidHierarchyRuleError(name, "max_depth must be >= 0")
            if not rule.can_have_parent:
                if rule.max_depth != 0:
                    raise InvalidHierarchyRuleError(
                        name, "types without a parent must have max_depth 0"
                    )
                if rule.allowed_parent_types:
                    raise InvalidHierarchyRuleError(
                        name, "types without a parent cannot list allowed parent types"
                    )
                if rule.requires_parent:
                    raise InvalidHierarchyRuleError(
                        name, "requires_parent set on a type that cannot have a parent"
                    )
            else:
                if rule.max_depth < 1:
                    raise InvalidHierarchyRuleError(
                        name, "types with a parent need max_depth >= 1"
                    )
                if not rule.allowed_parent_types:
                    raise InvalidHierarchyRuleError(
                        name, "types with a parent need at least one allowed parent type"
                    )

    def __iter__(self):
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def items(self):
        return self._rules.items()

    def rule_for(self, node_type: NodeType | str) -> HierarchyRule:
        return self._rules[NodeType(node_type)]

    def hierarchy_kind_for(self, node_type: NodeType | str) -> HierarchyKind | None:
        return self.rule_for(node_type).hierarchy_kind

    @property
    def max_configured_depth(self) -> int:
        depths = [r.max_depth for r in self._rules.values() if r.can_have_parent]
        return max(depths) if depths else DEFAULT_DEPTH_CEILING

    @property
    def types_requiring_parent(self) -> frozenset[NodeType]:
        return frozenset(t for t, r in self._rules.items() if r.requires_parent)

    @property
    def types_requiring_external_org(self) -> frozenset[NodeType]:
        return frozenset(t for t, r in self._rules.items() if r.requires_external_org)


def _types(values: Iterable[str]) -> frozenset[NodeType]:
    return frozenset(NodeType(v) for v in values)


def default_rule_table() -> HierarchyRuleTable:
    """Built-in GDPR recipient rules (Art. 26 / Art. 28 structures)."""
    return HierarchyRuleTable({
        NodeType.PROCESSOR: HierarchyRule(
            can_have_parent=False,
            requires_external_org=True,
            required_agreement_types=frozenset({AgreementType.DPA}),
        ),
        NodeType.SUB_PROCESSOR: HierarchyRule(
            can_have_parent=True,
            allowed_parent_types=_types(["PROCESSOR", "SUB_PROCESSOR"]),
            max_depth=5,
            hierarchy_kind=HierarchyKind.PROCESSOR_CHAIN,
            requires_parent=True,
            requires_external_org=True,
        ),
        NodeType.JOINT_CONTROLLER: HierarchyRule(
            can_have_parent=False,
            requires_external_org=True,
            required_agreement_types=frozenset({AgreementType.JOINT_CONTROLLER_AGREEMENT}),
        ),
        NodeType.SERVICE_PROVIDER: HierarchyRule(
            can_have_parent=False,
            requires_external_org=True,
        ),
        NodeType.SEPARATE_CONTROLLER: HierarchyRule(
            can_have_parent=False,
            requires_external_org=True,
        ),
        NodeType.PUBLIC_AUTHORITY: HierarchyRule(
            can_have_parent=False,
            requires_external_org=True,
        ),
        NodeType.INTERNAL_DEPARTMENT: HierarchyRule(
            can_have_parent=True,
            allowed_parent_types=_types(["INTERNAL_DEPARTMENT"]),
            max_depth=10,
            hierarchy_kind=HierarchyKind.ORGANIZATIONAL,
        ),
    })
