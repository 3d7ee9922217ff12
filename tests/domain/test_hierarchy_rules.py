"""
Tests for the hierarchy rule table.

Covers:
- Built-in GDPR recipient rules
- Consistency validation at construction
- Immutability of the table
"""

from dataclasses import FrozenInstanceError, replace

import pytest

from compliance_kernel.domain.hierarchy_rules import (
    HierarchyRule,
    HierarchyRuleTable,
    default_rule_table,
)
from compliance_kernel.domain.node_types import AgreementType, HierarchyKind, NodeType
from compliance_kernel.exceptions import InvalidHierarchyRuleError


def _rules_with(node_type: NodeType, rule: HierarchyRule) -> dict[NodeType, HierarchyRule]:
    rules = dict(default_rule_table().items())
    rules[node_type] = rule
    return rules


class TestDefaultRules:
    """The built-in table encodes the GDPR recipient structures."""

    def test_every_node_type_has_a_rule(self):
        table = default_rule_table()
        assert set(table) == set(NodeType)
        assert len(table) == len(NodeType)

    def test_processor_is_a_root_requiring_dpa(self):
        rule = default_rule_table().rule_for(NodeType.PROCESSOR)
        assert rule.can_have_parent is False
        assert rule.max_depth == 0
        assert rule.requires_external_org is True
        assert rule.required_agreement_types == frozenset({AgreementType.DPA})

    def test_sub_processor_chains_under_processors(self):
        rule = default_rule_table().rule_for(NodeType.SUB_PROCESSOR)
        assert rule.can_have_parent is True
        assert rule.allowed_parent_types == frozenset(
            {NodeType.PROCESSOR, NodeType.SUB_PROCESSOR}
        )
        assert rule.max_depth == 5
        assert rule.hierarchy_kind == HierarchyKind.PROCESSOR_CHAIN
        assert rule.requires_parent is True

    def test_internal_department_nests_under_itself(self):
        rule = default_rule_table().rule_for("INTERNAL_DEPARTMENT")
        assert rule.allows_parent(NodeType.INTERNAL_DEPARTMENT)
        assert not rule.allows_parent(NodeType.PROCESSOR)
        assert rule.max_depth == 10
        assert rule.hierarchy_kind == HierarchyKind.ORGANIZATIONAL
        assert rule.requires_external_org is False

    def test_hierarchy_kind_derivation(self):
        table = default_rule_table()
        assert table.hierarchy_kind_for(NodeType.SUB_PROCESSOR) == HierarchyKind.PROCESSOR_CHAIN
        assert table.hierarchy_kind_for(NodeType.INTERNAL_DEPARTMENT) == HierarchyKind.ORGANIZATIONAL
        assert table.hierarchy_kind_for(NodeType.PROCESSOR) is None

    def test_max_configured_depth_is_largest_type_depth(self):
        assert default_rule_table().max_configured_depth == 10

    def test_types_requiring_parent(self):
        assert default_rule_table().types_requiring_parent == frozenset({NodeType.SUB_PROCESSOR})

    def test_types_requiring_external_org_excludes_departments(self):
        required = default_rule_table().types_requiring_external_org
        assert NodeType.INTERNAL_DEPARTMENT not in required
        assert NodeType.PROCESSOR in required
        assert len(required) == len(NodeType) - 1

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            default_rule_table().rule_for("DATA_BROKER")


class TestRuleTableValidation:
    """Inconsistent tables are rejected at construction."""

    def test_missing_type_rejected(self):
        rules = dict(default_rule_table().items())
        del rules[NodeType.PUBLIC_AUTHORITY]
        with pytest.raises(InvalidHierarchyRuleError) as exc_info:
            HierarchyRuleTable(rules)
        assert exc_info.value.node_type == "PUBLIC_AUTHORITY"

    def test_root_type_with_depth_rejected(self):
        rules = _rules_with(NodeType.PROCESSOR, HierarchyRule(can_have_parent=False, max_depth=2))
        with pytest.raises(InvalidHierarchyRuleError):
            HierarchyRuleTable(rules)

    def test_root_type_with_allowed_parents_rejected(self):
        rules = _rules_with(
            NodeType.PROCESSOR,
            HierarchyRule(
                can_have_parent=False,
                allowed_parent_types=frozenset({NodeType.PROCESSOR}),
            ),
        )
        with pytest.raises(InvalidHierarchyRuleError):
            HierarchyRuleTable(rules)

    def test_requires_parent_on_root_type_rejected(self):
        rules = _rules_with(
            NodeType.PROCESSOR,
            HierarchyRule(can_have_parent=False, requires_parent=True),
        )
        with pytest.raises(InvalidHierarchyRuleError):
            HierarchyRuleTable(rules)

    def test_child_type_without_depth_rejected(self):
        rules = _rules_with(
            NodeType.SUB_PROCESSOR,
            HierarchyRule(
                can_have_parent=True,
                allowed_parent_types=frozenset({NodeType.PROCESSOR}),
                max_depth=0,
            ),
        )
        with pytest.raises(InvalidHierarchyRuleError):
            HierarchyRuleTable(rules)

    def test_child_type_without_allowed_parents_rejected(self):
        rules = _rules_with(
            NodeType.SUB_PROCESSOR,
            HierarchyRule(can_have_parent=True, max_depth=3),
        )
        with pytest.raises(InvalidHierarchyRuleError):
            HierarchyRuleTable(rules)

    def test_negative_depth_rejected(self):
        rules = _rules_with(
            NodeType.INTERNAL_DEPARTMENT,
            HierarchyRule(
                can_have_parent=True,
                allowed_parent_types=frozenset({NodeType.INTERNAL_DEPARTMENT}),
                max_depth=-1,
            ),
        )
        with pytest.raises(InvalidHierarchyRuleError):
            HierarchyRuleTable(rules)


class TestRuleTableImmutability:
    """A built table cannot be changed."""

    def test_rule_is_frozen(self):
        rule = default_rule_table().rule_for(NodeType.SUB_PROCESSOR)
        with pytest.raises(FrozenInstanceError):
            rule.max_depth = 50

    def test_source_mapping_changes_do_not_leak(self):
        rules = dict(default_rule_table().items())
        table = HierarchyRuleTable(rules)
        rules[NodeType.SUB_PROCESSOR] = replace(rules[NodeType.SUB_PROCESSOR], max_depth=1)
        assert table.rule_for(NodeType.SUB_PROCESSOR).max_depth == 5
