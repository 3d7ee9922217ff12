"""
Tests for GraphQueryEngine traversal and data-quality queries.

Covers:
- Children, descendant trees and ancestor chains
- Tenant scope at every traversal step
- Termination on corrupted data (cycles, over-long chains)
- Orphans, cycles, depth violations, unlinked nodes, pagination
"""

from dataclasses import replace
from uuid import uuid4

import pytest

from compliance_kernel.domain.hierarchy_rules import HierarchyRuleTable, default_rule_table
from compliance_kernel.domain.node_types import NodeType
from compliance_kernel.exceptions import NodeNotFoundError
from compliance_kernel.selectors.graph_selector import GraphQueryEngine, WalkTermination


@pytest.fixture
def processor_chain(make_node, external_org):
    """PROCESSOR -> SUB_PROCESSOR -> SUB_PROCESSOR, plus a sibling sub-processor."""
    processor = make_node(NodeType.PROCESSOR, "Cloudy", external_organization_id=external_org.id)
    sub1 = make_node(NodeType.SUB_PROCESSOR, "Storage", parent_id=processor.id)
    sub2 = make_node(NodeType.SUB_PROCESSOR, "Backup", parent_id=sub1.id)
    sibling = make_node(NodeType.SUB_PROCESSOR, "Email", parent_id=processor.id)
    return processor, sub1, sub2, sibling


@pytest.fixture
def shallow_rules() -> HierarchyRuleTable:
    """Default rules with every max_depth capped at 2, so a ceiling of 3 is allowed."""
    return HierarchyRuleTable({
        node_type: replace(rule, max_depth=2) if rule.can_have_parent else rule
        for node_type, rule in default_rule_table().items()
    })


@pytest.fixture
def department_chain(make_node):
    def _build(length: int):
        nodes = [make_node(NodeType.INTERNAL_DEPARTMENT, "dept-0")]
        for i in range(1, length):
            nodes.append(
                make_node(NodeType.INTERNAL_DEPARTMENT, f"dept-{i}", parent_id=nodes[-1].id)
            )
        return nodes

    return _build


class TestDownwardTraversal:
    def test_direct_children(self, graph, tenant, processor_chain):
        processor, sub1, _, sibling = processor_chain
        children = graph.get_direct_children(processor.id, tenant.id)
        assert {c.id for c in children} == {sub1.id, sibling.id}

    def test_descendant_tree_depths(self, graph, tenant, processor_chain):
        processor, sub1, sub2, sibling = processor_chain
        tree = graph.get_descendant_tree(processor.id, tenant.id)
        depths = {d.node.id: d.depth for d in tree}
        assert depths == {sub1.id: 1, sibling.id: 1, sub2.id: 2}
        assert [d.depth for d in tree] == sorted(d.depth for d in tree)

    def test_descendant_tree_excludes_start(self, graph, tenant, processor_chain):
        processor = processor_chain[0]
        tree = graph.get_descendant_tree(processor.id, tenant.id)
        assert processor.id not in {d.node.id for d in tree}

    def test_descendant_tree_max_depth(self, graph, tenant, processor_chain):
        processor, sub1, sub2, sibling = processor_chain
        tree = graph.get_descendant_tree(processor.id, tenant.id, max_depth=1)
        assert {d.node.id for d in tree} == {sub1.id, sibling.id}

    def test_leaf_has_no_descendants(self, graph, tenant, processor_chain):
        assert graph.get_descendant_tree(processor_chain[2].id, tenant.id) == []

    def test_unknown_start_raises(self, graph, tenant):
        with pytest.raises(NodeNotFoundError):
            graph.get_descendant_tree(uuid4(), tenant.id)

    def test_other_tenant_cannot_traverse(self, graph, other_tenant, processor_chain):
        with pytest.raises(NodeNotFoundError):
            graph.get_direct_children(processor_chain[0].id, other_tenant.id)

    def test_cycle_terminates_and_is_logged(
        self, graph, tenant, department_chain, force_parent, captured_logs,
    ):
        a, b, c = department_chain(3)
        force_parent(a.id, c.id)

        tree = graph.get_descendant_tree(a.id, tenant.id)

        assert {d.node.id for d in tree} == {b.id, c.id}
        assert any(r["message"] == "descendant_cycle_detected" for r in captured_logs())


class TestUpwardTraversal:
    def test_ancestor_chain_nearest_first(self, graph, tenant, processor_chain):
        processor, sub1, sub2, _ = processor_chain
        chain = graph.get_ancestor_chain(sub2.id, tenant.id)
        assert [n.id for n in chain] == [sub1.id, processor.id]

    def test_root_has_empty_chain(self, graph, tenant, processor_chain):
        walk = graph.walk_ancestors(processor_chain[0].id, tenant.id)
        assert walk.ancestors == ()
        assert walk.termination == WalkTermination.ROOT
        assert walk.is_clean

    def test_calculate_depth(self, graph, tenant, processor_chain):
        processor, sub1, sub2, _ = processor_chain
        assert graph.calculate_depth(processor.id, tenant.id) == 0
        assert graph.calculate_depth(sub1.id, tenant.id) == 1
        assert graph.calculate_depth(sub2.id, tenant.id) == 2

    def test_cycle_stops_walk(self, graph, tenant, department_chain, force_parent, captured_logs):
        a, b, c = department_chain(3)
        force_parent(a.id, c.id)

        walk = graph.walk_ancestors(c.id, tenant.id)

        assert walk.termination == WalkTermination.CYCLE
        assert set(walk.ids) == {a.id, b.id}
        assert any(r["message"] == "ancestor_cycle_detected" for r in captured_logs())

    def test_ceiling_stops_walk(self, session, shallow_rules, tenant, department_chain, captured_logs):
        nodes = department_chain(6)
        shallow = GraphQueryEngine(session, shallow_rules, ancestor_ceiling=3)

        walk = shallow.walk_ancestors(nodes[-1].id, tenant.id)

        assert walk.termination == WalkTermination.CEILING
        assert len(walk.ancestors) == 3
        assert any(r["message"] == "ancestor_ceiling_reached" for r in captured_logs())

    def test_chain_exactly_at_ceiling_is_clean(self, session, shallow_rules, tenant, department_chain):
        nodes = department_chain(4)
        engine = GraphQueryEngine(session, shallow_rules, ancestor_ceiling=3)
        walk = engine.walk_ancestors(nodes[-1].id, tenant.id)
        assert walk.termination == WalkTermination.ROOT
        assert len(walk.ancestors) == 3

    def test_ceiling_never_below_deepest_rule(self, session, rule_table, captured_logs):
        engine = GraphQueryEngine(session, rule_table, ancestor_ceiling=3)

        assert engine.ancestor_ceiling == rule_table.max_configured_depth + 1
        raised = [r for r in captured_logs() if r["message"] == "ancestor_ceiling_raised"]
        assert raised[0]["requested"] == 3

    def test_chain_at_deepest_rule_walks_to_root(self, session, rule_table, tenant, department_chain):
        nodes = department_chain(rule_table.max_configured_depth + 1)
        engine = GraphQueryEngine(session, rule_table, ancestor_ceiling=3)

        walk = engine.walk_ancestors(nodes[-1].id, tenant.id)

        assert walk.termination == WalkTermination.ROOT
        assert len(walk.ancestors) == rule_table.max_configured_depth

    def test_parent_in_other_tenant_is_missing(
        self, graph, tenant, other_tenant, make_node, force_parent,
    ):
        foreign_root = make_node(NodeType.INTERNAL_DEPARTMENT, "foreign", tenant_id=other_tenant.id)
        local = make_node(NodeType.INTERNAL_DEPARTMENT, "local")
        force_parent(local.id, foreign_root.id)

        walk = graph.walk_ancestors(local.id, tenant.id)

        assert walk.termination == WalkTermination.MISSING_PARENT
        assert walk.ancestors == ()


class TestCircularReferenceCheck:
    def test_self_parent_is_circular(self, graph, tenant, processor_chain):
        sub1 = processor_chain[1]
        assert graph.check_circular_reference(sub1.id, sub1.id, tenant.id)

    def test_self_parent_as_string_is_circular(self, graph, tenant, processor_chain):
        sub1 = processor_chain[1]
        assert graph.check_circular_reference(sub1.id, str(sub1.id), tenant.id)

    def test_descendant_as_parent_is_circular(self, graph, tenant, processor_chain):
        _, sub1, sub2, _ = processor_chain
        assert graph.check_circular_reference(sub1.id, sub2.id, tenant.id)

    def test_sibling_as_parent_is_not_circular(self, graph, tenant, processor_chain):
        _, sub1, _, sibling = processor_chain
        assert not graph.check_circular_reference(sibling.id, sub1.id, tenant.id)

    def test_new_node_is_never_circular(self, graph, tenant, processor_chain):
        assert not graph.check_circular_reference(None, processor_chain[2].id, tenant.id)


class TestDataQualityQueries:
    def test_find_orphaned_sub_processors(self, graph, tenant, processor_chain, force_parent):
        _, sub1, _, _ = processor_chain
        force_parent(sub1.id, None)

        orphans = graph.find_orphaned(tenant.id)

        assert [o.id for o in orphans] == [sub1.id]

    def test_roots_of_root_types_are_not_orphans(self, graph, tenant, processor_chain):
        assert graph.find_orphaned(tenant.id) == []

    def test_find_unlinked(self, graph, tenant, make_node, processor_chain):
        unlinked_processor = make_node(NodeType.PROCESSOR, "No org")
        make_node(NodeType.INTERNAL_DEPARTMENT, "Legal")

        unlinked_ids = {n.id for n in graph.find_unlinked(tenant.id)}

        assert unlinked_processor.id in unlinked_ids
        # sub-processors were created without an organization too
        assert processor_chain[1].id in unlinked_ids
        assert processor_chain[0].id not in unlinked_ids

    def test_find_cycles(self, graph, tenant, department_chain, force_parent, captured_logs):
        a, b, c = department_chain(3)
        department_chain(2)
        force_parent(a.id, c.id)

        cycles = graph.find_cycles(tenant.id)

        assert len(cycles) == 1
        assert set(cycles[0]) == {a.id, b.id, c.id}
        assert any(r["message"] == "hierarchy_cycle_found" for r in captured_logs())

    def test_clean_graph_has_no_cycles(self, graph, tenant, processor_chain):
        assert graph.find_cycles(tenant.id) == []

    def test_find_depth_violations(self, graph, tenant, make_node, external_org, force_parent):
        processor = make_node(NodeType.PROCESSOR, external_organization_id=external_org.id)
        chain = [processor]
        for _ in range(5):
            chain.append(make_node(NodeType.SUB_PROCESSOR, parent_id=chain[-1].id))
        extra = make_node(NodeType.SUB_PROCESSOR, parent_id=processor.id)
        force_parent(extra.id, chain[-1].id)

        violations = graph.find_depth_violations(tenant.id)

        assert len(violations) == 1
        assert violations[0].node.id == extra.id
        assert violations[0].depth == 6
        assert violations[0].max_depth == 5

    def test_cycle_members_are_not_depth_violations(
        self, graph, tenant, department_chain, force_parent,
    ):
        a, _, c = department_chain(3)
        force_parent(a.id, c.id)
        assert graph.find_depth_violations(tenant.id) == []

    def test_queries_are_tenant_scoped(self, graph, other_tenant, processor_chain, force_parent):
        force_parent(processor_chain[1].id, None)
        assert graph.find_orphaned(other_tenant.id) == []
        assert graph.find_unlinked(other_tenant.id) == []


class TestListByType:
    def test_keyset_pagination_covers_all(self, graph, tenant, make_node):
        created = {make_node(NodeType.SERVICE_PROVIDER).id for _ in range(5)}
        make_node(NodeType.INTERNAL_DEPARTMENT)

        seen = []
        cursor = None
        pages = 0
        while True:
            page = graph.list_by_type(tenant.id, NodeType.SERVICE_PROVIDER, limit=2, cursor=cursor)
            seen.extend(n.id for n in page.items)
            pages += 1
            if page.next_cursor is None:
                break
            cursor = page.next_cursor

        assert set(seen) == created
        assert len(seen) == 5
        assert pages == 3

    def test_exact_page_has_no_cursor(self, graph, tenant, make_node):
        for _ in range(2):
            make_node(NodeType.SERVICE_PROVIDER)
        page = graph.list_by_type(tenant.id, "SERVICE_PROVIDER", limit=2)
        assert len(page.items) == 2
        assert page.next_cursor is None
