"""
Tests for HierarchyHealthService.
"""

from compliance_kernel.domain.node_types import NodeType


class TestHierarchyHealth:
    def test_clean_tenant_is_healthy(self, health_service, tenant, make_node, external_org, captured_logs):
        processor = make_node(NodeType.PROCESSOR, external_organization_id=external_org.id)
        make_node(NodeType.SUB_PROCESSOR, parent_id=processor.id, external_organization_id=external_org.id)
        make_node(NodeType.INTERNAL_DEPARTMENT)

        report = health_service.check_hierarchy_health(tenant.id)

        assert report.is_healthy
        assert report.total_issues == 0
        record = [r for r in captured_logs() if r["message"] == "hierarchy_health_checked"][-1]
        assert record["level"] == "INFO"

    def test_corrupted_tenant_reports_every_issue(
        self, health_service, tenant, make_node, external_org, force_parent, captured_logs,
    ):
        a = make_node(NodeType.INTERNAL_DEPARTMENT, "a")
        b = make_node(NodeType.INTERNAL_DEPARTMENT, "b", parent_id=a.id)
        force_parent(a.id, b.id)
        processor = make_node(NodeType.PROCESSOR, external_organization_id=external_org.id)
        orphan = make_node(
            NodeType.SUB_PROCESSOR, parent_id=processor.id, external_organization_id=external_org.id,
        )
        force_parent(orphan.id, None)
        unlinked = make_node(NodeType.SERVICE_PROVIDER)

        report = health_service.check_hierarchy_health(tenant.id)

        assert not report.is_healthy
        assert [set(c) for c in report.cycles] == [{a.id, b.id}]
        assert [n.id for n in report.orphans] == [orphan.id]
        assert [n.id for n in report.unlinked] == [unlinked.id]
        assert report.depth_violations == ()
        assert report.total_issues == 3
        record = [r for r in captured_logs() if r["message"] == "hierarchy_health_checked"][-1]
        assert record["level"] == "WARNING"
        assert record["cycles"] == 1

    def test_report_is_tenant_scoped(self, health_service, other_tenant, make_node, force_parent):
        a = make_node(NodeType.INTERNAL_DEPARTMENT)
        b = make_node(NodeType.INTERNAL_DEPARTMENT, parent_id=a.id)
        force_parent(a.id, b.id)

        assert health_service.check_hierarchy_health(other_tenant.id).is_healthy
