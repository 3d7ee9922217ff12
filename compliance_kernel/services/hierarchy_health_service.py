"""
HierarchyHealthService -- data-quality report over a tenant's node graph.

Responsibility:
    Runs every graph data-quality query for one tenant and returns a single
    immutable report: cycles, orphans (types that require a parent but have
    none), depth violations, and nodes missing an expected external
    organization link.

Architecture position:
    Kernel > Services.  Read-only; a thin aggregation over GraphQueryEngine.

Audit relevance:
    Corrupted data (cycles, over-deep chains) can only arise from writes
    that bypassed NodeService.  The report makes it visible instead of
    letting traversals fail.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from compliance_kernel.domain.hierarchy_rules import HierarchyRuleTable
from compliance_kernel.logging_config import get_logger
from compliance_kernel.selectors.graph_selector import (
    DEFAULT_ANCESTOR_CEILING,
    DepthViolation,
    GraphQueryEngine,
    NodeInfo,
)

logger = get_logger("services.hierarchy_health")


@dataclass(frozen=True)
class HierarchyHealthReport:
    tenant_id: UUID
    cycles: tuple[tuple[UUID, ...], ...]
    orphans: tuple[NodeInfo, ...]
    depth_violations: tuple[DepthViolation, ...]
    unlinked: tuple[NodeInfo, ...]

    @property
    def total_issues(self) -> int:
        return (
            len(self.cycles)
            + len(self.orphans)
            + len(self.depth_violations)
            + len(self.unlinked)
        )

    @property
    def is_healthy(self) -> bool:
        return self.total_issues == 0


class HierarchyHealthService:
    """Aggregates GraphQueryEngine data-quality queries."""

    def __init__(
        self,
        session: Session,
        rule_table: HierarchyRuleTable | None = None,
        ancestor_ceiling: int = DEFAULT_ANCESTOR_CEILING,
    ):
        self.session = session
        self.graph = GraphQueryEngine(session, rule_table, ancestor_ceiling)

    def check_hierarchy_health(self, tenant_id: UUID) -> HierarchyHealthReport:
        report = HierarchyHealthReport(
            tenant_id=tenant_id,
            cycles=tuple(self.graph.find_cycles(tenant_id)),
            orphans=tuple(self.graph.find_orphaned(tenant_id)),
            depth_violations=tuple(self.graph.find_depth_violations(tenant_id)),
            unlinked=tuple(self.graph.find_unlinked(tenant_id)),
        )
        log = logger.info if report.is_healthy else logger.warning
        log(
            "hierarchy_health_checked",
            extra={
                "tenant_id": str(tenant_id),
                "cycles": len(report.cycles),
                "orphans": len(report.orphans),
                "depth_violations": len(report.depth_violations),
                "unlinked": len(report.unlinked),
            },
        )
        return report
