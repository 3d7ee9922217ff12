"""
Config -> Kernel Bridges.

Functions that build configured kernel services from a KernelConfig.
These live in compliance_config (the producer) because the kernel must
NEVER import compliance_config.

Usage:
    from compliance_config import get_active_config
    from compliance_config.bridges import build_node_service

    config = get_active_config()
    with session_scope() as session:
        nodes = build_node_service(session, config)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from compliance_config.schema import KernelConfig
from compliance_kernel.domain.clock import Clock
from compliance_kernel.selectors.graph_selector import GraphQueryEngine
from compliance_kernel.services.hierarchy_health_service import HierarchyHealthService
from compliance_kernel.services.node_service import NodeService
from compliance_kernel.services.processing_location_service import ProcessingLocationService


def build_node_service(
    session: Session,
    config: KernelConfig,
    clock: Clock | None = None,
) -> NodeService:
    return NodeService(
        session,
        rule_table=config.rule_table,
        clock=clock,
        tracking_enabled=config.change_tracking_enabled,
        ancestor_ceiling=config.ancestor_ceiling,
    )


def build_location_service(
    session: Session,
    config: KernelConfig,
    clock: Clock | None = None,
) -> ProcessingLocationService:
    return ProcessingLocationService(
        session,
        clock=clock,
        tracking_enabled=config.change_tracking_enabled,
    )


def build_graph_engine(session: Session, config: KernelConfig) -> GraphQueryEngine:
    return GraphQueryEngine(session, config.rule_table, config.ancestor_ceiling)


def build_health_service(session: Session, config: KernelConfig) -> HierarchyHealthService:
    return HierarchyHealthService(session, config.rule_table, config.ancestor_ceiling)
