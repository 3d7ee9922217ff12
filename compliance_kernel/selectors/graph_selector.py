"""
Module: compliance_kernel.selectors.graph_selector
Responsibility: GraphQueryEngine -- read-side traversal of the self-referential
    node table: direct children, bounded descendant tree, ancestor chain,
    cycle check, depth, and data-quality queries (orphans, cycles, depth
    violations, unlinked nodes).
Architecture position: Kernel > Selectors.  Read-only.  Used by
    HierarchyValidationService, NodeService and HierarchyHealthService.

Invariants enforced:
    - Tenant scope at every step: the starting node AND every node reached
      while walking is loaded with ``tenant_id = :tenant``.  A parent
      pointer into another tenant ends the walk as if the parent were
      missing.
    - Termination on corrupted data: descendant walks keep a visited set
      and a depth ceiling; ancestor walks keep a seen set and a hard
      iteration ceiling.  A revisited id is a data-quality signal, logged,
      never an infinite loop.

Depth convention:
    Roots have depth 0.  In a descendant tree the direct children of the
    starting node are depth 1; the starting node itself is not returned.

Failure modes:
    - NodeNotFoundError when the starting node does not exist in the tenant.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import select

from compliance_kernel.domain.hierarchy_rules import HierarchyRuleTable, default_rule_table
from compliance_kernel.domain.node_types import HierarchyKind, NodeType
from compliance_kernel.domain.validation import as_uuid
from compliance_kernel.exceptions import NodeNotFoundError
from compliance_kernel.logging_config import get_logger
from compliance_kernel.models.node import Node
from compliance_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.graph")

DEFAULT_ANCESTOR_CEILING = 15


@dataclass(frozen=True)
class NodeInfo:
    """Immutable DTO for a node row."""

    id: UUID
    tenant_id: UUID
    type: NodeType
    hierarchy_kind: HierarchyKind | None
    parent_id: UUID | None
    name: str
    description: str | None
    purpose: str | None
    external_organization_id: UUID | None
    country_id: UUID | None
    is_active: bool
    created_at: datetime | None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


@dataclass(frozen=True)
class DescendantNode:
    node: NodeInfo
    depth: int


class WalkTermination(str, Enum):
    """Why an ancestor walk stopped."""

    ROOT = "root"
    CYCLE = "cycle"
    CEILING = "ceiling"
    MISSING_PARENT = "missing_parent"


@dataclass(frozen=True)
class AncestorWalk:
    """Ancestors from immediate parent to the last reachable node."""

    ancestors: tuple[NodeInfo, ...]
    termination: WalkTermination

    @property
    def ids(self) -> tuple[UUID, ...]:
        return tuple(n.id for n in self.ancestors)

    @property
    def is_clean(self) -> bool:
        """True iff the walk ended at a genuine root."""
        return self.termination == WalkTermination.ROOT


@dataclass(frozen=True)
class NodePage:
    items: tuple[NodeInfo, ...]
    next_cursor: UUID | None


@dataclass(frozen=True)
class DepthViolation:
    node: NodeInfo
    depth: int
    max_depth: int


def to_node_info(node: Node) -> NodeInfo:
    """Convert ORM Node to NodeInfo DTO."""
    return NodeInfo(
        id=node.id,
        tenant_id=node.tenant_id,
        type=NodeType(node.type),
        hierarchy_kind=HierarchyKind(node.hierarchy_kind) if node.hierarchy_kind else None,
        parent_id=node.parent_id,
        name=node.name,
        description=node.description,
        purpose=node.purpose,
        external_organization_id=node.external_organization_id,
        country_id=node.country_id,
        is_active=node.is_active,
        created_at=node.created_at,
    )


class GraphQueryEngine(BaseSelector):
    """
    Tenant-scoped traversal primitives over ``nodes``.

    Contract:
        Every public method takes an explicit ``tenant_id``.  Results never
        contain rows of another tenant.

    Guarantees:
        - ``get_descendant_tree`` performs at most ``depth_ceiling`` levels
          of expansion, each level a single query.
        - ``walk_ancestors`` performs at most ``ancestor_ceiling`` parent
          lookups.  The ceiling is never below the largest configured
          ``max_depth`` + 1, so every chain the rules allow walks to ROOT.

    Non-goals:
        - No caching.  Each call reads the current transaction's view.
    """

    def __init__(
        self,
        session,
        rule_table: HierarchyRuleTable | None = None,
        ancestor_ceiling: int = DEFAULT_ANCESTOR_CEILING,
    ):
        super().__init__(session)
        self.rule_table = rule_table or default_rule_table()
        # A valid chain of max_depth links must walk to ROOT.
        floor = self.rule_table.max_configured_depth + 1
        if ancestor_ceiling < floor:
            logger.warning(
                "ancestor_ceiling_raised",
                extra={"requested": ancestor_ceiling, "ceiling": floor},
            )
        self.ancestor_ceiling = max(ancestor_ceiling, floor)

    @property
    def depth_ceiling(self) -> int:
        return self.rule_table.max_configured_depth

    # =========================================================================
    # Single-node access
    # =========================================================================

    def _load(self, node_id: UUID, tenant_id: UUID) -> Node | None:
        stmt = select(Node).where(Node.id == node_id, Node.tenant_id == tenant_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def _require(self, node_id: UUID, tenant_id: UUID) -> Node:
        node = self._load(node_id, tenant_id)
        if node is None:
            raise NodeNotFoundError(str(node_id))
        return node

    def get_node(self, node_id: UUID, tenant_id: UUID) -> NodeInfo | None:
        """Node by id within the tenant, or None."""
        node = self._load(node_id, tenant_id)
        return to_node_info(node) if node is not None else None

    # =========================================================================
    # Downward traversal
    # =========================================================================

    def get_direct_children(self, node_id: UUID, tenant_id: UUID) -> list[NodeInfo]:
        """
        Children of ``node_id`` in the tenant, oldest first.

        Raises:
            NodeNotFoundError: If ``node_id`` is not in the tenant.
        """
        self._require(node_id, tenant_id)
        stmt = (
            select(Node)
            .where(Node.parent_id == node_id, Node.tenant_id == tenant_id)
            .order_by(Node.created_at, Node.id)
        )
        return [to_node_info(n) for n in self.session.execute(stmt).scalars()]

    def get_descendant_tree(
        self,
        node_id: UUID,
        tenant_id: UUID,
        max_depth: int | None = None,
    ) -> list[DescendantNode]:
        """
        Every descendant of ``node_id`` annotated with its depth.

        Level-by-level breadth-first walk with a frontier set and a visited
        set.  Ordered by depth, then creation time.

        Args:
            node_id: Starting node (not included in the result).
            tenant_id: Tenant scope.
            max_depth: Optional smaller ceiling; clamped to the configured
                ceiling (largest ``max_depth`` in the rule table).

        Raises:
            NodeNotFoundError: If ``node_id`` is not in the tenant.
        """
        self._require(node_id, tenant_id)

        ceiling = self.depth_ceiling
        if max_depth is not None:
            ceiling = min(max_depth, ceiling)

        visited: set[UUID] = {node_id}
        frontier: set[UUID] = {node_id}
        result: list[DescendantNode] = []

        for depth in range(1, ceiling + 1):
            if not frontier:
                break
            stmt = (
                select(Node)
                .where(Node.parent_id.in_(frontier), Node.tenant_id == tenant_id)
                .order_by(Node.created_at, Node.id)
            )
            next_frontier: set[UUID] = set()
            for child in self.session.execute(stmt).scalars():
                if child.id in visited:
                    logger.warning(
                        "descendant_cycle_detected",
                        extra={
                            "tenant_id": str(tenant_id),
                            "start_node_id": str(node_id),
                            "revisited_node_id": str(child.id),
                            "depth": depth,
                        },
                    )
                    continue
                visited.add(child.id)
                next_frontier.add(child.id)
                result.append(DescendantNode(node=to_node_info(child), depth=depth))
            frontier = next_frontier

        return result

    # =========================================================================
    # Upward traversal
    # =========================================================================

    def walk_ancestors(self, node_id: UUID, tenant_id: UUID) -> AncestorWalk:
        """
        Walk parent pointers from ``node_id`` towards the root.

        Stops on a NULL parent (ROOT), a revisited id (CYCLE), a parent
        missing from the tenant (MISSING_PARENT), or after
        ``ancestor_ceiling`` steps (CEILING).

        Raises:
            NodeNotFoundError: If ``node_id`` is not in the tenant.
        """
        start = self._require(node_id, tenant_id)
        seen: set[UUID] = {start.id}
        ancestors: list[NodeInfo] = []
        parent_id = start.parent_id

        for _ in range(self.ancestor_ceiling):
            if parent_id is None:
                return AncestorWalk(tuple(ancestors), WalkTermination.ROOT)
            if parent_id in seen:
                logger.warning(
                    "ancestor_cycle_detected",
                    extra={
                        "tenant_id": str(tenant_id),
                        "start_node_id": str(node_id),
                        "revisited_node_id": str(parent_id),
                    },
                )
                return AncestorWalk(tuple(ancestors), WalkTermination.CYCLE)
            parent = self._load(parent_id, tenant_id)
            if parent is None:
                return AncestorWalk(tuple(ancestors), WalkTermination.MISSING_PARENT)
            seen.add(parent.id)
            ancestors.append(to_node_info(parent))
            parent_id = parent.parent_id

        if parent_id is None:
            return AncestorWalk(tuple(ancestors), WalkTermination.ROOT)
        logger.warning(
            "ancestor_ceiling_reached",
            extra={
                "tenant_id": str(tenant_id),
                "start_node_id": str(node_id),
                "ceiling": self.ancestor_ceiling,
            },
        )
        return AncestorWalk(tuple(ancestors), WalkTermination.CEILING)

    def get_ancestor_chain(self, node_id: UUID, tenant_id: UUID) -> list[NodeInfo]:
        """Ancestors ordered from immediate parent to root."""
        return list(self.walk_ancestors(node_id, tenant_id).ancestors)

    def check_circular_reference(
        self,
        node_id: UUID | None,
        proposed_parent_id: UUID,
        tenant_id: UUID,
    ) -> bool:
        """
        True iff making ``proposed_parent_id`` the parent of ``node_id``
        would close a cycle: the ids are equal, or ``node_id`` is already
        an ancestor of the proposed parent.  A new node (``node_id`` None)
        can never close a cycle.
        """
        if node_id is None:
            return False
        node_id = as_uuid(node_id)
        proposed_parent_id = as_uuid(proposed_parent_id)
        if node_id == proposed_parent_id:
            return True
        return node_id in self.walk_ancestors(proposed_parent_id, tenant_id).ids

    def calculate_depth(self, node_id: UUID, tenant_id: UUID) -> int:
        """Length of the ancestor chain; 0 for a root."""
        return len(self.walk_ancestors(node_id, tenant_id).ancestors)

    # =========================================================================
    # Listing and data-quality queries
    # =========================================================================

    def list_by_type(
        self,
        tenant_id: UUID,
        node_type: NodeType | str,
        limit: int = 50,
        cursor: UUID | None = None,
    ) -> NodePage:
        """
        Keyset-paginated nodes of one type, ordered by id.

        Pass the returned ``next_cursor`` back as ``cursor`` for the next
        page; it is None on the last page.
        """
        stmt = select(Node).where(
            Node.tenant_id == tenant_id,
            Node.type == NodeType(node_type).value,
        )
        if cursor is not None:
            stmt = stmt.where(Node.id > cursor)
        stmt = stmt.order_by(Node.id).limit(limit + 1)

        rows = list(self.session.execute(stmt).scalars())
        has_more = len(rows) > limit
        items = tuple(to_node_info(n) for n in rows[:limit])
        next_cursor = items[-1].id if has_more and items else None
        return NodePage(items=items, next_cursor=next_cursor)

    def find_orphaned(
        self,
        tenant_id: UUID,
        types_that_should_have_parent: Iterable[NodeType | str] | None = None,
    ) -> list[NodeInfo]:
        """Nodes of a parent-requiring type whose parent_id is NULL."""
        if types_that_should_have_parent is None:
            types_that_should_have_parent = self.rule_table.types_requiring_parent
        type_values = [NodeType(t).value for t in types_that_should_have_parent]
        if not type_values:
            return []
        stmt = (
            select(Node)
            .where(
                Node.tenant_id == tenant_id,
                Node.parent_id.is_(None),
                Node.type.in_(type_values),
            )
            .order_by(Node.created_at, Node.id)
        )
        return [to_node_info(n) for n in self.session.execute(stmt).scalars()]

    def find_unlinked(
        self,
        tenant_id: UUID,
        types_requiring_external_org: Iterable[NodeType | str] | None = None,
    ) -> list[NodeInfo]:
        """Nodes of a type that needs an external organization but has none."""
        if types_requiring_external_org is None:
            types_requiring_external_org = self.rule_table.types_requiring_external_org
        type_values = [NodeType(t).value for t in types_requiring_external_org]
        if not type_values:
            return []
        stmt = (
            select(Node)
            .where(
                Node.tenant_id == tenant_id,
                Node.external_organization_id.is_(None),
                Node.type.in_(type_values),
            )
            .order_by(Node.created_at, Node.id)
        )
        return [to_node_info(n) for n in self.session.execute(stmt).scalars()]

    def _tenant_nodes(self, tenant_id: UUID) -> dict[UUID, NodeInfo]:
        stmt = select(Node).where(Node.tenant_id == tenant_id).order_by(Node.id)
        return {n.id: to_node_info(n) for n in self.session.execute(stmt).scalars()}

    @staticmethod
    def _cycles_in(parent_map: dict[UUID, UUID | None]) -> list[tuple[UUID, ...]]:
        walk_of: dict[UUID, int] = {}
        cycles: list[tuple[UUID, ...]] = []

        for walk_no, start in enumerate(sorted(parent_map, key=str)):
            if start in walk_of:
                continue
            path: list[UUID] = []
            current: UUID | None = start
            while current is not None and current in parent_map and current not in walk_of:
                walk_of[current] = walk_no
                path.append(current)
                current = parent_map[current]
            if current is not None and walk_of.get(current) == walk_no:
                cycle = path[path.index(current):]
                # rotate so the smallest id leads; makes reports stable
                pivot = min(range(len(cycle)), key=lambda i: str(cycle[i]))
                cycles.append(tuple(cycle[pivot:] + cycle[:pivot]))
        return cycles

    def find_cycles(self, tenant_id: UUID) -> list[tuple[UUID, ...]]:
        """
        Every parent-pointer cycle in the tenant, each listed once as the
        ids along the cycle (child -> parent order).
        """
        nodes = self._tenant_nodes(tenant_id)
        parent_map = {nid: n.parent_id for nid, n in nodes.items()}
        cycles = self._cycles_in(parent_map)
        for cycle in cycles:
            logger.warning(
                "hierarchy_cycle_found",
                extra={"tenant_id": str(tenant_id), "node_ids": [str(i) for i in cycle]},
            )
        return cycles

    def find_depth_violations(self, tenant_id: UUID) -> list[DepthViolation]:
        """
        Nodes whose depth exceeds their type's ``max_depth``.

        Nodes on, or hanging below, a cycle have no defined depth and are
        reported by ``find_cycles`` instead.
        """
        nodes = self._tenant_nodes(tenant_id)
        parent_map = {nid: n.parent_id for nid, n in nodes.items()}
        on_cycle = {nid for cycle in self._cycles_in(parent_map) for nid in cycle}

        depth: dict[UUID, int | None] = {}
        for start in parent_map:
            path: list[UUID] = []
            current: UUID | None = start
            while (
                current is not None
                and current in parent_map
                and current not in depth
                and current not in on_cycle
            ):
                path.append(current)
                current = parent_map[current]

            if current is None or current not in parent_map:
                base: int | None = -1
            elif current in on_cycle:
                base = None
            else:
                base = depth[current]

            for offset, nid in enumerate(reversed(path)):
                depth[nid] = None if base is None else base + 1 + offset

        violations: list[DepthViolation] = []
        for nid, info in nodes.items():
            node_depth = depth.get(nid)
            if node_depth is None:
                continue
            max_depth = self.rule_table.rule_for(info.type).max_depth
            if node_depth > max_depth:
                violations.append(DepthViolation(node=info, depth=node_depth, max_depth=max_depth))
        return violations
