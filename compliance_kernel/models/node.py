"""
Module: compliance_kernel.models.node
Responsibility: ORM persistence for nodes of the compliance record graph
    (data recipients: processors, sub-processors, departments, ...).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced (by NodeService + HierarchyValidationService, before
any write reaches this table):
    - parent_id != id.
    - Parent belongs to the same tenant.
    - Parent type is allowed for the node type; depth <= type max depth.
    - The parent-pointer graph is acyclic.
    - hierarchy_kind is derived from type, never caller-supplied.

Failure modes:
    - IntegrityError if parent_id / external_organization_id / country_id
      reference a missing row.

Audit relevance:
    Node is a tracked entity type ("Node").  Every create, tracked-field
    update and delete is recorded in change_log_entries with a flattened
    snapshot.  ``description`` and ``name`` are deliberately untracked.
"""

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import TenantScopedBase, UUIDString


class Node(TenantScopedBase):
    """
    A graph-bearing compliance record with an optional parent pointer.

    Contract:
        ``type`` holds a NodeType value and ``hierarchy_kind`` a
        HierarchyKind value (or NULL).  Rows are written only through
        NodeService so every write is validated and logged.

    Non-goals:
        - No ORM relationship() to parent/children.  Traversal goes through
          GraphQueryEngine, which re-checks tenant scope at every step.
    """

    __tablename__ = "nodes"
    __table_args__ = (
        Index("idx_node_parent", "parent_id"),
        Index("idx_node_tenant_type", "tenant_id", "type"),
    )

    type: Mapped[str] = mapped_column(String(50), nullable=False)

    hierarchy_kind: Mapped[str | None] = mapped_column(String(50), nullable=True)

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("nodes.id", ondelete="SET NULL"),
        nullable=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)

    external_organization_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("external_organizations.id", ondelete="SET NULL"),
        nullable=True,
    )

    country_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("countries.id"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Node {self.type} {self.name}>"

    @property
    def is_root(self) -> bool:
        return self.parent_id is None
