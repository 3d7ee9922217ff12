"""
Module: compliance_kernel.models.change_log
Responsibility: ORM persistence for the append-only change log.  One row per
    observed transition of a tracked entity (creation, tracked-field change,
    deletion), each carrying flattened before/after snapshots.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: no UPDATE, no DELETE (ORM listeners in db/immutability.py,
      PostgreSQL triggers in db/sql/).  The single exception is tenant
      purge, which removes every entry of the purged tenant.
    - (tenant_id, entity_type, entity_id, revision) is unique, so each
      entity's entries form a gap-free, totally ordered sequence.
    - field_changed is NULL only for CREATED and hard-delete DELETED rows.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - IntegrityError on a duplicate revision (concurrent writer); surfaced
      as ConcurrentChangeLogWriteError by the interception middleware.

Audit relevance:
    This table IS the compliance audit trail for recipients and their
    processing locations.  Snapshots are value copies, so later edits to
    referenced countries or mechanisms never alter history.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import Base, UUIDString


class ChangeLogEntry(Base):
    """
    One immutable change-log row.

    Contract:
        Written exclusively by ChangeInterceptionMiddleware.  ``old_value``
        and ``new_value`` are complete flattened snapshots of the entity
        (not per-field diffs).

    Guarantees:
        - ``revision`` starts at 1 per entity and increases by 1 per entry.
        - ``change_type`` holds a ChangeType value.
    """

    __tablename__ = "change_log_entries"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "entity_type", "entity_id", "revision",
            name="uq_change_log_entity_revision",
        ),
        Index("idx_change_log_entity", "tenant_id", "entity_type", "entity_id"),
        Index("idx_change_log_changed_at", "tenant_id", "changed_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Tag of the tracked type (e.g. "Node", "ProcessingLocation")
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    revision: Mapped[int] = mapped_column(Integer, nullable=False)

    change_type: Mapped[str] = mapped_column(String(20), nullable=False)

    field_changed: Mapped[str | None] = mapped_column(String(100), nullable=True)

    old_value: Mapped[dict[str, Any] | None] = mapped_column(
        JSON(none_as_null=True),
        nullable=True,
    )

    new_value: Mapped[dict[str, Any] | None] = mapped_column(
        JSON(none_as_null=True),
        nullable=True,
    )

    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ChangeLogEntry {self.entity_type}:{self.entity_id} "
            f"r{self.revision} {self.change_type} {self.field_changed}>"
        )
