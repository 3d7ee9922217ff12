"""
ChangeLogSelector -- read-only queries over change_log_entries.

Responsibility:
    Exposes a tenant's audit trail as immutable DTOs: per-entity history in
    commit order, recent activity, activity by actor or entity type, and
    aggregate counts.

Architecture position:
    Kernel > Selectors.  Read-only.  Never writes, never locks.

Invariants enforced:
    - Every query filters by ``tenant_id``.
    - Per-entity history is ordered by ``revision`` (the order entries
      were committed), never by wall-clock ``changed_at``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select

from compliance_kernel.domain.tracking import ChangeType
from compliance_kernel.models.change_log import ChangeLogEntry
from compliance_kernel.selectors.base import BaseSelector

DEFAULT_RECENT_LIMIT = 50


@dataclass(frozen=True)
class ChangeLogEntryInfo:
    """Immutable DTO for one change-log entry."""

    id: UUID
    tenant_id: UUID
    entity_type: str
    entity_id: UUID
    revision: int
    change_type: ChangeType
    field_changed: str | None
    old_value: dict[str, Any] | None
    new_value: dict[str, Any] | None
    changed_at: datetime
    actor_id: UUID | None
    change_reason: str | None


def to_entry_info(entry: ChangeLogEntry) -> ChangeLogEntryInfo:
    return ChangeLogEntryInfo(
        id=entry.id,
        tenant_id=entry.tenant_id,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        revision=entry.revision,
        change_type=ChangeType(entry.change_type),
        field_changed=entry.field_changed,
        old_value=entry.old_value,
        new_value=entry.new_value,
        changed_at=entry.changed_at,
        actor_id=entry.actor_id,
        change_reason=entry.change_reason,
    )


class ChangeLogSelector(BaseSelector):
    """Tenant-scoped audit trail queries."""

    def get_change_log(
        self,
        tenant_id: UUID,
        entity_type: str,
        entity_id: UUID,
    ) -> list[ChangeLogEntryInfo]:
        """Full history of one entity, oldest first (commit order)."""
        stmt = (
            select(ChangeLogEntry)
            .where(
                ChangeLogEntry.tenant_id == tenant_id,
                ChangeLogEntry.entity_type == entity_type,
                ChangeLogEntry.entity_id == entity_id,
            )
            .order_by(ChangeLogEntry.revision)
        )
        return [to_entry_info(e) for e in self.session.execute(stmt).scalars()]

    def get_recent_changes(
        self,
        tenant_id: UUID,
        since: datetime | None = None,
        limit: int = DEFAULT_RECENT_LIMIT,
    ) -> list[ChangeLogEntryInfo]:
        """Most recent entries across all entities, newest first."""
        stmt = select(ChangeLogEntry).where(ChangeLogEntry.tenant_id == tenant_id)
        if since is not None:
            stmt = stmt.where(ChangeLogEntry.changed_at >= since)
        stmt = stmt.order_by(
            ChangeLogEntry.changed_at.desc(),
            ChangeLogEntry.revision.desc(),
        ).limit(limit)
        return [to_entry_info(e) for e in self.session.execute(stmt).scalars()]

    def get_changes_by_actor(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        limit: int = DEFAULT_RECENT_LIMIT,
    ) -> list[ChangeLogEntryInfo]:
        stmt = (
            select(ChangeLogEntry)
            .where(
                ChangeLogEntry.tenant_id == tenant_id,
                ChangeLogEntry.actor_id == actor_id,
            )
            .order_by(ChangeLogEntry.changed_at.desc(), ChangeLogEntry.revision.desc())
            .limit(limit)
        )
        return [to_entry_info(e) for e in self.session.execute(stmt).scalars()]

    def get_changes_by_entity_type(
        self,
        tenant_id: UUID,
        entity_type: str,
        limit: int = DEFAULT_RECENT_LIMIT,
    ) -> list[ChangeLogEntryInfo]:
        stmt = (
            select(ChangeLogEntry)
            .where(
                ChangeLogEntry.tenant_id == tenant_id,
                ChangeLogEntry.entity_type == entity_type,
            )
            .order_by(ChangeLogEntry.changed_at.desc(), ChangeLogEntry.revision.desc())
            .limit(limit)
        )
        return [to_entry_info(e) for e in self.session.execute(stmt).scalars()]

    def get_change_stats_by_type(self, tenant_id: UUID) -> dict[str, dict[str, int]]:
        """
        Entry counts per entity type and change type.

        Returns:
            ``{"Node": {"CREATED": 3, "UPDATED": 5}, ...}``
        """
        stmt = (
            select(
                ChangeLogEntry.entity_type,
                ChangeLogEntry.change_type,
                func.count(ChangeLogEntry.id),
            )
            .where(ChangeLogEntry.tenant_id == tenant_id)
            .group_by(ChangeLogEntry.entity_type, ChangeLogEntry.change_type)
        )
        stats: dict[str, dict[str, int]] = {}
        for entity_type, change_type, count in self.session.execute(stmt):
            stats.setdefault(entity_type, {})[change_type] = count
        return stats
