"""
ChangeInterceptionMiddleware -- generic change logging for tracked entities.

Responsibility:
    Wraps create / update / delete of any entity type registered in a
    TrackingRegistry and appends immutable ChangeLogEntry rows describing
    exactly the tracked transitions, in the caller's transaction.

Architecture position:
    Kernel > Services.  The only writer of change_log_entries.  Contains no
    per-type logic: everything type-specific comes from TrackedEntitySpec.

Invariants enforced:
    - create: exactly one CREATED entry, field_changed NULL, old_value NULL,
      new_value = flattened snapshot.
    - update: the row is re-read ``FOR UPDATE`` (tenant-filtered) before the
      change; one UPDATED entry per payload field that is tracked AND whose
      value changed.  Each entry carries the complete before/after snapshots.
      Untracked fields never produce entries.
    - soft delete: a ``soft_delete_field`` flip True -> False is recorded as
      DELETED instead of UPDATED.
    - delete: one DELETED entry, old_value = final snapshot, new_value NULL.
    - Per-entity ``revision`` increases by one per entry.
    - Atomicity: only ``flush()``.  A failing log write propagates and the
      caller's rollback discards the entity write too.

Failure modes:
    - UntrackedEntityTypeError: entity type not registered.
    - TrackedEntityNotFoundError: row absent in the tenant.
    - UnknownFieldError / ImmutableFieldError: bad update payload.
    - ConcurrentChangeLogWriteError: revision taken by a concurrent writer.

Audit relevance:
    Change tracking can be switched off (``enabled=False``) for bulk data
    repair.  Every pass-through then logs ``change_tracking_disabled`` so the
    gap in the audit trail is itself visible.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from compliance_kernel.db.base import AUDIT_METADATA_COLUMNS
from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.tracking import (
    ChangeContext,
    ChangeType,
    TrackedEntitySpec,
    TrackingRegistry,
)
from compliance_kernel.exceptions import (
    ConcurrentChangeLogWriteError,
    ImmutableFieldError,
    TrackedEntityNotFoundError,
    UnknownFieldError,
)
from compliance_kernel.logging_config import get_logger
from compliance_kernel.models.change_log import ChangeLogEntry
from compliance_kernel.services.base import BaseService
from compliance_kernel.services.snapshot_flattener import SnapshotFlattener, column_keys

logger = get_logger("services.change_interception")

T = TypeVar("T")

IDENTITY_FIELDS: frozenset[str] = frozenset({"id", "tenant_id"})


@dataclass(frozen=True)
class FieldTransition:
    """One tracked field whose value differs between two snapshots."""

    field: str
    change_type: ChangeType
    old: Any
    new: Any


class ChangeInterceptionMiddleware(BaseService):
    """
    Generic interception of tracked entity writes.

    Contract:
        All methods run inside the caller's transaction and flush only.
        Callers pass a ChangeContext holding the trusted tenant and actor.

    Guarantees:
        - Every entry written carries ``context.tenant_id``.
        - No entries are written when ``enabled`` is False.

    Non-goals:
        - Hierarchy validation.  NodeService validates before calling here.
    """

    def __init__(
        self,
        session: Session,
        registry: TrackingRegistry,
        clock: Clock | None = None,
        enabled: bool = True,
        flattener: SnapshotFlattener | None = None,
    ):
        super().__init__(session)
        self.registry = registry
        self.clock = clock or SystemClock()
        self.enabled = enabled
        self.flattener = flattener or SnapshotFlattener(session, registry)

    # =========================================================================
    # Create
    # =========================================================================

    def create(
        self,
        entity_type: str,
        values: Mapping[str, Any],
        context: ChangeContext,
    ) -> Any:
        """
        Insert a tracked row and log it as CREATED.

        Args:
            entity_type: Registered entity type tag.
            values: Column values.  ``tenant_id`` and ``created_by_id`` are
                taken from ``context``.
            context: Trusted tenant/actor context.

        Returns:
            The flushed ORM instance.
        """
        spec = self.registry.get(entity_type)
        self._check_payload(spec, values)
        row = spec.model(
            **values,
            tenant_id=context.tenant_id,
            created_by_id=context.actor_id,
        )

        def _add() -> Any:
            self.session.add(row)
            return row

        return self.intercept_create(_add, context)

    def intercept_create(self, operation: Callable[[], T], context: ChangeContext) -> T:
        """
        Run ``operation`` (which must add one tracked row to the session and
        return it), flush, and log a CREATED entry for the returned row.
        """
        row = operation()
        self.session.flush()
        spec = self.registry.for_model(type(row))

        if not self._tracking_enabled(spec, "create", row.id):
            return row

        self._append_entries(
            spec,
            row.id,
            [(ChangeType.CREATED, None, None, self.flattener.flatten(row, spec))],
            context,
        )
        return row

    # =========================================================================
    # Update
    # =========================================================================

    def update(
        self,
        entity_type: str,
        entity_id: UUID,
        changes: Mapping[str, Any],
        context: ChangeContext,
    ) -> Any:
        """
        Apply ``changes`` to a tracked row and log tracked transitions.

        Args:
            entity_type: Registered entity type tag.
            entity_id: Row id.
            changes: Field -> new value.  Unknown or identity fields raise.
            context: Trusted tenant/actor context.

        Returns:
            The updated, flushed ORM instance.

        Raises:
            TrackedEntityNotFoundError: Row absent in ``context.tenant_id``.
            UnknownFieldError: ``changes`` names a non-column attribute.
            ImmutableFieldError: ``changes`` names id/tenant/audit fields.
        """
        spec = self.registry.get(entity_type)
        self._check_payload(spec, changes)

        def _apply(row: Any) -> None:
            for key, value in changes.items():
                setattr(row, key, value)

        return self.intercept_update(entity_type, entity_id, _apply, context, fields=changes.keys())

    def intercept_update(
        self,
        entity_type: str,
        entity_id: UUID,
        operation: Callable[[Any], None],
        context: ChangeContext,
        fields: Iterable[str] | None = None,
    ) -> Any:
        """
        Lock and load the row, run ``operation(row)``, flush, and log.

        ``fields`` is the update payload.  When omitted, every tracked field
        is considered part of the payload.
        """
        spec = self.registry.get(entity_type)
        row = self.load_for_update(spec, entity_id, context.tenant_id)

        before = self.flattener.flatten(row, spec)
        before_values = self.flattener.column_values(row, spec)

        operation(row)
        if hasattr(row, "updated_by_id"):
            row.updated_by_id = context.actor_id
        self.session.flush()

        if not self._tracking_enabled(spec, "update", row.id):
            return row

        after_values = self.flattener.column_values(row, spec)
        payload = set(fields) if fields is not None else set(spec.tracked_fields)
        transitions = self.diff(spec, before_values, after_values, payload)
        if not transitions:
            logger.debug(
                "no_tracked_changes",
                extra={"entity_type": spec.entity_type, "entity_id": str(row.id)},
            )
            return row

        after = self.flattener.flatten(row, spec)
        self._append_entries(
            spec,
            row.id,
            [(t.change_type, t.field, before, after) for t in transitions],
            context,
        )
        return row

    @staticmethod
    def diff(
        spec: TrackedEntitySpec,
        before: Mapping[str, Any],
        after: Mapping[str, Any],
        payload: Iterable[str],
    ) -> list[FieldTransition]:
        """
        Tracked transitions between two column-value snapshots.

        Only fields in ``payload`` and in ``spec.tracked_fields`` whose
        values differ are returned, ordered by field name.
        """
        transitions: list[FieldTransition] = []
        for name in sorted(set(payload) & spec.tracked_fields):
            old, new = before.get(name), after.get(name)
            if old == new:
                continue
            change_type = ChangeType.UPDATED
            if name == spec.soft_delete_field and old is True and new is False:
                change_type = ChangeType.DELETED
            transitions.append(FieldTransition(name, change_type, old, new))
        return transitions

    # =========================================================================
    # Delete
    # =========================================================================

    def delete(self, entity_type: str, entity_id: UUID, context: ChangeContext) -> dict[str, Any]:
        """
        Delete a tracked row and log a DELETED entry carrying its final state.

        Returns:
            The final flattened snapshot.
        """
        spec = self.registry.get(entity_type)
        row = self.load_for_update(spec, entity_id, context.tenant_id)
        final = self.flattener.flatten(row, spec)

        if self._tracking_enabled(spec, "delete", row.id):
            self._append_entries(spec, row.id, [(ChangeType.DELETED, None, final, None)], context)

        self.session.delete(row)
        self.session.flush()
        return final

    # =========================================================================
    # Internals
    # =========================================================================

    def load_for_update(self, spec: TrackedEntitySpec, entity_id: UUID, tenant_id: UUID) -> Any:
        """Tenant-filtered ``SELECT ... FOR UPDATE`` of a tracked row."""
        model = spec.model
        stmt = (
            select(model)
            .where(model.id == entity_id, model.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = self.session.execute(stmt).scalar_one_or_none()
        if row is None:
            raise TrackedEntityNotFoundError(spec.entity_type, str(entity_id))
        return row

    def _check_payload(self, spec: TrackedEntitySpec, payload: Mapping[str, Any]) -> None:
        keys = set(column_keys(spec.model))
        for name in payload:
            if name in IDENTITY_FIELDS or name in AUDIT_METADATA_COLUMNS:
                raise ImmutableFieldError(spec.entity_type, name)
            if name not in keys:
                raise UnknownFieldError(spec.entity_type, name)

    def _tracking_enabled(self, spec: TrackedEntitySpec, operation: str, entity_id: UUID) -> bool:
        if self.enabled:
            return True
        logger.warning(
            "change_tracking_disabled",
            extra={
                "entity_type": spec.entity_type,
                "entity_id": str(entity_id),
                "operation": operation,
            },
        )
        return False

    def _next_revision(self, spec: TrackedEntitySpec, entity_id: UUID, tenant_id: UUID) -> int:
        stmt = select(func.max(ChangeLogEntry.revision)).where(
            ChangeLogEntry.tenant_id == tenant_id,
            ChangeLogEntry.entity_type == spec.entity_type,
            ChangeLogEntry.entity_id == entity_id,
        )
        current = self.session.execute(stmt).scalar()
        return (current or 0) + 1

    def _append_entries(
        self,
        spec: TrackedEntitySpec,
        entity_id: UUID,
        entries: list[tuple[ChangeType, str | None, dict | None, dict | None]],
        context: ChangeContext,
    ) -> list[ChangeLogEntry]:
        revision = self._next_revision(spec, entity_id, context.tenant_id)
        changed_at = self.clock.now()
        written: list[ChangeLogEntry] = []

        for offset, (change_type, field_name, old_value, new_value) in enumerate(entries):
            entry = ChangeLogEntry(
                tenant_id=context.tenant_id,
                entity_type=spec.entity_type,
                entity_id=entity_id,
                revision=revision + offset,
                change_type=change_type.value,
                field_changed=field_name,
                old_value=old_value,
                new_value=new_value,
                changed_at=changed_at,
                actor_id=context.actor_id,
                change_reason=context.change_reason,
            )
            self.session.add(entry)
            written.append(entry)

        try:
            self.session.flush()
        except IntegrityError as exc:
            logger.error(
                "change_log_revision_conflict",
                extra={
                    "entity_type": spec.entity_type,
                    "entity_id": str(entity_id),
                    "revision": revision,
                },
            )
            raise ConcurrentChangeLogWriteError(
                spec.entity_type, str(entity_id), revision
            ) from exc

        for entry in written:
            logger.info(
                "change_logged",
                extra={
                    "entity_type": entry.entity_type,
                    "entity_id": str(entry.entity_id),
                    "change_type": entry.change_type,
                    "field_changed": entry.field_changed,
                    "revision": entry.revision,
                },
            )
        return written
