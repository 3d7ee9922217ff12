"""
SnapshotFlattener -- frozen, denormalized snapshots of tracked rows.

Responsibility:
    Turns an ORM row plus its configured reference joins into a plain,
    self-contained, JSON-safe dict.  Each configured foreign key keeps its
    raw id and gains an embedded object with the referenced row's display
    fields, e.g. ``country_id`` -> ``country: {id, name, iso_code,
    gdpr_status}``.

Architecture position:
    Kernel > Services.  Used only by ChangeInterceptionMiddleware.

Invariants enforced:
    - The result is a VALUE COPY: UUIDs, datetimes, Decimals and enums are
      converted to strings, containers are rebuilt.  Nothing in a snapshot
      aliases ORM state, so later edits to a referenced country or
      mechanism cannot alter a stored snapshot.
    - Tenant-scoped join targets resolve only inside the row's own tenant.
      A reference into another tenant is treated as unresolved.
    - Audit metadata columns (created_at, updated_by_id, ...) are excluded;
      the change log records actor and time itself.

Failure modes:
    - ValueError at construction if a spec names a field that is not a
      mapped column of its model, or if the model is not tenant-scoped.
    - A dangling reference never raises: it embeds ``{"id": ..., "unresolved":
      true}`` and logs ``snapshot_reference_unresolved``.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from compliance_kernel.db.base import AUDIT_METADATA_COLUMNS
from compliance_kernel.domain.tracking import JoinSpec, TrackedEntitySpec, TrackingRegistry
from compliance_kernel.logging_config import get_logger

logger = get_logger("services.snapshot_flattener")


def to_json_safe(value: Any) -> Any:
    """Deep-copy ``value`` into JSON-compatible primitives."""
    if isinstance(value, Enum):
        return to_json_safe(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_json_safe(v) for v in value]
    return str(value)


def column_keys(model: type) -> tuple[str, ...]:
    """Mapped column attribute names of ``model``, in declaration order."""
    return tuple(attr.key for attr in inspect(model).column_attrs)


class SnapshotFlattener:
    """
    Builds flattened snapshots for the entity types of a TrackingRegistry.

    Contract:
        ``flatten(row, spec)`` reads the row's current (possibly flushed but
        uncommitted) state through the caller's session.

    Guarantees:
        - Keys are the model's column attribute names (minus audit
          metadata) plus one ``embed_as`` key per reference join.
        - A NULL foreign key embeds ``None``.
    """

    def __init__(self, session: Session, registry: TrackingRegistry):
        self.session = session
        self.registry = registry
        self._columns: dict[type, tuple[str, ...]] = {}
        for spec in registry:
            self._columns[spec.model] = self._validate_spec(spec)

    @staticmethod
    def _validate_spec(spec: TrackedEntitySpec) -> tuple[str, ...]:
        keys = column_keys(spec.model)
        if "tenant_id" not in keys:
            raise ValueError(f"{spec.entity_type}: tracked models must be tenant-scoped")
        for name in spec.tracked_fields:
            if name not in keys:
                raise ValueError(f"{spec.entity_type}: tracked field {name!r} is not a column")
        for join in spec.reference_joins:
            if join.field not in keys:
                raise ValueError(f"{spec.entity_type}: join field {join.field!r} is not a column")
            target_keys = column_keys(join.target)
            for display in join.display_fields:
                if display not in target_keys:
                    raise ValueError(
                        f"{spec.entity_type}: {join.target.__name__} has no column {display!r}"
                    )
        return tuple(k for k in keys if k not in AUDIT_METADATA_COLUMNS)

    def snapshot_fields(self, spec: TrackedEntitySpec) -> tuple[str, ...]:
        return self._columns[spec.model]

    def column_values(self, row: Any, spec: TrackedEntitySpec) -> dict[str, Any]:
        """JSON-safe copy of the row's own columns, without embedded joins."""
        return {key: to_json_safe(getattr(row, key)) for key in self._columns[spec.model]}

    def flatten(self, row: Any, spec: TrackedEntitySpec | None = None) -> dict[str, Any]:
        """
        Produce the flattened snapshot of ``row``.

        Args:
            row: ORM instance of a tracked model.
            spec: Its tracking descriptor; looked up by model when omitted.

        Returns:
            A new dict containing only JSON-safe values.
        """
        spec = spec or self.registry.for_model(type(row))
        snapshot = self.column_values(row, spec)
        with self.session.no_autoflush:
            for join in spec.reference_joins:
                snapshot[join.embed_as] = self._embed(row, spec, join)
        return snapshot

    def _embed(self, row: Any, spec: TrackedEntitySpec, join: JoinSpec) -> dict[str, Any] | None:
        ref_id = getattr(row, join.field)
        if ref_id is None:
            return None

        target = self.session.get(join.target, ref_id)
        if target is not None and hasattr(target, "tenant_id"):
            if str(target.tenant_id) != str(row.tenant_id):
                target = None

        if target is None:
            logger.warning(
                "snapshot_reference_unresolved",
                extra={
                    "entity_type": spec.entity_type,
                    "entity_id": str(row.id),
                    "field": join.field,
                    "reference_id": str(ref_id),
                },
            )
            return {"id": str(ref_id), "unresolved": True}

        return {name: to_json_safe(getattr(target, name)) for name in join.display_fields}
