"""
Change tracking descriptors.

Responsibility:
    Declares WHAT is tracked for each entity type: the tag written to the
    change log, the mapped model, the tracked fields, and the reference
    joins embedded into flattened snapshots.  The interception mechanism
    itself lives in ``services/change_interception.py`` and contains no
    per-type code; adding a tracked type means adding a TrackedEntitySpec.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Specs hold model classes as opaque
    references; column checks against the mapper happen when the
    SnapshotFlattener is built.

Invariants enforced:
    - ``entity_type`` tags are unique within a TrackingRegistry.
    - A registry is immutable once built.
    - ``soft_delete_field``, when set, is one of ``tracked_fields``.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from uuid import UUID

from compliance_kernel.exceptions import (
    DuplicateTrackingRegistrationError,
    UntrackedEntityTypeError,
)


class ChangeType(str, Enum):
    """Kind of transition a change-log entry records."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class JoinSpec:
    """
    One foreign key embedded into a snapshot.

    ``field`` keeps its raw id in the snapshot; the referenced row's
    ``display_fields`` are embedded under ``embed_as``.
    """

    field: str
    target: type
    embed_as: str
    display_fields: tuple[str, ...]

    def __post_init__(self) -> None:
        if "id" not in self.display_fields:
            object.__setattr__(self, "display_fields", ("id",) + tuple(self.display_fields))


@dataclass(frozen=True)
class TrackedEntitySpec:
    """
    Per-type tracking descriptor.

    Contract:
        - ``tracked_fields``: column attribute names whose transitions are
          logged.  Other columns still appear in snapshots.
        - ``reference_joins``: embedded references, keyed by FK field.
        - ``soft_delete_field``: boolean column whose True -> False flip is
          logged as DELETED instead of UPDATED.
    """

    entity_type: str
    model: type
    tracked_fields: frozenset[str]
    reference_joins: tuple[JoinSpec, ...] = ()
    soft_delete_field: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tracked_fields", frozenset(self.tracked_fields))
        object.__setattr__(self, "reference_joins", tuple(self.reference_joins))
        if self.soft_delete_field and self.soft_delete_field not in self.tracked_fields:
            raise ValueError(
                f"{self.entity_type}: soft_delete_field "
                f"{self.soft_delete_field!r} must be a tracked field"
            )
        seen: set[str] = set()
        for join in self.reference_joins:
            if join.field in seen:
                raise ValueError(f"{self.entity_type}: duplicate join on {join.field!r}")
            seen.add(join.field)

    def is_tracked(self, field_name: str) -> bool:
        return field_name in self.tracked_fields


class TrackingRegistry:
    """
    Immutable lookup of TrackedEntitySpec by entity type tag and by model.

    Raises:
        DuplicateTrackingRegistrationError: on construction if two specs
            share a tag or a model.
    """

    def __init__(self, specs: Iterable[TrackedEntitySpec]):
        by_type: dict[str, TrackedEntitySpec] = {}
        by_model: dict[type, TrackedEntitySpec] = {}
        for spec in specs:
            if spec.entity_type in by_type or spec.model in by_model:
                raise DuplicateTrackingRegistrationError(spec.entity_type)
            by_type[spec.entity_type] = spec
            by_model[spec.model] = spec
        self._by_type: Mapping[str, TrackedEntitySpec] = MappingProxyType(by_type)
        self._by_model: Mapping[type, TrackedEntitySpec] = MappingProxyType(by_model)

    def __iter__(self) -> Iterator[TrackedEntitySpec]:
        return iter(self._by_type.values())

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._by_type

    def get(self, entity_type: str) -> TrackedEntitySpec:
        try:
            return self._by_type[entity_type]
        except KeyError:
            raise UntrackedEntityTypeError(entity_type) from None

    def for_model(self, model: type) -> TrackedEntitySpec:
        try:
            return self._by_model[model]
        except KeyError:
            raise UntrackedEntityTypeError(getattr(model, "__name__", str(model))) from None


@dataclass(frozen=True)
class ChangeContext:
    """Trusted caller context stamped on every change-log entry."""

    tenant_id: UUID
    actor_id: UUID
    change_reason: str | None = None

    def with_reason(self, change_reason: str | None) -> ChangeContext:
        return ChangeContext(
            tenant_id=self.tenant_id,
            actor_id=self.actor_id,
            change_reason=change_reason,
        )
