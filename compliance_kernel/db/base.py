"""
Module: compliance_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, the type annotation map, the TrackedBase
    mixin for audit metadata, and the TenantScopedBase mixin that ties a row to
    exactly one tenant.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
    - Tenant ownership: every TenantScopedBase row carries a NOT NULL
      tenant_id that cascades on tenant deletion.  Global reference data
      (countries, transfer mechanisms) inherits TrackedBase only.
    - Audit metadata: TrackedBase provides created_at, updated_at,
      created_by_id, and updated_by_id.

Failure modes:
    - IntegrityError on INSERT of a tenant-scoped row whose tenant_id does
      not reference an existing tenant (foreign keys must be enabled).

Audit relevance:
    The audit metadata columns are NOT part of flattened change-log
    snapshots (see services/snapshot_flattener.py); the change log records
    the actor and time of each change itself.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from sqlalchemy.types import TypeDecorator

# Columns that describe the row's bookkeeping rather than its content
AUDIT_METADATA_COLUMNS: frozenset[str] = frozenset(
    {"created_at", "updated_at", "created_by_id", "updated_by_id"}
)


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Contract:
        Transparently converts between Python UUID objects and their
        36-character string representation.

    Guarantees:
        - process_bind_param: UUID (or UUID-shaped str) -> str.
        - process_result_value: str -> UUID.
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, PyUUID):
            return str(value)
        return str(PyUUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return PyUUID(value)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - datetime maps to DateTime(timezone=True).
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamp and actor tracking.

    Guarantees:
        - created_at is set to server NOW() on INSERT.
        - updated_at is set to server NOW() on INSERT and on every UPDATE.
        - created_by_id is required (NOT NULL).
        - updated_by_id is nullable until the first update.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


class TenantScopedBase(TrackedBase):
    """
    Abstract base for rows owned by a single tenant.

    Contract:
        Every query against a TenantScopedBase model filters on tenant_id.
        Callers never see rows of another tenant, not even as "forbidden".

    Guarantees:
        - tenant_id is NOT NULL, indexed, and ON DELETE CASCADE.
    """

    __abstract__ = True

    @declared_attr
    def tenant_id(cls) -> Mapped[PyUUID]:
        return mapped_column(
            UUIDString(),
            ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )


# Re-export UUID for convenience
UUID = PyUUID
