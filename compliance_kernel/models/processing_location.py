"""
Module: compliance_kernel.models.processing_location
Responsibility: ORM persistence for the places a recipient node hosts or
    processes personal data, with the transfer mechanism that covers them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Tenant-scoped; node_id references a node of the same tenant
      (checked by ProcessingLocationService).
    - Deactivation is a soft delete (is_active -> False).

Audit relevance:
    Tracked entity type ("ProcessingLocation").  Snapshots embed the
    country and transfer mechanism as they were at the time of the change.
"""

from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import TenantScopedBase, UUIDString


class ProcessingLocation(TenantScopedBase):
    """Where (country) and how (role, mechanism) a node handles data."""

    __tablename__ = "processing_locations"
    __table_args__ = (
        Index("idx_location_node", "node_id"),
        Index("idx_location_country", "country_id"),
    )

    node_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("nodes.id", ondelete="CASCADE"),
        nullable=False,
    )

    service: Mapped[str] = mapped_column(String(255), nullable=False)

    purpose_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    country_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("countries.id"),
        nullable=False,
    )

    location_role: Mapped[str] = mapped_column(String(20), nullable=False)

    transfer_mechanism_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("transfer_mechanisms.id"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<ProcessingLocation {self.service} {self.location_role}>"
