"""
Module: compliance_kernel.models.reference_data
Responsibility: ORM persistence for global reference data shared by all
    tenants: countries and cross-border transfer mechanisms.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Reference rows carry NO tenant_id.  They are seeded outside the
      kernel and only read by it.

Audit relevance:
    Change-log snapshots embed a copy of the referenced country or
    mechanism.  Renaming a country later never rewrites those snapshots.
"""

from sqlalchemy import JSON, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import TrackedBase


class Country(TrackedBase):
    """Country with its GDPR adequacy classification."""

    __tablename__ = "countries"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # ISO 3166-1 alpha-2
    iso_code: Mapped[str] = mapped_column(String(2), nullable=False, unique=True)

    iso_code3: Mapped[str | None] = mapped_column(String(3), nullable=True)

    # e.g. ["EU", "EEA"] or ["ADEQUATE"] or ["THIRD_COUNTRY"]
    gdpr_status: Mapped[list | None] = mapped_column(JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Country {self.iso_code}>"


class TransferMechanism(TrackedBase):
    """Legal basis for a transfer outside the EEA (SCC, BCR, adequacy, ...)."""

    __tablename__ = "transfer_mechanisms"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    gdpr_article: Mapped[str | None] = mapped_column(String(50), nullable=True)

    category: Mapped[str | None] = mapped_column(String(50), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<TransferMechanism {self.code}>"
