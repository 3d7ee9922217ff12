"""
Module: compliance_kernel.models.external_organization
Responsibility: ORM persistence for third-party legal entities a tenant
    shares data with, and the agreements signed with them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Both tables are tenant-scoped.  A node may only link an external
      organization of its own tenant (checked by HierarchyValidationService).
    - agreement_type / status hold AgreementType / AgreementStatus values.

Audit relevance:
    Missing ACTIVE agreements (e.g. no DPA with a processor) surface as
    advisory warnings on node writes.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import TenantScopedBase, UUIDString


class ExternalOrganization(TenantScopedBase):
    """A vendor, partner or authority known to one tenant."""

    __tablename__ = "external_organizations"

    legal_name: Mapped[str] = mapped_column(String(255), nullable=False)

    trading_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    headquarters_country_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("countries.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<ExternalOrganization {self.legal_name}>"


class Agreement(TenantScopedBase):
    """A contract instrument (DPA, JCA, SCC, ...) with an external organization."""

    __tablename__ = "agreements"
    __table_args__ = (
        Index("idx_agreement_ext_org", "external_organization_id", "status"),
    )

    external_organization_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("external_organizations.id", ondelete="CASCADE"),
        nullable=False,
    )

    agreement_type: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[str] = mapped_column(String(50), nullable=False, default="DRAFT")

    signed_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    def __repr__(self) -> str:
        return f"<Agreement {self.agreement_type} {self.status}>"
