"""
Module: compliance_kernel.models.tenant
Responsibility: ORM persistence for tenants, the isolation boundary of the
    kernel.  Every tenant-scoped row references exactly one tenant.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - slug is globally unique.
    - Deleting a tenant cascades to all tenant-scoped rows, including its
      change-log entries (the only sanctioned change-log deletion; see
      services/tenant_service.py).
"""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import TrackedBase


class Tenant(TrackedBase):
    """An isolated customer organization."""

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Tenant {self.slug}>"
