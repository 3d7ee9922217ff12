"""
TenantService -- tenant lifecycle, including the sanctioned purge path.

Responsibility:
    Creates tenants and purges them.  Purge is the only operation in the
    kernel allowed to remove change-log entries, and only those of the
    purged tenant.

Architecture position:
    Kernel > Services.  Flushes only; the caller commits.

Invariants enforced:
    - Purge removes every tenant-scoped row of the tenant (nodes,
      locations, external organizations, agreements, change-log entries)
      and the tenant itself, and nothing belonging to any other tenant.
    - The change-log delete permission is scoped to this session (ORM
      listeners) and to this transaction (PostgreSQL ``set_config(...,
      true)``).  A successful purge clears both before returning; a failed
      one leaves the transaction to be rolled back, which discards the
      PostgreSQL setting.

Failure modes:
    - TenantNotFoundError: unknown tenant id.
    - ImmutabilityViolationError: any change-log delete attempted outside
      this path.

Audit relevance:
    ``tenant_purged`` is logged with the number of change-log entries
    removed.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import delete, func, inspect, select, text

from compliance_kernel.db.immutability import PURGE_INFO_KEY
from compliance_kernel.db.triggers import PURGE_SETTING
from compliance_kernel.exceptions import TenantNotFoundError
from compliance_kernel.logging_config import get_logger
from compliance_kernel.models.change_log import ChangeLogEntry
from compliance_kernel.models.node import Node
from compliance_kernel.models.tenant import Tenant
from compliance_kernel.services.base import BaseService

logger = get_logger("services.tenant")


@dataclass(frozen=True)
class TenantInfo:
    id: UUID
    name: str
    slug: str
    is_active: bool


@dataclass(frozen=True)
class PurgeResult:
    tenant_id: UUID
    nodes_removed: int
    change_log_entries_removed: int


def _to_info(tenant: Tenant) -> TenantInfo:
    return TenantInfo(id=tenant.id, name=tenant.name, slug=tenant.slug, is_active=tenant.is_active)


class TenantService(BaseService):
    """Tenant creation and purge."""

    def create_tenant(self, name: str, slug: str, actor_id: UUID) -> TenantInfo:
        tenant = Tenant(name=name, slug=slug, created_by_id=actor_id)
        self.session.add(tenant)
        self.session.flush()
        logger.info("tenant_created", extra={"tenant_id": str(tenant.id), "slug": slug})
        return _to_info(tenant)

    def get_tenant(self, tenant_id: UUID) -> TenantInfo:
        tenant = self.session.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(str(tenant_id))
        return _to_info(tenant)

    def purge_tenant(self, tenant_id: UUID) -> PurgeResult:
        """
        Permanently remove a tenant and all of its data.

        Raises:
            TenantNotFoundError: Tenant does not exist.
        """
        tenant = self.session.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(str(tenant_id))

        node_count = self.session.execute(
            select(func.count(Node.id)).where(Node.tenant_id == tenant_id)
        ).scalar_one()

        self.session.info[PURGE_INFO_KEY] = tenant_id
        try:
            self._set_purge_setting(str(tenant_id))

            result = self.session.execute(
                delete(ChangeLogEntry)
                .where(ChangeLogEntry.tenant_id == tenant_id)
                .execution_options(synchronize_session=False)
            )
            entries_removed = result.rowcount

            # Remaining tenant-scoped tables cascade from tenants at the database.
            self.session.delete(tenant)
            self.session.flush()
            self._set_purge_setting("")
        finally:
            self.session.info.pop(PURGE_INFO_KEY, None)

        # Rows removed by the database cascade are still in the identity map.
        for obj in list(self.session.identity_map.values()):
            # Read loaded state only; refreshing a purged row would raise.
            if inspect(obj).dict.get("tenant_id") == tenant_id:
                self.session.expunge(obj)

        logger.warning(
            "tenant_purged",
            extra={
                "tenant_id": str(tenant_id),
                "nodes_removed": node_count,
                "change_log_entries_removed": entries_removed,
            },
        )
        return PurgeResult(
            tenant_id=tenant_id,
            nodes_removed=node_count,
            change_log_entries_removed=entries_removed,
        )

    def _set_purge_setting(self, value: str) -> None:
        """Transaction-local trigger switch; a no-op off PostgreSQL."""
        if self.session.get_bind().dialect.name != "postgresql":
            return
        self.session.execute(
            text("SELECT set_config(:name, :value, true)"),
            {"name": PURGE_SETTING, "value": value},
        )
