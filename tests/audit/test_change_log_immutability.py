"""
Change-log immutability tests.

Entries are append-only:
- ORM listeners block unit-of-work and bulk UPDATE/DELETE (every backend)
- PostgreSQL triggers block raw SQL (marked ``postgres``)
- The tenant purge path may delete its own tenant's entries, nothing else
"""

import pytest
from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import DBAPIError

from compliance_kernel.db.immutability import PURGE_INFO_KEY
from compliance_kernel.db.triggers import (
    ALL_TRIGGER_NAMES,
    PURGE_SETTING,
    get_missing_triggers,
    triggers_installed,
)
from compliance_kernel.domain.node_types import NodeType
from compliance_kernel.exceptions import ImmutabilityViolationError
from compliance_kernel.models.change_log import ChangeLogEntry


@pytest.fixture
def logged_entry(session, make_node) -> ChangeLogEntry:
    node = make_node(NodeType.INTERNAL_DEPARTMENT, "HR")
    return session.execute(
        select(ChangeLogEntry).where(ChangeLogEntry.entity_id == node.id)
    ).scalar_one()


class TestOrmImmutability:
    """Layer 1: SQLAlchemy listeners."""

    def test_update_blocked(self, session, logged_entry):
        logged_entry.change_reason = "rewritten history"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "ChangeLogEntry"

    def test_snapshot_update_blocked(self, session, logged_entry):
        logged_entry.new_value = {**logged_entry.new_value, "name": "Forged"}
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, logged_entry, captured_logs):
        session.delete(logged_entry)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        assert any(r["message"] == "immutability_violation_blocked" for r in captured_logs())

    def test_bulk_update_blocked(self, session, logged_entry):
        with pytest.raises(ImmutabilityViolationError):
            session.execute(update(ChangeLogEntry).values(change_reason="bulk"))

    def test_bulk_delete_blocked(self, session, logged_entry):
        with pytest.raises(ImmutabilityViolationError):
            session.execute(delete(ChangeLogEntry).where(ChangeLogEntry.id == logged_entry.id))

    def test_purge_flag_for_other_tenant_does_not_unlock(self, session, logged_entry, other_tenant):
        session.info[PURGE_INFO_KEY] = other_tenant.id
        try:
            session.delete(logged_entry)
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
        finally:
            session.info.pop(PURGE_INFO_KEY, None)

    def test_purge_flag_does_not_unlock_other_tenants_bulk_delete(
        self, session, logged_entry, tenant, other_tenant, make_node,
    ):
        make_node(NodeType.INTERNAL_DEPARTMENT, "Legal", tenant_id=other_tenant.id)
        session.info[PURGE_INFO_KEY] = tenant.id
        try:
            with pytest.raises(ImmutabilityViolationError):
                session.execute(
                    delete(ChangeLogEntry).where(ChangeLogEntry.tenant_id == other_tenant.id)
                )
        finally:
            session.info.pop(PURGE_INFO_KEY, None)

    def test_purge_flag_does_not_unlock_unfiltered_bulk_delete(self, session, logged_entry, tenant):
        session.info[PURGE_INFO_KEY] = tenant.id
        try:
            with pytest.raises(ImmutabilityViolationError):
                session.execute(delete(ChangeLogEntry))
            with pytest.raises(ImmutabilityViolationError):
                session.execute(
                    delete(ChangeLogEntry).where(ChangeLogEntry.id == logged_entry.id)
                )
        finally:
            session.info.pop(PURGE_INFO_KEY, None)

    def test_purge_flag_allows_own_tenant_bulk_delete(
        self, session, logged_entry, tenant, other_tenant, make_node,
    ):
        make_node(NodeType.INTERNAL_DEPARTMENT, "Legal", tenant_id=other_tenant.id)
        if session.get_bind().dialect.name == "postgresql":
            session.execute(
                text("SELECT set_config(:name, :value, true)"),
                {"name": PURGE_SETTING, "value": str(tenant.id)},
            )
        session.info[PURGE_INFO_KEY] = tenant.id
        try:
            session.execute(
                delete(ChangeLogEntry)
                .where(ChangeLogEntry.tenant_id == tenant.id)
                .execution_options(synchronize_session=False)
            )
        finally:
            session.info.pop(PURGE_INFO_KEY, None)

        counts = dict(session.execute(
            select(ChangeLogEntry.tenant_id, func.count(ChangeLogEntry.id))
            .group_by(ChangeLogEntry.tenant_id)
        ).all())
        assert tenant.id not in counts
        assert counts[other_tenant.id] == 1

    def test_purge_flag_never_unlocks_updates(self, session, logged_entry, tenant):
        session.info[PURGE_INFO_KEY] = tenant.id
        try:
            logged_entry.change_reason = "during purge"
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
        finally:
            session.info.pop(PURGE_INFO_KEY, None)


@pytest.mark.postgres
class TestTriggerImmutability:
    """Layer 2: PostgreSQL triggers catch raw SQL."""

    def test_triggers_installed(self, db_engine, db_tables):
        assert triggers_installed(db_engine)
        assert get_missing_triggers(db_engine) == []
        assert len(ALL_TRIGGER_NAMES) == 2

    def test_raw_update_blocked(self, session, logged_entry):
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            session.execute(
                text("UPDATE change_log_entries SET change_reason = 'raw' WHERE id = :id"),
                {"id": str(logged_entry.id)},
            )

    def test_raw_delete_blocked(self, session, logged_entry):
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            session.execute(
                text("DELETE FROM change_log_entries WHERE id = :id"),
                {"id": str(logged_entry.id)},
            )

    def test_raw_delete_allowed_for_purging_tenant(self, session, logged_entry, tenant):
        session.execute(
            text("SELECT set_config(:name, :value, true)"),
            {"name": PURGE_SETTING, "value": str(tenant.id)},
        )
        result = session.execute(
            text("DELETE FROM change_log_entries WHERE tenant_id = :tid"),
            {"tid": str(tenant.id)},
        )
        assert result.rowcount >= 1

    def test_purge_setting_for_other_tenant_blocks(self, session, logged_entry, other_tenant):
        session.execute(
            text("SELECT set_config(:name, :value, true)"),
            {"name": PURGE_SETTING, "value": str(other_tenant.id)},
        )
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            session.execute(
                text("DELETE FROM change_log_entries WHERE id = :id"),
                {"id": str(logged_entry.id)},
            )

    def test_purge_leaves_no_entries(self, session, tenant_service, logged_entry, tenant):
        tenant_service.purge_tenant(tenant.id)
        remaining = session.execute(
            select(func.count(ChangeLogEntry.id)).where(ChangeLogEntry.tenant_id == tenant.id)
        ).scalar_one()
        assert remaining == 0

    def test_purge_setting_cleared_after_purge(self, session, tenant_service, other_tenant, make_node):
        make_node(NodeType.INTERNAL_DEPARTMENT, "Legal", tenant_id=other_tenant.id)
        tenant_service.purge_tenant(other_tenant.id)
        setting = session.execute(
            text("SELECT current_setting(:name, true)"), {"name": PURGE_SETTING},
        ).scalar_one()
        assert not setting
