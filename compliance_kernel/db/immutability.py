"""
ORM-Level Immutability Enforcement for the change log (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

Change-log entries are the compliance audit trail.  Once written they must
never change: an auditor reading the history of a recipient must see exactly
what was recorded at the time.

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through SQLAlchemy: unit-of-work UPDATE/DELETE
      and ORM-enabled bulk ``update()`` / ``delete()`` statements.
    - Fires BEFORE the SQL is sent to the database.

  Layer 2: db/sql/*.sql (PostgreSQL triggers)
    - Catches raw SQL and direct database access.

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_update] --> _block_change_log_update() --> ImmutabilityViolationError
    [before_delete] --> _block_change_log_delete() --> (unless purging tenant)
         |
    session.execute(update(ChangeLogEntry)...)
         |
         v
    [do_orm_execute] --> _block_bulk_change_log_writes()

===============================================================================
TENANT PURGE
===============================================================================

Deleting a tenant removes its change log with it.  TenantService marks the
session with ``session.info[PURGE_INFO_KEY] = tenant_id`` for the duration of
the purge; deletes of entries belonging to that tenant are then allowed.
A bulk delete must filter on ``tenant_id = <purging tenant>``.  Updates are
never allowed.

===============================================================================
USAGE
===============================================================================

    from compliance_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import ORMExecuteState, Session, object_session
from sqlalchemy.sql import operators
from sqlalchemy.sql.elements import BinaryExpression, BindParameter, BooleanClauseList

from compliance_kernel.exceptions import ImmutabilityViolationError
from compliance_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

PURGE_INFO_KEY = "compliance_purging_tenant_id"


def _purging_tenant(session: Session | None) -> UUID | None:
    if session is None:
        return None
    return session.info.get(PURGE_INFO_KEY)


def _reject(entity_id: str, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "ChangeLogEntry",
            "entity_id": entity_id,
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ChangeLogEntry",
        entity_id=entity_id,
        reason=reason,
    )


def _block_change_log_update(mapper, connection, target):
    """Change-log entries are immutable from creation."""
    _reject(str(target.id), "UPDATE", "change log entries are append-only")


def _block_change_log_delete(mapper, connection, target):
    """Only the tenant purge path may delete entries, and only its own tenant's."""
    purging = _purging_tenant(object_session(target))
    if purging is not None and str(purging) == str(target.tenant_id):
        return
    _reject(str(target.id), "DELETE", "change log entries cannot be deleted")


def _restricted_to_tenant(criteria, tenant_id: UUID) -> bool:
    """
    True iff ``criteria`` is, or is an AND containing,
    ``tenant_id = <tenant_id>``, so no other tenant's row can match.
    """
    if criteria is None:
        return False
    if isinstance(criteria, BooleanClauseList) and criteria.operator is operators.and_:
        clauses = criteria.clauses
    else:
        clauses = (criteria,)
    for clause in clauses:
        if (
            isinstance(clause, BinaryExpression)
            and clause.operator is operators.eq
            and getattr(clause.left, "key", None) == "tenant_id"
            and isinstance(clause.right, BindParameter)
            and str(clause.right.effective_value) == str(tenant_id)
        ):
            return True
    return False


def _block_bulk_change_log_writes(orm_execute_state: ORMExecuteState):
    """Intercept ORM-enabled bulk UPDATE/DELETE against change_log_entries."""
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return

    from compliance_kernel.models.change_log import ChangeLogEntry

    mapper = orm_execute_state.bind_mapper
    if mapper is None or mapper.class_ is not ChangeLogEntry:
        return

    purging = _purging_tenant(orm_execute_state.session)
    if (
        orm_execute_state.is_delete
        and purging is not None
        and _restricted_to_tenant(orm_execute_state.statement.whereclause, purging)
    ):
        return

    operation = "UPDATE" if orm_execute_state.is_update else "DELETE"
    _reject("*", f"BULK_{operation}", "bulk writes to the change log are forbidden")


def register_immutability_listeners() -> None:
    """
    Register change-log immutability listeners (idempotent).

    Call after models are imported and before any database work.
    """
    from compliance_kernel.models.change_log import ChangeLogEntry

    if not event.contains(ChangeLogEntry, "before_update", _block_change_log_update):
        event.listen(ChangeLogEntry, "before_update", _block_change_log_update)
    if not event.contains(ChangeLogEntry, "before_delete", _block_change_log_delete):
        event.listen(ChangeLogEntry, "before_delete", _block_change_log_delete)
    if not event.contains(Session, "do_orm_execute", _block_bulk_change_log_writes):
        event.listen(Session, "do_orm_execute", _block_bulk_change_log_writes)


def _safe_remove_listener(target, event_name, listener_fn) -> None:
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove change-log immutability listeners.

    WARNING: Only use this in tests that deliberately corrupt the log.
    """
    from compliance_kernel.models.change_log import ChangeLogEntry

    _safe_remove_listener(ChangeLogEntry, "before_update", _block_change_log_update)
    _safe_remove_listener(ChangeLogEntry, "before_delete", _block_change_log_delete)
    _safe_remove_listener(Session, "do_orm_execute", _block_bulk_change_log_writes)
