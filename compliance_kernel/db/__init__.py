"""Database layer - engine, base classes, immutability enforcement."""

from compliance_kernel.db.base import UUID, Base, TenantScopedBase, TrackedBase, UUIDString
from compliance_kernel.db.engine import create_tables, get_engine, get_session, session_scope

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "TenantScopedBase",
    "UUIDString",
    "UUID",
]
