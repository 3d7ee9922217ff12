"""
Compliance Kernel

A multi-tenant compliance record graph with:
- Type-governed node hierarchies (processor chains, org structures)
- Cycle-safe ancestor and descendant traversal
- Field-level change interception with flattened audit snapshots
- Append-only change log, tenant-scoped throughout
"""

__version__ = "0.1.0"
