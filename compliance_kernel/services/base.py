"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session-handling contract.  Services receive a
    SQLAlchemy ``Session`` and persist with ``session.flush()`` only.

Invariants enforced:
    - Services never commit or roll back.  The caller (``session_scope()``
      or a test harness) owns the transaction, so an entity write and its
      change-log entries always commit or roll back together.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Read-only query methods belong in ``compliance_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
