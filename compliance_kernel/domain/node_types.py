"""
Closed vocabularies of the compliance record graph.

Responsibility:
    Enumerations shared by the rule table, the services and the persisted
    rows.  Rows store the enum ``value`` in a String column; these enums
    are the only legal values.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by domain, services and
    selectors.  Models store plain strings and do not import this module.
"""

from enum import Enum


class NodeType(str, Enum):
    """Legal role of a recipient node towards the controller tenant."""

    PROCESSOR = "PROCESSOR"
    SUB_PROCESSOR = "SUB_PROCESSOR"
    JOINT_CONTROLLER = "JOINT_CONTROLLER"
    SERVICE_PROVIDER = "SERVICE_PROVIDER"
    SEPARATE_CONTROLLER = "SEPARATE_CONTROLLER"
    PUBLIC_AUTHORITY = "PUBLIC_AUTHORITY"
    INTERNAL_DEPARTMENT = "INTERNAL_DEPARTMENT"


class HierarchyKind(str, Enum):
    """Kind of tree a node participates in; derived from NodeType."""

    PROCESSOR_CHAIN = "PROCESSOR_CHAIN"
    ORGANIZATIONAL = "ORGANIZATIONAL"
    GROUPING = "GROUPING"


class AgreementType(str, Enum):
    """Contract instruments that can back a recipient relationship."""

    DPA = "DPA"
    JOINT_CONTROLLER_AGREEMENT = "JOINT_CONTROLLER_AGREEMENT"
    SCC = "SCC"
    BCR = "BCR"
    DPF = "DPF"
    NDA = "NDA"


class AgreementStatus(str, Enum):
    """Lifecycle of an agreement. Only ACTIVE satisfies a requirement."""

    DRAFT = "DRAFT"
    PENDING_SIGNATURE = "PENDING_SIGNATURE"
    ACTIVE = "ACTIVE"
    EXPIRING_SOON = "EXPIRING_SOON"
    EXPIRED = "EXPIRED"
    TERMINATED = "TERMINATED"


class LocationRole(str, Enum):
    """What happens to personal data at a processing location."""

    HOSTING = "HOSTING"
    PROCESSING = "PROCESSING"
    BOTH = "BOTH"


def coerce_enum(enum_cls: type[Enum], value: Enum | str) -> str:
    """Validate ``value`` against ``enum_cls`` and return its stored string.

    Raises:
        ValueError: if ``value`` is not a member value of ``enum_cls``.
    """
    return enum_cls(value).value
