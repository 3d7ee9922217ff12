"""
Typed Exception Hierarchy for the Compliance Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Compliance records are read by auditors, regulators and downstream APIs.
Callers must be able to react to a failure by its TYPE and CODE, never by
parsing a message string:

    try:
        node_service.update_node(tenant_id, actor_id, node_id, {"parent_id": p})
    except NodeValidationError as e:
        api_response(code=e.code, errors=e.errors, warnings=e.warnings)
    except NodeNotFoundError as e:
        api_response(code=e.code, node=e.node_id)

Every exception:
  1. Has a dedicated class (catch by type).
  2. Has a ``code`` class attribute (machine-readable, API-safe).
  3. Carries structured attributes (survive logging and serialization).

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ComplianceKernelError (base)
    |
    +-- NodeError
    |   +-- NodeNotFoundError
    |   +-- NodeValidationError
    |   +-- ImmutableFieldError
    |
    +-- ChangeTrackingError
    |   +-- UntrackedEntityTypeError
    |   +-- TrackedEntityNotFoundError
    |   +-- UnknownFieldError
    |   +-- DuplicateTrackingRegistrationError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentChangeLogWriteError
    |
    +-- TenantError
    |   +-- TenantNotFoundError
    |
    +-- ReferenceDataError
    |   +-- ReferenceNotFoundError
    |
    +-- ConfigurationError
        +-- InvalidHierarchyRuleError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                            | When Raised
----------------|---------------------------------|---------------------------------------
Node            | NODE_NOT_FOUND                  | Node absent, or owned by another tenant
                | NODE_VALIDATION_FAILED          | Hierarchy change rejected by the rules
                | IMMUTABLE_FIELD                 | Payload touches id/tenant/derived fields
----------------|---------------------------------|---------------------------------------
Tracking        | UNTRACKED_ENTITY_TYPE           | No TrackedEntitySpec registered
                | TRACKED_ENTITY_NOT_FOUND        | Row to update/delete missing in tenant
                | UNKNOWN_FIELD                   | Payload names a non-column attribute
                | DUPLICATE_TRACKING_REGISTRATION | entity_type registered twice
----------------|---------------------------------|---------------------------------------
Immutability    | IMMUTABILITY_VIOLATION          | UPDATE/DELETE of a change-log entry
----------------|---------------------------------|---------------------------------------
Concurrency     | CONCURRENT_CHANGE_LOG_WRITE     | Per-entity revision already taken
----------------|---------------------------------|---------------------------------------
Tenant          | TENANT_NOT_FOUND                | Tenant id does not exist
----------------|---------------------------------|---------------------------------------
Reference       | REFERENCE_NOT_FOUND             | Linked record missing in tenant scope
----------------|---------------------------------|---------------------------------------
Configuration   | INVALID_HIERARCHY_RULE          | Rule table is internally inconsistent

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Not-found and cross-tenant are the SAME error.  A caller probing another
   tenant's ids must not learn whether the id exists.

2. Validation warnings travel on successful results, never as exceptions.
   NodeValidationError carries the warnings gathered alongside the errors so
   the caller can show both at once.

3. Categories let middleware treat failures differently:
   - NodeError -> user-facing 4xx
   - ImmutabilityError -> security alert
   - ConcurrencyError -> retry
"""

from collections.abc import Sequence


class ComplianceKernelError(Exception):
    """
    Base exception for all compliance kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "COMPLIANCE_KERNEL_ERROR"


# Node-related exceptions


class NodeError(ComplianceKernelError):
    """Base exception for node-related errors."""

    code: str = "NODE_ERROR"


class NodeNotFoundError(NodeError):
    """Node does not exist in the requesting tenant."""

    code: str = "NODE_NOT_FOUND"

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class NodeValidationError(NodeError):
    """A proposed node write violates the hierarchy rules."""

    code: str = "NODE_VALIDATION_FAILED"

    def __init__(
        self,
        errors: Sequence[str],
        warnings: Sequence[str] = (),
        node_id: str | None = None,
    ):
        self.errors = list(errors)
        self.warnings = list(warnings)
        self.node_id = node_id
        super().__init__(
            "Node validation failed: " + "; ".join(self.errors)
        )


class ImmutableFieldError(NodeError):
    """Caller attempted to write an identity or derived field."""

    code: str = "IMMUTABLE_FIELD"

    def __init__(self, entity_type: str, field_name: str):
        self.entity_type = entity_type
        self.field_name = field_name
        super().__init__(
            f"Field {field_name!r} of {entity_type} cannot be set by callers"
        )


# Change tracking exceptions


class ChangeTrackingError(ComplianceKernelError):
    """Base exception for change interception errors."""

    code: str = "CHANGE_TRACKING_ERROR"


class UntrackedEntityTypeError(ChangeTrackingError):
    """No tracking descriptor is registered for the entity type."""

    code: str = "UNTRACKED_ENTITY_TYPE"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"Entity type is not tracked: {entity_type}")


class TrackedEntityNotFoundError(ChangeTrackingError):
    """Row to update or delete does not exist in the tenant."""

    code: str = "TRACKED_ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class UnknownFieldError(ChangeTrackingError):
    """Update payload names an attribute that is not a mapped column."""

    code: str = "UNKNOWN_FIELD"

    def __init__(self, entity_type: str, field_name: str):
        self.entity_type = entity_type
        self.field_name = field_name
        super().__init__(f"{entity_type} has no field {field_name!r}")


class DuplicateTrackingRegistrationError(ChangeTrackingError):
    """Two descriptors were registered for the same entity type tag."""

    code: str = "DUPLICATE_TRACKING_REGISTRATION"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"Entity type already registered: {entity_type}")


# Immutability-related exceptions


class ImmutabilityError(ComplianceKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Change-log entries are immutable from creation; only the tenant purge
    path may remove them.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Concurrency-related exceptions


class ConcurrencyError(ComplianceKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentChangeLogWriteError(ConcurrencyError):
    """Another transaction wrote the same per-entity revision first."""

    code: str = "CONCURRENT_CHANGE_LOG_WRITE"

    def __init__(self, entity_type: str, entity_id: str, revision: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.revision = revision
        super().__init__(
            f"Revision {revision} of {entity_type} {entity_id} was written "
            "by a concurrent transaction"
        )


# Tenant-related exceptions


class TenantError(ComplianceKernelError):
    """Base exception for tenant-related errors."""

    code: str = "TENANT_ERROR"


class TenantNotFoundError(TenantError):
    """Tenant with given ID was not found."""

    code: str = "TENANT_NOT_FOUND"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant not found: {tenant_id}")


# Reference data exceptions


class ReferenceDataError(ComplianceKernelError):
    """Base exception for linked-record errors."""

    code: str = "REFERENCE_ERROR"


class ReferenceNotFoundError(ReferenceDataError):
    """A referenced record is missing or belongs to another tenant."""

    code: str = "REFERENCE_NOT_FOUND"

    def __init__(self, reference_type: str, reference_id: str):
        self.reference_type = reference_type
        self.reference_id = reference_id
        super().__init__(f"{reference_type} not found: {reference_id}")


# Configuration exceptions


class ConfigurationError(ComplianceKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class InvalidHierarchyRuleError(ConfigurationError):
    """The hierarchy rule table is internally inconsistent."""

    code: str = "INVALID_HIERARCHY_RULE"

    def __init__(self, node_type: str, reason: str):
        self.node_type = node_type
        self.reason = reason
        super().__init__(f"Invalid hierarchy rule for {node_type}: {reason}")
