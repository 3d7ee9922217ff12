"""
NodeService -- validated, change-tracked writes to the node graph.

Responsibility:
    The single write path for nodes.  Every create / update / delete is
    validated against the hierarchy rules, then applied through the
    ChangeInterceptionMiddleware so it is recorded in the change log in the
    same transaction.

Architecture position:
    Kernel > Services.  Composes GraphQueryEngine (reads),
    HierarchyValidationService (rules) and ChangeInterceptionMiddleware
    (write + audit).  Flushes only; the caller commits.

Invariants enforced:
    - Validation failures raise NodeValidationError and nothing is written.
    - hierarchy_kind is derived from type on every write that sets type.
    - id / tenant_id / hierarchy_kind / audit columns are never
      caller-supplied.
    - Concurrent hierarchy edits in one tenant are serialized: on
      PostgreSQL a transaction-scoped advisory lock keyed by tenant is
      taken before validation, and the node row is locked FOR UPDATE.
      Validation therefore reads the ancestor chain that will commit.

Deletion policy:
    Deleting a node nulls the parent pointer of each direct child (each
    child gets an UPDATED parent_id entry with reason "parent <id>
    deleted"), deletes the node's processing locations (one DELETED entry
    each), then deletes the node (one DELETED entry carrying its final
    snapshot).  Children whose type requires a parent become orphans and
    are reported by HierarchyHealthService.

Failure modes:
    - NodeNotFoundError: node absent in the tenant.
    - NodeValidationError: hierarchy or reference rules violated.
    - ImmutableFieldError / UnknownFieldError: bad payload.
    - ReferenceNotFoundError: country id unknown.

Audit relevance:
    Warnings from advisory rules are returned to the caller and logged,
    never persisted as errors.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from compliance_kernel.domain.clock import Clock
from compliance_kernel.domain.hierarchy_rules import HierarchyRuleTable, default_rule_table
from compliance_kernel.domain.node_types import NodeType
from compliance_kernel.domain.tracking import ChangeContext, TrackingRegistry
from compliance_kernel.domain.validation import ValidationResult, as_uuid
from compliance_kernel.exceptions import (
    ImmutableFieldError,
    NodeNotFoundError,
    NodeValidationError,
    ReferenceNotFoundError,
)
from compliance_kernel.logging_config import get_logger
from compliance_kernel.models.processing_location import ProcessingLocation
from compliance_kernel.models.reference_data import Country
from compliance_kernel.selectors.graph_selector import (
    DEFAULT_ANCESTOR_CEILING,
    GraphQueryEngine,
    NodeInfo,
    to_node_info,
)
from compliance_kernel.services.base import BaseService
from compliance_kernel.services.change_interception import ChangeInterceptionMiddleware
from compliance_kernel.services.hierarchy_validation_service import HierarchyValidationService
from compliance_kernel.services.tracked_entities import (
    NODE_ENTITY_TYPE,
    NODE_SPEC,
    PROCESSING_LOCATION_ENTITY_TYPE,
    default_tracking_registry,
)

logger = get_logger("services.node")

# Derived columns the caller may never set directly.
DERIVED_FIELDS: frozenset[str] = frozenset({"hierarchy_kind"})

# Column names that would shadow create_node's named arguments via **fields.
CREATE_ARGUMENT_FIELDS: frozenset[str] = frozenset({"type"})

# Foreign keys normalized to UUID before validation.
ID_FIELDS: tuple[str, ...] = ("parent_id", "external_organization_id", "country_id")

_BIGINT_MASK = (1 << 63) - 1


def tenant_lock_key(tenant_id: UUID) -> int:
    """Signed-bigint advisory lock key for a tenant's hierarchy."""
    return tenant_id.int & _BIGINT_MASK


@dataclass(frozen=True)
class NodeMutationResult:
    """Outcome of a successful create or update."""

    node: NodeInfo
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class NodeDeletionResult:
    """Outcome of a successful delete."""

    node_id: UUID
    final_snapshot: dict[str, Any]
    orphaned_child_ids: tuple[UUID, ...] = ()
    deleted_location_ids: tuple[UUID, ...] = ()


class NodeService(BaseService):
    """
    Validated write service for nodes.

    Contract:
        Callers supply the trusted ``tenant_id`` and ``actor_id`` of the
        request.  Node data never chooses its own tenant.

    Guarantees:
        - A write that returns normally has been validated and logged.
        - A write that raises has added nothing to the session.

    Non-goals:
        - Read queries: use GraphQueryEngine / ChangeLogSelector.
    """

    def __init__(
        self,
        session: Session,
        rule_table: HierarchyRuleTable | None = None,
        registry: TrackingRegistry | None = None,
        clock: Clock | None = None,
        tracking_enabled: bool = True,
        ancestor_ceiling: int = DEFAULT_ANCESTOR_CEILING,
    ):
        super().__init__(session)
        self.rule_table = rule_table or default_rule_table()
        self.graph = GraphQueryEngine(session, self.rule_table, ancestor_ceiling)
        self.validator = HierarchyValidationService(session, self.rule_table, self.graph)
        self.middleware = ChangeInterceptionMiddleware(
            session,
            registry or default_tracking_registry(),
            clock=clock,
            enabled=tracking_enabled,
        )

    # =========================================================================
    # Create
    # =========================================================================

    def create_node(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        node_type: NodeType | str,
        name: str,
        parent_id: UUID | None = None,
        change_reason: str | None = None,
        **fields: Any,
    ) -> NodeMutationResult:
        """
        Create a node after validating its type and parent.

        Args:
            tenant_id: Trusted tenant of the request.
            actor_id: User performing the change.
            node_type: NodeType (or its value).
            name: Display name.
            parent_id: Optional parent node in the same tenant.
            change_reason: Stored on the CREATED entry.
            **fields: Optional columns (description, purpose,
                external_organization_id, country_id, is_active).

        Returns:
            NodeMutationResult with the new node and advisory warnings.

        Raises:
            NodeValidationError: Hierarchy or reference rules violated.
            TypeError: ``type`` passed in ``fields`` instead of ``node_type``.
        """
        self._reject_derived(fields)
        shadowed = sorted(CREATE_ARGUMENT_FIELDS & set(fields))
        if shadowed:
            raise TypeError(
                f"create_node() got {shadowed[0]!r} in fields; pass it as node_type"
            )
        fields = self._normalize_ids(fields)
        parent_id = as_uuid(parent_id)
        node_type = NodeType(node_type)

        if parent_id is not None:
            self._lock_tenant_hierarchy(tenant_id)

        ext_org_id = fields.get("external_organization_id")
        result = self.validator.validate_hierarchy_change(None, node_type, parent_id, tenant_id)
        result = result.merge(self.validator.validate_external_organization(ext_org_id, tenant_id))
        self._raise_if_invalid(result, None)
        self._check_country(fields.get("country_id"))

        advisories = self.validator.collect_advisories(node_type, ext_org_id, tenant_id)

        hierarchy_kind = self.rule_table.hierarchy_kind_for(node_type)
        values = {
            **fields,
            "type": node_type.value,
            "hierarchy_kind": hierarchy_kind.value if hierarchy_kind else None,
            "parent_id": parent_id,
            "name": name,
        }
        context = ChangeContext(tenant_id, actor_id, change_reason)
        node = self.middleware.create(NODE_ENTITY_TYPE, values, context)

        self._log_warnings(node.id, advisories)
        logger.info(
            "node_created",
            extra={
                "tenant_id": str(tenant_id),
                "node_id": str(node.id),
                "node_type": node_type.value,
                "parent_id": str(parent_id) if parent_id else None,
            },
        )
        return NodeMutationResult(to_node_info(node), advisories.warnings)

    # =========================================================================
    # Update
    # =========================================================================

    def update_node(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        node_id: UUID,
        changes: Mapping[str, Any],
        change_reason: str | None = None,
    ) -> NodeMutationResult:
        """
        Apply ``changes`` to a node.

        Changes to ``type`` or ``parent_id`` are validated against the
        hierarchy rules (including the node's subtree) before anything is
        written.

        Raises:
            NodeNotFoundError: Node absent in the tenant.
            NodeValidationError: Hierarchy or reference rules violated.
        """
        self._reject_derived(changes)
        node_id = as_uuid(node_id)
        payload = self._normalize_ids(changes)
        if "type" in payload:
            payload["type"] = NodeType(payload["type"]).value

        current = self.graph.get_node(node_id, tenant_id)
        if current is None:
            raise NodeNotFoundError(str(node_id))

        hierarchy_affecting = "type" in payload or "parent_id" in payload
        if hierarchy_affecting:
            self._lock_tenant_hierarchy(tenant_id)
            self.middleware.load_for_update(NODE_SPEC, node_id, tenant_id)
            # Re-read under lock.
            current = self.graph.get_node(node_id, tenant_id)
            if current is None:
                raise NodeNotFoundError(str(node_id))

        proposed_type = NodeType(payload.get("type", current.type))
        proposed_parent = payload["parent_id"] if "parent_id" in payload else current.parent_id
        ext_org_id = (
            payload["external_organization_id"]
            if "external_organization_id" in payload
            else current.external_organization_id
        )

        result = ValidationResult.ok()
        if hierarchy_affecting:
            result = self.validator.validate_hierarchy_change(
                node_id, proposed_type, proposed_parent, tenant_id,
            )
        if "external_organization_id" in payload:
            result = result.merge(
                self.validator.validate_external_organization(ext_org_id, tenant_id)
            )
        self._raise_if_invalid(result, node_id)
        if "country_id" in payload:
            self._check_country(payload["country_id"])

        if "type" in payload:
            kind = self.rule_table.hierarchy_kind_for(proposed_type)
            payload["hierarchy_kind"] = kind.value if kind else None

        advisories = self.validator.collect_advisories(proposed_type, ext_org_id, tenant_id)

        context = ChangeContext(tenant_id, actor_id, change_reason)
        node = self.middleware.update(NODE_ENTITY_TYPE, node_id, payload, context)

        self._log_warnings(node.id, advisories)
        logger.info(
            "node_updated",
            extra={
                "tenant_id": str(tenant_id),
                "node_id": str(node_id),
                "fields": sorted(changes),
            },
        )
        return NodeMutationResult(to_node_info(node), advisories.warnings)

    def deactivate_node(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        node_id: UUID,
        change_reason: str | None = None,
    ) -> NodeMutationResult:
        """Soft delete: ``is_active`` -> False, logged as DELETED."""
        return self.update_node(tenant_id, actor_id, node_id, {"is_active": False}, change_reason)

    # =========================================================================
    # Delete
    # =========================================================================

    def delete_node(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        node_id: UUID,
        change_reason: str | None = None,
    ) -> NodeDeletionResult:
        """
        Hard-delete a node, detaching its children and removing its
        processing locations, all in the caller's transaction.

        Raises:
            NodeNotFoundError: Node absent in the tenant.
        """
        self._lock_tenant_hierarchy(tenant_id)
        if self.graph.get_node(node_id, tenant_id) is None:
            raise NodeNotFoundError(str(node_id))

        context = ChangeContext(tenant_id, actor_id, change_reason)

        children = self.graph.get_direct_children(node_id, tenant_id)
        detach_context = context.with_reason(change_reason or f"parent {node_id} deleted")
        for child in children:
            self.middleware.update(NODE_ENTITY_TYPE, child.id, {"parent_id": None}, detach_context)

        if children:
            logger.warning(
                "node_children_detached",
                extra={
                    "tenant_id": str(tenant_id),
                    "node_id": str(node_id),
                    "child_ids": [str(c.id) for c in children],
                },
            )

        location_ids = list(
            self.session.execute(
                select(ProcessingLocation.id).where(
                    ProcessingLocation.tenant_id == tenant_id,
                    ProcessingLocation.node_id == node_id,
                ).order_by(ProcessingLocation.created_at, ProcessingLocation.id)
            ).scalars()
        )
        for location_id in location_ids:
            self.middleware.delete(PROCESSING_LOCATION_ENTITY_TYPE, location_id, context)

        final = self.middleware.delete(NODE_ENTITY_TYPE, node_id, context)

        logger.info(
            "node_deleted",
            extra={
                "tenant_id": str(tenant_id),
                "node_id": str(node_id),
                "detached_children": len(children),
                "deleted_locations": len(location_ids),
            },
        )
        return NodeDeletionResult(
            node_id=node_id,
            final_snapshot=final,
            orphaned_child_ids=tuple(c.id for c in children),
            deleted_location_ids=tuple(location_ids),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _lock_tenant_hierarchy(self, tenant_id: UUID) -> None:
        """Serialize hierarchy edits per tenant (PostgreSQL only)."""
        bind = self.session.get_bind()
        if bind.dialect.name != "postgresql":
            return
        self.session.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": tenant_lock_key(tenant_id)},
        )

    @staticmethod
    def _normalize_ids(payload: Mapping[str, Any]) -> dict[str, Any]:
        normalized = dict(payload)
        for name in ID_FIELDS:
            if name in normalized:
                normalized[name] = as_uuid(normalized[name])
        return normalized

    @staticmethod
    def _reject_derived(payload: Mapping[str, Any]) -> None:
        for name in payload:
            if name in DERIVED_FIELDS:
                raise ImmutableFieldError(NODE_ENTITY_TYPE, name)

    def _check_country(self, country_id: UUID | None) -> None:
        if country_id is not None and self.session.get(Country, country_id) is None:
            raise ReferenceNotFoundError("Country", str(country_id))

    @staticmethod
    def _raise_if_invalid(result: ValidationResult, node_id: UUID | None) -> None:
        if not result.is_valid:
            raise NodeValidationError(
                list(result.errors),
                list(result.warnings),
                node_id=str(node_id) if node_id else None,
            )

    @staticmethod
    def _log_warnings(node_id: UUID, advisories: ValidationResult) -> None:
        if advisories.warnings:
            logger.warning(
                "node_advisories",
                extra={"node_id": str(node_id), "warnings": list(advisories.warnings)},
            )
