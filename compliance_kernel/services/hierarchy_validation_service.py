"""
HierarchyValidationService -- rule-table validation of parent-link changes.

Responsibility:
    Decides, before any write, whether a proposed (type, parent) assignment
    for a node is legal, and gathers advisory warnings.  Never mutates.

Architecture position:
    Kernel > Services.  Consumes GraphQueryEngine for cycle and depth checks
    and an injected HierarchyRuleTable for the static rules.

Invariants enforced (blocking errors):
    - Type may have a parent at all.
    - Not its own parent.
    - Parent exists in the same tenant.
    - Parent type is allowed for the node type.
    - No cycle: the node is not an ancestor of the proposed parent.
    - Depth of the node after the change <= type max depth.
    - Moving or re-typing an existing node keeps every descendant within
      its own type's max depth and every direct child's parent-type rule.
    - A linked external organization belongs to the same tenant.
    Cycle and depth checks only run when no earlier error was found.

Advisory rules (warnings, never blocking):
    - Type expects an external organization link but has none.
    - Type should not carry an external organization but does.
    - Linked external organization lacks an ACTIVE agreement of a required
      type (e.g. DPA for processors).

Audit relevance:
    Rejections are logged as ``hierarchy_validation_failed`` with every
    error message.  Nothing reaches storage on rejection.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from compliance_kernel.domain.hierarchy_rules import HierarchyRuleTable, default_rule_table
from compliance_kernel.domain.node_types import AgreementStatus, HierarchyKind, NodeType
from compliance_kernel.domain.validation import ValidationResult, as_uuid
from compliance_kernel.logging_config import get_logger
from compliance_kernel.models.external_organization import Agreement, ExternalOrganization
from compliance_kernel.selectors.graph_selector import GraphQueryEngine, WalkTermination

logger = get_logger("services.hierarchy_validation")


class HierarchyValidationService:
    """
    Read-only validator for node hierarchy changes.

    Contract:
        ``validate_hierarchy_change`` must be called inside the same
        transaction as the write it guards, after the caller has taken its
        locks, so the ancestor chain it reads is the one that will commit.

    Guarantees:
        - Never writes to the session.
        - Results are deterministic for a given database state.
    """

    def __init__(
        self,
        session: Session,
        rule_table: HierarchyRuleTable | None = None,
        graph: GraphQueryEngine | None = None,
    ):
        self.session = session
        self.rule_table = rule_table or default_rule_table()
        self.graph = graph or GraphQueryEngine(session, self.rule_table)

    def get_hierarchy_kind_for_type(self, node_type: NodeType | str) -> HierarchyKind | None:
        """Derived HierarchyKind stamped on every node of ``node_type``."""
        return self.rule_table.hierarchy_kind_for(node_type)

    def validate_hierarchy_change(
        self,
        node_id: UUID | None,
        proposed_type: NodeType | str,
        proposed_parent_id: UUID | None,
        tenant_id: UUID,
    ) -> ValidationResult:
        """
        Validate assigning ``proposed_type`` and ``proposed_parent_id`` to a node.

        Args:
            node_id: Existing node, or None for a node about to be created.
            proposed_type: Node type after the change.
            proposed_parent_id: Parent after the change, or None for a root.
            tenant_id: Tenant scope of the write.

        Returns:
            ValidationResult whose errors block the write.
        """
        node_id = as_uuid(node_id)
        proposed_parent_id = as_uuid(proposed_parent_id)
        node_type = NodeType(proposed_type)
        rule = self.rule_table.rule_for(node_type)
        errors: list[str] = []
        new_depth = 0

        if proposed_parent_id is not None:
            if not rule.can_have_parent:
                errors.append(
                    f"Node type {node_type.value} cannot have a parent according to hierarchy rules"
                )

            if node_id is not None and node_id == proposed_parent_id:
                errors.append("A node cannot be its own parent")
            else:
                parent = self.graph.get_node(proposed_parent_id, tenant_id)
                if parent is None:
                    errors.append(f"Parent node {proposed_parent_id} not found in this tenant")
                else:
                    if not rule.allows_parent(parent.type):
                        allowed = ", ".join(sorted(t.value for t in rule.allowed_parent_types))
                        errors.append(
                            f"Parent node type {parent.type.value} is not an allowed parent "
                            f"type for {node_type.value}. Allowed types: {allowed or 'none'}"
                        )

                    if node_id is not None and node_id == parent.id:
                        errors.append("A node cannot be its own parent")
                    elif not errors:
                        walk = self.graph.walk_ancestors(parent.id, tenant_id)
                        if node_id is not None and node_id in walk.ids:
                            errors.append(
                                "Setting this parent would create a circular reference in the hierarchy"
                            )
                        elif walk.termination != WalkTermination.ROOT:
                            errors.append(
                                f"Ancestor chain of parent {parent.id} is corrupted "
                                f"({walk.termination.value}); fix the hierarchy first"
                            )
                        else:
                            new_depth = len(walk.ancestors) + 1
                            if new_depth > rule.max_depth:
                                errors.append(
                                    f"Setting this parent would result in depth {new_depth}, "
                                    f"which exceeds maximum depth of {rule.max_depth} "
                                    f"for type {node_type.value}"
                                )

        if not errors and node_id is not None:
            errors.extend(self._check_subtree(node_id, node_type, new_depth, tenant_id))

        result = ValidationResult.of(errors)
        if not result.is_valid:
            logger.info(
                "hierarchy_validation_failed",
                extra={
                    "node_id": str(node_id) if node_id else None,
                    "proposed_type": node_type.value,
                    "proposed_parent_id": str(proposed_parent_id) if proposed_parent_id else None,
                    "errors": list(result.errors),
                },
            )
        return result

    def _check_subtree(
        self,
        node_id: UUID,
        node_type: NodeType,
        new_depth: int,
        tenant_id: UUID,
    ) -> list[str]:
        """Rules that an existing node's descendants impose on its move/retype."""
        current = self.graph.get_node(node_id, tenant_id)
        if current is None:
            return []

        errors: list[str] = []
        descendants = self.graph.get_descendant_tree(node_id, tenant_id)

        if current.type != node_type:
            for entry in descendants:
                if entry.depth != 1:
                    continue
                child_rule = self.rule_table.rule_for(entry.node.type)
                if not child_rule.allows_parent(node_type):
                    errors.append(
                        f"Child {entry.node.id} of type {entry.node.type.value} "
                        f"cannot have a parent of type {node_type.value}"
                    )

        old_depth = self.graph.calculate_depth(node_id, tenant_id)
        if new_depth > old_depth:
            for entry in descendants:
                depth_after = new_depth + entry.depth
                max_depth = self.rule_table.rule_for(entry.node.type).max_depth
                if depth_after > max_depth:
                    errors.append(
                        f"Descendant {entry.node.id} would be at depth {depth_after}, "
                        f"which exceeds maximum depth of {max_depth} "
                        f"for type {entry.node.type.value}"
                    )
        return errors

    def validate_external_organization(
        self,
        external_organization_id: UUID | None,
        tenant_id: UUID,
    ) -> ValidationResult:
        """A linked external organization must exist in the node's tenant."""
        if external_organization_id is None:
            return ValidationResult.ok()
        ext_org = self._load_external_organization(external_organization_id, tenant_id)
        if ext_org is None:
            return ValidationResult.of(
                [f"External organization {external_organization_id} not found in this tenant"]
            )
        return ValidationResult.ok()

    def collect_advisories(
        self,
        node_type: NodeType | str,
        external_organization_id: UUID | None,
        tenant_id: UUID,
    ) -> ValidationResult:
        """
        Advisory warnings for a node of ``node_type`` linked to
        ``external_organization_id``.  Never returns errors.
        """
        node_type = NodeType(node_type)
        rule = self.rule_table.rule_for(node_type)
        warnings: list[str] = []

        if rule.requires_external_org and external_organization_id is None:
            warnings.append(f"Node type {node_type.value} requires an external organization")
        if not rule.requires_external_org and external_organization_id is not None:
            warnings.append(f"Node type {node_type.value} should not have an external organization")

        if rule.required_agreement_types and external_organization_id is not None:
            ext_org = self._load_external_organization(external_organization_id, tenant_id)
            if ext_org is not None:
                active = set(
                    self.session.execute(
                        select(Agreement.agreement_type).where(
                            Agreement.tenant_id == tenant_id,
                            Agreement.external_organization_id == ext_org.id,
                            Agreement.status == AgreementStatus.ACTIVE.value,
                        )
                    ).scalars()
                )
                for required in sorted(rule.required_agreement_types, key=lambda a: a.value):
                    if required.value not in active:
                        warnings.append(
                            f"Node type {node_type.value} is missing required "
                            f"{required.value} agreement with {ext_org.legal_name}"
                        )

        return ValidationResult.ok(warnings)

    def _load_external_organization(
        self,
        external_organization_id: UUID,
        tenant_id: UUID,
    ) -> ExternalOrganization | None:
        stmt = select(ExternalOrganization).where(
            ExternalOrganization.id == external_organization_id,
            ExternalOrganization.tenant_id == tenant_id,
        )
        return self.session.execute(stmt).scalar_one_or_none()
