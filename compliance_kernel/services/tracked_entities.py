"""
Tracked entity registrations.

Each tracked type is declared here as data.  To track a new entity type,
add a TrackedEntitySpec to ``default_tracking_registry``; no interception
code changes.
"""

from compliance_kernel.domain.tracking import JoinSpec, TrackedEntitySpec, TrackingRegistry
from compliance_kernel.models.external_organization import ExternalOrganization
from compliance_kernel.models.node import Node
from compliance_kernel.models.processing_location import ProcessingLocation
from compliance_kernel.models.reference_data import Country, TransferMechanism

NODE_ENTITY_TYPE = "Node"
PROCESSING_LOCATION_ENTITY_TYPE = "ProcessingLocation"

_COUNTRY_JOIN_FIELDS = ("id", "name", "iso_code", "gdpr_status")

NODE_SPEC = TrackedEntitySpec(
    entity_type=NODE_ENTITY_TYPE,
    model=Node,
    # name and description are free text and deliberately untracked
    tracked_fields=frozenset({
        "type",
        "parent_id",
        "purpose",
        "external_organization_id",
        "country_id",
        "is_active",
    }),
    reference_joins=(
        JoinSpec("country_id", Country, "country", _COUNTRY_JOIN_FIELDS),
        JoinSpec(
            "external_organization_id",
            ExternalOrganization,
            "external_organization",
            ("id", "legal_name", "trading_name"),
        ),
        JoinSpec("parent_id", Node, "parent", ("id", "name", "type")),
    ),
    soft_delete_field="is_active",
)

PROCESSING_LOCATION_SPEC = TrackedEntitySpec(
    entity_type=PROCESSING_LOCATION_ENTITY_TYPE,
    model=ProcessingLocation,
    tracked_fields=frozenset({
        "country_id",
        "transfer_mechanism_id",
        "location_role",
        "is_active",
    }),
    reference_joins=(
        JoinSpec("country_id", Country, "country", _COUNTRY_JOIN_FIELDS),
        JoinSpec(
            "transfer_mechanism_id",
            TransferMechanism,
            "transfer_mechanism",
            ("id", "name", "code", "gdpr_article"),
        ),
        JoinSpec("node_id", Node, "node", ("id", "name", "type")),
    ),
    soft_delete_field="is_active",
)


def default_tracking_registry() -> TrackingRegistry:
    return TrackingRegistry([NODE_SPEC, PROCESSING_LOCATION_SPEC])
