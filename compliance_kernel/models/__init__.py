"""ORM models for the compliance kernel."""

from compliance_kernel.models.change_log import ChangeLogEntry
from compliance_kernel.models.external_organization import Agreement, ExternalOrganization
from compliance_kernel.models.node import Node
from compliance_kernel.models.processing_location import ProcessingLocation
from compliance_kernel.models.reference_data import Country, TransferMechanism
from compliance_kernel.models.tenant import Tenant

__all__ = [
    "Agreement",
    "ChangeLogEntry",
    "Country",
    "ExternalOrganization",
    "Node",
    "ProcessingLocation",
    "Tenant",
    "TransferMechanism",
]
