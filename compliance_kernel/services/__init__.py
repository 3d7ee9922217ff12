"""Services for the compliance kernel (write side)."""

from compliance_kernel.services.change_interception import ChangeInterceptionMiddleware
from compliance_kernel.services.hierarchy_health_service import (
    HierarchyHealthReport,
    HierarchyHealthService,
)
from compliance_kernel.services.hierarchy_validation_service import HierarchyValidationService
from compliance_kernel.services.node_service import (
    NodeDeletionResult,
    NodeMutationResult,
    NodeService,
)
from compliance_kernel.services.processing_location_service import (
    LocationInfo,
    ProcessingLocationService,
)
from compliance_kernel.services.snapshot_flattener import SnapshotFlattener
from compliance_kernel.services.tenant_service import PurgeResult, TenantInfo, TenantService
from compliance_kernel.services.tracked_entities import default_tracking_registry

__all__ = [
    "ChangeInterceptionMiddleware",
    "HierarchyHealthReport",
    "HierarchyHealthService",
    "HierarchyValidationService",
    "LocationInfo",
    "NodeDeletionResult",
    "NodeMutationResult",
    "NodeService",
    "ProcessingLocationService",
    "PurgeResult",
    "SnapshotFlattener",
    "TenantInfo",
    "TenantService",
    "default_tracking_registry",
]
