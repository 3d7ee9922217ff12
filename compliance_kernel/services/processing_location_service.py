"""
ProcessingLocationService -- change-tracked writes to processing locations.

Responsibility:
    Adds, updates and deactivates the processing locations of a node.
    Every write goes through ChangeInterceptionMiddleware, so location
    history is recorded with country and transfer-mechanism snapshots.

Invariants enforced:
    - The owning node exists in the same tenant.
    - country_id and transfer_mechanism_id reference existing rows.
    - location_role is a LocationRole value.
    - Deactivation is a soft delete and is logged as DELETED.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from compliance_kernel.domain.clock import Clock
from compliance_kernel.domain.node_types import LocationRole
from compliance_kernel.domain.tracking import ChangeContext, TrackingRegistry
from compliance_kernel.exceptions import NodeNotFoundError, ReferenceNotFoundError
from compliance_kernel.logging_config import get_logger
from compliance_kernel.models.node import Node
from compliance_kernel.models.processing_location import ProcessingLocation
from compliance_kernel.models.reference_data import Country, TransferMechanism
from compliance_kernel.services.base import BaseService
from compliance_kernel.services.change_interception import ChangeInterceptionMiddleware
from compliance_kernel.services.tracked_entities import (
    PROCESSING_LOCATION_ENTITY_TYPE,
    default_tracking_registry,
)

logger = get_logger("services.processing_location")


@dataclass(frozen=True)
class LocationInfo:
    """Immutable DTO for a processing location."""

    id: UUID
    tenant_id: UUID
    node_id: UUID
    service: str
    purpose_text: str | None
    country_id: UUID
    location_role: LocationRole
    transfer_mechanism_id: UUID | None
    is_active: bool
    metadata: dict[str, Any] | None


def to_location_info(location: ProcessingLocation) -> LocationInfo:
    return LocationInfo(
        id=location.id,
        tenant_id=location.tenant_id,
        node_id=location.node_id,
        service=location.service,
        purpose_text=location.purpose_text,
        country_id=location.country_id,
        location_role=LocationRole(location.location_role),
        transfer_mechanism_id=location.transfer_mechanism_id,
        is_active=location.is_active,
        metadata=location.metadata_json,
    )


class ProcessingLocationService(BaseService):
    """Validated, change-tracked location writes for one session."""

    def __init__(
        self,
        session: Session,
        registry: TrackingRegistry | None = None,
        clock: Clock | None = None,
        tracking_enabled: bool = True,
    ):
        super().__init__(session)
        self.middleware = ChangeInterceptionMiddleware(
            session,
            registry or default_tracking_registry(),
            clock=clock,
            enabled=tracking_enabled,
        )

    def add_location(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        node_id: UUID,
        service: str,
        country_id: UUID,
        location_role: LocationRole | str,
        transfer_mechanism_id: UUID | None = None,
        purpose_text: str | None = None,
        metadata: dict[str, Any] | None = None,
        change_reason: str | None = None,
    ) -> LocationInfo:
        """
        Attach a processing location to a node.

        Raises:
            NodeNotFoundError: Node absent in the tenant.
            ReferenceNotFoundError: Unknown country or transfer mechanism.
            ValueError: ``location_role`` is not a LocationRole.
        """
        self._require_node(node_id, tenant_id)
        self._check_references(country_id, transfer_mechanism_id)

        values = {
            "node_id": node_id,
            "service": service,
            "purpose_text": purpose_text,
            "country_id": country_id,
            "location_role": LocationRole(location_role).value,
            "transfer_mechanism_id": transfer_mechanism_id,
            "metadata_json": metadata,
        }
        context = ChangeContext(tenant_id, actor_id, change_reason)
        location = self.middleware.create(PROCESSING_LOCATION_ENTITY_TYPE, values, context)

        logger.info(
            "processing_location_added",
            extra={
                "tenant_id": str(tenant_id),
                "node_id": str(node_id),
                "location_id": str(location.id),
                "location_role": location.location_role,
            },
        )
        return to_location_info(location)

    def update_location(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        location_id: UUID,
        changes: Mapping[str, Any],
        change_reason: str | None = None,
    ) -> LocationInfo:
        """Apply ``changes`` to a location; tracked transitions are logged."""
        payload = dict(changes)
        if "location_role" in payload:
            payload["location_role"] = LocationRole(payload["location_role"]).value
        if "node_id" in payload:
            self._require_node(payload["node_id"], tenant_id)
        if "country_id" in payload or "transfer_mechanism_id" in payload:
            self._check_references(
                payload.get("country_id"),
                payload.get("transfer_mechanism_id"),
            )

        context = ChangeContext(tenant_id, actor_id, change_reason)
        location = self.middleware.update(
            PROCESSING_LOCATION_ENTITY_TYPE, location_id, payload, context,
        )
        logger.info(
            "processing_location_updated",
            extra={
                "tenant_id": str(tenant_id),
                "location_id": str(location_id),
                "fields": sorted(payload),
            },
        )
        return to_location_info(location)

    def deactivate_location(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        location_id: UUID,
        change_reason: str | None = None,
    ) -> LocationInfo:
        """Soft delete: ``is_active`` -> False, logged as DELETED."""
        return self.update_location(
            tenant_id, actor_id, location_id, {"is_active": False}, change_reason,
        )

    def list_locations(
        self,
        tenant_id: UUID,
        node_id: UUID,
        include_inactive: bool = False,
    ) -> list[LocationInfo]:
        stmt = select(ProcessingLocation).where(
            ProcessingLocation.tenant_id == tenant_id,
            ProcessingLocation.node_id == node_id,
        )
        if not include_inactive:
            stmt = stmt.where(ProcessingLocation.is_active.is_(True))
        stmt = stmt.order_by(ProcessingLocation.created_at, ProcessingLocation.id)
        return [to_location_info(loc) for loc in self.session.execute(stmt).scalars()]

    def _require_node(self, node_id: UUID, tenant_id: UUID) -> None:
        stmt = select(Node.id).where(Node.id == node_id, Node.tenant_id == tenant_id)
        if self.session.execute(stmt).scalar_one_or_none() is None:
            raise NodeNotFoundError(str(node_id))

    def _check_references(
        self,
        country_id: UUID | None,
        transfer_mechanism_id: UUID | None,
    ) -> None:
        if country_id is not None and self.session.get(Country, country_id) is None:
            raise ReferenceNotFoundError("Country", str(country_id))
        if (
            transfer_mechanism_id is not None
            and self.session.get(TransferMechanism, transfer_mechanism_id) is None
        ):
            raise ReferenceNotFoundError("TransferMechanism", str(transfer_mechanism_id))
