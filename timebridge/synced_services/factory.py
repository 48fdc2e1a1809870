"""Synced service selection by service name"""
from typing import Any, Dict, Type

from timebridge.synced_services.base import SyncedService
from timebridge.synced_services.redmine import RedmineSyncedService
from timebridge.synced_services.toggl import TogglTrackSyncedService

SYNCED_SERVICES: Dict[str, Type[SyncedService]] = {
    "TogglTrack": TogglTrackSyncedService,
    "Redmine": RedmineSyncedService,
}


def create_synced_service(service_definition: Any) -> SyncedService:
    """Instantiate the synced service implementation for a service definition."""
    service_cls = SYNCED_SERVICES.get(service_definition.name)
    if service_cls is None:
        raise ValueError(f"Unknown synced service '{service_definition.name}'")
    return service_cls(service_definition)
