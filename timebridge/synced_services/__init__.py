"""External service implementations"""

from timebridge.synced_services.base import (
    ServiceObject,
    ServiceObjectMaybeExistsError,
    SyncedService,
    SyncedServiceError,
    TimeEntry,
)
from timebridge.synced_services.factory import SYNCED_SERVICES, create_synced_service

__all__ = [
    "ServiceObject",
    "ServiceObjectMaybeExistsError",
    "SyncedService",
    "SyncedServiceError",
    "TimeEntry",
    "SYNCED_SERVICES",
    "create_synced_service",
]
