"""Database models"""

from timebridge.models.base import Base
from timebridge.models.job_definition import JobDefinition, JobType
from timebridge.models.job_log import JobLog, JobOrigin, JobStatus
from timebridge.models.mapping import Mapping, MappingsObject
from timebridge.models.service_definition import ServiceDefinition
from timebridge.models.time_entry_synced_object import (
    ServiceTimeEntryObject,
    TimeEntrySyncedObject,
)
from timebridge.models.user import User

__all__ = [
    "Base",
    "User",
    "ServiceDefinition",
    "JobDefinition",
    "JobType",
    "Mapping",
    "MappingsObject",
    "TimeEntrySyncedObject",
    "ServiceTimeEntryObject",
    "JobLog",
    "JobStatus",
    "JobOrigin",
]
