"""Sync jobs"""

from timebridge.jobs.base import FatalSyncError, SyncJob, SyncResult
from timebridge.jobs.config_sync_job import ConfigSyncJob, find_mapping
from timebridge.jobs.time_entries_sync_job import TimeEntriesSyncJob

__all__ = [
    "FatalSyncError",
    "SyncJob",
    "SyncResult",
    "ConfigSyncJob",
    "TimeEntriesSyncJob",
    "find_mapping",
]
