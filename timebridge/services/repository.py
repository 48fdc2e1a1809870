"""Persistence operations used by the sync jobs"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from timebridge.config import settings
from timebridge.models import (
    JobDefinition,
    JobLog,
    JobOrigin,
    JobType,
    Mapping,
    TimeEntrySyncedObject,
    User,
)
from timebridge.models.base import utcnow

logger = logging.getLogger(__name__)


class Repository:
    """Narrow store interface over one database session.

    Every write commits immediately and reports whether it was applied:
    None/False means the change was rolled back.
    """

    def __init__(self, db: Session):
        self.db = db

    def _commit(self, what: str) -> bool:
        try:
            self.db.commit()
            return True
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to persist {what}: {e}")
            return False

    # ---------------------------------------------------------------------
    # Users
    # ---------------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def list_active_users(self) -> List[User]:
        return self.db.query(User).filter(User.status == "active").all()

    def replace_user_mappings(self, user: User, mappings: Iterable[Mapping]) -> bool:
        """Make `mappings` the user's complete mapping set (missing ones are deleted)."""
        user.mappings = list(mappings)
        return self._commit(f"mappings of user {user.id}")

    def _set_last_successfully_done(self, user: User, job_type: JobType, when: Optional[datetime]) -> bool:
        job_definition = user.job_definition(job_type)
        if job_definition is None:
            schedule = (
                settings.default_config_sync_schedule
                if job_type == JobType.CONFIG
                else settings.default_time_entry_sync_schedule
            )
            job_definition = JobDefinition(job_type=job_type, schedule=schedule)
            user.job_definitions.append(job_definition)
        job_definition.last_successfully_done = when or utcnow()
        return self._commit(f"{job_type.value} job definition of user {user.id}")

    def set_config_job_last_successfully_done(self, user: User, when: Optional[datetime] = None) -> bool:
        return self._set_last_successfully_done(user, JobType.CONFIG, when)

    def set_time_entry_job_last_successfully_done(self, user: User, when: Optional[datetime] = None) -> bool:
        return self._set_last_successfully_done(user, JobType.TIME_ENTRIES, when)

    # ---------------------------------------------------------------------
    # Time entry synced objects
    # ---------------------------------------------------------------------

    def list_time_entry_synced_objects(self, user: User) -> Optional[List[TimeEntrySyncedObject]]:
        try:
            return (
                self.db.query(TimeEntrySyncedObject)
                .filter(TimeEntrySyncedObject.user_id == user.id)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to load time entry synced objects of user {user.id}: {e}")
            return None

    def create_time_entry_synced_object(
        self, teso: TimeEntrySyncedObject
    ) -> Optional[TimeEntrySyncedObject]:
        self.db.add(teso)
        return teso if self._commit("new time entry synced object") else None

    def update_time_entry_synced_object(
        self, teso: TimeEntrySyncedObject
    ) -> Optional[TimeEntrySyncedObject]:
        self.db.add(teso)
        return teso if self._commit(f"time entry synced object {teso.id}") else None

    def delete_time_entry_synced_object(self, teso: TimeEntrySyncedObject) -> bool:
        self.db.delete(teso)
        return self._commit(f"deletion of time entry synced object {teso.id}")

    # ---------------------------------------------------------------------
    # Job logs
    # ---------------------------------------------------------------------

    def create_job_log(
        self, user_id: int, job_type: JobType, origin: JobOrigin = JobOrigin.AUTO
    ) -> Optional[JobLog]:
        job_log = JobLog(user_id=user_id, job_type=job_type, origin=origin)
        self.db.add(job_log)
        return job_log if self._commit(f"{job_type.value} job log of user {user_id}") else None

    def update_job_log(self, job_log: JobLog) -> Optional[JobLog]:
        self.db.add(job_log)
        return job_log if self._commit(f"job log {job_log.id}") else None
