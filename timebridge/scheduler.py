"""Background scheduler and job queue for periodic sync"""

import logging
import queue
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Type

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from timebridge.config import settings
from timebridge.jobs import ConfigSyncJob, FatalSyncError, SyncJob, TimeEntriesSyncJob
from timebridge.models import JobLog, JobOrigin, JobStatus, JobType, ServiceDefinition, User
from timebridge.models.base import SessionLocal
from timebridge.services.repository import Repository
from timebridge.synced_services import SyncedService, create_synced_service

logger = logging.getLogger(__name__)

JOB_CLASSES: Dict[JobType, Type[SyncJob]] = {
    JobType.CONFIG: ConfigSyncJob,
    JobType.TIME_ENTRIES: TimeEntriesSyncJob,
}

QUEUE_JOB_ID = "job_queue"


@dataclass
class QueuedJob:
    """A job waiting in the queue; `job_log_id` points to its SCHEDULED JobLog"""

    user_id: int
    job_type: JobType
    job_log_id: int
    attempt: int = 1


class JobScheduler:
    """Cron jobs per user put work into a queue that one interval job drains sequentially"""

    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        service_factory: Callable[[ServiceDefinition], SyncedService] = create_synced_service,
    ):
        self.scheduler = BackgroundScheduler()
        self.queue: "queue.Queue[QueuedJob]" = queue.Queue()
        self._session_factory = session_factory
        self._service_factory = service_factory

    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        self.scheduler.add_job(
            func=self.process_queue,
            trigger=IntervalTrigger(seconds=settings.queue_poll_interval_seconds),
            id=QUEUE_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("Job scheduler started")

        self.schedule_all_users()

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Job scheduler stopped")

    # ---------------------------------------------------------------------
    # Cron jobs
    # ---------------------------------------------------------------------

    @staticmethod
    def _cron_job_id(user_id: int, job_type: JobType) -> str:
        return f"{job_type.value}_user_{user_id}"

    def schedule_all_users(self):
        """Schedule cron jobs for all active users"""
        db = self._session_factory()
        try:
            for user in Repository(db).list_active_users():
                self.schedule_user(user)
        finally:
            db.close()

    def schedule_user(self, user: User):
        """(Re)schedule both cron jobs of a user from its job definitions"""
        for job_type in JOB_CLASSES:
            job_definition = user.job_definition(job_type)
            if job_definition is not None and job_definition.schedule:
                schedule = job_definition.schedule
            elif job_type == JobType.CONFIG:
                schedule = settings.default_config_sync_schedule
            else:
                schedule = settings.default_time_entry_sync_schedule

            try:
                trigger = CronTrigger.from_crontab(schedule)
            except ValueError as e:
                logger.error(f"Invalid {job_type.value} schedule '{schedule}' of user {user.id}: {e}")
                continue

            self.scheduler.add_job(
                func=self._enqueue_scheduled,
                trigger=trigger,
                id=self._cron_job_id(user.id, job_type),
                args=[user.id, job_type],
                replace_existing=True,
            )
            logger.info(f"Scheduled {job_type.value} job for user {user.id} at '{schedule}'")

    def unschedule_user(self, user_id: int) -> bool:
        """Remove the cron jobs of a user; False if there were none"""
        removed = False
        for job_type in JOB_CLASSES:
            job_id = self._cron_job_id(user_id, job_type)
            if self.scheduler.get_job(job_id) is not None:
                self.scheduler.remove_job(job_id)
                removed = True
        if removed:
            logger.info(f"Unscheduled jobs of user {user_id}")
        return removed

    def is_user_scheduled(self, user_id: int) -> bool:
        return any(
            self.scheduler.get_job(self._cron_job_id(user_id, job_type)) is not None
            for job_type in JOB_CLASSES
        )

    def _enqueue_scheduled(self, user_id: int, job_type: JobType):
        if job_type == JobType.CONFIG:
            self.enqueue_config_job(user_id)
        else:
            self.enqueue_time_entries_job(user_id)

    # ---------------------------------------------------------------------
    # Queue
    # ---------------------------------------------------------------------

    def enqueue_config_job(self, user_id: int, origin: JobOrigin = JobOrigin.AUTO) -> Optional[int]:
        """Queue a config sync job; returns the id of its JobLog"""
        return self._enqueue(user_id, JobType.CONFIG, origin)

    def enqueue_time_entries_job(
        self, user_id: int, origin: JobOrigin = JobOrigin.AUTO
    ) -> Optional[int]:
        """Queue a time entries sync job, only once the config job has succeeded"""
        return self._enqueue(user_id, JobType.TIME_ENTRIES, origin)

    def _enqueue(
        self, user_id: int, job_type: JobType, origin: JobOrigin, attempt: int = 1
    ) -> Optional[int]:
        db = self._session_factory()
        try:
            repository = Repository(db)
            user = repository.get_user(user_id)
            if user is None or user.status != "active":
                logger.warning(f"Not queueing {job_type.value} job: user {user_id} not found or inactive")
                return None
            if job_type == JobType.TIME_ENTRIES and not user.config_sync_done:
                # mappings are needed to translate time entries
                logger.info(f"Not queueing time entries job for user {user_id}: config job never succeeded")
                return None

            job_log = repository.create_job_log(user_id, job_type, origin)
            if job_log is None:
                logger.error(f"Not queueing {job_type.value} job for user {user_id}: job log not created")
                return None
            job_log_id = job_log.id
        finally:
            db.close()

        self.queue.put(QueuedJob(user_id, job_type, job_log_id, attempt))
        logger.info(f"Queued {job_type.value} job for user {user_id} ({origin.value}, attempt {attempt})")
        return job_log_id

    def process_queue(self):
        """Run all currently queued jobs, one after another"""
        while True:
            try:
                queued = self.queue.get_nowait()
            except queue.Empty:
                return
            try:
                self._run(queued)
            finally:
                self.queue.task_done()

    def _run(self, queued: QueuedJob):
        """Run one queued job in its own session; a failed job is queued again"""
        db = self._session_factory()
        try:
            repository = Repository(db)
            job_log = db.get(JobLog, queued.job_log_id)
            user = repository.get_user(queued.user_id)
            if job_log is None or user is None:
                logger.warning(f"Dropping {queued.job_type.value} job: user {queued.user_id} or its log is gone")
                return

            if job_log.status != JobStatus.SCHEDULED:
                # already run (or running) elsewhere, nothing to retry
                logger.warning(
                    f"Dropping {queued.job_type.value} job for user {queued.user_id}: "
                    f"job log {job_log.id} is {job_log.status.value}"
                )
                return

            job = JOB_CLASSES[queued.job_type](user, job_log, repository, self._service_factory)
            logger.info(f"Running {queued.job_type.value} job for user {queued.user_id}")
            try:
                successful = job.start()
            except FatalSyncError as e:
                logger.error(f"{queued.job_type.value} job for user {queued.user_id} cannot run: {e}")
                return
            except Exception as e:
                logger.error(f"{queued.job_type.value} job for user {queued.user_id} failed: {e}")
                successful = False
        finally:
            db.close()

        logger.info(f"{queued.job_type.value} job for user {queued.user_id} finished, successful: {successful}")
        if successful:
            return
        if queued.attempt < settings.job_max_attempts:
            self._enqueue(queued.user_id, queued.job_type, JobOrigin.RETRY, queued.attempt + 1)
        else:
            logger.error(
                f"{queued.job_type.value} job for user {queued.user_id} failed after {queued.attempt} attempts"
            )


# Global scheduler instance
scheduler = JobScheduler()
