import logging
import unittest
from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from timebridge.models import (
    JobDefinition,
    JobLog,
    JobOrigin,
    JobStatus,
    JobType,
    ServiceDefinition,
    User,
)
from timebridge.models.base import init_db
from timebridge.scheduler import JobScheduler
from timebridge.synced_services import ServiceObject, SyncedServiceError

logging.disable(logging.CRITICAL)


class _FakeService:
    def __init__(self, name, objects=None, fail=False):
        self.name = name
        self.objects = list(objects or [])
        self.fail = fail
        self.created = []

    def list_all_objects(self):
        if self.fail:
            raise SyncedServiceError(f"{self.name} unreachable", status_code=503)
        return list(self.objects)

    def render_full_name(self, service_object):
        return service_object.name

    def create_object(self, object_id, name, object_type):
        obj = ServiceObject(f"s{object_id}", name, object_type)
        self.created.append(obj)
        return obj


class JobSchedulerTests(unittest.TestCase):
    def setUp(self):
        engine = create_engine(
            "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        init_db(bind=engine)
        self.Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        self.services = {
            "Redmine": _FakeService("Redmine", [ServiceObject("1", "Alpha", "project")]),
            "TogglTrack": _FakeService("TogglTrack"),
        }
        self.scheduler = JobScheduler(
            session_factory=self.Session, service_factory=lambda sd: self.services[sd.name]
        )

        db = self.Session()
        user = User(
            username="alice",
            registrated=datetime(2024, 1, 1),
            service_definitions=[
                ServiceDefinition(name="Redmine", api_key="r", is_primary=True, config={}),
                ServiceDefinition(name="TogglTrack", api_key="t", is_primary=False, config={}),
            ],
            job_definitions=[
                JobDefinition(job_type=JobType.CONFIG, schedule="*/15 * * * *"),
                JobDefinition(job_type=JobType.TIME_ENTRIES, schedule="*/5 * * * *"),
            ],
        )
        db.add(user)
        db.commit()
        self.user_id = user.id
        db.close()

    def _job_logs(self):
        db = self.Session()
        try:
            return db.query(JobLog).order_by(JobLog.id).all()
        finally:
            db.close()

    def test_enqueue_config_job_creates_scheduled_log(self):
        job_log_id = self.scheduler.enqueue_config_job(self.user_id, origin=JobOrigin.MANUAL)

        self.assertIsNotNone(job_log_id)
        self.assertEqual(self.scheduler.queue.qsize(), 1)
        job_logs = self._job_logs()
        self.assertEqual(len(job_logs), 1)
        self.assertEqual(job_logs[0].status, JobStatus.SCHEDULED)
        self.assertEqual(job_logs[0].origin, JobOrigin.MANUAL)

    def test_unknown_user_is_not_queued(self):
        self.assertIsNone(self.scheduler.enqueue_config_job(999))
        self.assertEqual(self.scheduler.queue.qsize(), 0)

    def test_time_entries_job_waits_for_successful_config_job(self):
        self.assertIsNone(self.scheduler.enqueue_time_entries_job(self.user_id))
        self.assertEqual(self.scheduler.queue.qsize(), 0)

        self.scheduler.enqueue_config_job(self.user_id)
        self.scheduler.process_queue()

        self.assertIsNotNone(self.scheduler.enqueue_time_entries_job(self.user_id))

    def test_process_queue_runs_config_job(self):
        self.scheduler.enqueue_config_job(self.user_id)

        self.scheduler.process_queue()

        self.assertEqual(self.scheduler.queue.qsize(), 0)
        job_logs = self._job_logs()
        self.assertEqual([j.status for j in job_logs], [JobStatus.SUCCESSFUL])
        self.assertEqual(len(self.services["TogglTrack"].created), 1)

        db = self.Session()
        try:
            user = db.get(User, self.user_id)
            self.assertTrue(user.config_sync_done)
            self.assertEqual(len(user.mappings), 1)
        finally:
            db.close()

    def test_failed_job_is_retried_once(self):
        self.services["TogglTrack"].fail = True
        self.scheduler.enqueue_config_job(self.user_id)

        self.scheduler.process_queue()

        job_logs = self._job_logs()
        self.assertEqual([j.status for j in job_logs], [JobStatus.UNSUCCESSFUL, JobStatus.UNSUCCESSFUL])
        self.assertEqual([j.origin for j in job_logs], [JobOrigin.AUTO, JobOrigin.RETRY])
        self.assertEqual(self.scheduler.queue.qsize(), 0)

    def test_fatal_error_is_not_retried(self):
        db = self.Session()
        user = db.get(User, self.user_id)
        for definition in user.service_definitions:
            definition.is_primary = False
        db.commit()
        db.close()
        self.scheduler.enqueue_config_job(self.user_id)

        self.scheduler.process_queue()

        job_logs = self._job_logs()
        self.assertEqual(len(job_logs), 1)
        self.assertEqual(job_logs[0].status, JobStatus.UNSUCCESSFUL)

    def test_schedule_and_unschedule_user(self):
        db = self.Session()
        try:
            self.scheduler.schedule_user(db.get(User, self.user_id))
        finally:
            db.close()

        self.assertTrue(self.scheduler.is_user_scheduled(self.user_id))
        job = self.scheduler.scheduler.get_job(f"config_user_{self.user_id}")
        self.assertEqual(job.args, (self.user_id, JobType.CONFIG))

        self.assertTrue(self.scheduler.unschedule_user(self.user_id))
        self.assertFalse(self.scheduler.is_user_scheduled(self.user_id))
        self.assertFalse(self.scheduler.unschedule_user(self.user_id))

    def test_job_whose_log_already_ran_is_dropped_without_retry(self):
        job_log_id = self.scheduler.enqueue_config_job(self.user_id)
        db = self.Session()
        job_log = db.get(JobLog, job_log_id)
        job_log.set_to_running()
        job_log.set_to_completed(True)
        db.commit()
        db.close()

        self.scheduler.process_queue()

        job_logs = self._job_logs()
        self.assertEqual([j.status for j in job_logs], [JobStatus.SUCCESSFUL])
        self.assertEqual(self.scheduler.queue.qsize(), 0)
        self.assertEqual(self.services["TogglTrack"].created, [])


if __name__ == "__main__":
    unittest.main()
