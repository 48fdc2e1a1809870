import logging
import unittest
from unittest.mock import Mock, patch

from fastapi import HTTPException
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from timebridge.api import jobs, users
from timebridge.models import JobOrigin, JobType, TimeEntrySyncedObject, ServiceTimeEntryObject
from timebridge.models.base import init_db
from timebridge.services.repository import Repository

logging.disable(logging.CRITICAL)


def _user_payload(**overrides):
    payload = {
        "username": "alice",
        "service_definitions": [
            {"name": "Redmine", "api_key": "r", "is_primary": True, "config": {"api_point": "https://r.example/"}},
            {"name": "TogglTrack", "api_key": "t", "config": {"workspace_id": 7}},
        ],
    }
    payload.update(overrides)
    return users.UserCreate(**payload)


class ApiTests(unittest.TestCase):
    def setUp(self):
        engine = create_engine(
            "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        init_db(bind=engine)
        self.db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()

        self.scheduler = Mock()
        patchers = [
            patch("timebridge.api.users.scheduler", self.scheduler),
            patch("timebridge.api.jobs.scheduler", self.scheduler),
        ]
        for patcher in patchers:
            patcher.start()
            self.addCleanup(patcher.stop)

    def tearDown(self):
        self.db.close()

    def test_create_user_with_job_definitions_and_schedule(self):
        user = users.create_user(_user_payload(time_entry_sync_schedule="*/10 * * * *"), db=self.db)

        self.assertEqual(user.username, "alice")
        self.assertEqual(user.primary_service_definition.name, "Redmine")
        self.assertEqual(user.time_entry_sync_job_definition.schedule, "*/10 * * * *")
        self.assertIsNotNone(user.config_sync_job_definition.schedule)
        self.scheduler.schedule_user.assert_called_once_with(user)

        response = users.UserResponse.model_validate(user)
        self.assertEqual(len(response.service_definitions), 2)
        self.assertEqual({jd.job_type for jd in response.job_definitions}, {JobType.CONFIG, JobType.TIME_ENTRIES})

    def test_create_user_requires_exactly_one_primary(self):
        payload = _user_payload()
        payload.service_definitions[1].is_primary = True

        with self.assertRaises(HTTPException) as ctx:
            users.create_user(payload, db=self.db)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_create_user_rejects_unknown_service(self):
        payload = _user_payload()
        payload.service_definitions[1].name = "Jira"

        with self.assertRaises(HTTPException) as ctx:
            users.create_user(payload, db=self.db)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_duplicate_username(self):
        users.create_user(_user_payload(), db=self.db)

        with self.assertRaises(HTTPException) as ctx:
            users.create_user(_user_payload(), db=self.db)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_delete_user_removes_owned_records(self):
        user = users.create_user(_user_payload(), db=self.db)
        user_id = user.id
        self.db.add(
            TimeEntrySyncedObject(
                user_id=user_id,
                service_time_entry_objects=[ServiceTimeEntryObject(entry_id="1", service="Redmine", is_origin=True)],
            )
        )
        self.db.commit()
        Repository(self.db).create_job_log(user_id, JobType.CONFIG)

        users.delete_user(user_id, db=self.db)

        self.scheduler.unschedule_user.assert_called_once_with(user_id)
        self.assertEqual(self.db.query(TimeEntrySyncedObject).count(), 0)
        self.assertEqual(jobs.list_job_logs(db=self.db), [])
        with self.assertRaises(HTTPException) as ctx:
            users.get_user(user_id, db=self.db)
        self.assertEqual(ctx.exception.status_code, 404)

    def test_queue_config_job(self):
        user = users.create_user(_user_payload(), db=self.db)
        self.scheduler.enqueue_config_job.return_value = 5

        result = jobs.queue_config_job(user.id, db=self.db)

        self.assertEqual(result["job_log_id"], 5)
        self.scheduler.enqueue_config_job.assert_called_once_with(user.id, origin=JobOrigin.MANUAL)

    def test_queue_for_unknown_user_is_404(self):
        with self.assertRaises(HTTPException) as ctx:
            jobs.queue_config_job(42, db=self.db)
        self.assertEqual(ctx.exception.status_code, 404)

    def test_time_entries_job_needs_successful_config_job(self):
        user = users.create_user(_user_payload(), db=self.db)

        with self.assertRaises(HTTPException) as ctx:
            jobs.queue_time_entries_job(user.id, db=self.db)
        self.assertEqual(ctx.exception.status_code, 409)
        self.scheduler.enqueue_time_entries_job.assert_not_called()

        Repository(self.db).set_config_job_last_successfully_done(user)
        self.scheduler.enqueue_time_entries_job.return_value = 7
        self.assertEqual(jobs.queue_time_entries_job(user.id, db=self.db)["job_log_id"], 7)

    def test_stop_without_scheduled_jobs_is_404(self):
        self.scheduler.unschedule_user.return_value = False

        with self.assertRaises(HTTPException) as ctx:
            jobs.stop_jobs(1)
        self.assertEqual(ctx.exception.status_code, 404)

    def test_is_scheduled(self):
        self.scheduler.is_user_scheduled.return_value = True

        self.assertEqual(jobs.is_scheduled(1), {"scheduled": True})

    def test_list_job_logs_filters_by_user(self):
        first = users.create_user(_user_payload(), db=self.db)
        second = users.create_user(_user_payload(username="bob"), db=self.db)
        repository = Repository(self.db)
        job_log = repository.create_job_log(first.id, JobType.CONFIG)
        job_log.set_to_running()
        job_log.set_to_completed(False, errors=["boom"])
        repository.update_job_log(job_log)
        repository.create_job_log(second.id, JobType.TIME_ENTRIES, JobOrigin.RETRY)

        logs = jobs.list_job_logs(user_id=first.id, db=self.db)

        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].status, "unsuccessful")
        self.assertEqual(logs[0].job_type, "config")
        self.assertEqual(logs[0].errors, ["boom"])
        self.assertEqual(len(jobs.list_job_logs(db=self.db)), 2)


if __name__ == "__main__":
    unittest.main()
