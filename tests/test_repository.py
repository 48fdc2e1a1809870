import logging
import unittest
from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from timebridge.config import settings
from timebridge.models import (
    JobOrigin,
    JobStatus,
    JobType,
    Mapping,
    MappingsObject,
    ServiceDefinition,
    ServiceTimeEntryObject,
    TimeEntrySyncedObject,
    User,
)
from timebridge.models.base import init_db
from timebridge.services.repository import Repository

logging.disable(logging.CRITICAL)


def _session_factory():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    init_db(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def _mapping(object_id, name):
    return Mapping(
        primary_object_id=object_id,
        primary_object_type="project",
        name=name,
        mappings_objects=[
            MappingsObject(object_id=object_id, name=name, service="Redmine", type="project"),
            MappingsObject(object_id=f"t{object_id}", name=name, service="TogglTrack", type="project"),
        ],
    )


class RepositoryTests(unittest.TestCase):
    def setUp(self):
        self.db = _session_factory()()
        self.repository = Repository(self.db)
        self.user = User(
            username="alice",
            registrated=datetime(2024, 1, 1),
            service_definitions=[
                ServiceDefinition(name="Redmine", api_key="r", is_primary=True, config={"api_point": "x"})
            ],
        )
        self.db.add(self.user)
        self.db.commit()

    def tearDown(self):
        self.db.close()

    def test_list_active_users(self):
        self.db.add(User(username="bob", status="inactive"))
        self.db.commit()

        self.assertEqual([u.username for u in self.repository.list_active_users()], ["alice"])
        self.assertIs(self.repository.get_user(self.user.id), self.user)
        self.assertIsNone(self.repository.get_user(999))

    def test_replace_user_mappings_deletes_dropped_mappings(self):
        alpha, beta = _mapping("1", "Alpha"), _mapping("2", "Beta")
        self.assertTrue(self.repository.replace_user_mappings(self.user, [alpha, beta]))

        self.assertTrue(self.repository.replace_user_mappings(self.user, [alpha]))

        self.assertEqual(self.db.query(Mapping).count(), 1)
        self.assertEqual(self.db.query(MappingsObject).count(), 2)
        self.assertEqual(self.user.mappings[0].user_id, self.user.id)

    def test_last_successfully_done_creates_job_definition(self):
        self.assertFalse(self.user.config_sync_done)

        when = datetime(2024, 2, 1, 12, 0)
        self.assertTrue(self.repository.set_config_job_last_successfully_done(self.user, when))

        job_definition = self.user.config_sync_job_definition
        self.assertEqual(job_definition.schedule, settings.default_config_sync_schedule)
        self.assertEqual(job_definition.last_successfully_done, when)
        self.assertTrue(self.user.config_sync_done)
        self.assertIsNone(self.user.time_entry_sync_job_definition)

        self.assertTrue(self.repository.set_time_entry_job_last_successfully_done(self.user))
        self.assertIsNotNone(self.user.time_entry_sync_job_definition.last_successfully_done)

    def test_time_entry_synced_object_lifecycle(self):
        teso = TimeEntrySyncedObject(
            user_id=self.user.id,
            last_updated=datetime(2024, 3, 1),
            service_time_entry_objects=[
                ServiceTimeEntryObject(entry_id="r1", service="Redmine", is_origin=True),
                ServiceTimeEntryObject(entry_id="g1", service="TogglTrack", is_origin=False),
            ],
        )
        self.assertIs(self.repository.create_time_entry_synced_object(teso), teso)
        self.assertEqual(teso.origin.entry_id, "r1")

        teso.service_time_entry_objects[1].entry_id = "g2"
        teso.last_updated = datetime(2024, 3, 2)
        self.assertIs(self.repository.update_time_entry_synced_object(teso), teso)

        loaded = self.repository.list_time_entry_synced_objects(self.user)
        self.assertEqual(len(loaded), 1)
        self.assertEqual({s.entry_id for s in loaded[0].service_time_entry_objects}, {"r1", "g2"})

        self.assertTrue(self.repository.delete_time_entry_synced_object(teso))
        self.assertEqual(self.repository.list_time_entry_synced_objects(self.user), [])
        self.assertEqual(self.db.query(ServiceTimeEntryObject).count(), 0)

    def test_failed_commit_is_rolled_back(self):
        teso = TimeEntrySyncedObject(
            user_id=self.user.id,
            service_time_entry_objects=[
                ServiceTimeEntryObject(entry_id="r1", service="Redmine", is_origin=True),
                ServiceTimeEntryObject(entry_id="r2", service="Redmine", is_origin=False),
            ],
        )

        self.assertIsNone(self.repository.create_time_entry_synced_object(teso))
        self.assertEqual(self.db.query(TimeEntrySyncedObject).count(), 0)

    def test_job_log_create_and_update(self):
        job_log = self.repository.create_job_log(self.user.id, JobType.CONFIG, JobOrigin.MANUAL)

        self.assertIsNotNone(job_log.id)
        self.assertEqual(job_log.status, JobStatus.SCHEDULED)
        self.assertEqual(job_log.origin, JobOrigin.MANUAL)

        job_log.set_to_running()
        job_log.set_to_completed(False, errors=["Toggl: HTTP 500"])
        self.assertIs(self.repository.update_job_log(job_log), job_log)

        self.db.expire_all()
        self.assertEqual(job_log.status, JobStatus.UNSUCCESSFUL)
        self.assertEqual(job_log.error_list, ["Toggl: HTTP 500"])


if __name__ == "__main__":
    unittest.main()
