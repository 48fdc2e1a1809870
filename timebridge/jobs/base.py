"""Common lifecycle of the sync jobs"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from timebridge.models import JobLog, ServiceDefinition, User
from timebridge.services.repository import Repository
from timebridge.synced_services import SyncedService, create_synced_service

logger = logging.getLogger(__name__)


class FatalSyncError(Exception):
    """The job cannot run for this user at all; retrying will not help."""


@dataclass
class SyncResult:
    """Outcome of one reconciliation pass.

    `operations_ok` is False when any remote operation failed, `persisted` is
    False when writing the (possibly partial) state back did not succeed.
    """

    operations_ok: bool
    persisted: bool
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.operations_ok and self.persisted


class SyncJob(ABC):
    """Runs one reconciliation pass for a user and tracks it in its JobLog"""

    def __init__(
        self,
        user: User,
        job_log: JobLog,
        repository: Repository,
        service_factory: Callable[[ServiceDefinition], SyncedService] = create_synced_service,
    ):
        self.user = user
        self.job_log = job_log
        self.repository = repository
        self._service_factory = service_factory
        self._services: Dict[str, SyncedService] = {}
        self._errors: List[str] = []

    @property
    def user_id(self) -> int:
        return self.user.id

    def start(self) -> bool:
        """Run the job; returns True only if everything was done and persisted."""
        if not self.job_log.set_to_running():
            logger.warning(
                f"{type(self).__name__}: job log {self.job_log.id} is {self.job_log.status}, not starting"
            )
            return False
        if not self._save_job_log():
            # nobody could tell this job ran
            return False

        try:
            result = self._do_the_job()
        except Exception as e:
            self.job_log.set_to_completed(False, errors=self._errors + [str(e)])
            self._save_job_log()
            raise

        self.job_log.set_to_completed(result.ok, errors=result.errors)
        logged = self._save_job_log()
        return result.ok and logged

    def _save_job_log(self) -> bool:
        if self.repository.update_job_log(self.job_log) is None:
            logger.error(
                f"{type(self).__name__}: persisting job log {self.job_log.id} "
                f"({self.job_log.status}) failed"
            )
            return False
        return True

    @abstractmethod
    def _do_the_job(self) -> SyncResult:
        """One reconciliation pass."""

    def _synced_service(self, service_definition: ServiceDefinition) -> SyncedService:
        """Synced service for a definition, created once per job."""
        service = self._services.get(service_definition.name)
        if service is None:
            service = self._service_factory(service_definition)
            self._services[service_definition.name] = service
        return service

    def _record_error(self, message: str, exc: Optional[BaseException] = None):
        if exc is not None:
            message = f"{message}: {exc}"
        logger.error(f"{type(self).__name__} (user {self.user_id}): {message}")
        self._errors.append(message)

    def _result(self, operations_ok: bool, persisted: bool) -> SyncResult:
        return SyncResult(operations_ok=operations_ok, persisted=persisted, errors=list(self._errors))
