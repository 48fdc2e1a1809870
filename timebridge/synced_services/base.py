"""Synced service capability shared by all external service implementations"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, List, Optional

import requests

from timebridge.config import settings

logger = logging.getLogger(__name__)


class SyncedServiceError(Exception):
    """A remote call to an external service failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ServiceObjectMaybeExistsError(SyncedServiceError):
    """Object creation was rejected with HTTP 400; the object may already exist."""


@dataclass
class ServiceObject:
    """A structural object (project, issue, tag, activity, ...) as seen inside one service"""

    id: str
    name: str
    type: str


@dataclass
class TimeEntry:
    """A live time entry as reported by one service"""

    id: str
    project_id: Optional[str]
    text: str
    start: datetime
    end: datetime
    duration: timedelta
    last_updated: datetime


def normalize_utc_naive(dt: datetime) -> datetime:
    """Normalize a datetime to UTC tz-naive (safe for comparisons)."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_service_datetime(value: str) -> datetime:
    """Parse ISO8601 timestamps (with or without 'Z') into UTC tz-naive datetimes."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return normalize_utc_naive(dt)


def to_iso_utc(dt: datetime) -> str:
    """Render a tz-naive UTC datetime as RFC3339 with 'Z'."""
    if dt.tzinfo is not None:
        dt = normalize_utc_naive(dt)
    return dt.replace(microsecond=0).isoformat() + "Z"


def only_date_string(value: datetime | date) -> str:
    return value.strftime("%Y-%m-%d")


class SyncedService(ABC):
    """Capability interface implemented once per external service.

    Ids are always handled as strings; implementations convert them where an
    API insists on numbers.
    """

    # How far back `list_time_entries` can look; None means unlimited.
    history_limit: Optional[timedelta] = None

    def __init__(self, service_definition: Any, session: Optional[requests.Session] = None):
        self.service_definition = service_definition
        self.name: str = service_definition.name
        self.config: dict = dict(service_definition.config or {})
        self.session = session or requests.Session()

    # ---------------------------------------------------------------------
    # HTTP helpers
    # ---------------------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        """Send a request; wait and retry on HTTP 429, raise SyncedServiceError on failure."""
        retries = 0
        while True:
            try:
                response = self.session.request(
                    method, url, timeout=settings.http_timeout_seconds, **kwargs
                )
            except requests.RequestException as e:
                raise SyncedServiceError(f"{self.name}: {method} {url} failed: {e}") from e

            if response.status_code == 429 and retries < settings.rate_limit_max_retries:
                retries += 1
                logger.warning(
                    f"{self.name}: rate limited on {method} {url}, "
                    f"waiting {settings.rate_limit_wait_seconds}s (retry {retries})"
                )
                time.sleep(settings.rate_limit_wait_seconds)
                continue

            if not response.ok:
                raise SyncedServiceError(
                    f"{self.name}: {method} {url} returned HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            return response

    def _create(self, url: str, **kwargs) -> requests.Response:
        """POST that reports HTTP 400 as 'maybe exists'."""
        try:
            return self._request("POST", url, **kwargs)
        except SyncedServiceError as e:
            if e.status_code == 400:
                raise ServiceObjectMaybeExistsError(str(e), status_code=400) from e
            raise

    def _delete(self, url: str, **kwargs) -> bool:
        """DELETE that treats HTTP 404 (already gone) as success."""
        try:
            self._request("DELETE", url, **kwargs)
        except SyncedServiceError as e:
            if e.status_code == 404:
                logger.info(f"{self.name}: {url} already deleted")
                return True
            raise
        return True

    @staticmethod
    def _other_services_objects(mapping: Any, service_name: str) -> list:
        return [mo for mo in mapping.mappings_objects if mo.service != service_name]

    # ---------------------------------------------------------------------
    # Structural objects
    # ---------------------------------------------------------------------

    @abstractmethod
    def list_all_objects(self) -> List[ServiceObject]:
        """All structural objects (projects, issues, tags, activities, ...) of the service."""

    @abstractmethod
    def create_object(self, object_id: str, name: str, object_type: str) -> ServiceObject:
        """Create the counterpart of a primary object, named by `render_full_name`."""

    @abstractmethod
    def update_object(self, object_id: str, service_object: ServiceObject) -> ServiceObject:
        """Rename the object `object_id` after the (primary) `service_object`."""

    @abstractmethod
    def delete_object(self, object_id: str, object_type: str) -> bool:
        """Delete the object; an already missing object counts as deleted."""

    @abstractmethod
    def render_full_name(self, service_object: ServiceObject) -> str:
        """Name the object would carry inside this service."""

    # ---------------------------------------------------------------------
    # Time entries
    # ---------------------------------------------------------------------

    @abstractmethod
    def list_time_entries(self, start: datetime, end: datetime) -> List[TimeEntry]:
        """Time entries between `start` and `end`."""

    @abstractmethod
    def create_time_entry(
        self,
        duration: timedelta,
        start: datetime,
        end: datetime,
        text: str,
        structural_refs: List[ServiceObject],
    ) -> Optional[TimeEntry]:
        """Create a time entry; None when the refs lack what the service requires."""

    @abstractmethod
    def delete_time_entry(self, entry_id: str) -> bool:
        """Delete the time entry; an already missing entry counts as deleted."""

    @abstractmethod
    def extract_structural_refs(self, time_entry: TimeEntry, mappings: List[Any]) -> list:
        """MappingsObjects of all other services equivalent to what the entry references."""
