"""Toggl Track synced service (API v9)"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import requests

from timebridge.config import settings
from timebridge.synced_services.base import (
    ServiceObject,
    SyncedService,
    TimeEntry,
    parse_service_datetime,
    to_iso_utc,
)

logger = logging.getLogger(__name__)


@dataclass
class TogglTimeEntry(TimeEntry):
    """Toggl time entry; issues, activities etc. are carried as tags"""

    tags: List[str] = field(default_factory=list)


class TogglTrackSyncedService(SyncedService):
    """Projects map to Toggl projects, every other object kind to a workspace tag."""

    PROJECT_TYPE = "project"
    TAG_TYPE = "tag"
    PAGE_SIZE = 200
    # Toggl only returns time entries of the last three months
    history_limit = timedelta(days=90)
    CHUNK = timedelta(days=30)

    def __init__(self, service_definition: Any, session: Optional[requests.Session] = None):
        super().__init__(service_definition, session=session)
        self.workspace_id = self.config.get("workspace_id")
        if not self.workspace_id:
            raise ValueError("TogglTrack service definition requires config.workspace_id")
        self.session.auth = (service_definition.api_key, "api_token")
        self.base_url = settings.toggl_api_url.rstrip("/")
        self.workspace_url = f"{self.base_url}/workspaces/{self.workspace_id}"

    # ---------------------------------------------------------------------
    # Structural objects
    # ---------------------------------------------------------------------

    def list_all_objects(self) -> List[ServiceObject]:
        return self._list_projects() + self._list_tags()

    def create_object(self, object_id: str, name: str, object_type: str) -> ServiceObject:
        if object_type == self.PROJECT_TYPE:
            response = self._create(
                f"{self.workspace_url}/projects", json={"name": name, "active": True}
            )
            return self._to_service_object(response.json(), self.PROJECT_TYPE)

        tag_name = self.render_full_name(ServiceObject(object_id, name, object_type))
        response = self._create(f"{self.workspace_url}/tags", json={"name": tag_name})
        return self._to_service_object(response.json(), self.TAG_TYPE)

    def update_object(self, object_id: str, service_object: ServiceObject) -> ServiceObject:
        new_name = self.render_full_name(service_object)
        if service_object.type == self.PROJECT_TYPE:
            response = self._request(
                "PUT", f"{self.workspace_url}/projects/{object_id}", json={"name": new_name}
            )
            return self._to_service_object(response.json(), self.PROJECT_TYPE)

        response = self._request(
            "PUT", f"{self.workspace_url}/tags/{object_id}", json={"name": new_name}
        )
        return self._to_service_object(response.json(), self.TAG_TYPE)

    def delete_object(self, object_id: str, object_type: str) -> bool:
        if object_type == self.PROJECT_TYPE:
            return self._delete(f"{self.workspace_url}/projects/{object_id}")
        return self._delete(f"{self.workspace_url}/tags/{object_id}")

    def render_full_name(self, service_object: ServiceObject) -> str:
        """Projects and plain tags keep their name; issues become '#id name (issue)',
        anything else 'name (type)'."""
        if service_object.type in (self.PROJECT_TYPE, self.TAG_TYPE):
            return service_object.name
        if service_object.type == "issue":
            return f"#{service_object.id} {service_object.name} ({service_object.type})"
        return f"{service_object.name} ({service_object.type})"

    def _list_projects(self) -> List[ServiceObject]:
        projects: List[ServiceObject] = []
        page = 1
        while True:
            response = self._request(
                "GET",
                f"{self.workspace_url}/projects",
                params={"page": page, "per_page": self.PAGE_SIZE},
            )
            batch = response.json() or []
            projects.extend(self._to_service_object(p, self.PROJECT_TYPE) for p in batch)
            if len(batch) < self.PAGE_SIZE:
                return projects
            page += 1

    def _list_tags(self) -> List[ServiceObject]:
        response = self._request("GET", f"{self.workspace_url}/tags")
        return [self._to_service_object(t, self.TAG_TYPE) for t in response.json() or []]

    @staticmethod
    def _to_service_object(data: Dict[str, Any], object_type: str) -> ServiceObject:
        return ServiceObject(str(data["id"]), data["name"], object_type)

    # ---------------------------------------------------------------------
    # Time entries
    # ---------------------------------------------------------------------

    def list_time_entries(self, start: datetime, end: datetime) -> List[TimeEntry]:
        """Entries between `start` and `end`, requested in CHUNK slices.

        /me/time_entries does not page, so short ranges keep every response small.
        """
        entries: Dict[str, TimeEntry] = {}
        chunk_start = start
        while chunk_start < end:
            chunk_end = min(chunk_start + self.CHUNK, end)
            response = self._request(
                "GET",
                f"{self.base_url}/me/time_entries",
                params={"start_date": to_iso_utc(chunk_start), "end_date": to_iso_utc(chunk_end)},
            )
            for data in response.json() or []:
                # Running entries have a negative duration and no stop yet.
                if not data.get("stop") or (data.get("duration") or 0) < 0:
                    continue
                if str(data.get("workspace_id", self.workspace_id)) != str(self.workspace_id):
                    continue
                entry = self._to_time_entry(data)
                entries[entry.id] = entry
            chunk_start = chunk_end
        return list(entries.values())

    def create_time_entry(
        self,
        duration: timedelta,
        start: datetime,
        end: datetime,
        text: str,
        structural_refs: List[ServiceObject],
    ) -> Optional[TimeEntry]:
        project_id = None
        tags: List[str] = []
        for ref in structural_refs:
            if ref.type == self.PROJECT_TYPE:
                project_id = ref.id
            else:
                tags.append(ref.name)

        if not project_id:
            # Toggl entries are only synced with a project
            return None

        body = {
            "created_with": "TimeBridge",
            "description": text,
            "duration": int(duration.total_seconds()),
            "start": to_iso_utc(start),
            "stop": to_iso_utc(end),
            "project_id": int(project_id),
            "tags": tags,
            "workspace_id": int(self.workspace_id),
        }
        response = self._request("POST", f"{self.workspace_url}/time_entries", json=body)
        created = self._to_time_entry(response.json())
        logger.info(f"{self.name}: created time entry {created.id}")
        return created

    def delete_time_entry(self, entry_id: str) -> bool:
        return self._delete(f"{self.workspace_url}/time_entries/{entry_id}")

    def extract_structural_refs(self, time_entry: TimeEntry, mappings: List[Any]) -> list:
        """Project from the entry's project id; issues, activities etc. from its tags."""
        if not isinstance(time_entry, TogglTimeEntry):
            return []

        result = []
        for mapping in mappings:
            own = mapping.mappings_object_for(self.name)
            if own is None:
                continue
            if own.type == self.PROJECT_TYPE:
                matches = own.object_id == time_entry.project_id
            else:
                matches = own.name in (time_entry.tags or [])
            if matches:
                result.extend(self._other_services_objects(mapping, self.name))
        return result

    @staticmethod
    def _to_time_entry(data: Dict[str, Any]) -> TogglTimeEntry:
        start = parse_service_datetime(data["start"])
        end = parse_service_datetime(data["stop"])
        project_id = data.get("project_id")
        return TogglTimeEntry(
            id=str(data["id"]),
            project_id=str(project_id) if project_id is not None else None,
            text=data.get("description") or "",
            start=start,
            end=end,
            duration=timedelta(seconds=data.get("duration") or 0),
            last_updated=parse_service_datetime(data["at"]),
            tags=list(data.get("tags") or []),
        )
