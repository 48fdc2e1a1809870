"""Redmine synced service (REST JSON API)"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import requests

from timebridge.synced_services.base import (
    ServiceObject,
    SyncedService,
    SyncedServiceError,
    TimeEntry,
    only_date_string,
    parse_service_datetime,
)

logger = logging.getLogger(__name__)


@dataclass
class RedmineTimeEntry(TimeEntry):
    """Redmine time entry; always bound to a project, optionally to an issue"""

    issue_id: Optional[str] = None
    activity_id: Optional[str] = None


class RedmineSyncedService(SyncedService):
    """Projects, issues and time entry activities are the structural objects."""

    PROJECT_TYPE = "project"
    ISSUE_TYPE = "issue"
    ACTIVITY_TYPE = "activity"
    PAGE_SIZE = 100
    # Redmine rejects positive hours below this value
    MIN_HOURS = 0.01

    def __init__(self, service_definition: Any, session: Optional[requests.Session] = None):
        super().__init__(service_definition, session=session)
        api_point = self.config.get("api_point")
        if not api_point:
            raise ValueError("Redmine service definition requires config.api_point")
        self.api_point = api_point if api_point.endswith("/") else f"{api_point}/"
        self.session.headers.update(
            {"X-Redmine-API-Key": service_definition.api_key, "Accept": "application/json"}
        )

    def _url(self, path: str) -> str:
        return f"{self.api_point}{path}"

    def _get_paginated(self, path: str, key: str, params: Optional[Dict[str, Any]] = None) -> list:
        """Collect all pages of a Redmine list endpoint (limit/offset/total_count)."""
        items: list = []
        offset = 0
        while True:
            query = dict(params or {})
            query.update({"limit": self.PAGE_SIZE, "offset": offset})
            body = self._request("GET", self._url(path), params=query).json()
            batch = body.get(key) or []
            items.extend(batch)
            offset += len(batch)
            if not batch or offset >= int(body.get("total_count", offset)):
                return items

    # ---------------------------------------------------------------------
    # Structural objects
    # ---------------------------------------------------------------------

    def list_all_objects(self) -> List[ServiceObject]:
        projects = [
            ServiceObject(str(p["id"]), p["name"], self.PROJECT_TYPE)
            for p in self._get_paginated("projects.json", "projects")
        ]
        issues = [
            ServiceObject(str(i["id"]), i["subject"], self.ISSUE_TYPE)
            for i in self._get_paginated("issues.json", "issues")
        ]
        response = self._request("GET", self._url("enumerations/time_entry_activities.json"))
        activities = [
            ServiceObject(str(a["id"]), a["name"], self.ACTIVITY_TYPE)
            for a in response.json().get("time_entry_activities") or []
        ]
        return projects + issues + activities

    @staticmethod
    def _project_identifier(name: str, object_id: str) -> str:
        slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "project"
        return f"{slug[:80]}-{object_id}".lower()

    def create_object(self, object_id: str, name: str, object_type: str) -> ServiceObject:
        if object_type != self.PROJECT_TYPE:
            raise SyncedServiceError(f"{self.name}: creating '{object_type}' objects is not supported")

        body = {"project": {"name": name, "identifier": self._project_identifier(name, object_id)}}
        created = self._create(self._url("projects.json"), json=body).json()["project"]
        logger.info(f"{self.name}: created project '{created['name']}'")
        return ServiceObject(str(created["id"]), created["name"], self.PROJECT_TYPE)

    def update_object(self, object_id: str, service_object: ServiceObject) -> ServiceObject:
        new_name = self.render_full_name(service_object)
        if service_object.type == self.PROJECT_TYPE:
            self._request(
                "PUT", self._url(f"projects/{object_id}.json"), json={"project": {"name": new_name}}
            )
        elif service_object.type == self.ISSUE_TYPE:
            self._request(
                "PUT", self._url(f"issues/{object_id}.json"), json={"issue": {"subject": new_name}}
            )
        else:
            raise SyncedServiceError(
                f"{self.name}: updating '{service_object.type}' objects is not supported"
            )
        # Redmine answers updates with 204 No Content
        return ServiceObject(str(object_id), new_name, service_object.type)

    def delete_object(self, object_id: str, object_type: str) -> bool:
        if object_type == self.PROJECT_TYPE:
            return self._delete(self._url(f"projects/{object_id}.json"))
        if object_type == self.ISSUE_TYPE:
            return self._delete(self._url(f"issues/{object_id}.json"))
        raise SyncedServiceError(f"{self.name}: deleting '{object_type}' objects is not supported")

    def render_full_name(self, service_object: ServiceObject) -> str:
        return service_object.name

    # ---------------------------------------------------------------------
    # Time entries
    # ---------------------------------------------------------------------

    def list_time_entries(self, start: datetime, end: datetime) -> List[TimeEntry]:
        params = {
            "from": only_date_string(start),
            "to": only_date_string(end),
            "user_id": self.config.get("user_id") or "me",
        }
        return [
            self._to_time_entry(data)
            for data in self._get_paginated("time_entries.json", "time_entries", params)
        ]

    def create_time_entry(
        self,
        duration: timedelta,
        start: datetime,
        end: datetime,
        text: str,
        structural_refs: List[ServiceObject],
    ) -> Optional[TimeEntry]:
        project_id = issue_id = activity_id = None
        for ref in structural_refs:
            if ref.type == self.PROJECT_TYPE:
                project_id = ref.id
            elif ref.type == self.ISSUE_TYPE:
                issue_id = ref.id
            elif ref.type == self.ACTIVITY_TYPE:
                activity_id = ref.id

        if not issue_id and not project_id:
            # Redmine requires an issue or a project
            return None

        hours = duration.total_seconds() / 3600
        body: Dict[str, Any] = {
            "hours": hours if hours == 0.0 or hours > self.MIN_HOURS else self.MIN_HOURS,
            "spent_on": only_date_string(start),
            "comments": text,
            "activity_id": activity_id or self.config.get("default_time_entry_activity_id"),
        }
        if self.config.get("user_id"):
            body["user_id"] = self.config["user_id"]
        if project_id:
            body["project_id"] = project_id
        if issue_id:
            body["issue_id"] = issue_id

        response = self._request("POST", self._url("time_entries.json"), json={"time_entry": body})
        created = self._to_time_entry(response.json()["time_entry"])
        logger.info(f"{self.name}: created time entry {created.id}")
        return created

    def delete_time_entry(self, entry_id: str) -> bool:
        return self._delete(self._url(f"time_entries/{entry_id}.json"))

    def extract_structural_refs(self, time_entry: TimeEntry, mappings: List[Any]) -> list:
        """Project, issue and activity of the entry, translated through the mappings."""
        if not isinstance(time_entry, RedmineTimeEntry):
            return []

        referenced = {
            (self.PROJECT_TYPE, time_entry.project_id),
            (self.ISSUE_TYPE, time_entry.issue_id),
            (self.ACTIVITY_TYPE, time_entry.activity_id),
        }
        result = []
        for mapping in mappings:
            own = mapping.mappings_object_for(self.name)
            if own is not None and (own.type, own.object_id) in referenced:
                result.extend(self._other_services_objects(mapping, self.name))
        return result

    @staticmethod
    def _to_time_entry(data: Dict[str, Any]) -> RedmineTimeEntry:
        duration = timedelta(hours=float(data.get("hours") or 0))
        start = datetime.strptime(data["spent_on"], "%Y-%m-%d")
        issue = data.get("issue")
        activity = data.get("activity")
        return RedmineTimeEntry(
            id=str(data["id"]),
            project_id=str(data["project"]["id"]),
            text=data.get("comments") or "",
            start=start,
            end=start + duration,
            duration=duration,
            last_updated=parse_service_datetime(data["updated_on"]),
            issue_id=str(issue["id"]) if issue else None,
            activity_id=str(activity["id"]) if activity else None,
        )
