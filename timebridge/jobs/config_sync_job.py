"""Structural mapping reconciliation"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from timebridge.jobs.base import FatalSyncError, SyncJob, SyncResult
from timebridge.models import Mapping, MappingsObject, ServiceDefinition
from timebridge.models.base import utcnow
from timebridge.synced_services import (
    ServiceObject,
    ServiceObjectMaybeExistsError,
    SyncedService,
    SyncedServiceError,
)

logger = logging.getLogger(__name__)


def find_mapping(
    mappings: Iterable[Mapping], primary_object: ServiceObject, primary_service_name: str
) -> Optional[Mapping]:
    """Mapping of a primary object, looked up by (id, type).

    Typed mappings carry `primary_object_type`; legacy mappings without it are
    matched through the type of their primary-service MappingsObject.
    """
    for mapping in mappings:
        if str(mapping.primary_object_id) != primary_object.id:
            continue

        if mapping.primary_object_type:
            if mapping.primary_object_type == primary_object.type:
                return mapping
            continue

        primary_mo = mapping.mappings_object_for(primary_service_name)
        if primary_mo is not None and primary_mo.type == primary_object.type:
            return mapping
    return None


@dataclass
class _SecondaryService:
    """A secondary service together with all its objects, fetched once per pass"""

    definition: ServiceDefinition
    service: SyncedService
    objects: List[ServiceObject]

    def find(self, object_id: str, object_type: str) -> Optional[ServiceObject]:
        return next(
            (o for o in self.objects if o.id == str(object_id) and o.type == object_type), None
        )

    def find_by_name(self, name: str) -> Optional[ServiceObject]:
        return next((o for o in self.objects if o.name == name), None)


class ConfigSyncJob(SyncJob):
    """Brings the user's mappings in line with the primary service's objects.

    Scenarios, per object of the primary service:
    a) no mapping                          => create mapping + objects in secondaries
    b) mapping there, name outdated        => rename objects in secondaries
    c) mapping there, primary object gone  => delete objects in secondaries + mapping
    d) mapping there and up to date        => nothing
    e) mapping misses a secondary service  => create object there, extend mapping
    f) mapping there, secondary object gone => create object again, repair mapping
    """

    def _do_the_job(self) -> SyncResult:
        primary_definition = self.user.primary_service_definition
        if primary_definition is None:
            raise FatalSyncError(f"Primary service definition not found for user {self.user_id}")

        objects_to_sync = self._synced_service(primary_definition).list_all_objects()

        secondaries: Dict[str, _SecondaryService] = {}
        for definition in self.user.service_definitions:
            if definition.is_primary:
                continue
            service = self._synced_service(definition)
            secondaries[definition.name] = _SecondaryService(
                definition, service, service.list_all_objects()
            )

        mappings: List[Mapping] = list(self.user.mappings)
        checked: List[Mapping] = []
        operations_ok = True

        for object_to_sync in objects_to_sync:
            mapping = find_mapping(
                (m for m in mappings if not any(m is c for c in checked)),
                object_to_sync,
                primary_definition.name,
            )
            try:
                if mapping is None:
                    mapping, ok = self._create_mapping(object_to_sync, secondaries)
                    mappings.append(mapping)
                else:
                    ok = self._check_mapping(object_to_sync, mapping, secondaries)
            except Exception as e:
                self._record_error(
                    f"Reconciling {object_to_sync.type} '{object_to_sync.name}' failed", e
                )
                ok = False
            operations_ok = operations_ok and ok
            if mapping is not None:
                checked.append(mapping)

        kept: List[Mapping] = []
        for mapping in mappings:
            if any(mapping is c for c in checked):
                kept.append(mapping)
                continue
            # scenario c)
            logger.info(f"ConfigSyncJob: '{mapping.name}' is gone from the primary, deleting mapping")
            if not self._delete_mapping(mapping):
                # keep it so that the deletion is retried in the next pass
                operations_ok = False
                kept.append(mapping)

        # even if some operations failed, persist what was done
        persisted = self.repository.replace_user_mappings(self.user, kept)
        if not persisted:
            self._record_error("Persisting mappings failed")

        if operations_ok and persisted:
            if not self.repository.set_config_job_last_successfully_done(self.user):
                self._record_error("Persisting last successful run failed")
                persisted = False

        return self._result(operations_ok, persisted)

    def _create_mapping(
        self, object_to_sync: ServiceObject, secondaries: Dict[str, _SecondaryService]
    ) -> Tuple[Mapping, bool]:
        """Scenario a): new mapping; objects are created in every secondary service."""
        logger.info(f"ConfigSyncJob: creating mapping for {object_to_sync.type} '{object_to_sync.name}'")
        mapping = Mapping(
            primary_object_id=object_to_sync.id,
            primary_object_type=object_to_sync.type,
            name=object_to_sync.name,
            mappings_objects=[],
        )
        ok = True
        for definition in self.user.service_definitions:
            if definition.is_primary:
                # already exists in the primary service
                mapping.mappings_objects.append(self._mappings_object(object_to_sync, definition.name))
                continue

            secondary = secondaries.get(definition.name)
            if secondary is None:
                continue
            try:
                created = self._create_service_object(secondary, object_to_sync)
            except Exception as e:
                self._record_error(
                    f"Creating {object_to_sync.type} '{object_to_sync.name}' in {definition.name} failed", e
                )
                ok = False
                continue
            mapping.mappings_objects.append(self._mappings_object(created, definition.name))
        return mapping, ok

    def _check_mapping(
        self,
        object_to_sync: ServiceObject,
        mapping: Mapping,
        secondaries: Dict[str, _SecondaryService],
    ) -> bool:
        """Scenarios b), d), e), f) for an existing mapping."""
        mapping.name = object_to_sync.name
        if not mapping.primary_object_type:
            mapping.primary_object_type = object_to_sync.type

        ok = True
        for definition in self.user.service_definitions:
            mappings_object = mapping.mappings_object_for(definition.name)

            if definition.is_primary:
                # only the name can change here, it follows renames in the primary
                if mappings_object is None:
                    mapping.mappings_objects.append(self._mappings_object(object_to_sync, definition.name))
                else:
                    mappings_object.name = object_to_sync.name
                continue

            secondary = secondaries.get(definition.name)
            if secondary is None:
                continue

            try:
                if mappings_object is None:
                    # scenario e)
                    logger.info(
                        f"ConfigSyncJob: '{object_to_sync.name}' missing in {definition.name} mapping, creating"
                    )
                    created = self._create_service_object(secondary, object_to_sync)
                    mapping.mappings_objects.append(self._mappings_object(created, definition.name))
                    continue

                live_object = secondary.find(mappings_object.object_id, mappings_object.type)
                if live_object is None:
                    # scenario f)
                    logger.info(
                        f"ConfigSyncJob: '{mappings_object.name}' gone from {definition.name}, creating again"
                    )
                    created = self._create_service_object(secondary, object_to_sync)
                    mappings_object.object_id = created.id
                    mappings_object.name = created.name
                    mappings_object.type = created.type
                    mappings_object.last_updated = utcnow()
                elif live_object.name != secondary.service.render_full_name(object_to_sync):
                    # scenario b)
                    updated = secondary.service.update_object(
                        mappings_object.object_id,
                        ServiceObject(object_to_sync.id, object_to_sync.name, object_to_sync.type),
                    )
                    logger.info(f"ConfigSyncJob: updated object '{updated.name}' in {definition.name}")
                    mappings_object.name = updated.name
                    mappings_object.last_updated = utcnow()
                # scenario d): up to date
            except Exception as e:
                self._record_error(
                    f"Checking {object_to_sync.type} '{object_to_sync.name}' in {definition.name} failed", e
                )
                ok = False
        return ok

    def _create_service_object(
        self, secondary: _SecondaryService, object_to_sync: ServiceObject
    ) -> ServiceObject:
        try:
            return secondary.service.create_object(
                object_to_sync.id, object_to_sync.name, object_to_sync.type
            )
        except ServiceObjectMaybeExistsError:
            # HTTP 400, the object probably exists already (names are unique); adopt it
            full_name = secondary.service.render_full_name(object_to_sync)
            existing = secondary.find_by_name(full_name)
            if existing is None:
                raise
            logger.info(
                f"ConfigSyncJob: '{full_name}' already exists in {secondary.definition.name}, using it"
            )
            return existing

    def _delete_mapping(self, mapping: Mapping) -> bool:
        """Delete the mapping's objects from every secondary service."""
        ok = True
        for mappings_object in mapping.mappings_objects:
            definition = next(
                (sd for sd in self.user.service_definitions if sd.name == mappings_object.service), None
            )
            # nothing to delete in the primary (object is gone) or in removed services
            if definition is None or definition.is_primary:
                continue

            try:
                deleted = self._synced_service(definition).delete_object(
                    mappings_object.object_id, mappings_object.type
                )
            except SyncedServiceError as e:
                deleted = e.status_code == 404
                if not deleted:
                    self._record_error(
                        f"Deleting '{mappings_object.name}' from {definition.name} failed", e
                    )
            except Exception as e:
                self._record_error(f"Deleting '{mappings_object.name}' from {definition.name} failed", e)
                deleted = False
            else:
                if not deleted:
                    self._record_error(f"Deleting '{mappings_object.name}' from {definition.name} was refused")
            ok = ok and deleted
        return ok

    @staticmethod
    def _mappings_object(service_object: ServiceObject, service_name: str) -> MappingsObject:
        return MappingsObject(
            object_id=service_object.id,
            name=service_object.name,
            service=service_name,
            type=service_object.type,
            last_updated=utcnow(),
        )
