"""Time entry reconciliation"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Dict, List, Optional, Set, Tuple

from timebridge.jobs.base import SyncJob, SyncResult
from timebridge.models import (
    MappingsObject,
    ServiceDefinition,
    ServiceTimeEntryObject,
    TimeEntrySyncedObject,
)
from timebridge.models.base import utcnow
from timebridge.synced_services import (
    ServiceObject,
    SyncedService,
    SyncedServiceError,
    TimeEntry,
)

logger = logging.getLogger(__name__)


@dataclass
class _ServiceEntries:
    """A service with all of its time entries in the sync window, fetched once per pass"""

    definition: ServiceDefinition
    service: SyncedService
    entries: List[TimeEntry]

    @property
    def name(self) -> str:
        return self.definition.name

    def find(self, entry_id: str) -> Optional[TimeEntry]:
        return next((e for e in self.entries if e.id == str(entry_id)), None)


@dataclass
class _ResolvedMember:
    """A TESO member with its live entry (None when missing in the service)"""

    member: ServiceTimeEntryObject
    source: _ServiceEntries
    entry: Optional[TimeEntry]


class TimeEntriesSyncJob(SyncJob):
    """Synchronizes time entries of all services, translated through the user's mappings.

    Scenarios:
    a) live entry without TESO            => create in all other services, create TESO
    b) TESO complete                      => if a copy is newer than the TESO, replace all
                                             other copies with it, otherwise nothing
    c) TESO misses a service              => create entry there, add member
    d) origin entry deleted               => delete all other copies and the TESO
    e) non-origin copy missing            => create it again
    """

    def _do_the_job(self) -> SyncResult:
        self._operations_ok = True
        self._persisted = True

        # the whole registration day counts
        window_start = datetime.combine(self.user.registrated.date(), time.min)
        window_end = utcnow()

        synced_services = [(d, self._synced_service(d)) for d in self.user.service_definitions]
        for definition, service in synced_services:
            if service.history_limit is None:
                continue
            # all services must see the same window, otherwise old copies look deleted
            earliest = datetime.combine((window_end - service.history_limit).date() + timedelta(days=1), time.min)
            if earliest > window_start:
                logger.info(f"TESyncJob: {definition.name} keeps no history before {earliest}, narrowing window")
                window_start = earliest

        services: Dict[str, _ServiceEntries] = {}
        for definition, service in synced_services:
            services[definition.name] = _ServiceEntries(
                definition, service, service.list_time_entries(window_start, window_end)
            )

        all_tesos = self.repository.list_time_entry_synced_objects(self.user)
        if all_tesos is None:
            self._persist_failed("Loading time entry synced objects failed")
            return self._result(False, False)

        # entries of older TESOs are outside the window and cannot be checked anymore
        tesos = [t for t in all_tesos if t.last_updated >= window_start]
        resolved = [(teso, self._resolve(teso, services)) for teso in tesos]

        synced: Set[Tuple[str, str]] = {
            (steo.service, str(steo.entry_id))
            for teso in all_tesos
            for steo in teso.service_time_entry_objects
        }

        # scenario a)
        for source in services.values():
            for entry in source.entries:
                if (source.name, entry.id) in synced:
                    continue
                try:
                    self._sync_new_time_entry(source, entry, services)
                except Exception as e:
                    self._operation_failed(f"Syncing new time entry {entry.id} from {source.name} failed", e)

        # scenarios b), c), d), e)
        for teso, members in resolved:
            try:
                changed = self._check_time_entry_synced_object(teso, members, services)
            except Exception as e:
                self._operation_failed(f"Checking time entry synced object {teso.id} failed", e)
                continue
            if changed and self.repository.update_time_entry_synced_object(teso) is None:
                self._persist_failed(f"Persisting time entry synced object {teso.id} failed")

        if self._operations_ok and self._persisted:
            if not self.repository.set_time_entry_job_last_successfully_done(self.user):
                self._persist_failed("Persisting last successful run failed")

        return self._result(self._operations_ok, self._persisted)

    def _resolve(
        self, teso: TimeEntrySyncedObject, services: Dict[str, _ServiceEntries]
    ) -> List[_ResolvedMember]:
        """Pair every member with its live entry; members of removed services are left out."""
        members = []
        for steo in teso.service_time_entry_objects:
            source = services.get(steo.service)
            if source is not None:
                members.append(_ResolvedMember(steo, source, source.find(steo.entry_id)))
        return members

    def _sync_new_time_entry(
        self, source: _ServiceEntries, entry: TimeEntry, services: Dict[str, _ServiceEntries]
    ):
        """Scenario a): create the entry in every other service and remember it in a new TESO."""
        refs = source.service.extract_structural_refs(entry, self.user.mappings)
        if not refs:
            # not meant to be synced (e.g. no mapped project)
            return

        logger.info(f"TESyncJob: a) new time entry {entry.id} in {source.name}")
        teso = TimeEntrySyncedObject(
            user_id=self.user.id,
            last_updated=entry.last_updated,
            service_time_entry_objects=[
                ServiceTimeEntryObject(entry_id=entry.id, service=source.name, is_origin=True)
            ],
        )
        for target in services.values():
            if target is source:
                continue
            try:
                created = self._create_time_entry(target, entry, refs)
            except Exception as e:
                self._operation_failed(f"Creating time entry {entry.id} in {target.name} failed", e)
                continue
            if created is not None:
                teso.service_time_entry_objects.append(
                    ServiceTimeEntryObject(entry_id=created.id, service=target.name, is_origin=False)
                )
                self._touch(teso, created)

        if len(teso.service_time_entry_objects) <= 1:
            # only the origin is there, nothing could be created
            self._operation_failed(f"Time entry {entry.id} from {source.name} was not created anywhere")
            return

        if self.repository.create_time_entry_synced_object(teso) is None:
            self._persist_failed(f"Persisting time entry synced object for {source.name} entry {entry.id} failed")

    def _check_time_entry_synced_object(
        self,
        teso: TimeEntrySyncedObject,
        members: List[_ResolvedMember],
        services: Dict[str, _ServiceEntries],
    ) -> bool:
        """Scenarios b) - e) for one TESO; returns True if the TESO changed and needs saving."""
        origin = next((m for m in members if m.member.is_origin), None)
        if origin is None:
            logger.warning(f"TESyncJob: time entry synced object {teso.id} has no origin in current services")
            return False

        if origin.entry is None:
            self._delete_everywhere(teso, origin, members)
            # already persisted (or deliberately kept)
            return False

        winner = origin
        for m in members:
            if m.entry is not None and m.entry.last_updated > winner.entry.last_updated:
                winner = m
        refs = winner.source.service.extract_structural_refs(winner.entry, self.user.mappings)

        changed = False
        # stays False while a stale copy survives, so that the next pass replaces it again
        replaced_all = True
        if winner.entry.last_updated > teso.last_updated:
            # scenario b) updated somewhere: other copies are stale, replace them (scenario e) below)
            logger.info(f"TESyncJob: b) time entry {winner.entry.id} updated in {winner.source.name}")
            for m in members:
                if m is winner or m.entry is None:
                    continue
                if self._delete_time_entry(m):
                    m.entry = None
                else:
                    replaced_all = False
            if winner is not origin:
                origin.member.is_origin = False
                winner.member.is_origin = True
                changed = True

        for m in members:
            if m.entry is not None:
                continue
            # scenario e)
            logger.info(f"TESyncJob: e) time entry missing in {m.source.name}, creating")
            try:
                created = self._create_time_entry(m.source, winner.entry, refs)
            except Exception as e:
                self._operation_failed(f"Creating time entry in {m.source.name} failed", e)
                continue
            if created is None:
                teso.service_time_entry_objects.remove(m.member)
            else:
                m.member.entry_id = created.id
                m.entry = created
                if replaced_all:
                    self._touch(teso, winner.entry, created)
            changed = True

        represented = {m.source.name for m in members}
        for target in services.values():
            if target.name in represented:
                continue
            # scenario c), service was probably added later
            logger.info(f"TESyncJob: c) time entry missing for service {target.name}, creating")
            try:
                created = self._create_time_entry(target, winner.entry, refs)
            except Exception as e:
                self._operation_failed(f"Creating time entry in {target.name} failed", e)
                continue
            if created is not None:
                teso.service_time_entry_objects.append(
                    ServiceTimeEntryObject(entry_id=created.id, service=target.name, is_origin=False)
                )
                if replaced_all:
                    self._touch(teso, winner.entry, created)
                changed = True

        return changed

    def _delete_everywhere(
        self, teso: TimeEntrySyncedObject, origin: _ResolvedMember, members: List[_ResolvedMember]
    ):
        """Scenario d): origin entry was deleted, delete all copies and the TESO."""
        logger.info(f"TESyncJob: d) time entry {origin.member.entry_id} deleted in {origin.source.name}")
        all_deleted = True
        for m in members:
            if m is origin or m.entry is None:
                continue
            all_deleted = self._delete_time_entry(m) and all_deleted

        if not all_deleted:
            self._operation_failed(f"Time entry synced object {teso.id} kept, not all copies were deleted")
            return
        if not self.repository.delete_time_entry_synced_object(teso):
            self._persist_failed(f"Deleting time entry synced object {teso.id} failed")

    def _create_time_entry(
        self, target: _ServiceEntries, model: TimeEntry, refs: List[MappingsObject]
    ) -> Optional[TimeEntry]:
        """Create a copy of `model` in `target`; None if the refs are not enough there."""
        target_refs = [
            ServiceObject(str(mo.object_id), mo.name, mo.type) for mo in refs if mo.service == target.name
        ]
        created = target.service.create_time_entry(
            model.duration, model.start, model.end, model.text, target_refs
        )
        if created is None:
            logger.info(f"TESyncJob: time entry {model.id} not synced to {target.name}")
        return created

    def _delete_time_entry(self, m: _ResolvedMember) -> bool:
        try:
            deleted = m.source.service.delete_time_entry(m.member.entry_id)
        except SyncedServiceError as e:
            if e.status_code == 404:
                return True
            self._operation_failed(f"Deleting time entry {m.member.entry_id} from {m.source.name} failed", e)
            return False
        except Exception as e:
            self._operation_failed(f"Deleting time entry {m.member.entry_id} from {m.source.name} failed", e)
            return False
        if not deleted:
            self._operation_failed(f"Deleting time entry {m.member.entry_id} from {m.source.name} was refused")
        else:
            logger.info(f"TESyncJob: deleted time entry {m.member.entry_id} from {m.source.name}")
        return deleted

    @staticmethod
    def _touch(teso: TimeEntrySyncedObject, *entries: TimeEntry):
        """Raise the TESO's last_updated to the newest of the given copies."""
        newest = max(e.last_updated for e in entries)
        if teso.last_updated is None or newest > teso.last_updated:
            teso.last_updated = newest

    def _operation_failed(self, message: str, exc: Optional[BaseException] = None):
        self._operations_ok = False
        self._record_error(message, exc)

    def _persist_failed(self, message: str):
        self._persisted = False
        self._record_error(message)
