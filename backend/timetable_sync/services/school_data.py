"""
School data service.

Application facade over the schedule store, the attendance ledger, the import
session and the replication bridge. Every successful local mutation is
persisted to the blob store and then mirrored to the bridge as a push of the
one remote field it changed.

Remote document layout under ``schools/{schoolId}``:

    metadata.schoolName, metadata.academicYear, metadata.primaryColor
    registry.entities, registry.students
    timing.timeSlots
    attendance.records
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Dict, Any, List, Optional, Iterable, Set

from timetable_sync.core.config import settings
from timetable_sync.schemas.imports import (
    BulkImportPayload, ExtractionResult, ImportDocument, ImportStatus
)
from timetable_sync.schemas.sync import (
    ConnectionState, PairingPayload, SyncGroup, SyncMetadata, SyncRole
)
from timetable_sync.schemas.timetable import (
    AttendanceRecord, EntityKind, EntityProfile, SlotEntry, Student, TimeSlot
)
from timetable_sync.services.attendance_ledger import AttendanceLedger
from timetable_sync.services.blob_store import BlobStore, InMemoryBlobStore
from timetable_sync.services.import_reconciler import (
    ImportReconciler, MergeResult, fragments_from_bulk_payload
)
from timetable_sync.services.import_session import ImportSession, TimetableExtractor
from timetable_sync.services.schedule_store import ScheduleStore
from timetable_sync.services.sync.pairing import PairingCodec, PairingResult
from timetable_sync.services.sync.remote import RemoteBackend, create_backend
from timetable_sync.services.sync.replication_bridge import ReplicationBridge

logger = logging.getLogger(__name__)


class StorageKey:
    """Blob store keys of the persisted school state."""
    SCHOOL_NAME = "school_name"
    ACADEMIC_YEAR = "academic_year"
    ENTITIES = "entities"
    STUDENTS = "students"
    TIME_SLOTS = "time_slots"
    ATTENDANCE = "attendance"
    SYNC_INFO = "sync_info"


def default_time_slots() -> List[TimeSlot]:
    slots = []
    for period in range(1, 9):
        start = 8 * 60 + (period - 1) * 45
        end = start + 45
        slots.append(TimeSlot(
            period=period,
            time_range=f"{start // 60:02d}:{start % 60:02d}-{end // 60:02d}:{end % 60:02d}"
        ))
    return slots


def _dump(models: Iterable) -> List[Dict[str, Any]]:
    return [m.model_dump(mode="json", by_alias=True) for m in models]


def _as_list(value: Any) -> List[Any]:
    """Remote stores may hand arrays back as index-keyed objects."""
    if value is None:
        return []
    if isinstance(value, dict):
        return [value[k] for k in sorted(value, key=lambda k: int(k) if str(k).isdigit() else str(k))]
    return list(value)


class SchoolDataService:
    """Holds the school's state and routes mutations through replication."""

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        backend: Optional[RemoteBackend] = None,
        extractor: Optional[TimetableExtractor] = None
    ):
        self.blob_store = blob_store or InMemoryBlobStore()
        self._owns_backend = backend is None
        self.backend = backend or create_backend()
        self._closing: Set[asyncio.Task] = set()
        self.reconciler = ImportReconciler()
        self.imports = ImportSession(extractor, self.reconciler)

        self.school_name = settings.DEFAULT_SCHOOL_NAME
        self.academic_year = settings.DEFAULT_ACADEMIC_YEAR
        self.primary_color = settings.PRIMARY_COLOR
        self.students: List[Student] = []
        self.time_slots: List[TimeSlot] = default_time_slots()
        self.store = ScheduleStore()
        self.ledger = AttendanceLedger()
        self.sync_info = SyncMetadata()
        self.bridge = self._build_bridge()

    def _build_bridge(self) -> ReplicationBridge:
        return ReplicationBridge(self.backend, self.apply_remote_groups, self.sync_info)

    # ------------------------------------------------------------------
    # Persistence

    def load(self) -> None:
        """Restore state from the blob store and resume a prior pairing."""
        try:
            school_name = self.blob_store.get(StorageKey.SCHOOL_NAME)
            academic_year = self.blob_store.get(StorageKey.ACADEMIC_YEAR)
            entities = self.blob_store.get(StorageKey.ENTITIES)
            students = self.blob_store.get(StorageKey.STUDENTS)
            time_slots = self.blob_store.get(StorageKey.TIME_SLOTS)
            attendance = self.blob_store.get(StorageKey.ATTENDANCE)
            sync_info = self.blob_store.get(StorageKey.SYNC_INFO)

            if school_name:
                self.school_name = school_name
            if academic_year:
                self.academic_year = academic_year
            if entities is not None:
                self.store.replace_entities([EntityProfile.model_validate(e) for e in entities])
            if students is not None:
                self.students = [Student.model_validate(s) for s in students]
            if time_slots is not None:
                self.time_slots = [TimeSlot.model_validate(t) for t in time_slots]
            if attendance is not None:
                self.ledger.replace_all(AttendanceRecord.model_validate(r) for r in attendance)
            if sync_info:
                self.sync_info = SyncMetadata.model_validate(sync_info)
        except Exception as e:
            logger.warning(f"Persistence load failed: {e}")

        self.bridge = self._build_bridge()
        if self.sync_info.paired:
            self.bridge.connect()

    def _persist(self, *keys: str) -> None:
        values = {
            StorageKey.SCHOOL_NAME: lambda: self.school_name,
            StorageKey.ACADEMIC_YEAR: lambda: self.academic_year,
            StorageKey.ENTITIES: lambda: _dump(self.store.entities),
            StorageKey.STUDENTS: lambda: _dump(self.students),
            StorageKey.TIME_SLOTS: lambda: _dump(self.time_slots),
            StorageKey.ATTENDANCE: lambda: _dump(self.ledger.records),
            StorageKey.SYNC_INFO: lambda: self.sync_info.model_dump(mode="json", by_alias=True),
        }
        for key in keys:
            self.blob_store.set(key, values[key]())

    # ------------------------------------------------------------------
    # Replication glue

    def _push(self, group: SyncGroup, field: str) -> None:
        if not self.sync_info.paired:
            return
        self.bridge.push(group.value, field, self.remote_document()[group.value][field])

    def remote_document(self) -> Dict[str, Any]:
        """Current state laid out as the remote school node."""
        return {
            SyncGroup.METADATA.value: {
                "schoolName": self.school_name,
                "academicYear": self.academic_year,
                "primaryColor": self.primary_color,
            },
            SyncGroup.REGISTRY.value: {
                "entities": _dump(self.store.entities),
                "students": _dump(self.students),
            },
            SyncGroup.TIMING.value: {
                "timeSlots": _dump(self.time_slots),
            },
            SyncGroup.ATTENDANCE.value: {
                "records": _dump(self.ledger.records),
            },
        }

    def apply_remote_groups(self, groups: Dict[str, Any]) -> None:
        """
        Replace each present group wholesale. Missing list fields inside a
        present group become empty; missing metadata fields keep their value.
        """
        metadata = groups.get(SyncGroup.METADATA.value)
        if metadata is not None:
            self.school_name = metadata.get("schoolName") or self.school_name
            self.academic_year = metadata.get("academicYear") or self.academic_year
            self.primary_color = metadata.get("primaryColor") or self.primary_color
            self._persist(StorageKey.SCHOOL_NAME, StorageKey.ACADEMIC_YEAR)

        registry = groups.get(SyncGroup.REGISTRY.value)
        if registry is not None:
            entities = [EntityProfile.model_validate(e) for e in _as_list(registry.get("entities"))]
            students = [Student.model_validate(s) for s in _as_list(registry.get("students"))]
            self.store.replace_entities(entities)
            self.students = students
            self._persist(StorageKey.ENTITIES, StorageKey.STUDENTS)

        timing = groups.get(SyncGroup.TIMING.value)
        if timing is not None:
            self.time_slots = [TimeSlot.model_validate(t) for t in _as_list(timing.get("timeSlots"))]
            self._persist(StorageKey.TIME_SLOTS)

        attendance = groups.get(SyncGroup.ATTENDANCE.value)
        if attendance is not None:
            self.ledger.replace_all(
                AttendanceRecord.model_validate(r) for r in _as_list(attendance.get("records"))
            )
            self._persist(StorageKey.ATTENDANCE)

        logger.info(f"Applied remote groups: {sorted(groups)}")

    # ------------------------------------------------------------------
    # School metadata

    def update_school_name(self, name: str) -> None:
        self.school_name = name
        self._persist(StorageKey.SCHOOL_NAME)
        self._push(SyncGroup.METADATA, "schoolName")

    def update_academic_year(self, year: str) -> None:
        self.academic_year = year
        self._persist(StorageKey.ACADEMIC_YEAR)
        self._push(SyncGroup.METADATA, "academicYear")

    def update_time_slots(self, slots: List[TimeSlot]) -> None:
        self.time_slots = list(slots)
        self._persist(StorageKey.TIME_SLOTS)
        self._push(SyncGroup.TIMING, "timeSlots")

    # ------------------------------------------------------------------
    # Entities and schedules

    def _entities_changed(self) -> None:
        self._persist(StorageKey.ENTITIES)
        self._push(SyncGroup.REGISTRY, "entities")

    def add_entity(self, name: str, kind: EntityKind, short_code: Optional[str] = None) -> EntityProfile:
        entity = EntityProfile(
            id=f"{kind.value.lower()}-{uuid.uuid4().hex[:10]}",
            name=name.strip(),
            short_code=(short_code or "").strip() or None,
            kind=kind,
            schedule={}
        )
        self.store.add_entity(entity)
        self._entities_changed()
        return entity

    def update_entity(self, entity_id: str, updates: Dict[str, Any]) -> EntityProfile:
        entity = self.store.update_entity(entity_id, updates)
        self._entities_changed()
        return entity

    def delete_entity(self, entity_id: str) -> EntityProfile:
        entity = self.store.delete_entity(entity_id)
        removed = self.ledger.remove_for_entity(entity_id)
        self._entities_changed()
        if removed:
            self._persist(StorageKey.ATTENDANCE)
            self._push(SyncGroup.ATTENDANCE, "records")
        return entity

    def replace_entities(self, entities: List[EntityProfile]) -> None:
        self.store.replace_entities(entities)
        self._entities_changed()

    def set_slot(self, owner_id: str, day: str, period: int, entry: Optional[SlotEntry]) -> EntityProfile:
        self.store.set_slot(owner_id, day, period, entry)
        self._entities_changed()
        return self.store.require(owner_id)

    def rename_entity(self, entity_id: str, name: str, short_code: Optional[str] = None) -> int:
        rewritten = self.store.rename_entity(entity_id, name.strip(), (short_code or "").strip() or None)
        self._entities_changed()
        return rewritten

    # ------------------------------------------------------------------
    # Students and attendance

    def add_student(self, student: Student) -> Student:
        self.students.append(student)
        self._persist(StorageKey.STUDENTS)
        self._push(SyncGroup.REGISTRY, "students")
        return student

    def delete_student(self, student_id: str) -> None:
        self.students = [s for s in self.students if s.id != student_id]
        removed = self.ledger.remove_for_student(student_id)
        self._persist(StorageKey.STUDENTS, StorageKey.ATTENDANCE)
        self._push(SyncGroup.REGISTRY, "students")
        if removed:
            self._push(SyncGroup.ATTENDANCE, "records")

    def mark_attendance(self, records: List[AttendanceRecord]) -> List[AttendanceRecord]:
        applied = self.ledger.upsert_batch(records)
        self._persist(StorageKey.ATTENDANCE)
        self._push(SyncGroup.ATTENDANCE, "records")
        return applied

    def get_attendance_for_period(self, date: str, class_entity_id: str, period: int) -> List[AttendanceRecord]:
        return self.ledger.records_for_period(date, class_entity_id, period)

    # ------------------------------------------------------------------
    # Imports

    def merge_import(self, payload: BulkImportPayload) -> MergeResult:
        """Reconcile a bulk import payload into the current entity set."""
        result = self.reconciler.merge(fragments_from_bulk_payload(payload), self.store.entities)
        self.replace_entities(result.entities)
        return result

    async def start_import(self, documents: List[ImportDocument]) -> ImportStatus:
        return await self.imports.start(documents)

    def stage_import(self, result: ExtractionResult) -> ImportStatus:
        return self.imports.stage(result)

    def cancel_import(self) -> bool:
        return self.imports.cancel()

    def finalize_import(self) -> MergeResult:
        result = self.imports.finalize(self.store.entities)
        self.replace_entities(result.entities)
        return result

    # ------------------------------------------------------------------
    # Pairing and sync

    def pairing_payload(self) -> PairingPayload:
        return PairingPayload(
            school_name=self.school_name,
            academic_year=self.academic_year,
            entities=self.store.entities,
            students=self.students,
            time_slots=self.time_slots,
            master_id=self.sync_info.school_id,
            remote_config={
                "backend": settings.REMOTE_BACKEND,
                "databaseUrl": settings.FIREBASE_DATABASE_URL,
            },
            primary_color=self.primary_color
        )

    def generate_pairing_token(self) -> str:
        """Become the school's master device (if not already) and return a join token."""
        if self.sync_info.role != SyncRole.ADMIN:
            now = int(time.time() * 1000)
            school_id = self.sync_info.school_id or f"sch-{now}"
            self.sync_info.paired = True
            self.sync_info.pair_code = "ADMIN"
            self.sync_info.role = SyncRole.ADMIN
            self.sync_info.school_id = school_id
            self.sync_info.device_id = f"master-{now}"
            self.sync_info.last_sync = datetime.utcnow().isoformat()
            self._persist(StorageKey.SYNC_INFO)

            self.bridge.connect(school_id)
            self.bridge.publish_full_state(self.remote_document())

        return PairingCodec.encode(self.pairing_payload())

    def import_pairing_token(self, token: str) -> PairingResult:
        """Join the session a token describes, replacing local school data."""
        result = PairingCodec.decode(token)
        if not result.success:
            self.sync_info.connection_state = ConnectionState.ERROR
            return result

        payload = result.payload
        self.bridge.disconnect()
        if payload.remote_config and self._owns_backend:
            previous = self.backend
            self.backend = create_backend(payload.remote_config)
            self._close_backend(previous)

        self.school_name = payload.school_name
        self.academic_year = payload.academic_year or settings.DEFAULT_ACADEMIC_YEAR
        self.primary_color = payload.primary_color or self.primary_color
        self.store.replace_entities(payload.entities)
        self.students = list(payload.students)
        self.time_slots = list(payload.time_slots) or default_time_slots()

        self.sync_info = SyncMetadata(
            paired=True,
            pair_code="PAIRED",
            role=SyncRole.TEACHER,
            school_id=payload.master_id,
            device_id=f"staff-{int(time.time() * 1000)}",
            last_sync=datetime.utcnow().isoformat(),
            master_source_id=payload.master_id,
        )
        self.bridge = self._build_bridge()
        if payload.master_id:
            self.bridge.connect(payload.master_id)

        self._persist(
            StorageKey.SCHOOL_NAME, StorageKey.ACADEMIC_YEAR, StorageKey.ENTITIES,
            StorageKey.STUDENTS, StorageKey.TIME_SLOTS, StorageKey.SYNC_INFO
        )
        return result

    def _close_backend(self, backend: RemoteBackend) -> None:
        """Release a replaced backend's connections."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(backend.close())
            return
        task = loop.create_task(backend.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def disconnect_sync(self) -> None:
        self.bridge.disconnect()
        self.sync_info.paired = False
        self.sync_info.pair_code = None
        self.sync_info.role = SyncRole.STANDALONE
        self.sync_info.last_sync = None
        self.sync_info.school_id = None
        self.sync_info.device_id = None
        self.sync_info.master_source_id = None
        self._persist(StorageKey.SYNC_INFO)

    def force_sync(self) -> None:
        """Push every group's fields in one write."""
        if not self.sync_info.paired:
            return
        changes = {}
        for group, fields in self.remote_document().items():
            for field, value in fields.items():
                changes[(group, field)] = value
        self.bridge.push_many(changes)

    def reset_data(self) -> None:
        self.disconnect_sync()
        self.school_name = settings.DEFAULT_SCHOOL_NAME
        self.academic_year = settings.DEFAULT_ACADEMIC_YEAR
        self.store.replace_entities([])
        self.students = []
        self.time_slots = default_time_slots()
        self.ledger.replace_all([])
        self._persist(
            StorageKey.SCHOOL_NAME, StorageKey.ACADEMIC_YEAR, StorageKey.ENTITIES,
            StorageKey.STUDENTS, StorageKey.TIME_SLOTS, StorageKey.ATTENDANCE
        )
