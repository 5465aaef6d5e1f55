"""
Attendance ledger service.
Stores at most one attendance record per (date, period, student).
"""
import logging
from typing import Dict, List, Iterable

from timetable_sync.schemas.timetable import AttendanceRecord

logger = logging.getLogger(__name__)


class AttendanceLedger:
    """Holds attendance records and applies idempotent batch upserts."""

    def __init__(self, records: Iterable[AttendanceRecord] = ()):
        self._records: List[AttendanceRecord] = []
        self.replace_all(records)

    @property
    def records(self) -> List[AttendanceRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def upsert_batch(self, records: Iterable[AttendanceRecord]) -> List[AttendanceRecord]:
        """
        Replace stored records sharing a key with an incoming record, then
        append the incoming records.

        Duplicate keys inside one batch collapse to their last occurrence.
        Applying the same batch twice leaves the ledger as after the first.
        """
        incoming: Dict[tuple, AttendanceRecord] = {}
        for record in records:
            incoming.pop(record.key, None)
            incoming[record.key] = record

        kept = [r for r in self._records if r.key not in incoming]
        replaced = len(self._records) - len(kept)
        self._records = kept + list(incoming.values())

        logger.debug(f"Upserted {len(incoming)} attendance records ({replaced} replaced)")
        return list(incoming.values())

    def records_for_period(self, date: str, class_entity_id: str, period: int) -> List[AttendanceRecord]:
        return [
            r for r in self._records
            if r.date == date and r.class_entity_id == class_entity_id and r.period == period
        ]

    def remove_for_entity(self, class_entity_id: str) -> int:
        before = len(self._records)
        self._records = [r for r in self._records if r.class_entity_id != class_entity_id]
        return before - len(self._records)

    def remove_for_student(self, student_id: str) -> int:
        before = len(self._records)
        self._records = [r for r in self._records if r.student_id != student_id]
        return before - len(self._records)

    def replace_all(self, records: Iterable[AttendanceRecord]) -> None:
        """Swap the whole ledger, keeping the last record per key."""
        self._records = []
        self.upsert_batch(records)
