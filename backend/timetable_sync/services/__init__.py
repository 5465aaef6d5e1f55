"""
Timetable services

Components:
- Schedule store keeping teacher and class views mirrored
- Attendance ledger with idempotent upserts
- Import reconciler and staged import session
- Local blob persistence
- School data facade tying the above to replication
"""

from .schedule_store import ScheduleStore, CodeIndex
from .attendance_ledger import AttendanceLedger
from .import_reconciler import ImportReconciler, MergeResult, normalize_day
from .import_session import ImportSession, TimetableExtractor
from .blob_store import BlobStore, InMemoryBlobStore, SqlAlchemyBlobStore
from .school_data import SchoolDataService

__all__ = [
    'ScheduleStore',
    'CodeIndex',
    'AttendanceLedger',
    'ImportReconciler',
    'MergeResult',
    'normalize_day',
    'ImportSession',
    'TimetableExtractor',
    'BlobStore',
    'InMemoryBlobStore',
    'SqlAlchemyBlobStore',
    'SchoolDataService'
]
