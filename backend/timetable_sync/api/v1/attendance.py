"""
API endpoints for attendance records.
"""
from fastapi import APIRouter, Depends, Query
from typing import List
import logging

from timetable_sync.api.deps import get_school_data
from timetable_sync.schemas.timetable import AttendanceBatchRequest, AttendanceRecord
from timetable_sync.services.school_data import SchoolDataService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/batch")
async def mark_attendance(
    batch: AttendanceBatchRequest,
    school: SchoolDataService = Depends(get_school_data)
):
    """Upsert a batch; a record replaces any stored one for the same date, period and student."""
    applied = school.mark_attendance(batch.records)
    return {"applied": len(applied), "total": len(school.ledger)}


@router.get("/period", response_model=List[AttendanceRecord])
async def attendance_for_period(
    date: str,
    period: int,
    class_entity_id: str = Query(..., alias="classEntityId"),
    school: SchoolDataService = Depends(get_school_data)
):
    return school.get_attendance_for_period(date, class_entity_id, period)
