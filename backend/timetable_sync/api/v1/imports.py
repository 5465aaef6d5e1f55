"""
API endpoints for bulk and staged timetable imports.
"""
from fastapi import APIRouter, HTTPException, Depends
import logging

from timetable_sync.api.deps import get_school_data
from timetable_sync.core.exceptions import ImportEmptyError
from timetable_sync.schemas.imports import (
    BulkImportPayload, ExtractionResult, ImportStateResponse, MergeResponse
)
from timetable_sync.services.school_data import SchoolDataService

router = APIRouter()
logger = logging.getLogger(__name__)


def import_state(school: SchoolDataService) -> ImportStateResponse:
    return ImportStateResponse(
        status=school.imports.status,
        error_message=school.imports.error_message,
        result=school.imports.result
    )


@router.post("/merge", response_model=MergeResponse)
async def merge_bulk_import(
    payload: BulkImportPayload,
    school: SchoolDataService = Depends(get_school_data)
):
    """Reconcile teacher- and class-oriented profiles into the timetable."""
    try:
        result = school.merge_import(payload)
    except ImportEmptyError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return MergeResponse(entity_count=len(result.entities), created=result.created)


@router.post("/stage", response_model=ImportStateResponse)
async def stage_extraction(
    result: ExtractionResult,
    school: SchoolDataService = Depends(get_school_data)
):
    school.stage_import(result)
    return import_state(school)


@router.get("/status", response_model=ImportStateResponse)
async def import_status(school: SchoolDataService = Depends(get_school_data)):
    return import_state(school)


@router.post("/cancel", response_model=ImportStateResponse)
async def cancel_import(school: SchoolDataService = Depends(get_school_data)):
    school.cancel_import()
    return import_state(school)


@router.post("/finalize", response_model=MergeResponse)
async def finalize_import(school: SchoolDataService = Depends(get_school_data)):
    try:
        result = school.finalize_import()
    except ImportEmptyError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return MergeResponse(entity_count=len(result.entities), created=result.created)
