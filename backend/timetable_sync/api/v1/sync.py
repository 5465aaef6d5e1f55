"""
API endpoints for device pairing and replication status.
"""
from fastapi import APIRouter, HTTPException, Depends
import logging

from timetable_sync.api.deps import get_school_data
from timetable_sync.schemas.sync import (
    PairingImportRequest, PairingTokenResponse, SyncStatusResponse
)
from timetable_sync.services.school_data import SchoolDataService

router = APIRouter()
logger = logging.getLogger(__name__)


def sync_status(school: SchoolDataService) -> SyncStatusResponse:
    return SyncStatusResponse(
        school_name=school.school_name,
        sync_info=school.sync_info,
        pending_pushes=school.bridge.pending_pushes
    )


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(school: SchoolDataService = Depends(get_school_data)):
    return sync_status(school)


@router.post("/pairing-token", response_model=PairingTokenResponse)
async def generate_pairing_token(school: SchoolDataService = Depends(get_school_data)):
    """Make this device the school master and return a token other devices can join with."""
    token = school.generate_pairing_token()
    # Joining devices read the initial upload, so it must land first
    await school.bridge.drain()
    return PairingTokenResponse(token=token, school_id=school.sync_info.school_id)


@router.post("/join", response_model=SyncStatusResponse)
async def join_school(
    request: PairingImportRequest,
    school: SchoolDataService = Depends(get_school_data)
):
    result = school.import_pairing_token(request.token)
    if not result.success:
        logger.warning(f"Pairing rejected: {result.error_message}")
        raise HTTPException(status_code=400, detail=result.error_message)
    return sync_status(school)


@router.post("/disconnect", response_model=SyncStatusResponse)
async def disconnect(school: SchoolDataService = Depends(get_school_data)):
    school.disconnect_sync()
    return sync_status(school)


@router.post("/force", response_model=SyncStatusResponse)
async def force_sync(school: SchoolDataService = Depends(get_school_data)):
    school.force_sync()
    await school.bridge.drain()
    return sync_status(school)
