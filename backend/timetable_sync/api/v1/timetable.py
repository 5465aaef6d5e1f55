"""
API endpoints for entity profiles and their schedules.
"""
from fastapi import APIRouter, HTTPException, Depends, status
from typing import List, Optional
import logging

from timetable_sync.api.deps import get_school_data
from timetable_sync.core.exceptions import EntityNotFoundError
from timetable_sync.schemas.timetable import (
    EntityProfile, EntityKind, EntityCreate, EntityRename, SlotWriteRequest, MirrorViolation
)
from timetable_sync.services.school_data import SchoolDataService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/entities", response_model=List[EntityProfile])
async def list_entities(
    kind: Optional[EntityKind] = None,
    school: SchoolDataService = Depends(get_school_data)
):
    return school.store.list_entities(kind)


@router.post("/entities", response_model=EntityProfile, status_code=status.HTTP_201_CREATED)
async def create_entity(
    entity_data: EntityCreate,
    school: SchoolDataService = Depends(get_school_data)
):
    return school.add_entity(entity_data.name, entity_data.kind, entity_data.short_code)


@router.get("/entities/{entity_id}", response_model=EntityProfile)
async def get_entity(entity_id: str, school: SchoolDataService = Depends(get_school_data)):
    entity = school.store.get(entity_id)
    if entity is None:
        raise HTTPException(status_code=404, detail=f"Entity not found: {entity_id}")
    return entity


@router.delete("/entities/{entity_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entity(entity_id: str, school: SchoolDataService = Depends(get_school_data)):
    try:
        school.delete_entity(entity_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.put("/entities/{entity_id}/slots", response_model=EntityProfile)
async def write_slot(
    entity_id: str,
    slot_data: SlotWriteRequest,
    school: SchoolDataService = Depends(get_school_data)
):
    """Write or clear one slot; the linked counterpart is mirrored."""
    try:
        return school.set_slot(entity_id, slot_data.day, slot_data.period, slot_data.entry)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.post("/entities/{entity_id}/rename")
async def rename_entity(
    entity_id: str,
    rename_data: EntityRename,
    school: SchoolDataService = Depends(get_school_data)
):
    """Rename an entity and rewrite every schedule reference to its code."""
    try:
        rewritten = school.rename_entity(entity_id, rename_data.name, rename_data.short_code)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    entity = school.store.require(entity_id)
    return {
        "entity": entity.model_dump(mode="json", by_alias=True),
        "rewrittenSlots": rewritten
    }


@router.get("/consistency", response_model=List[MirrorViolation])
async def consistency_report(school: SchoolDataService = Depends(get_school_data)):
    """Linked slots whose counterpart does not link back."""
    return school.store.mirror_violations()
