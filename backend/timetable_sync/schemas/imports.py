"""
Pydantic schemas for bulk imports and extraction results
"""

from pydantic import Field, AliasChoices
from typing import List, Dict, Any, Optional
from enum import Enum

from timetable_sync.schemas.timetable import CamelModel, EntityKind, SlotKind


class ImportStatus(str, Enum):
    """Staging states of an extraction import"""
    IDLE = "IDLE"
    PROCESSING = "PROCESSING"
    REVIEW = "REVIEW"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class FragmentSlot(CamelModel):
    """One slot of a schedule fragment, day token not yet normalized."""
    day: str
    period: int
    subject: str = ""
    linked_code: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("linkedCode", "linked_code", "code")
    )
    room: Optional[str] = None
    kind: SlotKind = SlotKind.NORMAL
    target_codes: Optional[List[str]] = None
    split_subject: Optional[str] = None
    split_linked_code: Optional[str] = None


class ScheduleFragment(CamelModel):
    """Schedule of one profile as seen by a single source document."""
    profile_name: str
    kind: EntityKind
    short_code: Optional[str] = None
    slots: List[FragmentSlot] = Field(default_factory=list)


class BulkImportProfile(CamelModel):
    name: str
    kind: EntityKind = Field(validation_alias=AliasChoices("kind", "type"))
    schedule: List[FragmentSlot] = Field(default_factory=list)


class BulkImportPayload(CamelModel):
    profiles: List[BulkImportProfile]


class ExtractionProfile(CamelModel):
    name: str
    kind: EntityKind = Field(validation_alias=AliasChoices("kind", "type"))
    short_code: Optional[str] = None
    # Raw day-keyed map of period -> slot dict, as returned by the extractor
    schedule: Dict[str, Any] = Field(default_factory=dict)


class ExtractionResult(CamelModel):
    profiles: List[ExtractionProfile] = Field(default_factory=list)
    raw_text_response: Optional[str] = None


class ImportDocument(CamelModel):
    """A source document handed to the extractor."""
    label: EntityKind
    content: str
    mime_type: str = "text/plain"


class ImportStateResponse(CamelModel):
    status: ImportStatus
    error_message: Optional[str] = None
    result: Optional[ExtractionResult] = None


class MergeResponse(CamelModel):
    entity_count: int
    created: List[str] = Field(default_factory=list)
