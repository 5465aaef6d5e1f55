"""
Pydantic schemas for timetable entities, slots and attendance.

Wire format is camelCase (shared with the remote store and pairing tokens);
Python attributes are snake_case.
"""

from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional
from enum import Enum


class EntityKind(str, Enum):
    """Kinds of entity profiles"""
    TEACHER = "TEACHER"
    CLASS = "CLASS"

    @property
    def opposite(self) -> "EntityKind":
        return EntityKind.CLASS if self is EntityKind.TEACHER else EntityKind.TEACHER


class SlotKind(str, Enum):
    """Session shapes a timetable cell can take"""
    NORMAL = "normal"
    SPLIT = "split"
    COMBINED = "combined"


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    LATE = "LATE"
    EXCUSED = "EXCUSED"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SlotEntry(CamelModel):
    """One timetable cell. Immutable; rewrite with ``model_copy(update=...)``."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    subject: str = ""
    room: Optional[str] = None
    linked_code: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("linkedCode", "linked_code", "teacherOrClass")
    )
    kind: SlotKind = Field(default=SlotKind.NORMAL, validation_alias=AliasChoices("kind", "type"))
    target_codes: Optional[List[str]] = Field(
        default=None,
        validation_alias=AliasChoices("targetCodes", "target_codes", "targetClasses")
    )
    split_subject: Optional[str] = None
    split_linked_code: Optional[str] = None


# day -> period -> entry; an absent key means an empty slot
WeeklySchedule = Dict[str, Dict[int, SlotEntry]]


class EntityProfile(CamelModel):
    id: str
    name: str
    short_code: Optional[str] = None
    kind: EntityKind = Field(validation_alias=AliasChoices("kind", "type"))
    schedule: WeeklySchedule = Field(default_factory=dict)

    @field_validator("schedule", mode="before")
    @classmethod
    def drop_empty_slots(cls, v):
        if not v:
            return {}
        schedule = {}
        for day, periods in v.items():
            # Realtime stores hand back consecutive integer keys as arrays
            if isinstance(periods, list):
                periods = dict(enumerate(periods))
            schedule[day] = {
                period: entry for period, entry in (periods or {}).items() if entry is not None
            }
        return schedule

    @property
    def code(self) -> str:
        """Canonical code: short code if present, else name."""
        return self.short_code or self.name

    def slot(self, day: str, period: int) -> Optional[SlotEntry]:
        return self.schedule.get(day, {}).get(period)


class Student(CamelModel):
    id: str
    name: str
    roll_number: str = ""
    class_id: str


class TimeSlot(CamelModel):
    period: int
    time_range: str


class AttendanceRecord(CamelModel):
    date: str
    period: int
    class_entity_id: str = Field(validation_alias=AliasChoices("classEntityId", "class_entity_id", "entityId"))
    student_id: str
    status: AttendanceStatus

    @property
    def key(self):
        """Uniqueness key of the ledger."""
        return (self.date, self.period, self.student_id)


# Request/response schemas

class EntityCreate(CamelModel):
    name: str = Field(..., min_length=1)
    short_code: Optional[str] = None
    kind: EntityKind = Field(validation_alias=AliasChoices("kind", "type"))


class EntityRename(CamelModel):
    name: str = Field(..., min_length=1)
    short_code: Optional[str] = None


class SlotWriteRequest(CamelModel):
    day: str
    period: int = Field(..., ge=1)
    entry: Optional[SlotEntry] = None


class AttendanceBatchRequest(CamelModel):
    records: List[AttendanceRecord]


class MirrorViolation(CamelModel):
    """A linked slot whose counterpart does not link back."""
    entity_id: str
    day: str
    period: int
    linked_code: str
    counterpart_id: str
