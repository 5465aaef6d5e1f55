"""
Import Reconciler

Merges schedule fragments produced independently from a teacher-oriented
document and a class-oriented document into one mutually consistent set of
entity profiles.

Pass 1 materializes every fragment onto its own profile (creating it when
missing). Pass 2 writes the reciprocal slot for every linked fragment slot,
creating the counterpart profile when it does not exist yet. Teacher-sourced
slots are cross-pollinated before class-sourced ones so that classes, which
are authoritative for subject labels, have the final word regardless of the
order the documents arrived in.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Iterable, Tuple

from timetable_sync.core.config import settings
from timetable_sync.core.exceptions import ImportEmptyError
from timetable_sync.schemas.imports import (
    ScheduleFragment, FragmentSlot, BulkImportPayload, ExtractionResult
)
from timetable_sync.schemas.timetable import EntityProfile, EntityKind, SlotEntry, SlotKind
from timetable_sync.services.schedule_store import ScheduleStore

logger = logging.getLogger(__name__)

ENTITY_ID_NAMESPACE = uuid.UUID("6f1c8f0e-6a37-4e57-9d51-7d3b4a0c2e11")


def normalize_day(token: str, days: Optional[List[str]] = None) -> Optional[str]:
    """
    Map a day token ("monday", "MON", "Tu") onto the canonical day set.

    A token matches a day when it starts with the day name, or when it has
    at least two letters and the day name starts with it.
    """
    days = days or settings.SCHOOL_DAYS
    token = (token or "").strip().lower()
    if not token:
        return None
    for day in days:
        if token.startswith(day.lower()):
            return day
    if len(token) >= 2:
        for day in days:
            if day.lower().startswith(token):
                return day
    return None


def is_generic_subject(subject: Optional[str]) -> bool:
    """True for an empty subject or the generic placeholder."""
    subject = (subject or "").strip()
    return not subject or subject.upper() == settings.GENERIC_SUBJECT.upper()


def auto_short_code(name: str) -> str:
    length = settings.AUTO_SHORT_CODE_LENGTH
    return name if len(name) <= length else name[:length].upper()


def _slot_kind(value: Any) -> SlotKind:
    try:
        return SlotKind(str(value).lower())
    except ValueError:
        return SlotKind.NORMAL


def fragments_from_bulk_payload(payload: BulkImportPayload) -> List[ScheduleFragment]:
    return [
        ScheduleFragment(profile_name=profile.name, kind=profile.kind, slots=profile.schedule)
        for profile in payload.profiles
    ]


def fragments_from_extraction(result: ExtractionResult) -> List[ScheduleFragment]:
    """
    Convert the extractor's day-keyed schedules into fragments.

    Periods without a subject are dropped, subjects are upper-cased, the room
    falls back to the venue and the link falls back to the raw code field.
    """
    fragments = []
    for profile in result.profiles:
        slots = []
        for day, periods in (profile.schedule or {}).items():
            if not isinstance(periods, dict):
                continue
            for period, raw in periods.items():
                if not isinstance(raw, dict) or not raw.get("subject"):
                    continue
                try:
                    period_number = int(period)
                except (TypeError, ValueError):
                    logger.warning(f"Skipping non-numeric period '{period}' on {profile.name}")
                    continue
                slots.append(FragmentSlot(
                    day=day,
                    period=period_number,
                    subject=str(raw["subject"]).upper(),
                    room=raw.get("room") or raw.get("venue") or None,
                    linked_code=raw.get("linkedCode") or raw.get("code") or raw.get("teacherOrClass") or None,
                    kind=_slot_kind(raw.get("kind") or raw.get("type")),
                    target_codes=raw.get("targetCodes") or raw.get("targetClasses") or None,
                    split_subject=raw.get("splitSubject"),
                    split_linked_code=raw.get("splitLinkedCode"),
                ))
        fragments.append(ScheduleFragment(
            profile_name=profile.name,
            kind=profile.kind,
            short_code=profile.short_code,
            slots=slots
        ))
    return fragments


@dataclass
class MergeResult:
    """Outcome of a reconciler run."""
    entities: List[EntityProfile]
    created: List[str] = field(default_factory=list)
    skipped_slots: int = 0


class ImportReconciler:
    """One-shot batch transform from fragments to a consistent entity set."""

    def __init__(self, days: Optional[List[str]] = None):
        self.days = days or list(settings.SCHOOL_DAYS)

    def merge(
        self,
        fragments: Iterable[ScheduleFragment],
        existing: Optional[List[EntityProfile]] = None
    ) -> MergeResult:
        fragments = list(fragments)
        if not fragments:
            raise ImportEmptyError()

        store = ScheduleStore(list(existing or []))
        result = MergeResult(entities=[])

        # Pass 1: materialize each fragment onto its own profile
        linked: List[Tuple[EntityProfile, str, int, FragmentSlot]] = []
        for fragment in fragments:
            owner = self._find_or_create(store, fragment.profile_name, fragment.kind, result, fragment.short_code)
            for slot in fragment.slots:
                day = normalize_day(slot.day, self.days)
                if day is None:
                    logger.warning(f"Unrecognized day '{slot.day}' on {fragment.profile_name}; slot skipped")
                    result.skipped_slots += 1
                    continue
                self._apply_own_slot(store, owner.id, day, slot)
                if slot.linked_code or (slot.kind == SlotKind.COMBINED and slot.target_codes):
                    linked.append((owner, day, slot.period, slot))

        # Pass 2: cross-pollinate, teacher-sourced slots first
        linked.sort(key=lambda item: 0 if item[0].kind == EntityKind.TEACHER else 1)
        for source, day, period, slot in linked:
            source = store.require(source.id)
            source_slot = source.slot(day, period)
            if source_slot is None:
                continue
            codes = [slot.linked_code] if slot.linked_code else []
            if slot.kind == SlotKind.COMBINED:
                codes.extend(c for c in (slot.target_codes or []) if c and c not in codes)
            for code in codes:
                counterpart = self._find_or_create(store, code, source.kind.opposite, result)
                self._apply_reciprocal_slot(store, source, source_slot, counterpart.id, day, period)

        result.entities = store.entities
        logger.info(
            f"Merged {len(fragments)} fragments into {len(result.entities)} entities "
            f"({len(result.created)} created, {result.skipped_slots} slots skipped)"
        )
        return result

    def _find_or_create(
        self,
        store: ScheduleStore,
        name: str,
        kind: EntityKind,
        result: MergeResult,
        short_code: Optional[str] = None
    ) -> EntityProfile:
        wanted = name.strip().lower()
        for entity in store.list_entities(kind):
            if entity.name.lower() == wanted or (entity.short_code or "").lower() == wanted:
                return entity

        name = name.strip()
        entity = EntityProfile(
            id=f"{kind.value.lower()}-{uuid.uuid5(ENTITY_ID_NAMESPACE, kind.value + ':' + wanted).hex[:12]}",
            name=name,
            short_code=short_code or auto_short_code(name),
            kind=kind,
            schedule={}
        )
        store.add_entity(entity)
        result.created.append(name)
        logger.debug(f"Created {kind.value} '{name}' ({entity.short_code}) during import")
        return entity

    def _apply_own_slot(self, store: ScheduleStore, owner_id: str, day: str, slot: FragmentSlot) -> None:
        existing = store.require(owner_id).slot(day, slot.period)
        if existing is not None and not is_generic_subject(existing.subject) and is_generic_subject(slot.subject):
            entry = existing.model_copy(update={"linked_code": slot.linked_code})
        else:
            entry = SlotEntry(
                subject=slot.subject,
                room=slot.room if slot.room else (existing.room if existing else None),
                linked_code=slot.linked_code,
                kind=slot.kind,
                target_codes=slot.target_codes,
                split_subject=slot.split_subject,
                split_linked_code=slot.split_linked_code,
            )
        store.put_slot(owner_id, day, slot.period, entry)

    def _apply_reciprocal_slot(
        self,
        store: ScheduleStore,
        source: EntityProfile,
        source_slot: SlotEntry,
        counterpart_id: str,
        day: str,
        period: int
    ) -> None:
        existing = store.require(counterpart_id).slot(day, period)
        existing_subject = existing.subject if existing else ""

        if source.kind == EntityKind.CLASS:
            # Classes own subject labels
            subject = source_slot.subject
        else:
            subject = source_slot.subject if is_generic_subject(existing_subject) else existing_subject

        if existing is not None and existing.kind == SlotKind.COMBINED and source.code in (existing.target_codes or []):
            entry = existing.model_copy(update={"subject": subject})
        elif existing is not None:
            entry = existing.model_copy(update={"subject": subject, "linked_code": source.code})
        else:
            entry = SlotEntry(subject=subject, linked_code=source.code)
        store.put_slot(counterpart_id, day, period, entry)
