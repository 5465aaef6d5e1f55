"""
Schedule store service.

Holds every teacher and class profile and keeps the two views of the
timetable mirrored: a slot linked to a counterpart code is reflected on the
counterpart's schedule at the same (day, period), and renames rewrite every
code reference held by other entities.

Schedules reference each other by canonical code (short code, else name),
never by entity id. Resolution goes through ``CodeIndex``: short codes are
tried before names and, when several entities share a code, the first in
stable entity order wins.

Schedule mappings are never mutated in place. A slot write builds a new
day mapping and a new schedule mapping for the owner and swaps in a shallow
copy of the profile, so untouched days and other entities' schedules stay
shared with any previously handed-out snapshot.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple, Iterator, Any

from timetable_sync.core.exceptions import EntityNotFoundError
from timetable_sync.schemas.timetable import (
    EntityProfile, EntityKind, SlotEntry, SlotKind, MirrorViolation
)

logger = logging.getLogger(__name__)


class CodeIndex:
    """Canonical code -> entity id lookup, rebuilt whenever codes change."""

    def __init__(self):
        self._by_short_code: Dict[Tuple[EntityKind, str], List[str]] = defaultdict(list)
        self._by_name: Dict[Tuple[EntityKind, str], List[str]] = defaultdict(list)

    def rebuild(self, entities: List[EntityProfile]) -> None:
        self._by_short_code = defaultdict(list)
        self._by_name = defaultdict(list)
        for entity in entities:
            if entity.short_code:
                self._by_short_code[(entity.kind, entity.short_code)].append(entity.id)
            self._by_name[(entity.kind, entity.name)].append(entity.id)

    def resolve(self, code: str, kind: EntityKind) -> Optional[str]:
        """Return the id of the first entity of ``kind`` whose short code, else name, is ``code``."""
        if not code:
            return None
        for table, field in ((self._by_short_code, "short code"), (self._by_name, "name")):
            ids = table.get((kind, code))
            if ids:
                if len(ids) > 1:
                    logger.debug(f"Ambiguous {kind.value} {field} '{code}' matches {ids}; using {ids[0]}")
                return ids[0]
        return None


class ScheduleStore:
    """In-memory holder of entity profiles with mirror-preserving mutations."""

    def __init__(self, entities: Optional[List[EntityProfile]] = None):
        # Insertion order is the stable entity order used for tie-breaks
        self._entities: Dict[str, EntityProfile] = {}
        self._index = CodeIndex()
        if entities:
            self.replace_entities(entities)

    # ------------------------------------------------------------------
    # Queries

    @property
    def entities(self) -> List[EntityProfile]:
        return list(self._entities.values())

    def list_entities(self, kind: Optional[EntityKind] = None) -> List[EntityProfile]:
        return [e for e in self._entities.values() if kind is None or e.kind == kind]

    def get(self, entity_id: str) -> Optional[EntityProfile]:
        return self._entities.get(entity_id)

    def require(self, entity_id: str) -> EntityProfile:
        entity = self._entities.get(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity

    def resolve(self, code: Optional[str], kind: EntityKind) -> Optional[EntityProfile]:
        entity_id = self._index.resolve(code, kind) if code else None
        return self._entities.get(entity_id) if entity_id else None

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[EntityProfile]:
        return iter(self.entities)

    # ------------------------------------------------------------------
    # Entity lifecycle

    def replace_entities(self, entities: List[EntityProfile]) -> None:
        self._entities = {entity.id: entity for entity in entities}
        self._reindex()

    def add_entity(self, entity: EntityProfile) -> EntityProfile:
        if entity.id in self._entities:
            logger.warning(f"Entity {entity.id} already exists; replacing it")
        self._entities[entity.id] = entity
        self._reindex()
        return entity

    def update_entity(self, entity_id: str, updates: Dict[str, Any]) -> EntityProfile:
        """
        Apply plain field updates to one entity.

        Code-bearing fields change here without rewriting references held by
        other entities; use ``rename_entity`` for that.
        """
        entity = self.require(entity_id)
        updated = entity.model_copy(update=updates)
        self._entities[entity_id] = updated
        if "name" in updates or "short_code" in updates or "kind" in updates:
            self._reindex()
        return updated

    def delete_entity(self, entity_id: str) -> EntityProfile:
        """Remove an entity. References to its code elsewhere are left dangling."""
        entity = self.require(entity_id)
        del self._entities[entity_id]
        self._reindex()
        return entity

    # ------------------------------------------------------------------
    # Slot mutations

    def put_slot(self, entity_id: str, day: str, period: int, entry: Optional[SlotEntry]) -> None:
        """Raw copy-on-write slot write with no mirroring."""
        entity = self.require(entity_id)
        day_slots = dict(entity.schedule.get(day, {}))
        if entry is None:
            if period not in day_slots:
                return
            del day_slots[period]
        else:
            day_slots[period] = entry
        schedule = dict(entity.schedule)
        schedule[day] = day_slots
        self._entities[entity_id] = entity.model_copy(update={"schedule": schedule})

    def set_slot(self, owner_id: str, day: str, period: int, entry: Optional[SlotEntry]) -> None:
        """
        Write or clear a slot and mirror it onto the linked counterpart.

        The owner's write always happens. The counterpart write is best
        effort: an unresolved code skips it without creating anything.
        Clearing removes the counterpart's mirror only while it still links
        back to the owner.
        """
        owner = self.require(owner_id)
        previous = owner.slot(day, period)
        owner_code = owner.code
        counterpart_kind = owner.kind.opposite

        self.put_slot(owner_id, day, period, entry)

        if entry is not None:
            for code in self._linked_codes(entry):
                counterpart = self.resolve(code, counterpart_kind)
                if counterpart is None:
                    logger.debug(f"No {counterpart_kind.value} with code '{code}'; mirror skipped")
                    continue
                mirror = SlotEntry(subject=entry.subject, room=entry.room, linked_code=owner_code)
                self.put_slot(counterpart.id, day, period, mirror)
        elif previous is not None:
            for code in self._linked_codes(previous):
                counterpart = self.resolve(code, counterpart_kind)
                if counterpart is None:
                    continue
                mirror = counterpart.slot(day, period)
                if mirror is not None and mirror.linked_code == owner_code:
                    self.put_slot(counterpart.id, day, period, None)
                else:
                    logger.debug(f"Mirror on {counterpart.id} {day}/{period} repointed; left untouched")

    @staticmethod
    def _linked_codes(entry: SlotEntry) -> List[str]:
        codes = []
        if entry.linked_code:
            codes.append(entry.linked_code)
        if entry.kind == SlotKind.COMBINED and entry.target_codes:
            codes.extend(c for c in entry.target_codes if c and c not in codes)
        return codes

    def rename_entity(self, entity_id: str, new_name: str, new_short_code: Optional[str] = None) -> int:
        """
        Rename an entity and rewrite every reference other entities hold.

        Returns the number of slots rewritten.
        """
        entity = self.require(entity_id)
        old_name = entity.name
        old_code = entity.code
        new_short_code = new_short_code or None
        new_code = new_short_code or new_name

        self._entities[entity_id] = entity.model_copy(
            update={"name": new_name, "short_code": new_short_code}
        )
        self._reindex()

        if old_code == new_code and old_name == new_name:
            return 0

        stale = {old_code, old_name}
        rewritten = 0
        for other in self.entities:
            if other.id == entity_id:
                continue
            schedule = None
            for day, periods in other.schedule.items():
                day_slots = None
                for period, slot in periods.items():
                    updated = self._rewrite_references(slot, stale, new_code)
                    if updated is None:
                        continue
                    if day_slots is None:
                        day_slots = dict(periods)
                    day_slots[period] = updated
                    rewritten += 1
                if day_slots is not None:
                    if schedule is None:
                        schedule = dict(other.schedule)
                    schedule[day] = day_slots
            if schedule is not None:
                self._entities[other.id] = other.model_copy(update={"schedule": schedule})

        logger.info(f"Renamed {entity_id} '{old_code}' -> '{new_code}', {rewritten} slots rewritten")
        return rewritten

    @staticmethod
    def _rewrite_references(slot: SlotEntry, stale: set, new_code: str) -> Optional[SlotEntry]:
        """Return a rewritten copy of ``slot`` or None when nothing references ``stale``."""
        updates = {}
        if slot.linked_code in stale:
            updates["linked_code"] = new_code
        if slot.split_linked_code in stale:
            updates["split_linked_code"] = new_code
        if slot.target_codes and any(code in stale for code in slot.target_codes):
            updates["target_codes"] = [new_code if code in stale else code for code in slot.target_codes]
        return slot.model_copy(update=updates) if updates else None

    # ------------------------------------------------------------------
    # Consistency

    def mirror_violations(self) -> List[MirrorViolation]:
        """List linked slots whose existing counterpart does not link back."""
        violations = []
        for entity in self.entities:
            for day, periods in entity.schedule.items():
                for period, slot in periods.items():
                    for code in self._linked_codes(slot):
                        counterpart = self.resolve(code, entity.kind.opposite)
                        if counterpart is None:
                            continue
                        if not self._links_back(counterpart.slot(day, period), entity.code):
                            violations.append(MirrorViolation(
                                entity_id=entity.id,
                                day=day,
                                period=period,
                                linked_code=code,
                                counterpart_id=counterpart.id
                            ))
        return violations

    @staticmethod
    def _links_back(mirror: Optional[SlotEntry], code: str) -> bool:
        if mirror is None:
            return False
        if mirror.linked_code == code:
            return True
        # A combined session links back to every class it lists
        return mirror.kind == SlotKind.COMBINED and code in (mirror.target_codes or [])

    def _reindex(self) -> None:
        self._index.rebuild(self.entities)
