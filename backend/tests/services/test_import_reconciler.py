"""
Tests for the two-pass import reconciler.
"""

import pytest

from timetable_sync.core.exceptions import ImportEmptyError
from timetable_sync.schemas.imports import (
    ScheduleFragment, FragmentSlot, ExtractionResult, BulkImportPayload
)
from timetable_sync.schemas.timetable import EntityProfile, EntityKind, SlotEntry, SlotKind
from timetable_sync.services.import_reconciler import (
    ImportReconciler, normalize_day, auto_short_code, is_generic_subject,
    fragments_from_extraction, fragments_from_bulk_payload
)


def fragment(name, kind, *slots, short_code=None):
    return ScheduleFragment(profile_name=name, kind=kind, short_code=short_code, slots=list(slots))


def by_name(entities):
    return {e.name: e for e in entities}


@pytest.fixture
def reconciler():
    return ImportReconciler()


class TestMerge:
    """Test cases for ImportReconciler.merge"""

    def test_empty_input_raises(self, reconciler):
        with pytest.raises(ImportEmptyError) as exc_info:
            reconciler.merge([])

        assert exc_info.value.message == "No profiles detected."

    def test_class_fragment_creates_teacher_counterpart(self, reconciler):
        result = reconciler.merge([
            fragment("10A", EntityKind.CLASS,
                     FragmentSlot(day="Mon", period=1, subject="MATH", linked_code="JD"))
        ])

        entities = by_name(result.entities)
        assert set(entities) == {"10A", "JD"}
        assert result.created == ["10A", "JD"]

        school_class = entities["10A"]
        assert school_class.kind == EntityKind.CLASS
        assert school_class.slot("Mon", 1).subject == "MATH"
        assert school_class.slot("Mon", 1).linked_code == "JD"

        teacher = entities["JD"]
        assert teacher.kind == EntityKind.TEACHER
        assert teacher.slot("Mon", 1).subject == "MATH"
        assert teacher.slot("Mon", 1).linked_code == "10A"

    @pytest.mark.parametrize("teacher_first", [True, False])
    def test_class_subject_wins_in_either_order(self, reconciler, teacher_first):
        teacher = fragment("JD", EntityKind.TEACHER,
                           FragmentSlot(day="Mon", period=1, subject="ENGLISH", linked_code="10A"))
        school_class = fragment("10A", EntityKind.CLASS,
                                FragmentSlot(day="Mon", period=1, subject="ENG", linked_code="JD"))
        fragments = [teacher, school_class] if teacher_first else [school_class, teacher]

        entities = by_name(reconciler.merge(fragments).entities)

        assert entities["JD"].slot("Mon", 1).subject == "ENG"
        assert entities["10A"].slot("Mon", 1).subject == "ENG"
        assert entities["JD"].slot("Mon", 1).linked_code == "10A"
        assert entities["10A"].slot("Mon", 1).linked_code == "JD"

    def test_document_order_gives_identical_entities(self, reconciler):
        teacher = fragment("JD", EntityKind.TEACHER,
                           FragmentSlot(day="Mon", period=1, subject="ENGLISH", linked_code="10A"),
                           FragmentSlot(day="Tue", period=2, subject="ART", room="R2", linked_code="10B"))
        school_class = fragment("10A", EntityKind.CLASS,
                                FragmentSlot(day="Mon", period=1, subject="ENG", linked_code="JD"),
                                FragmentSlot(day="Wed", period=3, subject="BIO", linked_code="MM"))

        forward = reconciler.merge([teacher, school_class]).entities
        backward = reconciler.merge([school_class, teacher]).entities

        def snapshot(entities):
            return {e.id: e.model_dump() for e in entities}

        assert snapshot(forward) == snapshot(backward)
        assert sorted((e.name, e.short_code) for e in forward) == [
            ("10A", "10A"), ("10B", "10B"), ("JD", "JD"), ("MM", "MM")
        ]

    def test_generic_subject_keeps_existing_label(self, reconciler):
        existing = [EntityProfile(
            id="c1", name="10A", kind=EntityKind.CLASS,
            schedule={"Mon": {1: SlotEntry(subject="PHYSICS", linked_code="OLD")}}
        )]

        result = reconciler.merge([
            fragment("10A", EntityKind.CLASS,
                     FragmentSlot(day="Mon", period=1, subject="GENERIC", linked_code="JD"))
        ], existing)

        entities = by_name(result.entities)
        assert entities["10A"].slot("Mon", 1).subject == "PHYSICS"
        assert entities["10A"].slot("Mon", 1).linked_code == "JD"
        assert entities["JD"].slot("Mon", 1).subject == "PHYSICS"

    def test_generic_class_subject_overwrites_teacher(self, reconciler):
        result = reconciler.merge([
            fragment("JD", EntityKind.TEACHER,
                     FragmentSlot(day="Mon", period=1, subject="MATH", linked_code="OTHER")),
            fragment("10A", EntityKind.CLASS,
                     FragmentSlot(day="Mon", period=1, subject="GENERIC", linked_code="JD")),
        ])

        entities = by_name(result.entities)
        assert entities["JD"].slot("Mon", 1).subject == "GENERIC"
        assert entities["JD"].slot("Mon", 1).linked_code == "10A"

    def test_teacher_source_does_not_relabel_class(self, reconciler):
        existing = [EntityProfile(
            id="c1", name="10A", kind=EntityKind.CLASS,
            schedule={"Tue": {3: SlotEntry(subject="BIO")}}
        )]

        result = reconciler.merge([
            fragment("Jane Roe", EntityKind.TEACHER,
                     FragmentSlot(day="Tue", period=3, subject="SCIENCE", linked_code="10A"),
                     short_code="JR")
        ], existing)

        entities = by_name(result.entities)
        assert entities["10A"].slot("Tue", 3).subject == "BIO"
        assert entities["10A"].slot("Tue", 3).linked_code == "JR"
        # The class label flows back only through a class-sourced slot
        assert entities["Jane Roe"].slot("Tue", 3).subject == "SCIENCE"

    def test_existing_room_is_preserved(self, reconciler):
        existing = [EntityProfile(
            id="t1", name="John Doe", short_code="JD", kind=EntityKind.TEACHER,
            schedule={"Mon": {1: SlotEntry(subject="MATH", room="R12", linked_code="10A")}}
        )]

        result = reconciler.merge([
            fragment("10A", EntityKind.CLASS,
                     FragmentSlot(day="Mon", period=1, subject="MATH", linked_code="JD"))
        ], existing)

        entities = by_name(result.entities)
        assert entities["John Doe"].slot("Mon", 1).room == "R12"
        assert entities["10A"].slot("Mon", 1).room is None
        assert "JD" not in entities

    def test_existing_entities_matched_case_insensitively(self, reconciler):
        existing = [EntityProfile(id="t1", name="John Doe", short_code="JD", kind=EntityKind.TEACHER)]

        result = reconciler.merge([
            fragment("john doe", EntityKind.TEACHER,
                     FragmentSlot(day="Wed", period=2, subject="ART"))
        ], existing)

        assert len(result.entities) == 1
        assert result.created == []
        assert result.entities[0].slot("Wed", 2).subject == "ART"

    def test_combined_session_reaches_every_target(self, reconciler):
        result = reconciler.merge([
            fragment("Alice", EntityKind.TEACHER,
                     FragmentSlot(day="Thu", period=5, subject="AH",
                                  kind=SlotKind.COMBINED, target_codes=["S2", "D2"]),
                     short_code="AL")
        ])

        entities = by_name(result.entities)
        assert entities["S2"].slot("Thu", 5).linked_code == "AL"
        assert entities["D2"].slot("Thu", 5).linked_code == "AL"
        assert entities["Alice"].slot("Thu", 5).kind == SlotKind.COMBINED

    def test_unrecognized_day_is_skipped(self, reconciler):
        result = reconciler.merge([
            fragment("10A", EntityKind.CLASS,
                     FragmentSlot(day="Someday", period=1, subject="MATH"),
                     FragmentSlot(day="monday", period=2, subject="ENG"))
        ])

        assert result.skipped_slots == 1
        assert result.entities[0].slot("Mon", 2).subject == "ENG"

    def test_same_input_same_ids(self, reconciler):
        fragments = [fragment("10A", EntityKind.CLASS,
                              FragmentSlot(day="Mon", period=1, subject="MATH", linked_code="JD"))]

        first = [e.id for e in reconciler.merge(fragments).entities]
        second = [e.id for e in reconciler.merge(fragments).entities]

        assert first == second
        assert first[0].startswith("class-")


class TestHelpers:

    @pytest.mark.parametrize("token,expected", [
        ("monday", "Mon"),
        ("MON", "Mon"),
        ("Tu", "Tue"),
        ("Su", "Sun"),
        ("saturday", "Sat"),
        ("T", None),
        ("", None),
        ("Someday", None),
    ])
    def test_normalize_day(self, token, expected):
        assert normalize_day(token) == expected

    def test_normalize_day_custom_days(self):
        assert normalize_day("Mo", ["Monday", "Tuesday"]) == "Monday"

    def test_auto_short_code(self):
        assert auto_short_code("Mathematics") == "MAT"
        assert auto_short_code("10A") == "10A"
        assert auto_short_code("jd") == "jd"

    def test_is_generic_subject(self):
        assert is_generic_subject("")
        assert is_generic_subject(None)
        assert is_generic_subject("generic")
        assert not is_generic_subject("MATH")


class TestFragmentConversion:
    """Test cases for converting raw import payloads into fragments"""

    def test_extraction_result_conversion(self):
        result = ExtractionResult.model_validate({
            "profiles": [{
                "name": "10A",
                "type": "CLASS",
                "schedule": {
                    "Monday": {
                        "1": {"subject": "math", "venue": "Lab", "code": "JD"},
                        "2": {"subject": ""},
                        "3": None
                    },
                    "Tuesday": {
                        "4": {"subject": "ah", "type": "COMBINED", "targetClasses": ["S2", "D2"]}
                    }
                }
            }]
        })

        fragments = fragments_from_extraction(result)

        assert len(fragments) == 1
        slots = {(s.day, s.period): s for s in fragments[0].slots}
        assert set(slots) == {("Monday", 1), ("Tuesday", 4)}
        assert slots[("Monday", 1)].subject == "MATH"
        assert slots[("Monday", 1)].room == "Lab"
        assert slots[("Monday", 1)].linked_code == "JD"
        assert slots[("Tuesday", 4)].kind == SlotKind.COMBINED
        assert slots[("Tuesday", 4)].target_codes == ["S2", "D2"]

    def test_bulk_payload_conversion(self):
        payload = BulkImportPayload.model_validate({
            "profiles": [{
                "name": "JD",
                "type": "TEACHER",
                "schedule": [{"day": "Mon", "period": 1, "subject": "MATH", "linkedCode": "10A"}]
            }]
        })

        fragments = fragments_from_bulk_payload(payload)

        assert fragments[0].profile_name == "JD"
        assert fragments[0].kind == EntityKind.TEACHER
        assert fragments[0].slots[0].linked_code == "10A"
