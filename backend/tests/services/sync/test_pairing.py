import base64
import json

import pytest

from timetable_sync.core.exceptions import InvalidTokenError
from timetable_sync.schemas.sync import PairingPayload
from timetable_sync.schemas.timetable import EntityProfile, EntityKind, SlotEntry, Student, TimeSlot
from timetable_sync.services.sync.pairing import PairingCodec, TOKEN_VERSION


def make_token(data) -> str:
    return base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")


@pytest.fixture
def payload():
    return PairingPayload(
        school_name="Mupini Combined School",
        academic_year="2025",
        entities=[EntityProfile(
            id="c1", name="10A", kind=EntityKind.CLASS,
            schedule={"Mon": {1: SlotEntry(subject="MATH", linked_code="JD")}}
        )],
        students=[Student(id="s1", name="Ama", roll_number="01", class_id="c1")],
        time_slots=[TimeSlot(period=1, time_range="08:00 - 08:45")],
        master_id="master-1",
        remote_config={"backend": "memory"}
    )


class TestEncode:
    """Test cases for pairing token encoding"""

    def test_token_is_compact_sorted_json(self, payload):
        token = PairingCodec.encode(payload)
        text = base64.b64decode(token).decode("utf-8")
        data = json.loads(text)

        assert data["v"] == TOKEN_VERSION
        assert data["schoolName"] == "Mupini Combined School"
        assert list(data) == sorted(data)
        assert ", " not in text and ": " not in text

    def test_encoding_is_deterministic(self, payload):
        assert PairingCodec.encode(payload) == PairingCodec.encode(payload.model_copy())

    def test_non_ascii_names_survive(self, payload):
        payload.school_name = "École Saint-Gérard"

        decoded = PairingCodec.decode(PairingCodec.encode(payload))

        assert decoded.success
        assert decoded.payload.school_name == "École Saint-Gérard"

    def test_decode_restores_schedule(self, payload):
        decoded = PairingCodec.decode(PairingCodec.encode(payload)).unwrap()

        assert decoded.entities[0].slot("Mon", 1).linked_code == "JD"
        assert decoded.students[0].class_id == "c1"
        assert decoded.remote_config == {"backend": "memory"}


class TestDecode:
    """Test cases for pairing token decoding"""

    @pytest.mark.parametrize("token", ["", "not base64 at all!", make_token([1, 2]), "aGVsbG8="])
    def test_malformed_tokens_fail(self, token):
        result = PairingCodec.decode(token)

        assert result.success is False
        assert result.error_code == "INVALID_TOKEN"
        assert result.payload is None

    def test_missing_school_name_fails(self):
        result = PairingCodec.decode(make_token({"entities": []}))

        assert result.success is False
        assert "schoolName" in result.error_message

    def test_empty_school_name_fails(self):
        result = PairingCodec.decode(make_token({"schoolName": "", "entities": []}))

        assert result.success is False

    def test_empty_entity_list_is_accepted(self):
        result = PairingCodec.decode(make_token({"schoolName": "Mupini", "entities": []}))

        assert result.success is True
        assert result.payload.entities == []

    def test_invalid_entity_fails(self):
        result = PairingCodec.decode(make_token({"schoolName": "Mupini", "entities": [{"id": "x"}]}))

        assert result.success is False

    def test_unwrap_raises_for_failure(self):
        with pytest.raises(InvalidTokenError):
            PairingCodec.decode("???").unwrap()
