"""
Tests for the HTTP API routers.
"""

import pytest
from fastapi.testclient import TestClient

from main import app
from timetable_sync.api.deps import get_school_data
from timetable_sync.services.blob_store import InMemoryBlobStore
from timetable_sync.services.school_data import SchoolDataService
from timetable_sync.services.sync.remote import InMemoryRemoteBackend


@pytest.fixture
def school():
    service = SchoolDataService(blob_store=InMemoryBlobStore(), backend=InMemoryRemoteBackend())
    service.load()
    return service


@pytest.fixture
def client(school):
    app.dependency_overrides[get_school_data] = lambda: school
    yield TestClient(app)
    app.dependency_overrides.clear()


def create(client, name, kind, short_code=None):
    response = client.post("/api/v1/timetable/entities", json={
        "name": name, "kind": kind, "shortCode": short_code
    })
    assert response.status_code == 201
    return response.json()


class TestTimetableAPI:
    """Test cases for the timetable endpoints"""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_create_and_list(self, client):
        teacher = create(client, "John Doe", "TEACHER", "JD")
        create(client, "10B", "CLASS")

        assert teacher["shortCode"] == "JD"
        assert teacher["id"].startswith("teacher-")

        classes = client.get("/api/v1/timetable/entities", params={"kind": "CLASS"}).json()
        assert [c["name"] for c in classes] == ["10B"]

    def test_slot_write_mirrors_counterpart(self, client):
        teacher = create(client, "John Doe", "TEACHER", "JD")
        school_class = create(client, "10B", "CLASS")

        response = client.put(f"/api/v1/timetable/entities/{teacher['id']}/slots", json={
            "day": "Mon", "period": 2, "entry": {"subject": "ENG", "linkedCode": "10B"}
        })

        assert response.status_code == 200
        mirrored = client.get(f"/api/v1/timetable/entities/{school_class['id']}").json()
        assert mirrored["schedule"]["Mon"]["2"]["subject"] == "ENG"
        assert mirrored["schedule"]["Mon"]["2"]["linkedCode"] == "JD"
        assert client.get("/api/v1/timetable/consistency").json() == []

    def test_slot_write_unknown_entity(self, client):
        response = client.put("/api/v1/timetable/entities/missing/slots", json={
            "day": "Mon", "period": 1, "entry": {"subject": "ENG"}
        })

        assert response.status_code == 404

    def test_slot_write_rejects_period_zero(self, client):
        teacher = create(client, "John Doe", "TEACHER", "JD")

        response = client.put(f"/api/v1/timetable/entities/{teacher['id']}/slots", json={
            "day": "Mon", "period": 0, "entry": None
        })

        assert response.status_code == 422

    def test_rename(self, client):
        teacher = create(client, "John Doe", "TEACHER", "JD")
        school_class = create(client, "10A", "CLASS")
        client.put(f"/api/v1/timetable/entities/{teacher['id']}/slots", json={
            "day": "Mon", "period": 1, "entry": {"subject": "MATH", "linkedCode": "10A"}
        })

        response = client.post(f"/api/v1/timetable/entities/{school_class['id']}/rename", json={
            "name": "10A", "shortCode": "10A-NEW"
        })

        assert response.status_code == 200
        assert response.json()["rewrittenSlots"] == 1
        assert response.json()["entity"]["shortCode"] == "10A-NEW"

    def test_delete(self, client):
        school_class = create(client, "10A", "CLASS")

        assert client.delete(f"/api/v1/timetable/entities/{school_class['id']}").status_code == 204
        assert client.get(f"/api/v1/timetable/entities/{school_class['id']}").status_code == 404


class TestAttendanceAPI:

    def test_batch_upsert_is_idempotent(self, client):
        record = {"date": "2024-01-01", "period": 1, "classEntityId": "c1", "studentId": "S1", "status": "PRESENT"}

        client.post("/api/v1/attendance/batch", json={"records": [record]})
        response = client.post("/api/v1/attendance/batch", json={"records": [dict(record, status="ABSENT")]})

        assert response.json() == {"applied": 1, "total": 1}
        stored = client.get("/api/v1/attendance/period", params={
            "date": "2024-01-01", "period": 1, "classEntityId": "c1"
        }).json()
        assert [r["status"] for r in stored] == ["ABSENT"]


class TestImportsAPI:
    """Test cases for the import endpoints"""

    def test_merge(self, client):
        response = client.post("/api/v1/imports/merge", json={"profiles": [{
            "name": "10A", "type": "CLASS",
            "schedule": [{"day": "Mon", "period": 1, "subject": "MATH", "linkedCode": "JD"}]
        }]})

        assert response.status_code == 200
        assert response.json() == {"entityCount": 2, "created": ["10A", "JD"]}

    def test_merge_without_profiles(self, client):
        response = client.post("/api/v1/imports/merge", json={"profiles": []})

        assert response.status_code == 400
        assert response.json()["detail"] == "No profiles detected."

    def test_stage_review_cancel(self, client):
        staged = client.post("/api/v1/imports/stage", json={"profiles": [{
            "name": "JD", "type": "TEACHER", "schedule": {"Mon": {"1": {"subject": "ENG"}}}
        }]}).json()
        assert staged["status"] == "REVIEW"

        cancelled = client.post("/api/v1/imports/cancel").json()
        assert cancelled["status"] == "IDLE"
        assert cancelled["result"] is None

    def test_empty_stage_enters_error(self, client):
        staged = client.post("/api/v1/imports/stage", json={"profiles": []}).json()

        assert staged["status"] == "ERROR"
        assert staged["errorMessage"] == "No profiles detected."

    def test_finalize_without_review(self, client):
        assert client.post("/api/v1/imports/finalize").status_code == 400


class TestSyncAPI:

    def test_status_when_standalone(self, client):
        body = client.get("/api/v1/sync/status").json()

        assert body["syncInfo"]["connectionState"] == "OFFLINE"
        assert body["syncInfo"]["paired"] is False

    def test_pairing_token_then_join(self, client, school):
        create(client, "10A", "CLASS")

        issued = client.post("/api/v1/sync/pairing-token").json()
        assert issued["schoolId"].startswith("sch-")

        staff = SchoolDataService(blob_store=InMemoryBlobStore(), backend=school.backend)
        staff.load()
        app.dependency_overrides[get_school_data] = lambda: staff
        joined = client.post("/api/v1/sync/join", json={"token": issued["token"]})

        assert joined.status_code == 200
        assert joined.json()["syncInfo"]["role"] == "TEACHER"
        assert [e.name for e in staff.store.entities] == ["10A"]

    def test_join_with_bad_token(self, client):
        response = client.post("/api/v1/sync/join", json={"token": "not-a-token"})

        assert response.status_code == 400
