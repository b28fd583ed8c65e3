import inspect
import json

import numpy as np
import pytest
from fastapi.testclient import TestClient

from conftest import FakeExtractor, blend, unit
from facemark.database import AttendanceDatabase
from facemark.exceptions import FaceEngineError
from facemark.notification_service import NotificationReceipt
from facemark.web_app import create_web_app

AUTH = ("admin", "admin123")


def json_decoder(payload: bytes) -> np.ndarray:
    try:
        return np.asarray(json.loads(payload), dtype=np.float64)
    except ValueError as exc:
        raise FaceEngineError("Could not decode image.") from exc


def upload(*vectors):
    return [("images", (f"face{i}.jpg", json.dumps(list(vec)), "image/jpeg")) for i, vec in enumerate(vectors)]


class RecordingNotifier:
    def __init__(self, success=True):
        self.success = success
        self.sent = []

    def send(self, kind, student_id, day, student_name="", parent_email=""):
        self.sent.append((kind, student_id, day, student_name, parent_email))
        if self.success:
            return NotificationReceipt(success=True, message="queued")
        return NotificationReceipt(success=False, error="endpoint down")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(tmp_path, monkeypatch, notifier):
    monkeypatch.delenv("ADMIN_USERNAME", raising=False)
    monkeypatch.delenv("ADMIN_PASSWORD", raising=False)
    app = create_web_app(
        db=AttendanceDatabase(tmp_path / "web.db"),
        extractor=FakeExtractor(),
        notifier=notifier,
        faces_dir=tmp_path / "faces",
        image_decoder=json_decoder,
    )
    return TestClient(app)


def register(client, person_id="S-1", name="Ada", vector=None):
    return client.post(
        "/api/persons",
        data={"person_id": person_id, "name": name, "parent_email": "parent@example.com"},
        files=upload(unit(0) if vector is None else vector),
        auth=AUTH,
    )


def test_health_endpoint(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_admin_routes_require_credentials(client):
    assert client.get("/api/persons").status_code == 401
    assert client.get("/api/persons", auth=("admin", "nope")).status_code == 401


def test_register_and_list(client, tmp_path):
    response = register(client)
    assert response.status_code == 201
    assert response.json()["name"] == "Ada"
    assert (tmp_path / "faces" / "S-1.jpg").exists()

    people = client.get("/api/persons", auth=AUTH).json()
    assert [p["person_id"] for p in people] == ["S-1"]
    assert client.get("/api/persons/S-1", auth=AUTH).status_code == 200
    assert client.get("/api/persons/S-9", auth=AUTH).status_code == 404


def test_duplicate_registration_rejected_and_image_removed(client, tmp_path):
    register(client)
    response = register(client, person_id="S-2", name="Eve")
    assert response.status_code == 400
    assert not (tmp_path / "faces" / "S-2.jpg").exists()


def test_undecodable_upload_rejected(client):
    response = client.post(
        "/api/recognize",
        files=[("images", ("bad.jpg", "not an image", "image/jpeg"))],
    )
    assert response.status_code == 400


def test_recognize_marks_attendance(client):
    register(client)
    response = client.post("/api/recognize", files=upload(unit(0)))
    assert response.status_code == 200
    body = response.json()
    assert body["recognized"] is True
    assert body["person"]["person_id"] == "S-1"
    assert body["status"] in ("present", "late")

    today = client.get("/api/attendance/today", auth=AUTH).json()
    assert [row["person_id"] for row in today] == ["S-1"]

    stats = client.get("/api/stats", auth=AUTH).json()
    assert stats["people"] == 1
    assert stats["absent_today"] == 0
    assert len(stats["recent_activity"]) == 1


def test_recognize_without_face(client):
    register(client)
    response = client.post("/api/recognize", files=upload([]))
    assert response.status_code == 422


def test_person_views(client):
    register(client)
    client.post("/api/recognize", files=upload(unit(0)))

    history = client.get("/api/persons/S-1/history", auth=AUTH).json()
    assert len(history) == 1
    assert client.get("/api/persons/S-1/calendar", auth=AUTH).status_code == 200
    assert client.get("/api/persons/S-1/calendar?month=13", auth=AUTH).status_code == 400
    report = client.get("/api/persons/S-1/report?days=7", auth=AUTH).json()
    assert report["person_id"] == "S-1"


def test_export_formats(client):
    register(client)
    client.post("/api/recognize", files=upload(unit(0)))

    csv_response = client.get("/api/attendance/export?fmt=csv", auth=AUTH)
    assert csv_response.status_code == 200
    assert csv_response.text.startswith("Record ID,")

    xlsx_response = client.get("/api/attendance/export", auth=AUTH)
    assert xlsx_response.status_code == 200
    assert xlsx_response.content[:2] == b"PK"

    assert client.get("/api/attendance/export?fmt=pdf", auth=AUTH).status_code == 400


def test_delete_person(client):
    register(client)
    assert client.delete("/api/persons/S-1", auth=AUTH).status_code == 200
    assert client.delete("/api/persons/S-1", auth=AUTH).status_code == 404


def test_notification_routes(client, notifier):
    register(client)
    response = client.post(
        "/api/notifications/absence",
        json={"person_id": "S-1", "attendance_date": "2025-03-03"},
        auth=AUTH,
    )
    assert response.status_code == 200
    kind, student_id, day, name, email = notifier.sent[0]
    assert (kind, student_id, day.isoformat(), name, email) == (
        "absence",
        "S-1",
        "2025-03-03",
        "Ada",
        "parent@example.com",
    )

    assert client.post("/api/notifications/holiday", json={"person_id": "S-1"}, auth=AUTH).status_code == 404
    assert client.post("/api/notifications/late", json={"person_id": "S-9"}, auth=AUTH).status_code == 404

    notifier.success = False
    assert client.post("/api/notifications/late", json={"person_id": "S-1"}, auth=AUTH).status_code == 502


def test_rejected_reregistration_keeps_existing_photo(client, tmp_path):
    register(client)
    photo = tmp_path / "faces" / "S-1.jpg"
    original = photo.read_bytes()

    response = client.post(
        "/api/persons",
        data={"person_id": "S-1", "name": "Ada"},
        files=upload([]),
        auth=AUTH,
    )
    assert response.status_code == 400

    person = client.get("/api/persons/S-1", auth=AUTH).json()
    assert person["image_path"] == str(photo)
    assert photo.read_bytes() == original
    assert sorted(p.name for p in (tmp_path / "faces").iterdir()) == ["S-1.jpg"]


def test_successful_reregistration_replaces_photo(client, tmp_path):
    register(client)
    photo = tmp_path / "faces" / "S-1.jpg"
    before = photo.read_bytes()
    response = register(client, vector=blend(unit(0), unit(1), 0.05))
    assert response.status_code == 201
    assert photo.read_bytes() != before
    assert sorted(p.name for p in (tmp_path / "faces").iterdir()) == ["S-1.jpg"]


def test_ids_differing_only_in_unsafe_characters_get_separate_photos(client):
    first = register(client, person_id="a/b", name="Ann", vector=unit(0)).json()
    second = register(client, person_id="ab", name="Abe", vector=unit(1)).json()
    assert first["image_path"] != second["image_path"]
    assert first["image_path"].endswith("a%2Fb.jpg")
    assert second["image_path"].endswith("ab.jpg")


def test_upload_handlers_run_in_threadpool(client):
    # FastAPI runs plain def endpoints in its threadpool.
    endpoints = {
        (route.path, method): route.endpoint
        for route in client.app.routes
        for method in getattr(route, "methods", ())
    }
    assert not inspect.iscoroutinefunction(endpoints[("/api/recognize", "POST")])
    assert not inspect.iscoroutinefunction(endpoints[("/api/persons", "POST")])
