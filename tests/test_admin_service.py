from datetime import date, datetime
from io import BytesIO

import pandas as pd
import pytest

from conftest import unit
from facemark.admin_service import AdminService
from facemark.embedding import encode
from facemark.exceptions import AttendanceError


@pytest.fixture
def admin(db):
    db.upsert_person(person_id="S-1", name="Ada", descriptor=encode(unit(0)))
    db.upsert_person(person_id="S-2", name="=cmd()", descriptor=encode(unit(1)))
    db.upsert_person(person_id="S-3", name="Cy", descriptor=encode(unit(2)))
    db.record_attendance("S-1", "present", datetime(2025, 3, 3, 8, 0), confidence=91.26)
    db.record_attendance("S-2", "late", datetime(2025, 3, 3, 9, 40), confidence=55.0)
    db.record_attendance(None, "unauthorized", datetime(2025, 3, 3, 9, 50))
    return AdminService(db)


def test_default_admin_login(admin, monkeypatch):
    monkeypatch.delenv("ADMIN_USERNAME", raising=False)
    monkeypatch.delenv("ADMIN_PASSWORD", raising=False)
    assert admin.ensure_default_admin() == "admin"
    assert admin.verify_login("admin", "admin123")
    assert not admin.verify_login("admin", "wrong")
    assert not admin.verify_login("ghost", "admin123")


def test_stats_with_percentages(admin):
    stats = admin.stats(today=date(2025, 3, 3))
    assert stats["people"] == 3
    assert stats["present_today"] == 1
    assert stats["late_today"] == 1
    assert stats["absent_today"] == 1
    assert stats["unauthorized_today"] == 1
    assert stats["present_percentage"] == 33
    assert stats["absent_percentage"] == 33


def test_recent_activity_newest_first(admin):
    rows = admin.recent_activity(limit=2)
    assert [row.status for row in rows] == ["unauthorized", "late"]


def test_excel_export(admin):
    payload = admin.attendance_excel()
    df = pd.read_excel(BytesIO(payload), sheet_name="Attendance")
    assert len(df) == 3
    assert set(df["Status"]) == {"present", "late", "unauthorized"}


def test_csv_export_neutralises_formulas(admin):
    text = admin.attendance_csv().decode("utf-8")
    assert "'=cmd()" in text
    assert "91.3" in text
    assert text.splitlines()[0].startswith("Record ID,Person ID,Name,Status")


def test_delete_person(admin, db):
    admin.delete_person("S-3")
    assert db.get_person("S-3") is None
    with pytest.raises(AttendanceError):
        admin.delete_person("S-3")
