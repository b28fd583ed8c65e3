from datetime import date, datetime

import pytest

from conftest import backdate_registration, unit
from facemark.attendance_service import AttendanceService, parse_cutoff, working_days
from facemark.embedding import encode
from facemark.exceptions import AttendanceError
from facemark.matcher import Matched


@pytest.fixture
def service(db):
    db.upsert_person(person_id="S-1", name="Ada", descriptor=encode(unit(0)))
    backdate_registration(db, "S-1", "2025-01-01T00:00:00")
    return AttendanceService(db, late_after="09:00")


def _match(distance=0.1):
    return Matched(identity="S-1", distance=distance, confidence=(1 - distance / 0.6) * 100)


def test_status_uses_late_cutoff(service):
    assert service.status_for(datetime(2025, 3, 3, 8, 59)) == "present"
    assert service.status_for(datetime(2025, 3, 3, 9, 0)) == "present"
    assert service.status_for(datetime(2025, 3, 3, 9, 1)) == "late"


def test_invalid_cutoff_rejected():
    with pytest.raises(AttendanceError):
        parse_cutoff("nine")


def test_record_match_once_per_day(service, db):
    first = service.record_match("S-1", _match(), when=datetime(2025, 3, 3, 9, 30))
    assert first.status == "late"
    assert first.inserted

    again = service.record_match("S-1", _match(), when=datetime(2025, 3, 3, 11, 0))
    assert again.status == "late"
    assert not again.inserted
    assert again.check_in_time == datetime(2025, 3, 3, 9, 30)
    assert len(db.person_history("S-1")) == 1


def test_record_unrecognized(service, db):
    mark = service.record_unrecognized(when=datetime(2025, 3, 3, 8, 0), image_path="/tmp/x.jpg")
    assert mark.status == "unauthorized"
    rows = db.attendance_for_date(date(2025, 3, 3))
    assert rows[0].image_path == "/tmp/x.jpg"


def test_working_days_skip_weekends():
    days = working_days(2025, 3)
    assert len(days) == 21
    assert all(d.weekday() < 5 for d in days)
    assert days[0] == date(2025, 3, 3)


def test_calendar_splits_present_late_absent(service):
    service.record_match("S-1", _match(), when=datetime(2025, 3, 3, 8, 0))
    service.record_match("S-1", _match(), when=datetime(2025, 3, 4, 9, 45))

    view = service.person_calendar("S-1", 2025, 3, today=date(2025, 3, 7))
    assert view.present_days == [date(2025, 3, 3)]
    assert view.late_days == [date(2025, 3, 4)]
    assert view.absent_days == [date(2025, 3, 5), date(2025, 3, 6), date(2025, 3, 7)]


def test_calendar_ignores_days_before_registration(service, db):
    backdate_registration(db, "S-1", "2025-03-05T12:00:00")
    view = service.person_calendar("S-1", 2025, 3, today=date(2025, 3, 7))
    assert view.absent_days == [date(2025, 3, 5), date(2025, 3, 6), date(2025, 3, 7)]


def test_calendar_unknown_person(service):
    with pytest.raises(AttendanceError):
        service.person_calendar("nobody", 2025, 3)
    with pytest.raises(AttendanceError):
        service.person_calendar("S-1", 2025, 13)


def test_report_counts_and_rate(service):
    service.record_match("S-1", _match(), when=datetime(2025, 3, 3, 8, 0))
    service.record_match("S-1", _match(), when=datetime(2025, 3, 4, 9, 30))

    report = service.attendance_report("S-1", today=date(2025, 3, 7), window_days=6)
    # 2025-03-01..07 holds five working days
    assert report.working_days == 5
    assert (report.present, report.late, report.absent) == (1, 1, 3)
    assert report.attendance_rate == 40.0
    assert report.rows[0].day == date(2025, 3, 7)
    assert report.rows[-1].status == "present"


def test_report_with_no_working_days(service):
    report = service.attendance_report("S-1", today=date(2025, 3, 9), window_days=1)
    assert report.working_days == 0
    assert report.attendance_rate == 0.0
