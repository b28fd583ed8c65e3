import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional

from .config import LATE_AFTER, REPORT_WINDOW_DAYS
from .database import AttendanceDatabase, AttendanceRecord
from .exceptions import AttendanceError
from .matcher import Matched

# When a person has several rows on one day, the best status wins.
_STATUS_RANK = {"present": 2, "late": 1}


@dataclass
class MarkResult:
    status: str
    inserted: bool
    check_in_time: datetime


@dataclass
class AttendanceCalendar:
    person_id: str
    year: int
    month: int
    working_days: List[date]
    present_days: List[date]
    late_days: List[date]
    absent_days: List[date]


@dataclass
class ReportRow:
    day: date
    status: str
    check_in_time: str


@dataclass
class AttendanceReport:
    person_id: str
    date_from: date
    date_to: date
    working_days: int
    present: int
    late: int
    absent: int
    attendance_rate: float
    rows: List[ReportRow] = field(default_factory=list)


def parse_cutoff(raw: str) -> time:
    try:
        return datetime.strptime(raw.strip(), "%H:%M").time()
    except ValueError as exc:
        raise AttendanceError(f"Invalid late cutoff '{raw}', expected HH:MM.") from exc


def working_days(year: int, month: int) -> List[date]:
    """Monday-Friday dates of the given month."""
    _, days_in_month = calendar.monthrange(year, month)
    days = (date(year, month, d) for d in range(1, days_in_month + 1))
    return [d for d in days if d.weekday() < 5]


def _working_days_between(start: date, end: date) -> List[date]:
    days = []
    current = start
    while current <= end:
        if current.weekday() < 5:
            days.append(current)
        current += timedelta(days=1)
    return days


def _best_status_by_day(records: List[AttendanceRecord]) -> Dict[date, AttendanceRecord]:
    best: Dict[date, AttendanceRecord] = {}
    for record in records:
        if record.status not in _STATUS_RANK:
            continue
        day = date.fromisoformat(record.attendance_date)
        current = best.get(day)
        if current is None or _STATUS_RANK[record.status] > _STATUS_RANK[current.status]:
            best[day] = record
    return best


class AttendanceService:
    def __init__(self, db: AttendanceDatabase, late_after: str = LATE_AFTER):
        self.db = db
        self.late_after = parse_cutoff(late_after)

    def status_for(self, check_in: datetime) -> str:
        return "late" if check_in.time() > self.late_after else "present"

    def record_match(self, person_id: str, result: Matched, when: Optional[datetime] = None) -> MarkResult:
        when = when or datetime.now()
        existing = self.db.attendance_on(person_id, when.date())
        if existing is not None:
            return MarkResult(
                status=existing.status,
                inserted=False,
                check_in_time=datetime.fromisoformat(existing.check_in_time),
            )

        status = self.status_for(when)
        inserted = self.db.record_attendance(
            person_id=person_id,
            status=status,
            check_in_time=when,
            confidence=result.confidence,
            distance=result.distance,
        )
        return MarkResult(status=status, inserted=inserted, check_in_time=when)

    def record_unrecognized(self, when: Optional[datetime] = None, image_path: str = "") -> MarkResult:
        when = when or datetime.now()
        self.db.record_attendance(
            person_id=None,
            status="unauthorized",
            check_in_time=when,
            image_path=image_path,
        )
        return MarkResult(status="unauthorized", inserted=True, check_in_time=when)

    def person_calendar(self, person_id: str, year: int, month: int, today: Optional[date] = None) -> AttendanceCalendar:
        if not 1 <= month <= 12:
            raise AttendanceError(f"Invalid month {month}.")
        person = self.db.get_person(person_id)
        if person is None:
            raise AttendanceError(f"Person {person_id} not found.")

        today = today or date.today()
        days = working_days(year, month)
        first, last = days[0], days[-1]
        history = self.db.person_history(person_id, date_from=first.isoformat(), date_to=last.isoformat())
        by_day = _best_status_by_day(history)

        registered_on = datetime.fromisoformat(person.created_at).date()
        present = sorted(d for d, rec in by_day.items() if rec.status == "present")
        late = sorted(d for d, rec in by_day.items() if rec.status == "late")
        absent = [d for d in days if registered_on <= d <= today and d not in by_day]

        return AttendanceCalendar(
            person_id=person_id,
            year=year,
            month=month,
            working_days=days,
            present_days=present,
            late_days=late,
            absent_days=absent,
        )

    def attendance_report(
        self,
        person_id: str,
        today: Optional[date] = None,
        window_days: int = REPORT_WINDOW_DAYS,
    ) -> AttendanceReport:
        person = self.db.get_person(person_id)
        if person is None:
            raise AttendanceError(f"Person {person_id} not found.")

        today = today or date.today()
        start = today - timedelta(days=max(0, window_days))
        registered_on = datetime.fromisoformat(person.created_at).date()
        days = _working_days_between(max(start, registered_on), today)
        history = self.db.person_history(person_id, date_from=start.isoformat(), date_to=today.isoformat())
        by_day = _best_status_by_day(history)

        rows: List[ReportRow] = []
        present = late = absent = 0
        for day in sorted(days, reverse=True):
            record = by_day.get(day)
            if record is None:
                absent += 1
                rows.append(ReportRow(day=day, status="absent", check_in_time=""))
                continue
            if record.status == "present":
                present += 1
            else:
                late += 1
            rows.append(ReportRow(day=day, status=record.status, check_in_time=record.check_in_time))

        rate = round((present + late) / len(days) * 100, 1) if days else 0.0
        return AttendanceReport(
            person_id=person_id,
            date_from=start,
            date_to=today,
            working_days=len(days),
            present=present,
            late=late,
            absent=absent,
            attendance_rate=rate,
            rows=rows,
        )
