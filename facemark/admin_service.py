import os
from datetime import date
from io import BytesIO
from typing import Any, List, Optional

import pandas as pd
from werkzeug.security import check_password_hash, generate_password_hash

from .database import AttendanceDatabase, AttendanceRecord
from .exceptions import AttendanceError


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole > 0 else 0


class AdminService:
    def __init__(self, db: AttendanceDatabase):
        self.db = db

    def ensure_default_admin(self) -> str:
        username = os.getenv("ADMIN_USERNAME", "admin").strip().lower()
        password = os.getenv("ADMIN_PASSWORD", "admin123").strip()
        existing = self.db.get_admin_user(username)
        if existing is None:
            self.db.upsert_admin_user(username=username, password_hash=generate_password_hash(password))
        return username

    def verify_login(self, username: str, password: str) -> bool:
        user = self.db.get_admin_user(username)
        if user is None:
            return False
        return check_password_hash(user["password_hash"], password)

    def stats(self, today: Optional[date] = None) -> dict[str, int]:
        today = today or date.today()
        stats = self.db.attendance_stats(today)
        people = stats["people"]
        attended = stats["present_today"] + stats["late_today"]
        stats["present_percentage"] = _percent(stats["present_today"], people)
        stats["late_percentage"] = _percent(stats["late_today"], people)
        stats["absent_today"] = max(0, people - attended)
        stats["absent_percentage"] = _percent(stats["absent_today"], people)
        return stats

    def recent_activity(self, limit: int = 5) -> List[AttendanceRecord]:
        return self.db.search_attendance(limit=limit)

    def attendance_rows(
        self,
        query_text: str = "",
        date_from: str = "",
        date_to: str = "",
        status: str = "",
        limit: int = 2000,
    ) -> List[AttendanceRecord]:
        return self.db.search_attendance(
            query_text=query_text,
            date_from=date_from,
            date_to=date_to,
            status=status,
            limit=limit,
        )

    def attendance_frame(self, query_text: str = "", date_from: str = "", date_to: str = "") -> pd.DataFrame:
        rows = self.attendance_rows(query_text=query_text, date_from=date_from, date_to=date_to, limit=10_000)
        data: list[dict[str, Any]] = [
            {
                "Record ID": row.id,
                "Person ID": row.person_id or "",
                "Name": row.name,
                "Status": row.status,
                "Confidence": round(row.confidence, 1),
                "Check In Time": row.check_in_time,
                "Attendance Date": row.attendance_date,
            }
            for row in rows
        ]
        columns = ["Record ID", "Person ID", "Name", "Status", "Confidence", "Check In Time", "Attendance Date"]
        return pd.DataFrame(data, columns=columns)

    def attendance_excel(self, query_text: str = "", date_from: str = "", date_to: str = "") -> bytes:
        df = self.attendance_frame(query_text=query_text, date_from=date_from, date_to=date_to)
        output = BytesIO()
        with pd.ExcelWriter(output, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name="Attendance")
            ws = writer.sheets["Attendance"]
            ws.freeze_panes = "A2"

        output.seek(0)
        return output.read()

    def attendance_csv(self, query_text: str = "", date_from: str = "", date_to: str = "") -> bytes:
        df = self.attendance_frame(query_text=query_text, date_from=date_from, date_to=date_to)
        # Neutralise spreadsheet formulas in free-text columns.
        for column in ("Person ID", "Name"):
            df[column] = df[column].map(
                lambda value: f"'{value}" if isinstance(value, str) and value[:1] in ("=", "+", "-", "@") else value
            )
        return df.to_csv(index=False).encode("utf-8")

    def delete_person(self, person_id: str) -> None:
        removed = self.db.delete_person(person_id.strip())
        if not removed:
            raise AttendanceError(f"Person {person_id} not found.")
