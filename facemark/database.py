import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, List, Optional

from .exceptions import DatabaseError

ATTENDANCE_STATUSES = ("present", "late", "unauthorized")


@dataclass
class PersonRecord:
    person_id: str
    name: str
    department: str
    position: str
    parent_email: str
    image_path: str
    created_at: str
    updated_at: str


@dataclass
class StoredDescriptor:
    person: PersonRecord
    descriptor: str


@dataclass
class AttendanceRecord:
    id: int
    person_id: Optional[str]
    name: str
    status: str
    confidence: float
    distance: Optional[float]
    check_in_time: str
    attendance_date: str
    image_path: str


_PERSON_COLUMNS = "person_id, name, department, position, parent_email, image_path, created_at, updated_at"

_ATTENDANCE_SELECT = """
    SELECT a.id, a.person_id, COALESCE(p.name, 'Unknown') AS name, a.status, a.confidence,
           a.distance, a.check_in_time, a.attendance_date, a.image_path
    FROM attendance a
    LEFT JOIN persons p ON p.person_id = a.person_id
"""


def _person_from_row(row: sqlite3.Row) -> PersonRecord:
    return PersonRecord(
        person_id=row["person_id"],
        name=row["name"],
        department=row["department"],
        position=row["position"],
        parent_email=row["parent_email"],
        image_path=row["image_path"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _attendance_from_row(row: sqlite3.Row) -> AttendanceRecord:
    return AttendanceRecord(
        id=row["id"],
        person_id=row["person_id"],
        name=row["name"],
        status=row["status"],
        confidence=float(row["confidence"]),
        distance=None if row["distance"] is None else float(row["distance"]),
        check_in_time=row["check_in_time"],
        attendance_date=row["attendance_date"],
        image_path=row["image_path"],
    )


class AttendanceDatabase:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _initialize(self) -> None:
        try:
            with self._connect() as conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS persons (
                        person_id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        department TEXT NOT NULL DEFAULT '',
                        position TEXT NOT NULL DEFAULT '',
                        parent_email TEXT NOT NULL DEFAULT '',
                        descriptor TEXT NOT NULL,
                        image_path TEXT NOT NULL DEFAULT '',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS attendance (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        person_id TEXT,
                        status TEXT NOT NULL CHECK (status IN ('present', 'late', 'unauthorized')),
                        confidence REAL NOT NULL DEFAULT 0,
                        distance REAL,
                        check_in_time TEXT NOT NULL,
                        attendance_date TEXT NOT NULL,
                        image_path TEXT NOT NULL DEFAULT '',
                        FOREIGN KEY (person_id) REFERENCES persons(person_id),
                        -- One row per person per day; unauthorized rows carry NULL and are not limited.
                        UNIQUE(person_id, attendance_date)
                    );

                    CREATE INDEX IF NOT EXISTS idx_attendance_date ON attendance(attendance_date);

                    CREATE TABLE IF NOT EXISTS admin_users (
                        username TEXT PRIMARY KEY,
                        password_hash TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );
                    """
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to initialize database: {exc}") from exc

    def upsert_person(
        self,
        person_id: str,
        name: str,
        descriptor: str,
        department: str = "",
        position: str = "",
        parent_email: str = "",
        image_path: str = "",
    ) -> None:
        if not descriptor:
            raise DatabaseError("Descriptor text cannot be empty.")

        now = datetime.now().isoformat(timespec="seconds")
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO persons (
                        person_id, name, department, position, parent_email,
                        descriptor, image_path, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(person_id) DO UPDATE SET
                        name = excluded.name,
                        department = excluded.department,
                        position = excluded.position,
                        parent_email = excluded.parent_email,
                        descriptor = excluded.descriptor,
                        image_path = excluded.image_path,
                        updated_at = excluded.updated_at
                    """,
                    (person_id, name, department, position, parent_email, descriptor, image_path, now, now),
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to save person {person_id}: {exc}") from exc

    def get_person(self, person_id: str) -> Optional[PersonRecord]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT {_PERSON_COLUMNS} FROM persons WHERE person_id = ?",
                    (person_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load person {person_id}: {exc}") from exc
        return None if row is None else _person_from_row(row)

    def list_people(self) -> List[PersonRecord]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT {_PERSON_COLUMNS} FROM persons ORDER BY created_at DESC, person_id ASC"
                ).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load people: {exc}") from exc
        return [_person_from_row(row) for row in rows]

    def list_person_descriptors(self) -> List[StoredDescriptor]:
        """Registered people with their raw descriptor text, in stable id order."""
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT {_PERSON_COLUMNS}, descriptor FROM persons ORDER BY person_id ASC"
                ).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load descriptors: {exc}") from exc
        return [StoredDescriptor(person=_person_from_row(row), descriptor=row["descriptor"]) for row in rows]

    def delete_person(self, person_id: str) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM attendance WHERE person_id = ?", (person_id,))
                cursor = conn.execute("DELETE FROM persons WHERE person_id = ?", (person_id,))
                return cursor.rowcount > 0
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to delete person {person_id}: {exc}") from exc

    def record_attendance(
        self,
        person_id: Optional[str],
        status: str,
        check_in_time: datetime,
        confidence: float = 0.0,
        distance: Optional[float] = None,
        image_path: str = "",
    ) -> bool:
        if status not in ATTENDANCE_STATUSES:
            raise DatabaseError(f"Unknown attendance status '{status}'.")

        attendance_date = check_in_time.date().isoformat()
        timestamp = check_in_time.isoformat(timespec="seconds")

        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO attendance (
                        person_id, status, confidence, distance, check_in_time, attendance_date, image_path
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (person_id, status, float(confidence), distance, timestamp, attendance_date, image_path),
                )
                return cursor.rowcount == 1
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to record attendance for {person_id or 'unknown face'}: {exc}") from exc

    def attendance_on(self, person_id: str, day: date) -> Optional[AttendanceRecord]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    _ATTENDANCE_SELECT + " WHERE a.person_id = ? AND a.attendance_date = ?",
                    (person_id, day.isoformat()),
                ).fetchone()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to query attendance for {person_id}: {exc}") from exc
        return None if row is None else _attendance_from_row(row)

    def attendance_for_date(self, day: date) -> List[AttendanceRecord]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    _ATTENDANCE_SELECT + " WHERE a.attendance_date = ? ORDER BY a.check_in_time ASC",
                    (day.isoformat(),),
                ).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to query attendance for {day}: {exc}") from exc
        return [_attendance_from_row(row) for row in rows]

    def person_history(self, person_id: str, date_from: str = "", date_to: str = "") -> List[AttendanceRecord]:
        sql = _ATTENDANCE_SELECT + " WHERE a.person_id = ?"
        params: List[Any] = [person_id]
        if date_from:
            sql += " AND a.attendance_date >= ?"
            params.append(date_from)
        if date_to:
            sql += " AND a.attendance_date <= ?"
            params.append(date_to)
        sql += " ORDER BY a.check_in_time DESC"

        try:
            with self._connect() as conn:
                rows = conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load history for {person_id}: {exc}") from exc
        return [_attendance_from_row(row) for row in rows]

    def search_attendance(
        self,
        query_text: str = "",
        date_from: str = "",
        date_to: str = "",
        status: str = "",
        limit: int = 2000,
    ) -> List[AttendanceRecord]:
        sql = _ATTENDANCE_SELECT + " WHERE 1=1"
        params: List[Any] = []

        if query_text.strip():
            term = f"%{query_text.strip()}%"
            sql += " AND (a.person_id LIKE ? OR p.name LIKE ? OR p.department LIKE ?)"
            params.extend([term, term, term])
        if date_from.strip():
            sql += " AND a.attendance_date >= ?"
            params.append(date_from.strip())
        if date_to.strip():
            sql += " AND a.attendance_date <= ?"
            params.append(date_to.strip())
        if status.strip():
            sql += " AND a.status = ?"
            params.append(status.strip())

        safe_limit = max(1, min(10_000, int(limit)))
        sql += " ORDER BY a.check_in_time DESC, a.id DESC LIMIT ?"
        params.append(safe_limit)

        try:
            with self._connect() as conn:
                rows = conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to search attendance: {exc}") from exc
        return [_attendance_from_row(row) for row in rows]

    def attendance_stats(self, day: date) -> dict[str, int]:
        try:
            with self._connect() as conn:
                people = conn.execute("SELECT COUNT(*) AS c FROM persons").fetchone()["c"]
                total = conn.execute("SELECT COUNT(*) AS c FROM attendance").fetchone()["c"]
                rows = conn.execute(
                    "SELECT status, COUNT(*) AS c FROM attendance WHERE attendance_date = ? GROUP BY status",
                    (day.isoformat(),),
                ).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load attendance stats: {exc}") from exc

        by_status = {status: 0 for status in ATTENDANCE_STATUSES}
        for row in rows:
            by_status[row["status"]] = int(row["c"])

        return {
            "people": int(people),
            "attendance_total": int(total),
            "present_today": by_status["present"],
            "late_today": by_status["late"],
            "unauthorized_today": by_status["unauthorized"],
        }

    def upsert_admin_user(self, username: str, password_hash: str) -> None:
        username = username.strip().lower()
        now = datetime.now().isoformat(timespec="seconds")
        if not username:
            raise DatabaseError("Admin username cannot be empty.")
        if not password_hash.strip():
            raise DatabaseError("Admin password hash cannot be empty.")

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO admin_users (username, password_hash, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(username) DO UPDATE SET
                        password_hash = excluded.password_hash,
                        updated_at = excluded.updated_at
                    """,
                    (username, password_hash, now, now),
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to save admin user {username}: {exc}") from exc

    def get_admin_user(self, username: str) -> Optional[dict[str, str]]:
        username = username.strip().lower()
        if not username:
            return None

        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT username, password_hash FROM admin_users WHERE username = ?",
                    (username,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load admin user {username}: {exc}") from exc

        if row is None:
            return None
        return {"username": row["username"], "password_hash": row["password_hash"]}
