import logging
import os
import uuid
from dataclasses import asdict
from datetime import date, datetime
from io import BytesIO
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from urllib.parse import quote

import numpy as np
from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel

from .admin_service import AdminService
from .attendance_service import AttendanceService
from .config import DATA_DIR, DB_PATH, MATCH_THRESHOLD
from .database import AttendanceDatabase
from .exceptions import AttendanceError, FaceEngineError
from .face_engine import DescriptorExtractor, decode_image, load_face_engine
from .notification_service import NOTIFICATION_TYPES, NotificationService
from .recognition_service import RecognitionService
from .registration_service import PersonProfile, RegistrationService

logger = logging.getLogger("facemark.web_app")


def face_image_name(person_id: str) -> str:
    """Photo file name for a person; distinct ids never share a file."""
    return quote(person_id.strip(), safe="-_") + ".jpg"


class NotificationBody(BaseModel):
    person_id: str
    attendance_date: Optional[date] = None


def create_web_app(
    db: Optional[AttendanceDatabase] = None,
    extractor: Optional[DescriptorExtractor] = None,
    notifier: Optional[NotificationService] = None,
    threshold: float = MATCH_THRESHOLD,
    faces_dir: Path = DATA_DIR / "faces",
    image_decoder: Callable[[bytes], np.ndarray] = decode_image,
) -> FastAPI:
    app = FastAPI(title="Face Attendance", version="1.0.0")

    db = db or AttendanceDatabase(DB_PATH)
    extractor = extractor or load_face_engine()
    notifier = notifier or NotificationService()
    faces_dir = Path(faces_dir)

    admin_service = AdminService(db)
    admin_service.ensure_default_admin()
    attendance = AttendanceService(db)
    recognition = RecognitionService(db=db, extractor=extractor, threshold=threshold, attendance=attendance)
    registration = RegistrationService(db=db, extractor=extractor)
    security = HTTPBasic()

    def require_admin(credentials: HTTPBasicCredentials = Depends(security)) -> str:
        username = credentials.username.strip().lower()
        if not admin_service.verify_login(username, credentials.password):
            raise HTTPException(
                status_code=401,
                detail="Invalid username or password.",
                headers={"WWW-Authenticate": "Basic"},
            )
        return username

    def _read_frames(images: List[UploadFile]) -> Tuple[List[np.ndarray], List[bytes]]:
        frames = []
        payloads = []
        for upload in images:
            payload = upload.file.read()
            try:
                frames.append(image_decoder(payload))
            except FaceEngineError as exc:
                raise HTTPException(status_code=400, detail=f"{upload.filename}: {exc}") from exc
            payloads.append(payload)
        if not frames:
            raise HTTPException(status_code=400, detail="At least one image is required.")
        return frames, payloads

    def _person_or_404(person_id: str):
        person = db.get_person(person_id)
        if person is None:
            raise HTTPException(status_code=404, detail=f"Person {person_id} not found.")
        return person

    @app.get("/api/health")
    def health():
        return {"ok": True, "time": datetime.now().isoformat(timespec="seconds")}

    @app.post("/api/recognize")
    def recognize(images: List[UploadFile] = File(...)):
        frames, _ = _read_frames(images)
        try:
            outcome = recognition.recognize(frames)
        except AttendanceError as exc:
            logger.exception("Recognition failed")
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if not outcome.face_found:
            raise HTTPException(status_code=422, detail="No face detected in the image.")
        return outcome.to_dict()

    @app.post("/api/persons", status_code=201)
    def register_person(
        person_id: str = Form(...),
        name: str = Form(...),
        department: str = Form(""),
        position: str = Form(""),
        parent_email: str = Form(""),
        images: List[UploadFile] = File(...),
        _admin: str = Depends(require_admin),
    ):
        frames, payloads = _read_frames(images)
        profile = PersonProfile(
            person_id=person_id,
            name=name,
            department=department,
            position=position,
            parent_email=parent_email,
        )
        staged = None
        target = None
        image_path = ""
        if payloads and person_id.strip():
            faces_dir.mkdir(parents=True, exist_ok=True)
            target = faces_dir / face_image_name(person_id)
            # The current photo stays in place until registration succeeds.
            staged = faces_dir / f".{uuid.uuid4().hex}.upload"
            staged.write_bytes(payloads[0])
            image_path = str(target)

        try:
            record = registration.register_person(profile, frames, image_path=image_path)
        except AttendanceError as exc:
            if staged is not None:
                staged.unlink(missing_ok=True)
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if staged is not None:
            os.replace(staged, target)
        return asdict(record)

    @app.get("/api/persons")
    def list_people(_admin: str = Depends(require_admin)):
        return [asdict(person) for person in db.list_people()]

    @app.get("/api/persons/{person_id}")
    def get_person(person_id: str, _admin: str = Depends(require_admin)):
        return asdict(_person_or_404(person_id))

    @app.delete("/api/persons/{person_id}")
    def delete_person(person_id: str, _admin: str = Depends(require_admin)):
        try:
            admin_service.delete_person(person_id)
        except AttendanceError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"ok": True}

    @app.get("/api/persons/{person_id}/history")
    def person_history(person_id: str, _admin: str = Depends(require_admin)):
        _person_or_404(person_id)
        return [asdict(row) for row in db.person_history(person_id)]

    @app.get("/api/persons/{person_id}/calendar")
    def person_calendar(
        person_id: str,
        year: Optional[int] = None,
        month: Optional[int] = None,
        _admin: str = Depends(require_admin),
    ):
        _person_or_404(person_id)
        today = date.today()
        try:
            view = attendance.person_calendar(person_id, year or today.year, month or today.month)
        except AttendanceError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return asdict(view)

    @app.get("/api/persons/{person_id}/report")
    def person_report(person_id: str, days: int = 30, _admin: str = Depends(require_admin)):
        _person_or_404(person_id)
        return asdict(attendance.attendance_report(person_id, window_days=days))

    @app.get("/api/attendance")
    def attendance_rows(
        q: str = "",
        date_from: str = "",
        date_to: str = "",
        status: str = "",
        limit: int = 2000,
        _admin: str = Depends(require_admin),
    ):
        rows = admin_service.attendance_rows(
            query_text=q, date_from=date_from, date_to=date_to, status=status, limit=limit
        )
        return [asdict(row) for row in rows]

    @app.get("/api/attendance/today")
    def attendance_today(_admin: str = Depends(require_admin)):
        return [asdict(row) for row in db.attendance_for_date(date.today())]

    @app.get("/api/attendance/export")
    def attendance_export(
        q: str = "",
        date_from: str = "",
        date_to: str = "",
        fmt: str = "xlsx",
        _admin: str = Depends(require_admin),
    ):
        if fmt == "csv":
            payload = admin_service.attendance_csv(query_text=q, date_from=date_from, date_to=date_to)
            media_type = "text/csv"
        elif fmt == "xlsx":
            payload = admin_service.attendance_excel(query_text=q, date_from=date_from, date_to=date_to)
            media_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        else:
            raise HTTPException(status_code=400, detail=f"Unsupported export format '{fmt}'.")
        return StreamingResponse(
            BytesIO(payload),
            media_type=media_type,
            headers={"Content-Disposition": f"attachment; filename=attendance_report.{fmt}"},
        )

    @app.get("/api/stats")
    def stats(_admin: str = Depends(require_admin)):
        body = admin_service.stats()
        body["recent_activity"] = [asdict(row) for row in admin_service.recent_activity()]
        return body

    @app.post("/api/notifications/{kind}")
    def notify(kind: str, payload: NotificationBody, _admin: str = Depends(require_admin)):
        if kind not in NOTIFICATION_TYPES:
            raise HTTPException(status_code=404, detail=f"Unknown notification type '{kind}'.")
        person = _person_or_404(payload.person_id)
        receipt = notifier.send(
            kind,
            student_id=person.person_id,
            day=payload.attendance_date or date.today(),
            student_name=person.name,
            parent_email=person.parent_email,
        )
        if not receipt.success:
            raise HTTPException(status_code=502, detail=receipt.error)
        return asdict(receipt)

    return app
