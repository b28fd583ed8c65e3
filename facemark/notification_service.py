from dataclasses import dataclass
from datetime import date
from typing import Optional

import requests

from .config import NOTIFICATION_TIMEOUT, NOTIFICATION_TOKEN, NOTIFICATION_URL, SCHOOL_NAME
from .exceptions import NotificationError
from .logger import setup_logger

NOTIFICATION_TYPES = ("absence", "late")


@dataclass
class NotificationReceipt:
    success: bool
    message: str = ""
    error: str = ""


class NotificationService:
    """Hands absence/late notices to the notification endpoint.

    Delivery (email, SMS) happens behind the endpoint; this class only
    builds the payload and reports whether the endpoint accepted it.
    """

    def __init__(
        self,
        url: str = NOTIFICATION_URL,
        token: str = NOTIFICATION_TOKEN,
        timeout: float = NOTIFICATION_TIMEOUT,
        school_name: str = SCHOOL_NAME,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.school_name = school_name
        self.session = session or requests.Session()
        self.logger = setup_logger(self.__class__.__name__)

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def send(
        self,
        kind: str,
        student_id: str,
        day: date,
        student_name: str = "",
        parent_email: str = "",
    ) -> NotificationReceipt:
        if kind not in NOTIFICATION_TYPES:
            return NotificationReceipt(success=False, error=f"Unknown notification type '{kind}'.")
        if not self.enabled:
            return NotificationReceipt(success=False, error="Notification endpoint is not configured.")

        payload = {
            "type": kind,
            "studentId": student_id,
            "date": day.isoformat(),
            "parentEmail": parent_email or None,
            "studentName": student_name or None,
            "schoolName": self.school_name or None,
        }
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}

        self.logger.info("Sending %s notification for %s", kind, student_id)
        try:
            response = self._post(payload, headers)
        except NotificationError as exc:
            self.logger.error("Notification for %s failed: %s", student_id, exc)
            return NotificationReceipt(success=False, error=str(exc))

        try:
            body = response.json()
        except ValueError:
            body = {}
        message = body.get("message", "") if isinstance(body, dict) else ""
        return NotificationReceipt(success=True, message=str(message))

    def _post(self, payload: dict, headers: dict) -> requests.Response:
        try:
            response = self.session.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise NotificationError(f"Notification endpoint error: {exc}") from exc
        return response

    def send_absence_notification(
        self,
        student_id: str,
        student_name: str = "",
        parent_email: str = "",
        day: Optional[date] = None,
    ) -> NotificationReceipt:
        return self.send("absence", student_id, day or date.today(), student_name, parent_email)

    def send_late_notification(
        self,
        student_id: str,
        student_name: str = "",
        parent_email: str = "",
        day: Optional[date] = None,
    ) -> NotificationReceipt:
        return self.send("late", student_id, day or date.today(), student_name, parent_email)
