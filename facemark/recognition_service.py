import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import cv2
import numpy as np

from .attendance_service import AttendanceService
from .camera import CameraStream
from .config import (
    CAPTURE_ATTEMPTS,
    CAPTURE_RETRY_DELAY,
    EMBEDDING_DIM,
    MATCH_THRESHOLD,
    SAVE_UNRECOGNIZED,
    UNRECOGNIZED_DIR,
)
from .database import AttendanceDatabase, PersonRecord
from .embedding import as_embedding, decode
from .exceptions import EmbeddingError
from .face_engine import DescriptorExtractor
from .logger import setup_logger
from .matcher import Matched, MatchResult, Unmatched, match

Frames = Union[np.ndarray, Iterable[np.ndarray]]


@dataclass
class RecognitionOutcome:
    face_found: bool
    timestamp: datetime
    result: Optional[MatchResult] = None
    person: Optional[PersonRecord] = None
    status: Optional[str] = None
    newly_marked: bool = False
    image_path: str = ""

    @property
    def recognized(self) -> bool:
        return isinstance(self.result, Matched)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "face_found": self.face_found,
            "recognized": self.recognized,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(timespec="seconds"),
            "newly_marked": self.newly_marked,
        }
        if isinstance(self.result, Matched) and self.person is not None:
            payload["person"] = {
                "person_id": self.person.person_id,
                "name": self.person.name,
                "department": self.person.department,
                "position": self.person.position,
            }
            payload["distance"] = round(self.result.distance, 6)
            payload["confidence"] = round(self.result.confidence, 1)
        if self.image_path:
            payload["image_path"] = self.image_path
        return payload


def _as_frame_list(frames: Frames) -> List[np.ndarray]:
    if isinstance(frames, np.ndarray):
        return [frames]
    return list(frames)


class RecognitionService:
    def __init__(
        self,
        db: AttendanceDatabase,
        extractor: DescriptorExtractor,
        threshold: float = MATCH_THRESHOLD,
        attendance: Optional[AttendanceService] = None,
        dimension: int = EMBEDDING_DIM,
        capture_attempts: int = CAPTURE_ATTEMPTS,
        retry_delay: float = CAPTURE_RETRY_DELAY,
        save_unrecognized: bool = SAVE_UNRECOGNIZED,
        unrecognized_dir: Path = UNRECOGNIZED_DIR,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.extractor = extractor
        self.threshold = threshold
        self.attendance = attendance or AttendanceService(db)
        self.dimension = dimension
        self.capture_attempts = max(1, capture_attempts)
        self.retry_delay = retry_delay
        self.save_unrecognized = save_unrecognized
        self.unrecognized_dir = Path(unrecognized_dir)
        self._sleep = sleep
        self.logger = setup_logger(self.__class__.__name__)

    def load_catalog(self) -> List[Tuple[PersonRecord, np.ndarray]]:
        """Decode every stored descriptor, skipping the ones that cannot be matched.

        A single corrupt registration must not block recognition of everyone
        else, so bad rows are logged and left out of the snapshot.
        """
        catalog: List[Tuple[PersonRecord, np.ndarray]] = []
        for stored in self.db.list_person_descriptors():
            try:
                embedding = decode(stored.descriptor, dimension=self.dimension)
            except EmbeddingError as exc:
                self.logger.warning("Skipping descriptor of %s: %s", stored.person.person_id, exc)
                continue
            catalog.append((stored.person, embedding))
        return catalog

    def capture_descriptor(self, frames: Frames) -> Optional[np.ndarray]:
        """Try successive frames until one yields a face descriptor."""
        for attempt, frame in enumerate(_as_frame_list(frames)[: self.capture_attempts], start=1):
            if attempt > 1 and self.retry_delay > 0:
                self._sleep(self.retry_delay)
            descriptor = self.extractor.extract_descriptor(frame)
            if descriptor is not None:
                return as_embedding(descriptor, dimension=self.dimension, label="captured descriptor")
            self.logger.info("No face detected on attempt %d/%d", attempt, self.capture_attempts)
        return None

    def identify(self, descriptor: np.ndarray) -> MatchResult:
        catalog = self.load_catalog()
        if not catalog:
            self.logger.info("No registered faces to compare against")
        return match(descriptor, catalog, self.threshold, dimension=self.dimension)

    def recognize(self, frames: Frames, when: Optional[datetime] = None) -> RecognitionOutcome:
        frame_list = _as_frame_list(frames)
        when = when or datetime.now()

        descriptor = self.capture_descriptor(frame_list)
        if descriptor is None:
            return RecognitionOutcome(face_found=False, timestamp=when)

        return self._record(self.identify(descriptor), frame_list, when)

    def _record(self, result: MatchResult, frame_list: List[np.ndarray], when: datetime) -> RecognitionOutcome:
        if isinstance(result, Matched):
            person: PersonRecord = result.identity
            mark = self.attendance.record_match(person.person_id, result, when=when)
            self.logger.info(
                "Recognized %s (%s) distance=%.4f confidence=%.1f status=%s",
                person.name,
                person.person_id,
                result.distance,
                result.confidence,
                mark.status,
            )
            return RecognitionOutcome(
                face_found=True,
                timestamp=when,
                result=result,
                person=person,
                status=mark.status,
                newly_marked=mark.inserted,
            )

        image_path = ""
        if self.save_unrecognized and frame_list:
            image_path = self._save_snapshot(frame_list[-1], when)
        self.attendance.record_unrecognized(when=when, image_path=image_path)
        self.logger.info("Face not recognized; recorded as unauthorized")
        return RecognitionOutcome(
            face_found=True,
            timestamp=when,
            result=Unmatched(),
            status="unauthorized",
            newly_marked=True,
            image_path=image_path,
        )

    def run(self, camera_index: int = 0, cooldown_seconds: float = 5.0) -> None:
        self.logger.info("Starting live recognition on camera %d", camera_index)
        last_seen: Dict[str, float] = {}
        last_unknown = 0.0

        with CameraStream(camera_index) as cam:
            for frame in cam.frames():
                descriptor = self.extractor.extract_descriptor(frame)
                if descriptor is not None:
                    now = time.monotonic()
                    result = self.identify(as_embedding(descriptor, dimension=self.dimension))
                    if isinstance(result, Matched):
                        person_id = result.identity.person_id
                        if now - last_seen.get(person_id, float("-inf")) >= cooldown_seconds:
                            last_seen[person_id] = now
                            self._record(result, [frame], datetime.now())
                    elif now - last_unknown >= cooldown_seconds:
                        last_unknown = now
                        self._record(result, [frame], datetime.now())

                cv2.imshow("Live Recognition - Press Q to exit", frame)
                if cv2.waitKey(1) & 0xFF == ord("q"):
                    break
        cv2.destroyAllWindows()

    def _save_snapshot(self, frame: np.ndarray, when: datetime) -> str:
        self.unrecognized_dir.mkdir(parents=True, exist_ok=True)
        path = self.unrecognized_dir / f"unrecognized_{when.strftime('%Y%m%d_%H%M%S_%f')}.jpg"
        if not cv2.imwrite(str(path), frame):
            self.logger.warning("Could not write unrecognized snapshot to %s", path)
            return ""
        return str(path)
