from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Tuple

import numpy as np

from .camera import CameraStream
from .config import DUPLICATE_FACE_DISTANCE, EMBEDDING_DIM, REGISTRATION_SAMPLES
from .database import AttendanceDatabase, PersonRecord
from .embedding import as_embedding, decode, encode
from .exceptions import EmbeddingError, RegistrationError
from .face_engine import DescriptorExtractor
from .logger import setup_logger
from .matcher import nearest_identities


@dataclass
class PersonProfile:
    person_id: str
    name: str
    department: str = ""
    position: str = ""
    parent_email: str = ""


class RegistrationService:
    def __init__(
        self,
        db: AttendanceDatabase,
        extractor: DescriptorExtractor,
        duplicate_distance: float = DUPLICATE_FACE_DISTANCE,
        dimension: int = EMBEDDING_DIM,
    ):
        self.db = db
        self.extractor = extractor
        self.duplicate_distance = duplicate_distance
        self.dimension = dimension
        self.logger = setup_logger(self.__class__.__name__)

    def register_person(
        self,
        profile: PersonProfile,
        frames: Iterable[np.ndarray],
        image_path: str = "",
    ) -> PersonRecord:
        start_time = datetime.now()
        person_id, _ = self._check_profile(profile)
        descriptors: List[np.ndarray] = []
        for index, frame in enumerate(frames, start=1):
            descriptor = self.extractor.extract_descriptor(frame)
            if descriptor is None:
                self.logger.info("No face detected in registration sample %d for %s", index, person_id)
                continue
            descriptors.append(descriptor)
        return self._register_descriptors(profile, descriptors, image_path, start_time)

    def register_from_camera(
        self,
        profile: PersonProfile,
        camera_index: int = 0,
        samples: int = REGISTRATION_SAMPLES,
        max_frames: int = 300,
    ) -> PersonRecord:
        self._check_profile(profile)
        if samples < 1:
            raise RegistrationError("samples should be at least 1.")

        start_time = datetime.now()
        descriptors: List[np.ndarray] = []
        with CameraStream(camera_index) as cam:
            for _ in range(max_frames):
                descriptor = self.extractor.extract_descriptor(cam.read())
                if descriptor is not None:
                    descriptors.append(descriptor)
                if len(descriptors) >= samples:
                    break

        if len(descriptors) < samples:
            raise RegistrationError(f"Only {len(descriptors)}/{samples} usable face samples captured.")
        return self._register_descriptors(profile, descriptors, "", start_time)

    def _register_descriptors(
        self,
        profile: PersonProfile,
        samples: List[np.ndarray],
        image_path: str,
        start_time: datetime,
    ) -> PersonRecord:
        person_id, name = self._check_profile(profile)
        if not samples:
            raise RegistrationError("No face detected in the provided images.")

        descriptors = [
            as_embedding(sample, dimension=self.dimension, label="registration sample") for sample in samples
        ]
        averaged = self._average_descriptor(descriptors)
        self._validate_identity_uniqueness(averaged, person_id)
        self.db.upsert_person(
            person_id=person_id,
            name=name,
            descriptor=encode(averaged),
            department=profile.department.strip(),
            position=profile.position.strip(),
            parent_email=profile.parent_email.strip(),
            image_path=image_path,
        )

        elapsed = (datetime.now() - start_time).total_seconds()
        self.logger.info(
            "Person %s registered with %d samples in %.1fs",
            person_id,
            len(descriptors),
            elapsed,
        )
        record = self.db.get_person(person_id)
        if record is None:
            raise RegistrationError(f"Person {person_id} was not stored.")
        return record

    @staticmethod
    def _check_profile(profile: PersonProfile) -> Tuple[str, str]:
        person_id = profile.person_id.strip()
        name = profile.name.strip()
        if not person_id:
            raise RegistrationError("person_id cannot be empty.")
        if not name:
            raise RegistrationError("name cannot be empty.")
        return person_id, name

    @staticmethod
    def _average_descriptor(descriptors: List[np.ndarray]) -> np.ndarray:
        matrix = np.vstack(descriptors)
        vector = matrix.mean(axis=0)
        norm = np.linalg.norm(vector)
        if norm == 0.0:
            raise RegistrationError("Unable to normalize averaged descriptor.")
        return vector / norm

    def _validate_identity_uniqueness(self, descriptor: np.ndarray, person_id: str) -> None:
        others: List[Tuple[PersonRecord, np.ndarray]] = []
        for stored in self.db.list_person_descriptors():
            if stored.person.person_id == person_id:
                continue
            try:
                others.append((stored.person, decode(stored.descriptor, dimension=self.dimension)))
            except EmbeddingError as exc:
                self.logger.warning("Ignoring descriptor of %s in duplicate check: %s", stored.person.person_id, exc)

        nearest = nearest_identities(descriptor, others, limit=1)
        if nearest and nearest[0][1] < self.duplicate_distance:
            record, distance = nearest[0]
            raise RegistrationError(
                f"Captured face is too similar to existing person '{record.name}' ({record.person_id}), "
                f"distance {distance:.3f}."
            )
