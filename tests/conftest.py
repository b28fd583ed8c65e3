import os
import tempfile

os.environ.setdefault("FACEMARK_LOG_DIR", tempfile.mkdtemp(prefix="facemark-logs-"))
os.environ.setdefault("FACEMARK_DATA_DIR", tempfile.mkdtemp(prefix="facemark-data-"))

import numpy as np
import pytest

from facemark.database import AttendanceDatabase

DIM = 128


class FakeExtractor:
    """Treats each frame as the descriptor itself; an empty frame has no face."""

    def __init__(self):
        self.calls = 0

    def extract_descriptor(self, frame):
        self.calls += 1
        frame = np.asarray(frame, dtype=np.float64)
        if frame.size == 0:
            return None
        return frame


def unit(index: int, dim: int = DIM) -> np.ndarray:
    vec = np.zeros(dim, dtype=np.float64)
    vec[index] = 1.0
    return vec


def blend(a: np.ndarray, b: np.ndarray, weight: float) -> np.ndarray:
    vec = (1.0 - weight) * a + weight * b
    return vec / np.linalg.norm(vec)


NO_FACE = np.zeros(0)


def backdate_registration(db: AttendanceDatabase, person_id: str, created_at: str) -> None:
    with db._connect() as conn:
        conn.execute("UPDATE persons SET created_at = ? WHERE person_id = ?", (created_at, person_id))


@pytest.fixture
def db(tmp_path):
    return AttendanceDatabase(tmp_path / "attendance.db")


@pytest.fixture
def extractor():
    return FakeExtractor()
