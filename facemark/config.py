import os
from pathlib import Path

import torch


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _str_env(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip()


def _path_env(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return Path(raw.strip()).expanduser()


BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = _path_env("FACEMARK_DATA_DIR", BASE_DIR / "data")
LOG_DIR = _path_env("FACEMARK_LOG_DIR", BASE_DIR / "logs")
DB_PATH = DATA_DIR / "attendance.db"
UNRECOGNIZED_DIR = DATA_DIR / "unrecognized"

# Webcam settings
CAMERA_INDEX = _int_env("FACE_CAMERA_INDEX", 0)
FRAME_WIDTH = _int_env("FACE_FRAME_WIDTH", 1280)
FRAME_HEIGHT = _int_env("FACE_FRAME_HEIGHT", 720)
FRAME_FPS = _int_env("FACE_FRAME_FPS", 30)

# Face engine settings
FACE_DETECTION_THRESHOLD = _float_env("FACE_DETECTION_THRESHOLD", 0.90)
MIN_FACE_SIZE = _int_env("FACE_MIN_FACE_SIZE", 80)
EMBEDDING_DIM = _int_env("FACEMARK_EMBEDDING_DIM", 128)

# Matching settings (Euclidean distance on L2-normalised descriptors)
MATCH_THRESHOLD = _float_env("FACEMARK_MATCH_THRESHOLD", 0.6)
DUPLICATE_FACE_DISTANCE = _float_env("FACEMARK_DUPLICATE_FACE_DISTANCE", 0.4)

# Capture settings
REGISTRATION_SAMPLES = _int_env("FACEMARK_REGISTRATION_SAMPLES", 5)
CAPTURE_ATTEMPTS = _int_env("FACEMARK_CAPTURE_ATTEMPTS", 3)
CAPTURE_RETRY_DELAY = _float_env("FACEMARK_CAPTURE_RETRY_DELAY", 0.5)
SAVE_UNRECOGNIZED = _bool_env("FACEMARK_SAVE_UNRECOGNIZED", True)

# Attendance policy
LATE_AFTER = _str_env("FACEMARK_LATE_AFTER", "09:00")
REPORT_WINDOW_DAYS = _int_env("FACEMARK_REPORT_WINDOW_DAYS", 30)

# Parent notifications
NOTIFICATION_URL = _str_env("FACEMARK_NOTIFICATION_URL", "")
NOTIFICATION_TOKEN = _str_env("FACEMARK_NOTIFICATION_TOKEN", "")
NOTIFICATION_TIMEOUT = _float_env("FACEMARK_NOTIFICATION_TIMEOUT", 10.0)
SCHOOL_NAME = _str_env("FACEMARK_SCHOOL_NAME", "")

# Runtime settings
DEVICE = "cuda" if torch.cuda.is_available() else "cpu"
