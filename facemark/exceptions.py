class AttendanceError(Exception):
    """Base exception for the attendance system."""


class EmbeddingError(AttendanceError):
    """Raised when a face descriptor cannot be used for matching."""


class InvalidEmbeddingLength(EmbeddingError, ValueError):
    """Raised when a descriptor does not have the agreed dimensionality."""

    def __init__(self, expected: int, actual: int, label: str = "embedding"):
        self.expected = expected
        self.actual = actual
        self.label = label
        super().__init__(f"{label} has length {actual}, expected {expected}.")


class MalformedEmbedding(EmbeddingError, ValueError):
    """Raised when stored descriptor text is not a sequence of numbers."""


class CameraError(AttendanceError):
    """Raised when webcam access fails."""


class FaceEngineError(AttendanceError):
    """Raised when face detection or embedding generation fails."""


class DatabaseError(AttendanceError):
    """Raised when database operations fail."""


class RegistrationError(AttendanceError):
    """Raised when a face profile cannot be registered."""


class NotificationError(AttendanceError):
    """Raised when the notification endpoint cannot be reached."""
