from dataclasses import dataclass
from typing import List, Optional, Protocol

import cv2
import numpy as np
import torch
import torch.nn.functional as f
import torchvision.models as models
from torchvision.models import ResNet18_Weights

from .config import DEVICE, EMBEDDING_DIM, FACE_DETECTION_THRESHOLD, MIN_FACE_SIZE
from .embedding import as_embedding
from .exceptions import FaceEngineError
from .logger import setup_logger

try:
    import mediapipe as mp
except Exception:  # pragma: no cover - runtime dependency guard
    mp = None


class DescriptorExtractor(Protocol):
    def extract_descriptor(self, frame: np.ndarray) -> Optional[np.ndarray]:
        ...


@dataclass
class FaceBatch:
    embeddings: List[np.ndarray]
    boxes: List[np.ndarray]
    confidences: List[float]


class FaceEngine:
    def __init__(
        self,
        device: str = DEVICE,
        detection_threshold: float = FACE_DETECTION_THRESHOLD,
        min_face_size: int = MIN_FACE_SIZE,
        embedding_dim: int = EMBEDDING_DIM,
    ):
        if mp is None:
            raise FaceEngineError("mediapipe is required. Install the project dependencies.")
        if embedding_dim <= 0:
            raise FaceEngineError(f"embedding_dim must be positive, got {embedding_dim}.")

        self.device = torch.device(device)
        self.detection_threshold = detection_threshold
        self.min_face_size = min_face_size
        self.embedding_dim = embedding_dim

        if self.device.type == "cuda":
            torch.backends.cudnn.benchmark = True

        try:
            self.mp_face = mp.solutions.face_detection
            self.detector = self.mp_face.FaceDetection(
                model_selection=0,
                min_detection_confidence=detection_threshold,
            )

            weights = ResNet18_Weights.DEFAULT
            backbone = models.resnet18(weights=weights)
            backbone.fc = torch.nn.Identity()
            self.embedder = backbone.eval().to(self.device)

            self.mean = torch.tensor([0.485, 0.456, 0.406], dtype=torch.float32).view(1, 3, 1, 1).to(self.device)
            self.std = torch.tensor([0.229, 0.224, 0.225], dtype=torch.float32).view(1, 3, 1, 1).to(self.device)
            self.clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
        except Exception as exc:
            raise FaceEngineError(f"Failed to initialize face models: {exc}") from exc

    def extract_embeddings(self, frame: np.ndarray) -> FaceBatch:
        try:
            rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
            result = self.detector.process(rgb)
        except Exception as exc:
            raise FaceEngineError(f"Face extraction failed: {exc}") from exc

        if not result.detections:
            return FaceBatch(embeddings=[], boxes=[], confidences=[])

        h, w = frame.shape[:2]
        crops = []
        boxes = []
        confs = []

        for det in result.detections:
            score = float(det.score[0]) if det.score else 0.0
            if score < self.detection_threshold:
                continue

            rel = det.location_data.relative_bounding_box
            x1 = max(0, int(rel.xmin * w))
            y1 = max(0, int(rel.ymin * h))
            x2 = min(w, x1 + int(rel.width * w))
            y2 = min(h, y1 + int(rel.height * h))

            if (x2 - x1) < self.min_face_size or (y2 - y1) < self.min_face_size:
                continue

            crop, box = self._square_crop(rgb, x1, y1, x2, y2)
            if crop.size == 0:
                continue

            crops.append(crop)
            boxes.append(box)
            confs.append(score)

        if not crops:
            return FaceBatch(embeddings=[], boxes=[], confidences=[])

        try:
            tensor_batch = self._to_tensor_batch(crops)
            with torch.inference_mode():
                raw = self.embedder(tensor_batch)
                # Pool backbone features down to the descriptor length used for matching.
                pooled = f.adaptive_avg_pool1d(raw.float().unsqueeze(1), self.embedding_dim).squeeze(1)
                normed = f.normalize(pooled, p=2, dim=1)
                emb = normed.detach().cpu().numpy().astype(np.float64)
        except Exception as exc:
            raise FaceEngineError(f"Embedding generation failed: {exc}") from exc

        return FaceBatch(
            embeddings=[as_embedding(emb[i]) for i in range(emb.shape[0])],
            boxes=boxes,
            confidences=confs,
        )

    def extract_descriptor(self, frame: np.ndarray) -> Optional[np.ndarray]:
        """Descriptor of the most confident face in ``frame``, or None."""
        batch = self.extract_embeddings(frame)
        if not batch.embeddings:
            return None
        best = int(np.argmax(batch.confidences))
        return batch.embeddings[best]

    def _to_tensor_batch(self, face_crops: List[np.ndarray]) -> torch.Tensor:
        processed = []
        for crop in face_crops:
            tensor = torch.from_numpy(self._preprocess_crop(crop)).permute(2, 0, 1).float() / 255.0
            processed.append(tensor)

        batch = torch.stack(processed, dim=0).to(self.device)
        return (batch - self.mean) / self.std

    @staticmethod
    def _square_crop(rgb: np.ndarray, x1: int, y1: int, x2: int, y2: int) -> tuple[np.ndarray, np.ndarray]:
        h, w = rgb.shape[:2]
        side = int(max(x2 - x1, y2 - y1, 1) * 1.05)
        cx = (x1 + x2) // 2
        cy = (y1 + y2) // 2

        sx1 = max(0, cx - side // 2)
        sy1 = max(0, cy - side // 2)
        sx2 = min(w, sx1 + side)
        sy2 = min(h, sy1 + side)

        if sx2 <= sx1 or sy2 <= sy1:
            return np.empty((0, 0, 3), dtype=rgb.dtype), np.array([x1, y1, x2, y2], dtype=np.float32)
        return rgb[sy1:sy2, sx1:sx2], np.array([sx1, sy1, sx2, sy2], dtype=np.float32)

    def _preprocess_crop(self, crop: np.ndarray) -> np.ndarray:
        interpolation = cv2.INTER_CUBIC if min(crop.shape[:2]) < 224 else cv2.INTER_AREA
        resized = cv2.resize(crop, (224, 224), interpolation=interpolation)

        # Equalise luminance only; chroma passes through untouched.
        ycrcb = cv2.cvtColor(resized, cv2.COLOR_RGB2YCrCb)
        y_channel, cr_channel, cb_channel = cv2.split(ycrcb)
        y_channel = self.clahe.apply(y_channel)
        return cv2.cvtColor(cv2.merge([y_channel, cr_channel, cb_channel]), cv2.COLOR_YCrCb2RGB)


def load_face_engine(
    device: str = DEVICE,
    detection_threshold: float = FACE_DETECTION_THRESHOLD,
    min_face_size: int = MIN_FACE_SIZE,
    embedding_dim: int = EMBEDDING_DIM,
) -> FaceEngine:
    """Load the detection and embedding models once and hand back the engine.

    Callers keep the returned engine and pass it to the services that need
    descriptors; nothing is cached at module level.
    """
    logger = setup_logger("FaceEngine")
    logger.info("Loading face models on %s (descriptor length %d)", device, embedding_dim)
    engine = FaceEngine(
        device=device,
        detection_threshold=detection_threshold,
        min_face_size=min_face_size,
        embedding_dim=embedding_dim,
    )
    logger.info("Face models ready")
    return engine


def decode_image(data: bytes) -> np.ndarray:
    """Decode uploaded image bytes into a BGR frame."""
    if not data:
        raise FaceEngineError("Image payload is empty.")
    buffer = np.frombuffer(data, dtype=np.uint8)
    frame = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if frame is None:
        raise FaceEngineError("Image payload could not be decoded.")
    return frame


def read_image(path) -> np.ndarray:
    frame = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if frame is None:
        raise FaceEngineError(f"Could not read image file {path}.")
    return frame
