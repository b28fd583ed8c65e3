import time
from typing import Iterator

import cv2
import numpy as np

from .config import FRAME_FPS, FRAME_HEIGHT, FRAME_WIDTH
from .exceptions import CameraError


class CameraStream:
    def __init__(self, camera_index: int = 0, warmup_reads: int = 6):
        self.camera_index = camera_index
        self.warmup_reads = warmup_reads
        self.cap = None

    def __enter__(self) -> "CameraStream":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            cap.release()
            raise CameraError(f"Unable to open webcam index {self.camera_index}.")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, FRAME_WIDTH)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, FRAME_HEIGHT)
        cap.set(cv2.CAP_PROP_FPS, FRAME_FPS)

        # Some backends report opened=True but deliver no frames until warmed up.
        for _ in range(max(1, self.warmup_reads)):
            ok, frame = cap.read()
            if ok and frame is not None:
                self.cap = cap
                return
            time.sleep(0.03)

        cap.release()
        raise CameraError(f"Webcam index {self.camera_index} opened but delivered no frames.")

    def read(self) -> np.ndarray:
        if self.cap is None:
            raise CameraError("Webcam stream is not initialized.")

        success, frame = self.cap.read()
        if not success or frame is None:
            raise CameraError("Failed to read frame from webcam.")
        return frame

    def frames(self) -> Iterator[np.ndarray]:
        while True:
            yield self.read()

    def close(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
