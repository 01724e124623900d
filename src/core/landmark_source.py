"""
MediaPipe Face Landmarker adapter.

Turns a BGR frame into zero or one ``FaceLandmarks`` in frame-pixel
space. MediaPipe reports x/y normalised to the image and z on roughly the
same scale as x, so all three are scaled by the frame width/height here.

Uses the Tasks API (``mp.tasks.vision.FaceLandmarker``) in VIDEO mode so
landmarks are tracked between frames.
"""

import urllib.request
from pathlib import Path
from typing import Optional

import cv2
import mediapipe as mp
import numpy as np
from loguru import logger
from mediapipe.tasks import python as mp_tasks
from mediapipe.tasks.python import vision

from src.core.liveness.landmarks import FaceLandmarks


def ensure_model(model_path: str, model_url: str) -> Path:
    """Return the model file, downloading it once if it is missing."""
    path = Path(model_path)
    if path.exists():
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Downloading MediaPipe face landmarker model to {path}")
    try:
        urllib.request.urlretrieve(model_url, str(path))
    except OSError as e:
        raise RuntimeError(f"Could not download face landmarker model from {model_url}: {e}")
    return path


class MediaPipeLandmarkSource:
    """Single-face landmark detector for the liveness loop."""

    def __init__(
        self,
        model_path: str,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ):
        if not Path(model_path).exists():
            raise RuntimeError(f"Face landmarker model not found: {model_path}")

        options = vision.FaceLandmarkerOptions(
            base_options=mp_tasks.BaseOptions(model_asset_path=str(model_path)),
            running_mode=vision.RunningMode.VIDEO,
            num_faces=1,
            min_face_detection_confidence=min_detection_confidence,
            min_face_presence_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False,
        )
        self.landmarker = vision.FaceLandmarker.create_from_options(options)
        self._last_timestamp = -1

    @classmethod
    def from_config(cls, config) -> "MediaPipeLandmarkSource":
        dcfg = config.get().detector
        path = ensure_model(dcfg.model_path, dcfg.model_url)
        return cls(
            str(path),
            min_detection_confidence=dcfg.min_detection_confidence,
            min_tracking_confidence=dcfg.min_tracking_confidence,
        )

    def detect(self, frame_bgr: np.ndarray, timestamp_ms: float) -> Optional[FaceLandmarks]:
        """
        Detect the first face in a frame.

        Args:
            frame_bgr: BGR image as returned by OpenCV.
            timestamp_ms: Frame time; MediaPipe needs it strictly increasing.

        Returns:
            Landmarks in pixel space, or None when no face is found.
        """
        h, w = frame_bgr.shape[:2]
        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)

        ts = max(int(timestamp_ms), self._last_timestamp + 1)
        self._last_timestamp = ts
        result = self.landmarker.detect_for_video(image, ts)

        if not result.face_landmarks:
            return None

        points = np.array([(lm.x * w, lm.y * h, lm.z * w) for lm in result.face_landmarks[0]])
        return FaceLandmarks(points)

    def close(self):
        self.landmarker.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
