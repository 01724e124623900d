from typing import Optional, Tuple, Union
import time
import threading

import numpy as np
import cv2
from loguru import logger


class VideoStream:
    """Webcam (or file) capture with guaranteed release.

    Camera failures are outside the liveness session: opening a source
    that cannot be opened raises RuntimeError, and a source that keeps
    failing after ``max_reconnect_attempts`` reopen attempts raises too.

    Example:
        with VideoStream(0, resolution=(640, 480)) as stream:
            frame = stream.read()
    """

    def __init__(
        self,
        source: Union[int, str] = 0,
        *,
        resolution: Optional[Tuple[int, int]] = (640, 480),
        buffer_size: int = 1,
        reconnect_interval: float = 1.0,
        max_reconnect_attempts: int = 3,
        mirror: bool = True,
    ):
        self.source = source
        self.resolution = resolution
        self.buffer_size = buffer_size
        self.reconnect_interval = reconnect_interval
        self.max_reconnect_attempts = max_reconnect_attempts
        self.mirror = mirror
        self.cap: Optional[cv2.VideoCapture] = None
        self._lock = threading.RLock()
        self._reconnect_count = 0
        self._last_error_time = 0.0

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def open(self):
        """Open the capture source."""
        with self._lock:
            if self.cap is not None and self.cap.isOpened():
                return

            self.cap = cv2.VideoCapture(self.source)
            if not self.cap.isOpened():
                self.cap.release()
                self.cap = None
                raise RuntimeError(f"Failed to open video source: {self.source}")

            self.cap.set(cv2.CAP_PROP_BUFFERSIZE, self.buffer_size)
            if self.resolution:
                width, height = self.resolution
                self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
                self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

            logger.info(f"Opened video source: {self.source} ({self.frame_size[0]}x{self.frame_size[1]})")
            self._reconnect_count = 0

    def read(self) -> Optional[np.ndarray]:
        """Read one BGR frame, mirrored like a selfie preview.

        Returns:
            Frame as numpy array, or None if this read failed.
        """
        with self._lock:
            if self.cap is None or not self.cap.isOpened():
                self._reconnect()
                return None

            ok, frame = self.cap.read()
            if not ok:
                logger.warning(f"Failed to read frame from {self.source}")
                self._reconnect()
                return None

            if self.mirror:
                frame = cv2.flip(frame, 1)
            return frame

    def _reconnect(self):
        now = time.time()
        if now - self._last_error_time < self.reconnect_interval:
            return
        self._last_error_time = now

        if self._reconnect_count >= self.max_reconnect_attempts:
            raise RuntimeError(
                f"Max reconnection attempts ({self.max_reconnect_attempts}) exceeded for {self.source}"
            )
        self._reconnect_count += 1
        logger.info(f"Reopening video source ({self._reconnect_count}/{self.max_reconnect_attempts})...")

        if self.cap is not None:
            self.cap.release()
            self.cap = None
        self.open()

    def close(self):
        """Release the capture."""
        with self._lock:
            if self.cap is not None:
                self.cap.release()
                self.cap = None
                logger.info(f"Closed video source: {self.source}")

    @property
    def frame_size(self) -> Tuple[int, int]:
        """(width, height) reported by the capture, or (0, 0) when closed."""
        with self._lock:
            if self.cap is None:
                return 0, 0
            return int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH)), int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
