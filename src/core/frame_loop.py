import threading
import time
from typing import Callable, Optional

from loguru import logger


class FrameLoop:
    """Run a frame callback at most ``target_fps`` times per second.

    A tick that arrives before the frame interval has elapsed, or while
    the previous callback is still running, is dropped. The last frame
    time only advances when the callback returns normally, so a failing
    callback is retried on the next tick.

    Args:
        on_frame: Called with the frame timestamp in milliseconds.
        target_fps: Upper bound on callback rate.
        clock: Millisecond clock; ``time.time() * 1000`` by default.
        sleep: Sleep function used by ``run`` between ticks (seconds).
    """

    def __init__(
        self,
        on_frame: Callable[[float], None],
        target_fps: float = 12.0,
        clock: Optional[Callable[[], float]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if target_fps <= 0:
            raise ValueError(f"target_fps must be positive, got {target_fps}")
        self.on_frame = on_frame
        self.target_fps = target_fps
        self.frame_interval = 1000.0 / target_fps
        self.clock = clock or (lambda: time.time() * 1000.0)
        self.sleep = sleep

        self.last_frame_time = float("-inf")
        self.fps = 0.0
        self._in_flight = False
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._fps_window_start: Optional[float] = None
        self._fps_frames = 0

    def tick(self, now: Optional[float] = None) -> bool:
        """Run the callback if it is due. Returns True when it ran."""
        now = self.clock() if now is None else now
        if now - self.last_frame_time < self.frame_interval:
            return False

        with self._lock:
            if self._in_flight:
                return False
            self._in_flight = True

        try:
            self.on_frame(now)
            self.last_frame_time = now
            self._count_frame(now)
        finally:
            with self._lock:
                self._in_flight = False
        return True

    def _count_frame(self, now: float):
        if self._fps_window_start is None:
            self._fps_window_start = now
        self._fps_frames += 1
        elapsed = now - self._fps_window_start
        if elapsed >= 1000.0:
            self.fps = self._fps_frames * 1000.0 / elapsed
            self._fps_frames = 0
            self._fps_window_start = now
            logger.debug(f"Frame loop running at {self.fps:.1f} FPS")

    def run(self, max_frames: Optional[int] = None):
        """Tick until ``stop`` is called or ``max_frames`` callbacks have run."""
        self._stop.clear()
        frames = 0
        poll = self.frame_interval / 4000.0
        while not self._stop.is_set():
            if self.tick():
                frames += 1
                if max_frames is not None and frames >= max_frames:
                    break
            else:
                self.sleep(poll)

    def stop(self):
        self._stop.set()

    @property
    def in_flight(self) -> bool:
        return self._in_flight
