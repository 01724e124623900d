"""
Eye blink detection for liveness verification.
Uses the Eye Aspect Ratio (EAR) of FaceMesh eye landmarks, calibrated
per session against the subject's own open-eye EAR.
"""

from typing import Tuple

import numpy as np
from scipy.spatial import distance as dist
from loguru import logger

from .landmarks import FaceLandmarks, LandmarkIndex
from .session import BlinkState, EyeState
from .smoothing import sma


def compute_ear(eye_landmarks: np.ndarray) -> float:
    """
    Compute the Eye Aspect Ratio (EAR) for a single eye.

    EAR = (||p2-p6|| + ||p3-p5||) / (2 * ||p1-p4||)

    Args:
        eye_landmarks: 6x2 (or 6x3, depth ignored) array ordered outer
            corner, upper outer, upper inner, inner corner, lower inner,
            lower outer.

    Returns:
        Eye aspect ratio, or 0.0 when the eye has no width.
    """
    eye = np.asarray(eye_landmarks, dtype=np.float64)[:, :2]
    if eye.shape[0] != 6:
        raise ValueError(f"EAR needs 6 eye landmarks, got {eye.shape[0]}")

    # Vertical distances
    A = dist.euclidean(eye[1], eye[5])
    B = dist.euclidean(eye[2], eye[4])

    # Horizontal distance
    C = dist.euclidean(eye[0], eye[3])

    if C == 0:
        return 0.0

    return float((A + B) / (2.0 * C))


def compute_average_ear(face: FaceLandmarks) -> Tuple[float, float, float]:
    """
    Compute EAR for both eyes and return average.

    Returns:
        Tuple of (left_ear, right_ear, average_ear)
    """
    left_eye = np.array([face.point(i) for i in LandmarkIndex.LEFT_EYE_EAR])
    right_eye = np.array([face.point(i) for i in LandmarkIndex.RIGHT_EYE_EAR])
    left_ear = compute_ear(left_eye)
    right_ear = compute_ear(right_eye)
    return left_ear, right_ear, (left_ear + right_ear) / 2.0


def classify_eye_state(ear: float, open_baseline: float, closed_ratio: float = 0.65) -> EyeState:
    """OPEN/CLOSED against a calibrated baseline; UNKNOWN without one."""
    if open_baseline <= 0:
        return EyeState.UNKNOWN
    if ear < open_baseline * closed_ratio:
        return EyeState.CLOSED
    return EyeState.OPEN


class BlinkGate:
    """
    Calibrated closed-then-open blink detector.

    The gate holds only thresholds; all counters live in the session's
    ``BlinkState`` so a restart discards them with the session.

    Flow per BLINK step:
    - CALIBRATING: collect ``calibration_frames`` smoothed EAR samples,
      then freeze ``open_ear_baseline`` (their mean) and
      ``closed_threshold = open_ear_baseline * closed_threshold_ratio``.
    - READY: a blink fires after ``closed_frame_threshold`` consecutive
      CLOSED frames followed by ``open_frame_threshold`` OPEN frames.
      An OPEN frame ending a too-short CLOSED run clears it. Frames
      within ``cooldown_ms`` of a blink are ignored.
    """

    def __init__(
        self,
        calibration_frames: int = 15,
        closed_threshold_ratio: float = 0.65,
        closed_frame_threshold: int = 2,
        open_frame_threshold: int = 2,
        cooldown_ms: float = 600.0,
    ):
        self.calibration_frames = calibration_frames
        self.closed_threshold_ratio = closed_threshold_ratio
        self.closed_frame_threshold = closed_frame_threshold
        self.open_frame_threshold = open_frame_threshold
        self.cooldown_ms = cooldown_ms

    @classmethod
    def from_config(cls, config) -> "BlinkGate":
        bcfg = config.get().blink
        return cls(
            calibration_frames=bcfg.calibration_frames,
            closed_threshold_ratio=bcfg.closed_threshold_ratio,
            closed_frame_threshold=bcfg.closed_frame_threshold,
            open_frame_threshold=bcfg.open_frame_threshold,
            cooldown_ms=bcfg.cooldown_ms,
        )

    @staticmethod
    def reset() -> BlinkState:
        """Fresh state, used on every entry into the BLINK step."""
        return BlinkState()

    def update(self, state: BlinkState, smoothed_ear: float, now: float) -> bool:
        """
        Feed one smoothed EAR sample.

        Args:
            state: Session-owned blink state, mutated in place.
            smoothed_ear: EMA-smoothed average EAR for this frame.
            now: Frame timestamp in milliseconds.

        Returns:
            True exactly when a complete blink is detected on this frame.
        """
        if state.is_calibrating:
            self._calibrate(state, smoothed_ear)
            return False

        if state.blink_detected and now - state.last_blink_time < self.cooldown_ms:
            return False

        eye_state = classify_eye_state(
            smoothed_ear,
            state.calibration.open_ear_baseline,
            self.closed_threshold_ratio,
        )

        if eye_state is EyeState.UNKNOWN:
            return False

        if eye_state is EyeState.CLOSED:
            state.closed_frame_count += 1
            state.open_frame_count = 0
            state.eye_state = EyeState.CLOSED
            return False

        if state.closed_frame_count >= self.closed_frame_threshold:
            state.open_frame_count += 1
            if state.open_frame_count >= self.open_frame_threshold:
                state.blink_detected = True
                state.last_blink_time = now
                state.closed_frame_count = 0
                state.open_frame_count = 0
                state.eye_state = EyeState.OPEN
                logger.debug(f"Blink detected at {now:.0f}ms")
                return True
        else:
            state.closed_frame_count = 0
        state.eye_state = EyeState.OPEN
        return False

    def _calibrate(self, state: BlinkState, smoothed_ear: float):
        calibration = state.calibration
        calibration.samples.append(smoothed_ear)
        if len(calibration.samples) < self.calibration_frames:
            return

        baseline = sma(calibration.samples)
        calibration.open_ear_baseline = baseline
        calibration.closed_threshold = baseline * self.closed_threshold_ratio
        calibration.frozen = True
        # Degenerate calibration leaves the eye state unknown for the rest of the step
        state.eye_state = EyeState.OPEN if baseline > 0 else EyeState.UNKNOWN
        logger.debug(
            f"Blink calibration frozen: open_ear={baseline:.4f}, "
            f"closed_threshold={calibration.closed_threshold:.4f}"
        )
