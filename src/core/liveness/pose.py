"""
Head pose from landmark geometry.

The metrics are dimensionless ratios rather than angles from a 3D model
fit, so fixed thresholds hold regardless of distance to the camera or
frame resolution.

Sign conventions (subject's perspective, mirrored preview):
- yaw:   negative = turned left,  positive = turned right
- pitch: negative = tilted up,    positive = tilted down
- roll:  +/-1.0 is about 30 degrees of tilt
"""

import math
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from .errors import LivenessError
from .landmarks import FaceLandmarks, LandmarkIndex, bounding_box
from .session import Baseline, HeadPoseProgress, LivenessStep

DEFAULT_ROLL_REFERENCE = 0.52  # radians, ~30 degrees


@dataclass(frozen=True)
class PoseMetrics:
    yaw: float
    pitch: float
    roll: float
    face_width: float
    face_height: float


def yaw_metric(face: FaceLandmarks) -> float:
    """
    Horizontal nose offset from the cheek midpoint over the cheek distance.

    The sign is inverted because the preview is mirrored: the subject's
    left has to read as negative.
    """
    nose = face.point(LandmarkIndex.NOSE_TIP)
    left_cheek = face.point(LandmarkIndex.LEFT_CHEEK)
    right_cheek = face.point(LandmarkIndex.RIGHT_CHEEK)

    mid_x = (left_cheek[0] + right_cheek[0]) / 2
    face_width = abs(right_cheek[0] - left_cheek[0])
    if face_width == 0:
        return 0.0
    return float(-((nose[0] - mid_x) / face_width))


def pitch_metric(face: FaceLandmarks) -> float:
    """Vertical nose offset below the inner-eye line over forehead-to-chin height."""
    nose = face.point(LandmarkIndex.NOSE_TIP)
    left_inner = face.point(LandmarkIndex.LEFT_EYE_INNER)
    right_inner = face.point(LandmarkIndex.RIGHT_EYE_INNER)
    chin = face.point(LandmarkIndex.CHIN)
    forehead = face.point(LandmarkIndex.FOREHEAD)

    eye_line_y = (left_inner[1] + right_inner[1]) / 2
    face_height = abs(chin[1] - forehead[1])
    if face_height == 0:
        return 0.0
    return float((nose[1] - eye_line_y) / face_height)


def roll_metric(face: FaceLandmarks, reference: float = DEFAULT_ROLL_REFERENCE) -> float:
    """Outer-eye line angle normalised by ``reference`` radians."""
    left_outer = face.point(LandmarkIndex.LEFT_EYE_OUTER)
    right_outer = face.point(LandmarkIndex.RIGHT_EYE_OUTER)
    angle = math.atan2(right_outer[1] - left_outer[1], right_outer[0] - left_outer[0])
    return angle / reference


def compute_pose_metrics(face: FaceLandmarks, roll_reference: float = DEFAULT_ROLL_REFERENCE) -> PoseMetrics:
    box = bounding_box(face)
    return PoseMetrics(
        yaw=yaw_metric(face),
        pitch=pitch_metric(face),
        roll=roll_metric(face, roll_reference),
        face_width=box.width,
        face_height=box.height,
    )


def is_roll_acceptable(roll: float, threshold: float = 0.15) -> bool:
    return abs(roll) <= threshold


@dataclass
class HeadPoseUpdate:
    completed: bool = False
    error: Optional[LivenessError] = None
    yaw_delta: float = 0.0
    pitch_delta: float = 0.0


class HeadPoseGate:
    """
    Held-deviation check for the four head-turn challenges.

    Compares live yaw/pitch against the ALIGN baseline. The deviation has
    to hold for ``held_frames`` consecutive frames; any frame that misses
    it, or tilts the head past ``roll_warning_threshold``, resets the count.
    """

    def __init__(
        self,
        yaw_threshold: float = 0.09,
        pitch_threshold: float = 0.07,
        roll_warning_threshold: float = 0.15,
        held_frames: int = 4,
    ):
        self.yaw_threshold = yaw_threshold
        self.pitch_threshold = pitch_threshold
        self.roll_warning_threshold = roll_warning_threshold
        self.held_frames = held_frames

    @classmethod
    def from_config(cls, config) -> "HeadPoseGate":
        hcfg = config.get().head_pose
        return cls(
            yaw_threshold=hcfg.yaw_threshold,
            pitch_threshold=hcfg.pitch_threshold,
            roll_warning_threshold=hcfg.roll_warning_threshold,
            held_frames=hcfg.held_frames,
        )

    def target_reached(self, step: LivenessStep, yaw_delta: float, pitch_delta: float) -> bool:
        if step is LivenessStep.TURN_LEFT:
            return yaw_delta <= -self.yaw_threshold
        if step is LivenessStep.TURN_RIGHT:
            return yaw_delta >= self.yaw_threshold
        if step is LivenessStep.TURN_UP:
            return pitch_delta <= -self.pitch_threshold
        if step is LivenessStep.TURN_DOWN:
            return pitch_delta >= self.pitch_threshold
        raise ValueError(f"{step} is not a head-turn step")

    def update(
        self,
        progress: HeadPoseProgress,
        metrics: PoseMetrics,
        baseline: Optional[Baseline],
        step: LivenessStep,
    ) -> HeadPoseUpdate:
        """
        Evaluate one frame for the active head-turn step.

        Without a baseline nothing can be measured and the frame is a
        no-op.
        """
        if baseline is None:
            return HeadPoseUpdate()

        if not is_roll_acceptable(metrics.roll, self.roll_warning_threshold):
            progress.reset()
            return HeadPoseUpdate(error=LivenessError.EXCESSIVE_ROLL)

        yaw_delta = metrics.yaw - baseline.yaw
        pitch_delta = metrics.pitch - baseline.pitch
        update = HeadPoseUpdate(yaw_delta=yaw_delta, pitch_delta=pitch_delta)

        if not self.target_reached(step, yaw_delta, pitch_delta):
            progress.reset()
            return update

        progress.held_frames += 1
        progress.target_reached = True
        if progress.held_frames >= self.held_frames:
            logger.debug(
                f"{step.value} held for {progress.held_frames} frames "
                f"(yaw_delta={yaw_delta:.3f}, pitch_delta={pitch_delta:.3f})"
            )
            update.completed = True
        return update
