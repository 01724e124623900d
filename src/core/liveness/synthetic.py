"""
Synthetic FaceMesh landmarks for dry runs and tests.

Produces 468 keypoints with the named landmarks placed so that the pose
and EAR metrics come out at requested values, the remaining points spread
over a dome-shaped face oval, and a small per-frame head jitter. A
``flat`` generator with no jitter stands in for a printed photo.
"""

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

import numpy as np

from .detector import FrameUpdate, LivenessVerifier
from .landmarks import BoundingBox, FaceLandmarks, LandmarkIndex
from .session import LivenessStep
from .smoothing import lerp

FACEMESH_KEYPOINTS = 468

NEUTRAL_YAW = 0.0
NEUTRAL_PITCH = 0.25
OPEN_EAR = 0.30
CLOSED_EAR = 0.05


class SyntheticFaceGenerator:
    """
    Args:
        center: Face center in pixels.
        width: Cheek-to-cheek width in pixels.
        height: Forehead-to-chin height in pixels.
        depth_scale: Nose-to-rim depth in pixels; 0 gives a flat face.
        jitter: Std of the per-frame head translation in pixels.
        seed: Seed for the point layout and the jitter.
        flat: Shortcut for a photo: no depth and no jitter.
        with_depth: False drops the z column entirely.
    """

    def __init__(
        self,
        center: Tuple[float, float] = (320.0, 240.0),
        width: float = 200.0,
        height: float = 260.0,
        depth_scale: float = 30.0,
        jitter: float = 0.8,
        seed: int = 0,
        flat: bool = False,
        with_depth: bool = True,
    ):
        self.center = center
        self.width = width
        self.height = height
        self.depth_scale = 0.0 if flat else depth_scale
        self.jitter = 0.0 if flat else jitter
        self.with_depth = with_depth
        self.rng = np.random.default_rng(seed)

        # Unit-disk layout shared by every frame
        radius = np.sqrt(self.rng.uniform(0.0, 1.0, FACEMESH_KEYPOINTS)) * 0.9
        theta = self.rng.uniform(0.0, 2 * np.pi, FACEMESH_KEYPOINTS)
        self._unit = np.stack([radius * np.cos(theta), radius * np.sin(theta)], axis=1)

    def _depth(self, unit_xy: np.ndarray) -> np.ndarray:
        r2 = np.clip((unit_xy ** 2).sum(axis=1), 0.0, 1.0)
        return -self.depth_scale * (1.0 - r2)

    def face(
        self,
        yaw: float = NEUTRAL_YAW,
        pitch: float = NEUTRAL_PITCH,
        roll: float = 0.0,
        ear: float = OPEN_EAR,
        offset: Tuple[float, float] = (0.0, 0.0),
        scale: float = 1.0,
    ) -> FaceLandmarks:
        """
        One frame of landmarks.

        Args:
            yaw: Target yaw metric.
            pitch: Target pitch metric.
            roll: Head tilt in radians.
            ear: Target EAR of both eyes.
            offset: Extra translation of the whole face in pixels.
            scale: Size multiplier (moves the face nearer or farther).
        """
        w = self.width * scale
        h = self.height * scale
        half = np.array([w / 2, h / 2])

        local = self._unit * half
        z = self._depth(self._unit)

        named = self._named_points(w, h, yaw, pitch, ear)
        for index, (x, y) in named.items():
            local[index] = (x, y)
            z[index] = self._depth(np.array([[x, y]]) / half)[0]

        cos_r, sin_r = np.cos(roll), np.sin(roll)
        rotation = np.array([[cos_r, -sin_r], [sin_r, cos_r]])
        xy = local @ rotation.T

        shift = np.array(self.center) + np.array(offset)
        if self.jitter > 0:
            shift = shift + self.rng.normal(0.0, self.jitter, 2)
        xy = xy + shift

        if not self.with_depth:
            return FaceLandmarks(xy)
        return FaceLandmarks(np.column_stack([xy, z]))

    @staticmethod
    def _named_points(w: float, h: float, yaw: float, pitch: float, ear: float) -> dict:
        eye_y = -0.12 * h
        eye_dx = 0.2 * w
        half_eye = 0.08 * w
        # EAR = (v + v) / (2 * 2 * half_eye)
        gap = ear * 2 * half_eye
        up, down = eye_y - gap / 2, eye_y + gap / 2
        third = half_eye / 3

        left_x, right_x = -eye_dx, eye_dx
        points = {
            LandmarkIndex.LEFT_CHEEK: (-w / 2, 0.0),
            LandmarkIndex.RIGHT_CHEEK: (w / 2, 0.0),
            LandmarkIndex.FOREHEAD: (0.0, -h / 2),
            LandmarkIndex.CHIN: (0.0, h / 2),
            LandmarkIndex.NOSE_TIP: (-yaw * w, eye_y + pitch * h),
        }
        left = LandmarkIndex.LEFT_EYE_EAR
        points.update({
            left[0]: (left_x - half_eye, eye_y),
            left[1]: (left_x - third, up),
            left[2]: (left_x + third, up),
            left[3]: (left_x + half_eye, eye_y),
            left[4]: (left_x + third, down),
            left[5]: (left_x - third, down),
        })
        right = LandmarkIndex.RIGHT_EYE_EAR
        points.update({
            right[0]: (right_x + half_eye, eye_y),
            right[1]: (right_x + third, up),
            right[2]: (right_x - third, up),
            right[3]: (right_x - half_eye, eye_y),
            right[4]: (right_x - third, down),
            right[5]: (right_x + third, down),
        })
        return points


TURN_TARGETS = {
    LivenessStep.TURN_LEFT: ("yaw", NEUTRAL_YAW - 0.15),
    LivenessStep.TURN_RIGHT: ("yaw", NEUTRAL_YAW + 0.15),
    LivenessStep.TURN_UP: ("pitch", NEUTRAL_PITCH - 0.12),
    LivenessStep.TURN_DOWN: ("pitch", NEUTRAL_PITCH + 0.12),
}
NEUTRAL_POSE = {"yaw": NEUTRAL_YAW, "pitch": NEUTRAL_PITCH}


class SimulatedSubject:
    """
    Follows the on-screen instruction the way a cooperative user would.

    Holds still for ALIGN, waits through calibration and then blinks
    every ``blink_period`` frames, and eases into each head turn over
    ``turn_frames`` frames before holding it.
    """

    def __init__(
        self,
        generator: SyntheticFaceGenerator,
        blink_after: int = 24,
        blink_period: int = 12,
        closed_frames: int = 4,
        turn_frames: int = 3,
    ):
        self.generator = generator
        self.blink_after = blink_after
        self.blink_period = blink_period
        self.closed_frames = closed_frames
        self.turn_frames = max(1, turn_frames)

    def face_for(self, step: LivenessStep, frames_in_step: int) -> FaceLandmarks:
        if step is LivenessStep.BLINK and frames_in_step >= self.blink_after:
            phase = (frames_in_step - self.blink_after) % self.blink_period
            ear = CLOSED_EAR if phase < self.closed_frames else OPEN_EAR
            return self.generator.face(ear=ear)
        if step in TURN_TARGETS:
            axis, target = TURN_TARGETS[step]
            value = lerp(NEUTRAL_POSE[axis], target, (frames_in_step + 1) / self.turn_frames)
            return self.generator.face(**{axis: value})
        return self.generator.face()


def iter_simulation(
    verifier: LivenessVerifier,
    subject: SimulatedSubject,
    guide_box: BoundingBox,
    fps: float = 12.0,
    max_frames: int = 600,
    start_ms: float = 0.0,
) -> Iterator[FrameUpdate]:
    """Start a session and feed it simulated frames until it succeeds or runs out."""
    interval = 1000.0 / fps
    now = start_ms
    verifier.start(now=now)
    step: Optional[LivenessStep] = verifier.session.current_step
    frames_in_step = 0

    for _ in range(max_frames):
        face = subject.face_for(step, frames_in_step)
        update = verifier.process_frame(face, guide_box, now=now)
        yield update
        if update.is_complete:
            return
        if update.current_step is not step:
            step = update.current_step
            frames_in_step = 0
        else:
            frames_in_step += 1
        now += interval
