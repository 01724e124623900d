"""
Session data model for challenge-response liveness verification.

A ``Session`` is created by ``start()``, mutated frame by frame by the
gates and the sequencer, and replaced wholesale on restart. Nothing in
here is persisted.
"""

from __future__ import annotations

import platform
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .anti_spoof import AntiSpoofAnalyzer
from .errors import LivenessError

PROJECT_NAME = "face-liveness"
VERSION = "1.0.0"


class LivenessStep(str, Enum):
    IDLE = "IDLE"
    ALIGN = "ALIGN"
    BLINK = "BLINK"
    TURN_LEFT = "TURN_LEFT"
    TURN_RIGHT = "TURN_RIGHT"
    TURN_UP = "TURN_UP"
    TURN_DOWN = "TURN_DOWN"
    SUCCESS = "SUCCESS"

    @property
    def instruction(self) -> str:
        return STEP_INSTRUCTIONS[self]

    @property
    def is_head_turn(self) -> bool:
        return self in HEAD_TURN_STEPS


CHALLENGE_STEPS = (
    LivenessStep.ALIGN,
    LivenessStep.BLINK,
    LivenessStep.TURN_LEFT,
    LivenessStep.TURN_RIGHT,
    LivenessStep.TURN_UP,
    LivenessStep.TURN_DOWN,
)

HEAD_TURN_STEPS = frozenset({
    LivenessStep.TURN_LEFT,
    LivenessStep.TURN_RIGHT,
    LivenessStep.TURN_UP,
    LivenessStep.TURN_DOWN,
})

STEP_INSTRUCTIONS = {
    LivenessStep.IDLE: "Preparing...",
    LivenessStep.ALIGN: "Align your face inside the box",
    LivenessStep.BLINK: "Please blink your eyes",
    LivenessStep.TURN_LEFT: "Turn your head left",
    LivenessStep.TURN_RIGHT: "Turn your head right",
    LivenessStep.TURN_UP: "Tilt your head up",
    LivenessStep.TURN_DOWN: "Tilt your head down",
    LivenessStep.SUCCESS: "User face verified successfully",
}


def generate_step_order(seed: Optional[int] = None) -> List[LivenessStep]:
    """
    Randomize the challenge order for one session.

    The shuffle only has to defeat replay of a fixed script, so a seeded
    ``random.Random`` is enough. ALIGN always stays first because it
    captures the baseline every later gate compares against.

    Args:
        seed: Fixed seed for a reproducible order; None for a fresh one.

    Returns:
        ALIGN followed by a permutation of the other five steps.
    """
    rng = random.Random(seed)
    rest = list(CHALLENGE_STEPS[1:])
    rng.shuffle(rest)
    return [LivenessStep.ALIGN] + rest


def validate_step_order(order: Sequence[LivenessStep]) -> List[LivenessStep]:
    """Check an explicit order override; raises ValueError if unusable."""
    steps = [LivenessStep(s) for s in order]
    if sorted(steps) != sorted(CHALLENGE_STEPS):
        raise ValueError(f"Step order must be a permutation of {[s.value for s in CHALLENGE_STEPS]}")
    if steps[0] is not LivenessStep.ALIGN:
        raise ValueError("ALIGN must be the first step")
    return steps


class EyeState(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class Baseline:
    """Reference pose/size/EAR captured once when ALIGN completes."""

    yaw: float
    pitch: float
    roll: float
    face_width: float
    face_height: float
    open_ear: float


@dataclass
class BlinkCalibration:
    samples: List[float] = field(default_factory=list)
    open_ear_baseline: float = 0.0
    closed_threshold: float = 0.0
    frozen: bool = False


@dataclass
class BlinkState:
    calibration: BlinkCalibration = field(default_factory=BlinkCalibration)
    eye_state: EyeState = EyeState.UNKNOWN
    closed_frame_count: int = 0
    open_frame_count: int = 0
    blink_detected: bool = False
    last_blink_time: float = 0.0

    @property
    def is_calibrating(self) -> bool:
        return not self.calibration.frozen


@dataclass
class HeadPoseProgress:
    held_frames: int = 0
    target_reached: bool = False

    def reset(self):
        self.held_frames = 0
        self.target_reached = False


@dataclass
class AlignmentProgress:
    aligned_frames: int = 0

    def reset(self):
        self.aligned_frames = 0


@dataclass
class DeviceInfo:
    user_agent: str
    platform: str

    @classmethod
    def detect(cls) -> "DeviceInfo":
        agent = f"{PROJECT_NAME}/{VERSION} Python/{platform.python_version()}"
        return cls(user_agent=agent, platform=platform.platform())


@dataclass
class MetricsSummary:
    open_ear: float
    blink_threshold: float
    yaw_deltas: List[float]
    pitch_deltas: List[float]


@dataclass
class LivenessResult:
    """Terminal result handed to the caller once every challenge passed."""

    timestamp: datetime
    steps_completed: List[LivenessStep]
    device_info: DeviceInfo
    metrics_summary: MetricsSummary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "steps_completed": [s.value for s in self.steps_completed],
            "device_info": {
                "user_agent": self.device_info.user_agent,
                "platform": self.device_info.platform,
            },
            "metrics_summary": {
                "open_ear": self.metrics_summary.open_ear,
                "blink_threshold": self.metrics_summary.blink_threshold,
                "yaw_deltas": list(self.metrics_summary.yaw_deltas),
                "pitch_deltas": list(self.metrics_summary.pitch_deltas),
            },
        }


@dataclass
class Session:
    """
    Mutable aggregate for one verification attempt.

    ``completed_steps`` is always a prefix of ``step_order``; while the
    session runs, ``current_step`` is the first step not yet completed.
    """

    step_order: List[LivenessStep] = field(default_factory=lambda: list(CHALLENGE_STEPS))
    current_step: LivenessStep = LivenessStep.IDLE
    step_entered_at: float = 0.0
    step_completed_at: Optional[float] = None
    completed_steps: List[LivenessStep] = field(default_factory=list)
    alignment: AlignmentProgress = field(default_factory=AlignmentProgress)
    baseline: Optional[Baseline] = None
    blink: BlinkState = field(default_factory=BlinkState)
    head_pose: HeadPoseProgress = field(default_factory=HeadPoseProgress)
    yaw_deltas: List[float] = field(default_factory=list)
    pitch_deltas: List[float] = field(default_factory=list)
    smoothed_ear: float = 0.0
    anti_spoof: Optional[AntiSpoofAnalyzer] = None
    last_error: Optional[LivenessError] = None
    error_text: Optional[str] = None
    is_complete: bool = False
    result: Optional[LivenessResult] = None
    restart_at: Optional[float] = None

    @property
    def blink_calibration(self) -> Optional[BlinkCalibration]:
        if self.blink.calibration.frozen:
            return self.blink.calibration
        return None

    @property
    def is_active(self) -> bool:
        return self.current_step not in (LivenessStep.IDLE, LivenessStep.SUCCESS)

    def next_step(self) -> Optional[LivenessStep]:
        """Step after the current one in ``step_order``, or None if it is last."""
        index = self.step_order.index(self.current_step)
        if index + 1 < len(self.step_order):
            return self.step_order[index + 1]
        return None

    def set_error(self, error: Optional[LivenessError], detail: Optional[str] = None):
        self.last_error = error
        self.error_text = None if error is None else (detail or error.message)

    def build_result(self, device_info: DeviceInfo) -> LivenessResult:
        return LivenessResult(
            timestamp=datetime.now(timezone.utc),
            steps_completed=list(self.completed_steps),
            device_info=device_info,
            metrics_summary=MetricsSummary(
                open_ear=self.blink.calibration.open_ear_baseline,
                blink_threshold=self.blink.calibration.closed_threshold,
                yaw_deltas=list(self.yaw_deltas),
                pitch_deltas=list(self.pitch_deltas),
            ),
        )
