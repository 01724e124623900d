"""Challenge-response face liveness verification."""

from .alignment import AlignmentGate
from .anti_spoof import AntiSpoofAnalyzer, FrameSnapshot, SpoofAssessment
from .detector import FaceMetrics, FrameUpdate, LivenessVerifier
from .errors import LivenessError
from .eye_blink import BlinkGate, classify_eye_state, compute_average_ear, compute_ear
from .landmarks import BoundingBox, FaceLandmarks, LandmarkIndex, bounding_box, is_inside_guide, make_guide_box
from .pose import HeadPoseGate, PoseMetrics, compute_pose_metrics
from .session import (
    CHALLENGE_STEPS,
    Baseline,
    BlinkCalibration,
    DeviceInfo,
    EyeState,
    LivenessResult,
    LivenessStep,
    Session,
    generate_step_order,
)
from .smoothing import ema, sma

__all__ = [
    "AlignmentGate",
    "AntiSpoofAnalyzer",
    "FrameSnapshot",
    "SpoofAssessment",
    "FaceMetrics",
    "FrameUpdate",
    "LivenessVerifier",
    "LivenessError",
    "BlinkGate",
    "classify_eye_state",
    "compute_average_ear",
    "compute_ear",
    "BoundingBox",
    "FaceLandmarks",
    "LandmarkIndex",
    "bounding_box",
    "is_inside_guide",
    "make_guide_box",
    "HeadPoseGate",
    "PoseMetrics",
    "compute_pose_metrics",
    "CHALLENGE_STEPS",
    "Baseline",
    "BlinkCalibration",
    "DeviceInfo",
    "EyeState",
    "LivenessResult",
    "LivenessStep",
    "Session",
    "generate_step_order",
    "ema",
    "sma",
]
