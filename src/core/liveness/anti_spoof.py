"""
Frame-history anti-spoofing for the challenge flow.

Photos and screens replay a face that is flat and does not move on its
own. The analyzer keeps a short history of per-frame summaries and adds
up fixed weights for three indicators:

1. Flat face: mean landmark depth spread below a floor.
2. No micro-movement: mean frame-to-frame movement below a floor.
3. Too static: most of the recent movement scores are near zero.

The score is a sum of weights, not a probability.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional

import numpy as np
from loguru import logger

from .landmarks import FaceLandmarks, centroid

REASON_FLAT = "Flat face detected (no depth)"
REASON_NO_MOVEMENT = "No natural micro-movements"
REASON_STATIC = "Face too static"


@dataclass(frozen=True)
class FrameSnapshot:
    """Per-frame summary kept in the history ring buffer."""

    timestamp: float
    center_x: float
    center_y: float
    face_width: float
    avg_z: float
    z_variance: float


@dataclass
class SpoofAssessment:
    score: float = 0.0
    is_spoof: bool = False
    reason: Optional[str] = None
    reasons: List[str] = field(default_factory=list)


class AntiSpoofAnalyzer:
    """
    Rolling-window spoof scorer.

    One analyzer belongs to one session; ``start()`` and ``restart()``
    create a fresh one so no history carries over.
    """

    def __init__(
        self,
        max_history_frames: int = 30,
        min_frames_for_check: int = 10,
        min_depth_keypoints: int = 50,
        min_depth_variance: float = 0.5,
        depth_check_weight: float = 0.4,
        min_micro_movement: float = 0.003,
        min_movement_samples: int = 5,
        movement_check_weight: float = 0.3,
        max_static_frames: int = 20,
        static_epsilon: float = 0.001,
        static_fraction: float = 0.8,
        static_check_weight: float = 0.3,
        depth_change_scale: float = 10.0,
        spoof_threshold: float = 0.6,
        enabled: bool = True,
    ):
        self.max_history_frames = max_history_frames
        self.min_frames_for_check = min_frames_for_check
        self.min_depth_keypoints = min_depth_keypoints
        self.min_depth_variance = min_depth_variance
        self.depth_check_weight = depth_check_weight
        self.min_micro_movement = min_micro_movement
        self.min_movement_samples = min_movement_samples
        self.movement_check_weight = movement_check_weight
        self.max_static_frames = max_static_frames
        self.static_epsilon = static_epsilon
        self.static_fraction = static_fraction
        self.static_check_weight = static_check_weight
        self.depth_change_scale = depth_change_scale
        self.spoof_threshold = spoof_threshold
        self.enabled = enabled

        self.history: Deque[FrameSnapshot] = deque(maxlen=max_history_frames)
        self.depth_variances: Deque[float] = deque(maxlen=max_history_frames)
        self.movement_scores: Deque[float] = deque(maxlen=max_history_frames)
        self.assessment = SpoofAssessment()

    @classmethod
    def from_config(cls, config) -> "AntiSpoofAnalyzer":
        return cls(**config.get().anti_spoof.model_dump())

    @property
    def is_spoof(self) -> bool:
        return self.enabled and self.assessment.is_spoof

    def depth_variance(self, face: FaceLandmarks) -> float:
        """Population std of keypoint depth; 0 with too few depth values."""
        depths = face.depths
        if depths.size < self.min_depth_keypoints:
            return 0.0
        return float(np.std(depths))

    def snapshot(self, face: FaceLandmarks, timestamp: float) -> FrameSnapshot:
        xy = face.xy
        depths = face.depths
        cx, cy = centroid(face)
        return FrameSnapshot(
            timestamp=timestamp,
            center_x=cx,
            center_y=cy,
            face_width=float(xy[:, 0].max() - xy[:, 0].min()),
            avg_z=float(depths.mean()) if depths.size else 0.0,
            z_variance=self.depth_variance(face),
        )

    def micro_movement(self, current: FrameSnapshot, previous: FrameSnapshot) -> float:
        """Centroid shift and width change over face width, plus scaled depth change."""
        dx = abs(current.center_x - previous.center_x)
        dy = abs(current.center_y - previous.center_y)
        d_width = abs(current.face_width - previous.face_width)
        d_z = abs(current.avg_z - previous.avg_z)

        depth_term = d_z * self.depth_change_scale
        if current.face_width <= 0:
            return depth_term
        return (dx + dy) / current.face_width + d_width / current.face_width + depth_term

    def update(self, face: FaceLandmarks, timestamp: float = 0.0) -> SpoofAssessment:
        """
        Add one frame and rescore once enough history exists.

        Args:
            face: Landmarks of the detected face.
            timestamp: Frame time in milliseconds, kept on the snapshot.

        Returns:
            The current assessment (unchanged until ``min_frames_for_check``
            frames have been seen).
        """
        snapshot = self.snapshot(face, timestamp)
        if self.history:
            self.movement_scores.append(self.micro_movement(snapshot, self.history[-1]))
        self.history.append(snapshot)
        self.depth_variances.append(snapshot.z_variance)

        if len(self.history) < self.min_frames_for_check:
            return self.assessment

        was_spoof = self.assessment.is_spoof
        self.assessment = self.analyze()
        if self.assessment.is_spoof != was_spoof:
            if self.assessment.is_spoof:
                logger.warning(
                    f"Spoof suspected (score={self.assessment.score:.2f}): {self.assessment.reason}"
                )
            else:
                logger.info("Spoof indicators cleared")
        return self.assessment

    def analyze(self) -> SpoofAssessment:
        score = 0.0
        reasons: List[str] = []

        avg_depth = float(np.mean(self.depth_variances)) if self.depth_variances else 0.0
        if avg_depth < self.min_depth_variance:
            score += self.depth_check_weight
            reasons.append(REASON_FLAT)

        movements = list(self.movement_scores)
        if len(movements) > self.min_movement_samples:
            if float(np.mean(movements)) < self.min_micro_movement:
                score += self.movement_check_weight
                reasons.append(REASON_NO_MOVEMENT)

        if len(movements) >= self.max_static_frames:
            recent = movements[-self.max_static_frames:]
            static_frames = sum(1 for m in recent if m < self.static_epsilon)
            if static_frames > self.max_static_frames * self.static_fraction:
                score += self.static_check_weight
                reasons.append(REASON_STATIC)

        return SpoofAssessment(
            score=score,
            is_spoof=score >= self.spoof_threshold,
            reason=reasons[0] if reasons else None,
            reasons=reasons,
        )

    def debug_info(self) -> Dict[str, float]:
        return {
            "frame_count": len(self.history),
            "avg_depth_variance": float(np.mean(self.depth_variances)) if self.depth_variances else 0.0,
            "avg_movement": float(np.mean(self.movement_scores)) if self.movement_scores else 0.0,
            "spoof_score": self.assessment.score,
            "is_spoof": self.is_spoof,
        }
