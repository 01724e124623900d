"""Face-in-guide alignment gate; captures the session baseline."""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from .errors import LivenessError
from .landmarks import BoundingBox, is_inside_guide
from .pose import PoseMetrics
from .session import AlignmentProgress, Baseline
from .smoothing import in_range


@dataclass
class AlignmentUpdate:
    completed: bool = False
    error: Optional[LivenessError] = None
    baseline: Optional[Baseline] = None


class AlignmentGate:
    """
    Requires ``required_frames`` consecutive in-guide frames.

    A frame outside the guide (grown by ``margin``) or with a face that is
    too small or too large relative to the guide resets the count to zero.
    """

    def __init__(
        self,
        required_frames: int = 12,
        margin: float = 0.05,
        min_face_ratio: float = 0.3,
        max_face_ratio: float = 0.95,
    ):
        self.required_frames = required_frames
        self.margin = margin
        self.min_face_ratio = min_face_ratio
        self.max_face_ratio = max_face_ratio

    @classmethod
    def from_config(cls, config) -> "AlignmentGate":
        cfg = config.get()
        return cls(
            required_frames=cfg.alignment.required_frames,
            margin=cfg.guide.margin,
            min_face_ratio=cfg.guide.min_face_ratio,
            max_face_ratio=cfg.guide.max_face_ratio,
        )

    def check_size(self, face_box: BoundingBox, guide_box: BoundingBox) -> Optional[LivenessError]:
        """TOO_FAR / TOO_CLOSE when the face-to-guide width ratio is out of band."""
        if guide_box.width <= 0:
            return None
        ratio = face_box.width / guide_box.width
        if in_range(ratio, self.min_face_ratio, self.max_face_ratio):
            return None
        return LivenessError.TOO_FAR if ratio < self.min_face_ratio else LivenessError.TOO_CLOSE

    def update(
        self,
        progress: AlignmentProgress,
        face_box: BoundingBox,
        guide_box: BoundingBox,
        metrics: PoseMetrics,
        open_ear: float,
    ) -> AlignmentUpdate:
        """
        Evaluate one frame of the ALIGN step.

        Args:
            progress: Session-owned counter, mutated in place.
            face_box: Bounding box of the detected face.
            guide_box: Guide region in the same pixel space.
            metrics: Pose metrics of this frame, captured into the baseline.
            open_ear: Smoothed EAR of this frame, captured into the baseline.
        """
        size_error = self.check_size(face_box, guide_box)
        if size_error is not None:
            progress.reset()
            return AlignmentUpdate(error=size_error)

        if not is_inside_guide(face_box, guide_box, self.margin):
            progress.reset()
            return AlignmentUpdate(error=LivenessError.OUT_OF_GUIDE)

        progress.aligned_frames += 1
        if progress.aligned_frames < self.required_frames:
            return AlignmentUpdate()

        baseline = Baseline(
            yaw=metrics.yaw,
            pitch=metrics.pitch,
            roll=metrics.roll,
            face_width=face_box.width,
            face_height=face_box.height,
            open_ear=open_ear,
        )
        logger.debug(
            f"Baseline captured: yaw={baseline.yaw:.3f}, pitch={baseline.pitch:.3f}, "
            f"roll={baseline.roll:.3f}, ear={baseline.open_ear:.3f}"
        )
        return AlignmentUpdate(completed=True, baseline=baseline)
