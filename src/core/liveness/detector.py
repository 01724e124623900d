"""
Challenge-response liveness verifier.

Drives one session through a randomized sequence of challenges (align,
blink, four head turns) with an anti-spoof analyzer running alongside.
Frames are fed one at a time through ``process_frame``; delays are
timestamp checks made on frame entry, so the verifier never schedules
anything on its own and is deterministic given the frame timestamps.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from loguru import logger

from src.utils.config import Config

from .alignment import AlignmentGate
from .anti_spoof import AntiSpoofAnalyzer, SpoofAssessment
from .errors import LivenessError
from .eye_blink import BlinkGate, compute_average_ear
from .landmarks import BoundingBox, FaceLandmarks, bounding_box, inter_ocular_distance
from .pose import HeadPoseGate, PoseMetrics, compute_pose_metrics
from .session import (
    DeviceInfo,
    LivenessResult,
    LivenessStep,
    Session,
    generate_step_order,
    validate_step_order,
)
from .smoothing import clamp, ema


@dataclass(frozen=True)
class FaceMetrics:
    bounding_box: BoundingBox
    pose: PoseMetrics
    left_ear: float
    right_ear: float
    avg_ear: float
    inter_ocular: float


@dataclass
class FrameUpdate:
    """What a consumer needs after each frame."""

    current_step: LivenessStep
    instruction: str
    step_number: int
    total_steps: int
    error: Optional[LivenessError] = None
    aligned_frames: int = 0
    held_frames: int = 0
    completed_step: Optional[LivenessStep] = None
    result: Optional[LivenessResult] = None
    spoof: SpoofAssessment = field(default_factory=SpoofAssessment)
    debug: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return self.current_step is LivenessStep.SUCCESS


class LivenessVerifier:
    """
    Step sequencer for challenge-response liveness.

    Usage:
        verifier = LivenessVerifier(config)
        verifier.start()
        for face, guide in frames:
            update = verifier.process_frame(face, guide)
            if update.result:
                handle(update.result)

    Args:
        config: Configuration; the defaults are used when omitted.
        seed: Fixed step-order seed (tests); None for a fresh random order.
        step_order: Explicit order override, validated on ``start``.
        clock: Millisecond clock used when ``process_frame`` gets no ``now``.
        device_info: Metadata for the result; detected from the host if omitted.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        seed: Optional[int] = None,
        step_order: Optional[Sequence[LivenessStep]] = None,
        clock: Optional[Callable[[], float]] = None,
        device_info: Optional[DeviceInfo] = None,
    ):
        self.config = config or Config()
        cfg = self.config.get()
        self.seed = seed
        self.step_order = step_order
        self.clock = clock or (lambda: time.time() * 1000.0)
        self.device_info = device_info

        self.alignment_gate = AlignmentGate.from_config(self.config)
        self.blink_gate = BlinkGate.from_config(self.config)
        self.head_pose_gate = HeadPoseGate.from_config(self.config)

        self.ema_alpha = cfg.blink.ema_alpha
        self.roll_reference = cfg.head_pose.roll_reference_radians
        self.step_cooldown_ms = cfg.sequencer.step_cooldown_ms
        self.restart_delay_ms = cfg.sequencer.restart_delay_ms

        self.session = Session()
        self.current_metrics: Optional[FaceMetrics] = None

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, now: Optional[float] = None, seed: Optional[int] = None) -> Session:
        """Begin a new session with a fresh step order and empty history."""
        now = self._now(now)
        if self.step_order is not None:
            order = validate_step_order(self.step_order)
        else:
            order = generate_step_order(seed if seed is not None else self.seed)

        self.session = Session(
            step_order=order,
            anti_spoof=AntiSpoofAnalyzer.from_config(self.config),
        )
        self.current_metrics = None
        self._enter_step(order[0], now)
        logger.info(f"Liveness session started: {' -> '.join(s.value for s in order)}")
        return self.session

    def restart(self, now: Optional[float] = None):
        """Drop the session now; the next frame after the restart delay starts a new one."""
        now = self._now(now)
        self.session = Session(restart_at=now + self.restart_delay_ms)
        self.current_metrics = None
        logger.info("Liveness session restarting")

    def _enter_step(self, step: LivenessStep, entered_at: float):
        session = self.session
        session.current_step = step
        session.step_entered_at = entered_at
        session.step_completed_at = None
        session.alignment.reset()
        session.head_pose.reset()
        if step is LivenessStep.BLINK:
            session.blink = BlinkGate.reset()

    def _complete_step(self, step: LivenessStep, now: float) -> Optional[LivenessResult]:
        session = self.session
        next_step = session.next_step()
        session.completed_steps.append(step)
        session.step_completed_at = now

        if next_step is None:
            session.current_step = LivenessStep.SUCCESS
            session.is_complete = True
            session.set_error(None)
            session.result = session.build_result(self.device_info or DeviceInfo.detect())
            logger.success(f"Liveness verified: {len(session.completed_steps)} challenges passed")
            return session.result

        logger.info(f"Step {step.value} complete, next: {next_step.value}")
        self._enter_step(next_step, now + self.step_cooldown_ms)
        return None

    # ------------------------------------------------------------------
    # Per-frame processing
    # ------------------------------------------------------------------

    def process_frame(
        self,
        face: Optional[FaceLandmarks],
        guide_box: BoundingBox,
        now: Optional[float] = None,
    ) -> FrameUpdate:
        """
        Process one frame.

        Args:
            face: Landmarks of the first detected face, or None.
            guide_box: Guide region in frame-pixel space.
            now: Frame timestamp in milliseconds; read from the clock if None.

        Returns:
            The state after this frame, including the completed step and
            the final result when they happen on this frame.
        """
        now = self._now(now)
        session = self.session

        if session.restart_at is not None and now >= session.restart_at:
            session = self.start(now)

        if not session.is_active:
            return self.snapshot()

        if face is None:
            session.set_error(LivenessError.NO_FACE)
            session.alignment.reset()
            session.head_pose.reset()
            logger.debug("No face in frame")
            return self.snapshot()

        face_box = bounding_box(face)
        pose = compute_pose_metrics(face, self.roll_reference)
        left_ear, right_ear, avg_ear = compute_average_ear(face)
        self.current_metrics = FaceMetrics(
            face_box, pose, left_ear, right_ear, avg_ear, inter_ocular_distance(face)
        )
        session.smoothed_ear = ema(avg_ear, session.smoothed_ear, self.ema_alpha)

        assessment = session.anti_spoof.update(face, now)

        size_error = self.alignment_gate.check_size(face_box, guide_box)
        if size_error is not None:
            self._reject(size_error)
            return self.snapshot()

        if session.anti_spoof.is_spoof:
            self._reject(LivenessError.SPOOF_SUSPECTED, assessment.reason)
            return self.snapshot()

        if now < session.step_entered_at:
            session.set_error(None)
            return self.snapshot()

        step = session.current_step
        completed = False

        if step is LivenessStep.ALIGN:
            update = self.alignment_gate.update(session.alignment, face_box, guide_box, pose, session.smoothed_ear)
            session.set_error(update.error)
            if update.completed:
                session.baseline = update.baseline
                completed = True
        elif step is LivenessStep.BLINK:
            session.set_error(None)
            completed = self.blink_gate.update(session.blink, session.smoothed_ear, now)
        elif step.is_head_turn:
            update = self.head_pose_gate.update(session.head_pose, pose, session.baseline, step)
            session.set_error(update.error)
            if update.completed:
                if step in (LivenessStep.TURN_LEFT, LivenessStep.TURN_RIGHT):
                    session.yaw_deltas.append(update.yaw_delta)
                else:
                    session.pitch_deltas.append(update.pitch_delta)
                completed = True

        if session.last_error is not None:
            logger.debug(f"{step.value}: {session.error_text}")

        if not completed:
            return self.snapshot()

        result = self._complete_step(step, now)
        return self.snapshot(completed_step=step, result=result)

    def _reject(self, error: LivenessError, detail: Optional[str] = None):
        """Report a frame-level error and drop consecutive-frame progress."""
        self.session.set_error(error, detail)
        self.session.alignment.reset()
        self.session.head_pose.reset()
        logger.debug(f"Frame rejected: {self.session.error_text}")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def current_step_number(self) -> int:
        session = self.session
        if session.current_step is LivenessStep.IDLE:
            return 0
        if session.current_step is LivenessStep.SUCCESS:
            return len(session.step_order)
        return session.step_order.index(session.current_step) + 1

    def snapshot(
        self,
        completed_step: Optional[LivenessStep] = None,
        result: Optional[LivenessResult] = None,
    ) -> FrameUpdate:
        session = self.session
        spoof = session.anti_spoof.assessment if session.anti_spoof else SpoofAssessment()
        return FrameUpdate(
            current_step=session.current_step,
            instruction=session.error_text or session.current_step.instruction,
            step_number=self.current_step_number(),
            total_steps=len(session.step_order),
            error=session.last_error,
            aligned_frames=session.alignment.aligned_frames,
            held_frames=session.head_pose.held_frames,
            completed_step=completed_step,
            result=result,
            spoof=spoof,
            debug=self.debug_info(),
        )

    def debug_info(self) -> Dict[str, Any]:
        session = self.session
        metrics = self.current_metrics
        baseline = session.baseline
        anti_spoof = session.anti_spoof.debug_info() if session.anti_spoof else {}

        yaw_delta = metrics.pose.yaw - baseline.yaw if metrics and baseline else 0.0
        pitch_delta = metrics.pose.pitch - baseline.pitch if metrics and baseline else 0.0

        return {
            "current_ear": session.smoothed_ear,
            "open_ear_baseline": session.blink.calibration.open_ear_baseline,
            "blink_threshold": session.blink.calibration.closed_threshold,
            "eye_state": session.blink.eye_state.value,
            "yaw_delta": yaw_delta,
            "pitch_delta": pitch_delta,
            "roll_metric": metrics.pose.roll if metrics else 0.0,
            "aligned_frames": session.alignment.aligned_frames,
            "held_frames": session.head_pose.held_frames,
            "step_progress": self.step_progress(),
            "inter_ocular_distance": metrics.inter_ocular if metrics else 0.0,
            "depth_variance": anti_spoof.get("avg_depth_variance", 0.0),
            "micro_movement": anti_spoof.get("avg_movement", 0.0),
            "spoof_score": anti_spoof.get("spoof_score", 0.0),
            "is_spoof": anti_spoof.get("is_spoof", False),
        }

    def step_progress(self) -> float:
        """Share of the current step's consecutive-frame requirement met, 0 to 1."""
        session = self.session
        step = session.current_step
        if step is LivenessStep.ALIGN:
            done, needed = session.alignment.aligned_frames, self.alignment_gate.required_frames
        elif step.is_head_turn:
            done, needed = session.head_pose.held_frames, self.head_pose_gate.held_frames
        else:
            return 1.0 if step is LivenessStep.SUCCESS else 0.0
        return clamp(done / needed, 0.0, 1.0) if needed > 0 else 0.0

    @property
    def completed_steps(self) -> List[LivenessStep]:
        return list(self.session.completed_steps)
