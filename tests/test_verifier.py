"""
End-to-end tests for the liveness verifier driven by synthetic landmarks.
"""

import pytest

from src.core.liveness import LivenessError, LivenessStep, LivenessVerifier
from src.core.liveness.anti_spoof import REASON_FLAT
from src.core.liveness.pose import pitch_metric, yaw_metric
from src.core.liveness.session import CHALLENGE_STEPS
from src.core.liveness.synthetic import SimulatedSubject, SyntheticFaceGenerator, iter_simulation
from src.utils.config import Config

FRAME_MS = 1000.0 / 12


def align(verifier, generator, guide_box, start=0.0, frames=12):
    """Feed neutral frames until ALIGN completes; returns the next timestamp."""
    now = start
    for _ in range(frames):
        verifier.process_frame(generator.face(), guide_box, now=now)
        now += FRAME_MS
    return now


class TestSessionLifecycle:
    """Test start, restart and the inactive states."""

    def test_start_enters_first_step(self, verifier):
        session = verifier.start(now=0.0)

        assert session.current_step is LivenessStep.ALIGN
        assert session.step_order[0] is LivenessStep.ALIGN
        assert sorted(session.step_order) == sorted(CHALLENGE_STEPS)
        assert session.completed_steps == []
        assert session.anti_spoof is not None

    def test_idle_frames_are_ignored(self, verifier, generator, guide_box):
        update = verifier.process_frame(generator.face(), guide_box, now=0.0)

        assert update.current_step is LivenessStep.IDLE
        assert update.step_number == 0
        assert update.instruction == "Preparing..."

    def test_restart_waits_for_delay(self, verifier, generator, guide_box):
        verifier.start(now=0.0)
        align(verifier, generator, guide_box, frames=5)
        verifier.restart(now=1000.0)

        early = verifier.process_frame(generator.face(), guide_box, now=1050.0)
        assert early.current_step is LivenessStep.IDLE

        update = verifier.process_frame(generator.face(), guide_box, now=1100.0)
        assert update.current_step is LivenessStep.ALIGN
        assert update.aligned_frames == 1
        assert verifier.session.completed_steps == []
        assert len(verifier.session.anti_spoof.history) == 1

    def test_explicit_step_order(self, default_config, device_info):
        order = [LivenessStep.ALIGN, LivenessStep.TURN_DOWN, LivenessStep.TURN_UP,
                 LivenessStep.TURN_RIGHT, LivenessStep.TURN_LEFT, LivenessStep.BLINK]
        verifier = LivenessVerifier(default_config, step_order=order, device_info=device_info)

        assert verifier.start(now=0.0).step_order == order

    def test_invalid_step_order_raises(self, default_config):
        verifier = LivenessVerifier(default_config, step_order=[LivenessStep.ALIGN, LivenessStep.BLINK])
        with pytest.raises(ValueError):
            verifier.start(now=0.0)

    def test_clock_used_without_timestamp(self, default_config, generator, guide_box):
        times = iter([5000.0, 5000.0])
        verifier = LivenessVerifier(default_config, seed=0, clock=lambda: next(times))

        verifier.start()
        update = verifier.process_frame(generator.face(), guide_box)

        assert verifier.session.step_entered_at == 5000.0
        assert update.aligned_frames == 1


class TestFrameErrors:
    """Test per-frame error reporting."""

    def test_no_face(self, verifier, generator, guide_box):
        verifier.start(now=0.0)
        align(verifier, generator, guide_box, frames=5)

        update = verifier.process_frame(None, guide_box, now=1000.0)

        assert update.error is LivenessError.NO_FACE
        assert update.instruction == LivenessError.NO_FACE.message
        assert update.aligned_frames == 0
        assert update.current_step is LivenessStep.ALIGN

    def test_too_far_resets_alignment(self, verifier, generator, guide_box):
        verifier.start(now=0.0)
        now = align(verifier, generator, guide_box, frames=6)

        small = generator.face(scale=0.4)
        update = verifier.process_frame(small, guide_box, now=now)

        assert update.error is LivenessError.TOO_FAR
        assert update.instruction == "Move closer to the camera"
        assert update.aligned_frames == 0

    def test_out_of_guide(self, verifier, generator, guide_box):
        verifier.start(now=0.0)

        update = verifier.process_frame(generator.face(offset=(250.0, 0.0)), guide_box, now=0.0)

        assert update.error is LivenessError.OUT_OF_GUIDE
        assert update.aligned_frames == 0

    def test_error_clears_on_good_frame(self, verifier, generator, guide_box):
        verifier.start(now=0.0)
        verifier.process_frame(None, guide_box, now=0.0)

        update = verifier.process_frame(generator.face(), guide_box, now=FRAME_MS)

        assert update.error is None
        assert update.instruction == LivenessStep.ALIGN.instruction


class TestStepTransitions:
    """Test step completion and cooldown."""

    def test_align_completes_and_captures_baseline(self, verifier, generator, guide_box):
        verifier.start(now=0.0)
        updates = []
        now = 0.0
        for _ in range(12):
            updates.append(verifier.process_frame(generator.face(), guide_box, now=now))
            now += FRAME_MS

        assert [u.completed_step for u in updates].count(LivenessStep.ALIGN) == 1
        assert updates[-1].completed_step is LivenessStep.ALIGN
        assert updates[-1].step_number == 2

        baseline = verifier.session.baseline
        assert baseline.yaw == pytest.approx(0.0, abs=1e-9)
        assert baseline.pitch == pytest.approx(0.25)
        assert baseline.face_width == pytest.approx(200.0)
        assert verifier.completed_steps == [LivenessStep.ALIGN]

    def test_cooldown_blocks_next_step(self, default_config, device_info, generator, guide_box):
        order = [LivenessStep.ALIGN, LivenessStep.TURN_LEFT, LivenessStep.BLINK,
                 LivenessStep.TURN_RIGHT, LivenessStep.TURN_UP, LivenessStep.TURN_DOWN]
        verifier = LivenessVerifier(default_config, step_order=order, device_info=device_info)
        verifier.start(now=0.0)
        now = align(verifier, generator, guide_box)
        completed_at = now - FRAME_MS

        assert verifier.session.current_step is LivenessStep.TURN_LEFT
        assert verifier.session.step_entered_at == pytest.approx(completed_at + 500.0)

        entered_at = verifier.session.step_entered_at
        while now < entered_at:
            update = verifier.process_frame(generator.face(yaw=-0.15), guide_box, now=now)
            assert update.held_frames == 0
            assert update.completed_step is None
            now += FRAME_MS

        held = [verifier.process_frame(generator.face(yaw=-0.15), guide_box, now=now + i * FRAME_MS) for i in range(4)]
        assert [u.held_frames for u in held] == [1, 2, 3, 0]
        assert held[-1].completed_step is LivenessStep.TURN_LEFT
        assert verifier.session.yaw_deltas == [pytest.approx(-0.15)]

    def test_excessive_roll_reported(self, default_config, device_info, generator, guide_box):
        order = [LivenessStep.ALIGN, LivenessStep.TURN_UP, LivenessStep.BLINK,
                 LivenessStep.TURN_RIGHT, LivenessStep.TURN_LEFT, LivenessStep.TURN_DOWN]
        verifier = LivenessVerifier(default_config, step_order=order, device_info=device_info)
        verifier.start(now=0.0)
        now = align(verifier, generator, guide_box)

        update = verifier.process_frame(generator.face(pitch=0.13, roll=0.2), guide_box, now=now + 1000.0)

        assert update.error is LivenessError.EXCESSIVE_ROLL
        assert update.held_frames == 0


class TestSimulatedSubject:
    """Test the scripted subject used for dry runs."""

    def test_eases_into_turns(self, generator):
        subject = SimulatedSubject(generator, turn_frames=3)

        yaws = [yaw_metric(subject.face_for(LivenessStep.TURN_LEFT, i)) for i in range(5)]

        assert yaws == pytest.approx([-0.05, -0.10, -0.15, -0.15, -0.15])

    def test_pitch_turn_reaches_target(self, generator):
        subject = SimulatedSubject(generator, turn_frames=1)

        assert pitch_metric(subject.face_for(LivenessStep.TURN_DOWN, 0)) == pytest.approx(0.37)
        assert yaw_metric(subject.face_for(LivenessStep.ALIGN, 0)) == pytest.approx(0.0, abs=1e-9)


class TestFullSession:
    """Drive complete sessions with a simulated subject."""

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_live_subject_is_verified(self, default_config, device_info, guide_box, seed):
        verifier = LivenessVerifier(default_config, seed=seed, device_info=device_info)
        subject = SimulatedSubject(SyntheticFaceGenerator(seed=seed))

        updates = list(iter_simulation(verifier, subject, guide_box))
        session = verifier.session

        final = updates[-1]
        assert final.is_complete
        assert final.completed_step is session.step_order[-1]
        assert final.result is not None
        assert [u.result is not None for u in updates].count(True) == 1

        result = final.result
        assert result.steps_completed == session.step_order
        assert len(result.metrics_summary.yaw_deltas) == 2
        assert len(result.metrics_summary.pitch_deltas) == 2
        assert result.metrics_summary.open_ear == pytest.approx(0.30, abs=0.01)
        assert result.device_info == device_info
        assert final.step_number == final.total_steps == 6

    def test_every_generated_order_completes(self, default_config, device_info, guide_box):
        """Any shuffled order must leave the subject a way to finish."""
        for seed in range(30):
            verifier = LivenessVerifier(default_config, seed=seed, device_info=device_info)
            subject = SimulatedSubject(SyntheticFaceGenerator(seed=seed))

            updates = list(iter_simulation(verifier, subject, guide_box))

            assert verifier.session.step_order[0] is LivenessStep.ALIGN, seed
            assert updates[-1].is_complete, (seed, verifier.session.step_order)

    def test_stale_pin_setting_is_ignored(self, device_info):
        config = Config.from_dict({"sequencer": {"pin_align_first": False}})
        verifier = LivenessVerifier(config, device_info=device_info)

        for seed in range(10):
            assert verifier.start(now=0.0, seed=seed).step_order[0] is LivenessStep.ALIGN

    def test_completed_steps_prefix_every_frame(self, verifier, guide_box):
        subject = SimulatedSubject(SyntheticFaceGenerator(seed=11))
        seen = []

        for update in iter_simulation(verifier, subject, guide_box):
            order = verifier.session.step_order
            done = verifier.completed_steps
            assert done == order[:len(done)]
            if not update.is_complete:
                assert update.current_step is order[len(done)]
            seen.append(len(done))

        assert seen == sorted(seen)
        assert seen[-1] == 6

    def test_photo_is_rejected(self, verifier, guide_box):
        subject = SimulatedSubject(SyntheticFaceGenerator(flat=True))

        updates = list(iter_simulation(verifier, subject, guide_box, max_frames=120))

        assert not any(u.is_complete for u in updates)
        assert verifier.completed_steps == []
        assert updates[-1].error is LivenessError.SPOOF_SUSPECTED
        assert updates[-1].instruction == REASON_FLAT
        assert updates[-1].spoof.is_spoof

    def test_anti_spoof_disabled_lets_photo_through(self, device_info, guide_box):
        config = Config.from_dict({"anti_spoof": {"enabled": False}})
        verifier = LivenessVerifier(config, seed=0, device_info=device_info)
        subject = SimulatedSubject(SyntheticFaceGenerator(flat=True))

        updates = list(iter_simulation(verifier, subject, guide_box, max_frames=60))

        assert LivenessStep.ALIGN in verifier.completed_steps
        assert all(u.error is not LivenessError.SPOOF_SUSPECTED for u in updates)

    def test_debug_info(self, verifier, generator, guide_box):
        verifier.start(now=0.0)
        update = verifier.process_frame(generator.face(), guide_box, now=0.0)

        assert update.debug["current_ear"] == pytest.approx(0.30)
        assert update.debug["aligned_frames"] == 1
        assert update.debug["is_spoof"] is False
        assert update.debug["step_progress"] == pytest.approx(1 / 12)
        assert update.debug["inter_ocular_distance"] == pytest.approx(80.0)
