"""
Tests for blink calibration and detection.
"""

import pytest

from src.core.liveness.eye_blink import BlinkGate, classify_eye_state
from src.core.liveness.session import BlinkState, EyeState
from src.core.liveness.smoothing import clamp, ema, in_range, lerp, sma


def calibrated(gate: BlinkGate, ear: float = 0.30) -> BlinkState:
    state = gate.reset()
    for i in range(gate.calibration_frames):
        gate.update(state, ear, now=i * 83.0)
    return state


def feed(gate: BlinkGate, state: BlinkState, ears, start: float = 10_000.0, step: float = 83.0):
    """Feed a sequence of EAR values; returns the per-frame results."""
    return [gate.update(state, ear, now=start + i * step) for i, ear in enumerate(ears)]


class TestSmoothing:
    """Test EMA and helpers."""

    def test_ema_cold_start(self):
        assert ema(0.3, None) == 0.3
        assert ema(0.3, 0.0) == 0.3
        assert ema(0.3, float("nan")) == 0.3

    def test_ema_step(self):
        assert ema(0.0, 1.0, alpha=0.3) == pytest.approx(0.7)

    def test_sma(self):
        assert sma([]) == 0.0
        assert sma([1.0, 2.0, 3.0]) == 2.0

    def test_clamp(self):
        assert clamp(1.5, 0.0, 1.0) == 1.0
        assert clamp(-0.2, 0.0, 1.0) == 0.0
        assert clamp(0.4, 0.0, 1.0) == 0.4

    def test_lerp_clamps_t(self):
        assert lerp(0.0, 10.0, 0.25) == pytest.approx(2.5)
        assert lerp(0.0, 10.0, 2.0) == 10.0
        assert lerp(0.25, 0.13, -1.0) == 0.25

    def test_in_range_is_inclusive(self):
        assert in_range(0.3, 0.3, 0.95)
        assert in_range(0.95, 0.3, 0.95)
        assert not in_range(0.29, 0.3, 0.95)
        assert not in_range(0.96, 0.3, 0.95)


class TestBlinkCalibration:
    """Test calibration against the subject's own open-eye EAR."""

    def test_calibration_freezes_baseline(self):
        gate = BlinkGate()
        state = calibrated(gate, 0.30)

        assert not state.is_calibrating
        assert state.calibration.open_ear_baseline == pytest.approx(0.30)
        assert state.calibration.closed_threshold == pytest.approx(0.195)
        assert state.eye_state is EyeState.OPEN

    def test_no_detection_while_calibrating(self):
        gate = BlinkGate()
        state = gate.reset()

        results = feed(gate, state, [0.30, 0.05, 0.05, 0.30, 0.30])

        assert not any(results)
        assert state.is_calibrating
        assert len(state.calibration.samples) == 5

    def test_degenerate_calibration_stays_unknown(self):
        gate = BlinkGate()
        state = calibrated(gate, 0.0)

        results = feed(gate, state, [0.0, 0.2, 0.0, 0.0, 0.2, 0.2])

        assert not any(results)
        assert state.eye_state is EyeState.UNKNOWN

    def test_classify_eye_state(self):
        assert classify_eye_state(0.10, 0.30) is EyeState.CLOSED
        assert classify_eye_state(0.25, 0.30) is EyeState.OPEN
        assert classify_eye_state(0.25, 0.0) is EyeState.UNKNOWN


class TestBlinkDetection:
    """Test closed-then-open blink detection over multiple frames."""

    def test_single_blink(self):
        gate = BlinkGate()
        state = calibrated(gate)

        results = feed(gate, state, [0.30, 0.10, 0.10, 0.30, 0.30, 0.30])

        assert results.count(True) == 1
        assert results[4] is True
        assert state.blink_detected

    def test_single_closed_frame_is_not_a_blink(self):
        gate = BlinkGate()
        state = calibrated(gate)

        results = feed(gate, state, [0.10, 0.30, 0.30, 0.10, 0.30, 0.30])

        assert not any(results)
        assert state.closed_frame_count == 0

    def test_reopen_needs_two_open_frames(self):
        gate = BlinkGate()
        state = calibrated(gate)

        results = feed(gate, state, [0.10, 0.10, 0.30])

        assert not any(results)
        assert state.open_frame_count == 1

    def test_cooldown_ignores_frames(self):
        gate = BlinkGate(cooldown_ms=600)
        state = calibrated(gate)

        first = feed(gate, state, [0.10, 0.10, 0.30, 0.30], start=10_000.0)
        assert first[-1] is True

        # Second blink entirely inside the cooldown window
        within = feed(gate, state, [0.10, 0.10, 0.30, 0.30], start=10_300.0, step=50.0)
        assert not any(within)

        after = feed(gate, state, [0.10, 0.10, 0.30, 0.30], start=11_000.0)
        assert after[-1] is True

    def test_from_config(self, default_config):
        gate = BlinkGate.from_config(default_config)

        assert gate.calibration_frames == 15
        assert gate.closed_threshold_ratio == 0.65
        assert gate.cooldown_ms == 600
