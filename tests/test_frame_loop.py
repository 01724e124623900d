"""
Tests for the throttled frame loop.
"""

import pytest

from src.core.frame_loop import FrameLoop


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class TestFrameLoop:
    """Test throttling, overlap protection and FPS counting."""

    def test_throttles_to_target_fps(self):
        calls = []
        loop = FrameLoop(calls.append, target_fps=10)

        ran = [loop.tick(now=t) for t in range(0, 1000, 25)]

        assert ran.count(True) == 10
        assert calls == list(range(0, 1000, 100))

    def test_overlapping_tick_is_dropped(self):
        inner = []

        def on_frame(now):
            inner.append(loop.tick(now=now + 1000))

        loop = FrameLoop(on_frame, target_fps=12)

        assert loop.tick(now=0.0)
        assert inner == [False]
        assert not loop.in_flight

    def test_failed_frame_is_retried(self):
        attempts = []

        def on_frame(now):
            attempts.append(now)
            if len(attempts) == 1:
                raise RuntimeError("camera glitch")

        loop = FrameLoop(on_frame, target_fps=12)

        with pytest.raises(RuntimeError):
            loop.tick(now=0.0)
        assert not loop.in_flight
        assert loop.tick(now=1.0)
        assert attempts == [0.0, 1.0]

    def test_fps_counter(self):
        loop = FrameLoop(lambda now: None, target_fps=10)

        for t in range(0, 1100, 100):
            loop.tick(now=float(t))

        assert loop.fps == pytest.approx(11.0)

    def test_run_with_max_frames(self):
        clock = FakeClock()
        calls = []
        loop = FrameLoop(calls.append, target_fps=20, clock=clock, sleep=lambda s: clock.advance(s * 1000.0))

        loop.run(max_frames=5)

        assert len(calls) == 5
        assert all(b - a >= 50.0 for a, b in zip(calls, calls[1:]))

    def test_stop_from_callback(self):
        clock = FakeClock()
        calls = []

        def on_frame(now):
            calls.append(now)
            if len(calls) == 3:
                loop.stop()

        loop = FrameLoop(on_frame, target_fps=20, clock=clock, sleep=lambda s: clock.advance(s * 1000.0))
        loop.run()

        assert len(calls) == 3

    def test_invalid_fps(self):
        with pytest.raises(ValueError):
            FrameLoop(lambda now: None, target_fps=0)
