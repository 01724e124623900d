"""Smoothing primitives for per-frame signals."""

import math
from typing import Optional, Sequence


def ema(current: float, previous: Optional[float], alpha: float = 0.3) -> float:
    """
    Exponential moving average step.

    A zero, missing or NaN ``previous`` is a cold start and returns
    ``current`` unchanged.
    """
    if previous is None or previous == 0 or math.isnan(previous):
        return current
    return alpha * current + (1 - alpha) * previous


def sma(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(sum(values)) / len(values)



def clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


def lerp(start: float, end: float, t: float) -> float:
    """Linear interpolation with ``t`` clamped to [0, 1]."""
    return start + (end - start) * clamp(t, 0.0, 1.0)


def in_range(value: float, minimum: float, maximum: float) -> bool:
    """Inclusive on both ends."""
    return minimum <= value <= maximum
