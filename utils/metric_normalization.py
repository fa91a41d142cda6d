"""
Metric normalization helpers.

Raw geometric measurements (distances in normalized image coordinates, angles
in radians, blink counts per minute) are mapped onto comparable 0-1 tension
scores with these functions.
"""

import math

# Returned when the normalization range is empty (max == min)
DEGENERATE_RANGE_FALLBACK = 0.5


def clamp01(value: float) -> float:
    """Clamp value to [0, 1]."""
    return max(0.0, min(1.0, float(value)))


def normalize(value: float, minimum: float, maximum: float) -> float:
    """
    Linearly map value from [minimum, maximum] onto [0, 1], clamping outside.

    Args:
        value: Raw measurement
        minimum: Value mapped to 0
        maximum: Value mapped to 1

    Returns:
        Normalized value in [0, 1]. 0.5 when the range is empty.
    """
    span = float(maximum) - float(minimum)
    if span == 0:
        return DEGENERATE_RANGE_FALLBACK
    return clamp01((float(value) - float(minimum)) / span)


def relative_value(current: float, baseline: float) -> float:
    """
    Express current relative to a calibration baseline: 0.5 means "same as baseline".

    Returns current unchanged when the baseline is 0.
    """
    if baseline == 0:
        return current
    return clamp01(0.5 * (float(current) / float(baseline)))


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (64.5 -> 65, -0.5 -> 0)."""
    return int(math.floor(float(value) + 0.5))
