"""
Evaluation Errors

Exception types raised by the autonomic evaluation pipeline. All of them are
local, recoverable conditions: routes turn them into a JSON error response and
the measurement session falls back to uncalibrated evaluation when calibration
fails. They subclass ValueError so callers that already guard bad input with
``except ValueError`` keep working.
"""

from typing import Optional


class AutonomicEvaluationError(ValueError):
    """Base class for evaluation input and calibration problems."""


class MissingMetricError(AutonomicEvaluationError):
    """A required metric key is absent or its value is not a number."""

    def __init__(self, metric: str, reason: Optional[str] = None):
        self.metric = metric
        message = f"metric '{metric}' is missing"
        if reason:
            message = f"metric '{metric}' {reason}"
        super().__init__(message)


class InvalidRangeError(AutonomicEvaluationError):
    """A metric value lies outside [0, 1] (or is not finite)."""

    def __init__(self, metric: str, value: float):
        self.metric = metric
        self.value = value
        super().__init__(f"metric '{metric}' must be within [0, 1], got {value!r}")


class CalibrationUnavailableError(AutonomicEvaluationError):
    """The reference image could not be loaded or no face was found in it."""


class DegenerateScoreError(AutonomicEvaluationError):
    """Sympathetic and parasympathetic scores sum to zero; no ratio exists."""
