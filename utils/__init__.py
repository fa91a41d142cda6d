"""
Utilities package for the Autonomic Balance Estimator.

This package contains the facial-tension feature extraction, the autonomic
evaluation engine, calibration capture, rolling statistics, and the landmark
source interface with its MediaPipe implementation.
"""

from .autonomic_evaluator import (
    AutonomicEvaluator,
    CalibrationBaseline,
    CalibrationSettings,
    DominantSystem,
    EvaluationResult,
    EvaluationThresholds,
)
from .autonomic_weights import WeightConfig
from .evaluation_errors import (
    AutonomicEvaluationError,
    CalibrationUnavailableError,
    DegenerateScoreError,
    InvalidRangeError,
    MissingMetricError,
)
from .evaluation_statistics import EvaluationHistory, calculate_statistics
from .facial_tension_extractor import BlinkTracker, FacialTensionExtractor
from .landmark_source import LandmarkDetectionResult, LandmarkSourceInterface
from .metric_normalization import normalize

__all__ = [
    'AutonomicEvaluator',
    'CalibrationBaseline',
    'CalibrationSettings',
    'DominantSystem',
    'EvaluationResult',
    'EvaluationThresholds',
    'WeightConfig',
    'AutonomicEvaluationError',
    'CalibrationUnavailableError',
    'DegenerateScoreError',
    'InvalidRangeError',
    'MissingMetricError',
    'EvaluationHistory',
    'calculate_statistics',
    'BlinkTracker',
    'FacialTensionExtractor',
    'LandmarkDetectionResult',
    'LandmarkSourceInterface',
    'normalize',
]
