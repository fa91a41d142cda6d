"""
Autonomic Evaluation Module

Turns a vector of normalized facial-tension metrics into an estimate of
autonomic nervous system balance: sympathetic and parasympathetic percentages
(summing to 100), a confidence value, the dominant system, and a diagnosis text
with situational advice.

Scoring:
- Sympathetic: weighted forehead, eyebrow, eye and jaw tension, facial asymmetry
  and blink-rate deviation from normal
- Parasympathetic: weighted relaxation (1 - tension) of forehead, eyes, jaw and
  cheeks, plus how close the blink rate is to normal

With a calibration baseline, metrics are first expressed relative to the
reference face and the resulting ratio is anchored on the baseline's target
percentages. The estimate is a heuristic derived from facial tension, not a
clinical measurement.
"""

import logging
import math
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from utils.autonomic_weights import WeightConfig
from utils.evaluation_errors import (
    DegenerateScoreError,
    InvalidRangeError,
    MissingMetricError,
)
from utils.metric_normalization import relative_value, round_half_up

logger = logging.getLogger(__name__)

# Canonical metric keys produced by FacialTensionExtractor
METRIC_KEYS = (
    "foreheadTension",
    "eyebrowTension",
    "eyeTension",
    "cheekTension",
    "mouthTension",
    "jawTension",
    "asymmetry",
    "blinkRate",
)

# Blink rate is already a rate, not a shape; it is never rescaled against the baseline
UNCALIBRATED_KEYS = frozenset({"blinkRate"})

DIAGNOSIS_INSUFFICIENT_DATA = (
    "Not enough reliable data. Please face the camera and measure again in a moment."
)
DIAGNOSIS_SYMPATHETIC = (
    "The sympathetic nervous system is dominant. Stress or tension may be elevated. "
    "Try deep breathing or a relaxation exercise."
)
DIAGNOSIS_PARASYMPATHETIC = (
    "The parasympathetic nervous system is dominant. You are in a relaxed state, "
    "though a moderate level of tension is also needed for activity."
)
DIAGNOSIS_BALANCED = (
    "Your sympathetic and parasympathetic nervous systems are well balanced. "
    "Maintaining this state supports healthy autonomic function."
)
ADVICE_EYE_STRAIN = "Your eyes look strained. Rest them regularly by looking into the distance."
ADVICE_JAW_TENSION = "Your jaw seems clenched. Try consciously relaxing it."
ADVICE_ASYMMETRY = (
    "Your face looks unevenly balanced left to right. Check your posture and chewing habits."
)
ADVICE_BLINK_RATE = (
    "Your blink rate differs from usual. Check for eye fatigue or tension."
)
CALIBRATION_NOTE = (
    "Calibrated against a reference face (sympathetic {sympathetic:g}%, "
    "parasympathetic {parasympathetic:g}%)."
)


class DominantSystem(Enum):
    """Which autonomic branch exceeds its dominance threshold."""
    SYMPATHETIC = "sympathetic"
    PARASYMPATHETIC = "parasympathetic"
    BALANCED = "balanced"


@dataclass(frozen=True)
class EvaluationThresholds:
    """Classification, advice and confidence thresholds."""
    sympathetic_dominant: float = 65.0  # percent
    parasympathetic_dominant: float = 65.0  # percent
    high_eye_tension: float = 0.7
    high_jaw_tension: float = 0.7
    high_asymmetry: float = 0.7
    blink_rate_low: float = 0.3
    blink_rate_high: float = 0.7
    low_confidence: float = 0.3
    medium_confidence: float = 0.7
    badge_medium_confidence: float = 0.4
    # Confidence penalties
    saturation_low: float = 0.1
    saturation_high: float = 0.9
    saturation_penalty: float = 0.8
    variance_limit: float = 0.2
    variance_penalty: float = 0.7


@dataclass(frozen=True)
class CalibrationSettings:
    """
    How calibrated ratios are anchored.

    deviation_origin: sympathetic percentage treated as "no deviation". None uses
    the ratio the baseline scores against itself, so a frame identical to the
    reference lands exactly on the targets. 50.0 reproduces a fixed midpoint.
    """
    damping: float = 0.8
    target_sympathetic: float = 30.0
    target_parasympathetic: float = 70.0
    deviation_origin: Optional[float] = None


@dataclass(frozen=True)
class CalibrationBaseline:
    """Reference metrics captured from a neutral face plus the percentages they represent."""
    metrics: Dict[str, float]
    target_sympathetic: float = 30.0
    target_parasympathetic: float = 70.0
    frame_count: int = 1
    source: str = "metrics"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metrics": dict(self.metrics),
            "targetSympathetic": self.target_sympathetic,
            "targetParasympathetic": self.target_parasympathetic,
            "frameCount": self.frame_count,
            "source": self.source,
        }


@dataclass
class EvaluationResult:
    """Autonomic balance estimate for one frame."""
    sympathetic: int  # percent, 0-100
    parasympathetic: int  # percent, always 100 - sympathetic
    diagnosis: str
    confidence: float  # 0-1
    dominant_system: DominantSystem
    raw_metrics: Dict[str, float]
    calibrated: bool = False
    sympathetic_ratio: float = 50.0  # unrounded percentage
    confidence_badge: Optional[str] = None  # set by the evaluator from its thresholds
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sympathetic": self.sympathetic,
            "parasympathetic": self.parasympathetic,
            "diagnosis": self.diagnosis,
            "confidence": self.confidence,
            "confidenceLevel": self.confidence_badge or confidence_level(self.confidence),
            "dominantSystem": self.dominant_system.value,
            "rawMetrics": dict(self.raw_metrics),
            "calibrated": self.calibrated,
            "timestamp": self.timestamp,
        }


def confidence_level(confidence: float, thresholds: Optional[EvaluationThresholds] = None) -> str:
    """Coarse badge for a confidence value: 'high', 'medium' or 'low'."""
    t = thresholds or EvaluationThresholds()
    if confidence > t.medium_confidence:
        return "high"
    if confidence > t.badge_medium_confidence:
        return "medium"
    return "low"


def validate_metrics(metrics: Mapping[str, Any]) -> Dict[str, float]:
    """
    Check that every canonical metric is present, numeric, finite and within [0, 1].

    Returns a new dict holding only the canonical keys as floats. Extra keys are
    dropped. Out-of-range values are rejected rather than clamped.

    Raises:
        MissingMetricError: key absent or value not a number
        InvalidRangeError: value outside [0, 1] or not finite
    """
    if not isinstance(metrics, Mapping):
        raise MissingMetricError("metrics", "must be a mapping of metric name to value")
    clean: Dict[str, float] = {}
    for key in METRIC_KEYS:
        if key not in metrics or metrics[key] is None:
            raise MissingMetricError(key)
        value = metrics[key]
        if isinstance(value, bool) or not isinstance(value, (int, float, np.floating, np.integer)):
            raise MissingMetricError(key, "is not a number")
        value = float(value)
        if not math.isfinite(value) or value < 0.0 or value > 1.0:
            raise InvalidRangeError(key, value)
        clean[key] = value
    return clean


def apply_calibration(metrics: Mapping[str, float], baseline_metrics: Mapping[str, float]) -> Dict[str, float]:
    """Express each metric relative to the baseline (0.5 = same as reference)."""
    adjusted: Dict[str, float] = {}
    for key in METRIC_KEYS:
        if key in UNCALIBRATED_KEYS:
            adjusted[key] = metrics[key]
        else:
            adjusted[key] = relative_value(metrics[key], baseline_metrics[key])
    return adjusted


def _ratio_from_scores(sympathetic_score: float, parasympathetic_score: float) -> Tuple[float, float]:
    total = sympathetic_score + parasympathetic_score
    if total <= 0:
        raise DegenerateScoreError("sympathetic and parasympathetic scores sum to zero")
    sympathetic = sympathetic_score / total * 100.0
    return sympathetic, 100.0 - sympathetic


def _renormalize(sympathetic: float, parasympathetic: float) -> Tuple[float, float]:
    total = sympathetic + parasympathetic
    if total <= 0:
        return 50.0, 50.0
    ratio = sympathetic / total * 100.0
    return ratio, 100.0 - ratio


class AutonomicEvaluator:
    """
    Estimates autonomic balance from facial tension metrics.

    Weights, thresholds and calibration settings are fixed at construction; use
    with_weights() / with_thresholds() to derive a differently configured
    evaluator. evaluate() keeps no state between calls, so one instance can be
    shared by concurrent callers.

    Usage:
        evaluator = AutonomicEvaluator()
        result = evaluator.evaluate(metrics)
        print(result.sympathetic, result.dominant_system.value)
    """

    def __init__(
        self,
        weights: Optional[WeightConfig] = None,
        thresholds: Optional[EvaluationThresholds] = None,
        calibration_settings: Optional[CalibrationSettings] = None,
    ):
        self.weights = weights or WeightConfig()
        self.thresholds = thresholds or EvaluationThresholds()
        self.calibration_settings = calibration_settings or CalibrationSettings()

    @classmethod
    def from_config(cls) -> "AutonomicEvaluator":
        """Build an evaluator from the values in config.py (environment driven)."""
        import config
        return cls(
            weights=config.get_weight_config(),
            thresholds=config.get_threshold_config(),
            calibration_settings=config.get_calibration_config(),
        )

    def with_weights(self, weights: Mapping[str, Any]) -> "AutonomicEvaluator":
        """Return a new evaluator with partial weight overrides merged in."""
        return AutonomicEvaluator(
            weights=self.weights.merged(weights),
            thresholds=self.thresholds,
            calibration_settings=self.calibration_settings,
        )

    def with_thresholds(self, **changes: float) -> "AutonomicEvaluator":
        """Return a new evaluator with some thresholds replaced."""
        return AutonomicEvaluator(
            weights=self.weights,
            thresholds=replace(self.thresholds, **changes),
            calibration_settings=self.calibration_settings,
        )

    def evaluate(
        self,
        metrics: Mapping[str, Any],
        baseline: Optional[CalibrationBaseline] = None,
    ) -> EvaluationResult:
        """
        Evaluate one metrics vector.

        Args:
            metrics: Mapping with all eight canonical tension metrics in [0, 1]
            baseline: Optional calibration baseline captured from a reference face

        Returns:
            EvaluationResult

        Raises:
            MissingMetricError, InvalidRangeError: invalid metrics
        """
        clean = validate_metrics(metrics)

        if baseline is not None:
            adjusted = apply_calibration(clean, baseline.metrics)
            sympathetic_ratio, parasympathetic_ratio = self.calculate_calibrated_ratios(
                self.calculate_scores(adjusted), baseline
            )
        else:
            sympathetic_ratio, parasympathetic_ratio = self.calculate_ratios(
                self.calculate_scores(clean)
            )

        confidence = self.calculate_confidence(clean)
        dominant = self.determine_dominant_system(sympathetic_ratio, parasympathetic_ratio)
        diagnosis = self.generate_diagnosis(dominant, clean, confidence, baseline)

        sympathetic = round_half_up(sympathetic_ratio)
        return EvaluationResult(
            sympathetic=sympathetic,
            parasympathetic=100 - sympathetic,
            diagnosis=diagnosis,
            confidence=confidence,
            dominant_system=dominant,
            raw_metrics=clean,
            calibrated=baseline is not None,
            sympathetic_ratio=sympathetic_ratio,
            confidence_badge=confidence_level(confidence, self.thresholds),
        )

    def calculate_scores(self, metrics: Mapping[str, float]) -> Tuple[float, float]:
        """Return (sympathetic_score, parasympathetic_score) for validated metrics."""
        sym = self.weights.sympathetic
        para = self.weights.parasympathetic
        blink_deviation = abs(metrics["blinkRate"] - 0.5)

        sympathetic_score = (
            metrics["foreheadTension"] * sym["foreheadTension"]
            + metrics["eyebrowTension"] * sym["eyebrowTension"]
            + metrics["eyeTension"] * sym["eyeTension"]
            + metrics["jawTension"] * sym["jawTension"]
            + metrics["asymmetry"] * sym["asymmetry"]
            + blink_deviation * sym["highBlinkRate"]
        )
        parasympathetic_score = (
            (1 - metrics["foreheadTension"]) * para["relaxedForehead"]
            + (1 - metrics["eyeTension"]) * para["relaxedEyes"]
            + (1 - metrics["jawTension"]) * para["relaxedJaw"]
            + (1 - metrics["cheekTension"]) * para["relaxedCheeks"]
            + (1 - blink_deviation) * para["normalBlinkRate"]
        )
        return sympathetic_score, parasympathetic_score

    def calculate_ratios(self, scores: Tuple[float, float]) -> Tuple[float, float]:
        """Uncalibrated percentages; 50/50 when both scores are zero."""
        try:
            return _ratio_from_scores(*scores)
        except DegenerateScoreError:
            logger.debug("Zero total score; falling back to a 50/50 ratio")
            return 50.0, 50.0

    def calculate_calibrated_ratios(
        self,
        scores: Tuple[float, float],
        baseline: CalibrationBaseline,
    ) -> Tuple[float, float]:
        """
        Anchor the relative ratio on the baseline's target percentages.

        The deviation of each branch from the origin is damped, added onto the
        branch target, floored at 0, and the pair renormalized to sum to 100.
        """
        target_sym = float(baseline.target_sympathetic)
        target_para = float(baseline.target_parasympathetic)
        try:
            sympathetic_ratio, parasympathetic_ratio = _ratio_from_scores(*scores)
        except DegenerateScoreError:
            logger.debug("Zero total score under calibration; using target ratio")
            return _renormalize(target_sym, target_para)

        origin_sym = self.deviation_origin(baseline)
        origin_para = 100.0 - origin_sym
        damping = self.calibration_settings.damping

        sym = max(0.0, target_sym + (sympathetic_ratio - origin_sym) * damping)
        para = max(0.0, target_para + (parasympathetic_ratio - origin_para) * damping)
        return _renormalize(sym, para)

    def deviation_origin(self, baseline: CalibrationBaseline) -> float:
        """Sympathetic percentage that counts as zero deviation for this baseline."""
        if self.calibration_settings.deviation_origin is not None:
            return float(self.calibration_settings.deviation_origin)
        neutral = apply_calibration(baseline.metrics, baseline.metrics)
        return self.calculate_ratios(self.calculate_scores(neutral))[0]

    def calculate_confidence(self, metrics: Mapping[str, float]) -> float:
        """
        Confidence in [0, 1]. Each saturated metric (outside the trusted band)
        costs a multiplicative penalty; erratic frames with high variance across
        metrics cost another.
        """
        t = self.thresholds
        values = np.array([metrics[key] for key in METRIC_KEYS], dtype=np.float64)

        confidence = 1.0
        for value in values:
            if value < t.saturation_low or value > t.saturation_high:
                confidence *= t.saturation_penalty

        if float(np.var(values)) > t.variance_limit:
            confidence *= t.variance_penalty

        return max(0.0, min(1.0, confidence))

    def determine_dominant_system(self, sympathetic_ratio: float, parasympathetic_ratio: float) -> DominantSystem:
        if sympathetic_ratio > self.thresholds.sympathetic_dominant:
            return DominantSystem.SYMPATHETIC
        if parasympathetic_ratio > self.thresholds.parasympathetic_dominant:
            return DominantSystem.PARASYMPATHETIC
        return DominantSystem.BALANCED

    def generate_diagnosis(
        self,
        dominant: DominantSystem,
        metrics: Mapping[str, float],
        confidence: float,
        baseline: Optional[CalibrationBaseline] = None,
    ) -> str:
        if confidence < self.thresholds.low_confidence:
            return DIAGNOSIS_INSUFFICIENT_DATA

        if dominant is DominantSystem.SYMPATHETIC:
            paragraphs = [DIAGNOSIS_SYMPATHETIC]
        elif dominant is DominantSystem.PARASYMPATHETIC:
            paragraphs = [DIAGNOSIS_PARASYMPATHETIC]
        else:
            paragraphs = [DIAGNOSIS_BALANCED]

        paragraphs.extend(self.generate_additional_advice(metrics))

        if baseline is not None:
            paragraphs.append(CALIBRATION_NOTE.format(
                sympathetic=baseline.target_sympathetic,
                parasympathetic=baseline.target_parasympathetic,
            ))
        return "\n\n".join(paragraphs)

    def generate_additional_advice(self, metrics: Mapping[str, float]) -> List[str]:
        """Independent advisories, always in the same order."""
        t = self.thresholds
        advice = []
        if metrics["eyeTension"] > t.high_eye_tension:
            advice.append(ADVICE_EYE_STRAIN)
        if metrics["jawTension"] > t.high_jaw_tension:
            advice.append(ADVICE_JAW_TENSION)
        if metrics["asymmetry"] > t.high_asymmetry:
            advice.append(ADVICE_ASYMMETRY)
        if metrics["blinkRate"] < t.blink_rate_low or metrics["blinkRate"] > t.blink_rate_high:
            advice.append(ADVICE_BLINK_RATE)
        return advice
