"""
Utility module tests.

Tests metric normalization, weight configuration, metric validation and the
autonomic evaluator (scoring, confidence, classification, diagnosis text).
"""

import json
import math
import os
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def make_metrics(value=0.5, **overrides):
    """All eight canonical metrics at one value, with per-key overrides."""
    from utils.autonomic_evaluator import METRIC_KEYS
    metrics = {key: value for key in METRIC_KEYS}
    metrics.update(overrides)
    return metrics


class TestNormalize(unittest.TestCase):
    """Test normalize, clamp01 and relative_value."""

    def test_maps_range_onto_unit_interval(self):
        from utils.metric_normalization import normalize
        self.assertEqual(normalize(0.3, 0.3, 0.7), 0.0)
        self.assertEqual(normalize(0.7, 0.3, 0.7), 1.0)
        self.assertAlmostEqual(normalize(0.5, 0.3, 0.7), 0.5)

    def test_clamps_outside_range(self):
        from utils.metric_normalization import normalize
        self.assertEqual(normalize(-5.0, 0.0, 1.0), 0.0)
        self.assertEqual(normalize(5.0, 0.0, 1.0), 1.0)

    def test_degenerate_range_returns_midpoint(self):
        from utils.metric_normalization import normalize, DEGENERATE_RANGE_FALLBACK
        self.assertEqual(normalize(3.0, 2.0, 2.0), DEGENERATE_RANGE_FALLBACK)
        self.assertEqual(DEGENERATE_RANGE_FALLBACK, 0.5)

    def test_monotonic_and_bounded(self):
        from utils.metric_normalization import normalize
        values = [-1.0 + 0.05 * i for i in range(60)]
        outputs = [normalize(v, 0.0, 1.0) for v in values]
        for a, b in zip(outputs, outputs[1:]):
            self.assertLessEqual(a, b)
        for out in outputs:
            self.assertGreaterEqual(out, 0.0)
            self.assertLessEqual(out, 1.0)

    def test_relative_value_same_as_baseline_is_half(self):
        from utils.metric_normalization import relative_value
        self.assertAlmostEqual(relative_value(0.4, 0.4), 0.5)
        self.assertAlmostEqual(relative_value(0.8, 0.4), 1.0)
        self.assertAlmostEqual(relative_value(0.2, 0.4), 0.25)

    def test_relative_value_clamps_and_handles_zero_baseline(self):
        from utils.metric_normalization import relative_value
        self.assertEqual(relative_value(0.9, 0.1), 1.0)
        self.assertEqual(relative_value(0.3, 0.0), 0.3)

    def test_round_half_up(self):
        from utils.metric_normalization import round_half_up
        self.assertEqual(round_half_up(64.5), 65)
        self.assertEqual(round_half_up(79.5), 80)
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(64.49), 64)
        self.assertEqual(round_half_up(-0.5), 0)
        self.assertIsInstance(round_half_up(10.0), int)


class TestWeightConfig(unittest.TestCase):
    """Test WeightConfig validation, merging and file loading."""

    def test_defaults(self):
        from utils.autonomic_weights import WeightConfig
        w = WeightConfig()
        self.assertAlmostEqual(w.sympathetic["eyebrowTension"], 0.40)
        self.assertAlmostEqual(sum(w.sympathetic.values()), 1.0)
        self.assertAlmostEqual(sum(w.parasympathetic.values()), 1.0)

    def test_missing_or_negative_weight_rejected(self):
        from utils.autonomic_weights import WeightConfig, DEFAULT_SYMPATHETIC_WEIGHTS
        partial = dict(DEFAULT_SYMPATHETIC_WEIGHTS)
        del partial["asymmetry"]
        with self.assertRaises(ValueError):
            WeightConfig(sympathetic=partial)
        negative = dict(DEFAULT_SYMPATHETIC_WEIGHTS, asymmetry=-0.1)
        with self.assertRaises(ValueError):
            WeightConfig(sympathetic=negative)

    def test_caller_dict_changes_do_not_leak(self):
        from utils.autonomic_weights import WeightConfig, DEFAULT_SYMPATHETIC_WEIGHTS
        source = dict(DEFAULT_SYMPATHETIC_WEIGHTS)
        w = WeightConfig(sympathetic=source)
        source["eyebrowTension"] = 99.0
        self.assertAlmostEqual(w.sympathetic["eyebrowTension"], 0.40)

    def test_merged_returns_new_config(self):
        from utils.autonomic_weights import WeightConfig
        base = WeightConfig()
        merged = base.merged({"sympathetic": {"eyebrowTension": 0.6}})
        self.assertAlmostEqual(merged.sympathetic["eyebrowTension"], 0.6)
        self.assertAlmostEqual(merged.sympathetic["eyeTension"], 0.20)
        self.assertAlmostEqual(base.sympathetic["eyebrowTension"], 0.40)

    def test_load_missing_file_returns_defaults(self):
        from utils.autonomic_weights import load_weight_config, WeightConfig
        w = load_weight_config("/nonexistent/weights.json")
        self.assertEqual(w.to_dict(), WeightConfig().to_dict())

    def test_load_partial_file(self):
        from utils.autonomic_weights import load_weight_config
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "weights.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"parasympathetic": {"relaxedCheeks": 0.4}}, f)
            w = load_weight_config(path)
        self.assertAlmostEqual(w.parasympathetic["relaxedCheeks"], 0.4)
        self.assertAlmostEqual(w.parasympathetic["relaxedEyes"], 0.25)

    def test_load_invalid_file_falls_back_to_defaults(self):
        from utils.autonomic_weights import load_weight_config, WeightConfig
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "weights.json")
            with open(path, "w", encoding="utf-8") as f:
                f.write("{not json")
            with self.assertLogs("utils.autonomic_weights", level="WARNING"):
                w = load_weight_config(path)
        self.assertEqual(w.to_dict(), WeightConfig().to_dict())


class TestMetricValidation(unittest.TestCase):
    """Test validate_metrics error reporting."""

    def test_missing_key(self):
        from utils.autonomic_evaluator import validate_metrics
        from utils.evaluation_errors import MissingMetricError
        metrics = make_metrics()
        del metrics["jawTension"]
        with self.assertRaises(MissingMetricError) as ctx:
            validate_metrics(metrics)
        self.assertEqual(ctx.exception.metric, "jawTension")

    def test_non_numeric_value(self):
        from utils.autonomic_evaluator import validate_metrics
        from utils.evaluation_errors import MissingMetricError
        with self.assertRaises(MissingMetricError):
            validate_metrics(make_metrics(eyeTension="high"))
        with self.assertRaises(MissingMetricError):
            validate_metrics(make_metrics(eyeTension=True))
        with self.assertRaises(MissingMetricError):
            validate_metrics(make_metrics(eyeTension=None))

    def test_out_of_range_value(self):
        from utils.autonomic_evaluator import validate_metrics
        from utils.evaluation_errors import InvalidRangeError
        with self.assertRaises(InvalidRangeError) as ctx:
            validate_metrics(make_metrics(asymmetry=1.2))
        self.assertEqual(ctx.exception.metric, "asymmetry")
        with self.assertRaises(InvalidRangeError):
            validate_metrics(make_metrics(asymmetry=-0.01))
        with self.assertRaises(InvalidRangeError):
            validate_metrics(make_metrics(asymmetry=float("nan")))

    def test_errors_are_value_errors(self):
        from utils.evaluation_errors import (
            AutonomicEvaluationError, CalibrationUnavailableError, InvalidRangeError, MissingMetricError,
        )
        for cls in (InvalidRangeError, MissingMetricError, CalibrationUnavailableError):
            self.assertTrue(issubclass(cls, AutonomicEvaluationError))
        self.assertTrue(issubclass(AutonomicEvaluationError, ValueError))

    def test_extra_keys_dropped_and_bounds_accepted(self):
        from utils.autonomic_evaluator import validate_metrics, METRIC_KEYS
        clean = validate_metrics(make_metrics(0.0, eyeTension=1, extra=123))
        self.assertEqual(set(clean), set(METRIC_KEYS))
        self.assertIsInstance(clean["eyeTension"], float)


class TestAutonomicEvaluator(unittest.TestCase):
    """Test AutonomicEvaluator scoring and classification."""

    def setUp(self):
        from utils.autonomic_evaluator import AutonomicEvaluator
        self.evaluator = AutonomicEvaluator()

    def test_percentages_sum_to_100(self):
        for metrics in (
            make_metrics(),
            make_metrics(0.9, mouthTension=0.5, blinkRate=0.5),
            make_metrics(0.1),
            make_metrics(0.33, eyebrowTension=0.77, blinkRate=0.12),
        ):
            result = self.evaluator.evaluate(metrics)
            self.assertEqual(result.sympathetic + result.parasympathetic, 100)
            self.assertGreaterEqual(result.sympathetic, 0)
            self.assertLessEqual(result.sympathetic, 100)

    def test_neutral_metrics_are_balanced(self):
        from utils.autonomic_evaluator import DominantSystem, DIAGNOSIS_BALANCED
        result = self.evaluator.evaluate(make_metrics())
        # 0.475 / 1.05 with the default weights
        self.assertAlmostEqual(result.sympathetic_ratio, 45.238095, places=4)
        self.assertEqual(result.sympathetic, 45)
        self.assertEqual(result.parasympathetic, 55)
        self.assertEqual(result.dominant_system, DominantSystem.BALANCED)
        self.assertAlmostEqual(result.confidence, 1.0)
        self.assertTrue(result.diagnosis.startswith(DIAGNOSIS_BALANCED))
        self.assertFalse(result.calibrated)

    def test_high_eyebrow_tension_leans_sympathetic(self):
        from utils.autonomic_evaluator import DominantSystem, DIAGNOSIS_SYMPATHETIC
        metrics = make_metrics(eyebrowTension=0.9)
        result = self.evaluator.evaluate(metrics)
        # 0.635 / 1.21
        self.assertAlmostEqual(result.sympathetic_ratio, 52.479339, places=4)
        self.assertGreater(result.sympathetic, result.parasympathetic)
        self.assertEqual(result.dominant_system, DominantSystem.BALANCED)

        lowered = self.evaluator.with_thresholds(sympathetic_dominant=50.0)
        result = lowered.evaluate(metrics)
        self.assertEqual(result.dominant_system, DominantSystem.SYMPATHETIC)
        self.assertIn(DIAGNOSIS_SYMPATHETIC, result.diagnosis)

    def test_tense_face_is_sympathetic_dominant(self):
        from utils.autonomic_evaluator import (
            DominantSystem, DIAGNOSIS_SYMPATHETIC, ADVICE_EYE_STRAIN, ADVICE_JAW_TENSION, ADVICE_ASYMMETRY,
        )
        result = self.evaluator.evaluate(make_metrics(0.9, mouthTension=0.5, blinkRate=0.5))
        self.assertGreater(result.sympathetic, 65)
        self.assertEqual(result.dominant_system, DominantSystem.SYMPATHETIC)
        self.assertTrue(result.diagnosis.startswith(DIAGNOSIS_SYMPATHETIC))
        self.assertIn(ADVICE_EYE_STRAIN, result.diagnosis)
        self.assertIn(ADVICE_JAW_TENSION, result.diagnosis)
        self.assertIn(ADVICE_ASYMMETRY, result.diagnosis)

    def test_relaxed_face_is_parasympathetic_dominant(self):
        from utils.autonomic_evaluator import DominantSystem, DIAGNOSIS_PARASYMPATHETIC
        result = self.evaluator.evaluate(make_metrics(0.1, mouthTension=0.5, blinkRate=0.5))
        self.assertGreater(result.parasympathetic, 65)
        self.assertEqual(result.dominant_system, DominantSystem.PARASYMPATHETIC)
        self.assertTrue(result.diagnosis.startswith(DIAGNOSIS_PARASYMPATHETIC))

    def test_saturated_metrics_lower_confidence(self):
        from utils.autonomic_evaluator import DIAGNOSIS_INSUFFICIENT_DATA
        result = self.evaluator.evaluate(make_metrics(0.05))
        self.assertAlmostEqual(result.confidence, 0.8 ** 8)
        self.assertEqual(result.diagnosis, DIAGNOSIS_INSUFFICIENT_DATA)

    def test_high_variance_penalty(self):
        metrics = make_metrics(
            foreheadTension=0.0, eyebrowTension=0.0, eyeTension=0.0, cheekTension=0.0,
            mouthTension=1.0, jawTension=1.0, asymmetry=1.0, blinkRate=1.0,
        )
        result = self.evaluator.evaluate(metrics)
        self.assertAlmostEqual(result.confidence, 0.8 ** 8 * 0.7)

    def test_confidence_never_increases_with_more_saturation(self):
        from utils.autonomic_evaluator import METRIC_KEYS
        metrics = make_metrics()
        previous = self.evaluator.calculate_confidence(metrics)
        for key in METRIC_KEYS:
            metrics[key] = 0.95
            current = self.evaluator.calculate_confidence(metrics)
            self.assertLessEqual(current, previous)
            previous = current

    def test_repeated_evaluation_is_identical(self):
        metrics = make_metrics(0.05, eyebrowTension=0.95, mouthTension=0.4)
        first = self.evaluator.evaluate(metrics)
        second = self.evaluator.evaluate(metrics)
        self.assertEqual(first.confidence, second.confidence)
        self.assertEqual(first.sympathetic_ratio, second.sympathetic_ratio)
        self.assertEqual(first.diagnosis, second.diagnosis)

    def test_advice_appears_in_fixed_order(self):
        from utils.autonomic_evaluator import (
            ADVICE_EYE_STRAIN, ADVICE_JAW_TENSION, ADVICE_ASYMMETRY, ADVICE_BLINK_RATE,
        )
        result = self.evaluator.evaluate(
            make_metrics(eyeTension=0.8, jawTension=0.8, asymmetry=0.8, blinkRate=0.1)
        )
        positions = [
            result.diagnosis.index(ADVICE_EYE_STRAIN),
            result.diagnosis.index(ADVICE_JAW_TENSION),
            result.diagnosis.index(ADVICE_ASYMMETRY),
            result.diagnosis.index(ADVICE_BLINK_RATE),
        ]
        self.assertEqual(positions, sorted(positions))

    def test_no_advice_for_neutral_metrics(self):
        self.assertEqual(self.evaluator.generate_additional_advice(make_metrics()), [])

    def test_zero_weights_fall_back_to_even_split(self):
        from utils.autonomic_evaluator import AutonomicEvaluator
        from utils.autonomic_weights import WeightConfig, SYMPATHETIC_WEIGHT_KEYS, PARASYMPATHETIC_WEIGHT_KEYS
        weights = WeightConfig(
            sympathetic={key: 0.0 for key in SYMPATHETIC_WEIGHT_KEYS},
            parasympathetic={key: 0.0 for key in PARASYMPATHETIC_WEIGHT_KEYS},
        )
        result = AutonomicEvaluator(weights=weights).evaluate(make_metrics())
        self.assertEqual(result.sympathetic, 50)
        self.assertEqual(result.parasympathetic, 50)

    def test_with_weights_returns_new_evaluator(self):
        heavier = self.evaluator.with_weights({"sympathetic": {"eyebrowTension": 2.0}})
        metrics = make_metrics(eyebrowTension=0.9)
        self.assertGreater(
            heavier.evaluate(metrics).sympathetic_ratio,
            self.evaluator.evaluate(metrics).sympathetic_ratio,
        )
        self.assertAlmostEqual(self.evaluator.weights.sympathetic["eyebrowTension"], 0.40)

    def test_invalid_metrics_raise(self):
        from utils.evaluation_errors import MissingMetricError, InvalidRangeError
        with self.assertRaises(MissingMetricError):
            self.evaluator.evaluate({"eyeTension": 0.5})
        with self.assertRaises(InvalidRangeError):
            self.evaluator.evaluate(make_metrics(blinkRate=2.0))

    def test_result_to_dict(self):
        data = self.evaluator.evaluate(make_metrics()).to_dict()
        for key in ("sympathetic", "parasympathetic", "diagnosis", "confidence",
                    "confidenceLevel", "dominantSystem", "rawMetrics", "calibrated", "timestamp"):
            self.assertIn(key, data)
        self.assertEqual(data["dominantSystem"], "balanced")
        self.assertEqual(data["confidenceLevel"], "high")
        json.dumps(data)

    def test_confidence_level_badges(self):
        from utils.autonomic_evaluator import confidence_level
        self.assertEqual(confidence_level(0.9), "high")
        self.assertEqual(confidence_level(0.5), "medium")
        self.assertEqual(confidence_level(0.4), "low")
        self.assertEqual(confidence_level(0.1), "low")

    def test_confidence_level_follows_configured_thresholds(self):
        stricter = self.evaluator.with_thresholds(medium_confidence=1.0, badge_medium_confidence=0.9)
        result = stricter.evaluate(make_metrics())
        self.assertAlmostEqual(result.confidence, 1.0)
        self.assertEqual(result.to_dict()["confidenceLevel"], "medium")
        self.assertEqual(self.evaluator.evaluate(make_metrics()).to_dict()["confidenceLevel"], "high")

    def test_percentages_round_half_up(self):
        from unittest.mock import patch
        from utils.autonomic_evaluator import AutonomicEvaluator
        with patch.object(AutonomicEvaluator, "calculate_ratios", return_value=(64.5, 35.5)):
            result = self.evaluator.evaluate(make_metrics())
        self.assertEqual(result.sympathetic, 65)
        self.assertEqual(result.parasympathetic, 35)


class TestCalibratedEvaluation(unittest.TestCase):
    """Test evaluation against a calibration baseline."""

    def setUp(self):
        from utils.autonomic_evaluator import AutonomicEvaluator
        self.evaluator = AutonomicEvaluator()

    def test_reference_frame_lands_on_targets(self):
        from utils.calibration import capture_baseline
        reference = make_metrics(
            foreheadTension=0.42, eyebrowTension=0.35, eyeTension=0.6, cheekTension=0.3,
            mouthTension=0.2, jawTension=0.55, asymmetry=0.15, blinkRate=0.4,
        )
        baseline = capture_baseline(reference)
        result = self.evaluator.evaluate(reference, baseline=baseline)
        self.assertAlmostEqual(result.sympathetic_ratio, 30.0, places=6)
        self.assertEqual(result.sympathetic, 30)
        self.assertEqual(result.parasympathetic, 70)
        self.assertTrue(result.calibrated)

    def test_custom_targets(self):
        from utils.calibration import capture_baseline
        reference = make_metrics(0.4)
        baseline = capture_baseline(reference, target_sympathetic=40, target_parasympathetic=60)
        result = self.evaluator.evaluate(reference, baseline=baseline)
        self.assertEqual(result.sympathetic, 40)
        self.assertIn("40%", result.diagnosis)

    def test_more_tension_than_reference_raises_sympathetic(self):
        from utils.calibration import capture_baseline
        baseline = capture_baseline(make_metrics(0.4, blinkRate=0.5))
        result = self.evaluator.evaluate(make_metrics(0.4, eyebrowTension=0.8, blinkRate=0.5), baseline=baseline)
        self.assertGreater(result.sympathetic_ratio, 30.0)
        self.assertEqual(result.sympathetic + result.parasympathetic, 100)

    def test_fixed_midpoint_origin(self):
        from utils.autonomic_evaluator import AutonomicEvaluator, CalibrationSettings
        from utils.calibration import capture_baseline
        evaluator = AutonomicEvaluator(calibration_settings=CalibrationSettings(deviation_origin=50.0))
        reference = make_metrics(0.4, blinkRate=0.5)
        result = evaluator.evaluate(reference, baseline=capture_baseline(reference))
        # Relative metrics are all 0.5: ratio 45.24, deviation -4.76 damped by 0.8
        self.assertAlmostEqual(result.sympathetic_ratio, 26.190476, places=4)
        self.assertEqual(result.sympathetic, 26)

    def test_calibration_note_in_diagnosis(self):
        from utils.calibration import capture_baseline
        reference = make_metrics(0.4)
        result = self.evaluator.evaluate(reference, baseline=capture_baseline(reference))
        self.assertIn("Calibrated against a reference face", result.diagnosis)

    def test_confidence_uses_raw_metrics(self):
        from utils.calibration import capture_baseline
        baseline = capture_baseline(make_metrics(0.2))
        calibrated = self.evaluator.evaluate(make_metrics(0.5), baseline=baseline)
        uncalibrated = self.evaluator.evaluate(make_metrics(0.5))
        self.assertEqual(calibrated.confidence, uncalibrated.confidence)
        self.assertEqual(calibrated.raw_metrics, uncalibrated.raw_metrics)

    def test_apply_calibration_keeps_blink_rate(self):
        from utils.autonomic_evaluator import apply_calibration
        adjusted = apply_calibration(make_metrics(0.4, blinkRate=0.9), make_metrics(0.2, blinkRate=0.3))
        self.assertAlmostEqual(adjusted["blinkRate"], 0.9)
        self.assertAlmostEqual(adjusted["eyeTension"], 1.0)


class TestConfigHelpers(unittest.TestCase):
    """Test config-derived evaluator settings."""

    def test_from_config_uses_config_thresholds(self):
        import config
        from utils.autonomic_evaluator import AutonomicEvaluator
        evaluator = AutonomicEvaluator.from_config()
        self.assertEqual(evaluator.thresholds.sympathetic_dominant, config.SYMPATHETIC_DOMINANT_THRESHOLD)
        self.assertEqual(evaluator.calibration_settings.damping, config.CALIBRATION_DAMPING)

    def test_config_response_has_no_unknown_sections(self):
        import config
        data = config.build_config_response()
        self.assertEqual(set(data), {"weights", "thresholds", "calibration", "session", "faceDetection"})
        self.assertTrue(math.isfinite(data["thresholds"]["lowConfidence"]))


if __name__ == "__main__":
    unittest.main()
