"""
Measurement Session.

Owns everything that changes during one measurement: the optional calibration
baseline, the blink tracker, the bounded evaluation history and the measurement
window. Scoring itself stays in AutonomicEvaluator, which is stateless.

Pipeline per frame: landmarks → FacialTensionExtractor (with the session blink
tracker) → AutonomicEvaluator (with the session baseline, if any) → history.
"""

import logging
import threading
import time
from typing import Any, Dict, Iterable, Mapping, Optional

from utils.autonomic_evaluator import AutonomicEvaluator, CalibrationBaseline, EvaluationResult
from utils.calibration import calibrate_from_image, capture_baseline, capture_baseline_from_frames
from utils.evaluation_errors import CalibrationUnavailableError
from utils.evaluation_statistics import EvaluationHistory, calculate_final_score, calculate_statistics
from utils.facial_tension_extractor import BlinkTracker, FacialTensionExtractor
from utils.landmark_source import LandmarkSourceInterface

logger = logging.getLogger(__name__)


class MeasurementSession:
    """
    Measurement session shared by every caller of one app. Frame processing,
    calibration changes and reset hold the session lock, so blink counting and
    the measurement window stay consistent across worker threads.

    Usage:
        session = MeasurementSession(AutonomicEvaluator())
        result = session.process_landmarks(landmarks)
        if session.is_finished():
            print(session.final_score()["message"])
    """

    def __init__(
        self,
        evaluator: Optional[AutonomicEvaluator] = None,
        extractor: Optional[FacialTensionExtractor] = None,
        landmark_source: Optional[LandmarkSourceInterface] = None,
        duration_sec: float = 10.0,
        history_max_entries: int = 600,
        history_window_sec: Optional[float] = None,
        started_at: Optional[float] = None,
    ):
        """
        Args:
            evaluator: Scoring engine (default configuration when None)
            extractor: Landmark feature extractor
            landmark_source: Face tracker used for image calibration (optional)
            duration_sec: Length of one measurement window
            history_max_entries: Maximum results kept in history
            history_window_sec: Drop results older than this (None = count limit only)
            started_at: Session start time (defaults to now)
        """
        self.evaluator = evaluator or AutonomicEvaluator()
        self.extractor = extractor or FacialTensionExtractor()
        self.landmark_source = landmark_source
        self.duration_sec = float(duration_sec)
        self.history = EvaluationHistory(max_entries=history_max_entries, window_sec=history_window_sec)
        self._baseline: Optional[CalibrationBaseline] = None
        # Reentrant: reset() clears the baseline while holding the lock
        self._lock = threading.RLock()
        self.started_at = time.time() if started_at is None else started_at
        self.blink_tracker = BlinkTracker(started_at=self.started_at)

    @property
    def baseline(self) -> Optional[CalibrationBaseline]:
        return self._baseline

    @property
    def is_calibrated(self) -> bool:
        return self._baseline is not None

    def set_baseline(self, baseline: Optional[CalibrationBaseline]) -> None:
        with self._lock:
            self._baseline = baseline

    def clear_baseline(self) -> None:
        self.set_baseline(None)

    def calibrate_from_metrics(
        self,
        metrics: Mapping[str, Any],
        target_sympathetic: Optional[float] = None,
        target_parasympathetic: Optional[float] = None,
    ) -> CalibrationBaseline:
        baseline = capture_baseline(metrics, **self._targets(target_sympathetic, target_parasympathetic))
        self.set_baseline(baseline)
        return baseline

    def calibrate_from_frames(
        self,
        frames: Iterable[Mapping[str, Any]],
        target_sympathetic: Optional[float] = None,
        target_parasympathetic: Optional[float] = None,
    ) -> CalibrationBaseline:
        baseline = capture_baseline_from_frames(frames, **self._targets(target_sympathetic, target_parasympathetic))
        self.set_baseline(baseline)
        return baseline

    def calibrate_from_image(
        self,
        image_path: str,
        target_sympathetic: Optional[float] = None,
        target_parasympathetic: Optional[float] = None,
    ) -> Optional[CalibrationBaseline]:
        """
        Calibrate from a reference image. On failure the session stays
        uncalibrated (any previous baseline is kept) and None is returned.
        """
        if self.landmark_source is None:
            logger.warning("No landmark source configured; continuing without calibration")
            return None
        try:
            baseline = calibrate_from_image(
                image_path,
                self.landmark_source,
                self.extractor,
                **self._targets(target_sympathetic, target_parasympathetic),
            )
        except CalibrationUnavailableError as e:
            logger.warning("Calibration unavailable, continuing uncalibrated: %s", e)
            return None
        self.set_baseline(baseline)
        return baseline

    def _targets(self, target_sympathetic: Optional[float], target_parasympathetic: Optional[float]) -> Dict[str, float]:
        settings = self.evaluator.calibration_settings
        return {
            "target_sympathetic": settings.target_sympathetic if target_sympathetic is None else target_sympathetic,
            "target_parasympathetic": (
                settings.target_parasympathetic if target_parasympathetic is None else target_parasympathetic
            ),
        }

    def evaluate_metrics(self, metrics: Mapping[str, Any], record: bool = True) -> EvaluationResult:
        """Evaluate a metrics vector with the session baseline; optionally add it to history."""
        result = self.evaluator.evaluate(metrics, baseline=self._baseline)
        if record:
            self.history.append(result, now=result.timestamp)
        return result

    def process_landmarks(self, landmarks: Any, now: Optional[float] = None) -> EvaluationResult:
        """Extract metrics from one frame of landmarks, evaluate and record the result."""
        with self._lock:
            metrics = self.extractor.extract(landmarks, blink_tracker=self.blink_tracker, now=now)
            return self.evaluate_metrics(metrics)

    def statistics(self) -> Optional[Dict[str, Dict[str, Any]]]:
        return calculate_statistics(self.history.snapshot())

    def final_score(self) -> Dict[str, Any]:
        return calculate_final_score(self.history.snapshot())

    def remaining_seconds(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return max(0.0, self.duration_sec - (now - self.started_at))

    def is_finished(self, now: Optional[float] = None) -> bool:
        return self.remaining_seconds(now) <= 0

    def reset(self, now: Optional[float] = None, keep_baseline: bool = False) -> None:
        """Start a new measurement. The baseline is discarded unless keep_baseline is set."""
        with self._lock:
            self.started_at = time.time() if now is None else now
            self.history.clear()
            self.blink_tracker.reset(self.started_at)
            if not keep_baseline:
                self.clear_baseline()

    def to_dict(self, now: Optional[float] = None) -> Dict[str, Any]:
        baseline = self._baseline
        return {
            "calibrated": baseline is not None,
            "baseline": baseline.to_dict() if baseline else None,
            "samples": len(self.history),
            "remainingSec": self.remaining_seconds(now),
            "finished": self.is_finished(now),
        }
