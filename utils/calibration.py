"""
Calibration capture.

Builds a CalibrationBaseline from a neutral reference face: either from one
metrics vector, from several reference frames averaged together (less sensitive
to single-frame noise), or from a reference image run through the landmark
source and the same feature extractor used for live frames.
"""

import logging
from typing import Any, Iterable, Mapping, Optional

import numpy as np

from utils.autonomic_evaluator import METRIC_KEYS, CalibrationBaseline, validate_metrics
from utils.evaluation_errors import CalibrationUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_TARGET_SYMPATHETIC = 30.0
DEFAULT_TARGET_PARASYMPATHETIC = 70.0


def _check_targets(target_sympathetic: float, target_parasympathetic: float) -> None:
    if target_sympathetic < 0 or target_parasympathetic < 0:
        raise ValueError("calibration targets must be non-negative")
    if target_sympathetic + target_parasympathetic <= 0:
        raise ValueError("calibration targets must not both be zero")


def capture_baseline(
    metrics: Mapping[str, Any],
    target_sympathetic: float = DEFAULT_TARGET_SYMPATHETIC,
    target_parasympathetic: float = DEFAULT_TARGET_PARASYMPATHETIC,
    source: str = "metrics",
) -> CalibrationBaseline:
    """
    Pair one reference metrics vector with the percentages it should represent.

    Raises:
        MissingMetricError, InvalidRangeError: invalid reference metrics
        ValueError: invalid targets
    """
    _check_targets(target_sympathetic, target_parasympathetic)
    return CalibrationBaseline(
        metrics=validate_metrics(metrics),
        target_sympathetic=float(target_sympathetic),
        target_parasympathetic=float(target_parasympathetic),
        frame_count=1,
        source=source,
    )


def capture_baseline_from_frames(
    frames: Iterable[Mapping[str, Any]],
    target_sympathetic: float = DEFAULT_TARGET_SYMPATHETIC,
    target_parasympathetic: float = DEFAULT_TARGET_PARASYMPATHETIC,
    source: str = "frames",
) -> CalibrationBaseline:
    """
    Average several reference frames into one baseline.

    Raises:
        CalibrationUnavailableError: no frames given
    """
    _check_targets(target_sympathetic, target_parasympathetic)
    validated = [validate_metrics(frame) for frame in frames]
    if not validated:
        raise CalibrationUnavailableError("no reference frames to calibrate from")

    matrix = np.array([[frame[key] for key in METRIC_KEYS] for frame in validated], dtype=np.float64)
    means = matrix.mean(axis=0)
    return CalibrationBaseline(
        metrics={key: float(means[i]) for i, key in enumerate(METRIC_KEYS)},
        target_sympathetic=float(target_sympathetic),
        target_parasympathetic=float(target_parasympathetic),
        frame_count=len(validated),
        source=source,
    )


def calibrate_from_image(
    image_path: str,
    landmark_source,
    extractor,
    target_sympathetic: float = DEFAULT_TARGET_SYMPATHETIC,
    target_parasympathetic: float = DEFAULT_TARGET_PARASYMPATHETIC,
    image: Optional[np.ndarray] = None,
) -> CalibrationBaseline:
    """
    Build a baseline from a reference face image (e.g. an "average face").

    Args:
        image_path: Path of the reference image
        landmark_source: LandmarkSourceInterface implementation
        extractor: FacialTensionExtractor
        image: Already-decoded BGR image; skips loading image_path when given

    Raises:
        CalibrationUnavailableError: image unreadable, detector unavailable or no face found
    """
    if image is None:
        import cv2
        image = cv2.imread(image_path)
    if image is None or getattr(image, "size", 0) == 0:
        raise CalibrationUnavailableError(f"could not load calibration image: {image_path}")

    if not landmark_source.is_available():
        raise CalibrationUnavailableError(
            f"landmark source '{landmark_source.get_name()}' is not available"
        )

    detections = landmark_source.detect_landmarks(image, static_image=True)
    if not detections:
        raise CalibrationUnavailableError(f"no face detected in calibration image: {image_path}")

    # Reference image is a still, so blink rate stays at its neutral value
    metrics = extractor.extract(detections[0].landmarks)
    baseline = capture_baseline(
        metrics,
        target_sympathetic=target_sympathetic,
        target_parasympathetic=target_parasympathetic,
        source=str(image_path),
    )
    logger.info(
        "Calibrated from %s (targets %.0f%%/%.0f%%)",
        image_path, baseline.target_sympathetic, baseline.target_parasympathetic,
    )
    return baseline
