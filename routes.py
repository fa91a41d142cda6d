"""
Flask routes for the Autonomic Balance Estimator.

Handles health and config, stateless metric evaluation, per-frame landmark
analysis, calibration (metrics, averaged frames or a reference image) and
session summaries (statistics, final score, reset).

The app holds one measurement session, shared by all clients and worker
threads, on app.extensions["autonomic_session"]; routes never keep
module-level state.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Blueprint, Flask, current_app, jsonify, request

import config
from services.measurement_session import MeasurementSession
from utils.evaluation_errors import AutonomicEvaluationError
from utils.mediapipe_detector import create_landmark_source

logger = logging.getLogger(__name__)

SESSION_EXTENSION_KEY = "autonomic_session"

api = Blueprint('api', __name__)


def _get_session() -> MeasurementSession:
    return current_app.extensions[SESSION_EXTENSION_KEY]


def _json_body() -> Dict[str, Any]:
    """Request JSON as a dict; raises ValueError for a missing or non-object body."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("request body must be a JSON object")
    return data


def _optional_float(data: Dict[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' must be a number")
    return float(value)


def _optional_bool(data: Dict[str, Any], key: str) -> bool:
    """JSON boolean flag; absent means false. Strings such as "false" are rejected."""
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' must be true or false")
    return value


def _calibration_image_path(requested: Any) -> str:
    """
    Image path for calibration. Without a request the configured reference image
    is used; a client-supplied path must resolve inside CALIBRATION_IMAGE_DIR.
    """
    if requested is None:
        return config.CALIBRATION_IMAGE_PATH
    if not isinstance(requested, str) or not requested:
        raise ValueError("'imagePath' must be a non-empty string")
    base = Path(config.CALIBRATION_IMAGE_DIR).resolve()
    candidate = (base / requested).resolve()
    if base not in candidate.parents:
        raise ValueError("'imagePath' must point inside the calibration image directory")
    return str(candidate)


@api.errorhandler(AutonomicEvaluationError)
def handle_evaluation_error(e: AutonomicEvaluationError):
    return jsonify({"error": str(e), "type": type(e).__name__}), 400


@api.errorhandler(ValueError)
def handle_value_error(e: ValueError):
    return jsonify({"error": str(e), "type": "ValueError"}), 400


# ============================================================================
# Health and config
# ============================================================================

@api.route('/health', methods=['GET'])
def health():
    return jsonify({"status": "ok"})


@api.route('/config/all', methods=['GET'])
def get_all_config():
    """Non-secret configuration: weights, thresholds, calibration and session settings."""
    return jsonify(config.build_config_response())


# ============================================================================
# Evaluation
# ============================================================================

@api.route('/autonomic/evaluate', methods=['POST'])
def evaluate_metrics():
    """
    Evaluate one metrics vector with the session baseline (if calibrated).

    Body: {"metrics": {...}, "record": false}
    Returns the evaluation result; the result is only added to the session
    history when "record" is true.
    """
    data = _json_body()
    metrics = data.get("metrics")
    if not isinstance(metrics, dict):
        raise ValueError("'metrics' must be a JSON object")
    result = _get_session().evaluate_metrics(metrics, record=_optional_bool(data, "record"))
    return jsonify(result.to_dict())


@api.route('/autonomic/analyze', methods=['POST'])
def analyze_landmarks():
    """
    Analyze one frame of landmarks from the browser-side face tracker.

    Body: {"landmarks": [{"x": .., "y": .., "z": ..}, ...], "timestamp": <sec, optional>}
    """
    data = _json_body()
    landmarks = data.get("landmarks")
    if not isinstance(landmarks, list) or not landmarks:
        raise ValueError("'landmarks' must be a non-empty list")
    session = _get_session()
    try:
        result = session.process_landmarks(landmarks, now=_optional_float(data, "timestamp"))
    except (KeyError, TypeError, IndexError) as e:
        raise ValueError(f"malformed landmarks: {e}") from e
    payload = result.to_dict()
    payload["session"] = session.to_dict()
    return jsonify(payload)


# ============================================================================
# Calibration
# ============================================================================

@api.route('/autonomic/calibrate', methods=['POST'])
def calibrate():
    """
    Calibrate the session.

    Body (one of):
      {"metrics": {...}}            single reference metrics vector
      {"frames": [{...}, ...]}      several reference frames, averaged
      {"imagePath": "face.png"}     reference image run through MediaPipe
    Optional: "targetSympathetic", "targetParasympathetic".

    Image calibration that fails returns 200 with "calibrated": false; the
    session simply keeps evaluating uncalibrated.
    """
    data = _json_body()
    session = _get_session()
    targets = {
        "target_sympathetic": _optional_float(data, "targetSympathetic"),
        "target_parasympathetic": _optional_float(data, "targetParasympathetic"),
    }

    if isinstance(data.get("metrics"), dict):
        session.calibrate_from_metrics(data["metrics"], **targets)
    elif isinstance(data.get("frames"), list):
        session.calibrate_from_frames(data["frames"], **targets)
    elif "imagePath" in data or data.get("useDefaultImage"):
        image_path = _calibration_image_path(data.get("imagePath"))
        if session.landmark_source is None:
            session.landmark_source = create_landmark_source()
        session.calibrate_from_image(image_path, **targets)
    else:
        raise ValueError("provide 'metrics', 'frames' or 'imagePath'")

    return jsonify(session.to_dict())


@api.route('/autonomic/calibrate', methods=['DELETE'])
def clear_calibration():
    session = _get_session()
    session.clear_baseline()
    return jsonify(session.to_dict())


# ============================================================================
# Session summaries
# ============================================================================

@api.route('/autonomic/statistics', methods=['GET'])
def get_statistics():
    """Mean, std and trend per branch over the session history (null when empty)."""
    session = _get_session()
    return jsonify({"statistics": session.statistics(), "session": session.to_dict()})


@api.route('/autonomic/final-score', methods=['GET'])
def get_final_score():
    return jsonify(_get_session().final_score())


@api.route('/autonomic/session/reset', methods=['POST'])
def reset_session():
    """Start a new measurement window. Body: {"keepBaseline": true} keeps calibration."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    session = _get_session()
    session.reset(keep_baseline=_optional_bool(data, "keepBaseline"))
    return jsonify(session.to_dict())


def register_routes(app: Flask) -> None:
    """Attach the API blueprint and the measurement session to the app."""
    if SESSION_EXTENSION_KEY not in app.extensions:
        from utils.autonomic_evaluator import AutonomicEvaluator
        app.extensions[SESSION_EXTENSION_KEY] = MeasurementSession(
            evaluator=AutonomicEvaluator.from_config(),
            duration_sec=config.MEASUREMENT_DURATION_SEC,
            history_max_entries=config.HISTORY_MAX_ENTRIES,
            history_window_sec=config.HISTORY_WINDOW_SEC,
        )
    app.register_blueprint(api)
