"""
=============================================================================
CONFIGURATION FOR AUTONOMIC BALANCE ESTIMATOR (config.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This file holds ALL configurable settings for the project in one place. Other
files read from it. Values come from the environment (e.g. your .env file or
system variables), so you can tune thresholds for a study or a demo without
changing code.

MAIN GROUPS OF SETTINGS:
------------------------
  1. Scoring weights: How much each facial region counts toward each branch.
  2. Thresholds: When a branch counts as "dominant", when advice is shown,
     and when the data is too unreliable to diagnose.
  3. Calibration: Reference image and the percentages it stands for.
  4. Session: Measurement length and how much history is kept.
  5. Face tracking: MediaPipe detection confidence.
  6. Server: Host, port, and debug mode for the web server.

HOW VALUES ARE CHOSEN:
---------------------
  - Environment variables (e.g. SYMPATHETIC_DOMINANT_THRESHOLD) override everything.
  - If an env var is not set, the default below is used.
=============================================================================
"""

import os
from typing import Optional

from utils.autonomic_evaluator import CalibrationSettings, EvaluationThresholds
from utils.autonomic_weights import WeightConfig, load_weight_config


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


# ============================================================================
# SCORING WEIGHTS
# ============================================================================
# Optional JSON file with partial overrides of the built-in weights, e.g.
#   {"sympathetic": {"eyebrowTension": 0.5}, "parasympathetic": {"relaxedCheeks": 0.4}}
# See utils/autonomic_weights.py for the keys.
# ----------------------------------------------------------------------------
AUTONOMIC_WEIGHTS_PATH: str = os.getenv("AUTONOMIC_WEIGHTS_PATH", "weights/autonomic_weights.json")

# ============================================================================
# THRESHOLDS
# ============================================================================
# A branch is "dominant" when its percentage is strictly above its threshold.
SYMPATHETIC_DOMINANT_THRESHOLD: float = _env_float("SYMPATHETIC_DOMINANT_THRESHOLD", 65.0)
PARASYMPATHETIC_DOMINANT_THRESHOLD: float = _env_float("PARASYMPATHETIC_DOMINANT_THRESHOLD", 65.0)
# Advice appears when eye / jaw tension or asymmetry exceeds these (0-1).
HIGH_EYE_TENSION_THRESHOLD: float = _env_float("HIGH_EYE_TENSION_THRESHOLD", 0.7)
HIGH_JAW_TENSION_THRESHOLD: float = _env_float("HIGH_JAW_TENSION_THRESHOLD", 0.7)
HIGH_ASYMMETRY_THRESHOLD: float = _env_float("HIGH_ASYMMETRY_THRESHOLD", 0.7)
# Below this confidence only the "insufficient data" message is shown.
LOW_CONFIDENCE_THRESHOLD: float = _env_float("LOW_CONFIDENCE_THRESHOLD", 0.3)
# Confidence badge shown next to the result: "high" above the first, "medium" above the second.
HIGH_CONFIDENCE_THRESHOLD: float = _env_float("HIGH_CONFIDENCE_THRESHOLD", 0.7)
MEDIUM_CONFIDENCE_THRESHOLD: float = _env_float("MEDIUM_CONFIDENCE_THRESHOLD", 0.4)

# ============================================================================
# CALIBRATION
# ============================================================================
# Reference "average face" image. The neutral reference is assumed relaxed,
# so by default it stands for 30% sympathetic / 70% parasympathetic.
CALIBRATION_ENABLED: bool = _env_bool("CALIBRATION_ENABLED", True)
CALIBRATION_IMAGE_PATH: str = os.getenv("CALIBRATION_IMAGE_PATH", "averageface.png")
# Client-supplied calibration images must live inside this directory.
CALIBRATION_IMAGE_DIR: str = os.getenv("CALIBRATION_IMAGE_DIR", ".")
CALIBRATION_TARGET_SYMPATHETIC: float = _env_float("CALIBRATION_TARGET_SYMPATHETIC", 30.0)
CALIBRATION_TARGET_PARASYMPATHETIC: float = _env_float("CALIBRATION_TARGET_PARASYMPATHETIC", 70.0)
# Fraction of the deviation from the reference that is carried onto the targets.
CALIBRATION_DAMPING: float = _env_float("CALIBRATION_DAMPING", 0.8)
# Sympathetic percentage that counts as "no deviation". Unset = the reference
# face's own ratio (a frame identical to the reference lands on the targets).
# Set to 50 to measure deviation from an even split instead.
_origin = os.getenv("CALIBRATION_DEVIATION_ORIGIN")
CALIBRATION_DEVIATION_ORIGIN: Optional[float] = float(_origin) if _origin else None

# ============================================================================
# SESSION
# ============================================================================
MEASUREMENT_DURATION_SEC: float = _env_float("MEASUREMENT_DURATION_SEC", 10.0)
# History is bounded both by count and by age so long sessions cannot grow forever.
HISTORY_MAX_ENTRIES: int = int(os.getenv("HISTORY_MAX_ENTRIES", "600"))
HISTORY_WINDOW_SEC: float = _env_float("HISTORY_WINDOW_SEC", 60.0)

# ============================================================================
# FACE TRACKING
# ============================================================================
MIN_FACE_CONFIDENCE: float = _env_float("MIN_FACE_CONFIDENCE", 0.5)

# ============================================================================
# Application Configuration
# ============================================================================
FLASK_PORT: int = int(os.getenv("FLASK_PORT", "5000"))
FLASK_DEBUG: bool = _env_bool("FLASK_DEBUG", False)
FLASK_HOST: str = os.getenv("FLASK_HOST", "0.0.0.0")

# ============================================================================
# Helper Functions
# ============================================================================


def get_weight_config() -> WeightConfig:
    """Weights from AUTONOMIC_WEIGHTS_PATH merged over the defaults."""
    return load_weight_config(AUTONOMIC_WEIGHTS_PATH)


def get_threshold_config() -> EvaluationThresholds:
    return EvaluationThresholds(
        sympathetic_dominant=SYMPATHETIC_DOMINANT_THRESHOLD,
        parasympathetic_dominant=PARASYMPATHETIC_DOMINANT_THRESHOLD,
        high_eye_tension=HIGH_EYE_TENSION_THRESHOLD,
        high_jaw_tension=HIGH_JAW_TENSION_THRESHOLD,
        high_asymmetry=HIGH_ASYMMETRY_THRESHOLD,
        low_confidence=LOW_CONFIDENCE_THRESHOLD,
        medium_confidence=HIGH_CONFIDENCE_THRESHOLD,
        badge_medium_confidence=MEDIUM_CONFIDENCE_THRESHOLD,
    )


def get_calibration_config() -> CalibrationSettings:
    return CalibrationSettings(
        damping=CALIBRATION_DAMPING,
        target_sympathetic=CALIBRATION_TARGET_SYMPATHETIC,
        target_parasympathetic=CALIBRATION_TARGET_PARASYMPATHETIC,
        deviation_origin=CALIBRATION_DEVIATION_ORIGIN,
    )


def build_config_response() -> dict:
    """
    Build the configuration response for GET /config/all.
    Contains no secrets.
    """
    thresholds = get_threshold_config()
    return {
        "weights": get_weight_config().to_dict(),
        "thresholds": {
            "sympatheticDominant": thresholds.sympathetic_dominant,
            "parasympatheticDominant": thresholds.parasympathetic_dominant,
            "highEyeTension": thresholds.high_eye_tension,
            "highJawTension": thresholds.high_jaw_tension,
            "highAsymmetry": thresholds.high_asymmetry,
            "lowConfidence": thresholds.low_confidence,
            "highConfidence": thresholds.medium_confidence,
            "mediumConfidence": thresholds.badge_medium_confidence,
        },
        "calibration": {
            "enabled": CALIBRATION_ENABLED,
            "imagePath": CALIBRATION_IMAGE_PATH,
            "imageDir": CALIBRATION_IMAGE_DIR,
            "targetSympathetic": CALIBRATION_TARGET_SYMPATHETIC,
            "targetParasympathetic": CALIBRATION_TARGET_PARASYMPATHETIC,
            "damping": CALIBRATION_DAMPING,
            "deviationOrigin": CALIBRATION_DEVIATION_ORIGIN,
        },
        "session": {
            "measurementDurationSec": MEASUREMENT_DURATION_SEC,
            "historyMaxEntries": HISTORY_MAX_ENTRIES,
            "historyWindowSec": HISTORY_WINDOW_SEC,
        },
        "faceDetection": {
            "method": "mediapipe",
            "minFaceConfidence": MIN_FACE_CONFIDENCE,
        },
    }
