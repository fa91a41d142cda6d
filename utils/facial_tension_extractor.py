"""
Facial Tension Extractor Module

Converts one frame of MediaPipe Face Mesh landmarks (normalized x, y in [0, 1],
optional z) into the eight tension metrics consumed by AutonomicEvaluator:

- foreheadTension: spacing of frontalis points across the forehead
- eyebrowTension: eyebrow height (lowered brows read as tension)
- eyeTension: eyelid closure (narrowed eyes read as tension)
- cheekTension: spacing along the left cheek contour
- mouthTension: mouth opening relative to mouth width
- jawTension: bending of the jawline
- asymmetry: left/right offset difference about the image midline
- blinkRate: blinks per minute from a caller-owned BlinkTracker

Landmark indices follow the MediaPipe Face Mesh topology and must be kept as-is
if the detector is swapped for another one with the same topology.
"""

import math
import time
from collections import deque
from typing import Any, Deque, Dict, Optional, Sequence, Tuple

import numpy as np

from utils.metric_normalization import normalize

FOREHEAD_POINTS = [9, 10, 151, 337, 299, 333, 298, 301]
LEFT_EYEBROW = [70, 63, 105, 66, 107]
RIGHT_EYEBROW = [300, 293, 334, 296, 336]
LEFT_EYE_LIDS = (159, 145)  # upper, lower
RIGHT_EYE_LIDS = (386, 374)
LEFT_CHEEK = [35, 31, 228, 229, 230]
MOUTH_TOP, MOUTH_BOTTOM = 13, 14
MOUTH_LEFT, MOUTH_RIGHT = 61, 291
JAW_LINE = [172, 136, 150, 149, 176, 148, 152, 377]
SYMMETRY_PAIRS = [
    (33, 263),   # inner eye corners
    (61, 291),   # mouth corners
    (70, 300),   # inner brow ends
    (172, 397),  # jaw angles
]

# Value used when the landmarks a metric needs are missing
MISSING_REGION_VALUE = 0.5
# Blink rate reported when no BlinkTracker is supplied (e.g. a still image)
NEUTRAL_BLINK_RATE = 0.5

# Blinks per minute mapped onto 0-1
BLINK_RATE_RANGE = (10.0, 25.0)
DEFAULT_BLINKS_PER_MINUTE = 15.0


def _as_points(landmarks: Any) -> np.ndarray:
    """
    Coerce landmarks to an (N, 3) float array.

    Accepts an (N, 2)/(N, 3) array, a sequence of (x, y[, z]) tuples, a sequence
    of {x, y[, z]} mappings, or objects with x/y/z attributes (MediaPipe results).
    """
    if isinstance(landmarks, np.ndarray):
        arr = landmarks.astype(np.float64)
    else:
        rows = []
        for point in landmarks:
            if isinstance(point, dict):
                rows.append([point["x"], point["y"], point.get("z") or 0.0])
            elif hasattr(point, "x") and hasattr(point, "y"):
                rows.append([point.x, point.y, getattr(point, "z", 0.0) or 0.0])
            else:
                seq = list(point)
                rows.append([seq[0], seq[1], seq[2] if len(seq) > 2 else 0.0])
        arr = np.array(rows, dtype=np.float64).reshape(-1, 3)

    if arr.ndim != 2 or arr.shape[1] not in (2, 3):
        raise ValueError(f"landmarks must have shape (N, 2) or (N, 3), got {arr.shape}")
    if arr.shape[1] == 2:
        arr = np.hstack([arr, np.zeros((arr.shape[0], 1), dtype=np.float64)])
    return arr


def calculate_distance(p1: np.ndarray, p2: np.ndarray) -> float:
    """Euclidean distance in 3D (z is 0 when the detector gives none)."""
    return float(np.linalg.norm(p1 - p2))


def calculate_angle(p1: np.ndarray, p2: np.ndarray, p3: np.ndarray) -> float:
    """Signed angle at p2 between p2->p1 and p2->p3 in the image plane, in radians."""
    v1 = p1[:2] - p2[:2]
    v2 = p3[:2] - p2[:2]
    dot = v1[0] * v2[0] + v1[1] * v2[1]
    det = v1[0] * v2[1] - v1[1] * v2[0]
    return math.atan2(det, dot)


class BlinkTracker:
    """
    Per-session blink counter.

    Keeps the last few eye-tension samples; a blink is a rise through the
    closed-eye threshold. The rate is blinks per minute since the tracker
    started. Owned by the caller (one per measurement session).
    """

    def __init__(
        self,
        buffer_size: int = 10,
        closed_threshold: float = 0.8,
        started_at: Optional[float] = None,
    ):
        self.closed_threshold = closed_threshold
        self._samples: Deque[float] = deque(maxlen=buffer_size)
        self.blink_count = 0
        self.started_at = time.time() if started_at is None else started_at

    def update(self, eye_tension: float, now: Optional[float] = None) -> float:
        """Add one eye-tension sample and return the normalized blink rate (0-1)."""
        now = time.time() if now is None else now
        self._samples.append(eye_tension)

        if len(self._samples) >= 3:
            current = self._samples[-1]
            previous = self._samples[-2]
            if current > self.closed_threshold and previous < self.closed_threshold:
                self.blink_count += 1

        return normalize(self.blinks_per_minute(now), *BLINK_RATE_RANGE)

    def blinks_per_minute(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        elapsed_min = (now - self.started_at) / 60.0
        if elapsed_min <= 0:
            return DEFAULT_BLINKS_PER_MINUTE
        return self.blink_count / elapsed_min

    def reset(self, now: Optional[float] = None) -> None:
        self._samples.clear()
        self.blink_count = 0
        self.started_at = time.time() if now is None else now


class FacialTensionExtractor:
    """
    Extracts tension metrics from face landmarks.

    Usage:
        extractor = FacialTensionExtractor()
        tracker = BlinkTracker()
        metrics = extractor.extract(landmarks, blink_tracker=tracker)
    """

    def extract(
        self,
        landmarks: Any,
        blink_tracker: Optional[BlinkTracker] = None,
        now: Optional[float] = None,
    ) -> Dict[str, float]:
        """
        Compute all eight metrics for one frame.

        Args:
            landmarks: Face landmarks in normalized image coordinates
            blink_tracker: Session blink state; without it blinkRate is neutral
            now: Frame timestamp (seconds); defaults to time.time()

        Returns:
            Dict of metric name to value in [0, 1]
        """
        points = _as_points(landmarks)
        eye_tension = self.eye_tension(points)
        if blink_tracker is not None:
            blink_rate = blink_tracker.update(eye_tension, now)
        else:
            blink_rate = NEUTRAL_BLINK_RATE

        return {
            "foreheadTension": self.forehead_tension(points),
            "eyebrowTension": self.eyebrow_tension(points),
            "eyeTension": eye_tension,
            "cheekTension": self.cheek_tension(points),
            "mouthTension": self.mouth_tension(points),
            "jawTension": self.jaw_tension(points),
            "asymmetry": self.facial_asymmetry(points),
            "blinkRate": blink_rate,
        }

    @staticmethod
    def _has(points: np.ndarray, *indices: int) -> bool:
        return all(0 <= i < len(points) for i in indices)

    def _mean_segment_length(self, points: np.ndarray, chain: Sequence[int]) -> Tuple[float, int]:
        total, count = 0.0, 0
        for a, b in zip(chain, chain[1:]):
            if self._has(points, a, b):
                total += calculate_distance(points[a], points[b])
                count += 1
        return (total / count if count else 0.0), count

    def forehead_tension(self, points: np.ndarray) -> float:
        mean_length, count = self._mean_segment_length(points, FOREHEAD_POINTS)
        if count == 0:
            return MISSING_REGION_VALUE
        return normalize(mean_length * 10, 0.3, 0.7)

    def eyebrow_tension(self, points: np.ndarray) -> float:
        ys = [points[i, 1] for i in LEFT_EYEBROW + RIGHT_EYEBROW if self._has(points, i)]
        if not ys:
            return MISSING_REGION_VALUE
        return normalize(1 - sum(ys) / len(ys), 0.3, 0.7)

    def eye_tension(self, points: np.ndarray) -> float:
        left = calculate_distance(points[LEFT_EYE_LIDS[0]], points[LEFT_EYE_LIDS[1]]) \
            if self._has(points, *LEFT_EYE_LIDS) else 0.0
        right = calculate_distance(points[RIGHT_EYE_LIDS[0]], points[RIGHT_EYE_LIDS[1]]) \
            if self._has(points, *RIGHT_EYE_LIDS) else 0.0
        openness = (left + right) / 2
        return normalize(1 - openness * 20, 0, 1)

    def cheek_tension(self, points: np.ndarray) -> float:
        mean_length, count = self._mean_segment_length(points, LEFT_CHEEK)
        if count == 0:
            return MISSING_REGION_VALUE
        return normalize(mean_length * 10, 0.3, 0.7)

    def mouth_tension(self, points: np.ndarray) -> float:
        height = calculate_distance(points[MOUTH_TOP], points[MOUTH_BOTTOM]) \
            if self._has(points, MOUTH_TOP, MOUTH_BOTTOM) else 0.0
        width = calculate_distance(points[MOUTH_LEFT], points[MOUTH_RIGHT]) \
            if self._has(points, MOUTH_LEFT, MOUTH_RIGHT) else 0.0
        if width == 0:
            return MISSING_REGION_VALUE
        return normalize(height / width * 5, 0, 1)

    def jaw_tension(self, points: np.ndarray) -> float:
        total, count = 0.0, 0
        for a, b, c in zip(JAW_LINE, JAW_LINE[1:], JAW_LINE[2:]):
            if self._has(points, a, b, c):
                angle = calculate_angle(points[a], points[b], points[c])
                total += abs(angle - math.pi)
                count += 1
        if count == 0:
            return MISSING_REGION_VALUE
        return normalize(total / count, 0, 1)

    def facial_asymmetry(self, points: np.ndarray) -> float:
        total, count = 0.0, 0
        for left, right in SYMMETRY_PAIRS:
            if self._has(points, left, right):
                left_offset = abs(points[left, 0] - 0.5)
                right_offset = abs(0.5 - points[right, 0])
                total += abs(left_offset - right_offset)
                count += 1
        if count == 0:
            return 0.0
        return normalize(total / count * 10, 0, 1)
