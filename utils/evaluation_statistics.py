"""
Rolling statistics over evaluation history.

Summarizes a session's evaluations: per-branch mean, standard deviation and a
coarse trend, plus the end-of-session final score. EvaluationHistory is the
bounded, append-only buffer a session keeps its results in.
"""

import threading
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Sequence, Union

import numpy as np

from utils.autonomic_evaluator import DIAGNOSIS_INSUFFICIENT_DATA, EvaluationResult
from utils.metric_normalization import round_half_up

TREND_WINDOW = 5
TREND_THRESHOLD = 5.0

TREND_INCREASING = "increasing"
TREND_DECREASING = "decreasing"
TREND_STABLE = "stable"

# (minimum score, message); checked top-down
SCORE_MESSAGES = (
    (80, "Excellent! You are very relaxed."),
    (65, "Good! You are in a well-balanced state."),
    (50, "Average. Try to relax a little more."),
    (35, "Somewhat tense. Try taking a few deep breaths."),
    (0, "Stressed. You need some rest."),
)

HistoryEntry = Union[EvaluationResult, Dict[str, Any]]


def _branch_values(history: Sequence[HistoryEntry], branch: str) -> List[float]:
    values = []
    for entry in history:
        value = entry.get(branch) if isinstance(entry, dict) else getattr(entry, branch, None)
        if value is not None:
            values.append(float(value))
    return values


def calculate_mean(values: Sequence[float]) -> float:
    return float(np.mean(values))


def calculate_standard_deviation(values: Sequence[float]) -> float:
    """Population standard deviation."""
    return float(np.std(values))


def calculate_trend(values: Sequence[float]) -> str:
    """
    Compare the mean of the last 5 values with the mean of the first 5.

    Histories shorter than 10 entries use overlapping windows; fewer than 2
    entries are always stable.
    """
    if len(values) < 2:
        return TREND_STABLE
    recent = calculate_mean(values[-TREND_WINDOW:])
    older = calculate_mean(values[:TREND_WINDOW])
    difference = recent - older
    if difference > TREND_THRESHOLD:
        return TREND_INCREASING
    if difference < -TREND_THRESHOLD:
        return TREND_DECREASING
    return TREND_STABLE


def _summarize(values: List[float]) -> Dict[str, Any]:
    return {
        "mean": calculate_mean(values),
        "std": calculate_standard_deviation(values),
        "trend": calculate_trend(values),
    }


def calculate_statistics(history: Optional[Sequence[HistoryEntry]]) -> Optional[Dict[str, Dict[str, Any]]]:
    """
    Per-branch mean, std and trend for a history of results.

    Entries may be EvaluationResult objects or dicts with 'sympathetic' and
    'parasympathetic' keys. Returns None for an empty history.
    """
    if not history:
        return None
    sympathetic = _branch_values(history, "sympathetic")
    parasympathetic = _branch_values(history, "parasympathetic")
    if not sympathetic or not parasympathetic:
        return None
    return {
        "sympathetic": _summarize(sympathetic),
        "parasympathetic": _summarize(parasympathetic),
    }


def get_score_message(score: float) -> str:
    for minimum, message in SCORE_MESSAGES:
        if score >= minimum:
            return message
    return SCORE_MESSAGES[-1][1]


def calculate_final_score(history: Optional[Sequence[HistoryEntry]]) -> Dict[str, Any]:
    """
    End-of-session score: the mean parasympathetic percentage (higher = more relaxed).

    Entries missing either branch are skipped.
    """
    pairs = []
    for entry in history or []:
        if isinstance(entry, dict):
            sym, para = entry.get("sympathetic"), entry.get("parasympathetic")
        else:
            sym, para = entry.sympathetic, entry.parasympathetic
        if sym is not None and para is not None:
            pairs.append((float(sym), float(para)))

    if not pairs:
        return {
            "score": 0,
            "sympathetic": 0,
            "parasympathetic": 0,
            "message": DIAGNOSIS_INSUFFICIENT_DATA,
            "samples": 0,
        }

    arr = np.array(pairs, dtype=np.float64)
    avg_sym, avg_para = arr.mean(axis=0)
    score = round_half_up(avg_para)
    return {
        "score": score,
        "sympathetic": round_half_up(avg_sym),
        "parasympathetic": score,
        "message": get_score_message(score),
        "samples": len(pairs),
    }


class EvaluationHistory:
    """
    Bounded, thread-safe buffer of evaluation results.

    Keeps at most max_entries results; when window_sec is set, trim() drops
    results older than that many seconds. Entries are never modified after
    being appended.
    """

    def __init__(self, max_entries: int = 600, window_sec: Optional[float] = None):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.window_sec = window_sec
        self._entries: Deque[EvaluationResult] = deque(maxlen=int(max_entries))
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def append(self, result: EvaluationResult, now: Optional[float] = None) -> None:
        with self._lock:
            self._entries.append(result)
        self.trim(now)

    def trim(self, now: Optional[float] = None) -> int:
        """Drop entries outside the time window. Returns how many were removed."""
        if not self.window_sec:
            return 0
        cutoff = (time.time() if now is None else now) - self.window_sec
        removed = 0
        with self._lock:
            while self._entries and self._entries[0].timestamp < cutoff:
                self._entries.popleft()
                removed += 1
        return removed

    def snapshot(self) -> List[EvaluationResult]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
