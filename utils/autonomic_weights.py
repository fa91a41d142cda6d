"""
Autonomic Weights Loader

Holds the weight configuration used by AutonomicEvaluator to turn tension
metrics into sympathetic and parasympathetic scores, and loads overrides from a
local JSON file. Built-in defaults come from the reference evaluation module:
the glabella (eyebrow) carries the largest sympathetic weight because frowning
is the most visible stress marker; relaxed eyes and jaw dominate the
parasympathetic side.

Weights per branch are expected to sum close to 1.0 but this is not enforced:
the evaluator renormalizes the two scores into percentages, so only the relative
scale between weights matters.

JSON format (partial files are merged over the defaults):
  {"sympathetic": {"eyebrowTension": 0.5, ...}, "parasympathetic": {"relaxedCheeks": 0.4, ...}}
"""

import json
import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

SYMPATHETIC_WEIGHT_KEYS = (
    "foreheadTension",
    "eyebrowTension",
    "eyeTension",
    "jawTension",
    "asymmetry",
    "highBlinkRate",
)

PARASYMPATHETIC_WEIGHT_KEYS = (
    "relaxedForehead",
    "relaxedEyes",
    "relaxedJaw",
    "relaxedCheeks",
    "normalBlinkRate",
)

DEFAULT_SYMPATHETIC_WEIGHTS: Dict[str, float] = {
    "foreheadTension": 0.15,
    "eyebrowTension": 0.40,  # glabella frown, strongest single cue
    "eyeTension": 0.20,
    "jawTension": 0.10,
    "asymmetry": 0.10,
    "highBlinkRate": 0.05,
}

DEFAULT_PARASYMPATHETIC_WEIGHTS: Dict[str, float] = {
    "relaxedForehead": 0.20,
    "relaxedEyes": 0.25,
    "relaxedJaw": 0.25,
    "relaxedCheeks": 0.15,
    "normalBlinkRate": 0.15,
}


def _check_branch(name: str, weights: Mapping[str, Any], keys: tuple) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for key in keys:
        if key not in weights:
            raise ValueError(f"{name} weights missing '{key}'")
        value = weights[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{name} weight '{key}' must be a number")
        value = float(value)
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"{name} weight '{key}' must be a non-negative finite number")
        out[key] = value
    return out


@dataclass(frozen=True)
class WeightConfig:
    """Sympathetic and parasympathetic weights, one mapping per branch."""
    sympathetic: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SYMPATHETIC_WEIGHTS))
    parasympathetic: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_PARASYMPATHETIC_WEIGHTS))

    def __post_init__(self):
        # Copy so later changes to the caller's dicts cannot leak into evaluations
        object.__setattr__(
            self, "sympathetic",
            _check_branch("sympathetic", self.sympathetic, SYMPATHETIC_WEIGHT_KEYS),
        )
        object.__setattr__(
            self, "parasympathetic",
            _check_branch("parasympathetic", self.parasympathetic, PARASYMPATHETIC_WEIGHT_KEYS),
        )

    def merged(self, data: Optional[Mapping[str, Any]]) -> "WeightConfig":
        """Return a new config with the given partial branch mappings applied."""
        if not data:
            return self
        sym = dict(self.sympathetic)
        para = dict(self.parasympathetic)
        if isinstance(data.get("sympathetic"), Mapping):
            sym.update(data["sympathetic"])
        if isinstance(data.get("parasympathetic"), Mapping):
            para.update(data["parasympathetic"])
        return WeightConfig(sympathetic=sym, parasympathetic=para)

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {
            "sympathetic": dict(self.sympathetic),
            "parasympathetic": dict(self.parasympathetic),
        }


def load_weight_config(path: Optional[str] = None) -> WeightConfig:
    """
    Load weights from a JSON file merged over the defaults.

    A missing path returns the defaults. An unreadable or invalid file is logged
    and the defaults are used, so a bad override never stops the service.
    """
    defaults = WeightConfig()
    if not path or not os.path.isfile(path):
        return defaults
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("weights file must contain a JSON object")
        return defaults.merged(data)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring weights file %s: %s", path, e)
        return defaults
