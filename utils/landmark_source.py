"""
Landmark Source Interface Module

Defines the capability the analysis pipeline needs from a face tracker: given
an image, return per-face landmark sets in normalized image coordinates.
Implementations are injected into the measurement session and calibration, so
the tracker can be swapped (or faked in tests) without touching the scoring
code. Readiness is reported explicitly through is_available() and
wait_until_ready() instead of probing for a global symbol.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np


@dataclass
class LandmarkDetectionResult:
    """
    Landmarks for one detected face.

    landmarks is an (N, 3) array with x, y normalized to [0, 1] of the image
    width and height, and z as reported by the tracker (0 when unavailable).
    """
    landmarks: np.ndarray
    image_size: Optional[Tuple[int, int]] = None  # (width, height)
    confidence: float = 1.0


class LandmarkSourceInterface(ABC):
    """
    Abstract source of per-frame face landmarks.
    """

    @abstractmethod
    def detect_landmarks(self, image: np.ndarray, static_image: bool = False) -> List[LandmarkDetectionResult]:
        """
        Detect faces in an image.

        Args:
            image: BGR image array (OpenCV format)
            static_image: True for a standalone still (e.g. a calibration image),
                False for consecutive video frames

        Returns:
            List of LandmarkDetectionResult, one per detected face (may be empty)
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """True once the tracker is initialized and usable."""
        pass

    @abstractmethod
    def get_name(self) -> str:
        pass

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the source is usable or the timeout expires.

        Default implementation is for sources that are ready once constructed.
        """
        return self.is_available()

    def close(self) -> None:
        """
        Clean up resources. Override if needed.
        """
        pass
