"""
MediaPipe Landmark Source

MediaPipe Face Mesh implementation of LandmarkSourceInterface. Returns the 478
refined landmarks (468 mesh points plus irises) in normalized image
coordinates, which is the topology FacialTensionExtractor indexes into.

Two Face Mesh instances are used:
1. Tracking mode for consecutive video frames (fast, continuous)
2. Static-image mode for stills such as the calibration reference, created on
   first use
"""

import logging
from typing import List, Optional

import numpy as np

from utils.landmark_source import LandmarkDetectionResult, LandmarkSourceInterface

logger = logging.getLogger(__name__)


class MediaPipeLandmarkSource(LandmarkSourceInterface):
    """
    MediaPipe Face Mesh landmark source (single face, refined landmarks).

    MediaPipe and OpenCV are imported when the source is constructed so that
    modules which only evaluate metrics do not pay for loading them.
    """

    def __init__(self, min_detection_confidence: float = 0.5, min_tracking_confidence: float = 0.5):
        """
        Args:
            min_detection_confidence: Minimum confidence for face detection (0-1)
            min_tracking_confidence: Minimum confidence for landmark tracking (0-1)
        """
        import mediapipe as mp
        self._mp_face_mesh = mp.solutions.face_mesh
        self._det_conf = max(0.01, min(0.99, float(min_detection_confidence)))
        self._track_conf = max(0.01, min(0.99, float(min_tracking_confidence)))

        self.face_mesh = self._mp_face_mesh.FaceMesh(
            static_image_mode=False,
            max_num_faces=1,
            refine_landmarks=True,
            min_detection_confidence=self._det_conf,
            min_tracking_confidence=self._track_conf,
        )
        self._face_mesh_static = None
        self._available = True

    def detect_landmarks(self, image: np.ndarray, static_image: bool = False) -> List[LandmarkDetectionResult]:
        """
        Run Face Mesh on a BGR image.

        Args:
            image: BGR image array
            static_image: Use the static-image model (no tracking between calls)

        Returns:
            List of LandmarkDetectionResult (at most one face)
        """
        import cv2
        if image is None or image.size == 0:
            return []

        rgb_image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        height, width = image.shape[:2]
        mesh = self._get_face_mesh_static() if static_image else self.face_mesh
        results = mesh.process(rgb_image)
        if not results.multi_face_landmarks:
            return []
        return self._extract_landmarks(results, width, height)

    def _get_face_mesh_static(self):
        """Lazy init: static-image Face Mesh is only needed for stills."""
        if self._face_mesh_static is None:
            self._face_mesh_static = self._mp_face_mesh.FaceMesh(
                static_image_mode=True,
                max_num_faces=1,
                refine_landmarks=True,
                min_detection_confidence=self._det_conf,
            )
        return self._face_mesh_static

    def _extract_landmarks(self, results, width: int, height: int) -> List[LandmarkDetectionResult]:
        face_results = []
        for face_landmarks in results.multi_face_landmarks:
            landmarks = np.array(
                [[lm.x, lm.y, lm.z] for lm in face_landmarks.landmark],
                dtype=np.float64,
            )
            face_results.append(
                LandmarkDetectionResult(
                    landmarks=landmarks,
                    image_size=(width, height),
                    confidence=1.0,  # Face Mesh does not report per-face confidence
                )
            )
        return face_results

    def is_available(self) -> bool:
        return self._available

    def get_name(self) -> str:
        return "mediapipe"

    def close(self) -> None:
        """Release MediaPipe graphs."""
        self._available = False
        for mesh in (self.face_mesh, self._face_mesh_static):
            if mesh is None:
                continue
            try:
                mesh.close()
            except Exception as e:
                logger.debug("Face Mesh close failed: %s", e)
        self._face_mesh_static = None


def create_landmark_source(min_detection_confidence: Optional[float] = None) -> Optional[LandmarkSourceInterface]:
    """
    Build the default landmark source, or None when MediaPipe cannot be loaded.

    Callers treat None as "calibration unavailable" and continue uncalibrated.
    """
    if min_detection_confidence is None:
        import config
        min_detection_confidence = config.MIN_FACE_CONFIDENCE
    try:
        return MediaPipeLandmarkSource(min_detection_confidence=min_detection_confidence)
    except (ImportError, AttributeError, RuntimeError) as e:
        logger.warning("MediaPipe landmark source unavailable: %s", e)
        return None
