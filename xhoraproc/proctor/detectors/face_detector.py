"""
Face Detector - Detects faces and landmarks using dlib's HOG detector

Implements the vision analyzer capability: given a BGR frame, return
zero or more detections with a bounding box, 68-point landmarks and a
confidence score in [0, 1].
"""

import math
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from ..models.model_loader import ModelLoader, get_face_models

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FaceDetection:
    """One detected face"""
    bbox: Tuple[int, int, int, int]  # (x, y, width, height)
    landmarks: Optional[np.ndarray]  # (68, 2) or None
    confidence: float


def _score_to_confidence(score: float) -> float:
    """Squash dlib's unbounded detector margin into [0, 1]"""
    return 1.0 / (1.0 + math.exp(-float(score)))


class FaceDetector:
    """
    Detects faces in video frames using dlib's HOG-based face detector.

    Models are obtained from a memoized loader, so a failed load is
    reported once per process as ModelUnavailable and never retried.
    """

    def __init__(self, loader: Optional[ModelLoader] = None):
        """
        Args:
            loader: Optional model loader (defaults to the process-wide one)
        """
        self._loader = loader

    def _models(self):
        if self._loader is not None:
            return self._loader.get()
        return get_face_models()

    def detect_faces(self, frame: np.ndarray) -> List[FaceDetection]:
        """
        Detect faces in a frame.

        Args:
            frame: BGR image from OpenCV

        Returns:
            List of FaceDetection, ordered by descending confidence

        Raises:
            ModelUnavailable: If the face models could not be loaded
        """
        models = self._models()

        if frame is None or frame.size == 0:
            return []

        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame

        rects, scores, _ = models["detector"].run(gray, 0, 0)
        predictor = models.get("predictor")

        detections = []
        for rect, score in zip(rects, scores):
            landmarks = None
            if predictor is not None:
                try:
                    marks = predictor(gray, rect)
                    landmarks = np.array([
                        (marks.part(i).x, marks.part(i).y)
                        for i in range(marks.num_parts)
                    ])
                except Exception as e:
                    logger.warning(f"Error getting landmarks: {e}")

            detections.append(FaceDetection(
                bbox=(rect.left(), rect.top(), rect.width(), rect.height()),
                landmarks=landmarks,
                confidence=_score_to_confidence(score)
            ))

        detections.sort(key=lambda d: d.confidence, reverse=True)
        return detections

    __call__ = detect_faces
