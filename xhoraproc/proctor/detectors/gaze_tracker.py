"""
Gaze Tracker - Estimates horizontal gaze direction from eye landmarks

Uses the 68-point landmark layout: left eye 36-41, right eye 42-47.
The gaze ratio compares the apparent width of the two eyes; turning
the head or eyes foreshortens one eye relative to the other.
"""

import logging
from typing import Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# Landmark indices for eyes (68-point model)
LEFT_EYE_INDICES = [36, 37, 38, 39, 40, 41]
RIGHT_EYE_INDICES = [42, 43, 44, 45, 46, 47]

LEFT_RATIO_THRESHOLD = 1.15
RIGHT_RATIO_THRESHOLD = 0.85


def _eye_width(eye: np.ndarray) -> float:
    """Horizontal distance between the outer (0) and inner (3) eye corners"""
    return float(abs(eye[3][0] - eye[0][0]))


def compute_gaze_ratio(landmarks) -> Optional[float]:
    """
    Compute left-eye-width / right-eye-width.

    Args:
        landmarks: (68, 2) array-like of (x, y) points

    Returns:
        The ratio, or None if the landmarks cannot support it
    """
    if landmarks is None:
        return None

    points = np.asarray(landmarks, dtype=np.float64)
    if points.ndim != 2 or points.shape[0] < 48 or points.shape[1] < 2:
        return None

    left_width = _eye_width(points[LEFT_EYE_INDICES])
    right_width = _eye_width(points[RIGHT_EYE_INDICES])

    if right_width == 0:
        return None

    return left_width / right_width


def gaze_direction(
    ratio: Optional[float],
    left_threshold: float = LEFT_RATIO_THRESHOLD,
    right_threshold: float = RIGHT_RATIO_THRESHOLD
) -> str:
    """
    Map a gaze ratio to 'left', 'right', 'center' or 'unknown'.
    """
    if ratio is None:
        return "unknown"
    if ratio > left_threshold:
        return "left"
    if ratio < right_threshold:
        return "right"
    return "center"


def track(landmarks, **thresholds) -> Tuple[str, Optional[float]]:
    """Convenience wrapper returning (direction, ratio)"""
    ratio = compute_gaze_ratio(landmarks)
    return gaze_direction(ratio, **thresholds), ratio
