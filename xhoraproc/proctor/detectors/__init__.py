"""Detector modules for proctoring"""

from .face_detector import FaceDetection, FaceDetector
from .audio_detector import AudioDetector
from .gaze_tracker import compute_gaze_ratio, gaze_direction

__all__ = [
    "FaceDetection",
    "FaceDetector",
    "AudioDetector",
    "compute_gaze_ratio",
    "gaze_direction"
]
