"""
XhoraProc Proctoring Module

Turns live sensor readings into exam violations:
- Face absence
- Multiple-person presence
- Gaze diversion (looking left/right)
- Suspicious audio
- Camera, microphone and model failures
"""

from .classifier import Classification, classify_audio, classify_faces
from .debouncer import ViolationDebouncer
from .monitor import MonitoringController, MonitorStatus, audio_monitor, vision_monitor

__all__ = [
    "Classification",
    "classify_audio",
    "classify_faces",
    "ViolationDebouncer",
    "MonitoringController",
    "MonitorStatus",
    "audio_monitor",
    "vision_monitor",
]
