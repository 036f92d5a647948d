"""
Violation Classifier - Maps one sensor observation to at most one violation

Stateless: each call looks only at the observation it is given. Vision
and audio are classified by separate functions and never combined.

Vision rules (first match wins):
1. No faces            -> no_face
2. More than one face  -> multiple_faces
3. One face, gaze ratio > 1.15 -> looking_away (left)
             gaze ratio < 0.85 -> looking_away (right)
             otherwise         -> no violation (center)

Audio rule: level > 30 -> suspicious_audio
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from ..exam.models import ViolationKind
from .detectors.gaze_tracker import (
    LEFT_RATIO_THRESHOLD,
    RIGHT_RATIO_THRESHOLD,
    compute_gaze_ratio,
    gaze_direction,
)

AUDIO_LEVEL_THRESHOLD = 30.0


@dataclass(frozen=True)
class Classification:
    """
    Outcome of classifying one observation.

    kind is None when the observation is normal. The remaining fields
    describe the observation for display and do not affect equality.
    """
    kind: Optional[ViolationKind] = None
    detail: Optional[str] = None
    description: str = ""
    face_count: Optional[int] = None
    confidence: Optional[float] = None
    gaze_direction: Optional[str] = None
    audio_level: Optional[float] = None

    @property
    def is_violation(self) -> bool:
        return self.kind is not None

    @property
    def key(self) -> Optional[Tuple[ViolationKind, Optional[str]]]:
        """Identity used for debouncing: kind plus detail (e.g. direction)"""
        if self.kind is None:
            return None
        return (self.kind, self.detail)


NORMAL = Classification()


def classify_faces(
    detections: Sequence,
    left_threshold: float = LEFT_RATIO_THRESHOLD,
    right_threshold: float = RIGHT_RATIO_THRESHOLD
) -> Classification:
    """
    Classify the face detections of one camera frame.

    Args:
        detections: Sequence of objects with .landmarks and .confidence,
                    ordered by descending confidence
    """
    count = len(detections)

    if count == 0:
        return Classification(
            kind=ViolationKind.NO_FACE,
            description="No face detected",
            face_count=0,
            confidence=0.0
        )

    top_confidence = float(detections[0].confidence)

    if count > 1:
        return Classification(
            kind=ViolationKind.MULTIPLE_FACES,
            description=f"Multiple faces detected ({count})",
            face_count=count,
            confidence=top_confidence
        )

    ratio = compute_gaze_ratio(detections[0].landmarks)
    direction = gaze_direction(ratio, left_threshold, right_threshold)

    if direction in ("left", "right"):
        return Classification(
            kind=ViolationKind.LOOKING_AWAY,
            detail=direction,
            description=f"Looking {direction}",
            face_count=1,
            confidence=top_confidence,
            gaze_direction=direction
        )

    return Classification(
        face_count=1,
        confidence=top_confidence,
        gaze_direction=direction
    )


def classify_audio(level: float, threshold: float = AUDIO_LEVEL_THRESHOLD) -> Classification:
    """Classify one normalized loudness level (0-100)"""
    level = float(level)

    if level > threshold:
        return Classification(
            kind=ViolationKind.SUSPICIOUS_AUDIO,
            description=f"High audio activity detected ({level:.1f}%)",
            audio_level=level
        )

    return Classification(audio_level=level)
