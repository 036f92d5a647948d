"""
Exam Models - Value objects for exam sessions and proctoring

Questions are an immutable snapshot for the lifetime of a session.
Violations are immutable once created and only ever appended to a
session's violation log.
"""

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional, Tuple
from dataclasses import dataclass, field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def score_percentage(score: float, max_score: float) -> float:
    if max_score <= 0:
        return 0.0
    return round(score / max_score * 100, 2)


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class ExamState(str, Enum):
    """Lifecycle of the exam state machine"""
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    COMPLETED = "completed"


class SessionStatus(str, Enum):
    """Persisted status of an exam session record"""
    ACTIVE = "active"
    COMPLETED = "completed"


class ViolationKind(str, Enum):
    NO_FACE = "no_face"
    MULTIPLE_FACES = "multiple_faces"
    LOOKING_AWAY = "looking_away"
    SUSPICIOUS_AUDIO = "suspicious_audio"
    CAMERA_ERROR = "camera_error"
    AUDIO_ERROR = "audio_error"
    MODEL_ERROR = "model_error"


class Modality(str, Enum):
    VISION = "vision"
    AUDIO = "audio"


@dataclass(frozen=True)
class Question:
    """A single multiple-choice question"""
    id: str
    prompt: str
    options: Tuple[str, ...]
    correct_answer: str
    difficulty: Difficulty = Difficulty.EASY
    subject: str = "General"
    points: float = 1.0

    def __post_init__(self):
        # Accept any sequence for options but store a tuple
        object.__setattr__(self, "options", tuple(self.options))
        object.__setattr__(self, "difficulty", Difficulty(self.difficulty))
        if self.points < 0:
            raise ValueError(f"Question {self.id} has negative points")
        if self.correct_answer not in self.options:
            raise ValueError(f"Question {self.id} correct answer is not one of its options")

    def to_dict(self, include_answer: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "prompt": self.prompt,
            "options": list(self.options),
            "difficulty": self.difficulty.value,
            "subject": self.subject,
            "points": self.points,
        }
        if include_answer:
            data["correct_answer"] = self.correct_answer
        return data


@dataclass(frozen=True)
class Violation:
    """A recorded proctoring-integrity concern"""
    kind: ViolationKind
    description: str
    monotonic: float = field(default_factory=time.monotonic)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "description": self.description,
            "monotonic": self.monotonic,
            "timestamp": self.occurred_at.isoformat(),
        }


class ViolationLog:
    """
    Ordered, append-only sequence of violations for one session.

    Readers always get a tuple copy, so a read can never be mutated
    and two reads between appends are identical.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._entries: List[Violation] = []

    def append(self, violation: Violation) -> int:
        self._entries.append(violation)
        return len(self._entries)

    @property
    def entries(self) -> Tuple[Violation, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(tuple(self._entries))


@dataclass
class ExamSession:
    """
    Authoritative record of one timed exam attempt.

    Status only moves forward (active -> completed) and ended_at is
    set exactly once, together with the status change.
    """
    id: str
    user_id: str
    started_at: datetime = field(default_factory=utcnow)
    status: SessionStatus = SessionStatus.ACTIVE
    ended_at: Optional[datetime] = None
    violations: ViolationLog = None

    def __post_init__(self):
        if self.violations is None:
            self.violations = ViolationLog(self.id)

    def complete(self, ended_at: Optional[datetime] = None) -> bool:
        """Flip to completed; returns False if already completed"""
        if self.status == SessionStatus.COMPLETED:
            return False
        self.status = SessionStatus.COMPLETED
        self.ended_at = ended_at or utcnow()
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "violations": [v.to_dict() for v in self.violations],
        }


@dataclass
class DetectionState:
    """
    Transient per-sensor readings used for debouncing and display.

    None means unknown; a stopped monitor resets to all-unknown.
    """
    face_present: Optional[bool] = None
    face_count: Optional[int] = None
    gaze_direction: Optional[str] = None
    confidence: Optional[float] = None
    audio_level: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "face_present": self.face_present,
            "face_count": self.face_count,
            "gaze_direction": self.gaze_direction,
            "confidence": self.confidence,
            "audio_level": self.audio_level,
        }


@dataclass(frozen=True)
class ExamResult:
    """Final graded outcome of a completed session"""
    session_id: str
    status: SessionStatus
    started_at: datetime
    ended_at: datetime
    total_questions: int
    answered: int
    correct: int
    score: float
    max_score: float
    violations: Tuple[Violation, ...] = ()

    @property
    def percentage(self) -> float:
        return score_percentage(self.score, self.max_score)

    def grade_summary(self) -> Dict[str, Any]:
        """Grading counts persisted alongside the session record"""
        return {
            "total_questions": self.total_questions,
            "answered": self.answered,
            "correct": self.correct,
            "score": self.score,
            "max_score": self.max_score,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "total_questions": self.total_questions,
            "answered": self.answered,
            "correct": self.correct,
            "score": self.score,
            "max_score": self.max_score,
            "percentage": self.percentage,
            "violations": [v.to_dict() for v in self.violations],
        }
