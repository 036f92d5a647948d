"""Exam session state machine, timer, models and stores"""

from .errors import (
    ExamError,
    SessionCreateError,
    QuestionLoadError,
    PersistenceError,
    InvalidTransition,
    DeviceUnavailable,
    ModelUnavailable,
)
from .models import (
    Difficulty,
    ExamResult,
    ExamSession,
    ExamState,
    Question,
    SessionStatus,
    Violation,
    ViolationKind,
)
from .state_machine import ExamSessionMachine
from .timer import SessionTimer

__all__ = [
    "ExamError",
    "SessionCreateError",
    "QuestionLoadError",
    "PersistenceError",
    "InvalidTransition",
    "DeviceUnavailable",
    "ModelUnavailable",
    "Difficulty",
    "ExamResult",
    "ExamSession",
    "ExamState",
    "Question",
    "SessionStatus",
    "Violation",
    "ViolationKind",
    "ExamSessionMachine",
    "SessionTimer",
]
