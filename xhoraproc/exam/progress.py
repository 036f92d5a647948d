"""
Exam Progress - Pure projections of exam state for display
"""

from typing import Dict, Mapping, Sequence, Set

from .models import Question

CRITICAL_SECONDS = 300
WARNING_SECONDS = 600


def question_status(
    index: int,
    questions: Sequence[Question],
    answers: Mapping[str, str],
    marks: Set[int]
) -> str:
    """'marked', 'attempted' or 'unattempted'; a mark wins over an answer"""
    if index in marks:
        return "marked"
    if 0 <= index < len(questions) and questions[index].id in answers:
        return "attempted"
    return "unattempted"


def exam_stats(
    questions: Sequence[Question],
    answers: Mapping[str, str],
    marks: Set[int],
    elapsed_seconds: float
) -> Dict[str, float]:
    attempted = len(answers)
    return {
        "total_marks": sum(q.points for q in questions),
        "attempted_questions": attempted,
        "marked_for_review": len(marks),
        "average_time_per_question": round(elapsed_seconds / attempted) if attempted else 0,
    }


def progress(questions: Sequence[Question], answers: Mapping[str, str], marks: Set[int]) -> Dict[str, float]:
    """
    Percentages of the question set attempted, marked and remaining.

    Remaining subtracts both attempted and marked questions, so a question
    that is both answered and marked is counted twice.
    """
    total = len(questions)
    if total == 0:
        return {"attempted": 0.0, "marked": 0.0, "remaining": 0.0}

    attempted = len(answers)
    marked = len(marks)
    return {
        "attempted": attempted / total * 100,
        "marked": marked / total * 100,
        "remaining": (total - attempted - marked) / total * 100,
    }


def format_time(seconds: int) -> str:
    """HH:MM:SS when at least an hour remains, otherwise MM:SS"""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def time_urgency(seconds: int) -> str:
    if seconds <= CRITICAL_SECONDS:
        return "critical"
    if seconds <= WARNING_SECONDS:
        return "warning"
    return "normal"
