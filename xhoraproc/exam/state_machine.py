"""
Exam Session State Machine - Single source of truth for one exam attempt

States: NOT_STARTED -> ACTIVE -> COMPLETED (terminal)

The machine owns the question snapshot, answer map, mark set, current
question pointer, the session timer and the monitoring controllers.
Every mutation runs synchronously before the first await of the
operation, so on the event loop it is a single atomic step; only the
session-store writes that follow yield control.

Persistence failures are logged and collected in `persistence_errors`.
They never roll back a transition that was already applied locally.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .errors import InvalidTransition, PersistenceError, SessionCreateError
from .models import (
    ExamResult,
    ExamSession,
    ExamState,
    Question,
    Violation,
    utcnow,
)
from .progress import exam_stats, format_time, progress, question_status, time_urgency
from .stores import QuestionSource, SessionStore
from .timer import SessionTimer
from ..proctor.utils.logging import (
    log_exam_start,
    log_exam_submit,
    log_persistence_failure,
    log_violation_recorded,
)

logger = logging.getLogger(__name__)

DEFAULT_DURATION_SECONDS = 3600
DEFAULT_QUESTION_LIMIT = 10

# Builds the monitoring controllers for a machine; each controller must
# report through machine.record_violation
MonitorFactory = Callable[["ExamSessionMachine"], Sequence[Any]]


class ExamSessionMachine:
    """
    Orchestrates one timed, proctored exam attempt.

    Args:
        user_id: Owner of the session
        question_source: Supplies the question snapshot on start()
        session_store: Persists the session record and its violations
        monitor_factory: Optional builder for the monitoring controllers
        duration_seconds: Countdown length
        question_limit: Number of questions to fetch
        tick_interval: Real seconds per timer second (tests shrink this)
    """

    def __init__(
        self,
        user_id: str,
        question_source: QuestionSource,
        session_store: SessionStore,
        monitor_factory: Optional[MonitorFactory] = None,
        duration_seconds: int = DEFAULT_DURATION_SECONDS,
        question_limit: int = DEFAULT_QUESTION_LIMIT,
        tick_interval: float = 1.0
    ):
        self.user_id = user_id
        self.duration_seconds = int(duration_seconds)
        self.question_limit = question_limit
        self.tick_interval = tick_interval

        self._question_source = question_source
        self._store = session_store
        self._monitor_factory = monitor_factory

        self.state = ExamState.NOT_STARTED
        self.session: Optional[ExamSession] = None
        self.questions: Tuple[Question, ...] = ()
        self.answers: Dict[str, str] = {}
        self.marks: Set[int] = set()
        self.current_index = 0
        self.submit_trigger: Optional[str] = None
        self.persistence_errors: List[Dict[str, str]] = []

        self._timer: Optional[SessionTimer] = None
        self._monitors: List[Any] = []
        self._listeners: List[Callable[[Violation], None]] = []
        self._starting = False
        self._result: Optional[ExamResult] = None
        self._completed = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> ExamSession:
        """
        Fetch questions, create the session record, then start the timer
        and monitors.

        Raises:
            InvalidTransition: If the exam was already started
            QuestionLoadError: If the question source fails (stays NOT_STARTED)
            SessionCreateError: If the store rejects creation (stays NOT_STARTED)
        """
        if self.state != ExamState.NOT_STARTED or self._starting:
            raise InvalidTransition("start", self.state)

        self._starting = True
        try:
            questions = await self._question_source.fetch_questions(self.question_limit)
            try:
                session_id = await self._store.create_session(self.user_id)
            except SessionCreateError:
                raise
            except PersistenceError as e:
                raise SessionCreateError(f"Failed to start exam session: {e}") from e
        finally:
            self._starting = False

        self.questions = tuple(questions)
        self.session = ExamSession(id=session_id, user_id=self.user_id)
        self.state = ExamState.ACTIVE

        self._timer = SessionTimer(
            self.duration_seconds,
            on_expire=self._on_timer_expired,
            tick_interval=self.tick_interval
        )
        self._timer.start()

        if self._monitor_factory is not None:
            self._monitors = list(self._monitor_factory(self))
            for monitor in self._monitors:
                monitor.session_id = session_id
                monitor.start()

        log_exam_start(session_id, self.user_id, len(self.questions), self.duration_seconds)
        return self.session

    async def submit(self, trigger: str = "user") -> ExamResult:
        """
        Complete the exam. Idempotent: once completed, further calls
        return the existing result without another transition.

        Raises:
            InvalidTransition: If the exam was never started
        """
        if self.state == ExamState.COMPLETED:
            logger.debug(f"Ignoring {trigger} submit; exam already completed")
            return self._result
        if self.state != ExamState.ACTIVE:
            raise InvalidTransition("submit", self.state)

        self.state = ExamState.COMPLETED
        self.session.complete(utcnow())
        self.submit_trigger = trigger
        self._timer.cancel()
        for monitor in self._monitors:
            monitor.request_stop()
        self._result = self._grade()

        log_exam_submit(self.session.id, trigger, len(self.answers), len(self.session.violations))

        await self._stop_monitors()

        try:
            await self._store.complete_session(self.session.id, self.session.ended_at, self._result)
        except PersistenceError as e:
            self._persistence_failed("complete_session", e)

        self._completed.set()
        return self._result

    async def wait_completed(self):
        """Wait until a submit has finished persisting (or failed to)"""
        await self._completed.wait()

    async def _stop_monitors(self):
        results = await asyncio.gather(
            *(monitor.stop() for monitor in self._monitors),
            return_exceptions=True
        )
        for monitor, result in zip(self._monitors, results):
            if isinstance(result, Exception):
                logger.error(f"Error stopping {monitor.modality.value} monitor: {result}")

    async def _on_timer_expired(self):
        await self.submit(trigger="timeout")

    async def close(self):
        """
        Release the timer and sensors without completing the exam
        (process shutdown). The session record stays as it is.
        """
        if self._timer is not None:
            self._timer.cancel()
            await self._timer.wait()
        await self._stop_monitors()

    # ------------------------------------------------------------------
    # Answering and navigation
    # ------------------------------------------------------------------

    def _require_active(self, operation: str):
        if self.state != ExamState.ACTIVE:
            raise InvalidTransition(operation, self.state)

    def _question_by_id(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def answer(self, question_id: str, option: str) -> bool:
        """
        Record or replace the answer to a question.

        Returns:
            False (and changes nothing) for an unknown question or option
        """
        self._require_active("answer")

        question = self._question_by_id(question_id)
        if question is None:
            logger.warning(f"Ignoring answer for unknown question {question_id}")
            return False
        if option not in question.options:
            logger.warning(f"Ignoring answer {option!r}: not an option of question {question_id}")
            return False

        self.answers[question_id] = option
        return True

    def toggle_mark(self, index: Optional[int] = None) -> bool:
        """
        Flip 'review later' on a question (default: the current one).

        Returns:
            Whether the question is marked afterwards
        """
        self._require_active("toggle mark")

        if index is None:
            index = self.current_index
        if not 0 <= index < len(self.questions):
            logger.warning(f"Ignoring mark for out-of-range question index {index}")
            return False

        if index in self.marks:
            self.marks.discard(index)
            return False
        self.marks.add(index)
        return True

    def navigate(self, index: int) -> int:
        """Jump to a question, clamped to the valid range"""
        self._require_active("navigate")

        last = max(0, len(self.questions) - 1)
        self.current_index = min(max(int(index), 0), last)
        return self.current_index

    def next_question(self) -> int:
        return self.navigate(self.current_index + 1)

    def previous_question(self) -> int:
        return self.navigate(self.current_index - 1)

    @property
    def current_question(self) -> Optional[Question]:
        if not self.questions:
            return None
        return self.questions[self.current_index]

    # ------------------------------------------------------------------
    # Violations
    # ------------------------------------------------------------------

    def add_listener(self, callback: Callable[[Violation], None]):
        """Register a callback invoked after each violation is recorded"""
        self._listeners.append(callback)

    async def record_violation(self, violation: Violation) -> bool:
        """
        Append a violation and persist it immediately.

        Violations proposed after the exam left ACTIVE are dropped.

        Returns:
            True if the violation was appended
        """
        if self.state != ExamState.ACTIVE:
            logger.debug(f"Dropping {violation.kind.value} violation; exam is {self.state.value}")
            return False

        total = self.session.violations.append(violation)
        log_violation_recorded(self.session.id, violation.kind.value, violation.description, total)

        for listener in list(self._listeners):
            try:
                listener(violation)
            except Exception as e:
                logger.warning(f"Violation listener error: {e}")

        try:
            await self._store.append_violation(self.session.id, violation)
        except PersistenceError as e:
            self._persistence_failed("append_violation", e)

        return True

    @property
    def violations(self) -> Tuple[Violation, ...]:
        if self.session is None:
            return ()
        return self.session.violations.entries

    def _persistence_failed(self, operation: str, error: Exception):
        session_id = self.session.id if self.session else ""
        log_persistence_failure(session_id, operation, str(error))
        self.persistence_errors.append({"operation": operation, "error": str(error)})

    # ------------------------------------------------------------------
    # Timer and results
    # ------------------------------------------------------------------

    @property
    def remaining_seconds(self) -> int:
        if self._timer is None:
            return self.duration_seconds
        return self._timer.remaining

    @property
    def timer(self) -> Optional[SessionTimer]:
        return self._timer

    @property
    def monitors(self) -> Tuple[Any, ...]:
        return tuple(self._monitors)

    def _grade(self) -> ExamResult:
        correct = [q for q in self.questions if self.answers.get(q.id) == q.correct_answer]
        return ExamResult(
            session_id=self.session.id,
            status=self.session.status,
            started_at=self.session.started_at,
            ended_at=self.session.ended_at,
            total_questions=len(self.questions),
            answered=len(self.answers),
            correct=len(correct),
            score=sum(q.points for q in correct),
            max_score=sum(q.points for q in self.questions),
            violations=self.session.violations.entries
        )

    def result(self) -> ExamResult:
        if self.state != ExamState.COMPLETED:
            raise InvalidTransition("read result", self.state)
        return self._result

    def snapshot(self) -> Dict[str, Any]:
        """Read-only projection of the exam for display"""
        remaining = self.remaining_seconds
        elapsed = self.duration_seconds - remaining
        current = self.current_question

        return {
            "session_id": self.session.id if self.session else None,
            "user_id": self.user_id,
            "state": self.state.value,
            "current_index": self.current_index,
            "current_question": current.to_dict() if current else None,
            "total_questions": len(self.questions),
            "remaining_seconds": remaining,
            "time_display": format_time(remaining),
            "time_urgency": time_urgency(remaining),
            "answers": dict(self.answers),
            "marked": sorted(self.marks),
            "question_statuses": [
                question_status(i, self.questions, self.answers, self.marks)
                for i in range(len(self.questions))
            ],
            "stats": exam_stats(self.questions, self.answers, self.marks, elapsed),
            "progress": progress(self.questions, self.answers, self.marks),
            "session": self.session.to_dict() if self.session else None,
            "monitors": {
                monitor.modality.value: {
                    "status": monitor.status.value,
                    "state": monitor.state.to_dict()
                }
                for monitor in self._monitors
            },
            "submit_trigger": self.submit_trigger,
            "persistence_errors": list(self.persistence_errors),
        }
