"""
Exam API - FastAPI endpoints for proctored exams

Endpoints:
- POST /api/exam/start - Start an exam session (timer + monitoring)
- GET /api/exam/{exam_id} - Current exam snapshot
- POST /api/exam/{exam_id}/answer - Answer a question
- POST /api/exam/{exam_id}/mark - Toggle review mark
- POST /api/exam/{exam_id}/navigate - Move between questions
- POST /api/exam/{exam_id}/submit - Submit the exam
- GET /api/exam/{exam_id}/violations - Violation log
- GET /api/exam/{exam_id}/result - Graded result
- GET /api/exam/sessions - Stored sessions with their violations (review)
- GET /api/exam/sessions/{session_id} - One stored session (review)

Completed exams stay in the in-memory registry for
COMPLETED_EXAM_TTL_SECONDS; after that, results and violations are
served from the session store.
"""

import asyncio
import logging
from typing import Any, Dict, List, Literal, Optional, Set

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from .config import settings
from .exam.errors import InvalidTransition, PersistenceError, QuestionLoadError, SessionCreateError
from .exam.models import score_percentage
from .exam.state_machine import ExamSessionMachine
from .exam.stores import SqlQuestionSource, SqlSessionStore
from .proctor.capture import CameraCapture, MicrophoneCapture
from .proctor.detectors import AudioDetector, FaceDetector
from .proctor.models.model_loader import ModelLoader, check_models
from .proctor.monitor import audio_monitor, vision_monitor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/exam", tags=["Exam"])

# In-memory exam registry keyed by session id
_exams: Dict[str, ExamSessionMachine] = {}
_cleanup_tasks: Set[asyncio.Task] = set()

# Collaborators, created lazily from settings unless configured explicitly
_question_source = None
_session_store = None
_monitor_factory = None
_face_detector: Optional[FaceDetector] = None


def configure(question_source=None, session_store=None, monitor_factory=None):
    """Override collaborators (tests and embedding applications)"""
    global _question_source, _session_store, _monitor_factory
    _question_source = question_source
    _session_store = session_store
    _monitor_factory = monitor_factory
    _exams.clear()
    _cleanup_tasks.clear()


def _shared_face_detector() -> FaceDetector:
    """One detector (and one model load attempt) per process"""
    global _face_detector
    if _face_detector is None:
        loader = ModelLoader(predictor_path=settings.PREDICTOR_PATH or None)
        _face_detector = FaceDetector(loader=loader)
    return _face_detector


def device_monitor_factory(machine: ExamSessionMachine) -> List[Any]:
    """Local camera + microphone monitors reporting into the machine"""
    audio_detector = AudioDetector(fft_size=settings.AUDIO_FFT_SIZE)

    return [
        vision_monitor(
            capture_factory=lambda: CameraCapture(
                settings.CAMERA_INDEX, settings.FRAME_WIDTH, settings.FRAME_HEIGHT
            ),
            analyzer=_shared_face_detector().detect_faces,
            on_violation=machine.record_violation,
            period=settings.VISION_PERIOD_SECONDS,
            left_threshold=settings.GAZE_LEFT_RATIO,
            right_threshold=settings.GAZE_RIGHT_RATIO
        ),
        audio_monitor(
            capture_factory=lambda: MicrophoneCapture(
                settings.AUDIO_SAMPLE_RATE, settings.AUDIO_CHUNK_SIZE
            ),
            analyzer=audio_detector.sample_loudness,
            on_violation=machine.record_violation,
            period=settings.AUDIO_PERIOD_SECONDS,
            threshold=settings.AUDIO_LEVEL_THRESHOLD
        ),
    ]


async def _get_session_store():
    """Configured store, or a SQL store on DATABASE_URL with its schema created"""
    global _session_store
    if _session_store is None:
        store = SqlSessionStore(
            settings.DATABASE_URL,
            retry_attempts=settings.PERSISTENCE_RETRY_ATTEMPTS,
            retry_delay=settings.PERSISTENCE_RETRY_DELAY
        )
        await asyncio.to_thread(store.init_schema)
        if _session_store is None:
            _session_store = store
    return _session_store


def _get_question_source():
    global _question_source
    if _question_source is None:
        _question_source = SqlQuestionSource(
            settings.DATABASE_URL,
            retry_attempts=settings.PERSISTENCE_RETRY_ATTEMPTS,
            retry_delay=settings.PERSISTENCE_RETRY_DELAY
        )
    return _question_source


async def _collaborators():
    global _monitor_factory

    session_store = await _get_session_store()
    question_source = _get_question_source()

    if _monitor_factory is None and settings.MONITORING_ENABLED:
        _monitor_factory = device_monitor_factory

    return question_source, session_store, _monitor_factory


def _get_exam(exam_id: str) -> ExamSessionMachine:
    machine = _exams.get(exam_id)
    if machine is None:
        raise HTTPException(status_code=404, detail="Exam not found")
    return machine


async def _find_record(session_id: str) -> Dict[str, Any]:
    """Stored session record, for exams no longer in the registry"""
    store = await _get_session_store()
    try:
        record = await store.find_session(session_id)
    except PersistenceError as e:
        logger.error(f"Failed to load session {session_id}: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    if record is None:
        raise HTTPException(status_code=404, detail="Exam not found")
    return record


def _stored_result(record: Dict[str, Any]) -> Dict[str, Any]:
    summary = record.get("result")
    if record["status"] != "completed" or summary is None:
        raise HTTPException(status_code=409, detail="Exam has no stored result")
    return {
        "session_id": record["id"],
        "status": record["status"],
        "started_at": record["started_at"],
        "ended_at": record["ended_at"],
        **summary,
        "percentage": score_percentage(summary["score"], summary["max_score"]),
        "violations": record["violations"],
    }


async def _evict_when_complete(exam_id: str, machine: ExamSessionMachine):
    """Drop a completed exam from the registry after a grace period"""
    await machine.wait_completed()
    await asyncio.sleep(settings.COMPLETED_EXAM_TTL_SECONDS)

    if _exams.get(exam_id) is machine:
        del _exams[exam_id]
        logger.info(f"Cleaned up exam: {exam_id}")


def _schedule_eviction(exam_id: str, machine: ExamSessionMachine):
    task = asyncio.get_running_loop().create_task(_evict_when_complete(exam_id, machine))
    _cleanup_tasks.add(task)
    task.add_done_callback(_cleanup_tasks.discard)


# ============== Request/Response Models ==============

class StartExamRequest(BaseModel):
    """Request to start an exam"""
    user_id: str = Field(..., min_length=1, description="ID of the student")
    duration_seconds: Optional[int] = Field(None, ge=0, description="Override exam duration")


class StartExamResponse(BaseModel):
    """Response after starting an exam"""
    exam_id: str
    state: str
    remaining_seconds: int
    total_questions: int
    message: str


class AnswerRequest(BaseModel):
    question_id: str
    option: str


class AnswerResponse(BaseModel):
    accepted: bool
    answered: int


class MarkRequest(BaseModel):
    index: Optional[int] = Field(None, description="Question index (defaults to current)")


class MarkResponse(BaseModel):
    index: int
    marked: bool


class NavigateRequest(BaseModel):
    index: Optional[int] = None
    direction: Optional[Literal["next", "previous"]] = None


class NavigateResponse(BaseModel):
    current_index: int


class ViolationResponse(BaseModel):
    kind: str
    description: str
    monotonic: float
    timestamp: str


# ============== API Endpoints ==============

@router.get("/health")
async def health_check():
    """Health check for exam module"""
    return {
        "status": "healthy",
        "active_exams": sum(1 for m in _exams.values() if m.state.value == "active"),
        "module": "exam"
    }


@router.get("/models-status")
async def get_models_status():
    """Check which face models are available"""
    return check_models()


@router.get("/sessions")
async def list_sessions(
    limit: int = Query(50, ge=1, le=500, description="Maximum sessions to return"),
    user_id: Optional[str] = Query(None, description="Only sessions of this student")
):
    """
    Stored exam sessions, most recent first, each with its violation log.

    Served from the session store, so sessions of earlier processes are
    included.
    """
    store = await _get_session_store()
    try:
        sessions = await store.list_sessions(limit=limit, user_id=user_id)
    except PersistenceError as e:
        logger.error(f"Failed to list sessions: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    return {"sessions": sessions, "count": len(sessions)}


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    """One stored session with its violation log and stored result"""
    return await _find_record(session_id)


@router.post("/start", response_model=StartExamResponse)
async def start_exam(request: StartExamRequest):
    """
    Start a new exam session.

    Loads the question snapshot, creates the session record, and starts
    the countdown and sensor monitoring.
    """
    question_source, session_store, monitor_factory = await _collaborators()

    machine = ExamSessionMachine(
        user_id=request.user_id,
        question_source=question_source,
        session_store=session_store,
        monitor_factory=monitor_factory,
        duration_seconds=(
            request.duration_seconds
            if request.duration_seconds is not None
            else settings.EXAM_DURATION_SECONDS
        ),
        question_limit=settings.QUESTION_LIMIT
    )

    try:
        session = await machine.start()
    except QuestionLoadError as e:
        logger.error(f"Failed to load questions: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    except SessionCreateError as e:
        logger.error(f"Failed to start exam session: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    _exams[session.id] = machine
    _schedule_eviction(session.id, machine)

    return StartExamResponse(
        exam_id=session.id,
        state=machine.state.value,
        remaining_seconds=machine.remaining_seconds,
        total_questions=len(machine.questions),
        message="Exam started; your session is being monitored"
    )


@router.get("/{exam_id}")
async def get_exam(exam_id: str):
    """Current exam snapshot"""
    return _get_exam(exam_id).snapshot()


@router.post("/{exam_id}/answer", response_model=AnswerResponse)
async def answer_question(exam_id: str, request: AnswerRequest):
    machine = _get_exam(exam_id)
    try:
        accepted = machine.answer(request.question_id, request.option)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return AnswerResponse(accepted=accepted, answered=len(machine.answers))


@router.post("/{exam_id}/mark", response_model=MarkResponse)
async def toggle_mark(exam_id: str, request: MarkRequest):
    machine = _get_exam(exam_id)
    index = request.index if request.index is not None else machine.current_index
    try:
        marked = machine.toggle_mark(index)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return MarkResponse(index=index, marked=marked)


@router.post("/{exam_id}/navigate", response_model=NavigateResponse)
async def navigate(exam_id: str, request: NavigateRequest):
    machine = _get_exam(exam_id)
    try:
        if request.direction == "next":
            index = machine.next_question()
        elif request.direction == "previous":
            index = machine.previous_question()
        elif request.index is not None:
            index = machine.navigate(request.index)
        else:
            raise HTTPException(status_code=422, detail="Provide index or direction")
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return NavigateResponse(current_index=index)


@router.post("/{exam_id}/submit")
async def submit_exam(exam_id: str):
    """
    Submit the exam. Submitting an already completed exam returns the
    existing result.
    """
    machine = _exams.get(exam_id)
    if machine is None:
        return _stored_result(await _find_record(exam_id))

    result = await machine.submit(trigger="user")
    return {
        **result.to_dict(),
        "submit_trigger": machine.submit_trigger,
        "persistence_errors": list(machine.persistence_errors)
    }


@router.get("/{exam_id}/violations", response_model=List[ViolationResponse])
async def get_violations(exam_id: str):
    machine = _exams.get(exam_id)
    if machine is None:
        record = await _find_record(exam_id)
        return [ViolationResponse(**v) for v in record["violations"]]
    return [ViolationResponse(**v.to_dict()) for v in machine.violations]


@router.get("/{exam_id}/result")
async def get_result(exam_id: str):
    machine = _exams.get(exam_id)
    if machine is None:
        return _stored_result(await _find_record(exam_id))
    try:
        result = machine.result()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return result.to_dict()


async def shutdown_exams():
    """Release timers and devices of every tracked exam"""
    for task in list(_cleanup_tasks):
        task.cancel()
    _cleanup_tasks.clear()

    for machine in list(_exams.values()):
        try:
            await machine.close()
        except Exception as e:
            logger.warning(f"Error closing exam {machine.session.id if machine.session else '?'}: {e}")
