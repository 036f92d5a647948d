"""
Exam Stores - Question source and session store collaborators

Provides:
- QuestionSource / SessionStore protocols the state machine depends on
- In-memory implementations (default wiring and tests)
- SQL implementations over SQLAlchemy using raw SQL

Blocking database calls are pushed off the event loop with
asyncio.to_thread so sampling loops keep running during writes.
"""

import json
import time
import uuid
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from .errors import PersistenceError, QuestionLoadError
from .models import ExamResult, Question, SessionStatus, Violation, utcnow

logger = logging.getLogger(__name__)


class QuestionSource(Protocol):
    async def fetch_questions(self, limit: int) -> List[Question]:
        ...


class SessionStore(Protocol):
    async def create_session(self, user_id: str) -> str:
        ...

    async def append_violation(self, session_id: str, violation: Violation) -> None:
        ...

    async def complete_session(
        self, session_id: str, ended_at: datetime, result: Optional[ExamResult] = None
    ) -> None:
        ...

    async def find_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def list_sessions(self, limit: int = 50, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        ...


# ============================================================================
# In-memory implementations
# ============================================================================

class InMemoryQuestionBank:
    """Fixed list of questions served in insertion order"""

    def __init__(self, questions: Optional[Sequence[Question]] = None):
        self._questions: List[Question] = list(questions or [])

    def add(self, question: Question):
        self._questions.append(question)

    async def fetch_questions(self, limit: int) -> List[Question]:
        if limit < 0:
            raise QuestionLoadError("limit must be >= 0")
        return list(self._questions[:limit])


class InMemorySessionStore:
    """Process-local session store"""

    def __init__(self):
        self._sessions: Dict[str, Dict[str, Any]] = {}

    async def create_session(self, user_id: str) -> str:
        if not user_id:
            raise PersistenceError("user_id is required to create a session")
        session_id = str(uuid.uuid4())
        self._sessions[session_id] = {
            "id": session_id,
            "user_id": user_id,
            "status": SessionStatus.ACTIVE.value,
            "started_at": utcnow(),
            "ended_at": None,
            "result": None,
            "violations": [],
        }
        return session_id

    async def append_violation(self, session_id: str, violation: Violation) -> None:
        record = self._get(session_id)
        record["violations"].append(violation.to_dict())

    async def complete_session(
        self, session_id: str, ended_at: datetime, result: Optional[ExamResult] = None
    ) -> None:
        record = self._get(session_id)
        if record["ended_at"] is not None:
            return
        record["status"] = SessionStatus.COMPLETED.value
        record["ended_at"] = ended_at
        if result is not None:
            record["result"] = result.grade_summary()

    async def find_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.get(session_id)

    async def list_sessions(self, limit: int = 50, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        records = [
            r for r in self._sessions.values()
            if user_id is None or r["user_id"] == user_id
        ]
        records.sort(key=lambda r: r["started_at"], reverse=True)
        return [self.get(r["id"]) for r in records[:max(0, limit)]]

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        record = self._sessions.get(session_id)
        if record is None:
            return None
        return {**record, "violations": list(record["violations"])}

    def _get(self, session_id: str) -> Dict[str, Any]:
        record = self._sessions.get(session_id)
        if record is None:
            raise PersistenceError(f"Unknown session: {session_id}")
        return record


# ============================================================================
# SQL implementations
# ============================================================================

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS exam_questions (
        id VARCHAR(64) PRIMARY KEY,
        question TEXT NOT NULL,
        options TEXT NOT NULL,
        correct_answer TEXT NOT NULL,
        difficulty VARCHAR(16) NOT NULL,
        subject VARCHAR(128) NOT NULL,
        points REAL NOT NULL DEFAULT 1,
        created_at VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS exam_sessions (
        id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(64) NOT NULL,
        status VARCHAR(16) NOT NULL DEFAULT 'active',
        started_at VARCHAR(40) NOT NULL,
        ended_at VARCHAR(40),
        total_questions INTEGER,
        answered INTEGER,
        correct INTEGER,
        score REAL,
        max_score REAL,
        created_at VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS exam_violations (
        session_id VARCHAR(64) NOT NULL,
        seq INTEGER NOT NULL,
        kind VARCHAR(32) NOT NULL,
        description TEXT NOT NULL,
        monotonic REAL NOT NULL,
        occurred_at VARCHAR(40) NOT NULL,
        PRIMARY KEY (session_id, seq)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_exam_sessions_user_id ON exam_sessions(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_exam_sessions_status ON exam_sessions(status)",
]


class _SqlRepository:
    """Shared engine handling and bounded retry for the SQL stores"""

    def __init__(self, db_url: str, retry_attempts: int = 3, retry_delay: float = 0.1):
        self.db_url = db_url
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self._engine = None

    @property
    def engine(self):
        """Lazy load engine"""
        if self._engine is None:
            self._engine = create_engine(self.db_url)
        return self._engine

    def init_schema(self):
        """Create tables if they do not exist"""
        with self.engine.begin() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(text(statement))

    def dispose(self):
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def _execute_with_retry(self, func, description: str):
        """
        Run func(conn) inside a transaction, retrying transient errors.

        Raises:
            PersistenceError: If every attempt fails
        """
        last_error = None

        for attempt in range(self.retry_attempts):
            try:
                with self.engine.begin() as conn:
                    return func(conn)
            except SQLAlchemyError as e:
                last_error = e
                if attempt < self.retry_attempts - 1:
                    logger.warning(
                        f"[DB] {description} failed, retrying "
                        f"(attempt {attempt + 1}/{self.retry_attempts}): {e}"
                    )
                    time.sleep(self.retry_delay)

        logger.error(f"[DB] {description} failed after {self.retry_attempts} attempts: {last_error}")
        raise PersistenceError(f"{description} failed: {last_error}") from last_error


class SqlSessionStore(_SqlRepository):
    """Session store backed by exam_sessions / exam_violations tables"""

    async def create_session(self, user_id: str) -> str:
        if not user_id:
            raise PersistenceError("user_id is required to create a session")
        return await asyncio.to_thread(self._create_session, user_id)

    async def append_violation(self, session_id: str, violation: Violation) -> None:
        await asyncio.to_thread(self._append_violation, session_id, violation)

    async def complete_session(
        self, session_id: str, ended_at: datetime, result: Optional[ExamResult] = None
    ) -> None:
        await asyncio.to_thread(self._complete_session, session_id, ended_at, result)

    async def find_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self.get_session, session_id)

    async def list_sessions(self, limit: int = 50, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._list_sessions, limit, user_id)

    def _create_session(self, user_id: str) -> str:
        session_id = str(uuid.uuid4())
        now = utcnow().isoformat()

        def _insert(conn):
            conn.execute(text("""
                INSERT INTO exam_sessions (id, user_id, status, started_at, ended_at, created_at)
                VALUES (:id, :user_id, :status, :started_at, NULL, :created_at)
            """), {
                "id": session_id,
                "user_id": user_id,
                "status": SessionStatus.ACTIVE.value,
                "started_at": now,
                "created_at": now
            })
            return session_id

        result = self._execute_with_retry(_insert, "create session")
        logger.info(f"[DB] Created exam session: {session_id[:8]}...")
        return result

    def _append_violation(self, session_id: str, violation: Violation):
        def _insert(conn):
            exists = conn.execute(
                text("SELECT 1 FROM exam_sessions WHERE id = :id"),
                {"id": session_id}
            ).fetchone()
            if not exists:
                raise PersistenceError(f"Unknown session: {session_id}")

            seq = conn.execute(
                text("SELECT COALESCE(MAX(seq), 0) + 1 FROM exam_violations WHERE session_id = :id"),
                {"id": session_id}
            ).scalar()
            conn.execute(text("""
                INSERT INTO exam_violations (session_id, seq, kind, description, monotonic, occurred_at)
                VALUES (:session_id, :seq, :kind, :description, :monotonic, :occurred_at)
            """), {
                "session_id": session_id,
                "seq": seq,
                "kind": violation.kind.value,
                "description": violation.description,
                "monotonic": violation.monotonic,
                "occurred_at": violation.occurred_at.isoformat()
            })

        self._execute_with_retry(_insert, "append violation")

    def _complete_session(self, session_id: str, ended_at: datetime, result: Optional[ExamResult]):
        summary = result.grade_summary() if result is not None else {
            "total_questions": None,
            "answered": None,
            "correct": None,
            "score": None,
            "max_score": None,
        }

        def _update(conn):
            updated = conn.execute(text("""
                UPDATE exam_sessions
                SET status = :status, ended_at = :ended_at,
                    total_questions = :total_questions, answered = :answered,
                    correct = :correct, score = :score, max_score = :max_score
                WHERE id = :id AND ended_at IS NULL
            """), {
                "id": session_id,
                "status": SessionStatus.COMPLETED.value,
                "ended_at": ended_at.isoformat(),
                **summary
            })
            if updated.rowcount == 0:
                logger.warning(f"[DB] Session {session_id[:8]}... missing or already completed")

        self._execute_with_retry(_update, "complete session")

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """
        Load a session record with its ordered violations.

        Returns:
            Session dict or None
        """
        def _select(conn):
            row = conn.execute(
                text(f"SELECT {_SESSION_COLUMNS} FROM exam_sessions WHERE id = :id"),
                {"id": session_id}
            ).fetchone()
            if row is None:
                return None
            return _session_record(conn, row)

        return self._execute_with_retry(_select, "load session")

    def _list_sessions(self, limit: int, user_id: Optional[str]) -> List[Dict[str, Any]]:
        """Most recent sessions first, each with its ordered violations"""
        params = {"limit": max(0, limit)}
        where = ""
        if user_id:
            where = "WHERE user_id = :user_id"
            params["user_id"] = user_id

        def _select(conn):
            rows = conn.execute(text(f"""
                SELECT {_SESSION_COLUMNS} FROM exam_sessions {where}
                ORDER BY started_at DESC, id LIMIT :limit
            """), params).fetchall()
            return [_session_record(conn, row) for row in rows]

        return self._execute_with_retry(_select, "list sessions")


_SESSION_COLUMNS = (
    "id, user_id, status, started_at, ended_at, "
    "total_questions, answered, correct, score, max_score"
)


def _session_record(conn, row) -> Dict[str, Any]:
    violations = conn.execute(text("""
        SELECT kind, description, monotonic, occurred_at
        FROM exam_violations WHERE session_id = :id ORDER BY seq
    """), {"id": row[0]}).fetchall()

    result = None
    if row[8] is not None:
        result = {
            "total_questions": row[5],
            "answered": row[6],
            "correct": row[7],
            "score": row[8],
            "max_score": row[9],
        }

    return {
        "id": row[0],
        "user_id": row[1],
        "status": row[2],
        "started_at": row[3],
        "ended_at": row[4],
        "result": result,
        "violations": [
            {"kind": v[0], "description": v[1], "monotonic": v[2], "timestamp": v[3]}
            for v in violations
        ]
    }


def _parse_options(raw) -> List[str]:
    """Options may be stored as a JSON array or as a JSON-encoded string of one"""
    value = raw
    for _ in range(2):
        if isinstance(value, str):
            value = json.loads(value)
    if not isinstance(value, list):
        raise ValueError(f"options must be a list, got {type(value).__name__}")
    return [str(option) for option in value]


class SqlQuestionSource(_SqlRepository):
    """Question source reading the exam_questions table"""

    async def fetch_questions(self, limit: int) -> List[Question]:
        try:
            return await asyncio.to_thread(self._fetch, limit)
        except (PersistenceError, ValueError, KeyError) as e:
            raise QuestionLoadError(f"Failed to load questions: {e}") from e

    def _fetch(self, limit: int) -> List[Question]:
        def _select(conn):
            return conn.execute(text("""
                SELECT id, question, options, correct_answer, difficulty, subject, points
                FROM exam_questions ORDER BY created_at, id LIMIT :limit
            """), {"limit": limit}).fetchall()

        rows = self._execute_with_retry(_select, "fetch questions")
        return [
            Question(
                id=str(row[0]),
                prompt=row[1],
                options=_parse_options(row[2]),
                correct_answer=row[3],
                difficulty=row[4],
                subject=row[5],
                points=float(row[6] if row[6] is not None else 1)
            )
            for row in rows
        ]

    def count_questions(self) -> int:
        return self._execute_with_retry(
            lambda conn: conn.execute(text("SELECT COUNT(*) FROM exam_questions")).scalar(),
            "count questions"
        )

    def add_question(self, question: Question):
        """Insert a question (seeding and tests)"""
        def _insert(conn):
            conn.execute(text("""
                INSERT INTO exam_questions
                    (id, question, options, correct_answer, difficulty, subject, points, created_at)
                VALUES (:id, :question, :options, :correct_answer, :difficulty, :subject, :points, :created_at)
            """), {
                "id": question.id,
                "question": question.prompt,
                "options": json.dumps(list(question.options)),
                "correct_answer": question.correct_answer,
                "difficulty": question.difficulty.value,
                "subject": question.subject,
                "points": question.points,
                "created_at": utcnow().isoformat()
            })

        self._execute_with_retry(_insert, "add question")
