"""
Tests for the question sources and session stores
"""

import json

import pytest
from sqlalchemy import text

from conftest import make_questions
from xhoraproc.exam.errors import PersistenceError, QuestionLoadError
from xhoraproc.exam.models import ExamResult, SessionStatus, Violation, ViolationKind, utcnow
from xhoraproc.exam.stores import (
    InMemoryQuestionBank,
    InMemorySessionStore,
    SqlQuestionSource,
    SqlSessionStore,
    _parse_options,
)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'exam.db'}"


@pytest.fixture
def sql_store(db_url):
    store = SqlSessionStore(db_url, retry_attempts=2, retry_delay=0)
    store.init_schema()
    yield store
    store.dispose()


@pytest.fixture
def sql_questions(db_url, sql_store):
    source = SqlQuestionSource(db_url, retry_attempts=2, retry_delay=0)
    yield source
    source.dispose()


class TestInMemoryStores:
    """Tests for the in-memory collaborators"""

    @pytest.mark.asyncio
    async def test_question_bank_limit(self):
        """Test the bank serves the first questions in order"""
        extra, *rest = make_questions(5)
        bank = InMemoryQuestionBank(rest)
        bank.add(extra)

        questions = await bank.fetch_questions(3)

        assert [q.id for q in questions] == ["q1", "q2", "q3"]
        assert len(await bank.fetch_questions(10)) == 5
        with pytest.raises(QuestionLoadError):
            await bank.fetch_questions(-1)

    @pytest.mark.asyncio
    async def test_session_lifecycle(self):
        """Test create, append and complete"""
        store = InMemorySessionStore()
        session_id = await store.create_session("student-1")

        await store.append_violation(session_id, Violation(ViolationKind.NO_FACE, "No face detected"))
        await store.complete_session(session_id, utcnow())

        record = store.get(session_id)
        assert record["status"] == "completed"
        assert record["ended_at"] is not None
        assert record["violations"][0]["kind"] == "no_face"

    @pytest.mark.asyncio
    async def test_list_and_find_sessions(self):
        """Test stored records can be looked up and listed per user"""
        store = InMemorySessionStore()
        first = await store.create_session("student-1")
        second = await store.create_session("student-2")

        assert (await store.find_session(first))["user_id"] == "student-1"
        assert await store.find_session("missing") is None
        assert {r["id"] for r in await store.list_sessions()} == {first, second}
        assert [r["id"] for r in await store.list_sessions(user_id="student-2")] == [second]

    @pytest.mark.asyncio
    async def test_rejects_bad_input(self):
        store = InMemorySessionStore()

        with pytest.raises(PersistenceError):
            await store.create_session("")
        with pytest.raises(PersistenceError):
            await store.append_violation("missing", Violation(ViolationKind.NO_FACE, "No face detected"))
        assert store.get("missing") is None


class TestSqlSessionStore:
    """Tests for SqlSessionStore on a SQLite file"""

    @pytest.mark.asyncio
    async def test_create_session(self, sql_store):
        session_id = await sql_store.create_session("student-1")

        record = sql_store.get_session(session_id)
        assert record["user_id"] == "student-1"
        assert record["status"] == "active"
        assert record["ended_at"] is None
        assert record["violations"] == []

    @pytest.mark.asyncio
    async def test_violations_kept_in_order(self, sql_store):
        """Test violations are stored with increasing sequence numbers"""
        session_id = await sql_store.create_session("student-1")
        kinds = [ViolationKind.NO_FACE, ViolationKind.LOOKING_AWAY, ViolationKind.NO_FACE]

        for kind in kinds:
            await sql_store.append_violation(session_id, Violation(kind, kind.value))

        record = sql_store.get_session(session_id)
        assert [v["kind"] for v in record["violations"]] == [k.value for k in kinds]

    @pytest.mark.asyncio
    async def test_complete_session_once(self, sql_store):
        """Test the end time is written only once"""
        session_id = await sql_store.create_session("student-1")
        first_end = utcnow()

        await sql_store.complete_session(session_id, first_end)
        await sql_store.complete_session(session_id, utcnow())

        record = sql_store.get_session(session_id)
        assert record["status"] == "completed"
        assert record["ended_at"] == first_end.isoformat()

    @pytest.mark.asyncio
    async def test_result_stored_on_completion(self, sql_store):
        """Test the graded counts are written with the completion"""
        session_id = await sql_store.create_session("student-1")
        now = utcnow()
        result = ExamResult(
            session_id=session_id,
            status=SessionStatus.COMPLETED,
            started_at=now,
            ended_at=now,
            total_questions=5,
            answered=3,
            correct=2,
            score=4.0,
            max_score=9.0
        )

        await sql_store.complete_session(session_id, now, result)

        record = await sql_store.find_session(session_id)
        assert record["result"] == {
            "total_questions": 5,
            "answered": 3,
            "correct": 2,
            "score": 4.0,
            "max_score": 9.0,
        }

    @pytest.mark.asyncio
    async def test_list_sessions(self, sql_store):
        """Test sessions are listed newest first with their violations"""
        first = await sql_store.create_session("student-1")
        await sql_store.append_violation(first, Violation(ViolationKind.NO_FACE, "No face detected"))
        second = await sql_store.create_session("student-2")

        sessions = await sql_store.list_sessions()

        assert [s["id"] for s in sessions] == [second, first]
        assert sessions[1]["violations"][0]["kind"] == "no_face"
        assert sessions[0]["result"] is None

        only_first = await sql_store.list_sessions(user_id="student-1")
        assert [s["id"] for s in only_first] == [first]
        assert len(await sql_store.list_sessions(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_unknown_session(self, sql_store):
        with pytest.raises(PersistenceError):
            await sql_store.append_violation("missing", Violation(ViolationKind.NO_FACE, "No face detected"))
        assert sql_store.get_session("missing") is None

    @pytest.mark.asyncio
    async def test_empty_user(self, sql_store):
        with pytest.raises(PersistenceError):
            await sql_store.create_session("")

    @pytest.mark.asyncio
    async def test_missing_schema_fails_after_retries(self, tmp_path):
        """Test database errors are retried then raised as PersistenceError"""
        store = SqlSessionStore(f"sqlite:///{tmp_path / 'empty.db'}", retry_attempts=3, retry_delay=0)

        with pytest.raises(PersistenceError) as exc_info:
            await store.create_session("student-1")

        assert "create session failed" in str(exc_info.value)
        store.dispose()


class TestSqlQuestionSource:
    """Tests for SqlQuestionSource"""

    @pytest.mark.asyncio
    async def test_fetch_questions(self, sql_questions):
        """Test seeded questions come back intact and limited"""
        for question in make_questions(4):
            sql_questions.add_question(question)

        questions = await sql_questions.fetch_questions(3)

        assert len(questions) == 3
        assert questions[0].options == ("A", "B", "C", "D")
        assert questions[0].correct_answer == "A"
        assert questions[0].subject == "Mathematics"

    @pytest.mark.asyncio
    async def test_double_encoded_options(self, sql_questions):
        """Test options stored as a JSON string of an array are accepted"""
        with sql_questions.engine.begin() as conn:
            conn.execute(text("""
                INSERT INTO exam_questions
                    (id, question, options, correct_answer, difficulty, subject, points, created_at)
                VALUES ('legacy', 'Capital of France?', :options, 'Paris', 'easy', 'Geography', 1, '2024-01-01')
            """), {"options": json.dumps(json.dumps(["Paris", "Rome"]))})

        questions = await sql_questions.fetch_questions(10)

        assert questions[0].options == ("Paris", "Rome")

    @pytest.mark.asyncio
    async def test_invalid_row(self, sql_questions):
        """Test a row that cannot form a question is a load error"""
        with sql_questions.engine.begin() as conn:
            conn.execute(text("""
                INSERT INTO exam_questions
                    (id, question, options, correct_answer, difficulty, subject, points, created_at)
                VALUES ('broken', 'Pick one', '["A", "B"]', 'C', 'easy', 'General', 1, '2024-01-01')
            """))

        with pytest.raises(QuestionLoadError):
            await sql_questions.fetch_questions(10)

    @pytest.mark.asyncio
    async def test_missing_table(self, tmp_path):
        source = SqlQuestionSource(f"sqlite:///{tmp_path / 'empty.db'}", retry_attempts=1, retry_delay=0)

        with pytest.raises(QuestionLoadError):
            await source.fetch_questions(5)
        source.dispose()


class TestParseOptions:
    """Tests for _parse_options"""

    def test_formats(self):
        assert _parse_options('["A", "B"]') == ["A", "B"]
        assert _parse_options(json.dumps('["A", "B"]')) == ["A", "B"]
        assert _parse_options(["A", 2]) == ["A", "2"]

    def test_not_a_list(self):
        with pytest.raises(ValueError):
            _parse_options('{"a": 1}')


class TestSeed:
    """Tests for the question bank seed script"""

    @pytest.mark.asyncio
    async def test_seed_sample_questions(self, db_url):
        """Test seeding fills an empty bank once"""
        from xhoraproc.exam.models import Question
        from xhoraproc.seed import SAMPLE_QUESTIONS, seed

        questions = [Question(**item) for item in SAMPLE_QUESTIONS]

        assert seed(db_url, questions) == len(questions)
        assert seed(db_url, questions) == 0

        source = SqlQuestionSource(db_url)
        loaded = await source.fetch_questions(100)
        source.dispose()
        assert {q.id for q in loaded} == {item["id"] for item in SAMPLE_QUESTIONS}

    def test_load_questions(self, tmp_path):
        from xhoraproc.seed import load_questions

        path = tmp_path / "questions.json"
        path.write_text(json.dumps([{
            "id": "geo-1",
            "prompt": "Largest ocean?",
            "options": ["Atlantic", "Pacific"],
            "correct_answer": "Pacific",
            "difficulty": "easy",
            "subject": "Geography",
        }]))

        questions = load_questions(str(path))

        assert questions[0].options == ("Atlantic", "Pacific")
        assert questions[0].points == 1.0
