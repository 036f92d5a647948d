"""
Pytest Configuration for XhoraProc Tests

Provides fake capture devices, scripted face detections and a session
store with switchable failures, so the exam and monitoring pipeline
can run without a camera, microphone or face model.
"""
import asyncio
import time
from typing import List, Optional

import numpy as np
import pytest

from xhoraproc.exam.errors import DeviceUnavailable, PersistenceError
from xhoraproc.exam.models import Question
from xhoraproc.exam.stores import InMemoryQuestionBank, InMemorySessionStore
from xhoraproc.proctor.detectors.face_detector import FaceDetection


def make_landmarks(direction: str = "center") -> np.ndarray:
    """
    68-point landmarks whose eye widths produce the requested gaze.

    center: ratio 1.0, left: ratio ~1.33, right: ratio ~0.67
    """
    left_width = {"center": 30, "left": 40, "right": 20}[direction]
    right_width = 30

    points = np.zeros((68, 2))
    points[36] = [100, 100]
    points[39] = [100 + left_width, 100]
    points[42] = [200, 100]
    points[45] = [200 + right_width, 100]
    return points


def face(direction: str = "center", confidence: float = 0.9) -> FaceDetection:
    return FaceDetection(
        bbox=(80, 60, 200, 200),
        landmarks=make_landmarks(direction),
        confidence=confidence
    )


def make_questions(count: int = 5) -> List[Question]:
    return [
        Question(
            id=f"q{i}",
            prompt=f"Question {i}?",
            options=["A", "B", "C", "D"],
            correct_answer="A",
            difficulty=["easy", "medium", "hard"][i % 3],
            subject="Mathematics",
            points=float(i % 3 + 1)
        )
        for i in range(count)
    ]


class FakeCapture:
    """
    Scripted capture device.

    Returns each frame once, then blocks until cancelled. Records
    whether it was opened and released.
    """

    def __init__(
        self,
        frames=None,
        fail_on_open: bool = False,
        fail_on_read_after: Optional[int] = None,
        read_error: Optional[Exception] = None
    ):
        self.frames = list(frames or [])
        self.fail_on_open = fail_on_open
        self.fail_on_read_after = fail_on_read_after
        self.read_error = read_error
        self.opened = False
        self.released = False
        self.reads = 0

    async def __aenter__(self):
        if self.fail_on_open:
            raise DeviceUnavailable("Permission denied")
        self.opened = True
        return self

    async def read(self):
        if self.fail_on_read_after is not None and self.reads >= self.fail_on_read_after:
            raise self.read_error or DeviceUnavailable("Device unplugged")
        if self.reads < len(self.frames):
            frame = self.frames[self.reads]
            self.reads += 1
            await asyncio.sleep(0)
            return frame
        await asyncio.Event().wait()

    async def __aexit__(self, exc_type, exc, tb):
        self.released = True
        return False


class FlakyStore(InMemorySessionStore):
    """In-memory store whose operations can be made to fail"""

    def __init__(self):
        super().__init__()
        self.fail_create = False
        self.fail_append = False
        self.fail_complete = False
        self.complete_calls = 0
        self.append_calls = 0

    async def create_session(self, user_id: str) -> str:
        if self.fail_create:
            raise PersistenceError("authentication failed")
        return await super().create_session(user_id)

    async def append_violation(self, session_id, violation):
        self.append_calls += 1
        if self.fail_append:
            raise PersistenceError("database unavailable")
        await super().append_violation(session_id, violation)

    async def complete_session(self, session_id, ended_at, result=None):
        self.complete_calls += 1
        # Yield so concurrent submits can interleave here
        await asyncio.sleep(0.01)
        if self.fail_complete:
            raise PersistenceError("database unavailable")
        await super().complete_session(session_id, ended_at, result)


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005):
    """Poll predicate until it is true or the timeout expires"""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def questions():
    return make_questions(5)


@pytest.fixture
def question_bank(questions):
    return InMemoryQuestionBank(questions)


@pytest.fixture
def store():
    return FlakyStore()
