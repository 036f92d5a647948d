#!/usr/bin/env python3
"""
Question bank seed script for XhoraProc
Creates the exam tables and loads questions into exam_questions.

Usage:
    python -m xhoraproc.seed                 # built-in sample questions
    python -m xhoraproc.seed questions.json  # list of question objects
"""
import json
import sys
import logging
from typing import Any, Dict, List

from .config import settings
from .exam.models import Question
from .exam.stores import SqlQuestionSource, SqlSessionStore
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

SAMPLE_QUESTIONS: List[Dict[str, Any]] = [
    {
        "id": "math-001",
        "prompt": "What is 12 x 8?",
        "options": ["86", "96", "106", "112"],
        "correct_answer": "96",
        "difficulty": "easy",
        "subject": "Mathematics",
        "points": 1,
    },
    {
        "id": "math-002",
        "prompt": "What is the derivative of x^2?",
        "options": ["x", "2x", "x^2", "2"],
        "correct_answer": "2x",
        "difficulty": "medium",
        "subject": "Mathematics",
        "points": 2,
    },
    {
        "id": "phys-001",
        "prompt": "What is the SI unit of force?",
        "options": ["Joule", "Watt", "Newton", "Pascal"],
        "correct_answer": "Newton",
        "difficulty": "easy",
        "subject": "Physics",
        "points": 1,
    },
    {
        "id": "chem-001",
        "prompt": "Which element has the atomic number 6?",
        "options": ["Oxygen", "Carbon", "Nitrogen", "Helium"],
        "correct_answer": "Carbon",
        "difficulty": "easy",
        "subject": "Chemistry",
        "points": 1,
    },
    {
        "id": "cs-001",
        "prompt": "What is the time complexity of binary search?",
        "options": ["O(1)", "O(n)", "O(log n)", "O(n log n)"],
        "correct_answer": "O(log n)",
        "difficulty": "medium",
        "subject": "Computer Science",
        "points": 2,
    },
    {
        "id": "cs-002",
        "prompt": "Which data structure gives FIFO ordering?",
        "options": ["Stack", "Queue", "Heap", "Tree"],
        "correct_answer": "Queue",
        "difficulty": "hard",
        "subject": "Computer Science",
        "points": 3,
    },
]


def load_questions(path: str) -> List[Question]:
    """Read a JSON list of question objects"""
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    return [Question(**item) for item in raw]


def seed(db_url: str, questions: List[Question]) -> int:
    """
    Create the schema and insert questions into an empty bank.

    Returns:
        Number of questions inserted (0 if the bank was already seeded)
    """
    schema = SqlSessionStore(db_url)
    schema.init_schema()
    schema.dispose()
    source = SqlQuestionSource(db_url)

    try:
        existing = source.count_questions()
        if existing:
            logger.warning(f"Question bank already has {existing} questions. Skipping...")
            return 0

        for question in questions:
            source.add_question(question)
        logger.info(f"Seeded {len(questions)} questions into {db_url}")
        return len(questions)
    finally:
        source.dispose()


def main(argv: List[str] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    setup_logging(service_name="xhoraproc-seed", level=settings.LOG_LEVEL, log_to_file=False)

    if argv:
        questions = load_questions(argv[0])
    else:
        questions = [Question(**item) for item in SAMPLE_QUESTIONS]

    seed(settings.DATABASE_URL, questions)
    return 0


if __name__ == "__main__":
    sys.exit(main())
