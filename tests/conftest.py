from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import pytest

import config
from db import database
from models.book import BookCreate, IdeaStub
from models.lesson import QuestionContent
from models.taxonomy import FACET_ORDER, QuestionType
from utils.books import register_book

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _write_test_config(config_path: Path) -> None:
    config_path.write_text(
        "\n".join(
            [
                "[curveball]",
                "delay_days = 3",
                "",
                "[review_queue]",
                "mcq_cap = 3",
                "open_cap = 1",
                "",
                "[generation]",
                "max_attempts = 2",
                "backoff_seconds = 0",
            ]
        ),
        encoding="utf-8",
    )


class Clock:
    """Settable clock handed to the services instead of utc_now."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGenerator:
    """Returns simple single-answer questions and records what it was asked for."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls: List[tuple] = []

    def generate(self, idea, count, difficulty_hint=None, facet_hint=None):
        from utils.generation import GenerationError

        self.calls.append((idea.idea_id, count, difficulty_hint, facet_hint))
        if self.failures > 0:
            self.failures -= 1
            raise GenerationError("service down")
        return [
            QuestionContent(
                text=f"Question {i + 1} about {idea.title}",
                options=["right", "wrong", "also wrong"],
                correct_indices=[0],
                question_type=QuestionType.SINGLE_ANSWER,
                facet_tag=facet_hint or FACET_ORDER[i % len(FACET_ORDER)],
            )
            for i in range(count)
        ]


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    config_dir = tmp_path / ".bookcoach"
    config_dir.mkdir()
    config_path = config_dir / "config.toml"
    _write_test_config(config_path)

    for name in ("CURVEBALL_DELAY_DAYS", "GENERATION_MAX_ATTEMPTS", "GENERATION_BACKOFF_SECONDS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config, "CONFIG_PATH", config_path)
    monkeypatch.setattr(database, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(database, "DB_PATH", config_dir / "bookcoach.db")
    return config_dir


@pytest.fixture
def conn(config_dir):
    database.init_db()
    with database.get_conn() as conn:
        yield conn


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def book(conn):
    payload = BookCreate(
        id="deep-work",
        title="Deep Work",
        ideas=[
            IdeaStub(id=f"i{n}", title=f"Idea {n}", description=f"Description of idea {n}")
            for n in range(1, 7)
        ],
    )
    return register_book(conn, payload)


def make_question(conn, question_id: str, idea_id: str, facet, difficulty, question_type=QuestionType.SINGLE_ANSWER,
                  text: Optional[str] = None, book_id: str = "deep-work", category=None):
    from models.lesson import Question, QuestionCategory
    from utils.questions import save_questions

    question = Question(
        id=question_id,
        idea_id=idea_id,
        book_id=book_id,
        question_type=question_type,
        difficulty=difficulty,
        facet_tag=facet,
        text=text or f"Which option best shows {facet.value} for {idea_id}?",
        options=None if question_type is QuestionType.OPEN_RESPONSE else ["a", "b", "c"],
        correct_indices=None if question_type is QuestionType.OPEN_RESPONSE else [0],
        category=category or QuestionCategory.NEW,
        created_at=START,
    )
    save_questions(conn, [question])
    return question


@pytest.fixture
def add_question(conn):
    def _add(question_id, idea_id, facet, difficulty, **kwargs):
        return make_question(conn, question_id, idea_id, facet, difficulty, **kwargs)
    return _add


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def failing_generator():
    return FakeGenerator(failures=100)
