from __future__ import annotations

from concurrent.futures import Future
from typing import Dict, List, Optional, Tuple

import pytest

from quizbank.config import settings
from quizbank.database import init_db
from quizbank.models import Progress, Question
from quizbank.progress import LocalProgressStore, ProgressStore, RemoteProgressMirror
from quizbank.questions import QuestionSource
from quizbank.session import QuizSession


def make_question(
    qid: int,
    year: int = 2023,
    answer: str = "A",
    tags: Optional[List[str]] = None,
    explanation: str = "",
) -> Question:
    return Question(
        id=str(qid),
        year=year,
        text=f"Question {qid}?",
        options={"A": "alpha", "B": "beta", "C": "gamma", "D": "delta"},
        correct_answer=answer,
        explanation=explanation,
        tags=tags if tags is not None else ["haryanamo"],
    )


class StaticSource(QuestionSource):
    """Question source serving an in-memory list instead of the sheet."""

    def __init__(self, questions: List[Question]):
        super().__init__("")
        self.questions = questions

    def get_questions(self, force_refresh: bool = False) -> List[Question]:
        return self.questions


class MemoryMirror(RemoteProgressMirror):
    def __init__(self) -> None:
        self.entries: Dict[Tuple[str, str], Progress] = {}
        self.fail_puts = False
        self.fail_gets = False

    def get(self, identity: str, key: str) -> Optional[Progress]:
        if self.fail_gets:
            raise ConnectionError("remote down")
        return self.entries.get((identity, key))

    def put(self, identity: str, key: str, progress: Progress) -> None:
        if self.fail_puts:
            raise ConnectionError("remote down")
        self.entries[(identity, key)] = progress


class InlineExecutor:
    """Runs submitted work immediately so mirror writes are observable."""

    def submit(self, fn, *args, **kwargs) -> Future:
        future: Future = Future()
        future.set_result(fn(*args, **kwargs))
        return future


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db_path(tmp_path, monkeypatch) -> str:
    monkeypatch.setattr(settings, "DB_DIR", str(tmp_path / "db"))
    path = str(tmp_path / "db" / settings.DB_FILE)
    init_db(path)
    return path


@pytest.fixture
def questions() -> List[Question]:
    return [make_question(i, answer="ABCD"[i % 4]) for i in range(1, 6)]


@pytest.fixture
def mirror() -> MemoryMirror:
    return MemoryMirror()


@pytest.fixture
def store(db_path) -> ProgressStore:
    return ProgressStore(LocalProgressStore("client-1", db_path), executor=InlineExecutor())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session(questions, store, clock) -> QuizSession:
    return QuizSession(StaticSource(questions), store, clock=clock)
