"""
Quiz session state machine.

A ``QuizSession`` moves through ``IDLE -> MODE_SELECTED -> IN_PROGRESS ->
COMPLETED``. Every transition is a plain method call; renderers subscribe
with :meth:`QuizSession.subscribe` and are notified after each change.
"""

import logging
import random
import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from . import catalogue
from .bookmarks import BookmarkStore
from .config import settings
from .errors import EmptySetError, InvalidAnswerError, InvalidSessionStateError
from .extractor import clean_explanation
from .models import (
    AnswerRecord,
    NavigatorEntry,
    Progress,
    Question,
    QuizMode,
    Selection,
    SessionResult,
)
from .progress import ProgressStore
from .questions import QuestionSource
from .testmode import TestModeController

logger = logging.getLogger(__name__)

Listener = Callable[["QuizSession"], None]


class SessionState(str, Enum):
    IDLE = "idle"
    MODE_SELECTED = "mode_selected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def performance_message(percentage: float) -> str:
    if percentage >= 80:
        return "Outstanding! You're a pro!"
    if percentage >= 50:
        return "Good job! Keep practicing."
    return "Keep studying, you'll get there!"


class QuizSession:
    def __init__(
        self,
        source: QuestionSource,
        store: ProgressStore,
        bookmarks: Optional[BookmarkStore] = None,
        set_size: int = settings.SET_SIZE,
        shuffle_size: int = settings.SHUFFLE_SIZE,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.source = source
        self.store = store
        self.bookmarks = bookmarks
        self.set_size = set_size
        self.shuffle_size = shuffle_size
        self.clock = clock
        self.rng = rng or random.Random()

        self.state = SessionState.IDLE
        self.mode: Optional[QuizMode] = None
        self.tag: Optional[str] = None
        self.questions: List[Question] = []
        self.current_index = 0
        self.score = 0
        self.user_answers: Dict[int, str] = {}
        self.session_key: Optional[str] = None
        self.pending_resume: Optional[Progress] = None
        self.test: Optional[TestModeController] = None
        self.created_at = datetime.now()
        self._listeners: List[Listener] = []

    # --- Observers ---
    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in self._listeners:
            listener(self)

    # --- Guards ---
    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            raise InvalidSessionStateError(
                f"Operation not allowed while session is {self.state.value}"
            )

    def _require_decided(self) -> None:
        if self.pending_resume is not None:
            raise InvalidSessionStateError("Choose to resume or restart first.")

    @property
    def timed(self) -> bool:
        return self.test is not None

    @property
    def test_running(self) -> bool:
        return self.test is not None and self.test.running

    @property
    def test_submitted(self) -> bool:
        return self.test is not None and self.test.submitted

    # --- Mode selection ---
    def select_mode(
        self,
        tag: Optional[str],
        mode: QuizMode,
        year: Optional[int] = None,
        set_index: Optional[int] = None,
        paper: Optional[str] = None,
    ) -> Selection:
        """Retrieves the questions for a selection; the session stays put if none match."""
        mode = QuizMode(mode)
        if mode == QuizMode.YEAR:
            selection = self._select_year(tag, year)
        elif mode == QuizMode.SET:
            selection = self._select_set(tag, set_index, paper)
        elif mode == QuizMode.SHUFFLE:
            selection = self._select_shuffle(tag or settings.SHUFFLE_TAG)
        else:
            selection = self._select_bookmarks()

        if not selection.questions:
            raise EmptySetError("No questions found for this selection.")

        self.mode = mode
        self.tag = selection.tag
        self.state = SessionState.MODE_SELECTED
        logger.info(
            f"Mode selected: {mode.value} tag={selection.tag} "
            f"key={selection.session_key} questions={len(selection.questions)}"
        )
        self._notify()
        return selection

    def _select_year(self, tag: Optional[str], year: Optional[int]) -> Selection:
        questions = catalogue.sort_by_id(self.source.fetch_questions(year=year, tag=tag))
        return Selection(
            mode=QuizMode.YEAR,
            tag=tag,
            session_key=catalogue.year_key(year if year is not None else "all", tag),
            title=str(year) if year is not None else "All years",
            questions=questions,
        )

    def _select_set(
        self, tag: Optional[str], set_index: Optional[int], paper: Optional[str]
    ) -> Selection:
        tag = tag or settings.PRACTICE_TAG
        pool = catalogue.sort_by_id(self.source.fetch_questions(tag=tag))
        regular, mock = catalogue.split_mock(pool)
        if paper:
            candidates = catalogue.group_mock_papers(mock)
            wanted = catalogue.mock_key(paper)
        else:
            candidates = catalogue.build_sets(tag, regular, self.set_size)
            wanted = catalogue.set_key(tag, set_index or 0)

        chosen = next((s for s in candidates if s.key == wanted), None)
        if chosen is None:
            raise EmptySetError("No questions found for this selection.")
        return Selection(
            mode=QuizMode.SET,
            tag=tag,
            session_key=chosen.key,
            title=chosen.title,
            questions=chosen.questions,
        )

    def _select_shuffle(self, tag: str) -> Selection:
        key = catalogue.shuffle_key(tag)
        saved = self.store.load(key)
        if saved is not None and saved.questions and saved.index < saved.total - 1:
            questions = list(saved.questions)
        else:
            pool = self.source.fetch_questions(tag=tag)
            questions = catalogue.pick_shuffle(pool, self.shuffle_size, self.rng)
        return Selection(
            mode=QuizMode.SHUFFLE, tag=tag, session_key=key, title="Shuffle", questions=questions
        )

    def _select_bookmarks(self) -> Selection:
        questions = self.bookmarks.list() if self.bookmarks else []
        return Selection(
            mode=QuizMode.BOOKMARKS,
            session_key=catalogue.BOOKMARKS_KEY,
            title="Bookmarks",
            questions=questions,
        )

    # --- Lifecycle ---
    def start(self, questions: Sequence[Question], session_key: str) -> Optional[Progress]:
        """
        Begins the quiz. Returns saved progress when it can be resumed; the
        caller then decides with :meth:`resume` or :meth:`restart`.
        """
        if not questions:
            self.state = SessionState.IDLE
            self._notify()
            raise EmptySetError("No questions available to start the quiz.")

        self.questions = list(questions)
        self.session_key = session_key
        self.user_answers = {}
        self.current_index = 0
        self.score = 0
        self.test = None
        self.pending_resume = None

        saved = self.store.load(session_key, expected_total=len(self.questions))
        if saved is not None and saved.index < saved.total - 1:
            self.pending_resume = saved

        self.state = SessionState.IN_PROGRESS
        logger.info(
            f"Quiz started: key={session_key} questions={len(self.questions)} "
            f"resumable={self.pending_resume is not None}"
        )
        self._notify()
        return self.pending_resume

    def resume(self) -> None:
        self._require(SessionState.IN_PROGRESS)
        saved = self.pending_resume
        if saved is None:
            raise InvalidSessionStateError("No saved progress to resume.")
        if saved.questions:
            self.questions = list(saved.questions)
        # Saved index is the last answered question and is already in the score
        self.current_index = saved.index + 1
        self.score = saved.score
        self.pending_resume = None
        self._notify()

    def restart(self) -> None:
        self._require(SessionState.IN_PROGRESS)
        self.pending_resume = None
        self.current_index = 0
        self.score = 0
        self.user_answers = {}
        self.store.clear(self.session_key)
        if self.mode == QuizMode.SHUFFLE:
            self.questions = catalogue.shuffled(self.questions, self.rng)
        self._notify()

    def reset(self) -> None:
        """Clears answers, score and position, and deletes stored progress."""
        if self.test is not None:
            self.test.stop()
            self.test = None
        self.user_answers = {}
        self.score = 0
        self.current_index = 0
        self.pending_resume = None
        if self.session_key:
            self.store.clear(self.session_key)
        self.state = SessionState.IN_PROGRESS if self.questions else SessionState.IDLE
        self._notify()

    # --- Answering & navigation ---
    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None

    def answer(self, question_index: int, letter: str) -> AnswerRecord:
        self._require(SessionState.IN_PROGRESS)
        self._require_decided()
        if self.test_submitted:
            raise InvalidSessionStateError("Test already submitted; answers are read-only.")
        if question_index != self.current_index:
            raise InvalidAnswerError(
                f"Question {question_index} is not the current question ({self.current_index})."
            )
        question = self.questions[self.current_index]
        if letter not in question.options:
            raise InvalidAnswerError(f"'{letter}' is not an option for this question.")

        if self.test_running:
            self.user_answers[question_index] = letter
            self._notify()
            return AnswerRecord(index=question_index, selected=letter)

        if question_index in self.user_answers:
            raise InvalidAnswerError("Answer already recorded for this question.")

        self.user_answers[question_index] = letter
        is_correct = bool(question.correct_answer) and letter == question.correct_answer
        if is_correct:
            self.score += 1
        self._checkpoint()
        self._notify()
        return AnswerRecord(
            index=question_index,
            selected=letter,
            correct_answer=question.correct_answer,
            is_correct=is_correct,
            explanation=clean_explanation(question.explanation) or None,
        )

    def _checkpoint(self) -> None:
        progress = Progress(
            index=self.current_index,
            score=self.score,
            total=len(self.questions),
            questions=self.questions if self.mode == QuizMode.SHUFFLE else None,
        )
        self.store.save(self.session_key, progress)

    def advance(self) -> None:
        self._require(SessionState.IN_PROGRESS)
        self._require_decided()
        self.current_index += 1
        if self.current_index >= len(self.questions):
            self._complete()
        self._notify()

    def _complete(self) -> None:
        if self.test is not None:
            self.score = self.test.submit()
            self.test.stop()
        self.state = SessionState.COMPLETED
        self.store.clear(self.session_key)
        logger.info(f"Quiz completed: key={self.session_key} score={self.score}/{len(self.questions)}")

    def go_back(self) -> None:
        if self.state == SessionState.COMPLETED and self.test_submitted:
            if self.current_index > 0:
                self.current_index = min(self.current_index, len(self.questions)) - 1
                self._notify()
            return
        self._require(SessionState.IN_PROGRESS)
        self._require_decided()
        if self.test_running:
            raise InvalidSessionStateError("Going back is disabled during a running test.")
        if self.current_index > 0:
            self.current_index -= 1
            self._notify()

    def navigate(self, index: int) -> None:
        """Navigator jump, available in timed mode only."""
        if not self.timed:
            raise InvalidSessionStateError("The navigator is only available in test mode.")
        self._require(SessionState.IN_PROGRESS, SessionState.COMPLETED)
        if not 0 <= index < len(self.questions):
            raise InvalidAnswerError(f"No question at index {index}.")
        self.current_index = index
        self._notify()

    # --- Timed mode ---
    def start_test(self, duration_seconds: int) -> TestModeController:
        self._require(SessionState.IN_PROGRESS)
        self._require_decided()
        if self.test is not None:
            raise InvalidSessionStateError("A test is already in progress for this session.")
        self.user_answers = {}
        self.score = 0
        self.current_index = 0
        self.test = TestModeController(
            self.questions, self.user_answers, clock=self.clock, on_time_up=self._on_time_up
        )
        self.test.start(duration_seconds)
        self._notify()
        return self.test

    def _on_time_up(self, controller: TestModeController) -> None:
        if controller is self.test:
            self.score = controller.score
            self._notify()

    def tick(self) -> bool:
        return self.test.tick() if self.test is not None else False

    def submit_test(self) -> int:
        if self.test is None:
            raise InvalidSessionStateError("No test is running.")
        self.score = self.test.submit()
        self._notify()
        return self.score

    # --- Views ---
    def _revealed(self, index: int) -> bool:
        if self.test is not None:
            return self.test.submitted
        return index in self.user_answers

    def is_correct(self, index: int) -> Optional[bool]:
        if index not in self.user_answers or not self._revealed(index):
            return None
        return self.user_answers[index] == self.questions[index].correct_answer

    def navigator(self) -> List[NavigatorEntry]:
        return [
            NavigatorEntry(
                index=i,
                answered=i in self.user_answers,
                is_current=i == self.current_index,
                is_correct=self.is_correct(i),
            )
            for i in range(len(self.questions))
        ]

    def question_view(self, index: Optional[int] = None) -> Optional[Dict[str, Any]]:
        index = self.current_index if index is None else index
        if not 0 <= index < len(self.questions):
            return None
        question = self.questions[index]
        view: Dict[str, Any] = {
            "index": index,
            "id": question.id,
            "year": question.year or "Practice Question",
            "category": question.tags[0] if question.tags else "General",
            "text": question.text,
            "options": question.options,
            "selected": self.user_answers.get(index),
            "read_only": self.test_submitted or (index in self.user_answers and not self.timed),
        }
        if self._revealed(index):
            view["correct_answer"] = question.correct_answer
            view["explanation"] = clean_explanation(question.explanation)
        return view

    def summary(self) -> SessionResult:
        total = len(self.questions)
        percentage = round(self.score / total * 100) if total else 0
        return SessionResult(
            score=self.score,
            total=total,
            score_percentage=percentage,
            message=performance_message(percentage),
            answers=dict(self.user_answers),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "mode": self.mode.value if self.mode else None,
            "tag": self.tag,
            "session_key": self.session_key,
            "current_index": self.current_index,
            "total_questions": len(self.questions),
            "score": self.score,
            "pending_resume": (
                self.pending_resume.model_dump(exclude={"questions"})
                if self.pending_resume
                else None
            ),
            "question": self.question_view() if self.state == SessionState.IN_PROGRESS else None,
            "test": self.test.snapshot().model_dump() if self.test else None,
            "navigator": [e.model_dump() for e in self.navigator()] if self.timed else None,
        }
