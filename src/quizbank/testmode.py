"""Timed exam mode: a fixed countdown with deferred scoring."""

import asyncio
import logging
import math
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from .models import Question, TestModeState

logger = logging.getLogger(__name__)


class TestState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    SUBMITTED = "submitted"


def score_answers(questions: Sequence[Question], answers: Dict[int, str]) -> int:
    """Counts answers equal to their question's correct letter."""
    score = 0
    for i, question in enumerate(questions):
        selected = answers.get(i)
        if selected and question.correct_answer and selected == question.correct_answer:
            score += 1
    return score


class TestModeController:
    """
    Countdown for one exam attempt.

    ``answers`` is the session's live answer map, read at submission time.
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        questions: List[Question],
        answers: Dict[int, str],
        clock: Callable[[], float] = time.time,
        on_time_up: Optional[Callable[["TestModeController"], None]] = None,
    ):
        self.questions = questions
        self.answers = answers
        self._clock = clock
        self.on_time_up = on_time_up
        self.state = TestState.NOT_STARTED
        self.end_time: Optional[float] = None
        self.score: Optional[int] = None
        self.time_up = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.state == TestState.RUNNING

    @property
    def submitted(self) -> bool:
        return self.state == TestState.SUBMITTED

    @property
    def remaining_seconds(self) -> int:
        if self.end_time is None or self.submitted:
            return 0
        return max(0, math.ceil(self.end_time - self._clock()))

    def start(self, duration_seconds: int) -> None:
        if self.state != TestState.NOT_STARTED:
            raise RuntimeError(f"Test already {self.state.value}")
        self.end_time = self._clock() + duration_seconds
        self.state = TestState.RUNNING
        logger.info(f"Test started: {len(self.questions)} questions, {duration_seconds}s")

    def tick(self) -> bool:
        """Returns True when this tick ran out the clock and forced submission."""
        if not self.running:
            return False
        if self.end_time - self._clock() > 0:
            return False
        logger.info("Test time is up, submitting")
        self.time_up = True
        self.submit()
        if self.on_time_up:
            self.on_time_up(self)
        return True

    def submit(self) -> int:
        if self.submitted:
            return self.score
        self.score = score_answers(self.questions, self.answers)
        self.state = TestState.SUBMITTED
        self.stop()
        logger.info(f"Test submitted: {self.score}/{len(self.questions)}")
        return self.score

    async def run(self, interval: float = 1.0) -> None:
        """Background ticker; ends once the test is submitted."""
        while self.running:
            await asyncio.sleep(interval)
            self.tick()

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # The ticker itself exits its loop once the state changes
        if task is not current:
            task.cancel()

    def snapshot(self) -> TestModeState:
        return TestModeState(
            active=self.running,
            end_time=self.end_time,
            submitted=self.submitted,
            time_up=self.time_up,
            remaining_seconds=self.remaining_seconds,
        )
