from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

OPTION_LETTERS = ("A", "B", "C", "D")


class QuizMode(str, Enum):
    YEAR = "YEAR"
    SET = "SET"
    SHUFFLE = "SHUFFLE"
    BOOKMARKS = "BOOKMARKS"


class Question(BaseModel):
    """A single multiple-choice question, immutable once loaded."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    year: int = 0
    text: str = Field(
        default="", validation_alias=AliasChoices("text", "question_text", "questionText")
    )
    options: Dict[str, str] = Field(default_factory=dict)
    correct_answer: str = Field(
        default="", validation_alias=AliasChoices("correct_answer", "correctAnswer")
    )
    explanation: str = ""
    tags: List[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return str(value).strip()

    @field_validator("year", mode="before")
    @classmethod
    def _coerce_year(cls, value: Any) -> int:
        try:
            return int(str(value).strip() or 0)
        except ValueError:
            return 0

    @field_validator("explanation", mode="before")
    @classmethod
    def _coerce_explanation(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @property
    def sort_key(self) -> int:
        try:
            return int(self.id)
        except ValueError:
            return 0


class Progress(BaseModel):
    index: int
    score: int
    total: int
    # Only set in shuffle mode, pins the random subset
    questions: Optional[List[Question]] = None


class Selection(BaseModel):
    mode: QuizMode
    tag: Optional[str] = None
    session_key: str
    title: str = ""
    questions: List[Question]


class QuestionSet(BaseModel):
    key: str
    title: str
    description: str = ""
    questions: List[Question]
    progress: Optional[Progress] = None


class YearInfo(BaseModel):
    year: str
    description: str


# --- Request payloads ---
class ModeRequest(BaseModel):
    tag: Optional[str] = None
    mode: QuizMode = QuizMode.YEAR
    year: Optional[int] = None
    set_index: Optional[int] = None
    paper: Optional[str] = None


class AnswerRequest(BaseModel):
    index: int
    letter: str


class TestStartRequest(BaseModel):
    duration_seconds: Optional[int] = None


class BookmarkRequest(BaseModel):
    question: Question


# --- Responses ---
class AnswerRecord(BaseModel):
    index: int
    selected: str
    correct_answer: Optional[str] = None
    is_correct: Optional[bool] = None
    explanation: Optional[str] = None


class NavigatorEntry(BaseModel):
    index: int
    answered: bool
    is_current: bool
    is_correct: Optional[bool] = None


class SessionResult(BaseModel):
    score: int
    total: int
    score_percentage: int
    message: str
    answers: Dict[int, str]


class TestModeState(BaseModel):
    active: bool
    end_time: Optional[float] = None
    submitted: bool = False
    time_up: bool = False
    remaining_seconds: int = 0
