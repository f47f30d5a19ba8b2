import random
import re
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .models import Question, QuestionSet

MOCK_TAG = "mocktest"
BOOKMARKS_KEY = "progress_bookmarks"


# --- Session keys ---
def year_key(year: Union[int, str], tag: Optional[str]) -> str:
    return f"progress_year_{year}_{tag}"


def shuffle_key(tag: str) -> str:
    return f"progress_shuffle_{tag}"


def set_key(tag: str, index: int) -> str:
    return f"progress_set_{tag}_{index}"


def mock_key(paper: str) -> str:
    return f"progress_mock_{paper}"


def sort_by_id(questions: Sequence[Question]) -> List[Question]:
    return sorted(questions, key=lambda q: q.sort_key)


def shuffled(questions: Sequence[Question], rng: Optional[random.Random] = None) -> List[Question]:
    items = list(questions)
    (rng or random).shuffle(items)
    return items


def pick_shuffle(
    questions: Sequence[Question], count: int, rng: Optional[random.Random] = None
) -> List[Question]:
    """Random subset of up to ``count`` questions."""
    return shuffled(questions, rng)[:count]


def split_mock(questions: Sequence[Question]) -> Tuple[List[Question], List[Question]]:
    """Separates mock-test questions from the regular practice pool."""
    regular, mock = [], []
    for q in questions:
        (mock if MOCK_TAG in q.tags else regular).append(q)
    return regular, mock


def build_sets(tag: str, questions: Sequence[Question], size: int) -> List[QuestionSet]:
    sets = []
    for i, start in enumerate(range(0, len(questions), size)):
        chunk = list(questions[start : start + size])
        sets.append(
            QuestionSet(
                key=set_key(tag, i),
                title=f"Set {i + 1}",
                description=f"Questions {start + 1} - {start + len(chunk)}",
                questions=chunk,
            )
        )
    return sets


def _paper_number(paper: str) -> int:
    digits = re.sub(r"\D", "", paper)
    return int(digits) if digits else 0


def group_mock_papers(questions: Sequence[Question]) -> List[QuestionSet]:
    """Groups mock questions by their paper tag (mocktest1, mocktest2, ...)."""
    papers: Dict[str, List[Question]] = {}
    for q in questions:
        paper = next((t for t in q.tags if t.startswith(MOCK_TAG) and t != MOCK_TAG), None)
        if paper:
            papers.setdefault(paper, []).append(q)

    result = []
    for paper in sorted(papers, key=_paper_number):
        name = paper.replace(MOCK_TAG, "Mock Test ")
        result.append(
            QuestionSet(
                key=mock_key(paper),
                title=name[0].upper() + name[1:],
                description=f"{len(papers[paper])} Questions",
                questions=papers[paper],
            )
        )
    return result
