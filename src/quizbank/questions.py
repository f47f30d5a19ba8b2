import io
import json
import logging
import os
import re
import time
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
import requests

from .errors import SourceUnavailable
from .models import OPTION_LETTERS, Question, YearInfo

logger = logging.getLogger(__name__)


def _first(record: Dict[str, Any], *names: str) -> str:
    for name in names:
        value = record.get(name)
        if value not in (None, ""):
            return str(value)
    return ""


def parse_tags(raw: Any) -> List[str]:
    if isinstance(raw, list):
        return [str(t).strip() for t in raw if str(t).strip()]
    if not raw:
        return []
    return [t.strip() for t in re.split(r"[|,]", str(raw)) if t.strip()]


def record_to_question(record: Dict[str, Any]) -> Question:
    """Normalizes one sheet row (or snapshot entry) into a Question."""
    options = record.get("options")
    if not isinstance(options, dict):
        options = {
            letter: _first(record, f"option_{letter}", f"option_{letter.lower()}")
            for letter in OPTION_LETTERS
        }
    else:
        options = {
            letter: str(options.get(letter) or options.get(letter.lower()) or "")
            for letter in OPTION_LETTERS
        }

    return Question(
        id=_first(record, "id", "ID"),
        year=_first(record, "year", "Year"),
        text=_first(record, "question_text", "questionText", "text"),
        options=options,
        correct_answer=_first(record, "correct_answer", "correctAnswer").strip().upper(),
        explanation=record.get("explanation") or "",
        tags=parse_tags(record.get("tags")),
    )


def parse_csv(csv_text: str) -> List[Question]:
    df = pd.read_csv(
        io.StringIO(csv_text), dtype=str, keep_default_na=False, skip_blank_lines=True
    )
    df.columns = [str(c).strip() for c in df.columns]
    df = df.apply(lambda col: col.str.strip())
    return [record_to_question(r) for r in df.to_dict("records")]


# --- Service Layer: Question Source ---
class QuestionSource:
    """Fetches questions from the published sheet and caches them in memory."""

    def __init__(
        self,
        sheet_url: str,
        snapshot_file: Optional[str] = None,
        cache_ttl: int = 300,
        timeout: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sheet_url = sheet_url
        self.snapshot_file = snapshot_file
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self._clock = clock
        self._cache: Optional[List[Question]] = None
        self._last_fetch: Optional[float] = None

    def _download(self) -> List[Question]:
        if not self.sheet_url:
            raise SourceUnavailable("No sheet URL configured.")
        response = requests.get(self.sheet_url, timeout=self.timeout)
        response.raise_for_status()
        return parse_csv(response.text)

    def _load_snapshot(self) -> Optional[List[Question]]:
        if not self.snapshot_file or not os.path.exists(self.snapshot_file):
            return None
        try:
            with open(self.snapshot_file, encoding="utf-8") as fh:
                data = json.load(fh)
            return [record_to_question(r) for r in data if isinstance(r, dict)]
        except (OSError, ValueError) as e:
            logger.error(f"Error reading local snapshot {self.snapshot_file}: {e}")
            return None

    def get_questions(self, force_refresh: bool = False) -> List[Question]:
        now = self._clock()
        if (
            not force_refresh
            and self._cache is not None
            and self._last_fetch is not None
            and now - self._last_fetch < self.cache_ttl
        ):
            return self._cache

        logger.info("Fetching fresh data from sheet...")
        try:
            questions = self._download()
            self._cache = questions
            self._last_fetch = now
            logger.info(f"Loaded {len(questions)} questions from sheet.")
            return questions
        except (requests.RequestException, ValueError, SourceUnavailable) as e:
            logger.error(f"Error fetching/parsing sheet data: {e}")

        snapshot = self._load_snapshot()
        if snapshot is not None:
            logger.info(f"Falling back to local snapshot {self.snapshot_file}")
            self._cache = snapshot
            # Marked as fetched so the next request does not retry immediately
            self._last_fetch = now
            return snapshot

        if self._cache is not None:
            logger.warning("Returning stale cache due to fetch error.")
            return self._cache

        raise SourceUnavailable("Question data is unavailable.")

    def refresh(self) -> List[Question]:
        return self.get_questions(force_refresh=True)

    def fetch_questions(
        self, year: Optional[int] = None, tag: Optional[str] = None
    ) -> List[Question]:
        """Filters by year (tag is a substring match) or by exact tag alone."""
        questions = self.get_questions()
        if year is not None:
            filtered = [q for q in questions if q.year == int(year)]
            if tag:
                wanted = [t.strip().lower() for t in tag.split(",") if t.strip()]
                filtered = [
                    q
                    for q in filtered
                    if any(w in t.lower() for t in q.tags for w in wanted)
                ]
            return filtered
        if tag:
            target = tag.lower()
            return [q for q in questions if any(t.lower() == target for t in q.tags)]
        return list(questions)

    def get_years(self) -> List[YearInfo]:
        years = sorted({q.year for q in self.get_questions() if q.year}, reverse=True)
        return [YearInfo(year=str(y), description=f"Quiz Year {y}") for y in years]
