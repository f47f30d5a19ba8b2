from __future__ import annotations

import json

import pytest
import requests
from conftest import FakeClock, StaticSource, make_question

from quizbank import questions as questions_mod
from quizbank.errors import SourceUnavailable
from quizbank.questions import QuestionSource, parse_csv, record_to_question

SHEET_CSV = """id,year,question_text,option_A,option_B,option_C,option_D,correct_answer,explanation,tags
2, 2023 ,Second?,a2,b2,c2,d2, b ,Because,"Anatomy| Renal"
1,2022,First?,a1,b1,c1,d1,A,,
"""


class FakeResponse:
    def __init__(self, text: str, status: int = 200) -> None:
        self.text = text
        self.status = status

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise requests.HTTPError(f"status {self.status}")


@pytest.fixture
def fake_get(monkeypatch):
    calls = []
    responses = []

    def _get(url, timeout=None):
        calls.append(url)
        result = responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(questions_mod.requests, "get", _get)
    return calls, responses


def test_parse_csv_normalizes_rows() -> None:
    parsed = parse_csv(SHEET_CSV)

    first = parsed[0]
    assert first.id == "2"
    assert first.year == 2023
    assert first.text == "Second?"
    assert first.options == {"A": "a2", "B": "b2", "C": "c2", "D": "d2"}
    assert first.correct_answer == "B"
    assert first.tags == ["Anatomy", "Renal"]
    assert parsed[1].tags == []
    assert parsed[1].explanation == ""


def test_record_to_question_accepts_snapshot_shape() -> None:
    question = record_to_question(
        {
            "id": 7,
            "year": "",
            "questionText": "Q?",
            "options": {"a": "one", "B": "two"},
            "correctAnswer": "a",
            "tags": ["x", " "],
        }
    )

    assert question.year == 0
    assert question.options == {"A": "one", "B": "two", "C": "", "D": ""}
    assert question.correct_answer == "A"
    assert question.tags == ["x"]


def test_results_are_cached_until_ttl(fake_get) -> None:
    calls, responses = fake_get
    responses.extend([FakeResponse(SHEET_CSV), FakeResponse(SHEET_CSV)])
    clock = FakeClock()
    source = QuestionSource("http://sheet", cache_ttl=300, clock=clock)

    source.get_questions()
    clock.advance(100)
    source.get_questions()
    assert len(calls) == 1

    clock.advance(300)
    source.get_questions()
    assert len(calls) == 2


def test_refresh_bypasses_cache(fake_get) -> None:
    calls, responses = fake_get
    responses.extend([FakeResponse(SHEET_CSV), FakeResponse(SHEET_CSV)])
    source = QuestionSource("http://sheet", clock=FakeClock())

    source.get_questions()
    source.refresh()

    assert len(calls) == 2


def test_fetch_failure_falls_back_to_snapshot(fake_get, tmp_path) -> None:
    _, responses = fake_get
    responses.append(requests.ConnectionError("offline"))
    snapshot = tmp_path / "data.json"
    snapshot.write_text(json.dumps([{"id": 5, "year": 2021, "question_text": "Offline?"}]))
    source = QuestionSource("http://sheet", snapshot_file=str(snapshot), clock=FakeClock())

    loaded = source.get_questions()

    assert [q.id for q in loaded] == ["5"]


def test_fetch_failure_returns_stale_cache(fake_get) -> None:
    _, responses = fake_get
    responses.extend([FakeResponse(SHEET_CSV), FakeResponse("", status=500)])
    source = QuestionSource("http://sheet", clock=FakeClock())

    fresh = source.get_questions()
    stale = source.refresh()

    assert stale == fresh


def test_fetch_failure_without_fallback_raises(fake_get) -> None:
    _, responses = fake_get
    responses.append(requests.Timeout("slow"))
    source = QuestionSource("http://sheet", snapshot_file="missing.json", clock=FakeClock())

    with pytest.raises(SourceUnavailable):
        source.get_questions()


def test_fetch_questions_filters() -> None:
    source = StaticSource(
        [
            make_question(1, year=2023, tags=["Renal Physiology"]),
            make_question(2, year=2023, tags=["Anatomy"]),
            make_question(3, year=2022, tags=["renal"]),
        ]
    )

    assert [q.id for q in source.fetch_questions(year=2023)] == ["1", "2"]
    assert [q.id for q in source.fetch_questions(year=2023, tag="renal,xyz")] == ["1"]
    assert [q.id for q in source.fetch_questions(tag="RENAL")] == ["3"]


def test_get_years_newest_first() -> None:
    source = StaticSource([make_question(1, year=2021), make_question(2, year=2024), make_question(3, year=0)])

    assert [y.year for y in source.get_years()] == ["2024", "2021"]
