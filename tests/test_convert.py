from __future__ import annotations

import json

import pandas as pd

from quizbank.convert import CSV_COLUMNS, convert_json_to_csv, flatten_records, main, record_to_row

EXPLANATION = "- ✅ b (Posterior): Most frequent [cite: 3].\n- ❌ a (Anterior): Rare [cite: 3]."


def test_flatten_records_handles_nested_lists() -> None:
    data = [{"id": 1}, [{"id": 2}, [{"id": 3}]], "junk"]

    assert [r["id"] for r in flatten_records(data)] == [1, 2, 3]


def test_record_to_row_recovers_options_from_explanation() -> None:
    row, recovered = record_to_row(
        {"question_text": "Where?", "options": {}, "correctAnswer": "b", "explanation": EXPLANATION},
        position=4,
    )

    assert recovered is True
    assert row["id"] == 5
    assert row["option_A"] == "Anterior"
    assert row["option_B"] == "Posterior"
    assert row["option_C"] == ""
    assert row["correct_answer"] == "B"


def test_record_to_row_keeps_existing_options() -> None:
    row, recovered = record_to_row(
        {"id": 9, "options": {"a": "one", "B": "two"}, "explanation": EXPLANATION, "tags": ["x", "y"]},
        position=0,
    )

    assert recovered is False
    assert (row["option_A"], row["option_B"]) == ("one", "two")
    assert row["tags"] == "x|y"


def test_convert_json_to_csv_writes_sheet_columns(tmp_path) -> None:
    source = tmp_path / "data.json"
    output = tmp_path / "out.csv"
    source.write_text(
        json.dumps(
            [
                {"id": 1, "year": 2023, "question_text": "Q1", "options": {"A": "x", "B": "y"}},
                [{"id": 2, "question_text": "Q2", "options": {}, "explanation": EXPLANATION}],
            ]
        ),
        encoding="utf-8",
    )

    total, recovered = convert_json_to_csv(str(source), str(output))

    assert (total, recovered) == (2, 1)
    df = pd.read_csv(output, dtype=str, keep_default_na=False)
    assert list(df.columns) == CSV_COLUMNS
    assert df.loc[1, "option_B"] == "Posterior"


def test_main_reports_missing_input(tmp_path) -> None:
    assert main([str(tmp_path / "missing.json"), "-o", str(tmp_path / "out.csv")]) == 1


def test_main_reports_invalid_json(tmp_path) -> None:
    source = tmp_path / "broken.json"
    source.write_text("{not json", encoding="utf-8")

    assert main([str(source), "-o", str(tmp_path / "out.csv")]) == 1
