"""Convert a JSON question dump into the spreadsheet CSV layout.

Rows whose options are empty get them recovered from the explanation text
where possible.
"""

import argparse
import csv
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .extractor import extract_options
from .models import OPTION_LETTERS

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "id",
    "year",
    "question_text",
    "option_A",
    "option_B",
    "option_C",
    "option_D",
    "correct_answer",
    "explanation",
    "tags",
]


def flatten_records(data: Any) -> List[Dict[str, Any]]:
    """Flattens nested lists, which show up in merged dumps."""
    if isinstance(data, list):
        result: List[Dict[str, Any]] = []
        for item in data:
            result.extend(flatten_records(item))
        return result
    if isinstance(data, dict):
        return [data]
    return []


def _option(options: Any, letter: str) -> str:
    if not isinstance(options, dict):
        return ""
    return str(options.get(letter) or options.get(letter.lower()) or "")


def record_to_row(record: Dict[str, Any], position: int) -> Tuple[Dict[str, Any], bool]:
    """Returns the CSV row and whether options were recovered from the explanation."""
    options = {letter: _option(record.get("options"), letter) for letter in OPTION_LETTERS}
    explanation = record.get("explanation") or ""
    recovered = False

    if not options["A"] and not options["B"] and explanation:
        extracted = extract_options(explanation)
        if extracted.get("A") or extracted.get("B"):
            options = {letter: extracted.get(letter, "") for letter in OPTION_LETTERS}
            recovered = True

    tags = record.get("tags")
    if isinstance(tags, list):
        tags = "|".join(str(t) for t in tags)

    row = {
        "id": record.get("id") or position + 1,
        "year": record.get("year") or "",
        "question_text": record.get("question_text") or record.get("questionText") or "",
        "correct_answer": str(record.get("correct_answer") or record.get("correctAnswer") or "")
        .strip()
        .upper(),
        "explanation": explanation,
        "tags": tags or "",
    }
    row.update({f"option_{letter}": options[letter] for letter in OPTION_LETTERS})
    return row, recovered


def records_to_frame(records: Sequence[Dict[str, Any]]) -> Tuple[pd.DataFrame, int]:
    rows, recovered = [], 0
    for position, record in enumerate(records):
        row, was_recovered = record_to_row(record, position)
        rows.append(row)
        recovered += was_recovered
    return pd.DataFrame(rows, columns=CSV_COLUMNS), recovered


def convert_json_to_csv(input_path: str, output_path: str) -> Tuple[int, int]:
    with open(input_path, encoding="utf-8") as fh:
        records = flatten_records(json.load(fh))
    df, recovered = records_to_frame(records)
    df.to_csv(output_path, index=False, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    logger.info(f"Processed {len(df)} records, recovered options for {recovered}")
    return len(df), recovered


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Convert a JSON question dump to the question sheet CSV format."
    )
    parser.add_argument("input", nargs="?", default="data.json", help="JSON file to read")
    parser.add_argument(
        "-o", "--output", default="converted_data.csv", help="CSV file to write"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    try:
        total, recovered = convert_json_to_csv(args.input, args.output)
    except FileNotFoundError:
        logger.error(f"{args.input} not found")
        return 1
    except json.JSONDecodeError as e:
        logger.error(f"{args.input} is not valid JSON: {e}")
        return 1

    print(f"Processed {total} records.")
    print(f"Recovered options from explanations for {recovered} questions.")
    print(f"Output saved to {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
