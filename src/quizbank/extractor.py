"""Recover multiple-choice option text from free-text explanations.

Explanations in the source sheet often carry a breakdown such as::

    - ✅ b (Posterior): Most frequent location [cite: 336].
    - ❌ a (Anterior): Seen in ~10% females [cite: 336].

``extract_options`` pulls the option text out of those lines. It is a best
effort heuristic: letters that cannot be found are simply left out of the
result.
"""

import re
from typing import Dict, Iterable, List, Optional

from .models import OPTION_LETTERS

_MARKS = "✅❌"  # check mark, cross mark
_CITATION = re.compile(r"\[cite:\s*[^\]]+\]")

_OPTION_TEXT = r"[ \t]*[\"'(]*([^\r\n|)]+)\)?"


def _option_patterns(letter: str) -> "List[re.Pattern[str]]":
    """Bulleted lines first; a bare letter needs a glyph or a ``.``/``)`` after it."""
    letter = re.escape(letter)
    bulleted = (
        r"^[ \t]*[-–—•*][ \t]*"
        rf"[{_MARKS}]?\ufe0f?[ \t]*"
        rf"{letter}\b[.)]?" + _OPTION_TEXT
    )
    bare = (
        rf"^[ \t]*(?:[{_MARKS}]\ufe0f?[ \t]*{letter}\b[.)]?|{letter}[.)])" + _OPTION_TEXT
    )
    return [re.compile(p, re.IGNORECASE | re.MULTILINE) for p in (bulleted, bare)]


def _search(letter: str, explanation: str) -> "Optional[re.Match[str]]":
    for pattern in _option_patterns(letter):
        match = pattern.search(explanation)
        if match:
            return match
    return None


def extract_options(
    explanation: str, letters: Iterable[str] = OPTION_LETTERS
) -> Dict[str, str]:
    """Return ``{letter: text}`` for every option letter found in ``explanation``."""
    if not explanation or not isinstance(explanation, str):
        return {}

    found: Dict[str, str] = {}
    for letter in letters:
        match = _search(letter, explanation)
        if not match:
            continue
        text = match.group(1).split(":")[0].split(" - ")[0].strip().strip("\"'").strip()
        if text:
            found[letter.upper()] = text
    return found


def clean_explanation(explanation: str) -> str:
    """Normalize an explanation for display: real newlines, no citations or marks."""
    if not explanation:
        return ""
    text = explanation.replace("\\n", "\n")
    text = _CITATION.sub("", text)
    text = re.sub(f"[{_MARKS}]", "", text)
    return text.strip()
