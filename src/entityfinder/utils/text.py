"""Text helpers used when comparing field values."""

from __future__ import annotations

import re
from typing import Any, List

_TOKEN = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> List[str]:
    """Lowercased word tokens, in order of appearance."""
    if not text:
        return []
    return [token.lower() for token in _TOKEN.findall(text)]


def as_text(value: Any) -> str:
    """Text form of a JSON scalar, with JSON spelling for booleans and null."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)

