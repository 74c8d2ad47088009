"""Typed attribute values and coercion of untyped terms."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Iterable, List

from entityfinder.errors import TypeCoercionError, ValidationError

NUMBER_STRING = re.compile(r"^-?\d*\.?\d+$")

# Java-style date patterns used by entity models, longest tokens first.
_DATE_TOKENS = [
    ("yyyy", "%Y"),
    ("yy", "%y"),
    ("MMMM", "%B"),
    ("MMM", "%b"),
    ("MM", "%m"),
    ("dd", "%d"),
    ("HH", "%H"),
    ("hh", "%I"),
    ("mm", "%M"),
    ("ss", "%S"),
    ("SSS", "%f"),
    ("a", "%p"),
    ("XXX", "%z"),
    ("Z", "%z"),
]


@dataclass(frozen=True, slots=True)
class Value:
    """An attribute value. Equality and hashing are by type and value."""

    value: Any
    type: ClassVar[str] = "value"

    @property
    def serialized(self) -> str:
        return "null" if self.value is None else str(self.value)

    @property
    def is_blank(self) -> bool:
        return self.value is None or self.serialized.strip() == ""

    def to_json(self) -> Any:
        """Typed JSON form: quoted for strings and dates, bare otherwise."""
        return self.value

    def __str__(self) -> str:
        return self.serialized


@dataclass(frozen=True, slots=True)
class StringValue(Value):
    type: ClassVar[str] = "string"


@dataclass(frozen=True, slots=True)
class DateValue(Value):
    type: ClassVar[str] = "date"


@dataclass(frozen=True, slots=True)
class NumberValue(Value):
    type: ClassVar[str] = "number"


@dataclass(frozen=True, slots=True)
class BooleanValue(Value):
    type: ClassVar[str] = "boolean"

    @property
    def serialized(self) -> str:
        if self.value is None:
            return "null"
        return "true" if self.value else "false"


_VALUE_TYPES = {cls.type: cls for cls in (StringValue, DateValue, NumberValue, BooleanValue)}


def create_value(attribute_type: str, raw: Any) -> Value:
    """Wrap a raw JSON value as the typed value of an attribute.

    Raises ``TypeCoercionError`` when the raw value does not match the type.
    """
    try:
        cls = _VALUE_TYPES[attribute_type]
    except KeyError:
        raise ValidationError(f"'{attribute_type}' is not a recognized attribute type.") from None
    if isinstance(raw, Value):
        raw = raw.value
    if raw is None:
        return cls(None)
    if cls is BooleanValue and not isinstance(raw, bool):
        raise TypeCoercionError(f"Expected 'boolean' attribute data type, got {raw!r}.")
    if cls is NumberValue and (isinstance(raw, bool) or not isinstance(raw, (int, float))):
        raise TypeCoercionError(f"Expected 'number' attribute data type, got {raw!r}.")
    if cls in (StringValue, DateValue) and not isinstance(raw, str):
        raise TypeCoercionError(f"Expected '{attribute_type}' attribute data type, got {raw!r}.")
    return cls(raw)


def sorted_values(values: Iterable[Value]) -> List[Value]:
    """Deterministic ordering of values, by serialized form."""
    return sorted(values, key=lambda value: (value.serialized, value.type))


def to_strptime(pattern: str) -> str:
    """Translate a Java-style date pattern to a ``strptime`` format.

    Patterns that already contain ``%`` directives are returned unchanged.
    Text between single quotes is copied literally.
    """
    if "%" in pattern:
        return pattern
    out: List[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "'":
            end = pattern.find("'", i + 1)
            if end == -1:
                raise ValidationError(f"Unterminated quote in date format '{pattern}'.")
            out.append(pattern[i + 1 : end] or "'")
            i = end + 1
            continue
        for token, directive in _DATE_TOKENS:
            if pattern.startswith(token, i):
                out.append(directive)
                i += len(token)
                break
        else:
            out.append(char)
            i += 1
    return "".join(out)


def is_date(text: str, pattern: str) -> bool:
    try:
        datetime.strptime(text, to_strptime(pattern))
    except (ValueError, ValidationError):
        return False
    return True


def coerce_term(term: str, attribute_type: str, formats: Iterable[str] = ()) -> Value:
    """Interpret an untyped term as a value of the given attribute type.

    Dates are tried against each candidate format in order. Raises
    ``TypeCoercionError`` when the term cannot represent the type.
    """
    if attribute_type == "boolean":
        lowered = term.lower()
        if lowered in ("true", "false"):
            return BooleanValue(lowered == "true")
    elif attribute_type == "number":
        if NUMBER_STRING.match(term):
            return NumberValue(float(term) if "." in term else int(term))
    elif attribute_type == "date":
        for pattern in formats:
            if is_date(term, pattern):
                return DateValue(term)
    elif attribute_type == "string":
        return StringValue(term)
    raise TypeCoercionError(f"Term '{term}' is not a valid '{attribute_type}' value.")


def from_serialized(attribute_type: str, text: str) -> Value:
    """Inverse of ``Value.serialized`` for values carried in provenance tags."""
    if text == "null":
        return create_value(attribute_type, None)
    if attribute_type == "boolean":
        return BooleanValue(text == "true")
    if attribute_type == "number":
        return NumberValue(float(text) if "." in text or "e" in text.lower() else int(text))
    return create_value(attribute_type, text)


def usable_format(value: Any) -> str | None:
    """Return a date format param if it is set to something meaningful."""
    if value is None:
        return None
    text = str(value)
    if text == "null" or not text.strip():
        return None
    return text
