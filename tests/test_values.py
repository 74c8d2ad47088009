"""Tests for typed values and term coercion."""

from __future__ import annotations

import pytest

from entityfinder.errors import TypeCoercionError, ValidationError
from entityfinder.resolution.values import (
    BooleanValue,
    DateValue,
    NumberValue,
    StringValue,
    coerce_term,
    create_value,
    from_serialized,
    sorted_values,
    to_strptime,
)


class TestCreateValue:
    """Test create_value."""

    def test_typed_values(self) -> None:
        """Should wrap raw JSON values in the attribute's value type."""
        assert create_value("string", "a") == StringValue("a")
        assert create_value("number", 5) == NumberValue(5)
        assert create_value("boolean", False) == BooleanValue(False)
        assert create_value("date", "2020-01-02") == DateValue("2020-01-02")

    def test_mismatched_type(self) -> None:
        """Should raise TypeCoercionError when the raw value has the wrong type."""
        with pytest.raises(TypeCoercionError):
            create_value("number", "5")
        with pytest.raises(TypeCoercionError):
            create_value("number", True)
        with pytest.raises(TypeCoercionError):
            create_value("string", 5)

    def test_unknown_type(self) -> None:
        """Should raise ValidationError for unknown attribute types."""
        with pytest.raises(ValidationError):
            create_value("uuid", "a")


class TestValue:
    """Test value equality, serialization and ordering."""

    def test_equality_is_typed(self) -> None:
        """Should not treat values of different types as equal."""
        assert StringValue("1") != NumberValue(1)
        assert len({StringValue("1"), NumberValue(1), NumberValue(1.0)}) == 2

    def test_serialized(self) -> None:
        """Should serialize booleans in lowercase and null as 'null'."""
        assert BooleanValue(True).serialized == "true"
        assert NumberValue(3).serialized == "3"
        assert StringValue(None).serialized == "null"

    def test_blank(self) -> None:
        """Should treat null and whitespace as blank."""
        assert StringValue("  ").is_blank
        assert StringValue(None).is_blank
        assert not NumberValue(0).is_blank

    def test_sorted_values(self) -> None:
        """Should order values by serialized form."""
        values = sorted_values({StringValue("b"), StringValue("a"), StringValue("c")})

        assert [value.value for value in values] == ["a", "b", "c"]

    def test_from_serialized(self) -> None:
        """Should rebuild typed values from their serialized form."""
        assert from_serialized("number", "3") == NumberValue(3)
        assert from_serialized("number", "3.5") == NumberValue(3.5)
        assert from_serialized("boolean", "false") == BooleanValue(False)
        assert from_serialized("string", "x") == StringValue("x")


class TestCoerceTerm:
    """Test coercion of untyped terms."""

    def test_boolean(self) -> None:
        """Should accept true/false in any case."""
        assert coerce_term("TRUE", "boolean") == BooleanValue(True)
        with pytest.raises(TypeCoercionError):
            coerce_term("yes", "boolean")

    def test_number(self) -> None:
        """Should parse integers and decimals."""
        assert coerce_term("-12", "number") == NumberValue(-12)
        assert coerce_term(".5", "number") == NumberValue(0.5)
        with pytest.raises(TypeCoercionError):
            coerce_term("12a", "number")

    def test_date_tries_each_format(self) -> None:
        """Should accept the term if any candidate format parses it."""
        assert coerce_term("02/01/2020", "date", ["yyyy-MM-dd", "dd/MM/yyyy"]) == DateValue("02/01/2020")
        with pytest.raises(TypeCoercionError):
            coerce_term("2020-13-45", "date", ["yyyy-MM-dd"])

    def test_date_without_formats(self) -> None:
        """Should fail when no format is available."""
        with pytest.raises(TypeCoercionError):
            coerce_term("2020-01-01", "date", [])

    def test_string(self) -> None:
        """Should always accept strings."""
        assert coerce_term("Ann", "string") == StringValue("Ann")


class TestToStrptime:
    """Test translation of date patterns."""

    def test_java_pattern(self) -> None:
        """Should translate Java-style tokens."""
        assert to_strptime("yyyy-MM-dd'T'HH:mm:ss") == "%Y-%m-%dT%H:%M:%S"

    def test_strptime_pattern_passthrough(self) -> None:
        """Should leave strptime patterns unchanged."""
        assert to_strptime("%Y/%m/%d") == "%Y/%m/%d"
