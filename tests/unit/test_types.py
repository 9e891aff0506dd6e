"""
Unit tests for field type descriptors.

Tests cover:
- Classification of declared type tokens
- Value conformance per descriptor
- Date coercion
- Empty-value detection
"""

from datetime import datetime, timezone

import pytest

from entdoc import Document, EmbeddedDocument
from entdoc.errors import SchemaError
from entdoc.types import (
    BasicKind,
    BasicType,
    CustomType,
    DocumentRef,
    EmbeddedRef,
    TypedArray,
    classify_declared_type,
    describe_value,
    is_empty_value,
    is_number,
    parse_date,
    value_matches_type,
)


class Owner(Document):
    SCHEMA = {"name": str}


class Point(EmbeddedDocument):
    SCHEMA = {"x": int, "y": int}


def never_native(value):
    return False


def native(value):
    return isinstance(value, str) and len(value) == 16


class TestClassifyDeclaredType:
    """Tests for classify_declared_type."""

    @pytest.mark.parametrize(
        "token,kind",
        [
            (str, BasicKind.STRING),
            (int, BasicKind.NUMBER),
            (float, BasicKind.NUMBER),
            (bool, BasicKind.BOOLEAN),
            (bytes, BasicKind.BINARY),
            (datetime, BasicKind.DATE),
            ("str", BasicKind.STRING),
            ("number", BasicKind.NUMBER),
            ("date", BasicKind.DATE),
        ],
    )
    def test_basic_tokens(self, token, kind):
        """Python types and string aliases map to BasicType."""
        assert classify_declared_type("f", token) == BasicType(kind)

    def test_typed_array(self):
        """One-element list maps to TypedArray."""
        descriptor = classify_declared_type("tags", [str])
        assert descriptor == TypedArray(BasicType(BasicKind.STRING))
        assert descriptor.name == "[str]"

    @pytest.mark.parametrize("token", [[], list, dict, object])
    def test_wildcards_are_custom(self, token):
        """Wildcard tokens map to CustomType."""
        assert isinstance(classify_declared_type("extra", token), CustomType)

    def test_document_and_embedded_classes(self):
        """Document classes become references, embedded classes inline."""
        assert classify_declared_type("owner", Owner) == DocumentRef(Owner)
        assert classify_declared_type("point", Point) == EmbeddedRef(Point)
        assert classify_declared_type("owners", [Owner]) == TypedArray(DocumentRef(Owner))

    def test_array_of_wildcards_rejected(self):
        """Arrays of custom-type elements are rejected."""
        with pytest.raises(SchemaError, match="array-type with custom-type elements"):
            classify_declared_type("objs", [dict])

    def test_multi_element_array_rejected(self):
        """Only one element type may be declared."""
        with pytest.raises(SchemaError, match="Only one element type"):
            classify_declared_type("mixed", [str, int])

    @pytest.mark.parametrize("token", [42, "nope", {"a": 1}, set])
    def test_unsupported_tokens(self, token):
        """Unsupported tokens raise SchemaError naming the field."""
        with pytest.raises(SchemaError) as exc_info:
            classify_declared_type("weird", token)
        assert "weird" in exc_info.value.message


class TestValueMatchesType:
    """Tests for value_matches_type."""

    def test_none_always_matches(self):
        """None conforms to every type."""
        for descriptor in (BasicType(BasicKind.STRING), TypedArray(BasicType(BasicKind.NUMBER)), CustomType()):
            assert value_matches_type(None, descriptor, never_native)

    def test_number_excludes_bool(self):
        """Booleans are not numbers."""
        number = BasicType(BasicKind.NUMBER)
        assert value_matches_type(3, number, never_native)
        assert value_matches_type(2.5, number, never_native)
        assert not value_matches_type(True, number, never_native)
        assert not value_matches_type(float("nan"), number, never_native)

    def test_date_accepts_date_like(self):
        """Dates accept datetimes, ms timestamps and parseable strings."""
        date = BasicType(BasicKind.DATE)
        assert value_matches_type(datetime(2020, 1, 1), date, never_native)
        assert value_matches_type(1577836800000, date, never_native)
        assert value_matches_type("2020-01-01T00:00:00Z", date, never_native)
        assert not value_matches_type("not a date", date, never_native)

    def test_array_elements_checked(self):
        """Every array element must match."""
        numbers = TypedArray(BasicType(BasicKind.NUMBER))
        assert value_matches_type([1, 2, 3], numbers, never_native)
        assert not value_matches_type([1, "2"], numbers, never_native)
        assert not value_matches_type(1, numbers, never_native)

    def test_document_ref_accepts_instance_or_id(self):
        """References accept target instances or native ids."""
        ref = DocumentRef(Owner)
        assert value_matches_type(Owner.create(), ref, native)
        assert value_matches_type("a" * 16, ref, native)
        assert not value_matches_type("short", ref, native)

    def test_embedded_requires_instance(self):
        """Embedded fields need an instance of the embedded class."""
        ref = EmbeddedRef(Point)
        assert value_matches_type(Point.create({"x": 1}), ref, never_native)
        assert not value_matches_type({"x": 1}, ref, never_native)

    def test_custom_always_matches(self):
        """Custom types defer to their validate function."""
        assert value_matches_type({"anything": [1, 2]}, CustomType(), never_native)


class TestValueHelpers:
    """Tests for value helper functions."""

    def test_parse_date_timestamp_is_utc(self):
        """Millisecond timestamps convert to aware UTC datetimes."""
        assert parse_date(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_parse_date_formats(self):
        """Date strings in common formats parse."""
        assert parse_date("2021/03/04") == datetime(2021, 3, 4)
        assert parse_date("2021-03-04") == datetime(2021, 3, 4)
        assert parse_date("garbage") is None
        assert parse_date(None) is None

    def test_is_number(self):
        """is_number rejects bools and infinities."""
        assert is_number(0)
        assert not is_number(False)
        assert not is_number(float("inf"))
        assert not is_number("1")

    @pytest.mark.parametrize("value", [None, "", [], {}])
    def test_empty_values(self, value):
        """None and empty containers are empty."""
        assert is_empty_value(value)

    @pytest.mark.parametrize("value", [0, 0.0, False, datetime(2020, 1, 1), "x", [None]])
    def test_non_empty_values(self, value):
        """Numbers, bools and dates are never empty."""
        assert not is_empty_value(value)

    def test_describe_value(self):
        """Lists are described element-wise."""
        assert describe_value([1, "a"]) == "[int, str]"
        assert describe_value(1.5) == "float"
