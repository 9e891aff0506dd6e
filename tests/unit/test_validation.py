"""
Unit tests for document validation.

Tests cover:
- Check ordering (type before required before constraints)
- Required, match, choices, min/max and custom validate()
- Embedded documents validated recursively
- Field name suggestions
"""

from datetime import datetime

import pytest

from entdoc import Document, EmbeddedDocument
from entdoc.errors import ValidationError
from entdoc.validate import suggest_fields


class Person(Document):
    SCHEMA = {
        "name": {"type": str, "required": True},
        "age": {"type": int, "min": 0, "max": 120},
        "tags": [str],
        "email": {"type": str, "match": r"^[^@]+@[^@]+$"},
        "role": {"type": str, "choices": ["admin", "user"]},
        "nickname": {"type": str, "validate": lambda v: v.islower()},
        "born": {"type": datetime, "min": datetime(1900, 1, 1)},
    }


class Wheel(EmbeddedDocument):
    SCHEMA = {"size": {"type": int, "min": 10}}


class Car(Document):
    SCHEMA = {
        "model": str,
        "front": Wheel,
        "spares": [Wheel],
    }


class TestFieldChecks:
    """Tests for per-field checks."""

    def test_valid_document(self):
        """A valid document passes."""
        person = Person.create({"name": "Ada", "age": 36, "tags": ["math"], "role": "admin"})
        person.validate()

    def test_type_error_names_expected_and_actual(self):
        """Type errors name the expected and the actual type."""
        person = Person.create({"name": "Ada"})
        person.age = "old"
        with pytest.raises(ValidationError) as exc_info:
            person.validate()
        error = exc_info.value
        assert error.class_name == "Person"
        assert error.field_name == "age"
        assert "number" in error.message
        assert "str" in error.message

    def test_array_type_error(self):
        """Array elements are type-checked."""
        person = Person.create({"name": "Ada"})
        person.tags = ["ok", 3]
        with pytest.raises(ValidationError, match=r"\[str, int\]"):
            person.validate()

    def test_array_none_element(self):
        """None is not a valid array element."""
        person = Person.create({"name": "Ada", "tags": ["a", None]})
        with pytest.raises(ValidationError, match=r"\[str, NoneType\]"):
            person.validate()

    def test_required(self):
        """Required fields must be non-empty."""
        person = Person.create({"name": ""})
        with pytest.raises(ValidationError, match="required"):
            person.validate()

    def test_type_checked_before_required(self):
        """Type conformance is checked before required-ness."""
        person = Person.create()
        person.name = 5
        with pytest.raises(ValidationError, match="should be str"):
            person.validate()

    def test_declaration_order(self):
        """Fields are validated in declaration order."""
        person = Person.create({"name": "Ada"})
        person.age = -1
        person.role = "root"
        with pytest.raises(ValidationError) as exc_info:
            person.validate()
        assert exc_info.value.field_name == "age"

    def test_min_max(self):
        """Numbers are bounded by min and max."""
        person = Person.create({"name": "Ada", "age": 121})
        with pytest.raises(ValidationError, match="greater than max"):
            person.validate()
        person.age = -1
        with pytest.raises(ValidationError, match="less than min"):
            person.validate()
        person.age = 0
        person.validate()

    def test_date_min(self):
        """Date bounds apply to date values."""
        person = Person.create({"name": "Ada", "born": datetime(1850, 1, 1)})
        with pytest.raises(ValidationError, match="less than min"):
            person.validate()

    def test_match(self):
        """Strings must match the declared pattern."""
        person = Person.create({"name": "Ada", "email": "nope"})
        with pytest.raises(ValidationError, match="does not match"):
            person.validate()

    def test_choices(self):
        """Values must be one of the choices."""
        person = Person.create({"name": "Ada", "role": "root"})
        with pytest.raises(ValidationError, match="choices"):
            person.validate()

    def test_custom_validate(self):
        """A falsy custom validate() result fails."""
        person = Person.create({"name": "Ada", "nickname": "ADA"})
        with pytest.raises(ValidationError, match="custom validate"):
            person.validate()

    def test_none_skips_constraints(self):
        """Unset optional fields skip constraint checks."""
        person = Person.create({"name": "Ada"})
        person.validate()


class TestEmbeddedValidation:
    """Tests for recursive validation of embedded documents."""

    def test_embedded_field_validated(self):
        """Single embedded documents are validated."""
        car = Car.create({"model": "T", "front": {"size": 5}})
        with pytest.raises(ValidationError) as exc_info:
            car.validate()
        assert exc_info.value.class_name == "Wheel"
        assert exc_info.value.field_name == "size"

    def test_embedded_array_validated(self):
        """Each embedded array element is validated."""
        car = Car.create({"model": "T", "spares": [{"size": 12}, {"size": 3}]})
        with pytest.raises(ValidationError, match="Wheel.size"):
            car.validate()

    def test_embedded_wrong_type(self):
        """Non-instances in embedded fields fail the type check."""
        car = Car.create({"model": "T"})
        car.front = "wheel"
        with pytest.raises(ValidationError, match="should be Wheel"):
            car.validate()


class TestSuggestFields:
    """Tests for suggest_fields."""

    def test_close_match(self):
        """Misspelled keys suggest the intended key."""
        assert "name" in suggest_fields("nmae", ["name", "age"])

    def test_prefix_match(self):
        """Prefixes suggest matching keys."""
        assert suggest_fields("em", ["email", "name"]) == ["email"]

    def test_private_keys_excluded(self):
        """Keys starting with '_' are never suggested."""
        assert suggest_fields("_i", ["_id", "name"]) == []
