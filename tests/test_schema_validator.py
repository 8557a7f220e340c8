"""Tests for tool argument validation built from input schemas."""

import pytest

from mcp_hub.errors import ToolValidationError
from mcp_hub.schema_validator import build_validator

WEATHER_SCHEMA = {
    "type": "object",
    "properties": {
        "city": {"type": "string", "minLength": 1},
        "days": {"type": "integer", "minimum": 1, "maximum": 7},
        "units": {"type": "string", "enum": ["metric", "imperial"]},
        "detailed": {"type": "boolean"},
    },
    "required": ["city"],
}


def test_valid_arguments():
    validator = build_validator(WEATHER_SCHEMA)
    assert validator.validate({"city": "Tokyo", "days": 3, "units": "metric"}) == []


def test_missing_required_field_is_listed():
    issues = build_validator(WEATHER_SCHEMA).validate({"days": 3})
    assert len(issues) == 1
    assert issues[0].startswith("city: ")


def test_optional_fields_may_be_absent():
    assert build_validator(WEATHER_SCHEMA).validate({"city": "Osaka"}) == []


@pytest.mark.parametrize("days", [0, 8])
def test_integer_outside_bounds(days):
    issues = build_validator(WEATHER_SCHEMA).validate({"city": "Tokyo", "days": days})
    assert len(issues) == 1
    assert issues[0].startswith("days: ")


def test_integer_rejects_string():
    issues = build_validator(WEATHER_SCHEMA).validate({"city": "Tokyo", "days": "3"})
    assert [i.split(":")[0] for i in issues] == ["days"]


def test_integer_accepts_whole_float():
    validator = build_validator(WEATHER_SCHEMA)
    assert validator.validate({"city": "Tokyo", "days": 3.0}) == []
    assert [i.split(":")[0] for i in validator.validate({"city": "Tokyo", "days": 3.5})] == [
        "days"
    ]
    assert validator.validate({"city": "Tokyo", "days": 9.0})[0].startswith("days: ")


def test_integer_rejects_boolean():
    issues = build_validator(WEATHER_SCHEMA).validate({"city": "Tokyo", "days": True})
    assert [i.split(":")[0] for i in issues] == ["days"]


def test_optional_field_rejects_explicit_null():
    schema = {"type": "object", "properties": {"days": {"type": "integer"}}}
    validator = build_validator(schema)
    assert validator.validate({}) == []
    issues = validator.validate({"days": None})
    assert len(issues) == 1
    assert issues[0].startswith("days: ")


def test_enum_violation():
    issues = build_validator(WEATHER_SCHEMA).validate({"city": "Tokyo", "units": "kelvin"})
    assert [i.split(":")[0] for i in issues] == ["units"]


def test_boolean_is_strict():
    issues = build_validator(WEATHER_SCHEMA).validate({"city": "Tokyo", "detailed": "yes"})
    assert [i.split(":")[0] for i in issues] == ["detailed"]


def test_extra_properties_are_accepted():
    validator = build_validator(WEATHER_SCHEMA)
    assert validator.validate({"city": "Tokyo", "note": "undeclared"}) == []


def test_every_failing_field_is_reported():
    issues = build_validator(WEATHER_SCHEMA).validate({"days": 10, "units": "kelvin"})
    assert sorted(i.split(":")[0] for i in issues) == ["city", "days", "units"]


def test_number_accepts_int_and_float():
    schema = {
        "type": "object",
        "properties": {"ratio": {"type": "number", "minimum": 0, "maximum": 1}},
    }
    validator = build_validator(schema)
    assert validator.validate({"ratio": 0.5}) == []
    assert validator.validate({"ratio": 1}) == []
    assert validator.validate({"ratio": 1.5})[0].startswith("ratio: ")


def test_string_pattern_and_length():
    schema = {
        "type": "object",
        "properties": {"code": {"type": "string", "pattern": "^[A-Z]{3}$", "maxLength": 3}},
        "required": ["code"],
    }
    validator = build_validator(schema)
    assert validator.validate({"code": "JPY"}) == []
    assert validator.validate({"code": "jpy"})[0].startswith("code: ")


def test_array_items_report_index_path():
    schema = {
        "type": "object",
        "properties": {"tags": {"type": "array", "items": {"type": "string"}}},
    }
    issues = build_validator(schema).validate({"tags": ["a", 2]})
    assert len(issues) == 1
    assert issues[0].startswith("tags.1: ")


def test_nested_object_paths():
    schema = {
        "type": "object",
        "properties": {
            "options": {
                "type": "object",
                "properties": {"limit": {"type": "integer", "maximum": 10}},
                "required": ["limit"],
            }
        },
        "required": ["options"],
    }
    validator = build_validator(schema)
    assert validator.validate({"options": {"limit": 5}}) == []
    assert validator.validate({"options": {"limit": 50}})[0].startswith("options.limit: ")
    assert validator.validate({"options": {}})[0].startswith("options.limit: ")


def test_null_type():
    schema = {
        "type": "object",
        "properties": {"nothing": {"type": "null"}},
        "required": ["nothing"],
    }
    validator = build_validator(schema)
    assert validator.validate({"nothing": None}) == []
    assert validator.validate({"nothing": 1})[0].startswith("nothing: ")


def test_property_names_that_shadow_model_attributes():
    schema = {
        "type": "object",
        "properties": {"json": {"type": "string"}, "model_config": {"type": "integer"}},
        "required": ["json", "model_config"],
    }
    validator = build_validator(schema)
    assert validator.validate({"json": "x", "model_config": 1}) == []
    assert sorted(i.split(":")[0] for i in validator.validate({})) == ["json", "model_config"]


def test_unrecognized_schema_accepts_anything():
    validator = build_validator({"description": "free-form"})
    assert validator.validate({"anything": [1, 2, 3]}) == []
    assert validator.validate("even a string") == []


def test_unsupported_keyword_accepts_anything():
    schema = {
        "type": "object",
        "properties": {"value": {"oneOf": [{"type": "string"}, {"type": "integer"}]}},
    }
    assert build_validator(schema).validate({"value": 3.5}) == []


def test_object_without_properties_requires_mapping():
    validator = build_validator({"type": "object"})
    assert validator.validate({"a": 1}) == []
    assert validator.validate([1])[0].startswith("(root): ")


def test_non_object_arguments_for_object_schema():
    issues = build_validator(WEATHER_SCHEMA).validate("Tokyo")
    assert len(issues) == 1
    assert issues[0].startswith("(root): ")


def test_check_raises_with_every_issue():
    with pytest.raises(ToolValidationError) as exc_info:
        build_validator(WEATHER_SCHEMA).check({"days": 0})
    assert len(exc_info.value.issues) == 2
    assert str(exc_info.value) == ", ".join(exc_info.value.issues)
    assert isinstance(exc_info.value, ValueError)
