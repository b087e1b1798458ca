import pytest

from visual_tracker.domain.models import AggregationMode, LearningSession
from visual_tracker.domain.schemas import (
    DomainInput,
    GroupInput,
    ObjectiveInput,
    ProgressInput,
    StudentInput,
    validate_input,
)


def test_objective_input_accepts_dotted_codes():
    result = validate_input(ObjectiveInput, {"code": "C.1.2", "title": "Data", "parent_code": "C.1"})
    assert result.success
    assert result.data["code"] == "C.1.2"
    assert result.data["parent_code"] == "C.1"


@pytest.mark.parametrize("code", ["", "A..1", ".A", "A.", "A 1", "A/1"])
def test_objective_input_rejects_bad_codes(code):
    result = validate_input(ObjectiveInput, {"code": code, "title": "Bad"})
    assert not result.success
    assert result.errors


def test_objective_input_blank_parent_is_root():
    result = validate_input(ObjectiveInput, {"code": "F", "title": "New", "parent_code": "  "})
    assert result.success
    assert result.data["parent_code"] is None


def test_objective_cannot_be_its_own_parent():
    result = validate_input(ObjectiveInput, {"code": "F", "title": "Loop", "parent_code": "F"})
    assert not result.success


def test_input_sanitization_strips_control_characters():
    result = validate_input(GroupInput, {"name": "  Team\x00 Red\x07 "})
    assert result.success
    assert result.data["name"] == "Team Red"


def test_color_is_normalized():
    result = validate_input(GroupInput, {"name": "iOS", "color_hex": "8b5cf6"})
    assert result.data["color_hex"] == "#8B5CF6"

    result = validate_input(GroupInput, {"name": "iOS", "color_hex": "purple"})
    assert not result.success
    assert result.errors[0].field == "color_hex"


def test_domain_input_mode():
    result = validate_input(DomainInput, {"name": "Tech", "overall_mode": "expert_review"})
    assert result.success
    assert result.data["overall_mode"] is AggregationMode.EXPERT_REVIEW

    result = validate_input(DomainInput, {"name": "Tech", "overall_mode": "vote"})
    assert not result.success


def test_student_input_custom_properties():
    result = validate_input(
        StudentInput,
        {
            "name": " Ada ",
            "session": "Afternoon",
            "group_ids": [2, 2, 3],
            "custom_properties": [
                {"key": "GitHub", "value": "ada"},
                {"key": "", "value": ""},
                {"key": "Slack", "value": "@ada"},
            ],
        },
    )
    assert result.success
    assert result.data["name"] == "Ada"
    assert result.data["session"] is LearningSession.AFTERNOON
    assert result.data["group_ids"] == [2, 3]
    assert [p["key"] for p in result.data["custom_properties"]] == ["GitHub", "Slack"]


def test_student_input_rejects_duplicate_property_keys():
    result = validate_input(
        StudentInput,
        {
            "name": "Ada",
            "custom_properties": [{"key": "GitHub", "value": "a"}, {"key": "github", "value": "b"}],
        },
    )
    assert not result.success
    assert "Duplicate" in result.errors[0].message


def test_student_input_rejects_value_without_key():
    result = validate_input(
        StudentInput, {"name": "Ada", "custom_properties": [{"key": " ", "value": "orphan"}]}
    )
    assert not result.success


def test_student_input_rejects_empty_name():
    assert not validate_input(StudentInput, {"name": "   "}).success


@pytest.mark.parametrize("value,expected", [(-10, 0), (0, 0), (42, 42), (100, 100), (180, 100)])
def test_progress_input_clamps(value, expected):
    result = validate_input(
        ProgressInput, {"student_id": 1, "objective_code": "A.1", "value": value}
    )
    assert result.success
    assert result.data["value"] == expected
