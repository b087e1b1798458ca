"""
Pydantic schemas for input validation across the application.

These schemas validate administrative edits (objectives, groups, expertise
checks, students) and progress updates before they reach the repositories.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import AggregationMode, LearningSession

OBJECTIVE_CODE_PATTERN = re.compile(r"^[A-Za-z0-9]+(\.[A-Za-z0-9]+)*$")
COLOR_HEX_PATTERN = re.compile(r"^#?[0-9A-Fa-f]{6}([0-9A-Fa-f]{2})?$")


class BaseValidationSchema(BaseModel):
    """Base schema with common validation utilities."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        use_enum_values=False,
    )

    @field_validator("*", mode="before")
    def sanitize_strings(cls, v):
        """Strip control characters from string inputs."""
        if isinstance(v, str):
            return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", v.strip())
        return v


def _normalize_color(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    if not COLOR_HEX_PATTERN.match(value):
        raise ValueError("Color must be a hex value like #3366FF")
    return "#" + value.lstrip("#").upper()


class ObjectiveInput(BaseValidationSchema):
    """Validation schema for success criteria and milestones."""

    code: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="", max_length=5000)
    is_quantitative: bool = False
    parent_code: str | None = Field(default=None, max_length=64)
    sort_order: int = Field(default=0, ge=0)

    @field_validator("code", "parent_code")
    def validate_code(cls, v):
        if v is None:
            return v
        if not v:
            return None
        if not OBJECTIVE_CODE_PATTERN.match(v):
            raise ValueError("Code must be dot-separated letters or digits, e.g. A.1.2")
        return v

    @model_validator(mode="after")
    def validate_not_own_parent(self):
        if self.parent_code is not None and self.parent_code == self.code:
            raise ValueError("An objective cannot be its own parent")
        return self


class ObjectiveUpdateInput(BaseValidationSchema):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=5000)
    is_quantitative: bool | None = None
    sort_order: int | None = Field(default=None, ge=0)


class NamedColorInput(BaseValidationSchema):
    """Validation schema for groups and expertise checks."""

    name: str = Field(..., min_length=1, max_length=255)
    color_hex: str | None = Field(default=None, max_length=9)

    @field_validator("name")
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Name cannot be empty")
        return v.strip()

    @field_validator("color_hex")
    def validate_color(cls, v):
        return _normalize_color(v)


class GroupInput(NamedColorInput):
    pass


class DomainInput(NamedColorInput):
    overall_mode: AggregationMode = AggregationMode.COMPUTED


class CustomPropertyInput(BaseValidationSchema):
    key: str = Field(..., max_length=255)
    value: str = Field(default="", max_length=2000)


class StudentInput(BaseValidationSchema):
    """Validation schema for adding or editing a student."""

    name: str = Field(..., min_length=1, max_length=255)
    session: LearningSession = LearningSession.MORNING
    group_ids: list[int] = Field(default_factory=list)
    domain_id: int | None = Field(default=None, gt=0)
    custom_properties: list[CustomPropertyInput] = Field(default_factory=list)

    @field_validator("name")
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Student name cannot be empty")
        return v.strip()

    @field_validator("group_ids")
    def validate_group_ids(cls, v):
        if any(gid <= 0 for gid in v):
            raise ValueError("Group IDs must be positive integers")
        return list(dict.fromkeys(v))

    @field_validator("custom_properties")
    def validate_custom_properties(cls, rows: list[CustomPropertyInput]):
        """Drop fully blank rows; keys must be present and unique (case-insensitive)."""
        kept: list[CustomPropertyInput] = []
        seen: set[str] = set()
        for row in rows:
            if not row.key and not row.value:
                continue
            if not row.key:
                raise ValueError("Custom property key cannot be empty")
            normalized = row.key.lower()
            if normalized in seen:
                raise ValueError(f"Duplicate custom property key: {row.key}")
            seen.add(normalized)
            kept.append(row)
        return kept


class ProgressInput(BaseValidationSchema):
    """Validation schema for a leaf progress update."""

    student_id: int = Field(..., gt=0)
    objective_code: str = Field(..., min_length=1, max_length=64)
    value: int
    notes: str | None = Field(default=None, max_length=2000)

    @field_validator("value")
    def clamp_value(cls, v):
        return max(0, min(100, v))


class ExpertiseScoreInput(BaseValidationSchema):
    domain_id: int = Field(..., gt=0)
    objective_code: str = Field(..., min_length=1, max_length=64)
    value: int
    edited_by: str | None = Field(default=None, max_length=255)

    @field_validator("value")
    def clamp_value(cls, v):
        return max(0, min(100, v))


class ValidationErrorDetail(BaseModel):
    field: str
    message: str
    value: Any = None


class ValidationResponse(BaseModel):
    success: bool
    errors: list[ValidationErrorDetail] = []
    data: dict[str, Any] | None = None


def validate_input(schema_class: type[BaseModel], data: dict[str, Any]) -> ValidationResponse:
    """
    Validate ``data`` against ``schema_class`` and return a structured result.

    Example:
        >>> result = validate_input(GroupInput, {"name": "Team Red"})
        >>> result.success
        True
    """
    try:
        validated = schema_class(**data)
        return ValidationResponse(success=True, data=validated.model_dump())
    except Exception as e:
        errors = []
        if hasattr(e, "errors"):
            for error in e.errors():
                errors.append(
                    ValidationErrorDetail(
                        field=".".join(str(x) for x in error["loc"]) or "general",
                        message=error["msg"],
                        value=error.get("input"),
                    )
                )
        else:
            errors.append(ValidationErrorDetail(field="general", message=str(e)))

        return ValidationResponse(success=False, errors=errors)
