from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class Objective(BaseModel):
    id: Optional[int] = None
    code: str
    title: str
    description: str = ""
    is_quantitative: bool = False
    parent_code: Optional[str] = None
    parent_id: Optional[int] = None
    sort_order: int = 0
    is_archived: bool = False


class ObjectiveTreeNode(BaseModel):
    code: str
    title: str
    depth: int
    is_leaf: bool


class ObjectiveCreateRequest(BaseModel):
    code: str
    title: str
    description: str = ""
    is_quantitative: bool = False
    parent_code: Optional[str] = None
    sort_order: Optional[int] = None


class CustomPropertyItem(BaseModel):
    key: str
    value: str = ""


class StudentSummary(BaseModel):
    id: int
    name: str
    session: str
    group_ids: list[int] = Field(default_factory=list)
    domain_id: Optional[int] = None
    overall: int
    status: str


class StudentCreateRequest(BaseModel):
    name: str
    session: str = "Morning"
    group_ids: list[int] = Field(default_factory=list)
    domain_id: Optional[int] = None
    custom_properties: list[CustomPropertyItem] = Field(default_factory=list)


class ObjectiveProgress(BaseModel):
    code: str
    title: str
    depth: int
    is_leaf: bool
    percentage: int
    status: str


class StudentDetail(BaseModel):
    id: int
    name: str
    session: str
    created_at: Optional[datetime] = None
    group_ids: list[int] = Field(default_factory=list)
    domain_id: Optional[int] = None
    custom_properties: list[CustomPropertyItem] = Field(default_factory=list)
    overall: int
    status: str
    objectives: list[ObjectiveProgress] = Field(default_factory=list)


class ProgressUpdate(BaseModel):
    objective_code: str
    value: int
    notes: Optional[str] = None


class ProgressResponse(BaseModel):
    student_id: int
    objective_code: str
    value: int
    status: str
    overall: int


class NamedItemRequest(BaseModel):
    name: str
    color_hex: Optional[str] = None


class Group(BaseModel):
    id: int
    name: str
    color_hex: Optional[str] = None
    member_count: int = 0
    overall: int = 0


class Domain(BaseModel):
    id: int
    name: str
    color_hex: Optional[str] = None
    overall_mode: Literal["computed", "expert_review"] = "computed"
    member_count: int = 0
    overall: int = 0


class DomainCreateRequest(NamedItemRequest):
    overall_mode: Literal["computed", "expert_review"] = "computed"


class DomainModeUpdate(BaseModel):
    overall_mode: Literal["computed", "expert_review"]


class ExpertiseScoreUpdate(BaseModel):
    objective_code: str
    value: int
    edited_by: Optional[str] = None


class DomainObjectiveRollup(BaseModel):
    code: str
    title: str
    depth: int
    percentage: int
    status: str


class DomainRollup(BaseModel):
    domain_id: int
    overall_mode: str
    overall: int
    objectives: list[DomainObjectiveRollup] = Field(default_factory=list)


class CriterionAverage(BaseModel):
    code: str
    title: str
    average: int
    status: str


class OverviewResponse(BaseModel):
    scope: str
    title: str
    student_count: int
    overall: int
    status: str
    criteria: list[CriterionAverage] = Field(default_factory=list)


class ImportPreviewRow(BaseModel):
    row_number: int
    full_name: str
    expertise_check: str
    learning_session: str
    is_valid: bool
    reason: Optional[str] = None


class ImportResponse(BaseModel):
    total_rows: int
    imported: int
    skipped: int
    failed: int
    message: str
    failed_names: list[str] = Field(default_factory=list)


class ImportPreviewResponse(BaseModel):
    total_rows: int
    valid_rows: int
    skipped_rows: int
    rows: list[ImportPreviewRow] = Field(default_factory=list)
