from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ProgressStatus(str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETE = "Complete"

    @classmethod
    def from_percentage(cls, percentage: int) -> ProgressStatus:
        if percentage <= 0:
            return cls.NOT_STARTED
        if percentage >= 100:
            return cls.COMPLETE
        return cls.IN_PROGRESS


class LearningSession(str, Enum):
    MORNING = "Morning"
    AFTERNOON = "Afternoon"


class AggregationMode(str, Enum):
    """How an expertise check rolls up its objective tree."""

    COMPUTED = "computed"  # average of the domain's students
    EXPERT_REVIEW = "expert_review"  # reviewer-authored leaf scores


@dataclass(frozen=True, slots=True)
class LearningObjective:
    code: str
    title: str
    id: int | None = None
    description: str = ""
    is_quantitative: bool = False
    parent_code: str | None = None
    parent_id: int | None = None
    sort_order: int = 0
    is_archived: bool = False

    @property
    def is_root(self) -> bool:
        return self.parent_id is None and self.parent_code is None

    @property
    def depth(self) -> int:
        return self.code.count(".")


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    objective_code: str
    value: int  # 0..100
    objective_id: int | None = None
    notes: str = ""
    last_updated: datetime | None = None

    @property
    def status(self) -> ProgressStatus:
        return ProgressStatus.from_percentage(self.value)


@dataclass(frozen=True, slots=True)
class ExpertiseCheckScore:
    domain_id: int
    objective_code: str
    value: int  # 0..100
    objective_id: int | None = None
    edited_by: str | None = None
    updated_at: datetime | None = None

    @property
    def status(self) -> ProgressStatus:
        return ProgressStatus.from_percentage(self.value)


@dataclass(frozen=True, slots=True)
class CohortGroup:
    id: int
    name: str
    color_hex: str | None = None


@dataclass(frozen=True, slots=True)
class Domain:
    id: int
    name: str
    color_hex: str | None = None
    overall_mode: AggregationMode = AggregationMode.COMPUTED


@dataclass(frozen=True, slots=True)
class CustomProperty:
    key: str
    value: str
    sort_order: int = 0


@dataclass(frozen=True, slots=True)
class Student:
    id: int
    name: str
    session: LearningSession = LearningSession.MORNING
    created_at: datetime | None = None
    group_ids: frozenset[int] = field(default_factory=frozenset)
    domain_id: int | None = None
    custom_properties: tuple[CustomProperty, ...] = ()
    progress: tuple[ProgressRecord, ...] = ()

    def progress_lookup(self) -> dict[str, int]:
        return {record.objective_code: record.value for record in self.progress}

    def in_group(self, group_id: int) -> bool:
        return group_id in self.group_ids


class ScopeKind(str, Enum):
    OVERALL = "overall"
    UNGROUPED = "ungrouped"
    GROUP = "group"
    DOMAIN = "domain"
    NO_DOMAIN = "no_domain"


@dataclass(frozen=True, slots=True)
class StudentFilterScope:
    """Which slice of the cohort a board or roll-up is looking at."""

    kind: ScopeKind = ScopeKind.OVERALL
    target_id: int | None = None

    @classmethod
    def overall(cls) -> StudentFilterScope:
        return cls(ScopeKind.OVERALL)

    @classmethod
    def ungrouped(cls) -> StudentFilterScope:
        return cls(ScopeKind.UNGROUPED)

    @classmethod
    def group(cls, group_id: int) -> StudentFilterScope:
        return cls(ScopeKind.GROUP, group_id)

    @classmethod
    def domain(cls, domain_id: int) -> StudentFilterScope:
        return cls(ScopeKind.DOMAIN, domain_id)

    @classmethod
    def no_domain(cls) -> StudentFilterScope:
        return cls(ScopeKind.NO_DOMAIN)

    def matches(self, student: Student) -> bool:
        match self.kind:
            case ScopeKind.OVERALL:
                return True
            case ScopeKind.UNGROUPED:
                return not student.group_ids
            case ScopeKind.GROUP:
                return self.target_id is not None and student.in_group(self.target_id)
            case ScopeKind.DOMAIN:
                return self.target_id is not None and student.domain_id == self.target_id
            case ScopeKind.NO_DOMAIN:
                return student.domain_id is None
        return False

    def title(self, groups: list[CohortGroup], domains: list[Domain]) -> str:
        match self.kind:
            case ScopeKind.OVERALL:
                return "Overall"
            case ScopeKind.UNGROUPED:
                return "Ungrouped"
            case ScopeKind.GROUP:
                return next((g.name for g in groups if g.id == self.target_id), "Group")
            case ScopeKind.DOMAIN:
                return next((d.name for d in domains if d.id == self.target_id), "Expertise Check")
            case ScopeKind.NO_DOMAIN:
                return "No Expertise Check"
        return "Overall"
