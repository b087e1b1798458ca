"""
Repository re-exports and ORM -> domain snapshot mappers.

Repositories hand back ORM rows; the aggregation engine works on frozen
domain dataclasses. The ``*_to_domain`` helpers and ``load_snapshot`` are the
boundary between the two.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from ..domain.models import (
    AggregationMode,
    CohortGroup,
    CustomProperty,
    Domain,
    ExpertiseCheckScore,
    LearningObjective,
    LearningSession,
    ProgressRecord,
    Student,
)
from .logging import log_database_operation
from .models import (
    CohortGroupORM,
    DomainORM,
    ExpertiseCheckScoreORM,
    LearningObjectiveORM,
    StudentORM,
)
from .repositories_group import DomainRepo, GroupRepo
from .repositories_objective import CategoryLabelRepo, ObjectiveRepo
from .repositories_progress import ExpertiseScoreRepo, ProgressRepo
from .repositories_student import StudentRepo

__all__ = [
    "CategoryLabelRepo",
    "DomainRepo",
    "ExpertiseScoreRepo",
    "GroupRepo",
    "ObjectiveRepo",
    "ProgressRepo",
    "StudentRepo",
    "TrackerSnapshot",
    "load_snapshot",
]


def objective_to_domain(row: LearningObjectiveORM) -> LearningObjective:
    return LearningObjective(
        id=row.id,
        code=row.code,
        title=row.title,
        description=row.description or "",
        is_quantitative=bool(row.is_quantitative),
        parent_code=row.parent_code,
        parent_id=row.parent_id,
        sort_order=row.sort_order or 0,
        is_archived=bool(row.is_archived),
    )


def student_to_domain(row: StudentORM) -> Student:
    group_ids = {m.group_id for m in row.memberships}
    if row.group_id is not None:
        group_ids.add(row.group_id)
    return Student(
        id=row.id,
        name=row.name,
        session=LearningSession(row.session),
        created_at=row.created_at,
        group_ids=frozenset(group_ids),
        domain_id=row.domain_id,
        custom_properties=tuple(
            CustomProperty(key=p.key, value=p.value, sort_order=p.sort_order)
            for p in sorted(row.custom_properties, key=lambda p: p.sort_order)
        ),
        progress=tuple(
            ProgressRecord(
                objective_code=p.objective_code,
                value=p.value,
                objective_id=p.objective_id,
                notes=p.notes or "",
                last_updated=p.last_updated,
            )
            for p in row.progress_records
        ),
    )


def group_to_domain(row: CohortGroupORM) -> CohortGroup:
    return CohortGroup(id=row.id, name=row.name, color_hex=row.color_hex)


def domain_to_domain(row: DomainORM) -> Domain:
    return Domain(
        id=row.id,
        name=row.name,
        color_hex=row.color_hex,
        overall_mode=AggregationMode(row.overall_mode),
    )


def score_to_domain(row: ExpertiseCheckScoreORM) -> ExpertiseCheckScore:
    return ExpertiseCheckScore(
        domain_id=row.domain_id,
        objective_code=row.objective_code,
        value=row.value,
        objective_id=row.objective_id,
        edited_by=row.edited_by,
        updated_at=row.updated_at,
    )


@dataclass(frozen=True, slots=True)
class TrackerSnapshot:
    """Immutable view of everything the aggregation engine needs."""

    objectives: tuple[LearningObjective, ...]
    students: tuple[Student, ...]
    groups: tuple[CohortGroup, ...]
    domains: tuple[Domain, ...]
    scores: tuple[ExpertiseCheckScore, ...]
    category_labels: dict[str, str]

    def student(self, student_id: int) -> Student | None:
        return next((s for s in self.students if s.id == student_id), None)

    def domain(self, domain_id: int) -> Domain | None:
        return next((d for d in self.domains if d.id == domain_id), None)

    def group(self, group_id: int) -> CohortGroup | None:
        return next((g for g in self.groups if g.id == group_id), None)


@log_database_operation("snapshot.load")
def load_snapshot(session: Session, include_archived: bool = False) -> TrackerSnapshot:
    objective_repo = ObjectiveRepo(session)
    objectives = objective_repo.list_all() if include_archived else objective_repo.list_active()
    return TrackerSnapshot(
        objectives=tuple(objective_to_domain(o) for o in objectives),
        students=tuple(student_to_domain(s) for s in StudentRepo(session).list_with_relations()),
        groups=tuple(group_to_domain(g) for g in GroupRepo(session).list_by_name()),
        domains=tuple(domain_to_domain(d) for d in DomainRepo(session).list_by_name()),
        scores=tuple(score_to_domain(s) for s in ExpertiseScoreRepo(session).list()),
        category_labels=CategoryLabelRepo(session).as_dict(),
    )
