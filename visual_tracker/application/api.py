"""
Application API layer with validation, error handling and logging.

Every operation takes an open SQLAlchemy session, validates its input with
the pydantic schemas, works through the repositories and flushes. Committing
is left to the caller (a web request or a ``UnitOfWork`` block). Failures that
are not already a ``TrackerError`` are logged and wrapped in one.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, NoReturn

import pandas as pd
from sqlalchemy.orm import Session

from ..domain.models import (
    AggregationMode,
    CohortGroup,
    Domain,
    LearningObjective,
    LearningSession,
    ProgressStatus,
    Student,
    StudentFilterScope,
)
from ..domain.schemas import (
    DomainInput,
    ExpertiseScoreInput,
    GroupInput,
    ObjectiveInput,
    ObjectiveUpdateInput,
    ProgressInput,
    StudentInput,
    validate_input,
)
from ..domain.services import ObjectiveTree, ProgressCalculator
from ..infrastructure.config import get_settings
from ..infrastructure.exceptions import (
    BusinessLogicError,
    DomainNotFoundError,
    DuplicateCodeError,
    GroupNotFoundError,
    IntegrityError,
    MultipleValidationError,
    ObjectiveNotFoundError,
    StudentNotFoundError,
    TrackerError,
    ValidationError,
    create_user_friendly_error_message,
    log_error_details,
)
from ..infrastructure.logging import get_logger, log_operation, set_context
from ..infrastructure.models import (
    CategoryLabelORM,
    CohortGroupORM,
    DomainORM,
    ExpertiseCheckScoreORM,
    LearningObjectiveORM,
    ObjectiveProgressORM,
    StudentORM,
    utcnow,
)
from ..infrastructure.repositories import (
    CategoryLabelRepo,
    DomainRepo,
    ExpertiseScoreRepo,
    GroupRepo,
    ObjectiveRepo,
    ProgressRepo,
    StudentRepo,
    TrackerSnapshot,
    load_snapshot,
    objective_to_domain,
)
from ..utils.csv_import import EXPERTISE_PROPERTY_KEY, parse_student_csv
from ..utils.exports import CSVExportResult, build_export_tables, make_csv_zip_bytes, write_csv_bundle
from ..utils.seed import seed_preset_domains

logger = get_logger(__name__)


# ---------- Result types ----------


@dataclass(frozen=True, slots=True)
class ObjectiveProgressRow:
    objective: LearningObjective
    depth: int
    percentage: int
    is_leaf: bool

    @property
    def status(self) -> ProgressStatus:
        return ProgressStatus.from_percentage(self.percentage)


@dataclass(frozen=True, slots=True)
class StudentOverview:
    student: Student
    overall: int
    rows: tuple[ObjectiveProgressRow, ...]

    @property
    def status(self) -> ProgressStatus:
        return ProgressStatus.from_percentage(self.overall)


@dataclass(slots=True)
class ImportSummary:
    total_rows: int = 0
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    failed_names: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Imported {self.imported}, skipped {self.skipped}, failed {self.failed}."


# ---------- Helpers ----------


def _require_valid(schema: type, data: dict[str, Any], field_name: str) -> dict[str, Any]:
    validation_result = validate_input(schema, data)
    if not validation_result.success:
        problems = [(e.field, e.message) for e in validation_result.errors]
        logger.warning("Validation failed for %s: %s", field_name, problems)
        if len(problems) > 1:
            raise MultipleValidationError(field_name, problems)
        raise ValidationError(field_name, "; ".join(f"{f}: {m}" for f, m in problems))
    if validation_result.data is None:
        raise RuntimeError("Validation succeeded but returned no data")
    return validation_result.data


def _reraise(e: Exception, message: str, context: dict[str, Any]) -> NoReturn:
    error_details = log_error_details(e, context)
    logger.error(message, extra=error_details)
    if isinstance(e, TrackerError):
        raise e
    raise TrackerError(
        f"{message}: {e}",
        details=error_details,
        user_message=create_user_friendly_error_message(e),
    ) from e


def _calculator(snapshot: TrackerSnapshot) -> ProgressCalculator:
    return ProgressCalculator(
        snapshot.objectives, max_depth=get_settings().app.max_tree_depth, logger=logger
    )


def _resolve_objective(calculator: ProgressCalculator, code: str) -> LearningObjective:
    objective = calculator.tree.get(code)
    if objective is None:
        raise ObjectiveNotFoundError(code)
    return objective


# ---------- Objectives ----------


@log_operation("create_objective")
def create_objective(
    session: Session,
    code: str,
    title: str,
    description: str = "",
    is_quantitative: bool = False,
    parent_code: str | None = None,
    sort_order: int | None = None,
) -> LearningObjectiveORM:
    """
    Create a success criterion (no parent) or a milestone under ``parent_code``.

    Raises:
        ValidationError: If the code or title is malformed
        DuplicateCodeError: If an active objective already uses ``code``
        ObjectiveNotFoundError: If ``parent_code`` is not an active objective

    Example:
        >>> create_objective(session, "F", "Able to present work")
        >>> create_objective(session, "F.1", "Present to peers", parent_code="F")
    """
    data = _require_valid(
        ObjectiveInput,
        {
            "code": code,
            "title": title,
            "description": description or "",
            "is_quantitative": is_quantitative,
            "parent_code": parent_code,
            "sort_order": sort_order or 0,
        },
        "objective",
    )

    try:
        set_context(operation="create_objective", objective_code=data["code"])
        repo = ObjectiveRepo(session)
        if repo.code_in_use(data["code"]):
            raise DuplicateCodeError(data["code"])

        parent_id = None
        if data["parent_code"] is not None:
            parent_id = repo.get_by_code_required(data["parent_code"]).id

        objective = repo.create(
            code=data["code"],
            title=data["title"],
            description=data["description"],
            is_quantitative=data["is_quantitative"],
            parent_code=data["parent_code"],
            parent_id=parent_id,
            sort_order=repo.next_sort_order() if sort_order is None else data["sort_order"],
        )
        logger.info("Created objective %s (%s)", objective.code, objective.title)
        return objective
    except Exception as e:
        _reraise(e, "Failed to create objective", {"code": code, "parent_code": parent_code})


@log_operation("update_objective")
def update_objective(session: Session, objective_id: int, **changes: Any) -> LearningObjectiveORM:
    """Apply title/description/is_quantitative/sort_order changes; ``None`` leaves a field alone."""
    data = _require_valid(ObjectiveUpdateInput, changes, "objective")

    try:
        repo = ObjectiveRepo(session)
        objective = repo.get_by_id_required(objective_id)
        fields = {k: v for k, v in data.items() if v is not None}
        if fields:
            repo.update(objective, **fields)
        logger.info("Updated objective %s: %s", objective.code, sorted(fields))
        return objective
    except Exception as e:
        _reraise(e, "Failed to update objective", {"objective_id": objective_id})


@log_operation("archive_objective")
def archive_objective(session: Session, objective_id: int) -> LearningObjectiveORM:
    """Soft-delete an objective together with its descendants; progress rows are kept."""
    try:
        repo = ObjectiveRepo(session)
        objective = repo.get_by_id_required(objective_id)
        repo.archive(objective)
        logger.info("Archived objective %s", objective.code)
        return objective
    except Exception as e:
        _reraise(e, "Failed to archive objective", {"objective_id": objective_id})


@log_operation("list_objectives")
def list_objectives(session: Session, include_archived: bool = False) -> list[LearningObjective]:
    repo = ObjectiveRepo(session)
    rows = repo.list_all() if include_archived else repo.list_active()
    return [objective_to_domain(row) for row in rows]


@log_operation("objective_tree")
def objective_tree(session: Session) -> list[tuple[LearningObjective, int, bool]]:
    """Active objectives in display order as ``(objective, depth, is_leaf)``."""
    tree = _calculator(load_snapshot(session)).tree
    return [(objective, depth, tree.is_leaf(objective)) for objective, depth in tree.walk()]


@log_operation("update_category_label")
def update_category_label(session: Session, code: str, title: str) -> CategoryLabelORM:
    title = (title or "").strip()
    if not title:
        raise ValidationError("title", "Title cannot be empty")

    try:
        ObjectiveRepo(session).get_by_code_required(code)
        label = CategoryLabelRepo(session).upsert(code, title)
        logger.info("Category %s now titled %r", code, title)
        return label
    except Exception as e:
        _reraise(e, "Failed to update category label", {"code": code})


# ---------- Groups ----------


@log_operation("add_group")
def add_group(session: Session, name: str, color_hex: str | None = None) -> CohortGroupORM:
    """
    Create a cohort group.

    Raises:
        ValidationError: If the name is empty or the color malformed
        IntegrityError: If a group with the same name (case-insensitive) exists
    """
    data = _require_valid(GroupInput, {"name": name, "color_hex": color_hex}, "group")

    try:
        repo = GroupRepo(session)
        if repo.name_exists(data["name"]):
            raise IntegrityError(f"Group '{data['name']}' already exists", constraint="unique")
        group = repo.create(name=data["name"], color_hex=data["color_hex"])
        logger.info("Created group %r with ID %s", group.name, group.id)
        return group
    except Exception as e:
        _reraise(e, "Failed to add group", {"name": name})


@log_operation("rename_group")
def rename_group(session: Session, group_id: int, name: str) -> CohortGroupORM:
    data = _require_valid(GroupInput, {"name": name}, "group")

    try:
        set_context(group_id=group_id)
        repo = GroupRepo(session)
        group = repo.get_by_id_required(group_id)
        if repo.name_exists(data["name"], exclude_id=group_id):
            raise IntegrityError(f"Group '{data['name']}' already exists", constraint="unique")
        repo.update(group, name=data["name"])
        return group
    except Exception as e:
        _reraise(e, "Failed to rename group", {"group_id": group_id, "name": name})


@log_operation("delete_group")
def delete_group(session: Session, group_id: int) -> None:
    """Delete a group; its students stay in the cohort without it."""
    try:
        repo = GroupRepo(session)
        group = repo.get_by_id_required(group_id)
        repo.delete(group)
        logger.info("Deleted group %s", group_id)
    except Exception as e:
        _reraise(e, "Failed to delete group", {"group_id": group_id})


# ---------- Expertise checks (domains) ----------


@log_operation("add_domain")
def add_domain(
    session: Session,
    name: str,
    color_hex: str | None = None,
    overall_mode: AggregationMode | str = AggregationMode.COMPUTED,
) -> DomainORM:
    data = _require_valid(
        DomainInput,
        {"name": name, "color_hex": color_hex, "overall_mode": overall_mode},
        "domain",
    )

    try:
        repo = DomainRepo(session)
        if repo.name_exists(data["name"]):
            raise IntegrityError(
                f"Expertise check '{data['name']}' already exists", constraint="unique"
            )
        domain = repo.create(
            name=data["name"],
            color_hex=data["color_hex"],
            overall_mode=AggregationMode(data["overall_mode"]).value,
        )
        logger.info("Created expertise check %r with ID %s", domain.name, domain.id)
        return domain
    except Exception as e:
        _reraise(e, "Failed to add expertise check", {"name": name})


@log_operation("rename_domain")
def rename_domain(session: Session, domain_id: int, name: str) -> DomainORM:
    data = _require_valid(DomainInput, {"name": name}, "domain")

    try:
        set_context(domain_id=domain_id)
        repo = DomainRepo(session)
        domain = repo.get_by_id_required(domain_id)
        if repo.name_exists(data["name"], exclude_id=domain_id):
            raise IntegrityError(
                f"Expertise check '{data['name']}' already exists", constraint="unique"
            )
        repo.update(domain, name=data["name"])
        return domain
    except Exception as e:
        _reraise(e, "Failed to rename expertise check", {"domain_id": domain_id})


@log_operation("set_domain_mode")
def set_domain_mode(
    session: Session, domain_id: int, mode: AggregationMode | str
) -> DomainORM:
    """Switch an expertise check between computed averages and reviewer scores."""
    try:
        parsed = AggregationMode(mode)
    except ValueError as e:
        raise ValidationError("overall_mode", f"Unknown mode {mode!r}", mode) from e

    try:
        repo = DomainRepo(session)
        domain = repo.get_by_id_required(domain_id)
        repo.update(domain, overall_mode=parsed.value)
        logger.info("Expertise check %s now uses %s mode", domain_id, parsed.value)
        return domain
    except Exception as e:
        _reraise(e, "Failed to change expertise check mode", {"domain_id": domain_id})


@log_operation("delete_domain")
def delete_domain(session: Session, domain_id: int) -> None:
    try:
        repo = DomainRepo(session)
        repo.delete(repo.get_by_id_required(domain_id))
        logger.info("Deleted expertise check %s", domain_id)
    except Exception as e:
        _reraise(e, "Failed to delete expertise check", {"domain_id": domain_id})


@log_operation("ensure_preset_domains")
def ensure_preset_domains(session: Session) -> int:
    """Create Domain Expert, Tech and Design if missing; returns how many were added."""
    try:
        return seed_preset_domains(session)
    except Exception as e:
        _reraise(e, "Failed to create preset expertise checks", {})


# ---------- Students ----------


def _property_rows(custom_properties: Iterable[Any] | None) -> list[dict[str, str]]:
    rows: list[dict[str, str]] = []
    for item in custom_properties or ():
        if isinstance(item, dict):
            rows.append({"key": item.get("key", ""), "value": item.get("value", "")})
        else:
            key, value = item
            rows.append({"key": key, "value": value})
    return rows


def _check_references(session: Session, group_ids: Sequence[int], domain_id: int | None) -> None:
    group_repo = GroupRepo(session)
    for group_id in group_ids:
        group_repo.get_by_id_required(group_id)
    if domain_id is not None:
        DomainRepo(session).get_by_id_required(domain_id)


@log_operation("add_student")
def add_student(
    session: Session,
    name: str,
    learning_session: LearningSession | str = LearningSession.MORNING,
    group_ids: Sequence[int] | None = None,
    domain_id: int | None = None,
    custom_properties: Iterable[Any] | None = None,
) -> StudentORM:
    """
    Add a student to the cohort.

    ``custom_properties`` accepts ``(key, value)`` pairs or ``{"key", "value"}``
    dicts. Fully blank rows are dropped; remaining keys must be non-empty and
    unique (case-insensitive).

    Raises:
        ValidationError: If the name is empty or the properties are invalid
        GroupNotFoundError: If a group ID does not exist
        DomainNotFoundError: If ``domain_id`` does not exist

    Example:
        >>> student = add_student(session, "Ada", "Afternoon", group_ids=[1],
        ...                       custom_properties=[("GitHub", "ada")])
    """
    data = _require_valid(
        StudentInput,
        {
            "name": name,
            "session": learning_session,
            "group_ids": list(group_ids or []),
            "domain_id": domain_id,
            "custom_properties": _property_rows(custom_properties),
        },
        "student",
    )

    try:
        _check_references(session, data["group_ids"], data["domain_id"])

        repo = StudentRepo(session)
        student = repo.create(
            name=data["name"],
            session=LearningSession(data["session"]).value,
            domain_id=data["domain_id"],
        )
        repo.set_groups(student, data["group_ids"])
        repo.replace_custom_properties(
            student, [(p["key"], p["value"]) for p in data["custom_properties"]]
        )
        logger.info("Added student %r with ID %s", student.name, student.id)
        return student
    except Exception as e:
        _reraise(e, "Failed to add student", {"name": name})


@log_operation("update_student")
def update_student(
    session: Session,
    student_id: int,
    name: str,
    learning_session: LearningSession | str = LearningSession.MORNING,
    group_ids: Sequence[int] | None = None,
    domain_id: int | None = None,
    custom_properties: Iterable[Any] | None = None,
) -> StudentORM:
    """Replace every editable field of a student, including its property rows."""
    data = _require_valid(
        StudentInput,
        {
            "name": name,
            "session": learning_session,
            "group_ids": list(group_ids or []),
            "domain_id": domain_id,
            "custom_properties": _property_rows(custom_properties),
        },
        "student",
    )

    try:
        set_context(student_id=student_id)
        repo = StudentRepo(session)
        student = repo.get_by_id_required(student_id)
        _check_references(session, data["group_ids"], data["domain_id"])

        repo.update(
            student,
            name=data["name"],
            session=LearningSession(data["session"]).value,
            domain_id=data["domain_id"],
            updated_at=utcnow(),
        )
        repo.set_groups(student, data["group_ids"])
        repo.replace_custom_properties(
            student, [(p["key"], p["value"]) for p in data["custom_properties"]]
        )
        return student
    except Exception as e:
        _reraise(e, "Failed to update student", {"student_id": student_id})


@log_operation("rename_student")
def rename_student(session: Session, student_id: int, name: str) -> StudentORM:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("name", "Student name cannot be empty")

    try:
        repo = StudentRepo(session)
        student = repo.get_by_id_required(student_id)
        repo.update(student, name=cleaned, updated_at=utcnow())
        return student
    except Exception as e:
        _reraise(e, "Failed to rename student", {"student_id": student_id})


@log_operation("move_student")
def move_student(session: Session, student_id: int, group_id: int | None) -> StudentORM:
    """Put a student in exactly one group, or in none when ``group_id`` is None."""
    return set_student_groups(session, student_id, [] if group_id is None else [group_id])


@log_operation("set_student_groups")
def set_student_groups(session: Session, student_id: int, group_ids: Sequence[int]) -> StudentORM:
    if any(gid <= 0 for gid in group_ids):
        raise ValidationError("group_ids", "Group IDs must be positive integers", list(group_ids))

    try:
        repo = StudentRepo(session)
        student = repo.get_by_id_required(student_id)
        _check_references(session, group_ids, None)
        repo.set_groups(student, group_ids)
        repo.update(student, updated_at=utcnow())
        logger.info("Student %s now in groups %s", student_id, list(group_ids))
        return student
    except Exception as e:
        _reraise(e, "Failed to change student groups", {"student_id": student_id})


@log_operation("delete_student")
def delete_student(session: Session, student_id: int) -> None:
    """Delete a student with their progress, properties and memberships."""
    try:
        repo = StudentRepo(session)
        repo.delete(repo.get_by_id_required(student_id))
        logger.info("Deleted student %s", student_id)
    except Exception as e:
        _reraise(e, "Failed to delete student", {"student_id": student_id})


# ---------- Progress ----------


def _leaf_objective(session: Session, code: str) -> LearningObjectiveORM:
    """Return the active objective for ``code``, refusing category objectives."""
    repo = ObjectiveRepo(session)
    objective = repo.get_by_code_required(code)
    tree = ObjectiveTree(
        (objective_to_domain(o) for o in repo.list_active()),
        max_depth=get_settings().app.max_tree_depth,
    )
    if not tree.is_leaf(objective.code):
        raise BusinessLogicError(
            f"Objective {objective.code} has milestones; its progress is computed from them",
            rule="leaf_only",
        )
    return objective


@log_operation("set_progress")
def set_progress(
    session: Session,
    student_id: int,
    objective_code: str,
    value: int,
    notes: str | None = None,
) -> ObjectiveProgressORM:
    """
    Record a student's completion of a leaf objective, clamped into 0..100.

    Raises:
        StudentNotFoundError: If the student does not exist
        ObjectiveNotFoundError: If no active objective has ``objective_code``
        BusinessLogicError: If the objective has children

    Example:
        >>> set_progress(session, student_id=1, objective_code="A.1", value=40)
    """
    data = _require_valid(
        ProgressInput,
        {"student_id": student_id, "objective_code": objective_code, "value": value, "notes": notes},
        "progress",
    )

    try:
        set_context(student_id=student_id, objective_code=objective_code)
        StudentRepo(session).get_by_id_required(data["student_id"])
        objective = _leaf_objective(session, data["objective_code"])

        record = ProgressRepo(session).upsert(
            student_id=data["student_id"],
            objective_code=objective.code,
            value=data["value"],
            objective_id=objective.id,
            notes=data["notes"],
        )
        logger.info(
            "Progress for student %s on %s set to %d", student_id, objective.code, record.value
        )
        return record
    except Exception as e:
        _reraise(
            e,
            "Failed to record progress",
            {"student_id": student_id, "objective_code": objective_code, "value": value},
        )


@log_operation("set_expertise_score")
def set_expertise_score(
    session: Session,
    domain_id: int,
    objective_code: str,
    value: int,
    edited_by: str | None = None,
) -> ExpertiseCheckScoreORM:
    """Record a reviewer's score for a leaf objective of an expertise check."""
    data = _require_valid(
        ExpertiseScoreInput,
        {
            "domain_id": domain_id,
            "objective_code": objective_code,
            "value": value,
            "edited_by": edited_by,
        },
        "expertise_score",
    )

    try:
        set_context(domain_id=domain_id, objective_code=objective_code)
        DomainRepo(session).get_by_id_required(data["domain_id"])
        objective = _leaf_objective(session, data["objective_code"])
        return ExpertiseScoreRepo(session).upsert(
            domain_id=data["domain_id"],
            objective_code=objective.code,
            value=data["value"],
            objective_id=objective.id,
            edited_by=data["edited_by"],
        )
    except Exception as e:
        _reraise(
            e,
            "Failed to record expertise check score",
            {"domain_id": domain_id, "objective_code": objective_code},
        )


# ---------- Roll-ups ----------


def filter_students(
    snapshot: TrackerSnapshot, scope: StudentFilterScope | None = None
) -> list[Student]:
    """Students visible under ``scope`` (the whole cohort by default)."""
    scope = scope or StudentFilterScope.overall()
    return [s for s in snapshot.students if scope.matches(s)]


def _student_or_raise(snapshot: TrackerSnapshot, student_id: int) -> Student:
    student = snapshot.student(student_id)
    if student is None:
        raise StudentNotFoundError(student_id)
    return student


@log_operation("objective_percentage")
def objective_percentage(session: Session, student_id: int, objective_code: str) -> int:
    snapshot = load_snapshot(session)
    calculator = _calculator(snapshot)
    objective = _resolve_objective(calculator, objective_code)
    return calculator.objective_percentage(_student_or_raise(snapshot, student_id), objective)


@log_operation("student_overview")
def student_overview(session: Session, student_id: int) -> StudentOverview:
    """Overall completion of one student plus every active objective in display order."""
    snapshot = load_snapshot(session)
    calculator = _calculator(snapshot)
    student = _student_or_raise(snapshot, student_id)
    lookup = student.progress_lookup()

    rows = tuple(
        ObjectiveProgressRow(
            objective=objective,
            depth=depth,
            percentage=calculator.tree.percentage(objective, lookup.get),
            is_leaf=calculator.tree.is_leaf(objective),
        )
        for objective, depth in calculator.tree.walk()
    )
    return StudentOverview(student=student, overall=calculator.student_overall(student), rows=rows)


@log_operation("group_overall")
def group_overall(session: Session, group_id: int) -> int:
    snapshot = load_snapshot(session)
    if snapshot.group(group_id) is None:
        raise GroupNotFoundError(group_id)
    return _calculator(snapshot).group_overall(group_id, snapshot.students)


@log_operation("cohort_overall")
def cohort_overall(session: Session, scope: StudentFilterScope | None = None) -> int:
    snapshot = load_snapshot(session)
    return _calculator(snapshot).cohort_overall(filter_students(snapshot, scope))


@log_operation("cohort_objective_average")
def cohort_objective_average(
    session: Session, objective_code: str, scope: StudentFilterScope | None = None
) -> int:
    snapshot = load_snapshot(session)
    calculator = _calculator(snapshot)
    objective = _resolve_objective(calculator, objective_code)
    return calculator.cohort_objective_average(objective, filter_students(snapshot, scope))


@log_operation("domain_objective_percentage")
def domain_objective_percentage(session: Session, domain_id: int, objective_code: str) -> int:
    """
    Completion of ``objective_code`` for an expertise check.

    Reviewer scores are used in expert-review mode; otherwise the average of
    the students assigned to the expertise check.
    """
    snapshot = load_snapshot(session)
    domain = snapshot.domain(domain_id)
    if domain is None:
        raise DomainNotFoundError(domain_id)
    calculator = _calculator(snapshot)
    objective = _resolve_objective(calculator, objective_code)
    members = filter_students(snapshot, StudentFilterScope.domain(domain_id))
    return calculator.domain_objective_percentage(domain, objective, members, snapshot.scores)


@log_operation("domain_overall")
def domain_overall(session: Session, domain_id: int) -> int:
    snapshot = load_snapshot(session)
    domain = snapshot.domain(domain_id)
    if domain is None:
        raise DomainNotFoundError(domain_id)
    members = filter_students(snapshot, StudentFilterScope.domain(domain_id))
    return _calculator(snapshot).domain_overall(domain, members, snapshot.scores)


@log_operation("build_rollup_frame")
def build_rollup_frame(
    session: Session, scope: StudentFilterScope | None = None
) -> pd.DataFrame:
    """
    Student x success-criterion roll-up table.

    Columns: StudentID, Student, one column per root objective code, Overall
    and Status.
    """
    snapshot = load_snapshot(session)
    calculator = _calculator(snapshot)
    roots = calculator.tree.roots()
    columns = ["StudentID", "Student", *[r.code for r in roots], "Overall", "Status"]

    records = []
    for student in filter_students(snapshot, scope):
        lookup = student.progress_lookup()
        overall = calculator.student_overall(student)
        records.append(
            [
                student.id,
                student.name,
                *[calculator.tree.percentage(root, lookup.get) for root in roots],
                overall,
                ProgressStatus.from_percentage(overall).value,
            ]
        )

    df = pd.DataFrame(records, columns=columns)
    logger.info("Built roll-up frame for %d students across %d criteria", len(df), len(roots))
    return df


# ---------- Board views ----------


@dataclass(frozen=True, slots=True)
class ScopeOverview:
    title: str
    students: tuple[Student, ...]
    overall: int
    criteria: tuple[tuple[LearningObjective, int], ...]

    @property
    def status(self) -> ProgressStatus:
        return ProgressStatus.from_percentage(self.overall)


@dataclass(frozen=True, slots=True)
class DomainRollup:
    domain: Domain
    members: int
    overall: int
    rows: tuple[ObjectiveProgressRow, ...]


@log_operation("list_students")
def list_students(
    session: Session, scope: StudentFilterScope | None = None
) -> list[tuple[Student, int]]:
    """Students under ``scope`` paired with their overall completion."""
    snapshot = load_snapshot(session)
    calculator = _calculator(snapshot)
    return [(s, calculator.student_overall(s)) for s in filter_students(snapshot, scope)]


@log_operation("list_groups")
def list_groups(session: Session) -> list[tuple[CohortGroup, int, int]]:
    """Every group with its member count and overall completion."""
    snapshot = load_snapshot(session)
    calculator = _calculator(snapshot)
    result = []
    for group in snapshot.groups:
        members = filter_students(snapshot, StudentFilterScope.group(group.id))
        result.append((group, len(members), calculator.cohort_overall(members)))
    return result


@log_operation("list_domains")
def list_domains(session: Session) -> list[tuple[Domain, int, int]]:
    """Every expertise check with its member count and mode-dependent overall."""
    snapshot = load_snapshot(session)
    calculator = _calculator(snapshot)
    result = []
    for domain in snapshot.domains:
        members = filter_students(snapshot, StudentFilterScope.domain(domain.id))
        result.append(
            (domain, len(members), calculator.domain_overall(domain, members, snapshot.scores))
        )
    return result


@log_operation("domain_rollup")
def domain_rollup(session: Session, domain_id: int) -> DomainRollup:
    snapshot = load_snapshot(session)
    domain = snapshot.domain(domain_id)
    if domain is None:
        raise DomainNotFoundError(domain_id)
    calculator = _calculator(snapshot)
    members = filter_students(snapshot, StudentFilterScope.domain(domain_id))
    scores = list(snapshot.scores)

    rows = tuple(
        ObjectiveProgressRow(
            objective=objective,
            depth=depth,
            percentage=calculator.domain_objective_percentage(domain, objective, members, scores),
            is_leaf=calculator.tree.is_leaf(objective),
        )
        for objective, depth in calculator.tree.walk()
    )
    return DomainRollup(
        domain=domain,
        members=len(members),
        overall=calculator.domain_overall(domain, members, scores),
        rows=rows,
    )


@log_operation("scope_overview")
def scope_overview(session: Session, scope: StudentFilterScope | None = None) -> ScopeOverview:
    """Overall completion and per-success-criterion averages for one board scope."""
    scope = scope or StudentFilterScope.overall()
    snapshot = load_snapshot(session)
    calculator = _calculator(snapshot)
    students = filter_students(snapshot, scope)
    criteria = tuple(
        (root, calculator.cohort_objective_average(root, students))
        for root in calculator.tree.roots()
    )
    return ScopeOverview(
        title=scope.title(list(snapshot.groups), list(snapshot.domains)),
        students=tuple(students),
        overall=calculator.cohort_overall(students),
        criteria=criteria,
    )


# ---------- Import / export ----------


@log_operation("import_students_from_csv")
def import_students_from_csv(session: Session, source: str | bytes | Path) -> ImportSummary:
    """
    Create students from a roster CSV.

    Preset expertise checks are created first so keyword matches always have
    a target. The raw "Expertise Check" text is kept as a custom property.
    Names that already exist in the cohort count as failed.

    Raises:
        CSVImportError: If the CSV is empty or lacks a required header
    """
    if not get_settings().app.enable_csv_import:
        raise BusinessLogicError("CSV import is disabled", rule="feature_flag")

    result = parse_student_csv(source)
    summary = ImportSummary(total_rows=result.total_rows, skipped=result.skipped_rows)
    if not result.candidates:
        logger.info(summary.message)
        return summary

    seed_preset_domains(session)
    domain_repo = DomainRepo(session)
    student_repo = StudentRepo(session)

    for candidate in result.candidates:
        domain = (
            domain_repo.get_by_name(candidate.domain_keyword.domain_name)
            if candidate.domain_keyword is not None
            else None
        )
        if student_repo.name_exists(candidate.name):
            logger.warning("Student %r already exists; not importing", candidate.name)
            summary.failed += 1
            summary.failed_names.append(candidate.name)
            continue
        try:
            add_student(
                session,
                candidate.name,
                candidate.session,
                domain_id=domain.id if domain is not None else None,
                custom_properties=[(EXPERTISE_PROPERTY_KEY, candidate.expertise_raw)],
            )
            summary.imported += 1
        except TrackerError as e:
            logger.warning("Could not import %r: %s", candidate.name, e.message)
            summary.failed += 1
            summary.failed_names.append(candidate.name)

    logger.info(summary.message)
    return summary


def _export_tables(session: Session, computed_at: datetime | None) -> dict[str, pd.DataFrame]:
    settings = get_settings()
    if not settings.app.enable_data_export:
        raise BusinessLogicError("Data export is disabled", rule="feature_flag")
    snapshot = load_snapshot(session, include_archived=True)
    return build_export_tables(
        snapshot,
        cohort_name=settings.app.cohort_name,
        computed_at=computed_at,
        max_depth=settings.app.max_tree_depth,
    )


@log_operation("export_csv_bundle")
def export_csv_bundle(
    session: Session,
    destination: str | Path | None = None,
    computed_at: datetime | None = None,
) -> bytes | CSVExportResult:
    """
    Export every table as CSV inside a ZIP archive.

    Returns the archive bytes, or a ``CSVExportResult`` when ``destination``
    is given and the archive was written there.
    """
    try:
        tables = _export_tables(session, computed_at)
        if destination is None:
            return make_csv_zip_bytes(tables)
        return write_csv_bundle(tables, destination)
    except Exception as e:
        _reraise(e, "Failed to export CSV bundle", {"destination": str(destination or "")})
