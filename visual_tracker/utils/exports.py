from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import pandas as pd

from ..domain.models import LearningObjective, ProgressStatus, Student
from ..domain.services import ObjectiveTree
from ..infrastructure.exceptions import ExportError
from ..infrastructure.logging import get_logger
from ..infrastructure.models import utcnow
from ..infrastructure.repositories import TrackerSnapshot

logger = get_logger(__name__)

STUDENT_COLUMNS = [
    "studentRecordName",
    "studentName",
    "cohortRecordName",
    "createdAt",
    "updatedAt",
    "session",
]
OBJECTIVE_COLUMNS = [
    "code",
    "title",
    "description",
    "isQuantitative",
    "sortOrder",
    "isArchived",
    "cohortRecordName",
    "createdAt",
    "updatedAt",
]
ROLLUP_COLUMNS = [
    "studentRecordName",
    "successCriterionRecordName",
    "rollupValue",
    "computedStatus",
    "computedAt",
]


@dataclass(frozen=True, slots=True)
class CSVExportResult:
    path: Path
    files: tuple[str, ...]


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value is not None else ""


def _bool(value: bool) -> str:
    return "true" if value else "false"


def student_record_name(student: Student) -> str:
    return f"student-{student.id}"


def objective_record_name(objective: LearningObjective) -> str:
    return f"objective-{objective.id}" if objective.id is not None else f"objective-{objective.code}"


def _root_ancestor(
    objective: LearningObjective, objectives: list[LearningObjective]
) -> LearningObjective | None:
    """Follow parent references up to the first parentless objective."""
    by_id = {o.id: o for o in objectives if o.id is not None}
    by_code: dict[str, LearningObjective] = {}
    for o in objectives:
        # an active row wins over an archived one with the same code
        if o.code not in by_code or by_code[o.code].is_archived:
            by_code[o.code] = o

    current = objective
    seen = {objective.code}
    while True:
        if current.parent_id is not None:
            parent = by_id.get(current.parent_id)
        elif current.parent_code is not None:
            parent = by_code.get(current.parent_code)
        else:
            parent = None
        if parent is None or parent.code in seen:
            return current if current is not objective else None
        seen.add(parent.code)
        current = parent


def build_export_tables(
    snapshot: TrackerSnapshot,
    cohort_name: str,
    computed_at: datetime | None = None,
    max_depth: int | None = None,
) -> dict[str, pd.DataFrame]:
    """
    Build every export table as a DataFrame keyed by its CSV file name.

    ``snapshot`` should include archived objectives so the objective tables
    are complete; the roll-up only ever counts active ones.
    """
    computed_at = computed_at or utcnow()
    objectives = list(snapshot.objectives)
    tree = ObjectiveTree(objectives) if max_depth is None else ObjectiveTree(objectives, max_depth)

    def sibling_key(o: LearningObjective) -> tuple[int, str]:
        return (o.sort_order, o.code)

    roots = sorted((o for o in objectives if o.is_root), key=sibling_key)
    milestones = sorted((o for o in objectives if not o.is_root), key=sibling_key)
    students = sorted(snapshot.students, key=lambda s: (s.created_at or datetime.min, s.id))

    property_keys: list[str] = []
    for student in students:
        for prop in sorted(student.custom_properties, key=lambda p: p.sort_order):
            if prop.key not in property_keys:
                property_keys.append(prop.key)

    student_rows = []
    for student in students:
        values = {p.key: p.value for p in student.custom_properties}
        row = [
            student_record_name(student),
            student.name,
            cohort_name,
            _iso(student.created_at),
            "",
            student.session.value,
        ]
        row.extend(values.get(key, "") for key in property_keys)
        student_rows.append(row)

    groups = sorted(snapshot.groups, key=lambda g: g.name.lower())
    domains = sorted(snapshot.domains, key=lambda d: d.name.lower())

    membership_rows = [
        [
            f"membership-{student.id}-{group_id}",
            student_record_name(student),
            f"group-{group_id}",
            cohort_name,
            "",
            "",
        ]
        for student in students
        for group_id in sorted(student.group_ids)
    ]

    milestone_rows = []
    for milestone in milestones:
        parent = _root_ancestor(milestone, objectives)
        milestone_rows.append(
            [
                objective_record_name(milestone),
                objective_record_name(parent) if parent is not None else "",
                milestone.code,
                milestone.title,
                milestone.description,
                _bool(milestone.is_quantitative),
                str(milestone.sort_order),
                _bool(milestone.is_archived),
                cohort_name,
                "",
                "",
            ]
        )

    by_id = {o.id: o for o in objectives if o.id is not None}
    progress_rows = []
    for student in students:
        for record in student.progress:
            target = by_id.get(record.objective_id) if record.objective_id is not None else None
            target = target or tree.get(record.objective_code)
            progress_rows.append(
                [
                    f"progress-{student.id}-{record.objective_code}",
                    student_record_name(student),
                    objective_record_name(target) if target is not None else "",
                    record.objective_code,
                    str(record.value),
                    record.status.value,
                    record.notes,
                    cohort_name,
                    "",
                    _iso(record.last_updated),
                ]
            )

    active_roots = [root for root in roots if not root.is_archived]
    rollup_rows = []
    for student in students:
        lookup = student.progress_lookup()
        for root in active_roots:
            value = tree.percentage(root, lookup.get)
            rollup_rows.append(
                [
                    student_record_name(student),
                    objective_record_name(root),
                    str(value),
                    ProgressStatus.from_percentage(value).value,
                    _iso(computed_at),
                ]
            )

    return {
        "students.csv": pd.DataFrame(student_rows, columns=STUDENT_COLUMNS + property_keys),
        "groups.csv": pd.DataFrame(
            [[f"group-{g.id}", g.name, cohort_name, "", ""] for g in groups],
            columns=["groupRecordName", "groupName", "cohortRecordName", "createdAt", "updatedAt"],
        ),
        "student_group_memberships.csv": pd.DataFrame(
            membership_rows,
            columns=[
                "membershipRecordName",
                "studentRecordName",
                "groupRecordName",
                "cohortRecordName",
                "createdAt",
                "updatedAt",
            ],
        ),
        "expertise_checks.csv": pd.DataFrame(
            [
                [f"expertise-{d.id}", d.name, cohort_name, str(index), "", ""]
                for index, d in enumerate(domains)
            ],
            columns=[
                "expertiseRecordName",
                "title",
                "cohortRecordName",
                "sortOrder",
                "createdAt",
                "updatedAt",
            ],
        ),
        "success_criteria.csv": pd.DataFrame(
            [
                [
                    objective_record_name(root),
                    root.code,
                    root.title,
                    root.description,
                    _bool(root.is_quantitative),
                    str(root.sort_order),
                    _bool(root.is_archived),
                    cohort_name,
                    "",
                    "",
                ]
                for root in roots
            ],
            columns=["successCriterionRecordName"] + OBJECTIVE_COLUMNS,
        ),
        "milestones.csv": pd.DataFrame(
            milestone_rows,
            columns=["milestoneRecordName", "parentSuccessCriterionRecordName"] + OBJECTIVE_COLUMNS,
        ),
        "objective_progress.csv": pd.DataFrame(
            progress_rows,
            columns=[
                "progressRecordName",
                "studentRecordName",
                "milestoneRecordName",
                "milestoneCode",
                "value",
                "statusText",
                "notes",
                "cohortRecordName",
                "createdAt",
                "updatedAt",
            ],
        ),
        "student_success_criteria_rollup.csv": pd.DataFrame(rollup_rows, columns=ROLLUP_COLUMNS),
        "category_labels.csv": pd.DataFrame(
            [
                [code, code, title, cohort_name]
                for code, title in sorted(snapshot.category_labels.items())
            ],
            columns=["labelKey", "code", "title", "cohortRecordName"],
        ),
        "student_custom_properties.csv": pd.DataFrame(
            [
                [
                    f"property-{student.id}-{prop.sort_order}",
                    student_record_name(student),
                    prop.key,
                    prop.value,
                    str(prop.sort_order),
                    cohort_name,
                ]
                for student in students
                for prop in student.custom_properties
            ],
            columns=[
                "customPropertyRecordName",
                "studentRecordName",
                "key",
                "value",
                "sortOrder",
                "cohortRecordName",
            ],
        ),
    }


def table_to_csv(frame: pd.DataFrame) -> str:
    return frame.to_csv(index=False, lineterminator="\n")


def make_csv_zip_bytes(tables: dict[str, pd.DataFrame]) -> bytes:
    """Pack each table as a CSV member of an in-memory ZIP archive."""
    bio = io.BytesIO()
    with zipfile.ZipFile(bio, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, frame in tables.items():
            archive.writestr(name, table_to_csv(frame))
    return bio.getvalue()


def write_csv_bundle(tables: dict[str, pd.DataFrame], destination: str | Path) -> CSVExportResult:
    """
    Write the export archive to ``destination``.

    A directory destination receives ``visual_tracker_export.zip``.

    Raises:
        ExportError: If the archive cannot be written
    """
    path = Path(destination)
    if path.is_dir():
        path = path / "visual_tracker_export.zip"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(make_csv_zip_bytes(tables))
    except OSError as e:
        logger.error("Failed to write CSV export to %s: %s", path, e)
        raise ExportError(f"Could not write export to {path}: {e}", export_format="zip") from e

    logger.info("Wrote %d CSV tables to %s", len(tables), path)
    return CSVExportResult(path=path, files=tuple(tables))
