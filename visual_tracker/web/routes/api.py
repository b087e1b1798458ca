from __future__ import annotations

import io
import logging
from typing import Literal, NoReturn, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session

from visual_tracker.application import api as app_api
from visual_tracker.domain.models import (
    LearningObjective,
    ProgressStatus,
    ScopeKind,
    Student,
    StudentFilterScope,
)
from visual_tracker.infrastructure.exceptions import (
    DuplicateCodeError,
    IntegrityError,
    NotFoundError,
    TrackerError,
)
from visual_tracker.infrastructure.repositories import objective_to_domain
from visual_tracker.utils.csv_import import parse_student_csv
from visual_tracker.web.dependencies import get_db_session
from visual_tracker.web.schemas import (
    CriterionAverage,
    CustomPropertyItem,
    Domain,
    DomainCreateRequest,
    DomainModeUpdate,
    DomainObjectiveRollup,
    DomainRollup,
    ExpertiseScoreUpdate,
    Group,
    ImportPreviewResponse,
    ImportPreviewRow,
    ImportResponse,
    NamedItemRequest,
    Objective,
    ObjectiveCreateRequest,
    ObjectiveProgress,
    ObjectiveTreeNode,
    OverviewResponse,
    ProgressResponse,
    ProgressUpdate,
    StudentCreateRequest,
    StudentDetail,
    StudentSummary,
)

router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)

ScopeParam = Literal["overall", "ungrouped", "group", "domain", "no_domain"]


def _raise_http(exc: TrackerError) -> NoReturn:
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (DuplicateCodeError, IntegrityError)):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    raise HTTPException(status_code=code, detail=exc.user_message) from exc


def _scope(scope: ScopeParam, target_id: Optional[int]) -> StudentFilterScope:
    kind = ScopeKind(scope)
    if kind in (ScopeKind.GROUP, ScopeKind.DOMAIN) and target_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"target_id is required for the {scope} scope",
        )
    if kind in (ScopeKind.GROUP, ScopeKind.DOMAIN):
        return StudentFilterScope(kind, target_id)
    return StudentFilterScope(kind)


def _objective(objective: LearningObjective) -> Objective:
    return Objective(
        id=objective.id,
        code=objective.code,
        title=objective.title,
        description=objective.description,
        is_quantitative=objective.is_quantitative,
        parent_code=objective.parent_code,
        parent_id=objective.parent_id,
        sort_order=objective.sort_order,
        is_archived=objective.is_archived,
    )


def _student_summary(student: Student, overall: int) -> StudentSummary:
    return StudentSummary(
        id=student.id,
        name=student.name,
        session=student.session.value,
        group_ids=sorted(student.group_ids),
        domain_id=student.domain_id,
        overall=overall,
        status=ProgressStatus.from_percentage(overall).value,
    )


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# ---------- Objectives ----------


@router.get("/objectives", response_model=list[Objective])
def list_objectives(
    include_archived: bool = False, db: Session = Depends(get_db_session)
) -> list[Objective]:
    return [_objective(o) for o in app_api.list_objectives(db, include_archived=include_archived)]


@router.get("/objectives/tree", response_model=list[ObjectiveTreeNode])
def objective_tree(db: Session = Depends(get_db_session)) -> list[ObjectiveTreeNode]:
    return [
        ObjectiveTreeNode(code=objective.code, title=objective.title, depth=depth, is_leaf=is_leaf)
        for objective, depth, is_leaf in app_api.objective_tree(db)
    ]


@router.post("/objectives", response_model=Objective, status_code=status.HTTP_201_CREATED)
def create_objective(
    payload: ObjectiveCreateRequest, db: Session = Depends(get_db_session)
) -> Objective:
    try:
        created = app_api.create_objective(
            db,
            code=payload.code,
            title=payload.title,
            description=payload.description,
            is_quantitative=payload.is_quantitative,
            parent_code=payload.parent_code,
            sort_order=payload.sort_order,
        )
        db.commit()
    except TrackerError as exc:
        db.rollback()
        _raise_http(exc)
    return _objective(objective_to_domain(created))


@router.post("/objectives/{objective_id}/archive", response_model=Objective)
def archive_objective(objective_id: int, db: Session = Depends(get_db_session)) -> Objective:
    try:
        archived = app_api.archive_objective(db, objective_id)
        db.commit()
    except TrackerError as exc:
        db.rollback()
        _raise_http(exc)
    return _objective(objective_to_domain(archived))


# ---------- Students ----------


@router.get("/students", response_model=list[StudentSummary])
def list_students(
    scope: ScopeParam = "overall",
    target_id: Optional[int] = None,
    db: Session = Depends(get_db_session),
) -> list[StudentSummary]:
    rows = app_api.list_students(db, _scope(scope, target_id))
    return [_student_summary(student, overall) for student, overall in rows]


@router.post("/students", response_model=StudentSummary, status_code=status.HTTP_201_CREATED)
def create_student(
    payload: StudentCreateRequest, db: Session = Depends(get_db_session)
) -> StudentSummary:
    try:
        created = app_api.add_student(
            db,
            payload.name,
            payload.session,
            group_ids=payload.group_ids,
            domain_id=payload.domain_id,
            custom_properties=[(p.key, p.value) for p in payload.custom_properties],
        )
        db.commit()
        overview = app_api.student_overview(db, created.id)
    except TrackerError as exc:
        db.rollback()
        _raise_http(exc)
    return _student_summary(overview.student, overview.overall)


@router.get("/students/{student_id}", response_model=StudentDetail)
def student_detail(student_id: int, db: Session = Depends(get_db_session)) -> StudentDetail:
    try:
        overview = app_api.student_overview(db, student_id)
    except TrackerError as exc:
        _raise_http(exc)

    student = overview.student
    return StudentDetail(
        id=student.id,
        name=student.name,
        session=student.session.value,
        created_at=student.created_at,
        group_ids=sorted(student.group_ids),
        domain_id=student.domain_id,
        custom_properties=[
            CustomPropertyItem(key=p.key, value=p.value) for p in student.custom_properties
        ],
        overall=overview.overall,
        status=overview.status.value,
        objectives=[
            ObjectiveProgress(
                code=row.objective.code,
                title=row.objective.title,
                depth=row.depth,
                is_leaf=row.is_leaf,
                percentage=row.percentage,
                status=row.status.value,
            )
            for row in overview.rows
        ],
    )


@router.put("/students/{student_id}/progress", response_model=ProgressResponse)
def update_progress(
    student_id: int, payload: ProgressUpdate, db: Session = Depends(get_db_session)
) -> ProgressResponse:
    try:
        record = app_api.set_progress(
            db, student_id, payload.objective_code, payload.value, notes=payload.notes
        )
        db.commit()
        overview = app_api.student_overview(db, student_id)
    except TrackerError as exc:
        db.rollback()
        _raise_http(exc)

    return ProgressResponse(
        student_id=student_id,
        objective_code=record.objective_code,
        value=record.value,
        status=record.status,
        overall=overview.overall,
    )


@router.delete("/students/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_student(student_id: int, db: Session = Depends(get_db_session)) -> Response:
    try:
        app_api.delete_student(db, student_id)
        db.commit()
    except TrackerError as exc:
        db.rollback()
        _raise_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- Groups ----------


@router.get("/groups", response_model=list[Group])
def list_groups(db: Session = Depends(get_db_session)) -> list[Group]:
    return [
        Group(
            id=group.id,
            name=group.name,
            color_hex=group.color_hex,
            member_count=members,
            overall=overall,
        )
        for group, members, overall in app_api.list_groups(db)
    ]


@router.post("/groups", response_model=Group, status_code=status.HTTP_201_CREATED)
def create_group(payload: NamedItemRequest, db: Session = Depends(get_db_session)) -> Group:
    try:
        group = app_api.add_group(db, payload.name, payload.color_hex)
        db.commit()
    except TrackerError as exc:
        db.rollback()
        _raise_http(exc)
    return Group(id=group.id, name=group.name, color_hex=group.color_hex)


# ---------- Expertise checks ----------


def _domain(domain, members: int = 0, overall: int = 0) -> Domain:
    mode = domain.overall_mode
    return Domain(
        id=domain.id,
        name=domain.name,
        color_hex=domain.color_hex,
        overall_mode=getattr(mode, "value", mode),
        member_count=members,
        overall=overall,
    )


@router.get("/domains", response_model=list[Domain])
def list_domains(db: Session = Depends(get_db_session)) -> list[Domain]:
    return [_domain(d, members, overall) for d, members, overall in app_api.list_domains(db)]


@router.post("/domains", response_model=Domain, status_code=status.HTTP_201_CREATED)
def create_domain(payload: DomainCreateRequest, db: Session = Depends(get_db_session)) -> Domain:
    try:
        domain = app_api.add_domain(db, payload.name, payload.color_hex, payload.overall_mode)
        db.commit()
    except TrackerError as exc:
        db.rollback()
        _raise_http(exc)
    return _domain(domain)


@router.put("/domains/{domain_id}/mode", response_model=Domain)
def update_domain_mode(
    domain_id: int, payload: DomainModeUpdate, db: Session = Depends(get_db_session)
) -> Domain:
    try:
        domain = app_api.set_domain_mode(db, domain_id, payload.overall_mode)
        db.commit()
    except TrackerError as exc:
        db.rollback()
        _raise_http(exc)
    return _domain(domain)


@router.put("/domains/{domain_id}/scores", status_code=status.HTTP_204_NO_CONTENT)
def update_expertise_score(
    domain_id: int, payload: ExpertiseScoreUpdate, db: Session = Depends(get_db_session)
) -> Response:
    try:
        app_api.set_expertise_score(
            db, domain_id, payload.objective_code, payload.value, edited_by=payload.edited_by
        )
        db.commit()
    except TrackerError as exc:
        db.rollback()
        _raise_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/domains/{domain_id}/rollup", response_model=DomainRollup)
def domain_rollup(domain_id: int, db: Session = Depends(get_db_session)) -> DomainRollup:
    try:
        rollup = app_api.domain_rollup(db, domain_id)
    except TrackerError as exc:
        _raise_http(exc)

    return DomainRollup(
        domain_id=rollup.domain.id,
        overall_mode=rollup.domain.overall_mode.value,
        overall=rollup.overall,
        objectives=[
            DomainObjectiveRollup(
                code=row.objective.code,
                title=row.objective.title,
                depth=row.depth,
                percentage=row.percentage,
                status=row.status.value,
            )
            for row in rollup.rows
        ],
    )


# ---------- Overview ----------


@router.get("/overview", response_model=OverviewResponse)
def overview(
    scope: ScopeParam = "overall",
    target_id: Optional[int] = None,
    db: Session = Depends(get_db_session),
) -> OverviewResponse:
    result = app_api.scope_overview(db, _scope(scope, target_id))
    return OverviewResponse(
        scope=scope,
        title=result.title,
        student_count=len(result.students),
        overall=result.overall,
        status=result.status.value,
        criteria=[
            CriterionAverage(
                code=root.code,
                title=root.title,
                average=average,
                status=ProgressStatus.from_percentage(average).value,
            )
            for root, average in result.criteria
        ],
    )


# ---------- Import / export ----------


@router.post("/imports/students/preview", response_model=ImportPreviewResponse)
async def preview_student_import(file: UploadFile = File(...)) -> ImportPreviewResponse:
    contents = await file.read()
    try:
        result = parse_student_csv(contents)
    except TrackerError as exc:
        _raise_http(exc)

    return ImportPreviewResponse(
        total_rows=result.total_rows,
        valid_rows=result.valid_rows,
        skipped_rows=result.skipped_rows,
        rows=[
            ImportPreviewRow(
                row_number=row.row_number,
                full_name=row.full_name,
                expertise_check=row.expertise_check,
                learning_session=row.learning_session,
                is_valid=row.is_valid,
                reason=row.reason,
            )
            for row in result.preview_rows[:10]
        ],
    )


@router.post("/imports/students", response_model=ImportResponse)
async def import_students(
    file: UploadFile = File(...), db: Session = Depends(get_db_session)
) -> ImportResponse:
    contents = await file.read()
    try:
        summary = app_api.import_students_from_csv(db, contents)
        db.commit()
    except TrackerError as exc:
        db.rollback()
        _raise_http(exc)

    logger.info("Student import finished: %s", summary.message)
    return ImportResponse(
        total_rows=summary.total_rows,
        imported=summary.imported,
        skipped=summary.skipped,
        failed=summary.failed,
        message=summary.message,
        failed_names=summary.failed_names,
    )


@router.get("/exports/csv")
def export_csv(db: Session = Depends(get_db_session)) -> StreamingResponse:
    try:
        payload = app_api.export_csv_bundle(db)
    except TrackerError as exc:
        _raise_http(exc)

    return StreamingResponse(
        io.BytesIO(payload),
        media_type="application/zip",
        headers={"Content-Disposition": 'attachment; filename="visual_tracker_export.zip"'},
    )
