# visual_tracker/infrastructure/repositories_progress.py
from __future__ import annotations

import builtins
from typing import NoReturn

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain.models import ProgressStatus
from .exceptions import ValidationError, handle_database_error
from .logging import get_logger
from .logging import log_database_operation as log_op
from .models import ExpertiseCheckScoreORM, ObjectiveProgressORM, utcnow
from .repositories_base import BaseRepository as GenericBaseRepository


def _canonical(value: int) -> int:
    return max(0, min(100, int(value)))


class ProgressRepo(GenericBaseRepository[ObjectiveProgressORM]):
    """
    Leaf progress per (student, objective code).

    Example:
        >>> repo = ProgressRepo(session)
        >>> record = repo.upsert(student_id=1, objective_code="A.1", value=40)
    """

    model = ObjectiveProgressORM

    def __init__(self, session: Session):
        super().__init__(session)
        self._logger = get_logger(__name__)

    def _handle_error(self, exc: Exception, operation: str) -> NoReturn:
        self._logger.error("DB error in %s: %s", operation, str(exc), exc_info=True)
        raise handle_database_error(exc, operation) from exc

    @log_op("progress.get")
    def get_for(self, student_id: int, objective_code: str) -> ObjectiveProgressORM | None:
        if student_id <= 0:
            raise ValidationError("student_id", "Student ID must be positive")
        try:
            return (
                self.s.query(ObjectiveProgressORM)
                .filter_by(student_id=student_id, objective_code=objective_code)
                .one_or_none()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "progress.get")

    @log_op("progress.upsert")
    def upsert(
        self,
        student_id: int,
        objective_code: str,
        value: int,
        objective_id: int | None = None,
        notes: str | None = None,
    ) -> ObjectiveProgressORM:
        """Create or update the record; the value is clamped into 0..100."""
        canonical = _canonical(value)
        try:
            obj = self.get_for(student_id, objective_code)
            if obj is None:
                obj = ObjectiveProgressORM(student_id=student_id, objective_code=objective_code)
                self.s.add(obj)

            obj.objective_id = objective_id
            obj.value = canonical
            obj.status = ProgressStatus.from_percentage(canonical).value
            if notes is not None:
                obj.notes = notes
            obj.last_updated = utcnow()

            self.s.flush()
            return obj
        except SQLAlchemyError as e:
            self._handle_error(e, "progress.upsert")

    @log_op("progress.list_for_student")
    def list_for_student(self, student_id: int) -> builtins.list[ObjectiveProgressORM]:
        return self.list(
            ObjectiveProgressORM.student_id == student_id,
            order_by=[ObjectiveProgressORM.objective_code],
        )


class ExpertiseScoreRepo(GenericBaseRepository[ExpertiseCheckScoreORM]):
    """Reviewer-authored leaf scores per (expertise check, objective code)."""

    model = ExpertiseCheckScoreORM

    def __init__(self, session: Session):
        super().__init__(session)
        self._logger = get_logger(__name__)

    def _handle_error(self, exc: Exception, operation: str) -> NoReturn:
        self._logger.error("DB error in %s: %s", operation, str(exc), exc_info=True)
        raise handle_database_error(exc, operation) from exc

    @log_op("expertise_score.upsert")
    def upsert(
        self,
        domain_id: int,
        objective_code: str,
        value: int,
        objective_id: int | None = None,
        edited_by: str | None = None,
    ) -> ExpertiseCheckScoreORM:
        canonical = _canonical(value)
        try:
            obj = (
                self.s.query(ExpertiseCheckScoreORM)
                .filter_by(domain_id=domain_id, objective_code=objective_code)
                .one_or_none()
            )
            if obj is None:
                obj = ExpertiseCheckScoreORM(domain_id=domain_id, objective_code=objective_code)
                self.s.add(obj)

            obj.objective_id = objective_id
            obj.value = canonical
            obj.status = ProgressStatus.from_percentage(canonical).value
            obj.edited_by = edited_by
            obj.updated_at = utcnow()

            self.s.flush()
            return obj
        except SQLAlchemyError as e:
            self._handle_error(e, "expertise_score.upsert")
