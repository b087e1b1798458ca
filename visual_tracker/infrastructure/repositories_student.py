# visual_tracker/infrastructure/repositories_student.py
from __future__ import annotations

import builtins
from collections.abc import Iterable, Sequence
from typing import Any, NoReturn

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .exceptions import StudentNotFoundError, handle_database_error
from .logging import get_logger
from .logging import log_database_operation as log_op
from .models import (
    StudentCustomPropertyORM,
    StudentGroupMembershipORM,
    StudentORM,
)
from .repositories_base import BaseRepository as GenericBaseRepository


class StudentRepo(GenericBaseRepository[StudentORM]):
    """
    Repository for students, their custom properties and group memberships.

    Example:
        >>> repo = StudentRepo(session)
        >>> students = repo.list_with_relations()
    """

    model = StudentORM
    not_found_error = StudentNotFoundError

    def __init__(self, session: Session):
        super().__init__(session)
        self._logger = get_logger(__name__)

    def _handle_error(self, exc: Exception, operation: str) -> NoReturn:
        self._logger.error("DB error in %s: %s", operation, str(exc), exc_info=True)
        raise handle_database_error(exc, operation) from exc

    @log_op("student.list_with_relations")
    def list_with_relations(self, *filters: Any) -> builtins.list[StudentORM]:
        """All students with progress, properties and memberships eagerly loaded."""
        try:
            q = (
                self.s.query(StudentORM)
                .options(
                    selectinload(StudentORM.progress_records),
                    selectinload(StudentORM.custom_properties),
                    selectinload(StudentORM.memberships),
                )
                .populate_existing()
            )
            for f in filters:
                q = q.filter(f)
            return q.order_by(StudentORM.created_at, StudentORM.id).all()
        except SQLAlchemyError as e:
            self._handle_error(e, "student.list_with_relations")

    @log_op("student.name_exists")
    def name_exists(self, name: str, exclude_id: int | None = None) -> bool:
        filters: list[Any] = [func.lower(StudentORM.name) == name.strip().lower()]
        if exclude_id is not None:
            filters.append(StudentORM.id != exclude_id)
        return self.exists(*filters)

    @log_op("student.create")
    def create(self, **fields: Any) -> StudentORM:
        try:
            return super().create(**fields)
        except SQLAlchemyError as e:
            self._handle_error(e, "student.create")

    @log_op("student.replace_custom_properties")
    def replace_custom_properties(
        self, student: StudentORM, rows: Iterable[tuple[str, str]]
    ) -> builtins.list[StudentCustomPropertyORM]:
        """Replace the student's properties with ``(key, value)`` rows, keeping row order."""
        try:
            student.custom_properties.clear()
            self.s.flush()
            for index, (key, value) in enumerate(rows):
                student.custom_properties.append(
                    StudentCustomPropertyORM(key=key, value=value, sort_order=index)
                )
            self.s.flush()
            return list(student.custom_properties)
        except SQLAlchemyError as e:
            self._handle_error(e, "student.replace_custom_properties")

    @log_op("student.set_groups")
    def set_groups(self, student: StudentORM, group_ids: Sequence[int]) -> StudentORM:
        """
        Replace the student's memberships.

        The legacy single-group column follows the first group so older
        readers still see one.
        """
        try:
            wanted = list(dict.fromkeys(group_ids))
            for membership in list(student.memberships):
                if membership.group_id not in wanted:
                    student.memberships.remove(membership)
            existing = {m.group_id for m in student.memberships}
            for group_id in wanted:
                if group_id not in existing:
                    student.memberships.append(StudentGroupMembershipORM(group_id=group_id))
            student.group_id = wanted[0] if wanted else None
            self.s.flush()
            return student
        except SQLAlchemyError as e:
            self._handle_error(e, "student.set_groups")

    @log_op("student.delete")
    def delete(self, obj: StudentORM) -> None:
        try:
            super().delete(obj)
        except SQLAlchemyError as e:
            self._handle_error(e, "student.delete")
