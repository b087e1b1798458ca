# visual_tracker/infrastructure/repositories_objective.py
from __future__ import annotations

import builtins
from typing import Any, NoReturn

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import ObjectiveNotFoundError, ValidationError, handle_database_error
from .logging import get_logger
from .logging import log_database_operation as log_op
from .models import CategoryLabelORM, LearningObjectiveORM
from .repositories_base import BaseRepository as GenericBaseRepository


class ObjectiveRepo(GenericBaseRepository[LearningObjectiveORM]):
    """
    Repository for success criteria and milestones.

    Codes are unique among non-archived rows; archived rows keep their code
    and are filtered from active listings.

    Example:
        >>> repo = ObjectiveRepo(session)
        >>> objective = repo.get_by_code("A.1")
    """

    model = LearningObjectiveORM
    not_found_error = ObjectiveNotFoundError

    def __init__(self, session: Session):
        super().__init__(session)
        self._logger = get_logger(__name__)

    def _handle_error(self, exc: Exception, operation: str) -> NoReturn:
        self._logger.error("DB error in %s: %s", operation, str(exc), exc_info=True)
        raise handle_database_error(exc, operation) from exc

    @log_op("objective.get_by_code")
    def get_by_code(self, code: str, include_archived: bool = False) -> LearningObjectiveORM | None:
        if not code or not code.strip():
            raise ValidationError("code", "Objective code cannot be empty")

        try:
            q = self.s.query(LearningObjectiveORM).filter(LearningObjectiveORM.code == code.strip())
            if not include_archived:
                q = q.filter(LearningObjectiveORM.is_archived.is_(False))
            return q.order_by(LearningObjectiveORM.id.desc()).first()
        except SQLAlchemyError as e:
            self._handle_error(e, "objective.get_by_code")

    def get_by_code_required(self, code: str) -> LearningObjectiveORM:
        obj = self.get_by_code(code)
        if obj is None:
            raise ObjectiveNotFoundError(code)
        return obj

    @log_op("objective.code_in_use")
    def code_in_use(self, code: str, exclude_id: int | None = None) -> bool:
        filters: list[Any] = [
            LearningObjectiveORM.code == code,
            LearningObjectiveORM.is_archived.is_(False),
        ]
        if exclude_id is not None:
            filters.append(LearningObjectiveORM.id != exclude_id)
        return self.exists(*filters)

    @log_op("objective.list_active")
    def list_active(self) -> builtins.list[LearningObjectiveORM]:
        try:
            return (
                self.s.query(LearningObjectiveORM)
                .filter(LearningObjectiveORM.is_archived.is_(False))
                .order_by(LearningObjectiveORM.sort_order, LearningObjectiveORM.code)
                .all()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, "objective.list_active")

    @log_op("objective.list_all")
    def list_all(self) -> builtins.list[LearningObjectiveORM]:
        return self.list(order_by=[LearningObjectiveORM.sort_order, LearningObjectiveORM.code])

    @log_op("objective.next_sort_order")
    def next_sort_order(self) -> int:
        current = (
            self.s.query(LearningObjectiveORM.sort_order)
            .order_by(LearningObjectiveORM.sort_order.desc())
            .limit(1)
            .scalar()
        )
        return 0 if current is None else int(current) + 1

    @log_op("objective.create")
    def create(self, **fields: Any) -> LearningObjectiveORM:
        try:
            return super().create(**fields)
        except SQLAlchemyError as e:
            self._handle_error(e, "objective.create")

    @log_op("objective.archive")
    def archive(self, objective: LearningObjectiveORM) -> LearningObjectiveORM:
        """Soft-delete ``objective`` and every active descendant."""
        try:
            pending = [objective]
            while pending:
                node = pending.pop()
                if node.is_archived and node is not objective:
                    continue
                node.is_archived = True
                pending.extend(
                    self.s.query(LearningObjectiveORM)
                    .filter(
                        LearningObjectiveORM.is_archived.is_(False),
                        (LearningObjectiveORM.parent_id == node.id)
                        | (
                            LearningObjectiveORM.parent_id.is_(None)
                            & (LearningObjectiveORM.parent_code == node.code)
                        ),
                    )
                    .all()
                )
            self.s.flush()
            return objective
        except SQLAlchemyError as e:
            self._handle_error(e, "objective.archive")


class CategoryLabelRepo(GenericBaseRepository[CategoryLabelORM]):
    """Display title overrides keyed by objective code."""

    model = CategoryLabelORM

    @log_op("category_label.upsert")
    def upsert(self, code: str, title: str) -> CategoryLabelORM:
        label = self.get(code)
        if label is None:
            label = CategoryLabelORM(code=code, title=title)
            self.s.add(label)
        else:
            label.title = title
        self.s.flush()
        return label

    @log_op("category_label.as_dict")
    def as_dict(self) -> dict[str, str]:
        return {label.code: label.title for label in self.list(order_by=[CategoryLabelORM.code])}
