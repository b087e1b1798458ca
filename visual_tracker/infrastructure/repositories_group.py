# visual_tracker/infrastructure/repositories_group.py
from __future__ import annotations

import builtins
from typing import Any, NoReturn, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import (
    DomainNotFoundError,
    GroupNotFoundError,
    ValidationError,
    handle_database_error,
)
from .logging import get_logger
from .logging import log_database_operation as log_op
from .models import CohortGroupORM, DomainORM, StudentORM
from .repositories_base import BaseRepository as GenericBaseRepository


T = TypeVar("T")


class _NamedRepo(GenericBaseRepository[T]):
    """Shared behaviour for the name + color tagging entities."""

    def __init__(self, session: Session):
        super().__init__(session)
        self._logger = get_logger(__name__)

    def _handle_error(self, exc: Exception, operation: str) -> NoReturn:
        self._logger.error("DB error in %s: %s", operation, str(exc), exc_info=True)
        raise handle_database_error(exc, operation) from exc

    def get_by_name(self, name: str) -> T | None:
        if not name or not name.strip():
            raise ValidationError("name", "Name cannot be empty")
        try:
            return (
                self.s.query(self.model)
                .filter(func.lower(self.model.name) == name.strip().lower())
                .one_or_none()
            )
        except SQLAlchemyError as e:
            self._handle_error(e, f"{self.model.__tablename__}.get_by_name")

    def name_exists(self, name: str, exclude_id: int | None = None) -> bool:
        filters: list[Any] = [func.lower(self.model.name) == name.strip().lower()]
        if exclude_id is not None:
            filters.append(self.model.id != exclude_id)
        return self.exists(*filters)

    def list_by_name(self) -> builtins.list[T]:
        try:
            return self.s.query(self.model).order_by(func.lower(self.model.name)).all()
        except SQLAlchemyError as e:
            self._handle_error(e, f"{self.model.__tablename__}.list_by_name")

    def create(self, **fields: Any) -> T:
        try:
            return super().create(**fields)
        except SQLAlchemyError as e:
            self._handle_error(e, f"{self.model.__tablename__}.create")


class GroupRepo(_NamedRepo[CohortGroupORM]):
    model = CohortGroupORM
    not_found_error = GroupNotFoundError

    @log_op("group.delete")
    def delete(self, obj: CohortGroupORM) -> None:
        """Delete the group, its memberships and any legacy single-group references."""
        try:
            self.s.query(StudentORM).filter(StudentORM.group_id == obj.id).update(
                {StudentORM.group_id: None}, synchronize_session="fetch"
            )
            super().delete(obj)
        except SQLAlchemyError as e:
            self._handle_error(e, "group.delete")


class DomainRepo(_NamedRepo[DomainORM]):
    model = DomainORM
    not_found_error = DomainNotFoundError

    @log_op("domain.delete")
    def delete(self, obj: DomainORM) -> None:
        """Delete the expertise check and detach its students."""
        try:
            self.s.query(StudentORM).filter(StudentORM.domain_id == obj.id).update(
                {StudentORM.domain_id: None}, synchronize_session="fetch"
            )
            super().delete(obj)
        except SQLAlchemyError as e:
            self._handle_error(e, "domain.delete")
