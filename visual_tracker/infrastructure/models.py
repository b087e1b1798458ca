from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class LearningObjectiveORM(Base):
    __tablename__ = "learning_objectives"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    # Unique among active rows; enforced in the application layer so archived codes can be reused.
    code: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_quantitative: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    parent_code: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("learning_objectives.id", ondelete="SET NULL"), nullable=True, index=True
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utcnow, nullable=False
    )


class CategoryLabelORM(Base):
    __tablename__ = "category_labels"
    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)


class CohortGroupORM(Base):
    __tablename__ = "cohort_groups"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    color_hex: Mapped[str | None] = mapped_column(String(9), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utcnow, nullable=False
    )

    memberships: Mapped[list[StudentGroupMembershipORM]] = relationship(
        back_populates="group", cascade="all, delete-orphan"
    )


class DomainORM(Base):
    __tablename__ = "domains"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    color_hex: Mapped[str | None] = mapped_column(String(9), nullable=True)
    overall_mode: Mapped[str] = mapped_column(String(32), default="computed", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utcnow, nullable=False
    )

    scores: Mapped[list[ExpertiseCheckScoreORM]] = relationship(
        back_populates="domain", cascade="all, delete-orphan"
    )


class StudentORM(Base):
    __tablename__ = "students"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    session: Mapped[str] = mapped_column(String(16), default="Morning", nullable=False)
    # Legacy single-group reference; memberships are the current model.
    group_id: Mapped[int | None] = mapped_column(
        ForeignKey("cohort_groups.id", ondelete="SET NULL"), nullable=True, index=True
    )
    domain_id: Mapped[int | None] = mapped_column(
        ForeignKey("domains.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utcnow, onupdate=utcnow, nullable=False
    )

    group: Mapped[CohortGroupORM | None] = relationship(foreign_keys=[group_id])
    domain: Mapped[DomainORM | None] = relationship()
    progress_records: Mapped[list[ObjectiveProgressORM]] = relationship(
        back_populates="student", cascade="all, delete-orphan"
    )
    custom_properties: Mapped[list[StudentCustomPropertyORM]] = relationship(
        back_populates="student",
        cascade="all, delete-orphan",
        order_by="StudentCustomPropertyORM.sort_order",
    )
    memberships: Mapped[list[StudentGroupMembershipORM]] = relationship(
        back_populates="student", cascade="all, delete-orphan"
    )


class StudentGroupMembershipORM(Base):
    __tablename__ = "student_group_memberships"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    group_id: Mapped[int] = mapped_column(
        ForeignKey("cohort_groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (UniqueConstraint("student_id", "group_id", name="uq_membership"),)

    student: Mapped[StudentORM] = relationship(back_populates="memberships")
    group: Mapped[CohortGroupORM] = relationship(back_populates="memberships")


class StudentCustomPropertyORM(Base):
    __tablename__ = "student_custom_properties"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[str] = mapped_column(Text, default="", nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (UniqueConstraint("student_id", "key", name="uq_student_property_key"),)

    student: Mapped[StudentORM] = relationship(back_populates="custom_properties")


class ObjectiveProgressORM(Base):
    __tablename__ = "objective_progress"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    objective_id: Mapped[int | None] = mapped_column(
        ForeignKey("learning_objectives.id", ondelete="SET NULL"), nullable=True
    )
    objective_code: Mapped[str] = mapped_column(String(64), nullable=False)
    value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="Not Started", nullable=False)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("student_id", "objective_code", name="uq_student_objective"),
        CheckConstraint("value >= 0 AND value <= 100", name="ck_progress_value_range"),
    )

    student: Mapped[StudentORM] = relationship(back_populates="progress_records")


class ExpertiseCheckScoreORM(Base):
    __tablename__ = "expertise_check_scores"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    domain_id: Mapped[int] = mapped_column(
        ForeignKey("domains.id", ondelete="CASCADE"), nullable=False, index=True
    )
    objective_id: Mapped[int | None] = mapped_column(
        ForeignKey("learning_objectives.id", ondelete="SET NULL"), nullable=True
    )
    objective_code: Mapped[str] = mapped_column(String(64), nullable=False)
    value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="Not Started", nullable=False)
    edited_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("domain_id", "objective_code", name="uq_domain_objective"),
        CheckConstraint("value >= 0 AND value <= 100", name="ck_score_value_range"),
    )

    domain: Mapped[DomainORM] = relationship(back_populates="scores")
