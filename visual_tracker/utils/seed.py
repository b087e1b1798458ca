from __future__ import annotations

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from visual_tracker.infrastructure.logging import get_logger
from visual_tracker.infrastructure.models import (
    Base,
    CohortGroupORM,
    DomainORM,
    LearningObjectiveORM,
)

logger = get_logger(__name__)

# (code, title, description, is_quantitative, parent_code)
DEFAULT_OBJECTIVES: list[tuple[str, str, str, bool, str | None]] = [
    ("A", "Able to apply 100% of core LOs for chosen path", "Quantitative - average of A.1, A.2, A.3", True, None),
    ("A.1", "Expose core LOs for all", "0-100%", True, "A"),
    ("A.2", "Understand core LOs for all", "0-100%", True, "A"),
    ("A.3", "Apply domain core LOs for their chosen path", "0-100%", True, "A"),
    ("B", "Able to LUR - Learn Unlearn Relearn", "Qualitative checkboxes", False, None),
    ("B.L", "Have a positive attitude for learning", "", False, "B"),
    ("B.U", "Be okay/comfortable to have existing knowledge challenged", "", False, "B"),
    ("B.R", "Adapt to newly acquired knowledge", "", False, "B"),
    ("C", "Able to analyze and create solutions based on data", "Nested hierarchy", False, None),
    ("C.1", "Data Gathering & Understanding", "", False, "C"),
    ("C.1.1", "Understand the importance of data", "", False, "C.1"),
    ("C.1.2", "Understand how to gather & understand data", "", False, "C.1"),
    ("C.1.3", "Apply gathering & understanding of data", "", False, "C.1"),
    ("C.2", "Data Synthesis & Analysis", "", False, "C"),
    ("C.2.1", "Exposure to synthesize & analyze data", "", False, "C.2"),
    ("C.2.2", "Understand how to synthesize & analyze data", "", False, "C.2"),
    ("C.2.3", "Apply synthesis & analysis of data", "", False, "C.2"),
    ("C.3", "Data-Driven Decision Making", "", False, "C"),
    ("C.3.1", "Understand how to make data-driven decisions", "", False, "C.3"),
    ("C.3.2", "Apply making data-driven decisions", "", False, "C.3"),
    ("C.4", "Data-Based Argumentation", "", False, "C"),
    ("C.4.1", "Understand how to argue/defend/enrich decisions based on data", "", False, "C.4"),
    ("C.4.2", "Apply argumentation/defense/enrichment based on data", "", False, "C.4"),
    ("D", "Able to create positive influence and empower each other", "Qualitative", False, None),
    ("D.1", "Self-Leadership", "", False, "D"),
    ("D.2", "Share Responsibility", "", False, "D"),
    ("D.3", "Inspire Others", "", False, "D"),
    ("E", "Able to identify pathways & requirements toward career aspiration", "Qualitative", False, None),
    ("E.1", "Self-Discovery", "", False, "E"),
    ("E.2", "Knowing Your Options", "", False, "E"),
    ("E.3", "Decide the Area of Exploration", "", False, "E"),
    ("E.4", "Planning Actions in Decided Path", "", False, "E"),
]

PRESET_DOMAINS: list[str] = ["Domain Expert", "Tech", "Design"]

SAMPLE_GROUPS: list[tuple[str, str]] = [
    ("Batch A", "#3B82F6"),
    ("iOS", "#8B5CF6"),
    ("Design", "#F97316"),
    ("Team 1", "#10B981"),
]


def initialise_database(engine: Engine) -> bool:
    """
    Ensure all ORM tables exist.

    Returns:
        True if every table already existed before this call, False if at least one table
        needed to be created.
    """
    inspector = inspect(engine)
    existing_tables = set(inspector.get_table_names())
    expected_tables = [table.name for table in Base.metadata.sorted_tables]
    already_exists = all(table in existing_tables for table in expected_tables)
    Base.metadata.create_all(engine)
    return already_exists


def seed_objectives(session: Session) -> int:
    """Insert the default rubric when no objectives exist. Returns rows inserted."""
    if session.query(LearningObjectiveORM).count():
        return 0

    for sort_order, (code, title, description, quantitative, parent) in enumerate(
        DEFAULT_OBJECTIVES
    ):
        session.add(
            LearningObjectiveORM(
                code=code,
                title=title,
                description=description,
                is_quantitative=quantitative,
                parent_code=parent,
                sort_order=sort_order,
            )
        )
    session.flush()
    logger.info("Seeded %d default objectives", len(DEFAULT_OBJECTIVES))
    return len(DEFAULT_OBJECTIVES)


def seed_groups(session: Session) -> int:
    if session.query(CohortGroupORM).count():
        return 0
    session.add_all(CohortGroupORM(name=name, color_hex=color) for name, color in SAMPLE_GROUPS)
    session.flush()
    return len(SAMPLE_GROUPS)


def seed_preset_domains(session: Session) -> int:
    """Create any preset expertise check that is missing (case-insensitive by name)."""
    existing = {name.lower() for (name,) in session.query(DomainORM.name).all()}
    created = 0
    for name in PRESET_DOMAINS:
        if name.lower() not in existing:
            session.add(DomainORM(name=name))
            created += 1
    if created:
        session.flush()
    return created


def seed_defaults(session: Session, include_groups: bool = True) -> dict[str, int]:
    """Idempotently seed objectives, preset expertise checks and sample groups."""
    counts = {
        "objectives": seed_objectives(session),
        "domains": seed_preset_domains(session),
        "groups": seed_groups(session) if include_groups else 0,
    }
    logger.info("Seed complete: %s", counts)
    return counts
