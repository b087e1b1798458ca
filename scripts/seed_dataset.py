"""Create the tracker tables and load the default rubric, expertise checks and groups."""

from __future__ import annotations

import argparse
import sys

from visual_tracker.infrastructure.config import DatabaseConfig
from visual_tracker.infrastructure.db import create_database_engine, create_session_factory
from visual_tracker.infrastructure.uow import UnitOfWork
from visual_tracker.utils.seed import initialise_database, seed_defaults


def build_parser() -> argparse.ArgumentParser:
    """Options default to the ``DB_*`` settings; flags override single fields."""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--backend", choices=["sqlite", "mysql"])
    parser.add_argument("--sqlite-path")
    parser.add_argument("--mysql-host")
    parser.add_argument("--mysql-port", type=int)
    parser.add_argument("--mysql-user")
    parser.add_argument("--mysql-password")
    parser.add_argument("--mysql-database")
    parser.add_argument("--no-groups", action="store_true", help="Skip the sample cohort groups")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = vars(build_parser().parse_args(argv))
    include_groups = not args.pop("no_groups")
    config = DatabaseConfig(**{key: value for key, value in args.items() if value is not None})

    engine = create_database_engine(config)
    try:
        initialise_database(engine)
        with UnitOfWork(create_session_factory(engine)).begin() as session:
            added = seed_defaults(session, include_groups=include_groups)
    finally:
        engine.dispose()

    print(
        "Seed completed: {objectives} objectives, {domains} expertise checks, "
        "{groups} groups added.".format(**added)
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
