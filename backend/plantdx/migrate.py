"""Command-line entry point for running database migrations."""
from __future__ import annotations

import logging

from .config import Settings
from .db import create_engine_with_retry, make_session_factory, run_schema_migrations, session_scope
from .models.seed import get_seed_data


def main() -> None:
    """Create the schema and load the packaged reference data."""
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(message)s")

    engine = create_engine_with_retry(settings.database_url)

    logging.info("Running schema migrations")
    run_schema_migrations(engine)

    logging.info("Seeding reference data")
    with session_scope(make_session_factory(engine)) as db:
        get_seed_data().apply(db)

    logging.info("Database migration completed")


if __name__ == "__main__":
    main()
