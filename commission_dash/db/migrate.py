"""Create or update the commission schema.

Postgres gets ``schema.sql`` verbatim; other dialects (SQLite in development
and tests) are built from the table metadata instead.
"""

from __future__ import annotations

import argparse
import logging
import pathlib
import sys
from typing import Iterator

from dotenv import load_dotenv
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from commission_dash.config import Settings
from commission_dash.db.session import create_engine_from_settings
from commission_dash.db.tables import metadata

logger = logging.getLogger(__name__)

SCHEMA_PATH = pathlib.Path(__file__).with_name("schema.sql")


def run_migrations(engine: Engine, schema_path: pathlib.Path = SCHEMA_PATH) -> list[str]:
    """Bring the database up to the current schema and return the tables now present."""
    if engine.dialect.name == "postgresql":
        statements = list(split_statements(schema_path.read_text()))
        with engine.begin() as conn:
            for statement in statements:
                conn.execute(text(statement))
        logger.info("Applied %s statements from %s", len(statements), schema_path.name)
    else:
        metadata.create_all(engine)
        logger.info("Created tables from metadata on %s", engine.dialect.name)
    return sorted(inspect(engine).get_table_names())


def split_statements(sql: str) -> Iterator[str]:
    """Yield semicolon-terminated statements, ignoring blank lines and ``--`` comments."""
    pending: list[str] = []
    for line in sql.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue
        pending.append(line)
        if stripped.endswith(";"):
            yield "\n".join(pending)
            pending = []
    if pending:
        yield "\n".join(pending)


def main() -> None:
    parser = argparse.ArgumentParser(description="Apply the commission schema")
    parser.add_argument("--dry-run", action="store_true", help="print the statements without executing them")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    if args.dry_run:
        for statement in split_statements(SCHEMA_PATH.read_text()):
            print(statement)
        return

    load_dotenv()
    engine = create_engine_from_settings(Settings.from_env())
    try:
        tables = run_migrations(engine)
    except SQLAlchemyError as exc:
        logger.error("Migration failed: %s", exc)
        sys.exit(2)
    logger.info("Schema ready: %s", ", ".join(tables))


if __name__ == "__main__":
    main()
