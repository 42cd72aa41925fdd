"""Create the encounters table and its indexes in PostgreSQL."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from combattracker.backend.config import load_settings
from combattracker.backend.logging import configure_logging, get_logger


SCHEMA_PATH = Path(__file__).with_name("db_schema.sql")

logger = get_logger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Combat tracker schema migration")
    parser.add_argument("--database-url", default="", help="overrides COMBATTRACKER_DATABASE_URL")
    parser.add_argument("--schema", type=Path, default=SCHEMA_PATH)
    parser.add_argument("--print-sql", action="store_true", help="print the schema instead of applying it")
    return parser.parse_args(argv)


def apply_schema(database_url: str, schema_path: Path = SCHEMA_PATH) -> None:
    import psycopg

    schema_sql = schema_path.read_text(encoding="utf-8")
    with psycopg.connect(database_url) as conn:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
        conn.commit()
    logger.info("Schema applied", schema=schema_path.name)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    settings = load_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)

    if args.print_sql:
        print(args.schema.read_text(encoding="utf-8"))
        return

    database_url = args.database_url or settings.database_url
    if not database_url:
        raise RuntimeError("COMBATTRACKER_DATABASE_URL is required for migration")
    apply_schema(database_url, args.schema)


if __name__ == "__main__":
    main()
