"""Schema and seed loading for scripts/init_db.py and AUTO_INIT_DB.

schema.sql carries its own CREATE DATABASE / USE lines for running it by hand
in a MySQL client; they are dropped here so the configured database name wins.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterator, List, Sequence

import mysql.connector

from .connection import DBConfig

logger = logging.getLogger(__name__)

REQUIRED_TABLES = (
    "courses",
    "teachers",
    "students",
    "course_teachers",
    "student_courses",
    "user_calendars",
    "course_occurrences",
    "sync_tasks",
    "checkin_tables",
    "sync_checkpoints",
)

_DB_SELECTION = re.compile(r"^\s*(CREATE\s+DATABASE|USE)\b", re.IGNORECASE)


def _open(cfg: DBConfig, *, with_database: bool = True):
    return mysql.connector.connect(**cfg.connect_kwargs(with_database=with_database))


def split_statements(sql: str) -> Iterator[str]:
    """Yield statements from a schema/seed script.

    Full-line `--` comments and database selection lines are skipped; `;`
    inside quoted literals does not terminate a statement.
    """

    lines = [
        line
        for line in sql.splitlines()
        if not line.lstrip().startswith("--") and not _DB_SELECTION.match(line)
    ]
    text = "\n".join(lines)

    start = 0
    quote = ""
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = ""
        elif ch in ("'", '"'):
            quote = ch
        elif ch == ";":
            stmt = text[start:i].strip()
            if stmt:
                yield stmt
            start = i + 1
        i += 1

    tail = text[start:].strip()
    if tail:
        yield tail


def run_script(db_config: dict, path: str | Path) -> int:
    cfg = DBConfig.from_dict(db_config)
    statements = list(split_statements(Path(path).read_text(encoding="utf-8")))

    conn = _open(cfg)
    try:
        cur = conn.cursor()
        for stmt in statements:
            cur.execute(stmt)
        conn.commit()
        cur.close()
    finally:
        conn.close()

    logger.info("Applied %s (%d statements) to %s", Path(path).name, len(statements), cfg.database)
    return len(statements)


def ensure_database_exists(db_config: dict) -> None:
    cfg = DBConfig.from_dict(db_config)
    conn = _open(cfg, with_database=False)
    try:
        cur = conn.cursor()
        cur.execute(
            f"CREATE DATABASE IF NOT EXISTS `{cfg.database}` "
            "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
        )
        cur.close()
    finally:
        conn.close()


def apply_schema(db_config: dict, *, schema_path: str | Path) -> None:
    ensure_database_exists(db_config)
    run_script(db_config, schema_path)


def apply_seed_sql(db_config: dict, *, seed_path: str | Path) -> None:
    run_script(db_config, seed_path)


def list_tables(db_config: dict) -> List[str]:
    conn = _open(DBConfig.from_dict(db_config))
    try:
        cur = conn.cursor()
        cur.execute("SHOW TABLES")
        names = [row[0] for row in cur.fetchall()]
        cur.close()
        return names
    finally:
        conn.close()


def missing_tables(db_config: dict, required: Sequence[str] = REQUIRED_TABLES) -> List[str]:
    present = set(list_tables(db_config))
    return [name for name in required if name not in present]
