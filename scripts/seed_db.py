from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from config import load_settings

from src.course_sync.course_sync.database.bootstrap import apply_seed_sql, list_tables, missing_tables


def main() -> None:
    settings = load_settings()
    db_config = dict(settings.DB_CONFIG)

    missing = missing_tables(db_config)
    if missing:
        raise SystemExit(f"ERROR: schema not applied (missing: {', '.join(missing)}). Run scripts/init_db.py first.")

    seed_path = Path(__file__).resolve().parents[1] / "database" / "seed.sql"
    apply_seed_sql(db_config, seed_path=seed_path)

    print(
        "OK: Seeded timetable -> "
        f"{db_config.get('user')}@{db_config.get('host')}:{db_config.get('port', 3306)}/{db_config.get('database')} "
        f"(tables={len(list_tables(db_config))})"
    )


if __name__ == "__main__":
    main()
