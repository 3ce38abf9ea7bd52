from __future__ import annotations

import argparse
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from config import load_settings

from src.course_sync.course_sync.database.bootstrap import apply_schema, apply_seed_sql, list_tables


def main() -> None:
    parser = argparse.ArgumentParser(description="Apply database/schema.sql")
    parser.add_argument("--seed", action="store_true", help="Also load database/seed.sql")
    args = parser.parse_args()

    settings = load_settings()
    db_config = dict(settings.DB_CONFIG)

    database_dir = REPO_ROOT / "database"
    apply_schema(db_config, schema_path=database_dir / "schema.sql")
    if args.seed:
        apply_seed_sql(db_config, seed_path=database_dir / "seed.sql")

    tables = list_tables(db_config)
    print(
        "OK: Applied schema.sql -> "
        f"{db_config.get('user')}@{db_config.get('host')}:{db_config.get('port', 3306)}/{db_config.get('database')} "
        f"(tables={len(tables)}, seeded={'yes' if args.seed else 'no'})"
    )


if __name__ == "__main__":
    main()
