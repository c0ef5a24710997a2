"""Create the gym_membership database and apply database/schema.sql.

Usage: APP_ENV=production python scripts/init_db.py
"""

from __future__ import annotations

import importlib
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from dotenv import load_dotenv

from config import get_settings_module

from src.gym_membership.gym_membership.database.bootstrap import apply_schema, list_tables

EXPECTED_TABLES = {
    "gyms",
    "gym_plan_prices",
    "training_groups",
    "members",
    "sessions",
    "session_attendance",
    "session_temporary_members",
    "absences",
    "recoveries",
    "payments",
    "scheduled_reminders",
}


def main() -> int:
    load_dotenv(override=False)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    settings = importlib.import_module(get_settings_module())
    db_config = dict(settings.DB_CONFIG)

    apply_schema(db_config, schema_path=REPO_ROOT / "database" / "schema.sql")
    missing = EXPECTED_TABLES - set(list_tables(db_config))
    target = f"{db_config.get('user')}@{db_config.get('host')}:{db_config.get('port', 3306)}/{db_config.get('database')}"
    if missing:
        print(f"FAILED: {target} is missing tables: {', '.join(sorted(missing))}")
        return 1

    print(f"OK: schema applied to {target} ({len(EXPECTED_TABLES)} tables)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
