from __future__ import annotations

import re
from pathlib import Path

from src.gym_membership.gym_membership.database.bootstrap import _strip_create_db_and_use, iter_sql_statements

SCHEMA = Path(__file__).resolve().parents[2] / "database" / "schema.sql"


def test_statements_split_outside_quotes():
    sql = "INSERT INTO t VALUES ('a;b'); INSERT INTO t VALUES (\"c\\\";d\");\nSELECT 1"

    assert list(iter_sql_statements(sql)) == [
        "INSERT INTO t VALUES ('a;b')",
        "INSERT INTO t VALUES (\"c\\\";d\")",
        "SELECT 1",
    ]


def test_schema_creates_every_table_without_switching_database():
    sql = _strip_create_db_and_use(SCHEMA.read_text(encoding="utf-8"))
    statements = list(iter_sql_statements(sql))

    created = {
        m.group(1)
        for stmt in statements
        for m in [re.search(r"CREATE TABLE IF NOT EXISTS (\w+)", stmt)]
        if m
    }
    assert {"members", "sessions", "absences", "recoveries", "payments", "scheduled_reminders"} <= created
    assert not any(re.match(r"(?i)\s*(USE|CREATE DATABASE)\b", stmt) for stmt in statements)
