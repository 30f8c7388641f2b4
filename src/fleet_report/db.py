from __future__ import annotations

import sqlite3
from pathlib import Path

SETTINGS_MIGRATION = Path(__file__).resolve().parent / "migrations" / "001_system_settings.sql"


def connect_sqlite(path: str | Path = ":memory:", check_same_thread: bool = True) -> sqlite3.Connection:
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    return conn


def apply_sqlite_migration(conn: sqlite3.Connection, migration_path: str | Path = SETTINGS_MIGRATION) -> None:
    sql = Path(migration_path).read_text(encoding="utf-8")
    conn.executescript(sql)


def open_settings_db(path: str | Path = ":memory:") -> sqlite3.Connection:
    """Connection with the system_settings table in place, shareable across request threads."""
    conn = connect_sqlite(path, check_same_thread=False)
    apply_sqlite_migration(conn)
    return conn
