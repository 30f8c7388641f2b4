from __future__ import annotations

import sqlite3
from decimal import Decimal
from typing import Any, Optional


def _normalize_value(value: Any) -> str:
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


class SystemSettingsRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, setting_key: str) -> Optional[str]:
        row = self.conn.execute(
            "SELECT value FROM system_settings WHERE setting_key = ? LIMIT 1",
            (setting_key,),
        ).fetchone()
        return row[0] if row else None

    def set(self, setting_key: str, value: Any, description: str | None = None) -> None:
        self.conn.execute(
            """
            INSERT INTO system_settings(setting_key, value, description)
            VALUES (?, ?, ?)
            ON CONFLICT(setting_key)
            DO UPDATE SET value = excluded.value,
                          description = COALESCE(excluded.description, system_settings.description),
                          updated_at = CURRENT_TIMESTAMP
            """,
            (setting_key, _normalize_value(value), description),
        )

    def all(self) -> dict[str, str]:
        rows = self.conn.execute("SELECT setting_key, value FROM system_settings ORDER BY setting_key").fetchall()
        return {row["setting_key"]: row["value"] for row in rows}
