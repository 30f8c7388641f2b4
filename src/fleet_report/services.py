from __future__ import annotations

import logging
import sqlite3
from decimal import Decimal, InvalidOperation
from typing import Any

from fleet_report.models import DEFAULT_RATES, RateConfiguration
from fleet_report.repositories import SystemSettingsRepository

logger = logging.getLogger(__name__)

# RateConfiguration field -> system_settings key and description.
RATE_SETTING_KEYS: dict[str, tuple[str, str]] = {
    "allowance_rate": ("allowance_rate", "Allowance per day"),
    "distance_rate": ("distance_rate", "Distance rate per km"),
    "free_distance_threshold": ("free_distance_threshold", "Free distance per month (km)"),
    "trip_fee_rate": ("trip_fee", "Fee per trip"),
}


def _parse_rate(raw: Any) -> Decimal:
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Rate must be numeric, got {raw!r}") from None
    if not value.is_finite() or value < 0:
        raise ValueError(f"Rate must be a non-negative number, got {raw!r}")
    return value


class RateSettingsService:
    """Reads and updates the rate settings a report computation runs with."""

    def __init__(self, conn: sqlite3.Connection, defaults: RateConfiguration = DEFAULT_RATES):
        self.conn = conn
        self.settings = SystemSettingsRepository(conn)
        self.defaults = defaults

    def load_rates(self) -> RateConfiguration:
        values: dict[str, Decimal] = {}
        for field_name, (setting_key, _) in RATE_SETTING_KEYS.items():
            fallback = getattr(self.defaults, field_name)
            raw = self.settings.get(setting_key)
            if raw is None:
                values[field_name] = fallback
                continue
            try:
                values[field_name] = _parse_rate(raw)
            except ValueError:
                logger.warning("Ignoring invalid %s setting %r; using default %s", setting_key, raw, fallback)
                values[field_name] = fallback
        return RateConfiguration(**values)

    def update_rate(self, field_name: str, value: Any) -> RateConfiguration:
        if field_name not in RATE_SETTING_KEYS:
            raise ValueError(f"Unknown rate setting: {field_name}")
        parsed = _parse_rate(value)
        setting_key, description = RATE_SETTING_KEYS[field_name]
        with self.conn:
            self.settings.set(setting_key, parsed, description)
        logger.info("Updated %s to %s", setting_key, parsed)
        return self.load_rates()
