from __future__ import annotations

import locale
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .aggregation import safe_number
from .models import DEFAULT_RATES, RateConfiguration
from .pagination import PageGeometry

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path("backend/config/report_settings.yaml")


@dataclass(frozen=True)
class ReportSettings:
    geometry: PageGeometry = field(default_factory=PageGeometry)
    default_rates: RateConfiguration = DEFAULT_RATES
    export_dir: Path = Path("exports")
    settings_db: str = ":memory:"
    # None keeps the process LC_COLLATE (code-point order under the C locale).
    collation_locale: Optional[str] = None


def _rates_from_mapping(values: dict[str, Any]) -> RateConfiguration:
    def pick(name: str) -> Any:
        fallback = getattr(DEFAULT_RATES, name)
        return safe_number(values[name]) if name in values else fallback

    return RateConfiguration(
        allowance_rate=pick("allowance_rate"),
        distance_rate=pick("distance_rate"),
        free_distance_threshold=pick("free_distance_threshold"),
        trip_fee_rate=pick("trip_fee_rate"),
    )


def load_report_settings(path: Path | str | None = None) -> ReportSettings:
    """Read page geometry, fallback rates and export location from YAML."""
    settings_path = Path(path) if path is not None else DEFAULT_SETTINGS_PATH
    if path is None and not settings_path.exists():
        return ReportSettings()

    with settings_path.open("r", encoding="utf-8") as settings_file:
        loaded = yaml.safe_load(settings_file) or {}

    if not isinstance(loaded, dict):
        msg = f"Settings file must contain a dictionary at root: {settings_path}"
        raise ValueError(msg)

    page = loaded.get("page", {})
    geometry = PageGeometry(
        page_width_mm=float(page.get("width_mm", 297)),
        page_height_mm=float(page.get("height_mm", 210)),
        margin_mm=float(page.get("margin_mm", 10)),
        footer_mm=float(page.get("footer_mm", 12)),
        template_width_px=int(page.get("template_width_px", 1200)),
    )
    export = loaded.get("export", {})
    return ReportSettings(
        geometry=geometry,
        default_rates=_rates_from_mapping(loaded.get("default_rates", {})),
        export_dir=Path(export.get("directory", "exports")),
        settings_db=str(loaded.get("settings_db", ":memory:")),
        collation_locale=loaded.get("collation_locale"),
    )


def apply_collation_locale(settings: ReportSettings) -> bool:
    """Set LC_COLLATE for customer-name sorting; False when the locale is not installed."""
    if settings.collation_locale is None:
        return False
    try:
        locale.setlocale(locale.LC_COLLATE, settings.collation_locale)
    except locale.Error:
        logger.warning("Collation locale %r is not available; keeping code-point order", settings.collation_locale)
        return False
    return True
