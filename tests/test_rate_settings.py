from decimal import Decimal
from pathlib import Path

import pytest

from fleet_report.config import ReportSettings, apply_collation_locale, load_report_settings
from fleet_report.db import apply_sqlite_migration, connect_sqlite
from fleet_report.models import DEFAULT_RATES
from fleet_report.repositories import SystemSettingsRepository
from fleet_report.services import RateSettingsService

ROOT = Path(__file__).resolve().parents[1]


def settings_service():
    conn = connect_sqlite()
    apply_sqlite_migration(conn)
    return conn, RateSettingsService(conn)


def test_missing_settings_fall_back_to_defaults():
    _, service = settings_service()

    assert service.load_rates() == DEFAULT_RATES


def test_updated_rate_is_used_by_later_loads():
    conn, service = settings_service()

    rates = service.update_rate("distance_rate", "2.5")

    assert rates.distance_rate == Decimal("2.5")
    assert rates.trip_fee_rate == DEFAULT_RATES.trip_fee_rate
    assert SystemSettingsRepository(conn).get("distance_rate") == "2.5"
    assert service.load_rates().distance_rate == Decimal("2.5")


def test_trip_fee_is_stored_under_its_settings_key():
    conn, service = settings_service()

    service.update_rate("trip_fee_rate", 45)
    service.update_rate("trip_fee_rate", 50)

    assert SystemSettingsRepository(conn).all() == {"trip_fee": "50"}
    assert service.load_rates().trip_fee_rate == Decimal("50")


def test_invalid_stored_value_is_ignored(caplog):
    conn, service = settings_service()
    SystemSettingsRepository(conn).set("allowance_rate", "abc")

    with caplog.at_level("WARNING"):
        rates = service.load_rates()

    assert rates.allowance_rate == DEFAULT_RATES.allowance_rate
    assert "allowance_rate" in caplog.text


@pytest.mark.parametrize("name, value", [("distance_rate", "-1"), ("distance_rate", "fast"), ("fuel_rate", "1")])
def test_invalid_updates_are_rejected(name, value):
    _, service = settings_service()

    with pytest.raises(ValueError):
        service.update_rate(name, value)
    assert service.load_rates() == DEFAULT_RATES


def test_bundled_report_settings():
    settings = load_report_settings(ROOT / "backend" / "config" / "report_settings.yaml")

    assert settings.geometry.max_page_height_px == 771
    assert settings.default_rates == DEFAULT_RATES
    assert settings.export_dir == Path("exports")
    assert settings.settings_db == ":memory:"
    assert settings.collation_locale is None


def test_report_settings_overrides(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(
        "page:\n  width_mm: 210\n  height_mm: 297\n"
        "default_rates:\n  distance_rate: 2\n"
        "export:\n  directory: out\n"
        "collation_locale: th_TH.UTF-8\n",
        encoding="utf-8",
    )

    settings = load_report_settings(path)

    assert settings.geometry.page_width_mm == 210
    assert settings.geometry.content_width_mm == 190
    assert settings.default_rates.distance_rate == Decimal("2")
    assert settings.default_rates.allowance_rate == DEFAULT_RATES.allowance_rate
    assert settings.export_dir == Path("out")
    assert settings.collation_locale == "th_TH.UTF-8"


def test_report_settings_must_be_a_mapping(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("- page\n- rates\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_report_settings(path)


def test_collation_locale_is_left_alone_when_unset():
    assert apply_collation_locale(ReportSettings()) is False


def test_unknown_collation_locale_keeps_code_point_order(caplog):
    with caplog.at_level("WARNING"):
        applied = apply_collation_locale(ReportSettings(collation_locale="xx_NOPE.UTF-8"))

    assert applied is False
    assert "xx_NOPE.UTF-8" in caplog.text
