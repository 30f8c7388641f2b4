from dataclasses import replace
from decimal import Decimal

from fastapi.testclient import TestClient

from backend.app import main

client = TestClient(main.app)

RATES = {"allowance_rate": "150", "distance_rate": "1.2", "free_distance_threshold": "1500", "trip_fee_rate": "30"}


def trip_payload(trip_id, **overrides):
    payload = {
        "id": trip_id,
        "departureDate": "2026-02-01",
        "actualDistance": "100",
        "estimatedDistance": 50,
        "totalAllowance": 150,
        "documentNumber": "DOC-1",
        "customer": {"id": 1, "cmName": "Acme Logistics"},
        "vehicle": {"id": 7, "licensePlate": "1AB-2345", "driverName": "Somchai"},
        "tripItems": [],
    }
    payload.update(overrides)
    return payload


def test_health_reports_idle_exporter():
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "exporting": False}


def test_summary_totals_and_groups():
    trips = [trip_payload(1), trip_payload(2), trip_payload(3, customer={"id": 2, "cmName": "Beta Foods"})]

    response = client.post("/reports/trip-records/summary", json={"trips": trips, "rates": RATES})

    assert response.status_code == 200
    body = response.json()
    assert Decimal(body["totals"]["distance_cost"]) == Decimal("180")
    assert Decimal(body["totals"]["driver_payable"]) == Decimal("720")
    assert [g["trip_ids"] for g in body["groups"]] == [[1, 2], [3]]
    assert body["groups"][0]["drivers"] == ["Somchai"]
    assert list(body["vehicles"]) == ["7"]


def test_summary_filters_by_vehicle():
    trips = [trip_payload(1), trip_payload(2, vehicle={"id": 8, "licensePlate": "9ZZ-0001"})]

    response = client.post("/reports/trip-records/summary", json={"trips": trips, "vehicle_id": 8, "rates": RATES})

    assert response.json()["totals"]["trip_count"] == 1


def test_invalid_trip_record_is_rejected():
    response = client.post("/reports/trip-records/summary", json={"trips": [{"id": 1}]})

    assert response.status_code == 422


def test_preview_renders_html():
    response = client.post("/reports/trip-records/preview", json={"trips": [trip_payload(1)], "rates": RATES})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "Vehicle Trip Report" in response.text
    assert "Acme Logistics" in response.text


def test_pdf_download_and_print_dispositions():
    payload = {"trips": [trip_payload(i) for i in range(1, 4)], "rates": RATES}

    download = client.post("/reports/trip-records/export.pdf", json=payload)
    printed = client.post("/reports/trip-records/print.pdf", json=payload)

    assert download.status_code == 200
    assert download.headers["content-type"] == "application/pdf"
    assert download.headers["content-disposition"].startswith("attachment;")
    assert download.content.startswith(b"%PDF")
    assert printed.status_code == 200
    assert printed.headers["content-disposition"].startswith("inline;")


def test_export_without_trips_is_refused():
    response = client.post("/reports/trip-records/export.pdf", json={"trips": []})

    assert response.status_code == 400


def test_export_while_busy_returns_conflict():
    assert main.pdf_exports._in_flight.acquire(blocking=False)
    try:
        response = client.post("/reports/trip-records/print.pdf", json={"trips": [trip_payload(1)], "rates": RATES})
    finally:
        main.pdf_exports._in_flight.release()

    assert response.status_code == 409


def test_xlsx_export(tmp_path, monkeypatch):
    monkeypatch.setattr(main, "settings", replace(main.settings, export_dir=tmp_path))

    response = client.post("/reports/trip-records/export.xlsx", json={"trips": [trip_payload(1)], "rates": RATES})

    assert response.status_code == 200
    assert response.content[:2] == b"PK"
    assert len(list(tmp_path.glob("trip-report-*.xlsx"))) == 1


def test_rate_settings_round_trip():
    original = client.get("/settings/rates").json()["rates"]["distance_rate"]
    try:
        updated = client.put("/settings/rates/distance_rate", json={"value": "2"})
        assert updated.status_code == 200
        assert Decimal(updated.json()["rates"]["distance_rate"]) == Decimal("2")

        body = client.get("/settings/rates").json()
        assert Decimal(body["rates"]["distance_rate"]) == Decimal("2")
        assert "rate-help" in body["help_html"]
    finally:
        client.put("/settings/rates/distance_rate", json={"value": original})


def test_invalid_rate_update_is_rejected():
    assert client.put("/settings/rates/fuel_rate", json={"value": "1"}).status_code == 400
    assert client.put("/settings/rates/distance_rate", json={"value": "-1"}).status_code == 400
