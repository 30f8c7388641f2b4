from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, Response
from pydantic import BaseModel

from backend.services.excel_export import ExcelExportService
from backend.services.pdf_export import ExportFailedError, ExportInProgressError, PdfExport, PdfExportService
from fleet_report.aggregation import (
    aggregate_items,
    aggregate_items_by_customer,
    customer_drivers,
    report_groups,
    summarize,
    summarize_by_vehicle,
)
from fleet_report.config import apply_collation_locale, load_report_settings
from fleet_report.db import open_settings_db
from fleet_report.models import RateConfiguration, TripRecord, trip_from_dict
from fleet_report.pagination import ReportTemplate, TemplateStructureError
from fleet_report.report import build_vehicle_report
from fleet_report.services import RATE_SETTING_KEYS, RateSettingsService
from fleet_report.ui import render_rate_help, render_report_html

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

app = FastAPI(title="Fleet Report API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

settings = load_report_settings(CONFIG_DIR / "report_settings.yaml")
apply_collation_locale(settings)
rate_settings = RateSettingsService(open_settings_db(settings.settings_db), defaults=settings.default_rates)
pdf_exports = PdfExportService(geometry=settings.geometry)


class RatesPayload(BaseModel):
    allowance_rate: Decimal
    distance_rate: Decimal
    free_distance_threshold: Decimal
    trip_fee_rate: Decimal


class TripReportRequest(BaseModel):
    trips: list[dict[str, Any]]
    vehicle_id: Optional[int] = None
    period_label: Optional[str] = None
    rates: Optional[RatesPayload] = None


class RateUpdate(BaseModel):
    value: Decimal


def _rates_for(payload: TripReportRequest) -> RateConfiguration:
    if payload.rates is not None:
        return RateConfiguration(**payload.rates.model_dump())
    return rate_settings.load_rates()


def _trips_for(payload: TripReportRequest) -> list[TripRecord]:
    try:
        trips = [trip_from_dict(raw) for raw in payload.trips]
    except (KeyError, TypeError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=f"Invalid trip record: {exc}") from exc
    if payload.vehicle_id is not None:
        trips = [t for t in trips if t.vehicle is not None and t.vehicle.id == payload.vehicle_id]
    return trips


def _template_for(payload: TripReportRequest) -> ReportTemplate:
    trips = _trips_for(payload)
    if not trips:
        raise HTTPException(status_code=400, detail="No trip records to export for the selected vehicle and period")
    return build_vehicle_report(trips, _rates_for(payload), period_label=payload.period_label)


def _rates_dict(rates: RateConfiguration) -> dict[str, str]:
    return {name: str(getattr(rates, name)) for name in RATE_SETTING_KEYS}


def _run_export(payload: TripReportRequest, disposition: str) -> PdfExport:
    template = _template_for(payload)
    try:
        return pdf_exports.export(template, disposition)
    except ExportInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except TemplateStructureError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ExportFailedError as exc:
        raise HTTPException(status_code=500, detail="Failed to generate PDF") from exc


@app.get("/settings/rates")
def get_rates():
    rates = rate_settings.load_rates()
    return {"rates": _rates_dict(rates), "help_html": render_rate_help(rates)}


@app.put("/settings/rates/{name}")
def update_rate(name: str, payload: RateUpdate):
    try:
        rates = rate_settings.update_rate(name, payload.value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"rates": _rates_dict(rates)}


@app.post("/reports/trip-records/summary")
def trip_report_summary(payload: TripReportRequest):
    trips = _trips_for(payload)
    rates = _rates_for(payload)

    groups = []
    for group in report_groups(trips):
        groups.append(
            {
                "date_range": group.date_range,
                "document_number": group.document_number,
                "customer": {"id": group.customer.id, "name": group.customer.name},
                "trip_ids": [t.id for t in group.trips],
                "drivers": customer_drivers(group.trips),
                "totals": summarize(group.trips, rates).to_dict(),
                "items": [
                    {"name": i.name, "unit": i.unit, "quantity": str(i.quantity), "total_price": str(i.total_price)}
                    for i in aggregate_items(group.trips)
                ],
            }
        )

    return {
        "rates": _rates_dict(rates),
        "groups": groups,
        "vehicles": {str(vid): s.to_dict() for vid, s in summarize_by_vehicle(trips, rates).items()},
        "totals": summarize(trips, rates).to_dict(),
        "items_by_customer": [
            {
                "customer_id": row.customer_id,
                "customer_name": row.customer_name,
                "name": row.name,
                "unit": row.unit,
                "quantity": str(row.quantity),
                "total_price": str(row.total_price),
            }
            for row in aggregate_items_by_customer(trips)
        ],
    }


@app.post("/reports/trip-records/preview", response_class=HTMLResponse)
def trip_report_preview(payload: TripReportRequest):
    trips = _trips_for(payload)
    template = build_vehicle_report(trips, _rates_for(payload), period_label=payload.period_label)
    return render_report_html(template)


@app.post("/reports/trip-records/export.pdf")
def export_trip_report(payload: TripReportRequest):
    document = _run_export(payload, "download")
    return Response(
        content=document.content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{document.filename}"'},
    )


@app.post("/reports/trip-records/print.pdf")
def print_trip_report(payload: TripReportRequest):
    document = _run_export(payload, "print")
    return Response(
        content=document.content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{document.filename}"'},
    )


@app.post("/reports/trip-records/export.xlsx")
def export_trip_report_xlsx(payload: TripReportRequest):
    template = _template_for(payload)
    service = ExcelExportService(mapping_path=CONFIG_DIR / "excel_mapping.yaml")
    export_path = service.generate_export(template, settings.export_dir / f"trip-report-{date.today().isoformat()}.xlsx")
    return FileResponse(
        export_path,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename=export_path.name,
    )


@app.get("/health")
def health():
    return {"status": "ok", "exporting": pdf_exports.is_exporting}
