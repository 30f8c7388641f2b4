from datetime import date, datetime
from pathlib import Path
import threading

import pytest
from openpyxl import load_workbook

from backend.services.excel_export import ExcelExportService, read_cells
from backend.services.pdf_export import (
    ExportFailedError,
    ExportInProgressError,
    PdfExportService,
    TextBlockMeasurer,
    template_layout,
)
from fleet_report.models import DEFAULT_RATES, Customer, TripRecord, Vehicle
from fleet_report.pagination import Block, PageGeometry, ReportTemplate, TemplateStructureError
from fleet_report.report import build_vehicle_report

ROOT = Path(__file__).resolve().parents[1]
PRINTED_AT = datetime(2026, 2, 15, 9, 30, 0)


def sample_trips(count):
    vehicle = Vehicle(id=1, license_plate="1AB-2345", brand="Isuzu", vehicle_type="truck")
    return [
        TripRecord(
            id=i,
            departure_date=date(2026, 2, 1 + i % 28),
            actual_distance=100 + i,
            estimated_distance=90,
            total_allowance=150,
            document_number=f"DOC-{i}",
            customer=Customer(id=i % 3 + 1, name=f"Customer {i % 3 + 1}"),
            vehicle=vehicle,
        )
        for i in range(1, count + 1)
    ]


def export_service(**kwargs):
    return PdfExportService(clock=lambda: PRINTED_AT, **kwargs)


class BlockingMeasurer(TextBlockMeasurer):
    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def height(self, block):
        self.entered.set()
        self.release.wait(5)
        return super().height(block)


class FailingMeasurer(TextBlockMeasurer):
    def height(self, block):
        raise RuntimeError("font metrics unavailable")


def test_measured_height_grows_with_wrapped_text():
    measurer = TextBlockMeasurer()
    short = Block(kind="row", cells=("1", "Customer"))
    wrapped = Block(kind="row", cells=("1", "Customer " * 40))

    assert measurer.height(wrapped) > measurer.height(short)
    assert measurer.height(Block(kind="header", lines=("A", "B"))) > measurer.height(Block(kind="header", lines=("A",)))


def test_download_renders_every_page():
    template = build_vehicle_report(sample_trips(60), DEFAULT_RATES)
    service = export_service()
    expected_pages = len(service.paginate(template))

    document = service.export(template, "download")

    assert expected_pages > 1
    assert document.page_count == expected_pages
    assert document.content.startswith(b"%PDF")
    assert f"/Count {expected_pages}".encode() in document.content
    assert document.filename == "trip-report-2026-02-15.pdf"
    assert document.disposition == "download"


def test_download_writes_file(tmp_path):
    template = build_vehicle_report(sample_trips(5), DEFAULT_RATES)

    path = export_service().download(template, tmp_path / "exports")

    assert path == tmp_path / "exports" / "trip-report-2026-02-15.pdf"
    assert path.read_bytes().startswith(b"%PDF")
    assert list(path.parent.glob("*.part")) == []


def test_print_uses_the_same_pipeline():
    template = build_vehicle_report(sample_trips(5), DEFAULT_RATES)

    document = export_service().print_document(template)

    assert document.disposition == "print"
    assert document.page_count == 1


def test_empty_report_exports_whole_region_as_one_page():
    template = build_vehicle_report([], DEFAULT_RATES, period_label="February 2026")

    document = export_service().export(template)

    assert document.page_count == 1


def test_layout_is_restored_after_export():
    template = build_vehicle_report(sample_trips(3), DEFAULT_RATES)
    service = export_service()

    service.export(template)

    assert template.visible is False
    assert template.width_px is None
    assert not service.is_exporting


def test_layout_is_restored_when_rendering_fails():
    template = build_vehicle_report(sample_trips(3), DEFAULT_RATES)
    template.width_px = 900
    service = export_service(measurer=FailingMeasurer())

    with pytest.raises(ExportFailedError, match="Failed to generate PDF"):
        service.export(template)

    assert template.visible is False
    assert template.width_px == 900
    assert not service.is_exporting


def test_template_layout_restores_on_error():
    template = ReportTemplate()

    with pytest.raises(KeyError):
        with template_layout(template, 1200):
            assert template.visible is True
            assert template.width_px == 1200
            raise KeyError("boom")

    assert template.visible is False
    assert template.width_px is None


def test_missing_template_is_a_structure_error():
    service = export_service()

    with pytest.raises(TemplateStructureError):
        service.export(None)
    with pytest.raises(TemplateStructureError):
        service.export(ReportTemplate(rows=[Block(kind="row", cells=("1",))]))
    assert not service.is_exporting


def test_export_refuses_a_layout_the_measurer_does_not_match():
    template = build_vehicle_report(sample_trips(3), DEFAULT_RATES)
    service = export_service(geometry=PageGeometry(template_width_px=1000), measurer=TextBlockMeasurer(width_px=1200))

    with pytest.raises(TemplateStructureError, match="1000px"):
        service.export(template)

    assert template.visible is False
    assert template.width_px is None
    assert not service.is_exporting


def test_paginate_lays_out_the_template_only_while_measuring():
    template = build_vehicle_report(sample_trips(3), DEFAULT_RATES)

    pages = export_service().paginate(template)

    assert len(pages) == 1
    assert template.visible is False
    assert template.width_px is None


def test_second_export_is_refused_while_one_is_running():
    measurer = BlockingMeasurer()
    service = export_service(measurer=measurer)
    template = build_vehicle_report(sample_trips(3), DEFAULT_RATES)
    results = []

    worker = threading.Thread(target=lambda: results.append(service.export(template, "download")))
    worker.start()
    try:
        assert measurer.entered.wait(5)
        assert service.is_exporting
        with pytest.raises(ExportInProgressError):
            service.print_document(build_vehicle_report(sample_trips(2), DEFAULT_RATES))
    finally:
        measurer.release.set()
        worker.join(10)

    assert len(results) == 1
    assert results[0].content.startswith(b"%PDF")
    assert not service.is_exporting


def test_excel_export_writes_report_table(tmp_path):
    template = build_vehicle_report(sample_trips(4), DEFAULT_RATES)
    service = ExcelExportService(mapping_path=ROOT / "backend" / "config" / "excel_mapping.yaml")

    path = service.generate_export(template, tmp_path / "report.xlsx")

    cells = read_cells(path, service.get_mandatory_cells(), "Trip Report")
    assert cells["A1"] == "Vehicle Trip Report"
    assert cells["A2"] == "Vehicle: 1AB-2345 / Isuzu"

    sheet = load_workbook(path)["Trip Report"]
    rows = list(sheet.iter_rows(values_only=True))
    head_index = next(i for i, row in enumerate(rows) if row[0] == "No.")
    total_row = next(row for row in rows if row[4] == "Total")
    assert len([row for row in rows[head_index + 1:] if isinstance(row[0], str) and row[0].isdigit()]) == 4
    assert total_row[-1] == 1152
    assert sheet.freeze_panes == f"A{head_index + 2}"
