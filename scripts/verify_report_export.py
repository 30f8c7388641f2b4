from __future__ import annotations

from pathlib import Path

from backend.services.excel_export import ExcelExportService, read_cells
from backend.services.pdf_export import PdfExportService
from fleet_report.config import load_report_settings
from fleet_report.models import trip_from_dict
from fleet_report.report import build_vehicle_report


def sample_trips(count: int = 40) -> list[dict]:
    """Synthetic month of trips for one truck, enough to span several pages."""
    vehicle = {
        "id": 7,
        "licensePlate": "70-1234",
        "brand": "Isuzu",
        "model": "FRR",
        "vehicleType": "truck",
        "driverName": "Somchai",
        "backupDriverName": "Anan",
    }
    trips = []
    for index in range(1, count + 1):
        day = (index - 1) % 28 + 1
        trips.append(
            {
                "id": index,
                "departureDate": f"2026-02-{day:02d}",
                "returnDate": f"2026-02-{min(day + 1, 28):02d}",
                "actualDistance": str(120 + index),
                "estimatedDistance": 118 + index,
                "totalAllowance": "150",
                "fuelCost": 900,
                "tollFee": "60",
                "documentNumber": f"DOC-{index:04d}",
                "customer": {"id": index % 5 + 1, "cmName": f"Customer {index % 5 + 1}"},
                "vehicle": vehicle,
                "tripItems": [
                    {"id": index, "item": {"id": 1, "ptPart": "P-1", "ptDesc1": "Pallet", "ptUm": "pcs"},
                     "quantity": 2, "unitPrice": "35", "totalPrice": 0},
                ],
            }
        )
    return trips


def main() -> int:
    settings = load_report_settings()
    trips = [trip_from_dict(raw) for raw in sample_trips()]
    template = build_vehicle_report(trips, settings.default_rates, period_label="February 2026")

    pdf = PdfExportService(geometry=settings.geometry).export(template)
    pdf_path = pdf.save(Path("artifacts"))
    if not pdf.content.startswith(b"%PDF") or pdf.page_count < 2:
        print(f"Verification failed. Unexpected PDF output at {pdf_path} ({pdf.page_count} pages)")
        return 1

    excel = ExcelExportService()
    xlsx_path = excel.generate_export(template, Path("artifacts/sample_trip_report.xlsx"))
    values = read_cells(xlsx_path, excel.get_mandatory_cells(), excel.mapping["workbook"]["sheet_name"])
    missing = [cell for cell, value in values.items() if value in (None, "")]
    if missing:
        print("Verification failed. Missing mandatory values in:", ", ".join(missing))
        return 1

    print(f"Verification passed. {pdf.page_count}-page PDF at {pdf_path}, workbook at {xlsx_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
