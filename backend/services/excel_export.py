from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from fleet_report.pagination import Block, ReportTemplate


@dataclass
class ExcelExportService:
    """Export a trip report template into a workbook laid out by a YAML mapping."""

    mapping_path: Path = Path("backend/config/excel_mapping.yaml")

    def __post_init__(self) -> None:
        self.mapping = self._load_mapping(self.mapping_path)

    @staticmethod
    def _load_mapping(mapping_path: Path) -> dict[str, Any]:
        with Path(mapping_path).open("r", encoding="utf-8") as mapping_file:
            loaded = yaml.safe_load(mapping_file)

        if not isinstance(loaded, dict):
            msg = f"Mapping file must contain a dictionary at root: {mapping_path}"
            raise ValueError(msg)

        return loaded

    def generate_export(self, template: ReportTemplate, output_path: Path | str) -> Path:
        """Write header, summary, table and trailing summary; save to output_path."""
        workbook = Workbook()
        worksheet = workbook.active
        worksheet.title = self.mapping["workbook"]["sheet_name"]

        row = int(self.mapping["layout"].get("start_row", 1))
        row = self._write_lines(worksheet, template.header, row, bold_first=True)
        row = self._write_lines(worksheet, template.summary, row)
        row += int(self.mapping["layout"].get("gap_rows", 1))
        table_start = row
        row = self._write_table(worksheet, template, row)
        row += int(self.mapping["layout"].get("gap_rows", 1))
        self._write_lines(worksheet, template.trailing_summary, row)

        self._apply_column_widths(worksheet)
        if template.rows:
            worksheet.freeze_panes = f"A{table_start + 1}"

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(output_path)

        return output_path

    def _write_lines(self, sheet: Worksheet, block: Block | None, row: int, bold_first: bool = False) -> int:
        if block is None:
            return row
        column = self.mapping["layout"].get("text_column", "A")
        for offset, line in enumerate(block.lines):
            cell = sheet[f"{column}{row}"]
            cell.value = line
            if bold_first and offset == 0:
                cell.font = Font(bold=True, size=14)
            row += 1
        return row

    def _write_table(self, sheet: Worksheet, template: ReportTemplate, row: int) -> int:
        if template.thead is None:
            return row
        numeric_columns = set(self.mapping["table"].get("numeric_columns", []))
        blocks = [template.thead, *template.rows]
        if template.tfoot is not None:
            blocks.append(template.tfoot)
        for block in blocks:
            for index, value in enumerate(block.cells, start=1):
                cell = sheet.cell(row=row, column=index)
                header = template.thead.cells[index - 1] if index <= len(template.thead.cells) else ""
                cell.value = _as_number(value) if block.kind != "thead" and header in numeric_columns else value
                if block.kind in ("thead", "tfoot"):
                    cell.font = Font(bold=True)
            row += 1
        return row

    def _apply_column_widths(self, sheet: Worksheet) -> None:
        for index, width in enumerate(self.mapping["table"].get("column_widths", []), start=1):
            sheet.column_dimensions[get_column_letter(index)].width = width

    def get_mandatory_cells(self) -> list[str]:
        verification = self.mapping.get("verification", {})
        mandatory_cells = verification.get("mandatory_cells", [])
        if not isinstance(mandatory_cells, list):
            msg = "verification.mandatory_cells must be a list of cell references"
            raise ValueError(msg)
        return mandatory_cells


def _as_number(value: str) -> Any:
    cleaned = value.replace(",", "")
    try:
        return float(cleaned)
    except ValueError:
        return value


def read_cells(path: Path | str, cells: list[str], sheet_name: str) -> dict[str, Any]:
    """Utility for validation/testing: read exact cell values from an exported workbook."""
    workbook = load_workbook(path, data_only=False)
    sheet = workbook[sheet_name]
    return {cell: sheet[cell].value for cell in cells}
