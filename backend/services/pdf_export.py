"""Multi-page PDF export of paginated trip reports.

The page flow is computed once per export by ``paginate``; this module
measures blocks with reportlab font metrics, draws each page onto an A4
canvas and stamps the print date and page marker in the footer. Download and
print share one pipeline and one in-flight guard and differ only in what the
caller does with the finished document.
"""

from __future__ import annotations

import io
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Literal, Optional, Sequence

from reportlab.lib.units import mm
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from fleet_report.pagination import (
    Block,
    Page,
    PageGeometry,
    ReportTemplate,
    TableFragment,
    TemplateStructureError,
    paginate,
)

logger = logging.getLogger(__name__)

Disposition = Literal["download", "print"]


class ExportInProgressError(RuntimeError):
    """Raised when an export is requested while another one is running."""


class ExportFailedError(RuntimeError):
    """Raised when any step of the export pipeline fails."""


@dataclass(frozen=True)
class BlockStyle:
    font_name: str
    font_size: float
    leading: float
    padding: float


DEFAULT_STYLES: Dict[str, BlockStyle] = {
    "header": BlockStyle("Helvetica-Bold", 18, 24, 6),
    "summary": BlockStyle("Helvetica", 14, 19, 6),
    "thead": BlockStyle("Helvetica-Bold", 12, 16, 4),
    "row": BlockStyle("Helvetica", 12, 16, 4),
    "tfoot": BlockStyle("Helvetica-Bold", 12, 16, 4),
    "trailing_summary": BlockStyle("Helvetica", 13, 18, 6),
}


@dataclass
class TextBlockMeasurer:
    """Block heights in template pixels, from the same wrapping the renderer uses."""

    width_px: float = 1200
    styles: Dict[str, BlockStyle] = field(default_factory=lambda: dict(DEFAULT_STYLES))

    def height(self, block: Block) -> float:
        style = self.styles[block.kind]
        if block.cells:
            line_count = max(len(lines) for lines in self.wrap_cells(block))
        else:
            line_count = sum(max(len(self._split(line, style, self.width_px - 2 * style.padding)), 1) for line in block.lines)
        return max(line_count, 1) * style.leading + 2 * style.padding

    def column_width(self, block: Block) -> float:
        return self.width_px / max(len(block.cells), 1)

    def wrap_cells(self, block: Block) -> List[List[str]]:
        style = self.styles[block.kind]
        inner = self.column_width(block) - 2 * style.padding
        return [self._split(cell, style, inner) or [""] for cell in block.cells]

    @staticmethod
    def _split(text: str, style: BlockStyle, width: float) -> List[str]:
        return simpleSplit(text, style.font_name, style.font_size, max(width, 1))


@contextmanager
def template_layout(template: ReportTemplate, width_px: int) -> Iterator[ReportTemplate]:
    """Make the template renderable at ``width_px`` and restore its layout afterwards."""
    previous = (template.visible, template.width_px)
    template.visible = True
    template.width_px = width_px
    try:
        yield template
    finally:
        template.visible, template.width_px = previous


@dataclass(frozen=True)
class PdfExport:
    filename: str
    content: bytes
    page_count: int
    disposition: Disposition

    def save(self, directory: Path | str) -> Path:
        """Write the document atomically; a failed write leaves no file behind."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / self.filename
        fd, tmp_name = tempfile.mkstemp(dir=directory, suffix=".part")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(self.content)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return target


class PdfPageRenderer:
    def __init__(self, geometry: PageGeometry, measurer: TextBlockMeasurer):
        self.geometry = geometry
        self.measurer = measurer

    @property
    def scale(self) -> float:
        return self.geometry.content_width_mm * mm / self.geometry.template_width_px

    def render(self, pages: Sequence[Page], printed_at: datetime) -> bytes:
        buffer = io.BytesIO()
        page_size = (self.geometry.page_width_mm * mm, self.geometry.page_height_mm * mm)
        pdf = canvas.Canvas(buffer, pagesize=page_size)
        total = len(pages)
        for index, page in enumerate(pages, start=1):
            self._draw_page(pdf, page)
            self._draw_footer(pdf, printed_at, index, total)
            pdf.showPage()
        pdf.save()
        return buffer.getvalue()

    def _draw_page(self, pdf: canvas.Canvas, page: Page) -> None:
        margin = self.geometry.margin_mm * mm
        pdf.saveState()
        pdf.translate(margin, self.geometry.page_height_mm * mm - margin)
        pdf.scale(self.scale, self.scale)
        cursor = 0.0
        for item in page.items:
            if isinstance(item, TableFragment):
                for block in (item.thead, *item.rows, *((item.tfoot,) if item.tfoot else ())):
                    cursor = self._draw_cells(pdf, block, cursor)
            elif item.cells:
                cursor = self._draw_cells(pdf, item, cursor)
            else:
                cursor = self._draw_lines(pdf, item, cursor)
        pdf.restoreState()

    def _draw_lines(self, pdf: canvas.Canvas, block: Block, top: float) -> float:
        style = self.measurer.styles[block.kind]
        pdf.setFont(style.font_name, style.font_size)
        y = top + style.padding
        for line in block.lines:
            for part in simpleSplit(line, style.font_name, style.font_size, self.measurer.width_px - 2 * style.padding) or [""]:
                y += style.leading
                pdf.drawString(style.padding, -y + (style.leading - style.font_size), part)
        return top + self.measurer.height(block)

    def _draw_cells(self, pdf: canvas.Canvas, block: Block, top: float) -> float:
        style = self.measurer.styles[block.kind]
        height = self.measurer.height(block)
        width = self.measurer.column_width(block)
        pdf.setFont(style.font_name, style.font_size)
        pdf.setLineWidth(0.5)
        for column, lines in enumerate(self.measurer.wrap_cells(block)):
            x = column * width
            pdf.rect(x, -(top + height), width, height, stroke=1, fill=0)
            y = top + style.padding
            for part in lines:
                y += style.leading
                pdf.drawString(x + style.padding, -y + (style.leading - style.font_size), part)
        return top + height

    def _draw_footer(self, pdf: canvas.Canvas, printed_at: datetime, index: int, total: int) -> None:
        margin = self.geometry.margin_mm * mm
        baseline = 6 * mm
        pdf.setFont("Helvetica", 8)
        pdf.drawString(margin, baseline, f"Print Date: {printed_at:%d/%m/%Y %H:%M:%S}")
        pdf.drawRightString(self.geometry.page_width_mm * mm - margin, baseline, f"Page {index}/{total}")


class PdfExportService:
    """Builds trip report PDFs; one export at a time across every entry point."""

    def __init__(
        self,
        geometry: Optional[PageGeometry] = None,
        measurer: Optional[TextBlockMeasurer] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.geometry = geometry or PageGeometry()
        self.measurer = measurer or TextBlockMeasurer(width_px=self.geometry.template_width_px)
        self.renderer = PdfPageRenderer(self.geometry, self.measurer)
        self.clock = clock
        self._in_flight = threading.Lock()

    @property
    def is_exporting(self) -> bool:
        return self._in_flight.locked()

    def paginate(self, template: ReportTemplate) -> List[Page]:
        with template_layout(template, self.geometry.template_width_px):
            return self._paginate_laid_out(template)

    def _paginate_laid_out(self, template: ReportTemplate) -> List[Page]:
        if not template.visible or template.width_px != self.measurer.width_px:
            raise TemplateStructureError(
                f"Report template is laid out at {template.width_px}px but measured at {self.measurer.width_px}px"
            )
        return paginate(template, self.measurer, self.geometry)

    def export(self, template: Optional[ReportTemplate], disposition: Disposition = "download") -> PdfExport:
        if template is None:
            raise TemplateStructureError("Report template not found")
        if not self._in_flight.acquire(blocking=False):
            raise ExportInProgressError("A PDF export is already running")
        try:
            started = self.clock()
            with template_layout(template, self.geometry.template_width_px):
                pages = self._paginate_laid_out(template)
                content = self.renderer.render(pages, printed_at=started)
        except TemplateStructureError:
            logger.warning("Report template cannot be paginated", exc_info=True)
            raise
        except Exception as exc:
            logger.exception("Failed to generate PDF")
            raise ExportFailedError("Failed to generate PDF") from exc
        finally:
            self._in_flight.release()

        filename = f"trip-report-{started.date().isoformat()}.pdf"
        logger.info("Generated %s with %d pages (%s)", filename, len(pages), disposition)
        return PdfExport(filename=filename, content=content, page_count=len(pages), disposition=disposition)

    def download(self, template: Optional[ReportTemplate], directory: Path | str) -> Path:
        return self.export(template, "download").save(directory)

    def print_document(self, template: Optional[ReportTemplate]) -> PdfExport:
        return self.export(template, "print")


__all__ = [
    "BlockStyle",
    "Disposition",
    "ExportFailedError",
    "ExportInProgressError",
    "PdfExport",
    "PdfExportService",
    "PdfPageRenderer",
    "TextBlockMeasurer",
    "template_layout",
]
