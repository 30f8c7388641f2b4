"""Greedy page flow for print-ready trip reports.

A report template is a fixed sequence of blocks: header, optional summary,
one table (thead, body rows, optional tfoot) and an optional trailing
summary. ``PageFlowBuilder`` lays those blocks into pages whose measured
height stays within a capacity, repeating the header and the table head on
every page. Logical rows are never split; a row or trailing summary that is
taller than a whole page is allowed to overflow its page.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Protocol, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

BlockKind = Literal["header", "summary", "thead", "row", "tfoot", "trailing_summary"]


@dataclass(frozen=True)
class Block:
    kind: BlockKind
    cells: Tuple[str, ...] = ()
    lines: Tuple[str, ...] = ()


@dataclass
class ReportTemplate:
    header: Optional[Block] = None
    summary: Optional[Block] = None
    thead: Optional[Block] = None
    rows: List[Block] = field(default_factory=list)
    tfoot: Optional[Block] = None
    trailing_summary: Optional[Block] = None
    # Layout state, mutated only for the duration of one export.
    visible: bool = False
    width_px: Optional[int] = None

    def source_blocks(self) -> List[Block]:
        ordered = [self.header, self.summary, self.thead, *self.rows, self.tfoot, self.trailing_summary]
        return [block for block in ordered if block is not None]


class TemplateStructureError(ValueError):
    """Raised when the report template lacks a section the page flow needs."""


class Measurable(Protocol):
    def height(self, block: Block) -> float:
        ...


@dataclass(frozen=True)
class PageGeometry:
    page_width_mm: float = 297.0
    page_height_mm: float = 210.0
    margin_mm: float = 10.0
    footer_mm: float = 12.0
    template_width_px: int = 1200

    @property
    def content_width_mm(self) -> float:
        return self.page_width_mm - self.margin_mm * 2

    @property
    def content_height_mm(self) -> float:
        return self.page_height_mm - self.margin_mm * 2 - self.footer_mm

    @property
    def px_per_mm(self) -> float:
        return self.template_width_px / self.content_width_mm

    @property
    def max_page_height_px(self) -> int:
        return math.floor(self.content_height_mm * self.px_per_mm)


@dataclass
class TableFragment:
    thead: Block
    rows: List[Block] = field(default_factory=list)
    tfoot: Optional[Block] = None


PageItem = Union[Block, TableFragment]


@dataclass
class Page:
    items: List[PageItem] = field(default_factory=list)
    whole_region: bool = False

    @property
    def rows(self) -> List[Block]:
        return [row for item in self.items if isinstance(item, TableFragment) for row in item.rows]

    @property
    def tables(self) -> List[TableFragment]:
        return [item for item in self.items if isinstance(item, TableFragment)]

    def blocks(self) -> List[Block]:
        """Flatten the page into render order."""
        flat: List[Block] = []
        for item in self.items:
            if isinstance(item, TableFragment):
                flat.append(item.thead)
                flat.extend(item.rows)
                if item.tfoot is not None:
                    flat.append(item.tfoot)
            else:
                flat.append(item)
        return flat


class PageFlowBuilder:
    """Single-pass greedy packing of report blocks into height-bounded pages."""

    def __init__(self, measurer: Measurable, max_page_height_px: float, table_spacing_px: float = 3.0):
        if max_page_height_px <= 0:
            raise ValueError("max_page_height_px must be positive")
        self.measurer = measurer
        self.max_page_height_px = max_page_height_px
        self.table_spacing_px = table_spacing_px

    def build(self, template: ReportTemplate) -> List[Page]:
        if not template.rows:
            logger.debug("No body rows; capturing the whole report region as one page")
            return [Page(items=list(template.source_blocks()), whole_region=True)]
        if template.header is None or template.thead is None:
            raise TemplateStructureError("Report template needs a header and a table head to paginate rows")

        pages: List[Page] = []
        page = self._start_page(pages, template)

        if template.summary is not None:
            page.items.append(template.summary)
            if self._overflows(page):
                page.items.pop()
                page = self._start_page(pages, template)
                # Placed regardless of size so an oversized summary cannot loop.
                page.items.append(template.summary)

        table = self._open_table(page, template)
        for row in template.rows:
            table.rows.append(row)
            if self._overflows(page):
                table.rows.pop()
                page = self._start_page(pages, template)
                table = self._open_table(page, template)
                # A row taller than a whole page stays here and overflows.
                table.rows.append(row)

        if template.tfoot is not None:
            table.tfoot = template.tfoot
            if self._overflows(page):
                table.tfoot = None
                page = self._start_page(pages, template)
                table = self._open_table(page, template)
                table.tfoot = template.tfoot

        if template.trailing_summary is not None:
            page.items.append(template.trailing_summary)
            if self._overflows(page):
                page.items.pop()
                page = self._start_page(pages, template)
                page.items.append(template.trailing_summary)

        logger.debug("Paginated %d rows into %d pages", len(template.rows), len(pages))
        return pages

    def page_height(self, page: Page) -> float:
        total = 0.0
        for item in page.items:
            if isinstance(item, TableFragment):
                total += self.measurer.height(item.thead)
                total += sum(self.measurer.height(row) for row in item.rows)
                if item.tfoot is not None:
                    total += self.measurer.height(item.tfoot)
                total += self.table_spacing_px
            else:
                total += self.measurer.height(item)
        return total

    def _overflows(self, page: Page) -> bool:
        return self.page_height(page) > self.max_page_height_px

    @staticmethod
    def _start_page(pages: List[Page], template: ReportTemplate) -> Page:
        page = Page()
        if template.header is not None:
            page.items.append(template.header)
        pages.append(page)
        return page

    @staticmethod
    def _open_table(page: Page, template: ReportTemplate) -> TableFragment:
        table = TableFragment(thead=template.thead)
        page.items.append(table)
        return table


def paginate(
    template: ReportTemplate,
    measurer: Measurable,
    geometry: Optional[PageGeometry] = None,
) -> List[Page]:
    geometry = geometry or PageGeometry()
    return PageFlowBuilder(measurer, geometry.max_page_height_px).build(template)


def flatten_rows(pages: Sequence[Page]) -> List[Block]:
    return [row for page in pages for row in page.rows]


__all__ = [
    "Block",
    "BlockKind",
    "Measurable",
    "Page",
    "PageFlowBuilder",
    "PageGeometry",
    "ReportTemplate",
    "TableFragment",
    "TemplateStructureError",
    "flatten_rows",
    "paginate",
]
