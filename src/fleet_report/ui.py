from __future__ import annotations

from html import escape

from .aggregation import allowance_for_days, threshold_distance_cost
from .models import RateConfiguration
from .pagination import Block, ReportTemplate
from .report import format_amount


def _section(block: Block, css_class: str) -> str:
    lines = "".join(f"<p>{escape(line)}</p>" for line in block.lines)
    return f'<section class="section {css_class}">{lines}</section>'


def _cells(block: Block, tag: str) -> str:
    return "<tr>" + "".join(f"<{tag}>{escape(cell)}</{tag}>" for cell in block.cells) + "</tr>"


def render_report_html(template: ReportTemplate) -> str:
    parts: list[str] = ['<div class="trip-report">']
    if template.header is not None:
        parts.append(_section(template.header, "report-header"))
    if template.summary is not None:
        parts.append(_section(template.summary, "report-summary"))

    parts.append('<section class="section report-data">')
    if template.rows and template.thead is not None:
        parts.append("<table>")
        parts.append(f"<thead>{_cells(template.thead, 'th')}</thead>")
        parts.append("<tbody>" + "".join(_cells(row, "td") for row in template.rows) + "</tbody>")
        if template.tfoot is not None:
            parts.append(f"<tfoot>{_cells(template.tfoot, 'td')}</tfoot>")
        parts.append("</table>")
    else:
        parts.append("<p>No trip records for the selected period.</p>")
    if template.trailing_summary is not None:
        lines = "".join(f"<p>{escape(line)}</p>" for line in template.trailing_summary.lines)
        parts.append(f'<div class="vehicle-summary-detailed">{lines}</div>')
    parts.append("</section>")

    parts.append("</div>")
    return "".join(parts)


def render_rate_help(rates: RateConfiguration) -> str:
    threshold = rates.free_distance_threshold
    example_distance = max(threshold + 500, 2000)
    example_cost = threshold_distance_cost(example_distance, rates)
    return (
        '<section class="rate-help">'
        "<h2>Rates</h2>"
        f"<p>Allowance: {escape(format_amount(rates.allowance_rate))} per day; "
        f"a 3-day trip earns {escape(format_amount(allowance_for_days(3, rates)))}, "
        "trips shorter than one day earn none.</p>"
        f"<p>Trip fee: {escape(format_amount(rates.trip_fee_rate))} per trip</p>"
        f"<p>Distance: the first {escape(format_amount(threshold))} km of the month are free; "
        f"after that each km costs {escape(format_amount(rates.distance_rate))}.</p>"
        f"<p>Example: {escape(format_amount(example_distance))} km = "
        f"({escape(format_amount(example_distance))} - {escape(format_amount(threshold))}) "
        f"&times; {escape(format_amount(rates.distance_rate))} = {escape(format_amount(example_cost))}</p>"
        "</section>"
    )
