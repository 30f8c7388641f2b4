from .aggregation import (
    CostSummary,
    ReportGroup,
    aggregate_items,
    aggregate_items_by_customer,
    group_customers_by_date_range,
    group_trips_by_customer,
    report_groups,
    safe_number,
    summarize,
)
from .models import DEFAULT_RATES, RateConfiguration, TripItem, TripRecord, Vehicle, trip_from_dict
from .pagination import Block, Page, PageFlowBuilder, PageGeometry, ReportTemplate, TemplateStructureError
from .report import build_vehicle_report
from .ui import render_report_html

__all__ = [
    "Block",
    "CostSummary",
    "DEFAULT_RATES",
    "Page",
    "PageFlowBuilder",
    "PageGeometry",
    "RateConfiguration",
    "ReportGroup",
    "ReportTemplate",
    "TemplateStructureError",
    "TripItem",
    "TripRecord",
    "Vehicle",
    "aggregate_items",
    "aggregate_items_by_customer",
    "build_vehicle_report",
    "group_customers_by_date_range",
    "group_trips_by_customer",
    "render_report_html",
    "report_groups",
    "safe_number",
    "summarize",
    "trip_from_dict",
]
