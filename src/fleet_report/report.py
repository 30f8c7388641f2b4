from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Optional, Sequence

from .aggregation import (
    CostSummary,
    ReportGroup,
    collation_key,
    customer_drivers,
    group_trips_by_customer,
    items_for_customer,
    report_groups,
    summarize,
    trips_date_range_label,
    unique_vehicles,
    vehicle_drivers,
)
from .models import RateConfiguration, TripRecord, Vehicle
from .pagination import Block, ReportTemplate

REPORT_TITLE = "Vehicle Trip Report"

TABLE_COLUMNS = (
    "No.",
    "Date",
    "Document No.",
    "Customer",
    "Drivers",
    "Actual km",
    "Estimated km",
    "Difference km",
    "Allowance",
    "Items",
    "Distance cost",
    "Trip fee",
    "Company expenses",
    "Total",
)

VEHICLE_TYPE_LABELS = {
    "truck": "Truck",
    "pickup": "Pickup",
    "forklift": "Forklift",
}


def format_amount(value: Decimal) -> str:
    """Thousands separators, up to two decimals, no decimals for whole numbers."""
    try:
        rounded = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # Too many digits for the context precision at two decimals.
        return f"{value:,f}"
    if rounded.is_zero():
        return "0"
    if rounded == rounded.to_integral_value():
        return f"{rounded:,.0f}"
    return f"{rounded:,.2f}".rstrip("0")


def vehicle_type_label(vehicle_type: Optional[str]) -> str:
    return VEHICLE_TYPE_LABELS.get((vehicle_type or "").lower(), vehicle_type or "")


def _summary_cells(summary: CostSummary) -> List[str]:
    return [
        format_amount(summary.distances.actual),
        format_amount(summary.distances.estimated),
        format_amount(summary.distances.difference),
        format_amount(summary.allowance),
        format_amount(summary.items_value),
        format_amount(summary.distance_cost),
        format_amount(summary.trip_fee),
        format_amount(summary.company_expenses),
        format_amount(summary.grand_total),
    ]


def group_row(index: int, group: ReportGroup, rates: RateConfiguration) -> Block:
    summary = summarize(group.trips, rates)
    cells = [
        str(index),
        group.date_range,
        group.document_number,
        group.customer.name,
        ", ".join(customer_drivers(group.trips)),
        *_summary_cells(summary),
    ]
    return Block(kind="row", cells=tuple(cells))


def _header_block(trips: Sequence[TripRecord], vehicle: Optional[Vehicle], period_label: Optional[str]) -> Block:
    lines = [REPORT_TITLE]
    if vehicle is not None:
        lines.append(f"Vehicle: {vehicle.display_name}")
        label = vehicle_type_label(vehicle.vehicle_type)
        if label:
            lines.append(f"Type: {label}")
        drivers = vehicle_drivers(vehicle.id, trips)
        if drivers:
            lines.append(f"Drivers: {', '.join(drivers)}")
    lines.append(period_label or trips_date_range_label(trips))
    return Block(kind="header", lines=tuple(line for line in lines if line))


def _summary_block(summary: CostSummary) -> Block:
    return Block(
        kind="summary",
        lines=(
            f"Trips: {summary.trip_count}",
            f"Actual distance: {format_amount(summary.distances.actual)} km"
            f" | Estimated distance: {format_amount(summary.distances.estimated)} km"
            f" | Difference: {format_amount(summary.distances.difference)} km",
            f"Driver payable: {format_amount(summary.driver_payable)}",
            f"Company expenses: {format_amount(summary.company_expenses)}",
            f"Grand total: {format_amount(summary.grand_total)}",
        ),
    )


def _trailing_summary_block(trips: Sequence[TripRecord], summary: CostSummary) -> Block:
    lines = [
        "Summary - detailed",
        f"Allowance: {format_amount(summary.allowance)}",
        f"Items value: {format_amount(summary.items_value)}",
        f"Distance cost: {format_amount(summary.distance_cost)}",
        f"Trip fee ({summary.trip_count} trips): {format_amount(summary.trip_fee)}",
        f"Driver payable: {format_amount(summary.driver_payable)}",
        f"Distance check fee: {format_amount(summary.distance_check_fee)}",
        f"Fuel cost: {format_amount(summary.fuel_cost)}",
        f"Toll fee: {format_amount(summary.toll_fee)}",
        f"Repair cost: {format_amount(summary.repair_cost)}",
        f"Company expenses: {format_amount(summary.company_expenses)}",
        f"Grand total: {format_amount(summary.grand_total)}",
    ]
    lines.extend(customer_item_lines(trips))
    return Block(kind="trailing_summary", lines=tuple(lines))


def customer_item_lines(trips: Sequence[TripRecord]) -> List[str]:
    """Per-customer item detail, customers in name order."""
    lines: List[str] = []
    by_customer = group_trips_by_customer(trips)
    for key in sorted(by_customer, key=lambda k: collation_key(k.customer_name)):
        rows = items_for_customer(by_customer[key], key.customer_id)
        if not rows:
            continue
        if not lines:
            lines.append("Items by customer")
        lines.append(key.customer_name)
        for row in rows:
            unit = f" {row.unit}" if row.unit else ""
            lines.append(f"  {row.name}: {format_amount(row.quantity)}{unit} = {format_amount(row.total_price)}")
    return lines


def build_vehicle_report(
    trips: Sequence[TripRecord],
    rates: RateConfiguration,
    vehicle: Optional[Vehicle] = None,
    period_label: Optional[str] = None,
) -> ReportTemplate:
    trips = list(trips)
    if vehicle is None:
        vehicles = unique_vehicles(trips)
        vehicle = vehicles[0] if len(vehicles) == 1 else None

    summary = summarize(trips, rates)
    rows = [group_row(index, group, rates) for index, group in enumerate(report_groups(trips), start=1)]
    tfoot = Block(kind="tfoot", cells=("", "", "", "", "Total", *_summary_cells(summary)))

    return ReportTemplate(
        header=_header_block(trips, vehicle, period_label),
        summary=_summary_block(summary),
        thead=Block(kind="thead", cells=TABLE_COLUMNS),
        rows=rows,
        tfoot=tfoot if rows else None,
        trailing_summary=_trailing_summary_block(trips, summary) if rows else None,
    )
