"""Trip cost aggregation.

Pure functions over already-fetched trip records. Every numeric field goes
through ``safe_number`` before arithmetic, so malformed input contributes
zero instead of failing the report.
"""

from __future__ import annotations

import locale
import math
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation, getcontext
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union
from uuid import UUID, uuid4

from .models import (
    UNKNOWN_CUSTOMER_NAME,
    Customer,
    RateConfiguration,
    TripItem,
    TripRecord,
    Vehicle,
)

ZERO = Decimal("0")
UNSPECIFIED_DOCUMENT = "Unspecified"

_NUMERIC_PREFIX_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def _in_range(value: Decimal) -> Decimal:
    # Magnitudes past half the context exponent overflow once summed or multiplied.
    if not value.is_finite() or (value and value.adjusted() > getcontext().Emax // 2):
        return ZERO
    return value


def safe_number(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return _in_range(value)
    if isinstance(value, int):
        return _in_range(Decimal(value))
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return ZERO
        return Decimal(str(value))
    match = _NUMERIC_PREFIX_RE.match(str(value))
    if not match:
        return ZERO
    try:
        parsed = Decimal(match.group(1))
    except InvalidOperation:
        return ZERO
    return _in_range(parsed)


def non_negative(value: Any) -> Decimal:
    return max(safe_number(value), ZERO)


# -----------------------------
# Distances
# -----------------------------


@dataclass(frozen=True)
class DistanceFigures:
    actual: Decimal = ZERO
    estimated: Decimal = ZERO
    difference: Decimal = ZERO


def distance_figures(trips: Iterable[TripRecord]) -> DistanceFigures:
    actual = estimated = difference = ZERO
    for trip in trips:
        trip_actual = non_negative(trip.actual_distance)
        trip_estimated = non_negative(trip.estimated_distance)
        actual += trip_actual
        estimated += trip_estimated
        # Signed per trip; over- and under-runs may offset each other.
        difference += trip_actual - trip_estimated
    return DistanceFigures(actual=actual, estimated=estimated, difference=difference)


def distance_cost(trips: Iterable[TripRecord], rates: RateConfiguration) -> Decimal:
    """Distance charge used by the trip report.

    The free-distance threshold is deliberately not applied here; see
    ``threshold_distance_cost`` for the formula shown on the settings page.
    """
    return sum((non_negative(t.estimated_distance) * rates.distance_rate for t in trips), ZERO)


def threshold_distance_cost(total_distance: Any, rates: RateConfiguration) -> Decimal:
    chargeable = non_negative(total_distance) - rates.free_distance_threshold
    return max(chargeable, ZERO) * rates.distance_rate


def progressive_distance_cost(
    trip_distance: Any,
    cumulative_before: Any,
    rate: Any,
    free_threshold: Any,
) -> Decimal:
    """Charge for one trip when the monthly free distance is consumed in trip order."""
    distance = safe_number(trip_distance)
    if distance <= 0:
        return ZERO
    before = safe_number(cumulative_before)
    threshold = safe_number(free_threshold)
    after = before + distance
    if after <= threshold:
        return ZERO
    if before >= threshold:
        return distance * safe_number(rate)
    return (after - threshold) * safe_number(rate)


def trip_fee(trip_count: int, rates: RateConfiguration) -> Decimal:
    return Decimal(trip_count) * rates.trip_fee_rate


def allowance_for_days(days: Any, rates: RateConfiguration) -> Decimal:
    """Daily allowance for a trip lasting ``days``; less than one day earns nothing."""
    day_count = safe_number(days)
    if day_count < 1:
        return ZERO
    return day_count * rates.allowance_rate


# -----------------------------
# Item aggregation
# -----------------------------


@dataclass(frozen=True)
class Identified:
    namespace: str
    id: str


@dataclass(frozen=True)
class NamedFallback:
    name: str


@dataclass(frozen=True)
class Unmergeable:
    token: UUID = field(default_factory=uuid4)


ItemKey = Union[Identified, NamedFallback, Unmergeable]


def item_key(trip_item: TripItem) -> ItemKey:
    if trip_item.item is not None and trip_item.item.id is not None:
        return Identified("catalog", str(trip_item.item.id))
    if trip_item.id is not None:
        return Identified("line", str(trip_item.id))
    if trip_item.item_name:
        return NamedFallback(trip_item.item_name)
    return Unmergeable()


def line_value(trip_item: TripItem) -> Decimal:
    total = non_negative(trip_item.total_price)
    if total > 0:
        return total
    return non_negative(trip_item.unit_price) * non_negative(trip_item.quantity)


@dataclass
class AggregatedItem:
    name: str
    unit: Optional[str]
    quantity: Decimal = ZERO
    total_price: Decimal = ZERO


@dataclass
class CustomerItem:
    customer_id: int
    customer_name: str
    name: str
    unit: Optional[str]
    quantity: Decimal = ZERO
    total_price: Decimal = ZERO


def aggregate_items(trips: Iterable[TripRecord]) -> List[AggregatedItem]:
    merged: Dict[ItemKey, AggregatedItem] = {}
    for trip in trips:
        for trip_item in trip.trip_items:
            key = item_key(trip_item)
            entry = merged.get(key)
            if entry is None:
                entry = merged[key] = AggregatedItem(name=trip_item.display_name, unit=trip_item.display_unit)
            entry.quantity += safe_number(trip_item.quantity)
            entry.total_price += line_value(trip_item)
    return sorted(merged.values(), key=lambda e: e.total_price, reverse=True)


def aggregate_items_by_customer(trips: Iterable[TripRecord]) -> List[CustomerItem]:
    merged: Dict[Tuple[int, ItemKey], CustomerItem] = {}
    for trip in trips:
        customer = customer_of(trip)
        for trip_item in trip.trip_items:
            key = (customer.id, item_key(trip_item))
            entry = merged.get(key)
            if entry is None:
                entry = merged[key] = CustomerItem(
                    customer_id=customer.id,
                    customer_name=customer.name,
                    name=trip_item.display_name,
                    unit=trip_item.display_unit,
                )
            entry.quantity += safe_number(trip_item.quantity)
            entry.total_price += line_value(trip_item)
    # Two passes: stable sort by price first, then by customer name.
    by_price = sorted(merged.values(), key=lambda e: e.total_price, reverse=True)
    return sorted(by_price, key=lambda e: collation_key(e.customer_name))


def items_for_customer(trips: Iterable[TripRecord], customer_id: int) -> List[CustomerItem]:
    return [row for row in aggregate_items_by_customer(trips) if row.customer_id == customer_id]


def items_value(trips: Iterable[TripRecord]) -> Decimal:
    return sum((line_value(item) for trip in trips for item in trip.trip_items), ZERO)


def collation_key(name: str) -> str:
    """Sort key for customer names under the process LC_COLLATE.

    Plain code-point order on the casefolded name unless the app has set a
    collation locale (``collation_locale`` in the report settings).
    """
    return locale.strxfrm(name.casefold())


# -----------------------------
# Totals
# -----------------------------


@dataclass(frozen=True)
class CostSummary:
    trip_count: int = 0
    distances: DistanceFigures = field(default_factory=DistanceFigures)
    allowance: Decimal = ZERO
    items_value: Decimal = ZERO
    distance_cost: Decimal = ZERO
    trip_fee: Decimal = ZERO
    distance_check_fee: Decimal = ZERO
    fuel_cost: Decimal = ZERO
    toll_fee: Decimal = ZERO
    repair_cost: Decimal = ZERO

    @property
    def driver_payable(self) -> Decimal:
        return self.allowance + self.items_value + self.distance_cost + self.trip_fee

    @property
    def company_expenses(self) -> Decimal:
        return self.distance_check_fee + self.fuel_cost + self.toll_fee + self.repair_cost

    @property
    def grand_total(self) -> Decimal:
        return self.driver_payable + self.company_expenses

    def to_dict(self) -> Dict[str, object]:
        return {
            "trip_count": self.trip_count,
            "actual_distance": str(self.distances.actual),
            "estimated_distance": str(self.distances.estimated),
            "distance_difference": str(self.distances.difference),
            "allowance": str(self.allowance),
            "items_value": str(self.items_value),
            "distance_cost": str(self.distance_cost),
            "trip_fee": str(self.trip_fee),
            "driver_payable": str(self.driver_payable),
            "distance_check_fee": str(self.distance_check_fee),
            "fuel_cost": str(self.fuel_cost),
            "toll_fee": str(self.toll_fee),
            "repair_cost": str(self.repair_cost),
            "company_expenses": str(self.company_expenses),
            "grand_total": str(self.grand_total),
        }


def _field_sum(trips: Sequence[TripRecord], attribute: str) -> Decimal:
    return sum((safe_number(getattr(t, attribute)) for t in trips), ZERO)


def summarize(trips: Iterable[TripRecord], rates: RateConfiguration) -> CostSummary:
    trips = list(trips)
    return CostSummary(
        trip_count=len(trips),
        distances=distance_figures(trips),
        allowance=_field_sum(trips, "total_allowance"),
        items_value=items_value(trips),
        distance_cost=distance_cost(trips, rates),
        trip_fee=trip_fee(len(trips), rates),
        distance_check_fee=_field_sum(trips, "distance_check_fee"),
        fuel_cost=_field_sum(trips, "fuel_cost"),
        toll_fee=_field_sum(trips, "toll_fee"),
        repair_cost=_field_sum(trips, "repair_cost"),
    )


def summarize_by_vehicle(trips: Iterable[TripRecord], rates: RateConfiguration) -> Dict[int, CostSummary]:
    by_vehicle: Dict[int, List[TripRecord]] = {}
    for trip in trips:
        if trip.vehicle is not None:
            by_vehicle.setdefault(trip.vehicle.id, []).append(trip)
    return {vehicle_id: summarize(vehicle_trips, rates) for vehicle_id, vehicle_trips in by_vehicle.items()}


# -----------------------------
# Grouping
# -----------------------------


class CustomerKey(NamedTuple):
    customer_id: int
    customer_name: str


class DateDocumentKey(NamedTuple):
    date_range: str
    document_number: str


class CustomerTripKey(NamedTuple):
    customer_id: int
    customer_name: str
    trip_id: int


@dataclass(frozen=True)
class ReportGroup:
    date_range: str
    document_number: str
    customer: Customer
    trips: Tuple[TripRecord, ...]


def customer_of(trip: TripRecord) -> Customer:
    if trip.customer is None:
        return Customer(id=0, name=UNKNOWN_CUSTOMER_NAME)
    return Customer(id=trip.customer.id or 0, name=trip.customer.name or UNKNOWN_CUSTOMER_NAME)


def format_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def date_range_label(trip: TripRecord) -> str:
    departure = format_date(trip.departure_date)
    returned = format_date(trip.return_date or trip.departure_date)
    return departure if departure == returned else f"{departure} - {returned}"


def trips_date_range_label(trips: Iterable[TripRecord]) -> str:
    trips = list(trips)
    if not trips:
        return ""
    start = min(t.departure_date for t in trips)
    end = max(t.return_date or t.departure_date for t in trips)
    if start == end:
        return f"Date: {format_date(start)}"
    return f"Date range: {format_date(start)} - {format_date(end)}"


def group_trips_by_customer(trips: Iterable[TripRecord]) -> Dict[CustomerKey, List[TripRecord]]:
    groups: Dict[CustomerKey, List[TripRecord]] = {}
    for trip in trips:
        customer = customer_of(trip)
        groups.setdefault(CustomerKey(customer.id, customer.name), []).append(trip)
    return groups


def group_customers_by_date_range(
    trips: Iterable[TripRecord],
) -> Dict[DateDocumentKey, Dict[CustomerTripKey, List[TripRecord]]]:
    groups: Dict[DateDocumentKey, Dict[CustomerTripKey, List[TripRecord]]] = {}
    for trip in trips:
        customer = customer_of(trip)
        outer = DateDocumentKey(date_range_label(trip), trip.document_number or UNSPECIFIED_DOCUMENT)
        inner = CustomerTripKey(customer.id, customer.name, trip.id)
        groups.setdefault(outer, {}).setdefault(inner, []).append(trip)
    return groups


def report_groups(trips: Iterable[TripRecord]) -> List[ReportGroup]:
    """One report row per (date range, document number, customer), in first-seen order."""
    collected: Dict[Tuple[str, str, int, str], List[TripRecord]] = {}
    for (date_range, document_number), customers in group_customers_by_date_range(trips).items():
        for customer_key, customer_trips in customers.items():
            key = (date_range, document_number, customer_key.customer_id, customer_key.customer_name)
            collected.setdefault(key, []).extend(customer_trips)
    return [
        ReportGroup(
            date_range=date_range,
            document_number=document_number,
            customer=Customer(id=customer_id, name=customer_name),
            trips=tuple(group_trips),
        )
        for (date_range, document_number, customer_id, customer_name), group_trips in collected.items()
    ]


# -----------------------------
# Vehicles and drivers
# -----------------------------


def unique_vehicles(trips: Iterable[TripRecord]) -> List[Vehicle]:
    seen: Dict[int, Vehicle] = {}
    for trip in trips:
        if trip.vehicle is not None:
            seen[trip.vehicle.id] = trip.vehicle
    return list(seen.values())


def vehicle_drivers(vehicle_id: int, trips: Iterable[TripRecord]) -> List[str]:
    vehicle_trips = [t for t in trips if t.vehicle is not None and t.vehicle.id == vehicle_id]
    names = dict.fromkeys(t.driver_name for t in vehicle_trips if t.driver_name)
    if not names and vehicle_trips:
        vehicle = vehicle_trips[0].vehicle
        for driver in (vehicle.main_driver, vehicle.backup_driver):
            if driver is not None and driver.name:
                names[driver.name] = None
    return list(names)


def customer_drivers(customer_trips: Iterable[TripRecord]) -> List[str]:
    names: Dict[str, None] = {}
    for trip in customer_trips:
        if trip.driver_name:
            names[trip.driver_name] = None
        elif trip.vehicle is not None and trip.vehicle.main_driver is not None:
            names[trip.vehicle.main_driver.name] = None
    return list(names)


__all__ = [
    "AggregatedItem",
    "CostSummary",
    "CustomerItem",
    "CustomerKey",
    "CustomerTripKey",
    "DateDocumentKey",
    "DistanceFigures",
    "Identified",
    "ItemKey",
    "NamedFallback",
    "ReportGroup",
    "Unmergeable",
    "aggregate_items",
    "aggregate_items_by_customer",
    "allowance_for_days",
    "collation_key",
    "customer_drivers",
    "customer_of",
    "date_range_label",
    "distance_cost",
    "distance_figures",
    "group_customers_by_date_range",
    "group_trips_by_customer",
    "item_key",
    "items_for_customer",
    "items_value",
    "line_value",
    "non_negative",
    "progressive_distance_cost",
    "report_groups",
    "safe_number",
    "summarize",
    "summarize_by_vehicle",
    "threshold_distance_cost",
    "trip_fee",
    "trips_date_range_label",
    "unique_vehicles",
    "vehicle_drivers",
]
