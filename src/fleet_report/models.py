from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Optional, Union

DriverType = Literal["main", "backup", "other"]

# Numeric fields arrive from the fetch layer as numbers or numeric-looking text.
RawNumber = Union[str, int, float, Decimal, None]

UNKNOWN_CUSTOMER_NAME = "Unknown customer"
UNKNOWN_ITEM_NAME = "Unspecified item"


@dataclass(frozen=True)
class Customer:
    id: int
    name: str


@dataclass(frozen=True)
class Driver:
    id: Optional[int]
    name: str


@dataclass(frozen=True)
class Vehicle:
    id: int
    license_plate: str
    brand: str = ""
    model: str = ""
    vehicle_type: str = ""
    main_driver: Optional[Driver] = None
    backup_driver: Optional[Driver] = None
    image: Optional[str] = None

    @property
    def display_name(self) -> str:
        parts = [self.license_plate, " ".join(p for p in (self.brand, self.model) if p)]
        return " / ".join(p for p in parts if p)


@dataclass(frozen=True)
class ItemRef:
    id: Optional[int]
    code: Optional[str] = None
    description: Optional[str] = None
    unit_of_measure: Optional[str] = None


@dataclass(frozen=True)
class TripItem:
    id: Optional[int] = None
    quantity: RawNumber = 0
    unit: Optional[str] = None
    unit_price: RawNumber = None
    total_price: RawNumber = None
    remark: Optional[str] = None
    item: Optional[ItemRef] = None
    item_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.item and self.item.description:
            return self.item.description
        if self.item_name:
            return self.item_name
        if self.item and self.item.code:
            return self.item.code
        return UNKNOWN_ITEM_NAME

    @property
    def display_unit(self) -> Optional[str]:
        return self.unit or (self.item.unit_of_measure if self.item else None)


@dataclass(frozen=True)
class TripRecord:
    id: int
    departure_date: date
    return_date: Optional[date] = None
    departure_time: Optional[str] = None
    return_time: Optional[str] = None
    actual_distance: RawNumber = 0
    estimated_distance: RawNumber = None
    total_allowance: RawNumber = 0
    distance_check_fee: RawNumber = None
    fuel_cost: RawNumber = None
    toll_fee: RawNumber = None
    repair_cost: RawNumber = None
    document_number: Optional[str] = None
    driver_type: Optional[DriverType] = None
    driver_name: Optional[str] = None
    remark: Optional[str] = None
    customer: Optional[Customer] = None
    vehicle: Optional[Vehicle] = None
    trip_items: tuple[TripItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RateConfiguration:
    allowance_rate: Decimal
    distance_rate: Decimal
    free_distance_threshold: Decimal
    trip_fee_rate: Decimal


DEFAULT_RATES = RateConfiguration(
    allowance_rate=Decimal("150"),
    distance_rate=Decimal("1.2"),
    free_distance_threshold=Decimal("1500"),
    trip_fee_rate=Decimal("30"),
)


def _parse_date(value: Any) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return date.fromisoformat(text[:10])


def _optional_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    return int(value)


def customer_from_dict(payload: Optional[dict[str, Any]]) -> Optional[Customer]:
    if not payload:
        return None
    return Customer(
        id=_optional_int(payload.get("id")) or 0,
        name=payload.get("cmName") or payload.get("name") or UNKNOWN_CUSTOMER_NAME,
    )


def _driver_from_payload(payload: dict[str, Any], prefix: str) -> Optional[Driver]:
    nested = payload.get(f"{prefix}Driver")
    if isinstance(nested, dict) and nested.get("driverName"):
        return Driver(id=_optional_int(nested.get("id")), name=nested["driverName"])
    name = payload.get(f"{prefix}DriverName") if prefix != "main" else payload.get("driverName")
    if name:
        return Driver(id=_optional_int(payload.get(f"{prefix}DriverId")), name=name)
    return None


def vehicle_from_dict(payload: Optional[dict[str, Any]]) -> Optional[Vehicle]:
    if not payload:
        return None
    return Vehicle(
        id=int(payload["id"]),
        license_plate=payload.get("licensePlate") or "",
        brand=payload.get("brand") or "",
        model=payload.get("model") or "",
        vehicle_type=payload.get("vehicleType") or "",
        main_driver=_driver_from_payload(payload, "main"),
        backup_driver=_driver_from_payload(payload, "backup"),
        image=payload.get("carImage"),
    )


def trip_item_from_dict(payload: dict[str, Any]) -> TripItem:
    item_payload = payload.get("item")
    item = None
    if isinstance(item_payload, dict):
        item = ItemRef(
            id=_optional_int(item_payload.get("id")),
            code=item_payload.get("ptPart"),
            description=item_payload.get("ptDesc1"),
            unit_of_measure=item_payload.get("ptUm"),
        )
    return TripItem(
        id=_optional_int(payload.get("id")),
        quantity=payload.get("quantity"),
        unit=payload.get("unit"),
        unit_price=payload.get("unitPrice"),
        total_price=payload.get("totalPrice"),
        remark=payload.get("remark"),
        item=item,
        item_name=payload.get("itemName"),
    )


def trip_from_dict(payload: dict[str, Any]) -> TripRecord:
    departure = _parse_date(payload.get("departureDate"))
    if departure is None:
        raise ValueError(f"Trip {payload.get('id')} has no departureDate")
    return TripRecord(
        id=int(payload["id"]),
        departure_date=departure,
        return_date=_parse_date(payload.get("returnDate")),
        departure_time=payload.get("departureTime"),
        return_time=payload.get("returnTime"),
        actual_distance=payload.get("actualDistance"),
        estimated_distance=payload.get("estimatedDistance"),
        total_allowance=payload.get("totalAllowance"),
        distance_check_fee=payload.get("distanceCheckFee"),
        fuel_cost=payload.get("fuelCost"),
        toll_fee=payload.get("tollFee"),
        repair_cost=payload.get("repairCost"),
        document_number=payload.get("documentNumber") or None,
        driver_type=payload.get("driverType"),
        driver_name=payload.get("driverName") or None,
        remark=payload.get("remark"),
        customer=customer_from_dict(payload.get("customer")),
        vehicle=vehicle_from_dict(payload.get("vehicle")),
        trip_items=tuple(trip_item_from_dict(item) for item in payload.get("tripItems") or ()),
    )
