from __future__ import annotations

"""
File: dronefleet/sim/entities.py
Purpose: Core entities for orders, drones and deliveries.
Key responsibilities:
- Validate construction input (weights, priorities, capacities).
- Own lifecycle transitions through explicit mutator methods.
- Produce plain snapshot dicts for the repository and restore from them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from math import ceil, isfinite
from typing import Any

from dronefleet.errors import InvalidTransition, ValidationError
from dronefleet.sim.geometry import Coordinate, route_distance


AVAILABILITY_BATTERY_THRESHOLD = 20.0
RECHARGE_BATTERY_THRESHOLD = 20.0
FULL_BATTERY = 100.0
BATTERY_PER_DISTANCE_UNIT = 1.0
# 30 distance units per 60 minutes.
SPEED_UNITS_PER_MINUTE = 30 / 60


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def weight(self) -> int:
        return _PRIORITY_WEIGHTS[self]


_PRIORITY_WEIGHTS = {Priority.HIGH: 3, Priority.MEDIUM: 2, Priority.LOW: 1}


class OrderStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DroneState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    FLYING = "flying"
    DELIVERING = "delivering"
    RETURNING = "returning"


class DeliveryStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _positive_number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not isfinite(value):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if value <= 0:
        raise ValidationError(f"{name} must be greater than zero")
    return float(value)


def _coordinate(name: str, value: Any) -> Coordinate:
    if isinstance(value, Coordinate):
        return value
    if isinstance(value, dict):
        return Coordinate.from_dict(value)
    raise ValidationError(f"invalid {name}: {value!r}")


@dataclass
class Order:
    """One shipment request."""
    id: str
    customer_location: Coordinate
    weight: float
    priority: Priority
    delivery_location: Coordinate | None = None
    created_at: datetime = field(default_factory=utcnow)
    status: OrderStatus = OrderStatus.PENDING

    def __post_init__(self) -> None:
        self.weight = _positive_number("order weight", self.weight)
        try:
            self.priority = Priority(self.priority)
        except ValueError as exc:
            raise ValidationError(f"invalid priority {self.priority!r}; use low, medium or high") from exc
        self.customer_location = _coordinate("customer location", self.customer_location)
        if self.delivery_location is not None:
            self.delivery_location = _coordinate("delivery location", self.delivery_location)
        self.status = OrderStatus(self.status)

    @property
    def destination(self) -> Coordinate:
        """Drop-off point; the customer location when none was given."""
        return self.delivery_location if self.delivery_location is not None else self.customer_location

    @property
    def priority_value(self) -> int:
        return self.priority.weight

    def stops(self) -> list[Coordinate]:
        """Distinct points a drone has to visit for this order."""
        if self.destination == self.customer_location:
            return [self.customer_location]
        return [self.customer_location, self.destination]

    def assign(self) -> None:
        if self.status is not OrderStatus.PENDING:
            raise InvalidTransition(f"order {self.id} is {self.status.value}, cannot assign")
        self.status = OrderStatus.ASSIGNED

    def release(self) -> None:
        """Hand an assigned order back to the pending pool."""
        if self.status is not OrderStatus.ASSIGNED:
            raise InvalidTransition(f"order {self.id} is {self.status.value}, cannot release")
        self.status = OrderStatus.PENDING

    def deliver(self) -> None:
        if self.status is OrderStatus.CANCELLED:
            raise InvalidTransition(f"order {self.id} was cancelled, cannot deliver")
        self.status = OrderStatus.DELIVERED

    def cancel(self) -> None:
        if self.status is OrderStatus.DELIVERED:
            raise InvalidTransition("cannot cancel an order that was already delivered")
        self.status = OrderStatus.CANCELLED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "customer_location": self.customer_location.to_dict(),
            "delivery_location": self.delivery_location.to_dict() if self.delivery_location else None,
            "weight": self.weight,
            "priority": self.priority.value,
            "created_at": _isoformat(self.created_at),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Order:
        return cls(
            id=str(data["id"]),
            customer_location=data["customer_location"],
            delivery_location=data.get("delivery_location"),
            weight=data["weight"],
            priority=data["priority"],
            created_at=_parse_ts(data.get("created_at")) or utcnow(),
            status=data.get("status", OrderStatus.PENDING),
        )


@dataclass
class Drone:
    """One vehicle with capacity, range, battery and a flight cycle."""
    id: str
    name: str
    max_weight: float
    max_distance: float
    base_location: Coordinate
    battery_level: float = FULL_BATTERY
    current_state: DroneState = DroneState.IDLE
    current_location: Coordinate | None = None
    current_delivery_id: str | None = None
    total_deliveries: int = 0
    total_distance: float = 0.0
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("drone name is required")
        self.max_weight = _positive_number("max weight", self.max_weight)
        self.max_distance = _positive_number("max distance", self.max_distance)
        self.base_location = _coordinate("base location", self.base_location)
        if self.current_location is None:
            self.current_location = self.base_location
        else:
            self.current_location = _coordinate("current location", self.current_location)
        self.current_state = DroneState(self.current_state)
        self.battery_level = min(FULL_BATTERY, max(0.0, float(self.battery_level)))

    def set_state(self, state: DroneState) -> None:
        self.current_state = DroneState(state)

    def set_location(self, location: Coordinate) -> None:
        self.current_location = location

    def consume_battery(self, distance: float) -> None:
        self.battery_level = max(0.0, self.battery_level - distance * BATTERY_PER_DISTANCE_UNIT)

    def recharge(self) -> None:
        self.battery_level = FULL_BATTERY

    def can_carry(self, weight: float) -> bool:
        return weight <= self.max_weight

    def can_reach(self, distance: float) -> bool:
        return distance <= self.max_distance

    def is_available(self) -> bool:
        return (
            self.current_delivery_id is None
            and self.current_state is DroneState.IDLE
            and self.battery_level > AVAILABILITY_BATTERY_THRESHOLD
        )

    def needs_recharge(self) -> bool:
        return self.battery_level < RECHARGE_BATTERY_THRESHOLD

    def is_at_base(self) -> bool:
        return self.current_location == self.base_location

    def assign_delivery(self, delivery_id: str) -> None:
        if self.current_delivery_id is not None and self.current_delivery_id != delivery_id:
            raise InvalidTransition(f"drone {self.id} already holds delivery {self.current_delivery_id}")
        self.current_delivery_id = delivery_id

    def clear_delivery(self) -> None:
        self.current_delivery_id = None

    def complete_delivery(self, distance: float) -> None:
        """Book a finished delivery: counters, battery drain, release."""
        self.total_deliveries += 1
        self.total_distance += distance
        self.consume_battery(distance)
        self.current_delivery_id = None

    @property
    def efficiency(self) -> float:
        """Distance per delivery; lower is better."""
        if self.total_deliveries == 0:
            return 0.0
        return self.total_distance / self.total_deliveries

    def stats(self) -> dict[str, float | int]:
        return {
            "total_deliveries": self.total_deliveries,
            "total_distance": self.total_distance,
            "efficiency": self.efficiency,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "max_weight": self.max_weight,
            "max_distance": self.max_distance,
            "battery_level": self.battery_level,
            "current_state": self.current_state.value,
            "current_location": self.current_location.to_dict(),
            "base_location": self.base_location.to_dict(),
            "current_delivery_id": self.current_delivery_id,
            "total_deliveries": self.total_deliveries,
            "total_distance": self.total_distance,
            "created_at": _isoformat(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Drone:
        return cls(
            id=str(data["id"]),
            name=data["name"],
            max_weight=data["max_weight"],
            max_distance=data["max_distance"],
            base_location=data["base_location"],
            battery_level=data.get("battery_level", FULL_BATTERY),
            current_state=data.get("current_state", DroneState.IDLE),
            current_location=data.get("current_location"),
            current_delivery_id=data.get("current_delivery_id"),
            total_deliveries=int(data.get("total_deliveries", 0)),
            total_distance=float(data.get("total_distance", 0.0)),
            created_at=_parse_ts(data.get("created_at")) or utcnow(),
        )


@dataclass
class Delivery:
    """A drone, its bundled orders and the planned route."""
    id: str
    drone_id: str
    orders: list[Order]
    route: list[Coordinate]
    status: DeliveryStatus = DeliveryStatus.SCHEDULED
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    total_weight: float = field(init=False)
    total_distance: float = field(init=False)
    estimated_time: int = field(init=False)

    def __post_init__(self) -> None:
        if not self.orders:
            raise ValidationError("a delivery needs at least one order")
        self.orders = list(self.orders)
        self.route = list(self.route)
        self.status = DeliveryStatus(self.status)
        self.total_weight = sum(order.weight for order in self.orders)
        self.total_distance = route_distance(self.route)
        self.estimated_time = ceil(self.total_distance / SPEED_UNITS_PER_MINUTE)

    @property
    def order_ids(self) -> list[str]:
        return [order.id for order in self.orders]

    def start(self, now: datetime | None = None) -> None:
        if self.status is not DeliveryStatus.SCHEDULED:
            raise InvalidTransition(f"delivery {self.id} is {self.status.value}, cannot start")
        self.status = DeliveryStatus.IN_PROGRESS
        self.started_at = now or utcnow()

    def complete(self, now: datetime | None = None) -> None:
        if self.status is not DeliveryStatus.IN_PROGRESS:
            raise InvalidTransition(f"delivery {self.id} is {self.status.value}, cannot complete")
        self.status = DeliveryStatus.COMPLETED
        self.completed_at = now or utcnow()

    def fail(self) -> None:
        if self.status is DeliveryStatus.COMPLETED:
            raise InvalidTransition(f"delivery {self.id} already completed")
        self.status = DeliveryStatus.FAILED

    def delivery_time(self) -> float | None:
        """Minutes between start and completion, if both are known."""
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() / 60

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "drone_id": self.drone_id,
            "order_ids": self.order_ids,
            "route": [point.to_dict() for point in self.route],
            "total_weight": self.total_weight,
            "total_distance": self.total_distance,
            "estimated_time": self.estimated_time,
            "status": self.status.value,
            "started_at": _isoformat(self.started_at),
            "completed_at": _isoformat(self.completed_at),
            "created_at": _isoformat(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], orders_by_id: dict[str, Order]) -> Delivery:
        """Rebuild a delivery from its snapshot; orders must already be loaded."""
        missing = [oid for oid in data.get("order_ids", []) if oid not in orders_by_id]
        if missing:
            raise ValidationError(f"delivery {data.get('id')} references unknown orders {missing}")
        return cls(
            id=str(data["id"]),
            drone_id=str(data["drone_id"]),
            orders=[orders_by_id[oid] for oid in data.get("order_ids", [])],
            route=[Coordinate.from_dict(point) for point in data.get("route", [])],
            status=data.get("status", DeliveryStatus.SCHEDULED),
            started_at=_parse_ts(data.get("started_at")),
            completed_at=_parse_ts(data.get("completed_at")),
            created_at=_parse_ts(data.get("created_at")) or utcnow(),
        )
