from __future__ import annotations

"""
File: dronefleet/schemas.py
Purpose: Pydantic models for the HTTP request/response contracts.
Key responsibilities:
- Validate incoming order, drone, optimize and simulation payloads.
- Render entities as camelCase JSON.
Key entrypoints:
- CreateOrderRequest, CreateDroneRequest, OptimizeRequest
- OrderOut, DroneOut, DeliveryOut, StatsOut
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from dronefleet.sim.entities import Delivery, Drone, Order
from dronefleet.sim.geometry import Coordinate, Obstacle


PriorityName = Literal["low", "medium", "high"]
OrderStatusName = Literal["pending", "assigned", "delivered", "cancelled"]
DroneStateName = Literal["idle", "loading", "flying", "delivering", "returning"]
DeliveryStatusName = Literal["scheduled", "in-progress", "completed", "failed"]
ObstacleType = Literal["no-fly-zone", "restricted"]


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Point(CamelModel):
    x: float = Field(allow_inf_nan=False)
    y: float = Field(allow_inf_nan=False)

    def to_coordinate(self) -> Coordinate:
        return Coordinate(x=self.x, y=self.y)

    @classmethod
    def from_coordinate(cls, point: Coordinate) -> Point:
        return cls(x=point.x, y=point.y)


class CreateOrderRequest(CamelModel):
    """Request body for POST /api/orders."""
    customer_location: Point
    delivery_location: Optional[Point] = None
    weight: float = Field(gt=0, allow_inf_nan=False)
    priority: PriorityName


class CreateDroneRequest(CamelModel):
    """Request body for POST /api/drones."""
    name: str = Field(min_length=1)
    max_weight: float = Field(gt=0, allow_inf_nan=False)
    max_distance: float = Field(gt=0, allow_inf_nan=False)
    base_location: Optional[Point] = None


class ObstacleIn(CamelModel):
    id: Optional[str] = None
    location: Point
    radius: float = Field(ge=0, allow_inf_nan=False)
    type: ObstacleType = "no-fly-zone"

    def to_obstacle(self) -> Obstacle:
        return Obstacle(location=self.location.to_coordinate(), radius=self.radius, id=self.id, type=self.type)


class OptimizeRequest(CamelModel):
    """Request body for POST /api/deliveries/optimize."""
    base_location: Optional[Point] = None
    obstacles: list[ObstacleIn] = Field(default_factory=list)


class SimulateStartRequest(CamelModel):
    """Request body for POST /api/deliveries/simulate/start."""
    interval_ms: Optional[int] = Field(default=None, gt=0)


class OrderOut(CamelModel):
    id: str
    customer_location: Point
    delivery_location: Point
    weight: float
    priority: PriorityName
    status: OrderStatusName
    created_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> OrderOut:
        return cls(
            id=order.id,
            customer_location=Point.from_coordinate(order.customer_location),
            delivery_location=Point.from_coordinate(order.destination),
            weight=order.weight,
            priority=order.priority.value,
            status=order.status.value,
            created_at=order.created_at,
        )


class DroneOut(CamelModel):
    id: str
    name: str
    max_weight: float
    max_distance: float
    battery_level: float
    current_state: DroneStateName
    current_location: Point
    base_location: Point
    current_delivery_id: Optional[str] = None
    total_deliveries: int
    total_distance: float
    created_at: datetime

    @classmethod
    def from_drone(cls, drone: Drone) -> DroneOut:
        return cls(
            id=drone.id,
            name=drone.name,
            max_weight=drone.max_weight,
            max_distance=drone.max_distance,
            battery_level=drone.battery_level,
            current_state=drone.current_state.value,
            current_location=Point.from_coordinate(drone.current_location),
            base_location=Point.from_coordinate(drone.base_location),
            current_delivery_id=drone.current_delivery_id,
            total_deliveries=drone.total_deliveries,
            total_distance=drone.total_distance,
            created_at=drone.created_at,
        )


class DeliveryOut(CamelModel):
    id: str
    drone_id: str
    order_ids: list[str]
    orders: list[OrderOut]
    route: list[Point]
    total_weight: float
    total_distance: float
    estimated_time: int
    status: DeliveryStatusName
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_delivery(cls, delivery: Delivery) -> DeliveryOut:
        return cls(
            id=delivery.id,
            drone_id=delivery.drone_id,
            order_ids=delivery.order_ids,
            orders=[OrderOut.from_order(o) for o in delivery.orders],
            route=[Point.from_coordinate(p) for p in delivery.route],
            total_weight=delivery.total_weight,
            total_distance=delivery.total_distance,
            estimated_time=delivery.estimated_time,
            status=delivery.status.value,
            started_at=delivery.started_at,
            completed_at=delivery.completed_at,
            created_at=delivery.created_at,
        )


class DroneStatsOut(CamelModel):
    total_deliveries: int
    total_distance: float
    efficiency: float


class DroneStatusOut(CamelModel):
    drone: DroneOut
    stats: DroneStatsOut
    current_delivery: Optional[DeliveryOut] = None


class RouteOut(CamelModel):
    delivery_id: str
    drone_id: str
    route: list[Point]
    total_distance: float
    estimated_time: int
    status: DeliveryStatusName


class OptimizeResponse(CamelModel):
    """Response payload from POST /api/deliveries/optimize."""
    message: str
    deliveries: list[DeliveryOut]
    assigned_orders: int
    requested_orders: int
    unassigned_order_ids: list[str]


class EfficientDroneOut(CamelModel):
    id: str
    name: str
    efficiency: float
    total_deliveries: int


class StatsOut(CamelModel):
    total_deliveries: int
    completed_deliveries: int
    average_delivery_time: float
    total_distance: float
    most_efficient_drone: Optional[EfficientDroneOut] = None


class SimulationStatusOut(CamelModel):
    message: str
    running: bool
    tick: int
    interval_ms: Optional[int] = None


class MessageOut(CamelModel):
    message: str
