from __future__ import annotations

"""
File: dronefleet/sim/registry.py
Purpose: Explicitly owned in-memory stores for fleet and order state.
Key responsibilities:
- FleetRegistry: drones and deliveries by id.
- OrderBook: orders by id with status filtering.
"""

from typing import Iterator

from dronefleet.sim.entities import Delivery, DeliveryStatus, Drone, Order, OrderStatus


class FleetRegistry:
    """Drones and deliveries owned by one simulation engine."""
    def __init__(self) -> None:
        self.drones: dict[str, Drone] = {}
        self.deliveries: dict[str, Delivery] = {}

    def add_drone(self, drone: Drone) -> None:
        self.drones[drone.id] = drone

    def get_drone(self, drone_id: str) -> Drone | None:
        return self.drones.get(drone_id)

    def remove_drone(self, drone_id: str) -> list[Delivery]:
        """Drop a drone and every delivery it owns; return the dropped deliveries."""
        self.drones.pop(drone_id, None)
        dropped = [d for d in self.deliveries.values() if d.drone_id == drone_id]
        for delivery in dropped:
            del self.deliveries[delivery.id]
        return dropped

    def add_delivery(self, delivery: Delivery) -> None:
        self.deliveries[delivery.id] = delivery

    def get_delivery(self, delivery_id: str) -> Delivery | None:
        return self.deliveries.get(delivery_id)

    def remove_delivery(self, delivery_id: str) -> Delivery | None:
        return self.deliveries.pop(delivery_id, None)

    def deliveries_with_status(self, status: DeliveryStatus) -> list[Delivery]:
        return [d for d in self.deliveries.values() if d.status is status]

    def clear(self) -> None:
        self.drones.clear()
        self.deliveries.clear()

    def __iter__(self) -> Iterator[Drone]:
        return iter(list(self.drones.values()))

    def __len__(self) -> int:
        return len(self.drones)


class OrderBook:
    """All known orders, keyed by id."""
    def __init__(self) -> None:
        self.orders: dict[str, Order] = {}

    def add(self, order: Order) -> None:
        self.orders[order.id] = order

    def get(self, order_id: str) -> Order | None:
        return self.orders.get(order_id)

    def all(self) -> list[Order]:
        return list(self.orders.values())

    def with_status(self, status: OrderStatus) -> list[Order]:
        return [o for o in self.orders.values() if o.status is status]

    def pending(self) -> list[Order]:
        return self.with_status(OrderStatus.PENDING)

    def clear(self) -> None:
        self.orders.clear()

    def __len__(self) -> int:
        return len(self.orders)
