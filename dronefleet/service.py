from __future__ import annotations

"""
File: dronefleet/service.py
Purpose: Use-case layer between the HTTP transport and the simulation core.
Key responsibilities:
- Own the order book, fleet registry, simulation engine and tick scheduler.
- Load persisted state once at startup, then flush every mutation.
- Run allocation and turn allocations into scheduled deliveries.
Key entrypoints:
- DispatchService.optimize()
- DispatchService.start_simulation() / step_simulation()
"""

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Callable, Iterable
from uuid import uuid4

from dronefleet.db import Repository, flush
from dronefleet.errors import DroneFleetError, InvalidTransition, NotFound, NothingToAllocate
from dronefleet.settings import Settings, settings as default_settings
from dronefleet.sim.allocation import compute_allocations
from dronefleet.sim.engine import SimulationEngine
from dronefleet.sim.entities import (
    Delivery,
    DeliveryStatus,
    Drone,
    DroneState,
    Order,
    OrderStatus,
    utcnow,
)
from dronefleet.sim.geometry import Coordinate, Obstacle
from dronefleet.sim.registry import FleetRegistry, OrderBook
from dronefleet.sim.scheduler import TickScheduler

logger = logging.getLogger("dronefleet.service")


@dataclass
class OptimizeOutcome:
    """Deliveries created by one optimization run."""
    deliveries: list[Delivery] = field(default_factory=list)
    requested: int = 0
    unassigned: list[Order] = field(default_factory=list)

    @property
    def assigned(self) -> int:
        return sum(len(d.orders) for d in self.deliveries)


class DispatchService:
    """Single authoritative in-memory state with one-directional persistence."""
    def __init__(
        self,
        repository: Repository,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.config = config
        self.clock = clock
        self.base_location = Coordinate(config.base_x, config.base_y)
        self.orders = OrderBook()
        self.fleet = FleetRegistry()
        self.engine = SimulationEngine(self.fleet, repository, clock)
        self.scheduler = TickScheduler(self.engine.step)
        self.load()

    def load(self) -> None:
        """Rebuild in-memory state from the repository."""
        with self.scheduler.lock:
            for row in self.repository.list_orders():
                try:
                    self.orders.add(Order.from_dict(row))
                except (DroneFleetError, KeyError) as exc:
                    logger.warning("skipping unreadable order row id=%s err=%s", row.get("id"), exc)
            for row in self.repository.list_drones():
                try:
                    self.fleet.add_drone(Drone.from_dict(row))
                except (DroneFleetError, KeyError) as exc:
                    logger.warning("skipping unreadable drone row id=%s err=%s", row.get("id"), exc)
            orders_by_id = {order.id: order for order in self.orders.all()}
            for row in self.repository.list_deliveries():
                try:
                    self.fleet.add_delivery(Delivery.from_dict(row, orders_by_id))
                except (DroneFleetError, KeyError) as exc:
                    logger.warning("skipping unreadable delivery row id=%s err=%s", row.get("id"), exc)
        logger.info(
            "state loaded orders=%s drones=%s deliveries=%s",
            len(self.orders),
            len(self.fleet),
            len(self.fleet.deliveries),
        )

    # Orders

    def create_order(
        self,
        customer_location: Coordinate | dict,
        weight: float,
        priority: str,
        delivery_location: Coordinate | dict | None = None,
    ) -> Order:
        order = Order(
            id=str(uuid4()),
            customer_location=customer_location,
            delivery_location=delivery_location,
            weight=weight,
            priority=priority,
            created_at=self.clock(),
        )
        with self.scheduler.lock:
            self.orders.add(order)
            flush(self.repository.create_order, order.to_dict())
        logger.info("order created order_id=%s priority=%s weight=%s", order.id, order.priority.value, order.weight)
        return order

    def list_orders(self, status: str | None = None) -> list[Order]:
        with self.scheduler.lock:
            if status is None:
                return self.orders.all()
            return self.orders.with_status(OrderStatus(status))

    def get_order(self, order_id: str) -> Order:
        with self.scheduler.lock:
            order = self.orders.get(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    def cancel_order(self, order_id: str) -> Order:
        with self.scheduler.lock:
            order = self.get_order(order_id)
            order.cancel()
            flush(self.repository.update_order_status, order.id, order.status.value)
        logger.info("order cancelled order_id=%s", order_id)
        return order

    # Drones

    def create_drone(
        self,
        name: str,
        max_weight: float,
        max_distance: float,
        base_location: Coordinate | dict | None = None,
    ) -> Drone:
        drone = Drone(
            id=str(uuid4()),
            name=name,
            max_weight=max_weight,
            max_distance=max_distance,
            base_location=base_location if base_location is not None else self.base_location,
            created_at=self.clock(),
        )
        with self.scheduler.lock:
            self.engine.add_drone(drone)
            flush(self.repository.create_drone, drone.to_dict())
        logger.info("drone created drone_id=%s name=%s", drone.id, drone.name)
        return drone

    def list_drones(self, state: str | None = None) -> list[Drone]:
        with self.scheduler.lock:
            drones = self.engine.all_drones()
        if state is None:
            return drones
        wanted = DroneState(state)
        return [d for d in drones if d.current_state is wanted]

    def get_drone(self, drone_id: str) -> Drone:
        with self.scheduler.lock:
            drone = self.engine.get_drone(drone_id)
        if drone is None:
            raise NotFound(f"Drone {drone_id} not found")
        return drone

    def drone_status(self, drone_id: str) -> dict[str, Any]:
        """Drone snapshot with its stats and current delivery, if any."""
        with self.scheduler.lock:
            drone = self.get_drone(drone_id)
            delivery = None
            if drone.current_delivery_id is not None:
                delivery = self.engine.get_delivery(drone.current_delivery_id)
            return {"drone": drone, "stats": drone.stats(), "current_delivery": delivery}

    def recharge_drone(self, drone_id: str) -> Drone:
        with self.scheduler.lock:
            drone = self.get_drone(drone_id)
            if drone.current_state is not DroneState.IDLE or not drone.is_at_base():
                raise InvalidTransition("Drone must be idle and at base to recharge")
            drone.recharge()
            flush(self.repository.update_drone, drone.id, {"battery_level": drone.battery_level})
        logger.info("drone recharged drone_id=%s", drone_id)
        return drone

    def delete_drone(self, drone_id: str) -> None:
        with self.scheduler.lock:
            self.get_drone(drone_id)
            self.engine.remove_drone(drone_id)
            flush(self.repository.delete_drone, drone_id)

    # Deliveries

    def optimize(
        self,
        base_location: Coordinate | None = None,
        obstacles: Iterable[Obstacle] = (),
    ) -> OptimizeOutcome:
        """Allocate pending orders to available drones and schedule deliveries.

        Each route is planned from the base of the drone that flies it. When
        base_location is given only drones stationed there are considered.
        """
        obstacles = list(obstacles)
        with self.scheduler.lock:
            self.engine.clear_scheduled_deliveries()

            drones = self.engine.all_drones()
            if base_location is not None:
                drones = [d for d in drones if d.base_location == base_location]
            if not drones:
                raise NothingToAllocate("No drones available")
            pending = self.orders.pending()
            if not pending:
                raise NothingToAllocate("No pending orders to assign")

            result = compute_allocations(pending, drones, obstacles)
            if not result.allocations:
                raise NothingToAllocate(
                    f"Unable to assign orders. Available drones: {result.available_drones}, Orders: {len(pending)}"
                )

            outcome = OptimizeOutcome(requested=result.requested, unassigned=result.unassigned)
            for allocation in result.allocations:
                delivery = Delivery(
                    id=str(uuid4()),
                    drone_id=allocation.drone.id,
                    orders=allocation.orders,
                    route=allocation.route,
                    created_at=self.clock(),
                )
                for order in delivery.orders:
                    order.assign()
                    flush(self.repository.update_order_status, order.id, order.status.value)
                self.engine.add_delivery(delivery)
                flush(self.repository.create_delivery, delivery.to_dict())
                outcome.deliveries.append(delivery)

        logger.info(
            "optimization finished deliveries=%s assigned=%s requested=%s obstacles=%s",
            len(outcome.deliveries),
            outcome.assigned,
            outcome.requested,
            len(obstacles),
        )
        return outcome

    def list_deliveries(self, status: str | None = None) -> list[Delivery]:
        with self.scheduler.lock:
            if status is None:
                return self.engine.all_deliveries()
            return self.fleet.deliveries_with_status(DeliveryStatus(status))

    def get_delivery(self, delivery_id: str) -> Delivery:
        with self.scheduler.lock:
            delivery = self.engine.get_delivery(delivery_id)
        if delivery is None:
            raise NotFound(f"Delivery {delivery_id} not found")
        return delivery

    def delivery_route(self, delivery_id: str) -> dict[str, Any]:
        with self.scheduler.lock:
            delivery = self.get_delivery(delivery_id)
            return {
                "delivery_id": delivery.id,
                "drone_id": delivery.drone_id,
                "route": [point.to_dict() for point in delivery.route],
                "total_distance": delivery.total_distance,
                "estimated_time": delivery.estimated_time,
                "status": delivery.status.value,
            }

    def fail_delivery(self, delivery_id: str) -> Delivery:
        with self.scheduler.lock:
            delivery = self.engine.fail_delivery(delivery_id)
        if delivery is None:
            raise NotFound(f"Delivery {delivery_id} not found")
        return delivery

    def stats(self) -> dict[str, Any]:
        with self.scheduler.lock:
            return self.engine.stats()

    # Simulation

    def start_simulation(self, interval_ms: int | None = None) -> float:
        interval_ms = interval_ms if interval_ms is not None else self.config.sim_tick_interval_ms
        interval_s = interval_ms / 1000
        self.scheduler.start(interval_s)
        return interval_s

    def stop_simulation(self) -> None:
        self.scheduler.stop()

    def step_simulation(self) -> int:
        """Run one tick by hand; returns the engine's tick counter."""
        self.scheduler.step_once()
        return self.engine.tick

    @property
    def simulation_running(self) -> bool:
        return self.scheduler.running

    def reset(self) -> None:
        """Stop the timer and wipe every order, drone and delivery."""
        self.scheduler.stop()
        with self.scheduler.lock:
            flush(self.repository.reset)
            self.orders.clear()
            self.engine.reset()
        logger.warning("all data reset")
