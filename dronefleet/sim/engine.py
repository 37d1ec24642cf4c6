from __future__ import annotations

"""
File: dronefleet/sim/engine.py
Purpose: Discrete-time simulation of drones flying their deliveries.
Key responsibilities:
- Register drones and deliveries, clear stale scheduled deliveries.
- Advance every drone one state-machine step per tick.
- Flush drone, order and delivery changes to the repository.
"""

from datetime import datetime
import logging
from typing import Callable

from dronefleet.db import Repository, flush
from dronefleet.sim.entities import (
    Delivery,
    DeliveryStatus,
    Drone,
    DroneState,
    OrderStatus,
    utcnow,
)
from dronefleet.sim.geometry import Coordinate, distance
from dronefleet.sim.metrics import compute_stats
from dronefleet.sim.registry import FleetRegistry

logger = logging.getLogger("dronefleet.engine")

STEP_SIZE = 20.0
ARRIVAL_TOLERANCE = 1.0
DELIVERY_DWELL_TICKS = 2


def step_toward(position: Coordinate, target: Coordinate, max_step: float = STEP_SIZE) -> Coordinate:
    """Move in a straight line toward target by at most max_step."""
    gap = distance(position, target)
    if gap <= max_step:
        return target
    ratio = max_step / gap
    return Coordinate(
        x=position.x + (target.x - position.x) * ratio,
        y=position.y + (target.y - position.y) * ratio,
    )


class SimulationEngine:
    """Simulation engine that advances drone/delivery state per tick."""
    def __init__(
        self,
        fleet: FleetRegistry,
        repository: Repository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.fleet = fleet
        self.repository = repository
        self.clock = clock
        self.tick = 0
        # Index of the next route waypoint each flying drone is heading for.
        self.next_waypoint: dict[str, int] = {}
        self.dwell_ticks: dict[str, int] = {}

    def add_drone(self, drone: Drone) -> None:
        self.fleet.add_drone(drone)

    def get_drone(self, drone_id: str) -> Drone | None:
        return self.fleet.get_drone(drone_id)

    def all_drones(self) -> list[Drone]:
        return list(self.fleet)

    def remove_drone(self, drone_id: str) -> list[Delivery]:
        """Forget a drone together with its deliveries.

        Orders still assigned to a dropped delivery go back to pending.
        """
        if self.fleet.get_drone(drone_id) is None:
            return []
        dropped = self.fleet.remove_drone(drone_id)
        for delivery in dropped:
            self._release_orders(delivery)
        self._reset_progress(drone_id)
        logger.info("drone removed drone_id=%s deliveries_dropped=%s", drone_id, len(dropped))
        return dropped

    def reset(self) -> None:
        self.fleet.clear()
        self.next_waypoint.clear()
        self.dwell_ticks.clear()
        self.tick = 0

    def add_delivery(self, delivery: Delivery) -> None:
        """Register a delivery and hand it to its drone right away."""
        self.fleet.add_delivery(delivery)
        drone = self.fleet.get_drone(delivery.drone_id)
        if drone is None:
            logger.warning("delivery %s registered for unknown drone %s", delivery.id, delivery.drone_id)
            return
        if delivery.status in {DeliveryStatus.SCHEDULED, DeliveryStatus.IN_PROGRESS}:
            drone.assign_delivery(delivery.id)
            if delivery.status is DeliveryStatus.SCHEDULED:
                self._reset_progress(drone.id)
            self._save_drone(drone)

    def get_delivery(self, delivery_id: str) -> Delivery | None:
        return self.fleet.get_delivery(delivery_id)

    def all_deliveries(self) -> list[Delivery]:
        return list(self.fleet.deliveries.values())

    def clear_scheduled_deliveries(self) -> int:
        """Drop deliveries that never left the ground and release their orders."""
        stale = self.fleet.deliveries_with_status(DeliveryStatus.SCHEDULED)
        for delivery in stale:
            drone = self.fleet.get_drone(delivery.drone_id)
            # A drone still loading at base has not taken off; hand it back idle.
            if drone is not None and drone.current_delivery_id == delivery.id:
                if drone.current_state in {DroneState.IDLE, DroneState.LOADING}:
                    drone.clear_delivery()
                    drone.set_state(DroneState.IDLE)
                    self._reset_progress(drone.id)
                    self._save_drone(drone)
            self._release_orders(delivery)
            self.fleet.remove_delivery(delivery.id)
            flush(self.repository.delete_delivery, delivery.id)
        if stale:
            logger.info("cleared %s scheduled deliveries before re-allocation", len(stale))
        return len(stale)

    def fail_delivery(self, delivery_id: str) -> Delivery | None:
        """Mark a delivery failed and send its drone home."""
        delivery = self.fleet.get_delivery(delivery_id)
        if delivery is None:
            return None
        delivery.fail()
        self._release_orders(delivery)
        flush(self.repository.update_delivery_status, delivery.id, delivery.status.value)

        drone = self.fleet.get_drone(delivery.drone_id)
        if drone is not None and drone.current_delivery_id == delivery.id:
            if drone.current_state in {DroneState.IDLE, DroneState.LOADING} and drone.is_at_base():
                drone.clear_delivery()
                drone.set_state(DroneState.IDLE)
                self._reset_progress(drone.id)
            else:
                drone.set_state(DroneState.RETURNING)
            self._save_drone(drone)
        logger.warning("delivery failed delivery_id=%s drone_id=%s", delivery.id, delivery.drone_id)
        return delivery

    def step(self) -> None:
        """Advance the simulation by one tick."""
        for drone in self.fleet:
            try:
                self.advance_drone(drone)
            except Exception as exc:  # noqa: BLE001
                logger.exception("tick failed for drone_id=%s err=%s", drone.id, exc)
        self.tick += 1

    def stats(self) -> dict:
        return compute_stats(self.all_deliveries(), self.all_drones())

    def advance_drone(self, drone: Drone) -> None:
        """Advance a single drone for the current tick."""
        if drone.current_delivery_id is None:
            self._advance_idle(drone)
            return

        delivery = self.fleet.get_delivery(drone.current_delivery_id)
        if delivery is None:
            logger.warning("delivery %s of drone %s not found, skipping tick", drone.current_delivery_id, drone.id)
            return

        state = drone.current_state
        if state is DroneState.IDLE:
            drone.set_state(DroneState.LOADING)
            logger.info("drone %s loading delivery %s", drone.id, delivery.id)
            self._save_drone(drone)
        elif state is DroneState.LOADING:
            delivery.start(self.clock())
            drone.set_state(DroneState.FLYING)
            logger.info("drone %s departing with delivery %s", drone.id, delivery.id)
            flush(self.repository.set_delivery_started, delivery.id, delivery.started_at)
            self._save_drone(drone)
        elif state is DroneState.FLYING:
            self._fly(drone, delivery)
        elif state is DroneState.DELIVERING:
            done = self.dwell_ticks.get(drone.id, 0)
            if done >= DELIVERY_DWELL_TICKS:
                self.dwell_ticks.pop(drone.id, None)
                drone.set_state(DroneState.RETURNING)
                self._save_drone(drone)
            else:
                self.dwell_ticks[drone.id] = done + 1
        elif state is DroneState.RETURNING:
            self._return_to_base(drone, delivery)

    def _advance_idle(self, drone: Drone) -> None:
        if drone.current_state is not DroneState.IDLE:
            drone.set_state(DroneState.IDLE)
            self._save_drone(drone)
        if drone.needs_recharge() and drone.is_at_base():
            drone.recharge()
            logger.info("drone %s recharged at base", drone.id)
            self._save_drone(drone)

    def _fly(self, drone: Drone, delivery: Delivery) -> None:
        route = delivery.route
        if len(route) < 2:
            logger.warning("delivery %s has an empty route, skipping tick", delivery.id)
            return

        destination_idx = len(route) - 2
        last_idx = len(route) - 1
        idx = min(self.next_waypoint.get(drone.id, 1), last_idx)

        if distance(drone.current_location, route[idx]) > ARRIVAL_TOLERANCE:
            drone.set_location(step_toward(drone.current_location, route[idx]))
            self._save_drone(drone)
            return

        # Reached; zero-length legs are consumed in the same tick.
        while True:
            drone.set_location(route[idx])
            if idx == destination_idx:
                drone.set_state(DroneState.DELIVERING)
                self._deliver_orders(delivery)
                logger.info("drone %s at destination of delivery %s", drone.id, delivery.id)
                idx += 1
                break
            if idx >= last_idx:
                drone.set_state(DroneState.RETURNING)
                break
            idx += 1
            if distance(route[idx - 1], route[idx]) > ARRIVAL_TOLERANCE:
                break
        self.next_waypoint[drone.id] = idx
        self._save_drone(drone)

    def _return_to_base(self, drone: Drone, delivery: Delivery) -> None:
        base = drone.base_location
        if drone.current_location == base:
            self._finish(drone, delivery)
            return
        if distance(drone.current_location, base) > ARRIVAL_TOLERANCE:
            drone.set_location(step_toward(drone.current_location, base))
        else:
            drone.set_location(base)
        self._save_drone(drone)

    def _finish(self, drone: Drone, delivery: Delivery) -> None:
        if delivery.status is DeliveryStatus.FAILED:
            drone.clear_delivery()
            logger.info("drone %s back at base after failed delivery %s", drone.id, delivery.id)
        else:
            drone.complete_delivery(delivery.total_distance * 2)
            delivery.complete(self.clock())
            self._deliver_orders(delivery)
            flush(
                self.repository.update_delivery_status,
                delivery.id,
                delivery.status.value,
                delivery.completed_at,
            )
            logger.info("delivery %s completed by drone %s", delivery.id, drone.id)
        drone.set_state(DroneState.IDLE)
        self._reset_progress(drone.id)
        self._save_drone(drone)

    def _deliver_orders(self, delivery: Delivery) -> None:
        for order in delivery.orders:
            if order.status is OrderStatus.DELIVERED:
                continue
            if order.status is OrderStatus.CANCELLED:
                logger.warning("order %s was cancelled in flight, not marking delivered", order.id)
                continue
            order.deliver()
            flush(self.repository.update_order_status, order.id, order.status.value)

    def _release_orders(self, delivery: Delivery) -> None:
        for order in delivery.orders:
            if order.status is OrderStatus.ASSIGNED:
                order.release()
                flush(self.repository.update_order_status, order.id, order.status.value)

    def _reset_progress(self, drone_id: str) -> None:
        self.next_waypoint.pop(drone_id, None)
        self.dwell_ticks.pop(drone_id, None)

    def _save_drone(self, drone: Drone) -> None:
        flush(
            self.repository.update_drone,
            drone.id,
            {
                "battery_level": drone.battery_level,
                "current_state": drone.current_state.value,
                "current_location": drone.current_location.to_dict(),
                "current_delivery_id": drone.current_delivery_id,
                "total_deliveries": drone.total_deliveries,
                "total_distance": drone.total_distance,
            },
        )
