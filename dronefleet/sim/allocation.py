from __future__ import annotations

"""
File: dronefleet/sim/allocation.py
Purpose: Match pending orders to available drones and plan their routes.
Key responsibilities:
- Single-order pass: one order per fresh drone, best battery first.
- Grouping pass: fold deferred orders into existing allocations.
- Consolidation pass: re-pack per drone when a drone holds several entries.

Range checks differ between passes on purpose: the single-order pass tests
the planned route distance as is, grouping and consolidation test twice the
route distance.
"""

from dataclasses import dataclass, field
import logging
from typing import Iterable, Sequence

from dronefleet.sim.entities import Drone, Order, OrderStatus
from dronefleet.sim.geometry import Coordinate, Obstacle, distance, route_distance
from dronefleet.sim.planner import plan_route

logger = logging.getLogger("dronefleet.allocation")


@dataclass
class Allocation:
    """One drone's orders plus the route that serves them."""
    drone: Drone
    orders: list[Order]
    route: list[Coordinate]
    total_weight: float
    total_distance: float


@dataclass
class AllocationResult:
    """Allocations plus what could not be placed."""
    allocations: list[Allocation] = field(default_factory=list)
    unassigned: list[Order] = field(default_factory=list)
    requested: int = 0
    available_drones: int = 0

    @property
    def assigned_count(self) -> int:
        return sum(len(a.orders) for a in self.allocations)


def sorted_pending_orders(orders: Iterable[Order]) -> list[Order]:
    """Pending orders, highest priority first, then oldest first."""
    pending = [o for o in orders if o.status is OrderStatus.PENDING]
    return sorted(pending, key=lambda o: (-o.priority_value, o.created_at))


def _order_stops(orders: Sequence[Order]) -> list[Coordinate]:
    stops: list[Coordinate] = []
    for order in orders:
        stops.extend(order.stops())
    return stops


def _make_allocation(drone: Drone, orders: Sequence[Order], obstacles: Sequence[Obstacle]) -> Allocation:
    route = plan_route(drone.base_location, _order_stops(orders), obstacles)
    return Allocation(
        drone=drone,
        orders=list(orders),
        route=route,
        total_weight=sum(o.weight for o in orders),
        total_distance=route_distance(route),
    )


def _routing_distance(order: Order, base_location: Coordinate) -> float:
    """base -> customer -> drop-off -> base."""
    return (
        distance(base_location, order.customer_location)
        + distance(order.customer_location, order.destination)
        + distance(order.destination, base_location)
    )


def find_best_drone(
    order: Order,
    drones: Sequence[Drone],
    obstacles: Sequence[Obstacle] = (),
) -> Allocation | None:
    """Pick the best capable drone for a single order, or None.

    Range is measured from each candidate's own base.
    """
    capable: list[Drone] = []
    for drone in drones:
        total_routing_distance = _routing_distance(order, drone.base_location)
        can_carry = drone.can_carry(order.weight)
        can_reach = drone.can_reach(total_routing_distance)
        if not can_carry:
            logger.debug("drone %s cannot carry %.2f (max %.2f)", drone.name, order.weight, drone.max_weight)
        if not can_reach:
            logger.debug(
                "drone %s cannot reach %.1f (max %.1f)", drone.name, total_routing_distance, drone.max_distance
            )
        if can_carry and can_reach:
            capable.append(drone)

    if not capable:
        return None

    # Higher battery wins; equal battery goes to the drone with fewer deliveries.
    best = capable[0]
    for candidate in capable[1:]:
        if candidate.battery_level > best.battery_level:
            best = candidate
        elif candidate.battery_level == best.battery_level and candidate.total_deliveries < best.total_deliveries:
            best = candidate

    allocation = _make_allocation(best, [order], obstacles)
    if not best.can_reach(allocation.total_distance):
        logger.debug(
            "drone %s cannot fly planned route %.1f (max %.1f)", best.name, allocation.total_distance, best.max_distance
        )
        return None
    return allocation


def _try_group(
    order: Order,
    allocations: Sequence[Allocation],
    obstacles: Sequence[Obstacle],
) -> tuple[int, Allocation] | None:
    """Best existing allocation that can also take the order."""
    best: tuple[int, Allocation] | None = None
    for idx, existing in enumerate(allocations):
        drone = existing.drone
        if not drone.can_carry(existing.total_weight + order.weight):
            continue
        candidate = _make_allocation(drone, [*existing.orders, order], obstacles)
        if not drone.can_reach(candidate.total_distance * 2):
            continue
        if best is None or candidate.total_distance < best[1].total_distance:
            best = (idx, candidate)
    return best


def consolidate(
    allocations: list[Allocation],
    obstacles: Sequence[Obstacle] = (),
) -> list[Allocation]:
    """Re-pack allocations so each drone's orders form capacity-feasible batches.

    Allocations already spread one per drone are returned unchanged.
    """
    if not allocations:
        return []
    drone_ids = {a.drone.id for a in allocations}
    if len(drone_ids) == len(allocations):
        return allocations

    by_drone: dict[str, list[Allocation]] = {}
    for allocation in allocations:
        by_drone.setdefault(allocation.drone.id, []).append(allocation)

    packed: list[Allocation] = []
    for entries in by_drone.values():
        if len(entries) == 1:
            packed.append(entries[0])
            continue

        drone = entries[0].drone
        batch: list[Order] = []
        batch_weight = 0.0
        for order in (o for entry in entries for o in entry.orders):
            new_weight = batch_weight + order.weight
            if not drone.can_carry(new_weight):
                if batch:
                    packed.append(_make_allocation(drone, batch, obstacles))
                    batch, batch_weight = [], 0.0
                single = _make_allocation(drone, [order], obstacles)
                if drone.can_reach(single.total_distance * 2):
                    packed.append(single)
                else:
                    logger.info("order %s dropped during consolidation on drone %s", order.id, drone.name)
                continue

            trial = _make_allocation(drone, [*batch, order], obstacles)
            if drone.can_reach(trial.total_distance * 2):
                batch.append(order)
                batch_weight = new_weight
            else:
                if batch:
                    packed.append(_make_allocation(drone, batch, obstacles))
                batch, batch_weight = [order], order.weight

        if batch:
            packed.append(_make_allocation(drone, batch, obstacles))
    return packed


def compute_allocations(
    orders: Iterable[Order],
    drones: Iterable[Drone],
    obstacles: Iterable[Obstacle] = (),
) -> AllocationResult:
    """Run the single-order, grouping and consolidation passes.

    Every route starts and ends at the base of the drone that flies it.
    """
    obstacles = list(obstacles)
    drones = list(drones)
    available = [d for d in drones if d.is_available()]
    for drone in drones:
        if not drone.is_available():
            logger.debug(
                "drone %s not available state=%s battery=%.1f delivery=%s",
                drone.name,
                drone.current_state.value,
                drone.battery_level,
                drone.current_delivery_id,
            )

    pending = sorted_pending_orders(orders)
    result = AllocationResult(requested=len(pending), available_drones=len(available))
    if not available or not pending:
        logger.info("nothing to allocate available_drones=%s pending_orders=%s", len(available), len(pending))
        result.unassigned = pending
        return result

    allocations: list[Allocation] = []
    used: set[str] = set()
    deferred: list[Order] = []

    for order in pending:
        fresh = [d for d in available if d.id not in used]
        if not fresh:
            deferred.append(order)
            continue
        allocation = find_best_drone(order, fresh, obstacles)
        if allocation is None:
            logger.info("no fresh drone for order %s, deferring to grouping", order.id)
            deferred.append(order)
            continue
        allocations.append(allocation)
        used.add(allocation.drone.id)
        logger.info("order %s allocated to drone %s", order.id, allocation.drone.name)

    unassigned: list[Order] = []
    for order in deferred:
        grouped = _try_group(order, allocations, obstacles) if allocations else None
        if grouped is None:
            logger.info("order %s left unassigned", order.id)
            unassigned.append(order)
            continue
        idx, allocation = grouped
        allocations[idx] = allocation
        logger.info("order %s grouped onto drone %s", order.id, allocation.drone.name)

    result.allocations = consolidate(allocations, obstacles)
    placed = {o.id for a in result.allocations for o in a.orders}
    result.unassigned = [o for o in pending if o.id not in placed]
    logger.info(
        "allocation summary allocations=%s assigned=%s requested=%s",
        len(result.allocations),
        result.assigned_count,
        result.requested,
    )
    return result
