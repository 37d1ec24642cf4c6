from __future__ import annotations

"""
File: dronefleet/sim/planner.py
Purpose: Route planning from a base through a set of destinations.
Key responsibilities:
- Nearest-neighbour ordering with stable tie-breaks.
- Input-order fallback when a planned vertex sits inside an obstacle.

The fallback is best effort: the input-order route is returned without a
second obstacle check, and only route vertices are ever tested.
"""

import logging
from typing import Iterable, Sequence

from dronefleet.sim.geometry import Coordinate, Obstacle, distance, route_intersects_any_obstacle

logger = logging.getLogger("dronefleet.planner")


def nearest_neighbor_order(start: Coordinate, destinations: Sequence[Coordinate]) -> list[Coordinate]:
    """Greedy visiting order; ties go to the earlier destination."""
    unvisited = list(destinations)
    ordered: list[Coordinate] = []
    current = start
    while unvisited:
        nearest_idx = min(range(len(unvisited)), key=lambda idx: (distance(current, unvisited[idx]), idx))
        current = unvisited.pop(nearest_idx)
        ordered.append(current)
    return ordered


def plan_route(
    start: Coordinate,
    destinations: Sequence[Coordinate],
    obstacles: Iterable[Obstacle] = (),
) -> list[Coordinate]:
    """Return a closed route start -> every destination once -> start."""
    if not destinations:
        return [start, start]
    if len(destinations) == 1:
        return [start, destinations[0], start]

    route = [start, *nearest_neighbor_order(start, destinations), start]
    obstacles = list(obstacles)
    if obstacles and route_intersects_any_obstacle(route, obstacles):
        logger.debug("planned route touches an obstacle, falling back to input order stops=%s", len(destinations))
        return [start, *destinations, start]
    return route
