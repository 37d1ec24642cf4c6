from __future__ import annotations

"""
File: dronefleet/sim/geometry.py
Purpose: Planar geometry primitives used by planning and simulation.
Key responsibilities:
- Coordinate and Obstacle value types.
- Euclidean distance, route length, vertex-vs-obstacle checks.
"""

from dataclasses import dataclass
from math import hypot, isfinite
from typing import Iterable, Sequence

from dronefleet.errors import ValidationError


@dataclass(frozen=True)
class Coordinate:
    """A point in the abstract 2D plane."""
    x: float
    y: float

    def __post_init__(self) -> None:
        for axis in ("x", "y"):
            value = getattr(self, axis)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not isfinite(value):
                raise ValidationError(f"invalid coordinate {axis}={value!r}")

    @classmethod
    def from_dict(cls, data: dict) -> Coordinate:
        try:
            return cls(x=data["x"], y=data["y"])
        except (KeyError, TypeError) as exc:
            raise ValidationError(f"malformed coordinate: {data!r}") from exc

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class Obstacle:
    """Circular exclusion zone. Both zone types block the same way."""
    location: Coordinate
    radius: float
    id: str | None = None
    type: str = "no-fly-zone"

    def __post_init__(self) -> None:
        if not isfinite(self.radius) or self.radius < 0:
            raise ValidationError(f"invalid obstacle radius={self.radius!r}")


def distance(a: Coordinate, b: Coordinate) -> float:
    """Euclidean distance between two points."""
    return hypot(b.x - a.x, b.y - a.y)


def is_inside_obstacle(point: Coordinate, obstacle: Obstacle) -> bool:
    """True when the point lies inside the obstacle, boundary included."""
    return distance(point, obstacle.location) <= obstacle.radius


def route_distance(points: Sequence[Coordinate]) -> float:
    """Sum of consecutive segment lengths; 0 for fewer than two points."""
    return sum(distance(points[i], points[i + 1]) for i in range(len(points) - 1))


def route_intersects_any_obstacle(points: Iterable[Coordinate], obstacles: Iterable[Obstacle]) -> bool:
    """True if any route vertex lies inside any obstacle.

    Only vertices are tested; a segment passing through a zone between two
    clear vertices is not detected.
    """
    obstacles = list(obstacles)
    return any(is_inside_obstacle(point, obstacle) for point in points for obstacle in obstacles)
