from __future__ import annotations

"""
File: dronefleet/sim/metrics.py
Purpose: Compute aggregate delivery statistics from delivery and drone state.
Key responsibilities:
- Delivery counts, average delivery time, distance flown, best drone.
"""

from typing import Any

from dronefleet.sim.entities import Delivery, DeliveryStatus, Drone


def most_efficient_drone(drones: list[Drone]) -> dict[str, Any] | None:
    """Lowest distance per delivery among drones that delivered at least once."""
    ranked = sorted(
        (d for d in drones if d.total_deliveries > 0),
        key=lambda d: (d.efficiency, -d.total_deliveries),
    )
    if not ranked:
        return None
    best = ranked[0]
    return {
        "id": best.id,
        "name": best.name,
        "efficiency": round(best.efficiency, 2),
        "total_deliveries": best.total_deliveries,
    }


def compute_stats(deliveries: list[Delivery], drones: list[Drone]) -> dict[str, Any]:
    """Compute fleet-level statistics used by the API."""
    completed = [d for d in deliveries if d.status is DeliveryStatus.COMPLETED]

    delivery_times = [t for t in (d.delivery_time() for d in completed) if t is not None]
    average_delivery_time = sum(delivery_times) / len(delivery_times) if delivery_times else 0.0

    # Completed deliveries were flown out and back.
    total_distance = sum(d.total_distance * 2 for d in completed)

    return {
        "total_deliveries": len(deliveries),
        "completed_deliveries": len(completed),
        "average_delivery_time": round(average_delivery_time, 2),
        "total_distance": round(total_distance, 2),
        "most_efficient_drone": most_efficient_drone(drones),
    }
