from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from dronefleet.db import InMemoryRepository
from dronefleet.service import DispatchService
from dronefleet.settings import Settings
from dronefleet.sim.entities import Drone, Order
from dronefleet.sim.geometry import Coordinate

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class ManualClock:
    """Returns EPOCH, EPOCH+1min, EPOCH+2min, ... on successive calls."""
    def __init__(self, start: datetime = EPOCH, step: timedelta = timedelta(minutes=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def base() -> Coordinate:
    return Coordinate(0, 0)


@pytest.fixture
def make_order():
    ids = count(1)

    def _make(x: float, y: float, weight: float = 1.0, priority: str = "medium", **kwargs) -> Order:
        n = next(ids)
        kwargs.setdefault("created_at", EPOCH + timedelta(seconds=n))
        return Order(id=f"order-{n}", customer_location=Coordinate(x, y), weight=weight, priority=priority, **kwargs)

    return _make


@pytest.fixture
def make_drone():
    ids = count(1)

    def _make(max_weight: float = 10.0, max_distance: float = 100.0, **kwargs) -> Drone:
        n = next(ids)
        kwargs.setdefault("base_location", Coordinate(0, 0))
        kwargs.setdefault("name", f"Drone {n}")
        return Drone(id=f"drone-{n}", max_weight=max_weight, max_distance=max_distance, **kwargs)

    return _make


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def service(repository: InMemoryRepository, clock: ManualClock):
    svc = DispatchService(repository, Settings(base_x=0.0, base_y=0.0), clock=clock)
    yield svc
    svc.stop_simulation()
