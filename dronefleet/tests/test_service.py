import logging
import threading

import pytest

from dronefleet.db import InMemoryRepository
from dronefleet.errors import InvalidTransition, NotFound, NothingToAllocate, ValidationError
from dronefleet.service import DispatchService
from dronefleet.settings import Settings
from dronefleet.sim.entities import DeliveryStatus, DroneState, OrderStatus
from dronefleet.sim.geometry import Coordinate, Obstacle


def _run_until_idle(service, drone, limit=50):
    for _ in range(limit):
        service.step_simulation()
        if drone.current_state is DroneState.IDLE and drone.current_delivery_id is None:
            return
    raise AssertionError("drone never came back")


def test_create_order_and_drone_are_persisted(service, repository):
    order = service.create_order(Coordinate(10, 20), 5, "high")
    drone = service.create_drone("Alpha", 10, 50)

    assert repository.orders[order.id]["status"] == "pending"
    assert repository.orders[order.id]["priority"] == "high"
    assert repository.drones[drone.id]["name"] == "Alpha"
    assert drone.base_location == Coordinate(0, 0)
    assert service.get_order(order.id) is order
    assert service.get_drone(drone.id) is drone


def test_invalid_input_rejected(service, repository):
    with pytest.raises(ValidationError):
        service.create_order(Coordinate(1, 1), 0, "high")
    with pytest.raises(ValidationError):
        service.create_order(Coordinate(1, 1), 1, "urgent")
    assert repository.orders == {}


def test_unknown_ids_raise_not_found(service):
    with pytest.raises(NotFound):
        service.get_order("nope")
    with pytest.raises(NotFound):
        service.get_drone("nope")
    with pytest.raises(NotFound):
        service.fail_delivery("nope")


def test_optimize_creates_scheduled_delivery(service, repository):
    drone = service.create_drone("Alpha", 10, 50)
    order = service.create_order(Coordinate(10, 20), 5, "high")

    outcome = service.optimize()

    assert outcome.assigned == 1 and outcome.requested == 1
    delivery = outcome.deliveries[0]
    assert delivery.drone_id == drone.id
    assert delivery.route == [Coordinate(0, 0), Coordinate(10, 20), Coordinate(0, 0)]
    assert delivery.status is DeliveryStatus.SCHEDULED
    assert order.status is OrderStatus.ASSIGNED
    assert drone.current_delivery_id == delivery.id
    assert repository.orders[order.id]["status"] == "assigned"
    assert repository.deliveries[delivery.id]["order_ids"] == [order.id]


def test_optimize_empty_inputs(service):
    with pytest.raises(NothingToAllocate, match="No drones available"):
        service.optimize()

    service.create_drone("Alpha", 10, 50)
    with pytest.raises(NothingToAllocate, match="No pending orders"):
        service.optimize()

    service.create_order(Coordinate(10, 20), 50, "low")
    with pytest.raises(NothingToAllocate, match="Unable to assign orders"):
        service.optimize()


def test_reoptimize_replaces_scheduled_delivery(service):
    drone = service.create_drone("Alpha", 10, 50)
    service.create_order(Coordinate(3, 4), 2, "low")
    first = service.optimize()
    service.create_order(Coordinate(6, 8), 2, "high")

    second = service.optimize()

    assert service.get_delivery(second.deliveries[0].id) is second.deliveries[0]
    with pytest.raises(NotFound):
        service.get_delivery(first.deliveries[0].id)
    assert len(service.list_deliveries()) == 1
    assert second.assigned == 2
    assert drone.current_delivery_id == second.deliveries[0].id


def test_reoptimize_while_drone_loading_frees_it(service):
    first = service.create_drone("Alpha", 10, 50)
    order = service.create_order(Coordinate(3, 4), 2, "high")
    service.optimize()
    service.step_simulation()
    assert first.current_state is DroneState.LOADING

    service.create_drone("Bravo", 10, 50)
    service.optimize()

    held = first.current_delivery_id
    assert held is None or service.get_delivery(held).status is DeliveryStatus.SCHEDULED
    for _ in range(30):
        service.step_simulation()
    assert order.status is OrderStatus.DELIVERED
    assert first.current_state is DroneState.IDLE
    assert first.current_delivery_id is None
    assert first.is_available()


def test_routes_start_at_the_assigned_drones_base(service, repository):
    home = Coordinate(50, 0)
    drone = service.create_drone("Remote", 10, 200, base_location=home)
    service.create_order(Coordinate(10, 20), 1, "low")

    delivery = service.optimize().deliveries[0]

    assert delivery.route == [home, Coordinate(10, 20), home]
    _run_until_idle(service, drone)
    assert drone.current_location == home
    assert drone.total_distance == pytest.approx(delivery.total_distance * 2)


def test_optimize_base_location_selects_drones_stationed_there(service):
    service.create_drone("Origin", 10, 100)
    remote = service.create_drone("Remote", 10, 200, base_location=Coordinate(50, 0))
    service.create_order(Coordinate(10, 20), 1, "low")

    outcome = service.optimize(base_location=Coordinate(50, 0))

    assert [d.drone_id for d in outcome.deliveries] == [remote.id]
    with pytest.raises(NothingToAllocate, match="No drones available"):
        service.optimize(base_location=Coordinate(7, 7))


def test_optimize_with_obstacles_and_custom_base(service):
    service.create_drone("Alpha", 10, 100)
    service.create_order(Coordinate(10, 0), 1, "low")
    service.create_order(Coordinate(1, 0), 1, "low")
    zone = Obstacle(location=Coordinate(1, 0), radius=0.5)

    outcome = service.optimize(obstacles=[zone])

    route = outcome.deliveries[0].route
    assert route == [Coordinate(0, 0), Coordinate(10, 0), Coordinate(1, 0), Coordinate(0, 0)]


def test_simulation_completes_delivery(service, repository):
    drone = service.create_drone("Alpha", 10, 50)
    order = service.create_order(Coordinate(10, 20), 5, "high")
    delivery = service.optimize().deliveries[0]

    _run_until_idle(service, drone)

    assert order.status is OrderStatus.DELIVERED
    assert delivery.status is DeliveryStatus.COMPLETED
    assert repository.orders[order.id]["status"] == "delivered"
    assert repository.deliveries[delivery.id]["status"] == "completed"
    assert repository.drones[drone.id]["total_deliveries"] == 1

    stats = service.stats()
    assert stats["completed_deliveries"] == 1
    assert stats["average_delivery_time"] == 1.0
    assert stats["most_efficient_drone"]["name"] == "Alpha"


def test_recharge_requires_idle_drone_at_base(service):
    drone = service.create_drone("Alpha", 10, 50)
    drone.consume_battery(50)
    assert service.recharge_drone(drone.id).battery_level == 100

    service.create_order(Coordinate(10, 20), 5, "high")
    service.optimize()
    service.step_simulation()
    with pytest.raises(InvalidTransition):
        service.recharge_drone(drone.id)


def test_cancel_delivered_order_rejected(service):
    drone = service.create_drone("Alpha", 10, 50)
    order = service.create_order(Coordinate(10, 20), 5, "high")
    service.optimize()
    _run_until_idle(service, drone)

    with pytest.raises(InvalidTransition):
        service.cancel_order(order.id)

    pending = service.create_order(Coordinate(1, 1), 1, "low")
    assert service.cancel_order(pending.id).status is OrderStatus.CANCELLED
    assert [o.id for o in service.list_orders("cancelled")] == [pending.id]


def test_fail_delivery_returns_orders_to_pool(service):
    drone = service.create_drone("Alpha", 10, 50)
    order = service.create_order(Coordinate(10, 20), 5, "high")
    delivery = service.optimize().deliveries[0]

    service.fail_delivery(delivery.id)

    assert delivery.status is DeliveryStatus.FAILED
    assert order.status is OrderStatus.PENDING
    assert drone.current_delivery_id is None
    assert service.list_deliveries("failed") == [delivery]


def test_delete_drone(service, repository):
    drone = service.create_drone("Alpha", 10, 50)
    order = service.create_order(Coordinate(10, 20), 5, "high")
    service.optimize()

    service.delete_drone(drone.id)

    assert service.list_drones() == []
    assert service.list_deliveries() == []
    assert order.status is OrderStatus.PENDING
    assert drone.id not in repository.drones
    with pytest.raises(NotFound):
        service.delete_drone(drone.id)


def test_state_reloads_from_repository(service, repository, clock):
    drone = service.create_drone("Alpha", 10, 50)
    order = service.create_order(Coordinate(10, 20), 5, "high")
    delivery = service.optimize().deliveries[0]
    service.step_simulation()

    reloaded = DispatchService(repository, Settings(), clock=clock)

    assert reloaded.get_order(order.id).status is OrderStatus.ASSIGNED
    restored = reloaded.get_drone(drone.id)
    assert restored.current_state is DroneState.LOADING
    assert restored.current_delivery_id == delivery.id
    assert reloaded.get_delivery(delivery.id).orders[0] is reloaded.get_order(order.id)

    _run_until_idle(reloaded, restored)
    assert reloaded.get_order(order.id).status is OrderStatus.DELIVERED


class _BrokenRepository(InMemoryRepository):
    def create_order(self, order):
        raise ConnectionError("database unavailable")


def test_persistence_failure_is_logged_not_raised(clock, caplog):
    service = DispatchService(_BrokenRepository(), Settings(), clock=clock)
    with caplog.at_level(logging.ERROR, logger="dronefleet.db"):
        order = service.create_order(Coordinate(1, 1), 1, "low")
    assert service.get_order(order.id) is order
    assert "database unavailable" in caplog.text


def test_reset_wipes_everything(service, repository):
    service.create_drone("Alpha", 10, 50)
    service.create_order(Coordinate(10, 20), 5, "high")
    service.optimize()
    service.start_simulation(1000)

    service.reset()

    assert not service.simulation_running
    assert service.list_orders() == []
    assert service.list_drones() == []
    assert service.list_deliveries() == []
    assert repository.orders == {} and repository.drones == {} and repository.deliveries == {}
    assert service.engine.tick == 0


def test_simulation_timer_start_stop(service):
    assert service.start_simulation(50) == 0.05
    assert service.simulation_running
    service.stop_simulation()
    assert not service.simulation_running


def test_lookups_wait_for_the_simulation_lock(service):
    drone = service.create_drone("Alpha", 10, 50)
    order = service.create_order(Coordinate(3, 4), 1, "low")
    delivery = service.optimize().deliveries[0]
    lookups = [
        lambda: service.get_order(order.id),
        lambda: service.get_drone(drone.id),
        lambda: service.get_delivery(delivery.id),
        lambda: service.delivery_route(delivery.id),
    ]
    held = threading.Event()
    release = threading.Event()

    def hold_lock():
        with service.scheduler.lock:
            held.set()
            release.wait(timeout=5)

    holder = threading.Thread(target=hold_lock)
    holder.start()
    assert held.wait(timeout=5)
    done = []
    readers = [threading.Thread(target=lambda fn=fn: done.append(fn())) for fn in lookups]
    for reader in readers:
        reader.start()
    try:
        for reader in readers:
            reader.join(timeout=0.05)
        assert done == []
    finally:
        release.set()
        holder.join(timeout=5)
    for reader in readers:
        reader.join(timeout=5)
    assert len(done) == len(lookups)
