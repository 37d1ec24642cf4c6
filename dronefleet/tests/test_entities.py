from datetime import datetime, timedelta, timezone

import pytest

from dronefleet.errors import InvalidTransition, ValidationError
from dronefleet.sim.entities import Delivery, DeliveryStatus, DroneState, Order, OrderStatus, Priority
from dronefleet.sim.geometry import Coordinate


def test_order_rejects_non_positive_weight(make_order):
    with pytest.raises(ValidationError):
        make_order(1, 1, weight=0)
    with pytest.raises(ValidationError):
        make_order(1, 1, weight=-2)
    assert make_order(1, 1, weight=0.001).weight == 0.001


def test_order_rejects_unknown_priority(make_order):
    with pytest.raises(ValidationError):
        make_order(1, 1, priority="urgent")


def test_priority_values():
    assert [p.weight for p in (Priority.LOW, Priority.MEDIUM, Priority.HIGH)] == [1, 2, 3]


def test_order_destination_defaults_to_customer(make_order):
    order = make_order(10, 20)
    assert order.destination == Coordinate(10, 20)
    assert order.stops() == [Coordinate(10, 20)]

    dropoff = make_order(1, 1, delivery_location=Coordinate(5, 5))
    assert dropoff.stops() == [Coordinate(1, 1), Coordinate(5, 5)]


def test_order_lifecycle(make_order):
    order = make_order(1, 1)
    order.assign()
    assert order.status is OrderStatus.ASSIGNED
    with pytest.raises(InvalidTransition):
        order.assign()
    order.release()
    assert order.status is OrderStatus.PENDING
    order.assign()
    order.deliver()
    with pytest.raises(InvalidTransition):
        order.cancel()


def test_cancelled_order_cannot_be_delivered(make_order):
    order = make_order(1, 1)
    order.cancel()
    with pytest.raises(InvalidTransition):
        order.deliver()


def test_order_snapshot_restores(make_order):
    order = make_order(3, 4, weight=2.5, priority="high", delivery_location=Coordinate(6, 8))
    restored = Order.from_dict(order.to_dict())
    assert restored == order


def test_drone_availability(make_drone):
    drone = make_drone()
    assert drone.current_location == drone.base_location
    assert drone.is_available()

    drone.battery_level = 20
    assert not drone.is_available()
    drone.battery_level = 21
    assert drone.is_available()

    drone.set_state(DroneState.FLYING)
    assert not drone.is_available()
    drone.set_state(DroneState.IDLE)
    drone.assign_delivery("d-1")
    assert not drone.is_available()


def test_drone_recharge_threshold(make_drone):
    drone = make_drone(battery_level=19.9)
    assert drone.needs_recharge()
    drone.recharge()
    drone.recharge()
    assert drone.battery_level == 100
    assert not make_drone(battery_level=20).needs_recharge()


def test_drone_rejects_bad_capacities(make_drone):
    with pytest.raises(ValidationError):
        make_drone(max_weight=0)
    with pytest.raises(ValidationError):
        make_drone(max_distance=-5)
    with pytest.raises(ValidationError):
        make_drone(name=" ")


def test_complete_delivery_books_distance_and_battery(make_drone):
    drone = make_drone()
    drone.assign_delivery("d-1")
    assert drone.efficiency == 0

    drone.complete_delivery(30)
    assert drone.total_deliveries == 1
    assert drone.total_distance == 30
    assert drone.battery_level == 70
    assert drone.current_delivery_id is None

    drone.complete_delivery(500)
    assert drone.battery_level == 0
    assert drone.efficiency == 265


def test_drone_holds_one_delivery(make_drone):
    drone = make_drone()
    drone.assign_delivery("d-1")
    drone.assign_delivery("d-1")
    with pytest.raises(InvalidTransition):
        drone.assign_delivery("d-2")


def test_delivery_derived_fields(make_order):
    orders = [make_order(3, 4, weight=2), make_order(3, 4, weight=3)]
    route = [Coordinate(0, 0), Coordinate(3, 4), Coordinate(0, 0)]
    delivery = Delivery(id="d-1", drone_id="drone-1", orders=orders, route=route)
    assert delivery.total_weight == 5
    assert delivery.total_distance == 10
    assert delivery.estimated_time == 20
    assert delivery.order_ids == [o.id for o in orders]


def test_delivery_needs_orders():
    with pytest.raises(ValidationError):
        Delivery(id="d-1", drone_id="drone-1", orders=[], route=[])


def test_delivery_lifecycle(make_order):
    delivery = Delivery(id="d-1", drone_id="drone-1", orders=[make_order(1, 1)], route=[])
    with pytest.raises(InvalidTransition):
        delivery.complete()

    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    delivery.start(start)
    assert delivery.status is DeliveryStatus.IN_PROGRESS
    delivery.complete(start + timedelta(minutes=12, seconds=30))
    assert delivery.status is DeliveryStatus.COMPLETED
    assert delivery.delivery_time() == 12.5
    with pytest.raises(InvalidTransition):
        delivery.fail()
