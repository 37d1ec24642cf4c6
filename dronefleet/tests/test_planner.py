from dronefleet.sim.geometry import Coordinate, Obstacle
from dronefleet.sim.planner import nearest_neighbor_order, plan_route

START = Coordinate(0, 0)


def test_route_for_zero_and_one_destination():
    assert plan_route(START, []) == [START, START]
    assert plan_route(START, [Coordinate(10, 20)]) == [START, Coordinate(10, 20), START]


def test_nearest_neighbour_order():
    destinations = [Coordinate(10, 0), Coordinate(1, 0), Coordinate(5, 0)]
    route = plan_route(START, destinations)
    assert route == [START, Coordinate(1, 0), Coordinate(5, 0), Coordinate(10, 0), START]


def test_ties_go_to_first_destination():
    destinations = [Coordinate(0, 5), Coordinate(5, 0)]
    assert nearest_neighbor_order(START, destinations) == destinations
    assert nearest_neighbor_order(START, list(reversed(destinations))) == list(reversed(destinations))


def test_route_visits_every_destination_once():
    destinations = [Coordinate(x, (x * 7) % 11) for x in range(1, 9)]
    route = plan_route(START, destinations)
    assert route[0] == START and route[-1] == START
    assert sorted(route[1:-1], key=lambda p: (p.x, p.y)) == sorted(destinations, key=lambda p: (p.x, p.y))


def test_blocked_route_falls_back_to_input_order():
    destinations = [Coordinate(10, 0), Coordinate(1, 0)]
    zone = Obstacle(location=Coordinate(1, 0), radius=0.5)
    assert plan_route(START, destinations, [zone]) == [START, Coordinate(10, 0), Coordinate(1, 0), START]


def test_single_blocked_destination_still_routed():
    target = Coordinate(10, 20)
    zone = Obstacle(location=target, radius=2)
    assert plan_route(START, [target], [zone]) == [START, target, START]
