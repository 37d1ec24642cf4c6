import threading
import time

import pytest

from dronefleet.sim.scheduler import TickScheduler


def test_step_once_runs_one_tick():
    calls = []
    scheduler = TickScheduler(lambda: calls.append(1))
    scheduler.step_once()
    scheduler.step_once()
    assert len(calls) == 2
    assert not scheduler.running


def test_timer_ticks_until_stopped():
    calls = []
    reached = threading.Event()

    def tick():
        calls.append(1)
        if len(calls) >= 3:
            reached.set()

    scheduler = TickScheduler(tick)
    scheduler.start(0.01)
    try:
        assert reached.wait(timeout=5)
    finally:
        scheduler.stop()
    assert not scheduler.running

    stopped_at = len(calls)
    time.sleep(0.05)
    assert len(calls) == stopped_at


def test_restart_keeps_a_single_timer():
    scheduler = TickScheduler(lambda: None)
    scheduler.start(0.5)
    first = scheduler._thread
    scheduler.start(0.5)
    try:
        assert scheduler._thread is not first
        assert not first.is_alive()
        assert sum(t.name == "dronefleet-ticker" for t in threading.enumerate()) == 1
    finally:
        scheduler.stop()


def test_concurrent_starts_leave_one_timer():
    scheduler = TickScheduler(lambda: None)
    barrier = threading.Barrier(8)

    def start():
        barrier.wait()
        scheduler.start(0.5)

    starters = [threading.Thread(target=start) for _ in range(8)]
    for thread in starters:
        thread.start()
    for thread in starters:
        thread.join(timeout=10)
    try:
        assert scheduler.running
        assert sum(t.name == "dronefleet-ticker" and t.is_alive() for t in threading.enumerate()) == 1
    finally:
        scheduler.stop()
    assert not scheduler.running


def test_manual_step_never_overlaps_timer_tick():
    active = 0
    overlap = []
    lock = threading.Lock()

    def tick():
        nonlocal active
        with lock:
            active += 1
            overlap.append(active)
        time.sleep(0.005)
        with lock:
            active -= 1

    scheduler = TickScheduler(tick)
    scheduler.start(0.001)
    try:
        for _ in range(20):
            scheduler.step_once()
    finally:
        scheduler.stop()
    assert max(overlap) == 1


def test_interval_must_be_positive():
    scheduler = TickScheduler(lambda: None)
    with pytest.raises(ValueError):
        scheduler.start(0)


def test_timer_survives_tick_errors():
    calls = []
    reached = threading.Event()

    def tick():
        calls.append(1)
        if len(calls) >= 2:
            reached.set()
        raise RuntimeError("tick failed")

    scheduler = TickScheduler(tick)
    scheduler.start(0.01)
    try:
        assert reached.wait(timeout=5)
    finally:
        scheduler.stop()
