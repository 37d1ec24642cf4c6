from __future__ import annotations

"""
File: dronefleet/sim/scheduler.py
Purpose: Drive simulation ticks from a background thread.
Key responsibilities:
- At most one periodic ticker thread at a time.
- Manual single steps that never overlap a timer tick.
- Shared lock for every caller that mutates simulation state.
"""

import logging
import threading
from typing import Callable

logger = logging.getLogger("dronefleet.scheduler")


class TickScheduler:
    """Periodic or manual driver for a tick callback."""
    def __init__(self, tick: Callable[[], None]) -> None:
        self._tick = tick
        self.lock = threading.RLock()
        # Guards timer start/stop only; never held while a tick runs.
        self._control_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None
        self.interval_s: float | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval_s: float) -> None:
        """Start ticking every interval_s seconds, replacing any active timer."""
        if interval_s <= 0:
            raise ValueError("tick interval must be positive")
        with self._control_lock:
            self._stop_locked()
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(interval_s, stop_event),
                name="dronefleet-ticker",
                daemon=True,
            )
            self._stop_event = stop_event
            self._thread = thread
            self.interval_s = interval_s
            thread.start()
        logger.info("simulation timer started interval_s=%s", interval_s)

    def stop(self) -> None:
        """Prevent future ticks; an in-flight tick runs to completion."""
        with self._control_lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        stop_event, thread = self._stop_event, self._thread
        if stop_event is None:
            return
        stop_event.set()
        self._stop_event = None
        self._thread = None
        self.interval_s = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5.0)
        logger.info("simulation timer stopped")

    def step_once(self) -> None:
        """Run exactly one tick under the shared lock."""
        with self.lock:
            self._tick()

    def _run(self, interval_s: float, stop_event: threading.Event) -> None:
        while not stop_event.wait(interval_s):
            with self.lock:
                if stop_event.is_set():
                    break
                try:
                    self._tick()
                except Exception as exc:  # noqa: BLE001
                    logger.exception("simulation tick failed: %s", exc)
