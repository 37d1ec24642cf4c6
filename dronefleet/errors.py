"""
File: dronefleet/errors.py
Purpose: Exception hierarchy shared by the core and the HTTP layer.
"""


class DroneFleetError(Exception):
    """Base class for all dronefleet errors."""


class ValidationError(DroneFleetError, ValueError):
    """Entity construction rejected its input."""


class InvalidTransition(DroneFleetError, ValueError):
    """A lifecycle change is not allowed from the current state."""


class NotFound(DroneFleetError, KeyError):
    """An order, drone or delivery id is unknown."""

    def __str__(self) -> str:
        # KeyError quotes its message; keep it plain for API responses.
        return str(self.args[0]) if self.args else "not found"


class NothingToAllocate(DroneFleetError):
    """No drones, no pending orders, or no order could be placed."""
