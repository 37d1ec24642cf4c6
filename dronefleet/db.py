from __future__ import annotations

"""
File: dronefleet/db.py
Purpose: Repository boundary for orders, drones and deliveries.
Key responsibilities:
- Repository protocol consumed by the dispatch service and the engine.
- InMemoryRepository (default, tests) and MySQLRepository (pymysql).
- flush(): log-and-continue wrapper for one-directional writes.
Config/env vars:
- REPOSITORY, MYSQL_*
"""

from contextlib import contextmanager
import copy
from datetime import datetime
import json
import logging
from typing import Any, Callable, Iterator, Protocol

import pymysql

from dronefleet.settings import Settings

logger = logging.getLogger("dronefleet.db")


class Repository(Protocol):
    """Persistence collaborator; snapshots are the entities' to_dict() output."""

    def create_order(self, order: dict[str, Any]) -> None: ...

    def list_orders(self) -> list[dict[str, Any]]: ...

    def update_order_status(self, order_id: str, status: str) -> None: ...

    def create_drone(self, drone: dict[str, Any]) -> None: ...

    def list_drones(self) -> list[dict[str, Any]]: ...

    def update_drone(self, drone_id: str, fields: dict[str, Any]) -> None: ...

    def delete_drone(self, drone_id: str) -> None: ...

    def create_delivery(self, delivery: dict[str, Any]) -> None: ...

    def list_deliveries(self) -> list[dict[str, Any]]: ...

    def update_delivery_status(self, delivery_id: str, status: str, completed_at: datetime | None = None) -> None: ...

    def set_delivery_started(self, delivery_id: str, started_at: datetime) -> None: ...

    def delete_delivery(self, delivery_id: str) -> None: ...

    def reset(self) -> None: ...


def flush(write: Callable[..., None], *args: Any) -> bool:
    """Call a repository write; failures are logged, never raised."""
    try:
        write(*args)
        return True
    except Exception as exc:  # noqa: BLE001
        logger.exception("repository write failed op=%s err=%s", getattr(write, "__name__", write), exc)
        return False


def _iso(value: datetime | str | None) -> str | None:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class InMemoryRepository:
    """Dict-backed repository; stores copies so callers cannot alias rows."""
    def __init__(self) -> None:
        self.orders: dict[str, dict[str, Any]] = {}
        self.drones: dict[str, dict[str, Any]] = {}
        self.deliveries: dict[str, dict[str, Any]] = {}

    def create_order(self, order: dict[str, Any]) -> None:
        self.orders[order["id"]] = copy.deepcopy(order)

    def list_orders(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(row) for row in self.orders.values()]

    def update_order_status(self, order_id: str, status: str) -> None:
        if order_id in self.orders:
            self.orders[order_id]["status"] = status

    def create_drone(self, drone: dict[str, Any]) -> None:
        self.drones[drone["id"]] = copy.deepcopy(drone)

    def list_drones(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(row) for row in self.drones.values()]

    def update_drone(self, drone_id: str, fields: dict[str, Any]) -> None:
        if drone_id in self.drones:
            self.drones[drone_id].update(copy.deepcopy(fields))

    def delete_drone(self, drone_id: str) -> None:
        self.drones.pop(drone_id, None)
        for delivery_id in [k for k, row in self.deliveries.items() if row["drone_id"] == drone_id]:
            del self.deliveries[delivery_id]

    def create_delivery(self, delivery: dict[str, Any]) -> None:
        # Idempotent: an existing row wins.
        self.deliveries.setdefault(delivery["id"], copy.deepcopy(delivery))

    def list_deliveries(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(row) for row in self.deliveries.values()]

    def update_delivery_status(self, delivery_id: str, status: str, completed_at: datetime | None = None) -> None:
        row = self.deliveries.get(delivery_id)
        if row is None:
            return
        row["status"] = status
        if completed_at is not None:
            row["completed_at"] = _iso(completed_at)

    def set_delivery_started(self, delivery_id: str, started_at: datetime) -> None:
        row = self.deliveries.get(delivery_id)
        if row is None:
            return
        row["status"] = "in-progress"
        row["started_at"] = _iso(started_at)

    def delete_delivery(self, delivery_id: str) -> None:
        self.deliveries.pop(delivery_id, None)

    def reset(self) -> None:
        self.orders.clear()
        self.drones.clear()
        self.deliveries.clear()


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS orders (
        id VARCHAR(64) PRIMARY KEY,
        customer_x DOUBLE NOT NULL,
        customer_y DOUBLE NOT NULL,
        delivery_x DOUBLE NULL,
        delivery_y DOUBLE NULL,
        weight DOUBLE NOT NULL,
        priority VARCHAR(16) NOT NULL,
        status VARCHAR(16) NOT NULL DEFAULT 'pending',
        created_at VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS drones (
        id VARCHAR(64) PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        max_weight DOUBLE NOT NULL,
        max_distance DOUBLE NOT NULL,
        base_x DOUBLE NOT NULL,
        base_y DOUBLE NOT NULL,
        battery_level DOUBLE NOT NULL DEFAULT 100,
        current_state VARCHAR(16) NOT NULL DEFAULT 'idle',
        current_x DOUBLE NOT NULL,
        current_y DOUBLE NOT NULL,
        current_delivery_id VARCHAR(64) NULL,
        total_deliveries INT NOT NULL DEFAULT 0,
        total_distance DOUBLE NOT NULL DEFAULT 0,
        created_at VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS deliveries (
        id VARCHAR(64) PRIMARY KEY,
        drone_id VARCHAR(64) NOT NULL,
        order_ids TEXT NOT NULL,
        route TEXT NOT NULL,
        status VARCHAR(16) NOT NULL DEFAULT 'scheduled',
        total_distance DOUBLE NOT NULL,
        total_weight DOUBLE NOT NULL,
        estimated_time INT NOT NULL,
        started_at VARCHAR(40) NULL,
        completed_at VARCHAR(40) NULL,
        created_at VARCHAR(40) NOT NULL
    )
    """,
)

# Drone snapshot keys that map onto plain columns.
_DRONE_COLUMNS = {
    "battery_level",
    "current_state",
    "current_delivery_id",
    "total_deliveries",
    "total_distance",
}


def _order_from_row(row: dict[str, Any]) -> dict[str, Any]:
    delivery_location = None
    if row.get("delivery_x") is not None and row.get("delivery_y") is not None:
        delivery_location = {"x": row["delivery_x"], "y": row["delivery_y"]}
    return {
        "id": row["id"],
        "customer_location": {"x": row["customer_x"], "y": row["customer_y"]},
        "delivery_location": delivery_location,
        "weight": row["weight"],
        "priority": row["priority"],
        "status": row["status"],
        "created_at": row["created_at"],
    }


def _drone_from_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "max_weight": row["max_weight"],
        "max_distance": row["max_distance"],
        "base_location": {"x": row["base_x"], "y": row["base_y"]},
        "battery_level": row["battery_level"],
        "current_state": row["current_state"],
        "current_location": {"x": row["current_x"], "y": row["current_y"]},
        "current_delivery_id": row.get("current_delivery_id"),
        "total_deliveries": row["total_deliveries"],
        "total_distance": row["total_distance"],
        "created_at": row["created_at"],
    }


def _delivery_from_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "drone_id": row["drone_id"],
        "order_ids": json.loads(row["order_ids"]),
        "route": json.loads(row["route"]),
        "status": row["status"],
        "total_distance": row["total_distance"],
        "total_weight": row["total_weight"],
        "estimated_time": row["estimated_time"],
        "started_at": row.get("started_at"),
        "completed_at": row.get("completed_at"),
        "created_at": row["created_at"],
    }


class MySQLRepository:
    """MySQL-backed repository using a short-lived dict cursor per call."""
    def __init__(self, settings: Settings, connect: Callable[[], Any] | None = None) -> None:
        self.settings = settings
        self._connect_fn = connect or self._connect

    def _connect(self):
        """Open a new MySQL connection with dict cursor."""
        return pymysql.connect(
            host=self.settings.mysql_host,
            port=self.settings.mysql_port,
            user=self.settings.mysql_user,
            password=self.settings.mysql_password,
            database=self.settings.mysql_db,
            autocommit=True,
            cursorclass=pymysql.cursors.DictCursor,
        )

    @contextmanager
    def db_cursor(self) -> Iterator[Any]:
        """Context manager for a short-lived DB cursor."""
        conn = self._connect_fn()
        try:
            with conn.cursor() as cur:
                yield cur
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self.db_cursor() as cur:
            for statement in SCHEMA:
                cur.execute(statement)
        logger.info("database tables created/verified db=%s", self.settings.mysql_db)

    def create_order(self, order: dict[str, Any]) -> None:
        delivery = order.get("delivery_location") or {}
        with self.db_cursor() as cur:
            cur.execute(
                """
                INSERT INTO orders (id, customer_x, customer_y, delivery_x, delivery_y, weight, priority, status, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON DUPLICATE KEY UPDATE status=VALUES(status)
                """,
                (
                    order["id"],
                    float(order["customer_location"]["x"]),
                    float(order["customer_location"]["y"]),
                    delivery.get("x"),
                    delivery.get("y"),
                    float(order["weight"]),
                    order["priority"],
                    order["status"],
                    order["created_at"],
                ),
            )

    def list_orders(self) -> list[dict[str, Any]]:
        with self.db_cursor() as cur:
            cur.execute("SELECT * FROM orders ORDER BY created_at")
            return [_order_from_row(row) for row in cur.fetchall()]

    def update_order_status(self, order_id: str, status: str) -> None:
        with self.db_cursor() as cur:
            cur.execute("UPDATE orders SET status=%s WHERE id=%s", (status, order_id))

    def create_drone(self, drone: dict[str, Any]) -> None:
        with self.db_cursor() as cur:
            cur.execute(
                """
                INSERT INTO drones (id, name, max_weight, max_distance, base_x, base_y, battery_level, current_state, current_x, current_y, current_delivery_id, total_deliveries, total_distance, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    drone["id"],
                    drone["name"],
                    float(drone["max_weight"]),
                    float(drone["max_distance"]),
                    float(drone["base_location"]["x"]),
                    float(drone["base_location"]["y"]),
                    float(drone["battery_level"]),
                    drone["current_state"],
                    float(drone["current_location"]["x"]),
                    float(drone["current_location"]["y"]),
                    drone.get("current_delivery_id"),
                    int(drone["total_deliveries"]),
                    float(drone["total_distance"]),
                    drone["created_at"],
                ),
            )

    def list_drones(self) -> list[dict[str, Any]]:
        with self.db_cursor() as cur:
            cur.execute("SELECT * FROM drones ORDER BY created_at")
            return [_drone_from_row(row) for row in cur.fetchall()]

    def update_drone(self, drone_id: str, fields: dict[str, Any]) -> None:
        """Update the given snapshot fields of one drone row."""
        assignments: list[str] = []
        values: list[Any] = []
        for key, value in fields.items():
            if key == "current_location":
                assignments.extend(["current_x=%s", "current_y=%s"])
                values.extend([float(value["x"]), float(value["y"])])
            elif key in _DRONE_COLUMNS:
                assignments.append(f"{key}=%s")
                values.append(value)
            else:
                logger.warning("ignoring unknown drone field %s", key)
        if not assignments:
            return
        with self.db_cursor() as cur:
            cur.execute(f"UPDATE drones SET {', '.join(assignments)} WHERE id=%s", (*values, drone_id))

    def delete_drone(self, drone_id: str) -> None:
        with self.db_cursor() as cur:
            cur.execute("DELETE FROM deliveries WHERE drone_id=%s", (drone_id,))
            cur.execute("DELETE FROM drones WHERE id=%s", (drone_id,))

    def create_delivery(self, delivery: dict[str, Any]) -> None:
        with self.db_cursor() as cur:
            cur.execute(
                """
                INSERT IGNORE INTO deliveries (id, drone_id, order_ids, route, status, total_distance, total_weight, estimated_time, started_at, completed_at, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    delivery["id"],
                    delivery["drone_id"],
                    json.dumps(delivery["order_ids"]),
                    json.dumps(delivery["route"]),
                    delivery["status"],
                    float(delivery["total_distance"]),
                    float(delivery["total_weight"]),
                    int(delivery["estimated_time"]),
                    delivery.get("started_at"),
                    delivery.get("completed_at"),
                    delivery["created_at"],
                ),
            )

    def list_deliveries(self) -> list[dict[str, Any]]:
        with self.db_cursor() as cur:
            cur.execute("SELECT * FROM deliveries ORDER BY created_at")
            return [_delivery_from_row(row) for row in cur.fetchall()]

    def update_delivery_status(self, delivery_id: str, status: str, completed_at: datetime | None = None) -> None:
        with self.db_cursor() as cur:
            if completed_at is None:
                cur.execute("UPDATE deliveries SET status=%s WHERE id=%s", (status, delivery_id))
            else:
                cur.execute(
                    "UPDATE deliveries SET status=%s, completed_at=%s WHERE id=%s",
                    (status, _iso(completed_at), delivery_id),
                )

    def set_delivery_started(self, delivery_id: str, started_at: datetime) -> None:
        with self.db_cursor() as cur:
            cur.execute(
                "UPDATE deliveries SET status='in-progress', started_at=%s WHERE id=%s",
                (_iso(started_at), delivery_id),
            )

    def delete_delivery(self, delivery_id: str) -> None:
        with self.db_cursor() as cur:
            cur.execute("DELETE FROM deliveries WHERE id=%s", (delivery_id,))

    def reset(self) -> None:
        with self.db_cursor() as cur:
            cur.execute("DELETE FROM deliveries")
            cur.execute("DELETE FROM orders")
            cur.execute("DELETE FROM drones")


def build_repository(settings: Settings) -> Repository:
    """Pick the repository named by settings.repository."""
    if settings.repository == "mysql":
        repository = MySQLRepository(settings)
        repository.ensure_schema()
        return repository
    if settings.repository != "memory":
        raise ValueError(f"unknown repository backend {settings.repository!r}")
    return InMemoryRepository()
