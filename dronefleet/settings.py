"""
File: dronefleet/settings.py
Purpose: Environment-backed configuration for the drone dispatch service.
Key responsibilities:
- Parse HTTP, repository and MySQL settings.
- Define simulation timer and base location defaults.
"""

from dataclasses import dataclass
import os


def _float_env(name: str, default: float = 0.0) -> float:
    """Parse a float env var with a fallback."""
    raw = os.getenv(name, "")
    if raw == "":
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    """Service configuration parsed from environment."""
    host: str = os.getenv("DRONEFLEET_HOST", "0.0.0.0")
    port: int = int(os.getenv("DRONEFLEET_PORT", "3001"))
    repository: str = os.getenv("REPOSITORY", "memory")
    mysql_host: str = os.getenv("MYSQL_HOST", "mysql")
    mysql_port: int = int(os.getenv("MYSQL_PORT", "3306"))
    mysql_user: str = os.getenv("MYSQL_USER", "dronefleet")
    mysql_password: str = os.getenv("MYSQL_PASSWORD", "dronefleet")
    mysql_db: str = os.getenv("MYSQL_DB", "dronefleet")
    sim_tick_interval_ms: int = int(os.getenv("SIM_TICK_INTERVAL_MS", "1000"))
    base_x: float = _float_env("BASE_X", 0.0)
    base_y: float = _float_env("BASE_Y", 0.0)


settings = Settings()
