"""
Runtime settings read from environment variables.

Values are resolved once at import time.  ``inventario.main`` loads ``.env``
files before anything else is imported, so variables defined there are
visible here as well.
"""

from __future__ import annotations

import os

_TRUTHY = ("1", "true", "yes", "on", "y", "t")


def env_flag(name: str, default: str = "true") -> bool:
    return (os.getenv(name, default) or default).strip().lower() in _TRUTHY


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


# --------------------------------------------------------------------------- #
# Database                                                                    #
# --------------------------------------------------------------------------- #
DATABASE_URL: str = os.getenv("DATABASE_URL") or "sqlite:///./inventario.db"
AUTO_CREATE_TABLES: bool = env_flag("AUTO_CREATE_TABLES", "true")

# --------------------------------------------------------------------------- #
# Stock engine                                                                #
# --------------------------------------------------------------------------- #
# Hours after a count's effective date during which the counted quantity is
# trusted without applying movements.
STOCK_FRESHNESS_WINDOW_HOURS: float = env_float("STOCK_FRESHNESS_WINDOW_HOURS", 24.0)
# Days after which a counted product is due for a new count.
COUNT_FREQUENCY_DAYS: int = env_int("COUNT_FREQUENCY_DAYS", 7)

# --------------------------------------------------------------------------- #
# Background jobs                                                             #
# --------------------------------------------------------------------------- #
BROKER_URL: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
RESULT_BACKEND: str = os.getenv("CELERY_RESULT_BACKEND", BROKER_URL)
TIMEZONE: str = os.getenv("APP_TIMEZONE", "America/Mexico_City")
REPORT_CACHE_TTL: int = env_int("REPORT_CACHE_TTL", 3600)
