"""
Central Celery application object for the inventory stock service.

Usage
-----
* **Worker**: ``celery -A inventario.core.celery_app worker -Q default,reports --loglevel=info``
* **Beat (scheduled jobs)**: ``celery -A inventario.core.celery_app beat --loglevel=info``

Broker, result backend and timezone come from ``inventario.core.settings``
(``CELERY_BROKER_URL``, ``CELERY_RESULT_BACKEND``, ``APP_TIMEZONE``).
"""

from __future__ import annotations

from datetime import timedelta

from celery import Celery
from celery.schedules import crontab
from kombu import Exchange, Queue

from inventario.core.settings import BROKER_URL, RESULT_BACKEND, TIMEZONE

# --------------------------------------------------------------------------- #
# Celery application                                                          #
# --------------------------------------------------------------------------- #

celery_app = Celery(
    "inventario",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
    include=[
        "inventario.services.report_tasks",
    ],
)

# --------------------------------------------------------------------------- #
# Default settings                                                            #
# --------------------------------------------------------------------------- #

celery_app.conf.update(
    # Serialisation
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # Reliability
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Time
    timezone=TIMEZONE,
    enable_utc=True,
    # Queues / routing
    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",
    task_queues=(
        Queue("default", Exchange("default"), routing_key="default"),
        Queue("reports", Exchange("reports"), routing_key="reports"),
    ),
    # Result expiry
    result_expires=timedelta(days=1),
    # Scheduled jobs (evaluated in APP_TIMEZONE)
    beat_schedule={
        "pending-counts-daily": {
            "task": "stock.pending_counts",
            "schedule": crontab(hour=8, minute=0),
            "options": {"queue": "reports"},
        },
    },
)

# --------------------------------------------------------------------------- #
# Helper for FastAPI integration                                              #
# --------------------------------------------------------------------------- #


def init_celery() -> None:  # called from FastAPI.startup
    """
    Import all task modules so ``.delay`` works from the web process even
    before any worker has registered them.
    """
    from importlib import import_module

    for module in celery_app.conf.include:
        import_module(module)
