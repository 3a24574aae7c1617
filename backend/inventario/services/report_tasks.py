"""
Celery background tasks for stock reports.

* ``stock.consolidated_report`` – consolidated stock of a tenant, cached in
  Redis by report id and by dataset fingerprint.
* ``stock.pending_counts`` – products due for a physical count, per location
  (run daily by beat).

Redis is an optimisation: when it is unreachable the tasks still run and
return their result, only the cache lookups miss.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

import redis
from celery import states
from celery.exceptions import SoftTimeLimitExceeded
from celery.result import AsyncResult
from sqlmodel import Session

from inventario.core.celery_app import celery_app
from inventario.core.database import engine
from inventario.core.settings import BROKER_URL, REPORT_CACHE_TTL
from inventario.services.consolidation import consolidate, report_summary
from inventario.services.count_schedule import pending_counts_by_location
from inventario.services.dataset_loader import load_dataset
from inventario.services.records import parse_timestamp

logger = logging.getLogger(__name__)

# Redis client for report storage (separate from Celery's result backend for custom TTL)
_redis_client: Optional[redis.Redis] = None


def _get_redis() -> Optional[redis.Redis]:
    """Lazy-load Redis client."""
    global _redis_client
    if _redis_client is None:
        try:
            _redis_client = redis.from_url(BROKER_URL, decode_responses=True)
        except (redis.RedisError, ValueError) as e:
            logger.warning("Failed to connect to Redis: %s", e)
            return None
    return _redis_client


def _put(key: str, payload: dict, ttl: int) -> bool:
    r = _get_redis()
    if r is None:
        return False
    try:
        r.setex(key, ttl, json.dumps(payload, ensure_ascii=False, default=str))
        return True
    except redis.RedisError as e:
        logger.warning("Failed to store %s in Redis: %s", key, e)
        return False


def _get(key: str) -> Optional[dict]:
    r = _get_redis()
    if r is None:
        return None
    try:
        data = r.get(key)
    except redis.RedisError as e:
        logger.warning("Failed to read %s from Redis: %s", key, e)
        return None
    return json.loads(data) if data else None


# --------------------------------------------------------------------------- #
# cache helpers                                                               #
# --------------------------------------------------------------------------- #
def store_report_result(report_id: str, result: dict, ttl: int = REPORT_CACHE_TTL) -> bool:
    return _put(f"stock:report:result:{report_id}", result, ttl)


def get_report_result(report_id: str) -> Optional[dict]:
    return _get(f"stock:report:result:{report_id}")


def store_report_status(report_id: str, status: str, progress: dict | None = None, ttl: int = REPORT_CACHE_TTL) -> bool:
    data: Dict[str, Any] = {"status": status, "updated_at": datetime.now(timezone.utc).isoformat()}
    if progress:
        data["progress"] = progress
    return _put(f"stock:report:status:{report_id}", data, ttl)


def get_report_status(report_id: str) -> Optional[dict]:
    return _get(f"stock:report:status:{report_id}")


def fingerprint_key(
    fingerprint: str,
    product_ids: Sequence[str] | None,
    location_ids: Sequence[str] | None,
    now: datetime,
) -> str:
    """Cache key for one (dataset content, request, instant) combination."""
    params = json.dumps(
        {"p": list(product_ids) if product_ids is not None else None,
         "l": list(location_ids) if location_ids is not None else None,
         "now": now.isoformat()},
        sort_keys=True,
    )
    digest = hashlib.sha256(params.encode("utf-8")).hexdigest()[:16]
    return f"stock:report:fp:{fingerprint}:{digest}"


def get_task_status(report_id: str) -> dict:
    """
    Status of a report task: Redis first, then Celery's result backend.
    """
    status = get_report_status(report_id)
    if status:
        return status

    result = get_report_result(report_id)
    if result:
        return {"status": result.get("status", "completed"), "updated_at": result.get("finished_at")}

    task_result = AsyncResult(report_id, app=celery_app)
    try:
        state = task_result.state
    except redis.RedisError as e:
        logger.warning("Failed to query task state for %s: %s", report_id, e)
        return {"status": "unknown"}
    if state == states.PENDING:
        return {"status": "pending"}
    if state == states.STARTED:
        return {"status": "running"}
    if state == states.SUCCESS:
        return {"status": "completed"}
    if state == states.FAILURE:
        return {"status": "failed", "error": str(task_result.result)}
    return {"status": state.lower()}


# --------------------------------------------------------------------------- #
# report builders                                                             #
# --------------------------------------------------------------------------- #
def build_consolidated_report(
    session: Session,
    *,
    tenant_id: str | None,
    product_ids: Sequence[str] | None = None,
    location_ids: Sequence[str] | None = None,
    now: datetime | None = None,
    use_cache: bool = True,
) -> dict:
    """Load the tenant's dataset, consolidate it and return a JSON-ready payload."""
    now = now or datetime.now(timezone.utc)
    dataset = load_dataset(session, tenant_id=tenant_id)
    fp = dataset.fingerprint()
    cache_key = fingerprint_key(fp, product_ids, location_ids, now)

    if use_cache:
        cached = _get(cache_key)
        if cached is not None:
            logger.info("report cache hit for dataset %s", fp[:12])
            return cached

    rows = consolidate(product_ids, location_ids, dataset, now)
    payload = {
        "tenant_id": tenant_id,
        "generated_at": now.isoformat(),
        "dataset_fingerprint": fp,
        "summary": report_summary(rows),
        "rows": [r.to_dict() for r in rows],
    }
    if use_cache:
        _put(cache_key, payload, REPORT_CACHE_TTL)
    return payload


# --------------------------------------------------------------------------- #
# tasks                                                                       #
# --------------------------------------------------------------------------- #
@celery_app.task(
    bind=True,
    name="stock.consolidated_report",
    queue="reports",
    time_limit=300,       # Hard kill after 5 minutes
    soft_time_limit=270,  # Raise SoftTimeLimitExceeded after 4.5 minutes
    acks_late=True,
)
def consolidated_report(
    self,
    *,
    report_id: str | None = None,
    tenant_id: str | None = None,
    product_ids: list[str] | None = None,
    location_ids: list[str] | None = None,
    now: str | None = None,
) -> dict[str, Any]:
    """
    Consolidated stock report.

    Parameters
    ----------
    report_id : str
        Key under which the result is stored; defaults to the Celery task id.
    tenant_id : str
        Tenant whose records are loaded.
    product_ids, location_ids : list[str], optional
        Restrict the report; ``None`` means everything of the tenant.
    now : str, optional
        ISO timestamp to evaluate at (defaults to the current time).
    """
    report_id = report_id or self.request.id
    started_at = datetime.now(timezone.utc)
    at = parse_timestamp(now) if now else started_at
    logger.info("[stock.consolidated_report] start report_id=%s tenant=%s", report_id, tenant_id)
    store_report_status(report_id, "running")

    try:
        with Session(engine) as ses:
            payload = build_consolidated_report(
                ses,
                tenant_id=tenant_id,
                product_ids=product_ids,
                location_ids=location_ids,
                now=at or started_at,
            )
    except SoftTimeLimitExceeded:
        logger.warning("[stock.consolidated_report] timed out report_id=%s", report_id)
        error_result = {
            "status": "failed",
            "report_id": report_id,
            "error": "Report generation timed out",
            "started_at": started_at.isoformat(),
            "finished_at": datetime.now(timezone.utc).isoformat(),
        }
        store_report_result(report_id, error_result)
        store_report_status(report_id, "timeout", {"error": error_result["error"]})
        return error_result
    except Exception as exc:
        logger.exception("[stock.consolidated_report] failed report_id=%s", report_id)
        error_result = {
            "status": "failed",
            "report_id": report_id,
            "error": str(exc),
            "started_at": started_at.isoformat(),
            "finished_at": datetime.now(timezone.utc).isoformat(),
        }
        store_report_result(report_id, error_result)
        store_report_status(report_id, "failed", {"error": str(exc)})
        # the failure is stored for the client; returning avoids a Celery retry
        return error_result

    finished_at = datetime.now(timezone.utc)
    result = {
        "status": "completed",
        "report_id": report_id,
        "started_at": started_at.isoformat(),
        "finished_at": finished_at.isoformat(),
        "duration_sec": (finished_at - started_at).total_seconds(),
        **payload,
    }
    store_report_result(report_id, result)
    store_report_status(report_id, "completed", {"count": len(payload["rows"])})
    logger.info(
        "[stock.consolidated_report] done report_id=%s rows=%d in %.1fs",
        report_id, len(payload["rows"]), result["duration_sec"],
    )
    return result


@celery_app.task(bind=True, name="stock.pending_counts", queue="reports")
def pending_counts(
    self,
    *,
    tenant_id: str | None = None,
    location_ids: list[str] | None = None,
    frequency_days: int | None = None,
) -> dict[str, Any]:
    """Products due for a physical count, grouped by location."""
    now = datetime.now(timezone.utc)
    with Session(engine) as ses:
        dataset = load_dataset(ses, tenant_id=tenant_id)
    pending = pending_counts_by_location(
        dataset, now, location_ids=location_ids, frequency_days=frequency_days
    )
    result = {
        "tenant_id": tenant_id,
        "generated_at": now.isoformat(),
        "locations": {lid: [p.to_dict() for p in items] for lid, items in pending.items()},
        "total": sum(len(items) for items in pending.values()),
    }
    _put(f"stock:pending:{tenant_id or 'all'}", result, REPORT_CACHE_TTL)
    return result


__all__ = [
    "consolidated_report",
    "pending_counts",
    "build_consolidated_report",
    "store_report_result",
    "get_report_result",
    "store_report_status",
    "get_report_status",
    "get_task_status",
    "fingerprint_key",
]
