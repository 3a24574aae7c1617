"""
Stock router.

Endpoints (prefix ``/v1/stock``):

* GET  /v1/stock/resolve            – stock of one product at one location
* POST /v1/stock/consolidate        – multi-location consolidation
* GET  /v1/stock/pending_counts     – products due for a physical count
* POST /v1/stock/reports            – enqueue a consolidated report (Celery)
* GET  /v1/stock/reports/{report_id} – read a queued report

The tenant is taken from the ``X-Tenant-Id`` header or the ``tenant_id`` query
parameter; requests without one see every record (single-tenant installs).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field
from sqlmodel import Session

from inventario.core.database import get_session
from inventario.services.consolidation import consolidate
from inventario.services.count_schedule import products_needing_count
from inventario.services.dataset_loader import load_dataset
from inventario.services.records import clean_id, parse_timestamp
from inventario.services.stock_resolver import CoveragePolicy, resolve

router = APIRouter(prefix="/v1/stock", tags=["stock"])
logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# dependencies                                                                #
# --------------------------------------------------------------------------- #
def get_tenant(
    x_tenant_id: Optional[str] = Header(None),
    tenant_id: Optional[str] = Query(None, description="Tenant (alternative to the X-Tenant-Id header)"),
) -> Optional[str]:
    return clean_id(x_tenant_id) or clean_id(tenant_id)


SesDep = Annotated[Session, Depends(get_session)]
TenantDep = Annotated[Optional[str], Depends(get_tenant)]


def _now(at: Optional[str]) -> datetime:
    """``at`` query parameter, or the current instant."""
    if at is None or not at.strip():
        return datetime.now(timezone.utc)
    parsed = parse_timestamp(at)
    if parsed is None:
        raise ValueError(f"Cannot parse timestamp: {at!r}")
    return parsed


def _require_id(val: Optional[str], name: str) -> str:
    cid = clean_id(val)
    if cid is None:
        raise ValueError(f"{name} is required")
    return cid


# --------------------------------------------------------------------------- #
# request bodies                                                              #
# --------------------------------------------------------------------------- #
class ConsolidateRequest(BaseModel):
    product_ids: Optional[List[str]] = Field(None, description="Products to report; all when omitted")
    location_ids: Optional[List[str]] = Field(None, description="Locations to include; all when omitted")
    at: Optional[str] = Field(None, description="Evaluate at this instant (ISO 8601)")


class ReportRequest(ConsolidateRequest):
    report_id: Optional[str] = Field(None, description="Client-chosen id; generated when omitted")


# --------------------------------------------------------------------------- #
# endpoints                                                                   #
# --------------------------------------------------------------------------- #
@router.get("/resolve")
def resolve_stock(
    ses: SesDep,
    tenant: TenantDep,
    product_id: str = Query(..., description="Product id"),
    location_id: str = Query(..., description="Location id"),
    policy: CoveragePolicy = Query(CoveragePolicy.ANY_DETAIL),
    at: Optional[str] = Query(None, description="Evaluate at this instant (ISO 8601)"),
) -> Dict[str, Any]:
    """Quantity on hand of one product at one location."""
    try:
        pid = _require_id(product_id, "product_id")
        lid = _require_id(location_id, "location_id")
        now = _now(at)
        dataset = load_dataset(ses, tenant_id=tenant)
        return resolve(pid, lid, dataset, now, policy=policy).to_dict()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("stock/resolve failed")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/consolidate")
def consolidate_stock(body: ConsolidateRequest, ses: SesDep, tenant: TenantDep) -> List[Dict[str, Any]]:
    """Consolidated stock per product across the requested locations."""
    try:
        now = _now(body.at)
        dataset = load_dataset(ses, tenant_id=tenant)
        rows = consolidate(body.product_ids, body.location_ids, dataset, now)
        return [r.to_dict() for r in rows]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("stock/consolidate failed")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/pending_counts")
def pending_counts(
    ses: SesDep,
    tenant: TenantDep,
    location_id: str = Query(..., description="Location id"),
    frequency_days: Optional[int] = Query(None, description="Days between counts; server default when omitted"),
    at: Optional[str] = Query(None, description="Evaluate at this instant (ISO 8601)"),
) -> Dict[str, Any]:
    """Products at a location that were never counted or are overdue."""
    try:
        lid = _require_id(location_id, "location_id")
        now = _now(at)
        dataset = load_dataset(ses, tenant_id=tenant)
        items = products_needing_count(lid, None, dataset, now, frequency_days=frequency_days)
        return {
            "ubicacion_id": lid,
            "total": len(items),
            "productos": [p.to_dict() for p in items],
        }
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("stock/pending_counts failed")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/reports", status_code=202)
def enqueue_report(body: ReportRequest, tenant: TenantDep) -> Dict[str, Any]:
    """Queue a consolidated report on the ``reports`` worker queue."""
    from inventario.services.report_tasks import consolidated_report

    try:
        if body.at is not None:
            _now(body.at)  # validate before queueing
        report_id = clean_id(body.report_id) or uuid4().hex
        consolidated_report.apply_async(
            kwargs={
                "report_id": report_id,
                "tenant_id": tenant,
                "product_ids": body.product_ids,
                "location_ids": body.location_ids,
                "now": body.at,
            },
            task_id=report_id,
        )
        logger.info("queued consolidated report %s (tenant=%s)", report_id, tenant)
        return {"report_id": report_id, "status": "queued"}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("stock/reports enqueue failed")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/reports/{report_id}")
def read_report(report_id: str) -> Dict[str, Any]:
    """Finished report, or the task status while it is still running."""
    from inventario.services.report_tasks import get_report_result, get_task_status

    try:
        result = get_report_result(report_id)
        if result is not None:
            return result
        status = get_task_status(report_id)
    except Exception as e:
        logger.exception("stock/reports/%s lookup failed", report_id)
        raise HTTPException(status_code=500, detail=str(e))
    return {"report_id": report_id, **status}
