"""
consolidation.py
================

Multi-location roll-up of resolved stock.

``consolidate`` resolves every requested (product, location) pair, sums the
per-location quantities and picks one representative method/date per product
(the most trustworthy method wins, then the most recent date).  The helpers at
the bottom turn the result into pandas frames for report generators.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from inventario.services.records import Quantity, StockDataset, clean_id
from inventario.services.stock_resolver import (
    CoveragePolicy,
    ResolvedStock,
    ResolverConfig,
    StockMethod,
    method_priority,
    resolve,
)

logger = logging.getLogger(__name__)

CONSOLIDATED_COLUMNS = [
    "producto_id",
    "total_unidades",
    "metodo",
    "fecha_ultimo_conteo",
    "dias_desde_conteo",
    "stock_minimo",
    "estado",
    "ubicaciones",
]
BREAKDOWN_COLUMNS = [
    "producto_id",
    "ubicacion_id",
    "cantidad",
    "metodo",
    "fecha_ultimo_conteo",
    "dias_desde_conteo",
    "estado",
]


# --------------------------------------------------------------------------- #
# stock status                                                                #
# --------------------------------------------------------------------------- #
class StockStatus(str, Enum):
    AGOTADO = "agotado"
    BAJO = "bajo"
    NORMAL = "normal"


def stock_status(quantity: Quantity, stock_minimo: Quantity = 0) -> StockStatus:
    if quantity <= 0:
        return StockStatus.AGOTADO
    if quantity <= stock_minimo:
        return StockStatus.BAJO
    return StockStatus.NORMAL


# --------------------------------------------------------------------------- #
# result type                                                                 #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class ConsolidatedStock:
    product_id: str
    total_unidades: Quantity
    method: StockMethod
    reference_date: Optional[datetime]
    age_days: Optional[int]
    # one entry per included location, in request order
    breakdown: tuple[ResolvedStock, ...]
    stock_minimo: Quantity = 0

    @property
    def status(self) -> StockStatus:
        return stock_status(self.total_unidades, self.stock_minimo)

    def location_status(self, entry: ResolvedStock) -> StockStatus:
        return stock_status(entry.quantity, self.stock_minimo)

    def to_dict(self) -> Dict[str, Any]:
        ubicaciones = []
        for entry in self.breakdown:
            row = entry.to_dict()
            row["estado"] = self.location_status(entry).value
            ubicaciones.append(row)
        return {
            "producto_id": self.product_id,
            "total_unidades": self.total_unidades,
            "metodo": self.method.value,
            "fecha_ultimo_conteo": self.reference_date.isoformat() if self.reference_date else None,
            "dias_desde_conteo": self.age_days,
            "stock_minimo": self.stock_minimo,
            "estado": self.status.value,
            "ubicaciones": ubicaciones,
        }


# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #
def _unique_ids(ids: Iterable[Any]) -> List[str]:
    out: List[str] = []
    seen: set[str] = set()
    for raw in ids:
        cid = clean_id(raw)
        if cid is None or cid in seen:
            continue
        seen.add(cid)
        out.append(cid)
    return out


def _outranks(candidate: ResolvedStock, current: ResolvedStock) -> bool:
    """True when *candidate* should replace *current* as representative."""
    cp, bp = method_priority(candidate.method), method_priority(current.method)
    if cp != bp:
        return cp > bp
    if candidate.reference_date is None:
        return False
    if current.reference_date is None:
        return True
    return candidate.reference_date > current.reference_date


def representative(entries: Sequence[ResolvedStock]) -> Optional[ResolvedStock]:
    best: Optional[ResolvedStock] = None
    for entry in entries:
        if best is None or _outranks(entry, best):
            best = entry
    return best


# --------------------------------------------------------------------------- #
# public API                                                                  #
# --------------------------------------------------------------------------- #
def consolidate(
    product_ids: Optional[Iterable[Any]],
    location_ids: Optional[Iterable[Any]],
    dataset: StockDataset,
    now: datetime,
    *,
    config: Optional[ResolverConfig] = None,
) -> List[ConsolidatedStock]:
    """
    Consolidated stock for every product across the given locations.

    ``None`` for either id list means every product/location of the dataset.
    Ids unknown to a non-empty product or location collection are skipped and
    repeated ids are considered once.  A location is part of a product's
    breakdown when it holds a baseline record or a count for the product;
    products without any such location produce no row.
    """
    if product_ids is None:
        product_ids = [p.id for p in dataset.products]
    if location_ids is None:
        location_ids = [loc.id for loc in dataset.locations]

    pids = _unique_ids(product_ids)
    lids = _unique_ids(location_ids)
    if dataset.products:
        pids = [p for p in pids if dataset.has_product(p)]
    if dataset.locations:
        lids = [loc for loc in lids if dataset.has_location(loc)]

    rows: List[ConsolidatedStock] = []
    for pid in pids:
        breakdown: List[ResolvedStock] = []
        for lid in lids:
            res = resolve(pid, lid, dataset, now, policy=CoveragePolicy.ANY_DETAIL, config=config)
            if res.method is StockMethod.NO_COUNT and not dataset.has_baseline(pid, lid):
                continue
            breakdown.append(res)
        if not breakdown:
            continue

        rep = representative(breakdown)
        product = dataset.product(pid)
        rows.append(
            ConsolidatedStock(
                product_id=pid,
                total_unidades=sum(r.quantity for r in breakdown),
                method=rep.method,
                reference_date=rep.reference_date,
                age_days=rep.age_days,
                breakdown=tuple(breakdown),
                stock_minimo=product.stock_minimo if product is not None else 0,
            )
        )

    logger.debug("consolidate: %d products x %d locations -> %d rows", len(pids), len(lids), len(rows))
    return rows


# --------------------------------------------------------------------------- #
# report frames                                                               #
# --------------------------------------------------------------------------- #
def consolidated_frame(rows: Iterable[ConsolidatedStock]) -> pd.DataFrame:
    """One row per product; ``ubicaciones`` holds the number of locations."""
    records = []
    for row in rows:
        records.append(
            {
                "producto_id": row.product_id,
                "total_unidades": row.total_unidades,
                "metodo": row.method.value,
                "fecha_ultimo_conteo": row.reference_date,
                "dias_desde_conteo": row.age_days,
                "stock_minimo": row.stock_minimo,
                "estado": row.status.value,
                "ubicaciones": len(row.breakdown),
            }
        )
    return pd.DataFrame.from_records(records, columns=CONSOLIDATED_COLUMNS)


def breakdown_frame(rows: Iterable[ConsolidatedStock]) -> pd.DataFrame:
    """One row per (product, location) breakdown entry."""
    records = []
    for row in rows:
        for entry in row.breakdown:
            records.append(
                {
                    "producto_id": row.product_id,
                    "ubicacion_id": entry.location_id,
                    "cantidad": entry.quantity,
                    "metodo": entry.method.value,
                    "fecha_ultimo_conteo": entry.reference_date,
                    "dias_desde_conteo": entry.age_days,
                    "estado": row.location_status(entry).value,
                }
            )
    return pd.DataFrame.from_records(records, columns=BREAKDOWN_COLUMNS)


def _plain(val: Any) -> Any:
    # numpy scalars -> builtin int/float for JSON
    return val.item() if hasattr(val, "item") else val


def report_summary(rows: Sequence[ConsolidatedStock]) -> Dict[str, Any]:
    """Totals by status, by method and by location, as shown at the top of the report."""
    summary = consolidated_frame(rows)
    detail = breakdown_frame(rows)
    by_status = Counter(summary["estado"])
    by_method = Counter(summary["metodo"])
    by_location = detail.groupby("ubicacion_id", sort=True)["cantidad"].sum()
    return {
        "productos": len(summary),
        "total_unidades": sum(r.total_unidades for r in rows),
        "por_estado": {s.value: by_status.get(s.value, 0) for s in StockStatus},
        "por_metodo": {m.value: by_method.get(m.value, 0) for m in StockMethod},
        "por_ubicacion": {str(lid): _plain(qty) for lid, qty in by_location.items()},
    }


__all__ = [
    "StockStatus",
    "stock_status",
    "ConsolidatedStock",
    "representative",
    "consolidate",
    "consolidated_frame",
    "breakdown_frame",
    "report_summary",
]
