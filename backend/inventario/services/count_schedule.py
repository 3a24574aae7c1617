"""Count scheduling check.

Decides which products at a location are due for a new physical count.  Only
detail rows flagged as counted make a product "covered"; a row that merely
lists the product does not.  Triggering the scan and notifying people is the
caller's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from inventario.core.settings import COUNT_FREQUENCY_DAYS
from inventario.services.records import StockDataset, clean_id
from inventario.services.stock_resolver import (
    CoveragePolicy,
    ResolverConfig,
    StockMethod,
    resolve,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingCount:
    product_id: str
    location_id: str
    # None when the product was never counted at the location
    days_without_count: Optional[int]
    last_count_date: Optional[datetime] = None

    @property
    def never_counted(self) -> bool:
        return self.days_without_count is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "producto_id": self.product_id,
            "ubicacion_id": self.location_id,
            "dias_sin_contar": self.days_without_count,
            "fecha_ultimo_conteo": self.last_count_date.isoformat() if self.last_count_date else None,
            "nunca_contado": self.never_counted,
        }


def products_needing_count(
    location_id: Any,
    product_ids: Optional[Iterable[Any]],
    dataset: StockDataset,
    now: datetime,
    *,
    frequency_days: Optional[int] = None,
    config: Optional[ResolverConfig] = None,
) -> List[PendingCount]:
    """
    Products at *location_id* that were never counted or whose last counted
    count is ``frequency_days`` or more days old.

    ``product_ids=None`` checks every product holding a baseline record at the
    location.
    """
    freq = COUNT_FREQUENCY_DAYS if frequency_days is None else int(frequency_days)
    if freq < 0:
        raise ValueError("frequency_days must be >= 0")
    lid = clean_id(location_id)
    if lid is None:
        return []
    if product_ids is None:
        product_ids = dataset.products_at(lid)

    pending: List[PendingCount] = []
    seen: set[str] = set()
    for raw in product_ids:
        pid = clean_id(raw)
        if pid is None or pid in seen:
            continue
        seen.add(pid)
        # rows pointing at a product missing from the catalog are ignored
        if dataset.products and not dataset.has_product(pid):
            continue
        res = resolve(pid, lid, dataset, now, policy=CoveragePolicy.COUNTED, config=config)
        if res.method is StockMethod.NO_COUNT:
            pending.append(PendingCount(product_id=pid, location_id=lid, days_without_count=None))
        elif res.age_days >= freq:
            pending.append(
                PendingCount(
                    product_id=pid,
                    location_id=lid,
                    days_without_count=res.age_days,
                    last_count_date=res.reference_date,
                )
            )
    return pending


def pending_counts_by_location(
    dataset: StockDataset,
    now: datetime,
    *,
    location_ids: Optional[Iterable[Any]] = None,
    frequency_days: Optional[int] = None,
) -> Dict[str, List[PendingCount]]:
    """Run the check for several locations; locations with nothing due are omitted."""
    if location_ids is None:
        location_ids = [loc.id for loc in dataset.locations]
    out: Dict[str, List[PendingCount]] = {}
    for raw in location_ids:
        lid = clean_id(raw)
        if lid is None or lid in out:
            continue
        items = products_needing_count(lid, None, dataset, now, frequency_days=frequency_days)
        if items:
            out[lid] = items
    logger.info("pending counts: %d locations with products due", len(out))
    return out


__all__ = ["PendingCount", "products_needing_count", "pending_counts_by_location"]
