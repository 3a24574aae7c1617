from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from inventario.core.settings import STOCK_FRESHNESS_WINDOW_HOURS
from inventario.services.records import (
    CountDetailRecord,
    PhysicalCountRecord,
    Quantity,
    StockDataset,
    as_utc,
    clean_id,
)

logger = logging.getLogger(__name__)

# -------------------------------
# Constants / config
# -------------------------------
DEFAULT_FRESHNESS_WINDOW = timedelta(hours=24)


class StockMethod(str, Enum):
    RECENT_COUNT = "recent_count"
    COMPUTED = "computed"
    NO_COUNT = "no_count"


_METHOD_PRIORITY = {
    StockMethod.RECENT_COUNT: 3,
    StockMethod.COMPUTED: 2,
    StockMethod.NO_COUNT: 1,
}


def method_priority(method: StockMethod | str) -> int:
    """recent_count (3) > computed (2) > no_count (1)."""
    return _METHOD_PRIORITY[StockMethod(method)]


class CoveragePolicy(str, Enum):
    # any detail row for the product covers it (on-demand display)
    ANY_DETAIL = "any_detail"
    # only detail rows flagged as counted cover it (count scheduling)
    COUNTED = "counted"


@dataclass
class ResolverConfig:
    # counts younger than this are trusted without applying movements
    freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW


def default_config() -> ResolverConfig:
    """Config honouring ``STOCK_FRESHNESS_WINDOW_HOURS``."""
    return ResolverConfig(freshness_window=timedelta(hours=STOCK_FRESHNESS_WINDOW_HOURS))


# -------------------------------
# Public dataclasses
# -------------------------------
@dataclass(frozen=True)
class ResolvedStock:
    product_id: str
    location_id: str
    quantity: Quantity
    method: StockMethod
    # effective date of the winning count; None for no_count
    reference_date: Optional[datetime] = None
    age_days: Optional[int] = None
    entradas: Quantity = 0
    salidas: Quantity = 0
    count_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "producto_id": self.product_id,
            "ubicacion_id": self.location_id,
            "cantidad": self.quantity,
            "metodo": self.method.value,
            "fecha_ultimo_conteo": self.reference_date.isoformat() if self.reference_date else None,
            "dias_desde_conteo": self.age_days,
            "entradas": self.entradas,
            "salidas": self.salidas,
            "conteo_id": self.count_id,
        }


# -------------------------------
# Helpers
# -------------------------------
def _covering_detail(
    details: list[CountDetailRecord], policy: CoveragePolicy
) -> Optional[CountDetailRecord]:
    if policy is CoveragePolicy.COUNTED:
        return next((d for d in details if d.contado), None)
    return details[0] if details else None


def _latest_count(
    product_id: str,
    location_id: str,
    dataset: StockDataset,
    policy: CoveragePolicy,
) -> Optional[tuple[PhysicalCountRecord, CountDetailRecord]]:
    """Most recent eligible count at the location covering the product.

    Ties on the effective date keep the first count in dataset order.
    """
    best: Optional[tuple[PhysicalCountRecord, CountDetailRecord]] = None
    for count in dataset.counts_at(location_id):
        if not count.is_eligible:
            continue
        eff = count.effective_date
        if eff is None:
            continue
        detail = _covering_detail(dataset.count_details_for(count.id, product_id), policy)
        if detail is None:
            continue
        if best is None or eff > best[0].effective_date:
            best = (count, detail)
    return best


def _movement_totals(
    product_id: str, location_id: str, since: datetime, dataset: StockDataset
) -> tuple[Quantity, Quantity]:
    entradas: Quantity = 0
    salidas: Quantity = 0
    for mov in dataset.movements_touching(location_id):
        if not mov.is_eligible:
            continue
        eff = mov.effective_date
        if eff is None or eff <= since:
            continue
        details = dataset.movement_details_for(mov.id, product_id)
        if not details:
            continue
        if mov.destino_id == location_id:
            entradas += sum(d.received_quantity for d in details)
        if mov.origen_id == location_id:
            salidas += sum(d.sent_quantity for d in details)
    return entradas, salidas


def _age_days(age: timedelta) -> int:
    # floor division keeps negative ages (count dated in the future) floored too
    return age // timedelta(days=1)


# -------------------------------
# Public API
# -------------------------------
def resolve(
    product_id: Any,
    location_id: Any,
    dataset: StockDataset,
    now: datetime,
    *,
    policy: CoveragePolicy = CoveragePolicy.ANY_DETAIL,
    config: Optional[ResolverConfig] = None,
) -> ResolvedStock:
    """
    Quantity on hand of *product_id* at *location_id* as of *now*.

    1. Take the most recent completed / partially-completed count at the
       location whose detail covers the product (see :class:`CoveragePolicy`).
    2. No such count -> ``no_count`` with the baseline quantity (0 if absent).
    3. Count younger than the freshness window -> ``recent_count`` with the
       counted quantity; movements are not applied.
    4. Otherwise ``computed``: counted quantity plus units received minus
       units sent by eligible movements dated strictly after the count.

    Malformed records never raise; they simply stop contributing.
    """
    if not isinstance(now, datetime):
        raise ValueError("now must be a datetime")
    now = as_utc(now)
    cfg = config or default_config()
    policy = CoveragePolicy(policy)
    pid = clean_id(product_id) or ""
    lid = clean_id(location_id) or ""

    found = _latest_count(pid, lid, dataset, policy)
    if found is None:
        return ResolvedStock(
            product_id=pid,
            location_id=lid,
            quantity=dataset.baseline_quantity(pid, lid),
            method=StockMethod.NO_COUNT,
        )

    count, detail = found
    ref = count.effective_date
    base = detail.base_quantity
    age = now - ref

    if age < cfg.freshness_window:
        return ResolvedStock(
            product_id=pid,
            location_id=lid,
            quantity=base,
            method=StockMethod.RECENT_COUNT,
            reference_date=ref,
            age_days=_age_days(age),
            count_id=count.id,
        )

    entradas, salidas = _movement_totals(pid, lid, ref, dataset)
    logger.debug(
        "resolve %s@%s: base=%s in=%s out=%s since %s",
        pid, lid, base, entradas, salidas, ref.isoformat(),
    )
    return ResolvedStock(
        product_id=pid,
        location_id=lid,
        quantity=base + entradas - salidas,
        method=StockMethod.COMPUTED,
        reference_date=ref,
        age_days=_age_days(age),
        entradas=entradas,
        salidas=salidas,
        count_id=count.id,
    )


__all__ = [
    "DEFAULT_FRESHNESS_WINDOW",
    "StockMethod",
    "CoveragePolicy",
    "ResolverConfig",
    "ResolvedStock",
    "default_config",
    "method_priority",
    "resolve",
]
