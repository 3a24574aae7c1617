"""Build :class:`StockDataset` instances from the database or from exports."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import pandas as pd
from sqlmodel import Session, select

from inventario.models import (
    BaselineSnapshot,
    CountDetail,
    Location,
    Movement,
    MovementDetail,
    PhysicalCount,
    Product,
)
from inventario.services.records import StockDataset
from inventario.utils.file_parser import read_dataframe

logger = logging.getLogger(__name__)

# collection name -> accepted export file stems
COLLECTIONS: Dict[str, tuple[str, ...]] = {
    "products": ("products", "productos"),
    "locations": ("locations", "ubicaciones"),
    "baselines": ("baselines", "inventario"),
    "counts": ("counts", "conteos"),
    "count_details": ("count_details", "detalle_conteos"),
    "movements": ("movements", "transferencias", "movimientos"),
    "movement_details": ("movement_details", "detalle_transferencias", "detalle_movimientos"),
}


# --------------------------------------------------------------------------- #
# database                                                                    #
# --------------------------------------------------------------------------- #
def load_dataset(session: Session, tenant_id: Optional[str] = None) -> StockDataset:
    """
    Read every collection the resolver needs for *tenant_id*.

    Detail rows carry no tenant column, so they are selected through their
    header.  ``tenant_id=None`` loads everything (single-tenant installs).
    """
    def _scoped(model):
        stmt = select(model)
        if tenant_id is not None:
            stmt = stmt.where(model.tenant_id == tenant_id)
        return stmt

    products = session.exec(_scoped(Product)).all()
    locations = session.exec(_scoped(Location)).all()
    baselines = session.exec(_scoped(BaselineSnapshot)).all()
    counts = session.exec(_scoped(PhysicalCount).order_by(PhysicalCount.id)).all()
    movements = session.exec(_scoped(Movement).order_by(Movement.id)).all()

    count_ids = [c.id for c in counts]
    movement_ids = [m.id for m in movements]
    count_details = (
        session.exec(
            select(CountDetail).where(CountDetail.conteo_id.in_(count_ids)).order_by(CountDetail.id)
        ).all()
        if count_ids
        else []
    )
    movement_details = (
        session.exec(
            select(MovementDetail)
            .where(MovementDetail.movimiento_id.in_(movement_ids))
            .order_by(MovementDetail.id)
        ).all()
        if movement_ids
        else []
    )

    logger.info(
        "dataset tenant=%s: %d products, %d locations, %d counts, %d movements",
        tenant_id, len(products), len(locations), len(counts), len(movements),
    )
    return StockDataset(
        products=products,
        locations=locations,
        baselines=baselines,
        counts=counts,
        count_details=count_details,
        movements=movements,
        movement_details=movement_details,
    )


# --------------------------------------------------------------------------- #
# tabular exports                                                             #
# --------------------------------------------------------------------------- #
def load_dataset_from_frames(frames: Mapping[str, pd.DataFrame]) -> StockDataset:
    """
    Dataset from one DataFrame per collection.

    Keys are collection names (``products``, ``counts`` …) or their Spanish
    export names (``productos``, ``conteos`` …).  Missing collections are empty.
    """
    by_alias = {alias: name for name, aliases in COLLECTIONS.items() for alias in aliases}
    kwargs: Dict[str, Any] = {}
    for key, df in frames.items():
        name = by_alias.get(str(key).strip().lower())
        if name is None:
            raise ValueError(f"Unknown collection: {key!r}")
        if name in kwargs:
            raise ValueError(f"Collection given twice: {name}")
        kwargs[name] = df.to_dict(orient="records")
    return StockDataset(**kwargs)


def load_dataset_from_files(directory: str | Path) -> StockDataset:
    """
    Dataset from a directory of exports, one file per collection
    (``productos.csv``, ``conteos.xlsx`` …).  Unrelated files are ignored.
    """
    root = Path(directory)
    if not root.is_dir():
        raise ValueError(f"Not a directory: {root}")
    by_alias = {alias: name for name, aliases in COLLECTIONS.items() for alias in aliases}

    frames: Dict[str, pd.DataFrame] = {}
    for path in sorted(root.iterdir()):
        if path.suffix.lower() not in (".csv", ".xlsx", ".xls"):
            continue
        name = by_alias.get(path.stem.lower())
        if name is None:
            logger.debug("skipping %s: not a known collection", path.name)
            continue
        if name in frames:
            raise ValueError(f"Collection given twice: {name} ({path.name})")
        frames[name] = read_dataframe(path)
    return load_dataset_from_frames(frames)


__all__ = ["COLLECTIONS", "load_dataset", "load_dataset_from_frames", "load_dataset_from_files"]
