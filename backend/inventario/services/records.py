"""
records.py
==========

Typed, read-only views over the raw records the stock engine consumes, plus
the in-memory :class:`StockDataset` that indexes them.

Records reach the engine as plain mappings (spreadsheet rows, document-store
payloads) or as SQLModel instances.  Every adapter is a frozen dataclass
built with ``from_raw``, which never raises: missing or malformed fields
degrade to ``None`` (dates, ids, statuses) or ``0`` (quantities, after the
fallback chain).

Field names follow the stored documents (``estado``, ``fecha_completado`` …);
a few historical aliases (``ubicacion_id``, ``stock_actual`` …) are accepted
as well.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
import math
import re
import unicodedata
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

Quantity = Union[int, float]

_FLAG_TRUE = {"SI", "SÍ", "S", "TRUE", "T", "YES", "Y", "1", "X"}
_EPOCH_MS = re.compile(r"^-?\d+(\.\d+)?$")


# --------------------------------------------------------------------------- #
# value helpers                                                               #
# --------------------------------------------------------------------------- #
def _is_blank(val: Any) -> bool:
    if val is None or val is pd.NaT or val is pd.NA:
        return True
    if isinstance(val, float) and math.isnan(val):
        return True
    if isinstance(val, str) and val.strip() == "":
        return True
    return False


def _field(raw: Any, *names: str) -> Any:
    """Return the first non-blank value among *names* (mapping key or attribute)."""
    for name in names:
        if isinstance(raw, Mapping):
            val = raw.get(name)
        else:
            val = getattr(raw, name, None)
        if not _is_blank(val):
            return val
    return None


def first_present(*values: Any, default: Quantity = 0) -> Any:
    """Return the first value that is present, else *default*.

    This is the one place where quantity precedence is decided.  Callers pass
    candidates in priority order, e.g. ``physical -> system`` for counted
    quantities and ``received -> generic`` for movement lines; anything
    missing falls through to the next candidate and finally to *default*.
    """
    for val in values:
        if not _is_blank(val):
            return val
    return default


def clean_id(val: Any) -> Optional[str]:
    """Canonical string id; blanks become ``None``."""
    if _is_blank(val) or isinstance(val, bool):
        return None
    if isinstance(val, float) and val.is_integer():
        val = int(val)
    txt = str(val).strip()
    return txt or None


def parse_quantity(val: Any) -> Optional[Quantity]:
    """
    Convert *val* to a number, or ``None`` when it is missing or unparseable.

    * accepts ints, floats, ``Decimal`` and numeric strings
    * thousands separators ("1,234") and full-width digits are tolerated
    * integral values are returned as ``int``
    """
    if _is_blank(val) or isinstance(val, bool):
        return None
    if isinstance(val, int):
        return val
    if isinstance(val, Decimal):
        try:
            val = float(val)
        except (InvalidOperation, ValueError):
            return None
    if not isinstance(val, float):
        cleaned = unicodedata.normalize("NFKC", str(val)).replace(",", "").strip()
        try:
            val = float(cleaned)
        except ValueError:
            return None
    if not math.isfinite(val):
        return None
    return int(val) if val.is_integer() else val


def parse_flag(val: Any) -> bool:
    """Boolean flag; spreadsheets store it as ``"SI"`` / ``"NO"``."""
    if _is_blank(val):
        return False
    if isinstance(val, bool):
        return val
    if isinstance(val, (int, float)):
        return val != 0
    return unicodedata.normalize("NFKC", str(val)).strip().upper() in _FLAG_TRUE


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _from_epoch_ms(val: float) -> Optional[datetime]:
    if not math.isfinite(val):
        return None
    try:
        return datetime.fromtimestamp(val / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(val: Any) -> Optional[datetime]:
    """
    Convert *val* into an aware UTC ``datetime`` or ``None``.

    Accepted inputs:

    * ``datetime`` / ``pandas.Timestamp`` (naive values are UTC)
    * ``date`` (midnight UTC)
    * epoch milliseconds as int/float, or as a string of digits
    * Firestore timestamps serialised as ``{"seconds": .., "nanoseconds": ..}``
      (or the ``_seconds`` / ``_nanoseconds`` REST variant)
    * any string ``pandas.to_datetime`` understands

    Unparseable input means "no temporal information" and yields ``None``.
    """
    if _is_blank(val) or isinstance(val, bool):
        return None

    if isinstance(val, Mapping):
        secs = first_present(val.get("seconds"), val.get("_seconds"), default=None)
        if secs is None:
            return None
        nanos = first_present(val.get("nanoseconds"), val.get("_nanoseconds"), default=0)
        try:
            return datetime.fromtimestamp(float(secs) + float(nanos) / 1e9, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            return None

    if isinstance(val, datetime):
        return as_utc(val)

    if isinstance(val, date):
        return datetime(val.year, val.month, val.day, tzinfo=timezone.utc)

    if isinstance(val, (int, float)):
        return _from_epoch_ms(val)

    txt = str(val).strip()
    # spreadsheet exports keep epoch dates as digit strings
    if _EPOCH_MS.match(txt):
        return _from_epoch_ms(float(txt))

    try:
        ts = pd.to_datetime(txt, errors="coerce", utc=True)
    except (TypeError, ValueError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    return ts.to_pydatetime()


def _status_token(val: Any) -> str:
    txt = unicodedata.normalize("NFKC", str(val)).strip().upper()
    for sep in ("-", " "):
        txt = txt.replace(sep, "_")
    return txt


# --------------------------------------------------------------------------- #
# statuses                                                                    #
# --------------------------------------------------------------------------- #
class CountStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially-completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, val: Any) -> Optional["CountStatus"]:
        if _is_blank(val):
            return None
        return _COUNT_STATUS_ALIASES.get(_status_token(val))


class MovementStatus(str, Enum):
    PENDING = "pending"
    IN_PROCESS = "in-process"
    PARTIAL = "partial"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, val: Any) -> Optional["MovementStatus"]:
        if _is_blank(val):
            return None
        return _MOVEMENT_STATUS_ALIASES.get(_status_token(val))


_COUNT_STATUS_ALIASES: dict[str, CountStatus] = {
    "PENDING": CountStatus.PENDING,
    "PENDIENTE": CountStatus.PENDING,
    "PROGRAMADO": CountStatus.PENDING,
    "IN_PROGRESS": CountStatus.IN_PROGRESS,
    "EN_PROGRESO": CountStatus.IN_PROGRESS,
    "EN_PROCESO": CountStatus.IN_PROGRESS,
    "COMPLETED": CountStatus.COMPLETED,
    "COMPLETADO": CountStatus.COMPLETED,
    "PARTIALLY_COMPLETED": CountStatus.PARTIALLY_COMPLETED,
    "PARCIALMENTE_COMPLETADO": CountStatus.PARTIALLY_COMPLETED,
    "CANCELLED": CountStatus.CANCELLED,
    "CANCELED": CountStatus.CANCELLED,
    "CANCELADO": CountStatus.CANCELLED,
}

_MOVEMENT_STATUS_ALIASES: dict[str, MovementStatus] = {
    "PENDING": MovementStatus.PENDING,
    "PENDIENTE": MovementStatus.PENDING,
    "IN_PROCESS": MovementStatus.IN_PROCESS,
    "IN_PROGRESS": MovementStatus.IN_PROCESS,
    "EN_PROCESO": MovementStatus.IN_PROCESS,
    "PARTIAL": MovementStatus.PARTIAL,
    "PARCIAL": MovementStatus.PARTIAL,
    "COMPLETED": MovementStatus.COMPLETED,
    "COMPLETADO": MovementStatus.COMPLETED,
    "CANCELLED": MovementStatus.CANCELLED,
    "CANCELED": MovementStatus.CANCELLED,
    "CANCELADO": MovementStatus.CANCELLED,
}

ELIGIBLE_COUNT_STATUSES = frozenset({CountStatus.COMPLETED, CountStatus.PARTIALLY_COMPLETED})
ELIGIBLE_MOVEMENT_STATUSES = frozenset(
    {MovementStatus.COMPLETED, MovementStatus.PARTIAL, MovementStatus.IN_PROCESS}
)


# --------------------------------------------------------------------------- #
# record adapters                                                             #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class ProductRecord:
    id: str
    stock_minimo: Quantity = 0
    nombre: Optional[str] = None
    tenant_id: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["ProductRecord"]:
        pid = clean_id(_field(raw, "id", "producto_id", "product_id"))
        if pid is None:
            return None
        nombre = _field(raw, "nombre", "name")
        return cls(
            id=pid,
            stock_minimo=first_present(parse_quantity(_field(raw, "stock_minimo")), default=0),
            nombre=str(nombre) if nombre is not None else None,
            tenant_id=clean_id(_field(raw, "tenant_id")),
        )


@dataclass(frozen=True)
class LocationRecord:
    id: str
    nombre: Optional[str] = None
    tenant_id: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["LocationRecord"]:
        lid = clean_id(_field(raw, "id", "ubicacion_id", "location_id"))
        if lid is None:
            return None
        nombre = _field(raw, "nombre", "name")
        return cls(
            id=lid,
            nombre=str(nombre) if nombre is not None else None,
            tenant_id=clean_id(_field(raw, "tenant_id")),
        )


@dataclass(frozen=True)
class BaselineRecord:
    product_id: str
    location_id: str
    quantity: Quantity = 0

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["BaselineRecord"]:
        pid = clean_id(_field(raw, "product_id", "producto_id"))
        lid = clean_id(_field(raw, "location_id", "ubicacion_id"))
        if pid is None or lid is None:
            return None
        qty = parse_quantity(_field(raw, "quantity", "stock_actual", "cantidad"))
        return cls(product_id=pid, location_id=lid, quantity=first_present(qty, default=0))


@dataclass(frozen=True)
class PhysicalCountRecord:
    id: str
    location_id: Optional[str]
    estado: Optional[CountStatus]
    fecha_programada: Optional[datetime] = None
    fecha_completado: Optional[datetime] = None

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["PhysicalCountRecord"]:
        cid = clean_id(_field(raw, "id", "conteo_id"))
        if cid is None:
            return None
        return cls(
            id=cid,
            location_id=clean_id(_field(raw, "location_id", "ubicacion_id")),
            estado=CountStatus.parse(_field(raw, "estado", "status")),
            fecha_programada=parse_timestamp(_field(raw, "fecha_programada")),
            fecha_completado=parse_timestamp(_field(raw, "fecha_completado")),
        )

    @property
    def effective_date(self) -> Optional[datetime]:
        """Completion date if present, else scheduled date."""
        return first_present(self.fecha_completado, self.fecha_programada, default=None)

    @property
    def is_eligible(self) -> bool:
        return self.estado in ELIGIBLE_COUNT_STATUSES


@dataclass(frozen=True)
class CountDetailRecord:
    conteo_id: str
    producto_id: str
    cantidad_fisica: Optional[Quantity] = None
    cantidad_sistema: Optional[Quantity] = None
    contado: bool = False

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["CountDetailRecord"]:
        cid = clean_id(_field(raw, "conteo_id"))
        pid = clean_id(_field(raw, "producto_id", "product_id"))
        if cid is None or pid is None:
            return None
        return cls(
            conteo_id=cid,
            producto_id=pid,
            cantidad_fisica=parse_quantity(_field(raw, "cantidad_fisica")),
            cantidad_sistema=parse_quantity(_field(raw, "cantidad_sistema")),
            contado=parse_flag(_field(raw, "contado")),
        )

    @property
    def base_quantity(self) -> Quantity:
        return first_present(self.cantidad_fisica, self.cantidad_sistema, default=0)


@dataclass(frozen=True)
class MovementRecord:
    id: str
    origen_id: Optional[str]
    destino_id: Optional[str]
    estado: Optional[MovementStatus]
    fecha_creacion: Optional[datetime] = None
    fecha_confirmacion: Optional[datetime] = None

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["MovementRecord"]:
        mid = clean_id(_field(raw, "id", "movimiento_id"))
        if mid is None:
            return None
        return cls(
            id=mid,
            origen_id=clean_id(_field(raw, "origen_id")),
            destino_id=clean_id(_field(raw, "destino_id")),
            estado=MovementStatus.parse(_field(raw, "estado", "status")),
            fecha_creacion=parse_timestamp(_field(raw, "fecha_creacion")),
            fecha_confirmacion=parse_timestamp(_field(raw, "fecha_confirmacion")),
        )

    @property
    def effective_date(self) -> Optional[datetime]:
        """Confirmation date if present, else creation date."""
        return first_present(self.fecha_confirmacion, self.fecha_creacion, default=None)

    @property
    def is_eligible(self) -> bool:
        return self.estado in ELIGIBLE_MOVEMENT_STATUSES


@dataclass(frozen=True)
class MovementDetailRecord:
    movimiento_id: str
    producto_id: str
    cantidad_enviada: Optional[Quantity] = None
    cantidad_recibida: Optional[Quantity] = None
    cantidad: Optional[Quantity] = None

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["MovementDetailRecord"]:
        mid = clean_id(_field(raw, "movimiento_id"))
        pid = clean_id(_field(raw, "producto_id", "product_id"))
        if mid is None or pid is None:
            return None
        return cls(
            movimiento_id=mid,
            producto_id=pid,
            cantidad_enviada=parse_quantity(_field(raw, "cantidad_enviada")),
            cantidad_recibida=parse_quantity(_field(raw, "cantidad_recibida")),
            cantidad=parse_quantity(_field(raw, "cantidad")),
        )

    @property
    def received_quantity(self) -> Quantity:
        return first_present(self.cantidad_recibida, self.cantidad, default=0)

    @property
    def sent_quantity(self) -> Quantity:
        return first_present(self.cantidad_enviada, self.cantidad, default=0)


def _adapt(rows: Iterable[Any] | None, adapter: type) -> tuple:
    out = []
    skipped = 0
    for raw in rows or ():
        rec = raw if isinstance(raw, adapter) else adapter.from_raw(raw)
        if rec is None:
            skipped += 1
            continue
        out.append(rec)
    if skipped:
        logger.debug("%s: skipped %d rows without identifiers", adapter.__name__, skipped)
    return tuple(out)


# --------------------------------------------------------------------------- #
# dataset                                                                     #
# --------------------------------------------------------------------------- #
class StockDataset:
    """
    Immutable working set for one tenant/date scope.

    The collections are adapted once and indexed for the lookups the
    resolver performs per (product, location) pair.  Nothing mutates the
    dataset after construction, so it can be shared between threads.
    """

    def __init__(
        self,
        *,
        products: Iterable[Any] | None = None,
        locations: Iterable[Any] | None = None,
        baselines: Iterable[Any] | None = None,
        counts: Iterable[Any] | None = None,
        count_details: Iterable[Any] | None = None,
        movements: Iterable[Any] | None = None,
        movement_details: Iterable[Any] | None = None,
    ) -> None:
        self.products: tuple[ProductRecord, ...] = _adapt(products, ProductRecord)
        self.locations: tuple[LocationRecord, ...] = _adapt(locations, LocationRecord)
        self.baselines: tuple[BaselineRecord, ...] = _adapt(baselines, BaselineRecord)
        self.counts: tuple[PhysicalCountRecord, ...] = _adapt(counts, PhysicalCountRecord)
        self.count_details: tuple[CountDetailRecord, ...] = _adapt(count_details, CountDetailRecord)
        self.movements: tuple[MovementRecord, ...] = _adapt(movements, MovementRecord)
        self.movement_details: tuple[MovementDetailRecord, ...] = _adapt(
            movement_details, MovementDetailRecord
        )

        # first occurrence wins for keyed lookups
        self._products: dict[str, ProductRecord] = {}
        for p in self.products:
            self._products.setdefault(p.id, p)
        self._locations: dict[str, LocationRecord] = {}
        for loc in self.locations:
            self._locations.setdefault(loc.id, loc)
        self._baselines: dict[tuple[str, str], BaselineRecord] = {}
        self._baseline_products: dict[str, list[str]] = defaultdict(list)
        for b in self.baselines:
            if (b.product_id, b.location_id) not in self._baselines:
                self._baselines[(b.product_id, b.location_id)] = b
                self._baseline_products[b.location_id].append(b.product_id)

        self._counts_by_location: dict[str, list[PhysicalCountRecord]] = defaultdict(list)
        for c in self.counts:
            if c.location_id is not None:
                self._counts_by_location[c.location_id].append(c)
        self._count_details: dict[tuple[str, str], list[CountDetailRecord]] = defaultdict(list)
        for d in self.count_details:
            self._count_details[(d.conteo_id, d.producto_id)].append(d)

        self._movements_by_location: dict[str, list[MovementRecord]] = defaultdict(list)
        for m in self.movements:
            for loc_id in {m.origen_id, m.destino_id}:
                if loc_id is not None:
                    self._movements_by_location[loc_id].append(m)
        self._movement_details: dict[tuple[str, str], list[MovementDetailRecord]] = defaultdict(list)
        for md in self.movement_details:
            self._movement_details[(md.movimiento_id, md.producto_id)].append(md)

    # ----------------------------- lookups ---------------------------------
    def product(self, product_id: str) -> Optional[ProductRecord]:
        return self._products.get(product_id)

    def has_product(self, product_id: str) -> bool:
        return product_id in self._products

    def has_location(self, location_id: str) -> bool:
        return location_id in self._locations

    def has_baseline(self, product_id: str, location_id: str) -> bool:
        return (product_id, location_id) in self._baselines

    def baseline_quantity(self, product_id: str, location_id: str) -> Quantity:
        rec = self._baselines.get((product_id, location_id))
        return rec.quantity if rec is not None else 0

    def products_at(self, location_id: str) -> list[str]:
        """Products holding a baseline record at *location_id*, in dataset order."""
        return list(self._baseline_products.get(location_id, ()))

    def counts_at(self, location_id: str) -> list[PhysicalCountRecord]:
        return self._counts_by_location.get(location_id, [])

    def count_details_for(self, count_id: str, product_id: str) -> list[CountDetailRecord]:
        return self._count_details.get((count_id, product_id), [])

    def movements_touching(self, location_id: str) -> list[MovementRecord]:
        """Movements whose origin or destination is *location_id*, in dataset order."""
        return self._movements_by_location.get(location_id, [])

    def movement_details_for(self, movement_id: str, product_id: str) -> list[MovementDetailRecord]:
        return self._movement_details.get((movement_id, product_id), [])

    # ----------------------------- identity --------------------------------
    def fingerprint(self) -> str:
        """Content hash of every collection; stable across record order."""
        digest = hashlib.sha256()
        for name in (
            "products",
            "locations",
            "baselines",
            "counts",
            "count_details",
            "movements",
            "movement_details",
        ):
            rows = sorted(
                json.dumps(dataclasses.asdict(rec), sort_keys=True, default=str)
                for rec in getattr(self, name)
            )
            digest.update(name.encode("utf-8"))
            for row in rows:
                digest.update(row.encode("utf-8"))
        return digest.hexdigest()

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<StockDataset products={len(self.products)} locations={len(self.locations)} "
            f"counts={len(self.counts)} movements={len(self.movements)}>"
        )


__all__ = [
    "Quantity",
    "CountStatus",
    "MovementStatus",
    "ELIGIBLE_COUNT_STATUSES",
    "ELIGIBLE_MOVEMENT_STATUSES",
    "ProductRecord",
    "LocationRecord",
    "BaselineRecord",
    "PhysicalCountRecord",
    "CountDetailRecord",
    "MovementRecord",
    "MovementDetailRecord",
    "StockDataset",
    "first_present",
    "clean_id",
    "parse_quantity",
    "parse_flag",
    "parse_timestamp",
    "as_utc",
]
