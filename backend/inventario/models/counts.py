"""Physical count models.

A count header is scheduled for one location; its detail rows record the
quantity found for each product while the count is executed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class PhysicalCount(SQLModel, table=True):
    """Count event header."""

    __tablename__ = "physical_count"

    id: str = Field(primary_key=True)
    tenant_id: Optional[str] = Field(default=None, index=True, description="Owning tenant")
    location_id: str = Field(index=True, foreign_key="location.id")

    # pending / in-progress / completed / partially-completed / cancelled
    estado: str = Field(default="pending", description="Count status")
    fecha_programada: Optional[datetime] = Field(default=None, description="Scheduled date")
    fecha_completado: Optional[datetime] = Field(default=None, description="Completion date")


class CountDetail(SQLModel, table=True):
    """One product's counted quantity within a count."""

    __tablename__ = "count_detail"

    # primary key (surrogate)
    id: int | None = Field(default=None, primary_key=True)

    conteo_id: str = Field(index=True, foreign_key="physical_count.id")
    producto_id: str = Field(index=True, description="Product identifier")

    # payload
    cantidad_fisica: Optional[int] = Field(default=None, description="Quantity found on the shelf")
    cantidad_sistema: Optional[int] = Field(default=None, description="Quantity the system expected")
    contado: bool = Field(default=False, description="Product was actually counted")
