"""Transfer (movement) models.

A movement carries products from an origin location to a destination
location.  Sent quantities are recorded at dispatch, received quantities when
the destination confirms.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class Movement(SQLModel, table=True):
    """Transfer header."""

    __tablename__ = "movement"

    id: str = Field(primary_key=True)
    tenant_id: Optional[str] = Field(default=None, index=True, description="Owning tenant")

    origen_id: Optional[str] = Field(default=None, index=True, description="Origin location")
    destino_id: Optional[str] = Field(default=None, index=True, description="Destination location")

    # pending / in-process / partial / completed / cancelled
    estado: str = Field(default="pending", description="Movement status")
    fecha_creacion: Optional[datetime] = Field(default=None, description="Dispatch date")
    fecha_confirmacion: Optional[datetime] = Field(default=None, description="Confirmation date")


class MovementDetail(SQLModel, table=True):
    """One product line of a transfer."""

    __tablename__ = "movement_detail"

    # primary key (surrogate)
    id: int | None = Field(default=None, primary_key=True)

    movimiento_id: str = Field(index=True, foreign_key="movement.id")
    producto_id: str = Field(index=True, description="Product identifier")

    # payload
    cantidad_enviada: Optional[int] = Field(default=None, description="Quantity sent")
    cantidad_recibida: Optional[int] = Field(default=None, description="Quantity received")
    cantidad: Optional[int] = Field(default=None, description="Generic quantity (legacy rows)")
