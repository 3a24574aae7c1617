from __future__ import annotations

from typing import Optional

from sqlmodel import Field, SQLModel


class Product(SQLModel, table=True):
    __tablename__ = "product"

    id: str = Field(primary_key=True)
    tenant_id: Optional[str] = Field(default=None, index=True, description="Owning tenant")
    nombre: Optional[str] = Field(default=None, description="Display name")
    # Alert threshold; consumers compare resolved quantities against it
    stock_minimo: int = Field(default=0, description="Minimum stock")


class Location(SQLModel, table=True):
    """A warehouse or point of sale."""

    __tablename__ = "location"

    id: str = Field(primary_key=True)
    tenant_id: Optional[str] = Field(default=None, index=True, description="Owning tenant")
    nombre: Optional[str] = Field(default=None, description="Display name")


class BaselineSnapshot(SQLModel, table=True):
    """Last known stock for a (product, location) before any count exists."""

    __tablename__ = "baseline_snapshot"

    # composite primary key
    product_id: str = Field(primary_key=True, foreign_key="product.id")
    location_id: str = Field(primary_key=True, foreign_key="location.id")

    tenant_id: Optional[str] = Field(default=None, index=True, description="Owning tenant")
    quantity: int = Field(default=0, description="Units on hand")
