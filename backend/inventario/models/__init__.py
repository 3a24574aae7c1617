"""
Aggregate export for all SQLModel table classes.

Having each model re-exported here guarantees that
`import inventario.models` registers every table in
`SQLModel.metadata`, so `create_all` (and migration tooling) can
discover them.
"""

# --- Catalog & locations ---------------------------------------------------
from .catalog import BaselineSnapshot, Location, Product  # noqa: F401

# --- Physical counts -------------------------------------------------------
from .counts import CountDetail, PhysicalCount  # noqa: F401

# --- Movements (transfers) -------------------------------------------------
from .movements import Movement, MovementDetail  # noqa: F401

__all__ = [
    "Product",
    "Location",
    "BaselineSnapshot",
    "PhysicalCount",
    "CountDetail",
    "Movement",
    "MovementDetail",
]
