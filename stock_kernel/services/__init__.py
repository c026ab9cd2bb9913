"""Kernel services: ledger store and location catalog boundaries."""

from stock_kernel.services.location_catalog import LocationCatalog, StaticLocationCatalog
from stock_kernel.services.movement_store import (
    InMemoryMovementStore,
    MovementStore,
    SqlMovementStore,
)

__all__ = [
    "InMemoryMovementStore",
    "LocationCatalog",
    "MovementStore",
    "SqlMovementStore",
    "StaticLocationCatalog",
]
