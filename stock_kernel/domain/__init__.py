"""Pure domain types for the stock kernel."""

from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.location import Location, SubLocation
from stock_kernel.domain.lot_number import generate_lot_id
from stock_kernel.domain.movement import MovementRecord
from stock_kernel.domain.values import (
    Direction,
    GroupKey,
    ProductType,
    QualityStatus,
    ScanPayload,
    StockKey,
    StockView,
    SubLocationKind,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "Location",
    "SubLocation",
    "generate_lot_id",
    "MovementRecord",
    "Direction",
    "GroupKey",
    "ProductType",
    "QualityStatus",
    "ScanPayload",
    "StockKey",
    "StockView",
    "SubLocationKind",
]
