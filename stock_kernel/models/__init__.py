"""ORM models for the stock ledger."""

from stock_kernel.models.movement import MovementModel, StockKeyVersion

__all__ = ["MovementModel", "StockKeyVersion"]
