"""
Module: stock_kernel.models.movement
Responsibility: ORM persistence for the append-only movement ledger and the
    per-key version counters that back compare-and-append.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.

Invariants enforced:
    - Append-only: movement rows are never updated or deleted (ORM listeners
      in db/immutability.py reject both).
    - One version row per (product, lot, location, sub-location) key.  Its
      ``version`` equals the number of movement rows for that key and is the
      token checked by compare-and-append.

Failure modes:
    - IntegrityError on concurrent creation of the same version row; the
      store maps it to LedgerConflictError.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base
from stock_kernel.domain.values import (
    Direction,
    ProductType,
    QualityStatus,
    SubLocationKind,
)


def _values(enum_cls):
    return [member.value for member in enum_cls]


class MovementModel(Base):
    """
    Persistent storage for one ledger record.

    Contract:
        Mirrors ``MovementRecord`` field for field; ``id`` is the record_id.
    Non-goals:
        Stores no derived stock.  Availability is always recomputed by the
        aggregator from these rows.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        # Query: the ledger slice of one product, in ledger order
        Index("idx_movement_product_created", "product_id", "created_at"),
        # Query: all rows of one lot
        Index("idx_movement_lot", "product_id", "lot_id"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    product_type: Mapped[ProductType] = mapped_column(
        Enum(ProductType, values_callable=_values, native_enum=False, length=20),
        nullable=False,
    )

    direction: Mapped[Direction] = mapped_column(
        Enum(Direction, values_callable=_values, native_enum=False, length=20),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    location_id: Mapped[str] = mapped_column(String(100), nullable=False)

    sub_location_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    sub_location_kind: Mapped[SubLocationKind | None] = mapped_column(
        Enum(SubLocationKind, values_callable=_values, native_enum=False, length=10),
        nullable=True,
    )

    lot_id: Mapped[str] = mapped_column(String(120), nullable=False)

    fabrication_date: Mapped[date | None] = mapped_column(nullable=True)

    expiration_date: Mapped[date | None] = mapped_column(nullable=True)

    quality_status: Mapped[QualityStatus] = mapped_column(
        Enum(QualityStatus, values_callable=_values, native_enum=False, length=20),
        nullable=False,
    )

    is_transfer_leg: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class StockKeyVersion(Base):
    """
    Version counter for one stock key.

    Each row is locked (SELECT ... FOR UPDATE) while an append touching its
    key is in flight, which serializes read-aggregate-append per key.
    """

    __tablename__ = "stock_key_versions"

    stock_key: Mapped[str] = mapped_column(String(400), nullable=False, unique=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
