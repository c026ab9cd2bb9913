"""
MovementRecord -- the immutable unit of the stock ledger.

Responsibility:
    Defines the append-only record every stock change is expressed as, and
    its JSON wire shape for the REST persistence boundary and replay tools.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    May only import stock_kernel.domain.values.

Invariants enforced:
    - Positive quantity for Entrée / Sortie, zero for inspection records.
    - Lot identity: lot_id is never blank.  It is generated on Entrée and
      propagated unchanged through every downstream Sortie / transfer leg.
    - Slot addressing: sub_location_id and sub_location_kind are set
      together or not at all.
    - created_at is timezone-aware (ledger order must be comparable).

Failure modes:
    - ValueError from __post_init__ on any violated invariant above.
    - KeyError / ValueError from ``from_dict`` on malformed payloads.

Audit relevance:
    record_id is assigned by the store on append and is the tie-break for
    records sharing a created_at; together they define ledger order.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any

from stock_kernel.domain.values import (
    Direction,
    GroupKey,
    ProductType,
    QualityStatus,
    StockKey,
    SubLocationKind,
)


@dataclass(frozen=True, slots=True)
class MovementRecord:
    """
    One immutable ledger event.

    Contract:
        Frozen value object.  Records are never edited after append; a
        correction or a new quality verdict is a new record.
    Guarantees:
        - ``stock_key`` identifies the slot the record affects.
        - ``signed_quantity`` is +quantity for Entrée, -quantity for Sortie,
          0 for inspection records.
    """

    product_id: str
    product_type: ProductType
    direction: Direction
    quantity: int
    location_id: str
    lot_id: str
    created_at: datetime
    sub_location_id: int | None = None
    sub_location_kind: SubLocationKind | None = None
    fabrication_date: date | None = None
    expiration_date: date | None = None
    quality_status: QualityStatus = QualityStatus.PENDING
    is_transfer_leg: bool = False
    record_id: int | None = None
    reason: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"quantity must be an integer, got {self.quantity!r}")
        if self.direction is Direction.INSPECTION:
            if self.quantity != 0:
                raise ValueError("Inspection records carry no quantity")
        elif self.quantity <= 0:
            raise ValueError(f"Movement quantity must be positive, got {self.quantity}")
        if not self.lot_id or not str(self.lot_id).strip():
            raise ValueError("lot_id is required")
        if (self.sub_location_id is None) != (self.sub_location_kind is None):
            raise ValueError(
                "sub_location_id and sub_location_kind must be set together"
            )
        if self.created_at.tzinfo is None:
            raise ValueError("created_at must be timezone-aware")

    @property
    def group_key(self) -> GroupKey:
        return GroupKey(self.lot_id, self.location_id, self.sub_location_id)

    @property
    def stock_key(self) -> StockKey:
        return StockKey(
            self.product_id, self.lot_id, self.location_id, self.sub_location_id
        )

    @property
    def signed_quantity(self) -> int:
        if self.direction is Direction.ENTREE:
            return self.quantity
        if self.direction is Direction.SORTIE:
            return -self.quantity
        return 0

    @property
    def ledger_order(self) -> tuple:
        """Sort key: created_at, then record_id (unassigned ids last)."""
        return (
            self.created_at,
            self.record_id is None,
            self.record_id if self.record_id is not None else 0,
        )

    def with_record_id(self, record_id: int) -> MovementRecord:
        return replace(self, record_id=record_id)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation (enum values, ISO dates)."""
        return {
            "record_id": self.record_id,
            "product_id": self.product_id,
            "product_type": self.product_type.value,
            "direction": self.direction.value,
            "quantity": self.quantity,
            "location_id": self.location_id,
            "sub_location_id": self.sub_location_id,
            "sub_location_kind": (
                self.sub_location_kind.value if self.sub_location_kind else None
            ),
            "lot_id": self.lot_id,
            "fabrication_date": (
                self.fabrication_date.isoformat() if self.fabrication_date else None
            ),
            "expiration_date": (
                self.expiration_date.isoformat() if self.expiration_date else None
            ),
            "quality_status": self.quality_status.value,
            "is_transfer_leg": self.is_transfer_leg,
            "created_at": self.created_at.isoformat(),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MovementRecord:
        kind = data.get("sub_location_kind")
        fab = data.get("fabrication_date")
        exp = data.get("expiration_date")
        return cls(
            record_id=data.get("record_id"),
            product_id=str(data["product_id"]),
            product_type=ProductType(data["product_type"]),
            direction=Direction(data["direction"]),
            quantity=int(data["quantity"]),
            location_id=str(data["location_id"]),
            sub_location_id=data.get("sub_location_id"),
            sub_location_kind=SubLocationKind(kind) if kind else None,
            lot_id=data["lot_id"],
            fabrication_date=date.fromisoformat(fab) if fab else None,
            expiration_date=date.fromisoformat(exp) if exp else None,
            quality_status=QualityStatus.parse(data.get("quality_status")),
            is_transfer_leg=bool(data.get("is_transfer_leg", False)),
            created_at=datetime.fromisoformat(data["created_at"]),
            reason=data.get("reason"),
        )
