"""
Module: stock_engines.aggregation
Responsibility:
    Reconstruct current stock per (lot, location, sub-location) by replaying
    the append-only movement ledger.  Nothing here is persisted: every
    caller recomputes stock from records.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import stock_kernel domain types and exceptions.

Invariants enforced:
    - available = sum(Entrée) - sum(Sortie) per group; groups with
      available <= 0 are omitted from the output.
    - Quality status of a group is the status of its latest contributing
      record by (created_at, record_id); records not yet appended sort
      after stored records with the same created_at.
    - Provenance dates come from the first contributing record in ledger
      order that carries them.
    - PHYSICAL view: a negative availability is an internal consistency
      violation and aborts the read.
    - Deterministic: output is keyed and ordered by GroupKey.

Failure modes:
    - InternalConsistencyError when the PHYSICAL replay goes negative.

Audit relevance:
    Aggregation output is the only source of truth for "what is where";
    idempotent replay (same records, same result) is what allows any stock
    picture to be re-derived from the ledger alone.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass
from datetime import date

from stock_engines.tracer import traced_engine
from stock_kernel.domain.movement import MovementRecord
from stock_kernel.domain.values import (
    Direction,
    GroupKey,
    ProductType,
    QualityStatus,
    StockKey,
    StockView,
    SubLocationKind,
)
from stock_kernel.exceptions import InternalConsistencyError
from stock_kernel.logging_config import get_logger

logger = get_logger("engines.aggregation")


@dataclass(frozen=True, slots=True)
class StockGroup:
    """
    Derived stock for one lot at one slot.

    Contract:
        Frozen snapshot produced by ``aggregate``; never persisted.
    Guarantees:
        - ``available == entree - sortie``.
    Non-goals:
        - Does not know the slot's capacity; see Location / SubLocation.
    """

    key: GroupKey
    product_id: str
    product_type: ProductType
    sub_location_kind: SubLocationKind | None
    entree: int
    sortie: int
    quality_status: QualityStatus
    fabrication_date: date | None = None
    expiration_date: date | None = None

    @property
    def available(self) -> int:
        return self.entree - self.sortie

    @property
    def lot_id(self) -> str:
        return self.key.lot_id

    @property
    def location_id(self) -> str:
        return self.key.location_id

    @property
    def sub_location_id(self) -> int | None:
        return self.key.sub_location_id

    @property
    def stock_key(self) -> StockKey:
        return StockKey(
            self.product_id, self.key.lot_id, self.key.location_id, self.key.sub_location_id
        )


class _Accumulator:
    """Running totals for one group during replay."""

    __slots__ = (
        "product_type",
        "sub_location_kind",
        "entree",
        "sortie",
        "quality_status",
        "fabrication_date",
        "expiration_date",
    )

    def __init__(self, first: MovementRecord):
        self.product_type = first.product_type
        self.sub_location_kind = first.sub_location_kind
        self.entree = 0
        self.sortie = 0
        self.quality_status = first.quality_status
        self.fabrication_date: date | None = None
        self.expiration_date: date | None = None

    def apply(self, record: MovementRecord) -> None:
        if record.direction is Direction.ENTREE:
            self.entree += record.quantity
        elif record.direction is Direction.SORTIE:
            self.sortie += record.quantity
        # Records arrive in ledger order: the last one seen wins
        self.quality_status = record.quality_status
        if self.sub_location_kind is None:
            self.sub_location_kind = record.sub_location_kind
        if self.fabrication_date is None:
            self.fabrication_date = record.fabrication_date
        if self.expiration_date is None:
            self.expiration_date = record.expiration_date


@traced_engine("aggregation", "1.0", fingerprint_fields=("product_id", "view"))
def aggregate(
    records: Iterable[MovementRecord],
    product_id: str,
    view: StockView = StockView.PHYSICAL,
) -> dict[GroupKey, StockGroup]:
    """
    Replay the ledger for one product.

    Args:
        records: Ledger records (any products, any order).
        product_id: Product whose stock is reconstructed.
        view: PHYSICAL includes transfer legs; REPORTING excludes them.

    Returns:
        Groups with positive availability, ordered by key.

    Raises:
        InternalConsistencyError: PHYSICAL view and some group is negative.
    """
    include_legs = view is StockView.PHYSICAL
    selected = [
        r
        for r in records
        if r.product_id == product_id and (include_legs or not r.is_transfer_leg)
    ]
    selected.sort(key=lambda r: r.ledger_order)

    totals: dict[GroupKey, _Accumulator] = {}
    for record in selected:
        acc = totals.get(record.group_key)
        if acc is None:
            acc = totals[record.group_key] = _Accumulator(record)
        acc.apply(record)

    groups: dict[GroupKey, StockGroup] = {}
    for key in sorted(totals):
        acc = totals[key]
        available = acc.entree - acc.sortie
        if available < 0:
            if include_legs:
                logger.critical(
                    "negative_stock_detected",
                    extra={
                        "product_id": product_id,
                        "group_key": str(key),
                        "entree": acc.entree,
                        "sortie": acc.sortie,
                    },
                )
                raise InternalConsistencyError(
                    f"stock of {product_id} at {key} is negative "
                    f"({acc.entree} in, {acc.sortie} out)"
                )
            continue
        if available == 0:
            continue
        groups[key] = StockGroup(
            key=key,
            product_id=product_id,
            product_type=acc.product_type,
            sub_location_kind=acc.sub_location_kind,
            entree=acc.entree,
            sortie=acc.sortie,
            quality_status=acc.quality_status,
            fabrication_date=acc.fabrication_date,
            expiration_date=acc.expiration_date,
        )

    logger.debug(
        "aggregation_completed",
        extra={
            "product_id": product_id,
            "view": view.value,
            "record_count": len(selected),
            "group_count": len(groups),
        },
    )
    return groups


def candidates(
    groups: Mapping[GroupKey, StockGroup] | Iterable[StockGroup],
    lot_id: str | None = None,
    location_ids: Collection[str] | None = None,
) -> list[StockGroup]:
    """Groups narrowed to one lot and/or a set of locations, sorted by key."""
    values = groups.values() if isinstance(groups, Mapping) else groups
    selected = [
        g
        for g in values
        if (lot_id is None or g.lot_id == lot_id)
        and (location_ids is None or g.location_id in location_ids)
    ]
    selected.sort(key=lambda g: g.key.sort_key())
    return selected


def movement_history(
    records: Iterable[MovementRecord],
    product_id: str,
) -> list[MovementRecord]:
    """Plain Entrée / Sortie records of one product, in ledger order."""
    history = [
        r
        for r in records
        if r.product_id == product_id
        and not r.is_transfer_leg
        and r.direction is not Direction.INSPECTION
    ]
    history.sort(key=lambda r: r.ledger_order)
    return history


def ledger_versions(records: Iterable[MovementRecord]) -> dict[StockKey, int]:
    """Number of records per stock key: the token checked by compare-and-append."""
    return dict(Counter(r.stock_key for r in records))


def total_available(
    groups: Mapping[GroupKey, StockGroup] | Iterable[StockGroup],
) -> int:
    values = groups.values() if isinstance(groups, Mapping) else groups
    return sum(g.available for g in values)
