"""
Module: stock_services.transfer_coordinator
Responsibility:
    Plan an atomic move of one lot from a source location to a destination
    location as paired Sortie / Entrée transfer legs.

Architecture position:
    Services -- stateless orchestration over the pure engines.  Builds
    records only; the caller appends them in a single store call, which is
    what makes the transfer all-or-nothing.

Invariants enforced:
    - Source and destination differ.
    - A transfer never originates stock: the lot must have history at the
      source location.
    - Conservation: sum of Sortie legs == sum of Entrée legs == quantity.
    - Lot identity: every leg carries the source lot id, quality status
      and provenance dates; every leg is flagged ``is_transfer_leg``.

Failure modes:
    - InvalidTransferError (same_location, lot_not_at_source,
      no_available_stock, mixed_quality).
    - InsufficientStockError when the source holds less than requested.
    - InsufficientCapacityError when the destination cannot take it.
    - InternalConsistencyError when the legs do not balance.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass
from datetime import datetime

from stock_engines.aggregation import StockGroup, aggregate, candidates
from stock_engines.distribution import (
    CapacitySlot,
    DistributionPlan,
    distribute,
    fill_slots,
)
from stock_engines.materialize import entree_records, sortie_records
from stock_kernel.domain.location import Location
from stock_kernel.domain.movement import MovementRecord
from stock_kernel.domain.values import StockKey
from stock_kernel.exceptions import (
    InsufficientStockError,
    InternalConsistencyError,
    InvalidTransferError,
)
from stock_kernel.logging_config import get_logger

logger = get_logger("services.transfer")


@dataclass(frozen=True)
class TransferResult:
    """
    The planned legs of one transfer.

    Guarantees:
        - ``sum(sortie_legs) == sum(entree_legs) == quantity``.
    """

    lot_id: str
    quantity: int
    sortie_legs: tuple[MovementRecord, ...]
    entree_legs: tuple[MovementRecord, ...]
    source_plan: DistributionPlan
    destination_plan: DistributionPlan

    @property
    def records(self) -> list[MovementRecord]:
        """Legs in append order: Sorties first, then Entrées."""
        return [*self.sortie_legs, *self.entree_legs]

    @property
    def touched_keys(self) -> set[StockKey]:
        return {r.stock_key for r in self.records}


class TransferCoordinator:
    """
    Plans location-to-location transfers.

    Contract:
        ``transfer`` reads nothing and writes nothing: it is handed the
        product's ledger records and returns the legs to append.
    """

    def transfer(
        self,
        records: Sequence[MovementRecord],
        product_id: str,
        lot_id: str,
        quantity: int | None,
        source: Location,
        destination: Location,
        created_at: datetime,
        source_sub_location_ids: Collection[int] | None = None,
        reason: str | None = None,
    ) -> TransferResult:
        """
        Plan moving ``quantity`` of ``lot_id`` from ``source`` to ``destination``.

        Args:
            quantity: Units to move, or None to move everything available.
            source_sub_location_ids: Restrict the Sortie side to these floors.
        """
        src_id = source.location_id
        dst_id = destination.location_id

        def reject(why: str) -> InvalidTransferError:
            logger.warning(
                "transfer_rejected",
                extra={"reason": why, "lot_id": lot_id, "source": src_id, "destination": dst_id},
            )
            return InvalidTransferError(why, lot_id, src_id, dst_id)

        if src_id == dst_id:
            raise reject("same_location")

        if not any(
            r.product_id == product_id and r.lot_id == lot_id and r.location_id == src_id
            for r in records
        ):
            raise reject("lot_not_at_source")

        groups = candidates(aggregate(records, product_id), lot_id=lot_id, location_ids={src_id})
        if source_sub_location_ids is not None:
            wanted = set(source_sub_location_ids)
            groups = [g for g in groups if g.sub_location_id in wanted]
        groups = _in_catalog_order(groups, source)

        available = sum(g.available for g in groups)
        if quantity is None:
            if available == 0:
                raise reject("no_available_stock")
            quantity = available
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValueError(f"Transfer quantity must be a positive integer, got {quantity!r}")
        if quantity > available:
            logger.warning(
                "transfer_insufficient_stock",
                extra={"lot_id": lot_id, "requested": quantity, "available": available},
            )
            raise InsufficientStockError(
                requested=quantity, available=available, product_id=product_id, lot_id=lot_id
            )

        if len({g.quality_status for g in groups}) > 1:
            raise reject("mixed_quality")

        # Source groups act as a zone whose capacities are their availabilities
        by_slot = {(g.location_id, g.sub_location_id): g for g in groups}
        source_plan = fill_slots(
            quantity,
            [
                CapacitySlot(g.location_id, g.sub_location_id, g.sub_location_kind, g.available)
                for g in groups
            ],
        )
        if not source_plan.is_complete:
            raise InternalConsistencyError(
                f"source of lot {lot_id} could not yield {quantity} despite availability {available}"
            )
        destination_plan = distribute(quantity, [destination]).require_complete()

        first = groups[0]
        sortie_legs = sortie_records(
            [
                (by_slot[(line.location_id, line.sub_location_id)], line.quantity_placed)
                for line in source_plan.placements()
            ],
            created_at=created_at,
            is_transfer_leg=True,
            reason=reason,
        )
        entree_legs = entree_records(
            destination_plan,
            product_id=product_id,
            product_type=first.product_type,
            lot_id=lot_id,
            created_at=created_at,
            quality_status=first.quality_status,
            fabrication_date=first.fabrication_date,
            expiration_date=first.expiration_date,
            is_transfer_leg=True,
            reason=reason,
        )

        moved_out = sum(r.quantity for r in sortie_legs)
        moved_in = sum(r.quantity for r in entree_legs)
        if moved_out != quantity or moved_in != quantity:
            logger.critical(
                "transfer_legs_unbalanced",
                extra={"lot_id": lot_id, "quantity": quantity, "out": moved_out, "in": moved_in},
            )
            raise InternalConsistencyError(
                f"transfer of lot {lot_id} does not balance: {moved_out} out, {moved_in} in"
            )

        logger.info(
            "transfer_planned",
            extra={
                "lot_id": lot_id,
                "quantity": quantity,
                "source": src_id,
                "destination": dst_id,
                "leg_count": len(sortie_legs) + len(entree_legs),
            },
        )
        return TransferResult(
            lot_id=lot_id,
            quantity=quantity,
            sortie_legs=tuple(sortie_legs),
            entree_legs=tuple(entree_legs),
            source_plan=source_plan,
            destination_plan=destination_plan,
        )


def _in_catalog_order(groups: list[StockGroup], location: Location) -> list[StockGroup]:
    # Location-level stock first, then floors in catalog order, unknown floors last
    position = {sub.sub_location_id: i for i, sub in enumerate(location.sub_locations)}

    def order(group: StockGroup) -> tuple:
        if group.sub_location_id is None:
            return (0, 0, group.key.sort_key())
        return (1, position.get(group.sub_location_id, len(position)), group.key.sort_key())

    return sorted(groups, key=order)
