"""
Turn allocation and distribution plans into ledger records.

Engines never read the clock: every function takes ``created_at``
explicitly.  Lot provenance (fabrication / expiration dates, quality
status) is copied from the source group so that a lot keeps its identity
through every Sortie and transfer leg.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime

from stock_engines.aggregation import StockGroup
from stock_engines.distribution import DistributionPlan
from stock_engines.fifo import AllocationPlan
from stock_kernel.domain.movement import MovementRecord
from stock_kernel.domain.values import Direction, ProductType, QualityStatus


def entree_records(
    plan: DistributionPlan,
    *,
    product_id: str,
    product_type: ProductType,
    lot_id: str,
    created_at: datetime,
    quality_status: QualityStatus = QualityStatus.PENDING,
    fabrication_date: date | None = None,
    expiration_date: date | None = None,
    is_transfer_leg: bool = False,
    reason: str | None = None,
) -> list[MovementRecord]:
    """One Entrée per slot that receives stock, in plan order."""
    return [
        MovementRecord(
            product_id=product_id,
            product_type=product_type,
            direction=Direction.ENTREE,
            quantity=line.quantity_placed,
            location_id=line.location_id,
            sub_location_id=line.sub_location_id,
            sub_location_kind=line.sub_location_kind,
            lot_id=lot_id,
            fabrication_date=fabrication_date,
            expiration_date=expiration_date,
            quality_status=quality_status,
            is_transfer_leg=is_transfer_leg,
            created_at=created_at,
            reason=reason,
        )
        for line in plan.placements()
    ]


def sortie_records(
    plan: AllocationPlan | Iterable[tuple[StockGroup, int]],
    *,
    created_at: datetime,
    is_transfer_leg: bool = False,
    reason: str | None = None,
) -> list[MovementRecord]:
    """
    One Sortie per (group, quantity) take.

    ``plan`` is either an AllocationPlan or explicit takes, as produced by
    a scan session where the operator confirmed less than planned.
    """
    takes = plan.takes() if isinstance(plan, AllocationPlan) else plan
    records: list[MovementRecord] = []
    for group, quantity in takes:
        if quantity <= 0:
            continue
        records.append(
            MovementRecord(
                product_id=group.product_id,
                product_type=group.product_type,
                direction=Direction.SORTIE,
                quantity=quantity,
                location_id=group.location_id,
                sub_location_id=group.sub_location_id,
                sub_location_kind=group.sub_location_kind,
                lot_id=group.lot_id,
                fabrication_date=group.fabrication_date,
                expiration_date=group.expiration_date,
                quality_status=group.quality_status,
                is_transfer_leg=is_transfer_leg,
                created_at=created_at,
                reason=reason,
            )
        )
    return records


def inspection_record(
    group: StockGroup,
    status: QualityStatus,
    *,
    created_at: datetime,
    reason: str | None = None,
) -> MovementRecord:
    """A quality verdict at the group's key; moves no stock."""
    return MovementRecord(
        product_id=group.product_id,
        product_type=group.product_type,
        direction=Direction.INSPECTION,
        quantity=0,
        location_id=group.location_id,
        sub_location_id=group.sub_location_id,
        sub_location_kind=group.sub_location_kind,
        lot_id=group.lot_id,
        fabrication_date=group.fabrication_date,
        expiration_date=group.expiration_date,
        quality_status=status,
        created_at=created_at,
        reason=reason,
    )
