"""
Module: stock_engines.fifo
Responsibility:
    Allocate an outbound quantity across existing stock groups with a
    deterministic FIFO policy gated by quality status.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import stock_kernel domain types and sibling engine modules.

Invariants enforced:
    - Only groups whose quality status equals the filter and whose
      availability is positive are eligible.
    - Order: expiration date ascending (missing = far future), then
      fabrication date ascending (missing = oldest possible), then lot id,
      then (location, sub-location) so a lot split across slots is walked
      in a stable order.
    - Greedy walk: each line takes min(available, remaining); no line ever
      takes zero.
    - allocated + shortfall == requested.

Failure modes:
    - ValueError when quantity is not a positive integer.
    - Partial plans are returned, not raised; callers decide through
      ``AllocationPlan.require_complete()``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date

from stock_engines.aggregation import StockGroup
from stock_engines.tracer import traced_engine
from stock_kernel.domain.values import GroupKey, QualityStatus
from stock_kernel.exceptions import InsufficientStockError
from stock_kernel.logging_config import get_logger

logger = get_logger("engines.fifo")


@dataclass(frozen=True, slots=True)
class AllocationLine:
    """Quantity taken from one stock group."""

    group: StockGroup
    quantity_taken: int

    @property
    def key(self) -> GroupKey:
        return self.group.key


@dataclass(frozen=True)
class AllocationPlan:
    """
    Result of a FIFO allocation.

    Contract:
        Frozen dataclass; lines are in FIFO order.
    Guarantees:
        - ``allocated == sum(line.quantity_taken)``.
        - ``allocated + shortfall == requested``.
    Non-goals:
        - Does not reserve stock.  The plan is only valid against the
          ledger it was computed from.
    """

    lines: tuple[AllocationLine, ...]
    requested: int
    allocated: int
    quality_filter: QualityStatus
    product_id: str | None = None

    @property
    def shortfall(self) -> int:
        return self.requested - self.allocated

    @property
    def is_complete(self) -> bool:
        return self.shortfall == 0

    def takes(self) -> list[tuple[StockGroup, int]]:
        return [(line.group, line.quantity_taken) for line in self.lines]

    def require_complete(self) -> AllocationPlan:
        """Return self, or raise InsufficientStockError carrying the shortfall."""
        if not self.is_complete:
            raise InsufficientStockError(
                requested=self.requested,
                available=self.allocated,
                product_id=self.product_id,
            )
        return self


def fifo_sort_key(group: StockGroup) -> tuple:
    return (
        group.expiration_date or date.max,
        group.fabrication_date or date.min,
        group.key.sort_key(),
    )


@traced_engine("fifo", "1.0", fingerprint_fields=("quantity", "quality_filter"))
def allocate(
    quantity: int,
    candidates: Mapping[GroupKey, StockGroup] | Iterable[StockGroup],
    quality_filter: QualityStatus = QualityStatus.CONFORME,
) -> AllocationPlan:
    """
    Walk eligible groups oldest-first and take what is needed.

    Args:
        quantity: Requested outbound quantity (positive integer).
        candidates: Stock groups, usually the output of ``aggregate``.
        quality_filter: Only groups with this status are eligible.

    Returns:
        AllocationPlan, possibly partial.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError(f"Allocation quantity must be a positive integer, got {quantity!r}")

    groups = list(candidates.values() if isinstance(candidates, Mapping) else candidates)
    product_id = groups[0].product_id if groups else None

    eligible = [
        g for g in groups if g.quality_status is quality_filter and g.available > 0
    ]
    eligible.sort(key=fifo_sort_key)

    lines: list[AllocationLine] = []
    remaining = quantity
    for group in eligible:
        if remaining == 0:
            break
        take = min(group.available, remaining)
        lines.append(AllocationLine(group=group, quantity_taken=take))
        remaining -= take

    plan = AllocationPlan(
        lines=tuple(lines),
        requested=quantity,
        allocated=quantity - remaining,
        quality_filter=quality_filter,
        product_id=product_id,
    )

    if plan.is_complete:
        logger.info(
            "allocation_completed",
            extra={
                "product_id": product_id,
                "requested": quantity,
                "line_count": len(lines),
                "eligible_count": len(eligible),
            },
        )
    else:
        logger.warning(
            "allocation_shortfall",
            extra={
                "product_id": product_id,
                "requested": quantity,
                "allocated": plan.allocated,
                "shortfall": plan.shortfall,
                "quality_filter": quality_filter.value,
            },
        )
    return plan
