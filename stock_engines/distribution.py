"""
Module: stock_engines.distribution
Responsibility:
    Distribute an inbound quantity across an ordered list of storage zones,
    filling each floor / part up to its available capacity.  Also models the
    operator's editable zone list (``ZoneSelection``).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import stock_kernel domain types and sibling engine modules.

Invariants enforced:
    - Zones are walked in caller order; sub-locations in catalog order.
    - Each slot receives min(remaining, available_capacity).
    - placed <= min(quantity, total available capacity).
    - Slots that receive nothing still appear in the plan, so callers can
      show per-floor capacity hints.
    - The plan is recomputed from scratch on every call; there is no
      incremental state.

Failure modes:
    - ValueError on a negative quantity or a zone listed twice.
    - Unplaced remainder is reported, not raised; callers decide through
      ``DistributionPlan.require_complete()``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from stock_engines.tracer import traced_engine
from stock_kernel.domain.location import Location
from stock_kernel.domain.values import SubLocationKind
from stock_kernel.exceptions import InsufficientCapacityError
from stock_kernel.logging_config import get_logger

logger = get_logger("engines.distribution")


@dataclass(frozen=True, slots=True)
class CapacitySlot:
    """A place that can receive stock, with the room it has left."""

    location_id: str
    sub_location_id: int | None
    sub_location_kind: SubLocationKind | None
    available_capacity: int

    def __post_init__(self) -> None:
        if self.available_capacity < 0:
            raise ValueError(
                f"available_capacity cannot be negative, got {self.available_capacity}"
            )


@dataclass(frozen=True, slots=True)
class DistributionLine:
    """Quantity placed into one slot."""

    location_id: str
    sub_location_id: int | None
    sub_location_kind: SubLocationKind | None
    available_capacity: int
    quantity_placed: int


@dataclass(frozen=True)
class DistributionPlan:
    """
    Result of a distribution.

    Contract:
        Frozen dataclass; one line per slot walked, in walk order.
    Guarantees:
        - ``placed == sum(line.quantity_placed)``.
        - ``placed + unplaced == requested``.
    """

    lines: tuple[DistributionLine, ...]
    requested: int
    placed: int

    @property
    def unplaced(self) -> int:
        return self.requested - self.placed

    @property
    def is_complete(self) -> bool:
        return self.unplaced == 0

    def placements(self) -> tuple[DistributionLine, ...]:
        """Only the lines that actually receive stock."""
        return tuple(line for line in self.lines if line.quantity_placed > 0)

    def by_location(self) -> dict[str, tuple[DistributionLine, ...]]:
        grouped: dict[str, list[DistributionLine]] = {}
        for line in self.lines:
            grouped.setdefault(line.location_id, []).append(line)
        return {loc: tuple(lines) for loc, lines in grouped.items()}

    def require_complete(self) -> DistributionPlan:
        """Return self, or raise InsufficientCapacityError."""
        if not self.is_complete:
            raise InsufficientCapacityError(requested=self.requested, available=self.placed)
        return self


def slots_for(targets: Iterable[Location]) -> list[CapacitySlot]:
    """Flatten zones into slots, zones in the given order, floors in catalog order."""
    slots: list[CapacitySlot] = []
    seen: set[str] = set()
    for location in targets:
        if location.location_id in seen:
            raise ValueError(f"Zone {location.location_id} is listed more than once")
        seen.add(location.location_id)
        for sub in location.sub_locations:
            slots.append(
                CapacitySlot(
                    location_id=location.location_id,
                    sub_location_id=sub.sub_location_id,
                    sub_location_kind=sub.kind,
                    available_capacity=sub.available_capacity,
                )
            )
    return slots


def fill_slots(quantity: int, slots: Iterable[CapacitySlot]) -> DistributionPlan:
    """Greedy fill of ``slots`` in order; the core of ``distribute``."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        raise ValueError(f"Distribution quantity must be a non-negative integer, got {quantity!r}")

    lines: list[DistributionLine] = []
    remaining = quantity
    for slot in slots:
        place = min(remaining, slot.available_capacity)
        lines.append(
            DistributionLine(
                location_id=slot.location_id,
                sub_location_id=slot.sub_location_id,
                sub_location_kind=slot.sub_location_kind,
                available_capacity=slot.available_capacity,
                quantity_placed=place,
            )
        )
        remaining -= place

    return DistributionPlan(lines=tuple(lines), requested=quantity, placed=quantity - remaining)


@traced_engine("distribution", "1.0", fingerprint_fields=("quantity",))
def distribute(quantity: int, targets: Sequence[Location]) -> DistributionPlan:
    """
    Spread ``quantity`` over the floors / parts of ``targets``.

    Args:
        quantity: Inbound quantity (non-negative integer).
        targets: Selected zones, in the order the operator picked them.

    Returns:
        DistributionPlan, possibly with an unplaced remainder.
    """
    plan = fill_slots(quantity, slots_for(targets))
    if not plan.is_complete:
        logger.warning(
            "distribution_capacity_exceeded",
            extra={
                "requested": quantity,
                "placed": plan.placed,
                "unplaced": plan.unplaced,
                "zone_count": len(targets),
            },
        )
    return plan


def capacity_by_zone(targets: Iterable[Location]) -> dict[str, int]:
    """Available capacity per zone, in the given order."""
    return {location.location_id: location.available_capacity for location in targets}


@dataclass(frozen=True)
class ZoneSelection:
    """
    The operator's list of destination zones for one receipt.

    Contract:
        Immutable; every edit returns a new selection whose ``plan`` has
        been redistributed over the current zones.
    Guarantees:
        - ``current`` is None only when ``zones`` is empty, otherwise a
          valid index into ``zones``.
    """

    zones: tuple[Location, ...] = ()
    quantity: int = 0
    current: int | None = None
    plan: DistributionPlan = field(init=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "zones", tuple(self.zones))
        if self.zones:
            if self.current is None or not 0 <= self.current < len(self.zones):
                raise ValueError(f"current zone index {self.current} is out of range")
        elif self.current is not None:
            raise ValueError("current zone must be None when no zone is selected")
        object.__setattr__(self, "plan", distribute(self.quantity, self.zones))

    @property
    def current_zone(self) -> Location | None:
        return None if self.current is None else self.zones[self.current]

    @property
    def capacities(self) -> dict[str, int]:
        return capacity_by_zone(self.zones)

    def add_zone(self, location: Location) -> ZoneSelection:
        """Append a zone and make it current."""
        zones = self.zones + (location,)
        return ZoneSelection(zones=zones, quantity=self.quantity, current=len(zones) - 1)

    def remove_zone(self, index: int) -> ZoneSelection:
        """Drop a zone; the previous one becomes current (the first when index is 0)."""
        if not 0 <= index < len(self.zones):
            raise IndexError(f"zone index {index} is out of range")
        zones = self.zones[:index] + self.zones[index + 1:]
        if not zones:
            current = None
        else:
            current = 0 if index == 0 else index - 1
        return ZoneSelection(zones=zones, quantity=self.quantity, current=current)

    def switch_to(self, index: int) -> ZoneSelection:
        if not 0 <= index < len(self.zones):
            raise IndexError(f"zone index {index} is out of range")
        return ZoneSelection(zones=self.zones, quantity=self.quantity, current=index)

    def with_quantity(self, quantity: int) -> ZoneSelection:
        return ZoneSelection(zones=self.zones, quantity=quantity, current=self.current)
