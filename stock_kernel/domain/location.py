"""
Location value objects -- storage zones and their floors / parts.

The catalog itself (CRUD, names, addresses) lives outside the engine; these
frozen views carry just what distribution needs: identity, catalog order and
available capacity.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from stock_kernel.domain.values import SubLocationKind


@dataclass(frozen=True, slots=True)
class SubLocation:
    """A floor (étage) or part of a location, with its capacity."""

    sub_location_id: int
    kind: SubLocationKind
    total_capacity: int
    current_stock: int = 0
    name: str = ""

    def __post_init__(self) -> None:
        if self.total_capacity < 0:
            raise ValueError(f"total_capacity cannot be negative, got {self.total_capacity}")
        if self.current_stock < 0:
            raise ValueError(f"current_stock cannot be negative, got {self.current_stock}")

    @property
    def available_capacity(self) -> int:
        # An over-filled slot has no room left, not negative room
        return max(0, self.total_capacity - self.current_stock)


@dataclass(frozen=True, slots=True)
class Location:
    """
    A storage zone.

    Contract: ``sub_locations`` is in catalog order; distribution walks it
    in that order.  ``is_quarantine`` marks "prison" zones that only hold
    isolated non-conforme stock.
    """

    location_id: str
    sub_locations: tuple[SubLocation, ...] = field(default_factory=tuple)
    name: str = ""
    is_quarantine: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "sub_locations", tuple(self.sub_locations))
        ids = [s.sub_location_id for s in self.sub_locations]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate sub-location ids in location {self.location_id}")

    @property
    def available_capacity(self) -> int:
        return sum(s.available_capacity for s in self.sub_locations)

    def sub_location(self, sub_location_id: int) -> SubLocation | None:
        for sub in self.sub_locations:
            if sub.sub_location_id == sub_location_id:
                return sub
        return None
