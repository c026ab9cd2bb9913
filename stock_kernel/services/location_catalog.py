"""
LocationCatalog -- read-only view of storage zones.

Location CRUD lives outside the ledger; the engines only need the ordered
list of zones, their floors / parts and the capacity left on each.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from stock_kernel.domain.location import Location
from stock_kernel.exceptions import LocationNotFoundError


class LocationCatalog(ABC):
    """Source of Location snapshots, in catalog order."""

    @abstractmethod
    def list_locations(self) -> list[Location]:
        ...

    def get(self, location_id: str) -> Location:
        """
        Look up one location.

        Raises:
            LocationNotFoundError: if the id is unknown.
        """
        for location in self.list_locations():
            if location.location_id == location_id:
                return location
        raise LocationNotFoundError(location_id)

    def quarantine_locations(self) -> list[Location]:
        return [loc for loc in self.list_locations() if loc.is_quarantine]

    def sub_location_id_by_name(self, location_id: str, floor_name: str) -> int | None:
        """Floor / part id from its printed name; None if either is unknown."""
        for location in self.list_locations():
            if location.location_id != location_id:
                continue
            for sub in location.sub_locations:
                if sub.name == floor_name:
                    return sub.sub_location_id
        return None


class StaticLocationCatalog(LocationCatalog):
    """Catalog over a fixed list; ``replace`` swaps in a fresh snapshot."""

    def __init__(self, locations: Iterable[Location] = ()):
        self._locations: tuple[Location, ...] = ()
        self.replace(locations)

    def list_locations(self) -> list[Location]:
        return list(self._locations)

    def replace(self, locations: Iterable[Location]) -> None:
        locations = tuple(locations)
        ids = [loc.location_id for loc in locations]
        if len(ids) != len(set(ids)):
            raise ValueError("Duplicate location ids in catalog")
        self._locations = locations
