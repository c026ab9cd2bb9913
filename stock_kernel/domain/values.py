"""
Values -- Tagged variants and key types shared by every stock module.

Responsibility:
    Provides the enums that replace per-product-category code paths
    (ProductType, Direction, SubLocationKind, QualityStatus, StockView)
    and the small immutable key types used to address stock: GroupKey
    (lot / location / sub-location) and StockKey (GroupKey + product).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other domain module. No outward dependencies.

Invariants enforced:
    - QualityStatus.parse normalizes a missing status to PENDING so that
      "unknown" can never be mistaken for "conforme".
    - Keys are frozen, hashable and totally ordered (None sorts first) so
      that every engine output can be sorted deterministically.

Failure modes:
    - ValueError from the ``parse`` helpers on unknown labels.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ProductType(str, Enum):
    """Production stage of a stocked product."""

    RAW_MATERIAL = "raw_material"
    SEMI_FINISHED = "semi_finished"
    FINISHED = "finished"


class Direction(str, Enum):
    """Direction of a ledger record."""

    ENTREE = "Entrée"
    SORTIE = "Sortie"
    INSPECTION = "Contrôle"  # quality verdict, moves no stock


class SubLocationKind(str, Enum):
    """A location is subdivided into floors (étages) or parts."""

    ETAGE = "etage"
    PART = "part"


class QualityStatus(str, Enum):
    """Quality-control verdict carried by ledger records."""

    PENDING = "pending"
    CONFORME = "conforme"
    NON_CONFORME = "non-conforme"

    @classmethod
    def parse(cls, value: str | QualityStatus | None) -> QualityStatus:
        """Normalize a raw status; None and blank mean pending."""
        if value is None:
            return cls.PENDING
        if isinstance(value, cls):
            return value
        text = value.strip().lower()
        if not text or text == "-":
            return cls.PENDING
        return cls(text)


class StockView(str, Enum):
    """Which records the aggregator replays."""

    PHYSICAL = "physical"  # transfer legs included: true availability
    REPORTING = "reporting"  # transfer legs excluded: plain Entrée/Sortie view


def _sortable(value) -> tuple:
    # None first, then ints numerically, then everything else as text
    if value is None:
        return (0, 0, "")
    if isinstance(value, int):
        return (1, value, "")
    return (2, 0, str(value))


@dataclass(frozen=True, slots=True)
class GroupKey:
    """Address of one stock group: a lot at one physical slot."""

    lot_id: str
    location_id: str
    sub_location_id: int | None = None

    def sort_key(self) -> tuple:
        return (self.lot_id, _sortable(self.location_id), _sortable(self.sub_location_id))

    def __lt__(self, other: GroupKey) -> bool:
        return self.sort_key() < other.sort_key()

    def __str__(self) -> str:
        sub = "-" if self.sub_location_id is None else self.sub_location_id
        return f"{self.lot_id}@{self.location_id}/{sub}"


@dataclass(frozen=True, slots=True)
class StockKey:
    """GroupKey qualified by product: the unit of the non-negativity invariant."""

    product_id: str
    lot_id: str
    location_id: str
    sub_location_id: int | None = None

    @property
    def group_key(self) -> GroupKey:
        return GroupKey(self.lot_id, self.location_id, self.sub_location_id)

    def as_string(self) -> str:
        """Stable text form, used as the persisted version-row key."""
        sub = "" if self.sub_location_id is None else str(self.sub_location_id)
        return f"{self.product_id}|{self.lot_id}|{self.location_id}|{sub}"

    def sort_key(self) -> tuple:
        return (self.product_id, *self.group_key.sort_key())


@dataclass(frozen=True, slots=True)
class ScanPayload:
    """
    Logical content of a scanned lot label, already decoded.

    Contract:
        The single normalized shape produced by the scan-payload boundary
        regardless of which label format was printed.
    """

    lot_id: str
    quantity: int
    sub_location_id: int
