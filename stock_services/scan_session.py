"""
Module: stock_services.scan_session
Responsibility:
    Reconcile physical QR scans against a FIFO allocation plan before any
    Sortie is written.  The operator walks the warehouse scanning lot
    labels; each scan is matched to a plan line and confirmed.

Architecture position:
    Services -- mutable state scoped to one outbound operation.  Writes
    nothing: ``commit`` only materializes the Sortie records, the caller
    appends them.

State machine:

    OPEN --(confirmed == requested)--> SATISFIED --commit--> COMMITTED
      |  |                                 |                     ^
      |  +------commit(allow_short)--------|---------------------+
      |                                    |
      +-------------cancel-----------------+--------------> CANCELLED

    A short commit needs at least one confirmed take and no pending
    partial-take prompt.

Invariants enforced:
    - A key (lot, location, sub-location) is confirmed at most once.
    - Only keys present in the plan can be confirmed.
    - Taking less than a slot holds needs explicit operator confirmation.
    - The plan is never modified by the session.
    - Rejected scans leave the session exactly as it was.

Failure modes:
    - InsufficientStockError at construction from an incomplete plan.
    - DuplicateScanError / NotInPlanError on a rejected scan.
    - ScanSessionStateError on an action the current state forbids.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from stock_engines.aggregation import StockGroup
from stock_engines.fifo import AllocationLine, AllocationPlan
from stock_engines.materialize import sortie_records
from stock_kernel.domain.movement import MovementRecord
from stock_kernel.domain.values import GroupKey, ProductType, ScanPayload, StockKey
from stock_kernel.exceptions import (
    DuplicateScanError,
    NotInPlanError,
    ScanSessionStateError,
)
from stock_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.scan_session")


class SessionState(str, Enum):
    OPEN = "open"
    SATISFIED = "satisfied"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


class ScanStatus(str, Enum):
    ACCEPTED = "accepted"
    NEEDS_CONFIRMATION = "needs_confirmation"


@dataclass(frozen=True, slots=True)
class ConfirmedTake:
    """A plan line the operator has physically picked."""

    key: GroupKey
    quantity: int
    group: StockGroup


@dataclass(frozen=True, slots=True)
class PartialTakePrompt:
    """Asks the operator to confirm taking only part of a slot."""

    key: GroupKey
    requested: int
    available: int


@dataclass(frozen=True, slots=True)
class ScanOutcome:
    status: ScanStatus
    take: ConfirmedTake | None = None
    prompt: PartialTakePrompt | None = None


class ScanSession:
    """
    One scan reconciliation for one allocation plan.

    Contract:
        Not thread-safe; one operator drives one session.
    """

    def __init__(
        self,
        plan: AllocationPlan,
        session_id: str | None = None,
        expected_versions: Mapping[StockKey, int] | None = None,
    ):
        plan.require_complete()
        self._plan = plan
        self._session_id = session_id or str(uuid.uuid4())
        self._expected_versions = dict(expected_versions or {})
        self._state = SessionState.OPEN
        self._confirmed: list[ConfirmedTake] = []
        self._pending: tuple[AllocationLine, PartialTakePrompt] | None = None

        with LogContext.bind(session_id=self._session_id):
            logger.info(
                "scan_session_opened",
                extra={
                    "product_id": plan.product_id,
                    "requested": plan.requested,
                    "line_count": len(plan.lines),
                },
            )

    # -- read side ---------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def plan(self) -> AllocationPlan:
        return self._plan

    @property
    def product_type(self) -> ProductType:
        # A complete plan always has at least one line
        return self._plan.lines[0].group.product_type

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def expected_versions(self) -> dict[StockKey, int]:
        return dict(self._expected_versions)

    @property
    def confirmed(self) -> tuple[ConfirmedTake, ...]:
        return tuple(self._confirmed)

    @property
    def confirmed_quantity(self) -> int:
        return sum(t.quantity for t in self._confirmed)

    @property
    def remaining(self) -> int:
        return self._plan.requested - self.confirmed_quantity

    @property
    def pending_prompt(self) -> PartialTakePrompt | None:
        return self._pending[1] if self._pending else None

    # -- operator actions --------------------------------------------------

    def scan(self, payload: ScanPayload) -> ScanOutcome:
        """
        Match a decoded label against the plan.

        Returns ACCEPTED with the confirmed take, or NEEDS_CONFIRMATION with
        a prompt when the plan takes less than the slot holds.

        While a prompt is pending every scan, including a rescan of the
        prompted label, raises ScanSessionStateError rather than
        DuplicateScanError.
        """
        with LogContext.bind(session_id=self._session_id):
            if self._state is not SessionState.OPEN:
                raise ScanSessionStateError(self._state.value, "scan")
            if self._pending is not None:
                raise ScanSessionStateError("awaiting partial-take confirmation", "scan")

            line = self._find_line(payload)
            if line is None:
                logger.warning(
                    "scan_rejected_not_in_plan",
                    extra={"lot_id": payload.lot_id, "sub_location_id": payload.sub_location_id},
                )
                raise NotInPlanError(payload.lot_id, payload.sub_location_id)

            if any(t.key == line.key for t in self._confirmed):
                logger.warning("scan_rejected_duplicate", extra={"group_key": str(line.key)})
                raise DuplicateScanError(line.key)

            if line.quantity_taken < line.group.available:
                prompt = PartialTakePrompt(
                    key=line.key,
                    requested=line.quantity_taken,
                    available=line.group.available,
                )
                self._pending = (line, prompt)
                logger.info(
                    "scan_partial_take_prompted",
                    extra={
                        "group_key": str(line.key),
                        "requested": prompt.requested,
                        "available": prompt.available,
                    },
                )
                return ScanOutcome(status=ScanStatus.NEEDS_CONFIRMATION, prompt=prompt)

            take = self._confirm(line, line.quantity_taken)
            return ScanOutcome(status=ScanStatus.ACCEPTED, take=take)

    def confirm_partial(self, quantity: int | None = None) -> ScanOutcome:
        """Accept the pending prompt, for the planned amount or less."""
        with LogContext.bind(session_id=self._session_id):
            if self._pending is None:
                raise ScanSessionStateError(self._state.value, "confirm a partial take")
            line, prompt = self._pending
            amount = prompt.requested if quantity is None else quantity
            if isinstance(amount, bool) or not isinstance(amount, int) or not 1 <= amount <= prompt.requested:
                raise ValueError(
                    f"Partial take must be between 1 and {prompt.requested}, got {quantity!r}"
                )
            self._pending = None
            take = self._confirm(line, amount)
            return ScanOutcome(status=ScanStatus.ACCEPTED, take=take)

    def decline_partial(self) -> None:
        """Drop the pending prompt; the line stays unconfirmed."""
        with LogContext.bind(session_id=self._session_id):
            if self._pending is None:
                raise ScanSessionStateError(self._state.value, "decline a partial take")
            logger.info("scan_partial_take_declined", extra={"group_key": str(self._pending[1].key)})
            self._pending = None

    def materialize(self, created_at: datetime, allow_short: bool = False) -> list[MovementRecord]:
        """Sortie records for every confirmed take; does not change state."""
        self._require_committable(allow_short)
        return sortie_records(
            [(t.group, t.quantity) for t in self._confirmed],
            created_at=created_at,
        )

    def mark_committed(self, allow_short: bool = False) -> None:
        self._require_committable(allow_short)
        shortfall = self.remaining
        self._state = SessionState.COMMITTED
        with LogContext.bind(session_id=self._session_id):
            logger.info(
                "scan_session_committed",
                extra={
                    "take_count": len(self._confirmed),
                    "quantity": self.confirmed_quantity,
                    "shortfall": shortfall,
                },
            )

    def commit(self, created_at: datetime, allow_short: bool = False) -> list[MovementRecord]:
        """
        Materialize the Sorties and close the session.

        ``allow_short`` commits an OPEN session with what has been confirmed
        so far, for when the operator took less than planned.
        """
        records = self.materialize(created_at, allow_short)
        self.mark_committed(allow_short)
        return records

    def cancel(self) -> None:
        """Discard the session. Nothing was written, nothing is undone."""
        if self._state not in (SessionState.OPEN, SessionState.SATISFIED):
            raise ScanSessionStateError(self._state.value, "cancel")
        self._state = SessionState.CANCELLED
        self._pending = None
        with LogContext.bind(session_id=self._session_id):
            logger.info("scan_session_cancelled", extra={"confirmed": self.confirmed_quantity})

    # -- internals ---------------------------------------------------------

    def _require_committable(self, allow_short: bool) -> None:
        if self._state is SessionState.SATISFIED:
            return
        if (
            allow_short
            and self._state is SessionState.OPEN
            and self._pending is None
            and self._confirmed
        ):
            return
        raise ScanSessionStateError(self._state.value, "commit")

    def _find_line(self, payload: ScanPayload) -> AllocationLine | None:
        for line in self._plan.lines:
            if line.group.lot_id == payload.lot_id and line.group.sub_location_id == payload.sub_location_id:
                return line
        return None

    def _confirm(self, line: AllocationLine, quantity: int) -> ConfirmedTake:
        take = ConfirmedTake(key=line.key, quantity=quantity, group=line.group)
        self._confirmed.append(take)
        logger.info(
            "scan_accepted",
            extra={"group_key": str(line.key), "quantity": quantity, "remaining": self.remaining},
        )
        if self.confirmed_quantity == self._plan.requested:
            self._state = SessionState.SATISFIED
            logger.info("scan_session_satisfied", extra={"requested": self._plan.requested})
        return take
