"""
Module: stock_services.movement_service
Responsibility:
    The operation surface of the stock ledger.  Every write follows the
    same pipeline:

        list_movements -> aggregate -> plan -> materialize
                       -> append_movements(records, expected_versions)

    and is re-run from scratch when the append reports a ledger conflict.

Architecture position:
    Services -- imperative shell around the pure engines.  Owns the clock,
    the store, the location catalog and the engine configuration.

Invariants enforced:
    - Non-negativity under concurrency: every append carries the record
      counts of the keys it touches as read; a stale count rejects the
      whole append and the operation is planned again against the fresh
      ledger.
    - Atomicity: all records of one operation (a receipt over several
      floors, both sides of a transfer, a verdict plus its isolation
      transfer) go to the store in a single append.
    - Scan sessions write nothing until committed, and a conflicting
      commit is not retried because the physical picks already happened.

Failure modes:
    - Engine and coordinator errors propagate unchanged
      (InsufficientStockError, InvalidTransferError, ...).
    - LedgerConflictError after ``max_append_attempts`` attempts.
    - LotNotFoundError / LocationNotFoundError for unknown ids.
    - ValueError for a quarantine zone used as an ordinary target.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Collection, Sequence
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any

from stock_config.schema import EngineConfig
from stock_engines.aggregation import (
    StockGroup,
    aggregate,
    candidates,
    ledger_versions,
    movement_history,
)
from stock_engines.distribution import DistributionPlan, distribute
from stock_engines.fifo import allocate, fifo_sort_key
from stock_engines.materialize import entree_records, inspection_record, sortie_records
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.location import Location
from stock_kernel.domain.lot_number import generate_lot_id
from stock_kernel.domain.movement import MovementRecord
from stock_kernel.domain.values import (
    ProductType,
    QualityStatus,
    StockKey,
    StockView,
)
from stock_kernel.exceptions import LedgerConflictError, LotNotFoundError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.location_catalog import LocationCatalog
from stock_kernel.services.movement_store import MovementStore
from stock_services.scan_payload import decode_scan_payload
from stock_services.scan_session import ScanOutcome, ScanSession
from stock_services.transfer_coordinator import TransferCoordinator, TransferResult

logger = get_logger("services.movement")

# build(records, now) -> (new records, plan or other detail)
_Builder = Callable[[list[MovementRecord], datetime], tuple[list[MovementRecord], Any]]


@dataclass(frozen=True)
class OperationResult:
    """
    Outcome of one ledger write.

    Guarantees:
        - ``records`` are the stored records, with their record ids.
    """

    operation: str
    product_id: str
    records: tuple[MovementRecord, ...]
    attempts: int
    lot_id: str | None = None
    detail: Any = None

    @property
    def record_ids(self) -> list[int]:
        return [r.record_id for r in self.records if r.record_id is not None]


@dataclass(frozen=True, slots=True)
class _LotProfile:
    product_type: ProductType
    quality_status: QualityStatus
    fabrication_date: date | None
    expiration_date: date | None


class MovementService:
    """
    Ledger operations for receipts, issues, transfers, scans and quality.

    Contract:
        Thread-safe as long as the store is; holds no per-operation state.
    """

    def __init__(
        self,
        store: MovementStore,
        catalog: LocationCatalog,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        coordinator: TransferCoordinator | None = None,
    ):
        self._store = store
        self._catalog = catalog
        self._config = config or EngineConfig()
        self._clock = clock or SystemClock()
        self._coordinator = coordinator or TransferCoordinator()

    @property
    def config(self) -> EngineConfig:
        return self._config

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def stock(self, product_id: str, view: StockView = StockView.PHYSICAL) -> list[StockGroup]:
        """Current stock groups of a product, ordered by key."""
        return list(aggregate(self._store.list_movements(product_id), product_id, view).values())

    def history(self, product_id: str) -> list[MovementRecord]:
        """Plain Entrée / Sortie history (no transfer legs, no verdicts)."""
        return movement_history(self._store.list_movements(product_id), product_id)

    def available_for_issue(self, product_id: str) -> list[StockGroup]:
        """Groups an issue could draw from, in FIFO order."""
        wanted = self._config.outbound_quality_filter
        groups = [g for g in self.stock(product_id) if g.quality_status is wanted]
        groups.sort(key=fifo_sort_key)
        return groups

    # ------------------------------------------------------------------
    # Entrée
    # ------------------------------------------------------------------

    def receive(
        self,
        product_id: str,
        product_type: ProductType,
        quantity: int,
        zone_ids: Sequence[str],
        fabrication_date: date | None = None,
        expiration_date: date | None = None,
        quality_status: QualityStatus = QualityStatus.PENDING,
        lot_id: str | None = None,
        reason: str | None = None,
    ) -> OperationResult:
        """
        Book a new lot into the selected zones, filling floors in order.

        Raises:
            InsufficientCapacityError: the zones cannot hold ``quantity``.
            ValueError: non-positive quantity, an existing ``lot_id``, or
                a quarantine zone while those are excluded from receipts.
        """
        _require_positive(quantity)
        zones = self._receipt_zones(zone_ids)

        def build(records: list[MovementRecord], now: datetime):
            existing = {r.lot_id for r in records}
            if lot_id is not None and lot_id in existing:
                raise ValueError(f"Lot {lot_id} already exists; use complement_stock")
            lot = lot_id or generate_lot_id(
                product_id, now, prefix=self._config.lot_prefix, existing=existing
            )
            plan = distribute(quantity, zones).require_complete()
            new = entree_records(
                plan,
                product_id=product_id,
                product_type=product_type,
                lot_id=lot,
                created_at=now,
                quality_status=quality_status,
                fabrication_date=fabrication_date,
                expiration_date=expiration_date,
                reason=reason,
            )
            return new, plan

        return self._run("receive", product_id, build)

    def complement_stock(
        self,
        product_id: str,
        lot_id: str,
        quantity: int,
        zone_ids: Sequence[str],
        reason: str | None = None,
    ) -> OperationResult:
        """
        Add quantity to an existing lot, inheriting its provenance and quality.

        Raises:
            LotNotFoundError: the lot has no history for the product.
        """
        _require_positive(quantity)
        zones = self._receipt_zones(zone_ids)

        def build(records: list[MovementRecord], now: datetime):
            profile = _lot_profile(records, product_id, lot_id)
            plan = distribute(quantity, zones).require_complete()
            new = entree_records(
                plan,
                product_id=product_id,
                product_type=profile.product_type,
                lot_id=lot_id,
                created_at=now,
                quality_status=profile.quality_status,
                fabrication_date=profile.fabrication_date,
                expiration_date=profile.expiration_date,
                reason=reason,
            )
            return new, plan

        return self._run("complement_stock", product_id, build)

    # ------------------------------------------------------------------
    # Sortie
    # ------------------------------------------------------------------

    def issue(self, product_id: str, quantity: int, reason: str | None = None) -> OperationResult:
        """
        Take ``quantity`` out by FIFO over eligible lots.

        Raises:
            InsufficientStockError: eligible stock cannot cover the request.
        """

        def build(records: list[MovementRecord], now: datetime):
            groups = aggregate(records, product_id)
            plan = allocate(
                quantity, groups, quality_filter=self._config.outbound_quality_filter
            ).require_complete()
            return sortie_records(plan, created_at=now, reason=reason), plan

        return self._run("issue", product_id, build)

    def open_scan_session(self, product_id: str, quantity: int) -> ScanSession:
        """
        Plan an issue and hand it to a scan session instead of writing it.

        The session remembers the record counts of the planned keys; the
        commit is checked against them.
        """
        records = self._store.list_movements(product_id)
        groups = aggregate(records, product_id)
        plan = allocate(quantity, groups, quality_filter=self._config.outbound_quality_filter)
        versions = ledger_versions(records)
        expected = {
            line.group.stock_key: versions.get(line.group.stock_key, 0) for line in plan.lines
        }
        return ScanSession(plan, expected_versions=expected)

    def scan(self, session: ScanSession, text: str) -> ScanOutcome:
        """Decode raw label text and hand it to ``session``."""
        payload = decode_scan_payload(
            text,
            accept_legacy=self._config.accept_legacy_scan_payload,
            resolve_floor=self._catalog.sub_location_id_by_name,
        )
        return session.scan(payload)

    def commit_scan_session(self, session: ScanSession, allow_short: bool = False) -> OperationResult:
        """
        Write the Sorties of a satisfied session.

        With ``allow_short`` an OPEN session is written with the takes
        confirmed so far, for when the operator picked less than planned.

        Raises:
            ScanSessionStateError: the session is not satisfied, or not
                short-committable under ``allow_short``.
            LedgerConflictError: the ledger moved since the session opened.
                Not retried: the operator has to re-plan.
        """
        product_id = session.plan.product_id or ""
        with LogContext.bind(
            operation_id=str(uuid.uuid4()),
            product_id=product_id,
            session_id=session.session_id,
        ):
            records = session.materialize(self._clock.now(), allow_short)
            expected = session.expected_versions
            touched = {r.stock_key: expected.get(r.stock_key, 0) for r in records}
            try:
                stored = self._store.append_movements(records, touched)
            except LedgerConflictError as exc:
                logger.error(
                    "scan_commit_conflict",
                    extra={"stale_keys": [k.as_string() for k in exc.stale_keys]},
                )
                raise
            session.mark_committed(allow_short)
            logger.info(
                "operation_completed",
                extra={"operation": "scan_commit", "record_count": len(stored), "attempts": 1},
            )
            return OperationResult(
                operation="scan_commit",
                product_id=product_id,
                records=tuple(stored),
                attempts=1,
                detail=session.plan,
            )

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------

    def transfer(
        self,
        product_id: str,
        lot_id: str,
        source_id: str,
        destination_id: str,
        quantity: int | None = None,
        source_sub_location_ids: Collection[int] | None = None,
        reason: str | None = None,
    ) -> OperationResult:
        """Move a lot between locations; ``quantity=None`` moves all of it."""
        source = self._catalog.get(source_id)
        destination = self._catalog.get(destination_id)

        def build(records: list[MovementRecord], now: datetime):
            result = self._coordinator.transfer(
                records,
                product_id,
                lot_id,
                quantity,
                source,
                destination,
                now,
                source_sub_location_ids=source_sub_location_ids,
                reason=reason,
            )
            return result.records, result

        return self._run("transfer", product_id, build, lot_id=lot_id)

    # ------------------------------------------------------------------
    # Quality
    # ------------------------------------------------------------------

    def inspect(
        self,
        product_id: str,
        lot_id: str,
        status: QualityStatus,
        location_id: str | None = None,
        isolate_to: str | None = None,
        reason: str | None = None,
    ) -> OperationResult:
        """
        Record a quality verdict on a lot's stock.

        With ``isolate_to`` (a quarantine location id) a non-conforme lot
        is also moved there in the same append.

        Raises:
            LotNotFoundError: the lot holds no stock (at ``location_id``).
            ValueError: isolating a verdict other than non-conforme, or to
                a location that is not a quarantine zone.
        """
        status = QualityStatus.parse(status)
        quarantine = None
        if isolate_to is not None:
            if status is not QualityStatus.NON_CONFORME:
                raise ValueError("Only non-conforme stock is isolated")
            quarantine = self._catalog.get(isolate_to)
            if not quarantine.is_quarantine:
                raise ValueError(f"Location {isolate_to} is not a quarantine zone")

        def build(records: list[MovementRecord], now: datetime):
            locations = None if location_id is None else {location_id}
            groups = candidates(aggregate(records, product_id), lot_id=lot_id, location_ids=locations)
            if not groups:
                raise LotNotFoundError(product_id, lot_id)
            verdicts = [
                inspection_record(g, status, created_at=now, reason=reason) for g in groups
            ]
            if quarantine is None:
                return verdicts, None
            legs = self._move_all(
                records + verdicts, product_id, lot_id, groups, quarantine, now, reason
            )
            return verdicts + legs, quarantine.location_id

        return self._run("inspect", product_id, build, lot_id=lot_id)

    def release_from_quarantine(
        self,
        product_id: str,
        lot_id: str,
        quarantine_id: str,
        destination_id: str,
        reason: str | None = None,
    ) -> OperationResult:
        """
        Declare an isolated lot conforme and move it back to a regular zone.

        Raises:
            LotNotFoundError: the lot holds no stock in the quarantine zone.
            ValueError: ``quarantine_id`` is not a quarantine zone, or the
                destination is one.
        """
        quarantine = self._catalog.get(quarantine_id)
        destination = self._catalog.get(destination_id)
        if not quarantine.is_quarantine:
            raise ValueError(f"Location {quarantine_id} is not a quarantine zone")
        if destination.is_quarantine:
            raise ValueError(f"Location {destination_id} is a quarantine zone")

        def build(records: list[MovementRecord], now: datetime):
            groups = candidates(
                aggregate(records, product_id), lot_id=lot_id, location_ids={quarantine_id}
            )
            if not groups:
                raise LotNotFoundError(product_id, lot_id)
            verdicts = [
                inspection_record(g, QualityStatus.CONFORME, created_at=now, reason=reason)
                for g in groups
            ]
            legs = self._move_all(
                records + verdicts, product_id, lot_id, groups, destination, now, reason
            )
            return verdicts + legs, destination_id

        return self._run("release_from_quarantine", product_id, build, lot_id=lot_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        product_id: str,
        build: _Builder,
        lot_id: str | None = None,
    ) -> OperationResult:
        """Read, plan and append; start over on a ledger conflict."""
        max_attempts = self._config.max_append_attempts
        with LogContext.bind(operation_id=str(uuid.uuid4()), product_id=product_id):
            t0 = time.monotonic()
            for attempt in range(1, max_attempts + 1):
                records = self._store.list_movements(product_id)
                new, detail = build(records, self._clock.now())
                versions = ledger_versions(records)
                expected: dict[StockKey, int] = {
                    r.stock_key: versions.get(r.stock_key, 0) for r in new
                }
                try:
                    stored = self._store.append_movements(new, expected)
                except LedgerConflictError as exc:
                    if attempt == max_attempts:
                        logger.error(
                            "operation_conflict_exhausted",
                            extra={"operation": operation, "attempts": attempt},
                        )
                        raise
                    logger.warning(
                        "ledger_conflict_retry",
                        extra={
                            "operation": operation,
                            "attempt": attempt,
                            "stale_keys": [k.as_string() for k in exc.stale_keys],
                        },
                    )
                    continue

                logger.info(
                    "operation_completed",
                    extra={
                        "operation": operation,
                        "record_count": len(stored),
                        "attempts": attempt,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                stored_lot = lot_id or (stored[0].lot_id if stored else None)
                return OperationResult(
                    operation=operation,
                    product_id=product_id,
                    records=tuple(stored),
                    attempts=attempt,
                    lot_id=stored_lot,
                    detail=detail,
                )
        raise AssertionError("unreachable")  # pragma: no cover

    def _receipt_zones(self, zone_ids: Sequence[str]) -> list[Location]:
        zones = [self._catalog.get(zone_id) for zone_id in zone_ids]
        if self._config.exclude_quarantine_from_receipts:
            for zone in zones:
                if zone.is_quarantine:
                    raise ValueError(
                        f"Quarantine zone {zone.location_id} cannot receive ordinary stock"
                    )
        return zones

    def _move_all(
        self,
        records: list[MovementRecord],
        product_id: str,
        lot_id: str,
        groups: list[StockGroup],
        destination: Location,
        now: datetime,
        reason: str | None,
    ) -> list[MovementRecord]:
        """Transfer every listed group to ``destination``, one source location at a time."""
        legs: list[MovementRecord] = []
        source_ids = sorted({g.location_id for g in groups})
        for source_id in source_ids:
            if source_id == destination.location_id:
                continue
            result: TransferResult = self._coordinator.transfer(
                records + legs,
                product_id,
                lot_id,
                None,
                self._catalog.get(source_id),
                destination,
                now,
                reason=reason,
            )
            legs.extend(result.records)
            destination = _after_placement(destination, result.destination_plan)
        return legs


def _require_positive(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError(f"quantity must be a positive integer, got {quantity!r}")


def _lot_profile(records: list[MovementRecord], product_id: str, lot_id: str) -> _LotProfile:
    lot_records = sorted(
        (r for r in records if r.product_id == product_id and r.lot_id == lot_id),
        key=lambda r: r.ledger_order,
    )
    if not lot_records:
        raise LotNotFoundError(product_id, lot_id)
    return _LotProfile(
        product_type=lot_records[0].product_type,
        quality_status=lot_records[-1].quality_status,
        fabrication_date=next(
            (r.fabrication_date for r in lot_records if r.fabrication_date), None
        ),
        expiration_date=next(
            (r.expiration_date for r in lot_records if r.expiration_date), None
        ),
    )


def _after_placement(location: Location, plan: DistributionPlan) -> Location:
    """The location as it will be once ``plan`` is written."""
    placed = {line.sub_location_id: line.quantity_placed for line in plan.lines}
    return replace(
        location,
        sub_locations=tuple(
            replace(sub, current_stock=sub.current_stock + placed.get(sub.sub_location_id, 0))
            for sub in location.sub_locations
        ),
    )
