"""
MovementStore -- the persistence boundary of the movement ledger.

Responsibility:
    Read a product's ledger slice and append new records atomically under
    a compare-and-append check.  Two implementations share one contract:
    ``InMemoryMovementStore`` (tests, tooling) and ``SqlMovementStore``
    (SQLAlchemy, one transaction per append).

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Only lists of MovementRecord cross this boundary.

Invariants enforced:
    - Append-only: records are never updated or deleted.
    - All-or-nothing: either every record of an append is stored, or none.
    - Compare-and-append: when ``expected_versions`` is given, each touched
      stock key's record count must equal the expected count (missing
      entries mean 0), checked under a lock held for the whole append.
      A stale key rejects the whole append with LedgerConflictError.
    - record_id is strictly increasing in append order.

Failure modes:
    - LedgerConflictError: ledger moved underneath the caller.
    - ValueError: a record that already carries a record_id.

Audit relevance:
    Together with the immutability listeners this is what makes the ledger
    replayable: any stock picture can be recomputed from stored records.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Mapping, Sequence
from datetime import UTC

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from stock_kernel.db.engine import session_scope
from stock_kernel.domain.movement import MovementRecord
from stock_kernel.domain.values import StockKey
from stock_kernel.exceptions import LedgerConflictError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.movement import MovementModel, StockKeyVersion

logger = get_logger("services.movement_store")


class MovementStore(ABC):
    """
    Contract of the movement ledger store.

    Contract:
        ``list_movements`` returns the full history of one product in
        ledger order.  ``append_movements`` is atomic and returns the
        stored records with their assigned ``record_id``.
    Non-goals:
        - No derived stock: aggregation is the engines' job.
    """

    @abstractmethod
    def list_movements(self, product_id: str) -> list[MovementRecord]:
        ...

    @abstractmethod
    def append_movements(
        self,
        records: Sequence[MovementRecord],
        expected_versions: Mapping[StockKey, int] | None = None,
    ) -> list[MovementRecord]:
        ...


def _touched_counts(records: Sequence[MovementRecord]) -> Counter:
    for record in records:
        if record.record_id is not None:
            raise ValueError(
                f"record already stored with record_id {record.record_id}"
            )
    return Counter(r.stock_key for r in records)


class InMemoryMovementStore(MovementStore):
    """Process-local ledger guarded by a single lock."""

    def __init__(self, records: Sequence[MovementRecord] = ()):
        self._lock = threading.Lock()
        self._records: list[MovementRecord] = []
        self._versions: Counter = Counter()
        self._next_id = 1
        if records:
            self.append_movements(list(records))

    def list_movements(self, product_id: str) -> list[MovementRecord]:
        with self._lock:
            selected = [r for r in self._records if r.product_id == product_id]
        selected.sort(key=lambda r: r.ledger_order)
        return selected

    def all_movements(self) -> list[MovementRecord]:
        with self._lock:
            return list(self._records)

    def append_movements(
        self,
        records: Sequence[MovementRecord],
        expected_versions: Mapping[StockKey, int] | None = None,
    ) -> list[MovementRecord]:
        if not records:
            return []
        touched = _touched_counts(records)

        with self._lock:
            if expected_versions is not None:
                stale = sorted(
                    (
                        key
                        for key in touched
                        if self._versions[key] != expected_versions.get(key, 0)
                    ),
                    key=StockKey.sort_key,
                )
                if stale:
                    logger.warning(
                        "ledger_conflict",
                        extra={"stale_keys": [k.as_string() for k in stale]},
                    )
                    raise LedgerConflictError(stale)

            stored: list[MovementRecord] = []
            for record in records:
                stored.append(record.with_record_id(self._next_id))
                self._next_id += 1
            self._records.extend(stored)
            self._versions.update(touched)

        logger.info(
            "movements_appended",
            extra={"record_count": len(stored), "key_count": len(touched)},
        )
        return stored


class SqlMovementStore(MovementStore):
    """
    SQLAlchemy-backed ledger.

    Each append runs in its own transaction.  The version row of every
    touched key is locked with ``SELECT ... FOR UPDATE`` (keys locked in
    sorted order) before the expected counts are compared, so concurrent
    appends touching a common key are serialized.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def list_movements(self, product_id: str) -> list[MovementRecord]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                select(MovementModel)
                .where(MovementModel.product_id == product_id)
                .order_by(MovementModel.created_at, MovementModel.id)
            ).scalars().all()
            return [_to_record(row) for row in rows]

    def append_movements(
        self,
        records: Sequence[MovementRecord],
        expected_versions: Mapping[StockKey, int] | None = None,
    ) -> list[MovementRecord]:
        if not records:
            return []
        touched = _touched_counts(records)
        keys = sorted(touched, key=StockKey.sort_key)

        try:
            with session_scope(self._session_factory) as session:
                versions: dict[StockKey, StockKeyVersion | None] = {}
                stale: list[StockKey] = []
                for key in keys:
                    row = session.execute(
                        select(StockKeyVersion)
                        .where(StockKeyVersion.stock_key == key.as_string())
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    ).scalar_one_or_none()
                    versions[key] = row
                    current = row.version if row is not None else 0
                    if expected_versions is not None and current != expected_versions.get(key, 0):
                        stale.append(key)

                if stale:
                    logger.warning(
                        "ledger_conflict",
                        extra={"stale_keys": [k.as_string() for k in stale]},
                    )
                    raise LedgerConflictError(stale)

                for key in keys:
                    row = versions[key]
                    if row is None:
                        session.add(StockKeyVersion(stock_key=key.as_string(), version=touched[key]))
                    else:
                        row.version += touched[key]

                models = [_to_model(r) for r in records]
                session.add_all(models)
                session.flush()
                stored = [r.with_record_id(m.id) for r, m in zip(records, models)]
        except IntegrityError as exc:
            # Another transaction created one of the version rows first
            logger.warning(
                "ledger_conflict_on_insert",
                extra={"stale_keys": [k.as_string() for k in keys]},
            )
            raise LedgerConflictError(keys) from exc

        logger.info(
            "movements_appended",
            extra={"record_count": len(stored), "key_count": len(keys)},
        )
        return stored


def _to_model(record: MovementRecord) -> MovementModel:
    return MovementModel(
        product_id=record.product_id,
        product_type=record.product_type,
        direction=record.direction,
        quantity=record.quantity,
        location_id=record.location_id,
        sub_location_id=record.sub_location_id,
        sub_location_kind=record.sub_location_kind,
        lot_id=record.lot_id,
        fabrication_date=record.fabrication_date,
        expiration_date=record.expiration_date,
        quality_status=record.quality_status,
        is_transfer_leg=record.is_transfer_leg,
        created_at=record.created_at.astimezone(UTC),
        reason=record.reason,
    )


def _to_record(row: MovementModel) -> MovementRecord:
    created_at = row.created_at
    if created_at.tzinfo is None:
        # SQLite drops the offset; values are always written in UTC
        created_at = created_at.replace(tzinfo=UTC)
    return MovementRecord(
        record_id=row.id,
        product_id=row.product_id,
        product_type=row.product_type,
        direction=row.direction,
        quantity=row.quantity,
        location_id=row.location_id,
        sub_location_id=row.sub_location_id,
        sub_location_kind=row.sub_location_kind,
        lot_id=row.lot_id,
        fabrication_date=row.fabrication_date,
        expiration_date=row.expiration_date,
        quality_status=row.quality_status,
        is_transfer_leg=row.is_transfer_leg,
        created_at=created_at,
        reason=row.reason,
    )
