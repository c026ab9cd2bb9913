"""
Tests for MovementService, the operation surface.

Covers:
- Receipts over several floors, lot numbering, quarantine exclusion
- Complément Stock inheriting lot provenance
- FIFO issue gated on quality
- Retry on ledger conflict, and giving up after max attempts
- Transfers through the service
- Inspection, isolation to quarantine and release
- Scan sessions committed against the ledger, including short commits
  and legacy labels resolved through the catalog
"""

import json
from datetime import date

import pytest

from stock_config.schema import EngineConfig
from stock_kernel.domain.values import (
    Direction,
    ProductType,
    QualityStatus,
    ScanPayload,
    StockView,
)
from stock_kernel.exceptions import (
    InsufficientCapacityError,
    InsufficientStockError,
    InvalidTransferError,
    LedgerConflictError,
    LocationNotFoundError,
    LotNotFoundError,
    ScanPayloadError,
    ScanSessionStateError,
)
from stock_kernel.services.movement_store import InMemoryMovementStore
from stock_services.movement_service import MovementService
from stock_services.scan_session import ScanStatus, SessionState
from tests.factories import make_record

RAW = ProductType.RAW_MATERIAL


class RacingStore(InMemoryMovementStore):
    """Lets another writer slip in records just before the next checked append."""

    def __init__(self, records=()):
        self.intruders: list = []
        self.checked_appends = 0
        super().__init__(records)

    def append_movements(self, records, expected_versions=None):
        if expected_versions is not None:
            self.checked_appends += 1
            if self.intruders:
                intruders, self.intruders = self.intruders, []
                super().append_movements(intruders)
        return super().append_movements(records, expected_versions)


class AlwaysStaleStore(InMemoryMovementStore):
    def append_movements(self, records, expected_versions=None):
        if expected_versions is not None:
            raise LedgerConflictError([records[0].stock_key])
        return super().append_movements(records, expected_versions)


def service_over(store, warehouse, clock, **config) -> MovementService:
    return MovementService(store, warehouse, config=EngineConfig(**config), clock=clock)


def stock_by_slot(service, product_id="P-100", view=StockView.PHYSICAL):
    return {
        (g.lot_id, g.location_id, g.sub_location_id): g.available
        for g in service.stock(product_id, view)
    }


class TestReceive:
    def test_fills_floors_in_order(self, movement_service):
        result = movement_service.receive("P-100", RAW, 150, ["Z1"])

        assert result.lot_id == "LOT-20240301-080000-P-100"
        assert [(r.sub_location_id, r.quantity) for r in result.records] == [(1, 100), (2, 50)]
        assert result.record_ids == [1, 2]
        assert result.attempts == 1
        assert all(r.quality_status is QualityStatus.PENDING for r in result.records)

    def test_spills_into_next_zone(self, movement_service):
        result = movement_service.receive("P-100", RAW, 230, ["Z1", "Z2"])
        assert [(r.location_id, r.quantity) for r in result.records] == [
            ("Z1", 100),
            ("Z1", 100),
            ("Z2", 30),
        ]

    def test_second_receipt_same_second_gets_new_lot(self, movement_service):
        first = movement_service.receive("P-100", RAW, 5, ["Z1"])
        second = movement_service.receive("P-100", RAW, 5, ["Z1"])
        assert second.lot_id == f"{first.lot_id}-2"

    def test_capacity_exceeded_writes_nothing(self, movement_service, memory_store):
        with pytest.raises(InsufficientCapacityError):
            movement_service.receive("P-100", RAW, 201, ["Z1"])
        assert memory_store.all_movements() == []

    def test_quarantine_zone_rejected(self, movement_service):
        with pytest.raises(ValueError):
            movement_service.receive("P-100", RAW, 5, ["PRISON"])

    def test_quarantine_zone_allowed_when_configured(self, memory_store, warehouse, deterministic_clock):
        service = service_over(
            memory_store, warehouse, deterministic_clock, exclude_quarantine_from_receipts=False
        )
        result = service.receive("P-100", RAW, 5, ["PRISON"])
        assert result.records[0].location_id == "PRISON"

    def test_unknown_zone(self, movement_service):
        with pytest.raises(LocationNotFoundError):
            movement_service.receive("P-100", RAW, 5, ["NOWHERE"])

    def test_existing_lot_id_rejected(self, movement_service):
        movement_service.receive("P-100", RAW, 5, ["Z1"], lot_id="L1")
        with pytest.raises(ValueError):
            movement_service.receive("P-100", RAW, 5, ["Z1"], lot_id="L1")

    @pytest.mark.parametrize("bad", [0, -5])
    def test_non_positive_quantity(self, movement_service, bad):
        with pytest.raises(ValueError):
            movement_service.receive("P-100", RAW, bad, ["Z1"])


class TestComplementStock:
    def test_inherits_lot_provenance(self, movement_service):
        movement_service.receive(
            "P-100",
            ProductType.FINISHED,
            10,
            ["Z1"],
            lot_id="L1",
            expiration_date=date(2025, 6, 1),
            quality_status=QualityStatus.CONFORME,
        )
        result = movement_service.complement_stock("P-100", "L1", 20, ["Z2"])

        (record,) = result.records
        assert record.lot_id == "L1"
        assert record.location_id == "Z2"
        assert record.product_type is ProductType.FINISHED
        assert record.expiration_date == date(2025, 6, 1)
        assert record.quality_status is QualityStatus.CONFORME

    def test_unknown_lot(self, movement_service):
        with pytest.raises(LotNotFoundError):
            movement_service.complement_stock("P-100", "L404", 5, ["Z1"])


class TestIssue:
    def test_fifo_over_conforme_lots(self, movement_service):
        movement_service.receive(
            "P-100", RAW, 30, ["Z1"], lot_id="L1",
            expiration_date=date(2024, 6, 1), quality_status=QualityStatus.CONFORME,
        )
        movement_service.receive(
            "P-100", RAW, 50, ["Z2"], lot_id="L2",
            expiration_date=date(2024, 7, 1), quality_status=QualityStatus.CONFORME,
        )
        result = movement_service.issue("P-100", 40)

        assert [(r.lot_id, r.quantity) for r in result.records] == [("L1", 30), ("L2", 10)]
        assert all(r.direction is Direction.SORTIE for r in result.records)
        assert stock_by_slot(movement_service) == {("L2", "Z2", 11): 40}

    def test_pending_stock_not_issued(self, movement_service, memory_store):
        movement_service.receive("P-100", RAW, 30, ["Z1"])
        with pytest.raises(InsufficientStockError) as exc_info:
            movement_service.issue("P-100", 10)
        assert exc_info.value.available == 0
        assert len(memory_store.all_movements()) == 1

    def test_non_conforme_stock_never_issued(self, movement_service, memory_store):
        movement_service.receive(
            "P-100", RAW, 50, ["Z1"], lot_id="L1", quality_status=QualityStatus.NON_CONFORME
        )
        with pytest.raises(InsufficientStockError):
            movement_service.issue("P-100", 20)
        with pytest.raises(ValueError):
            EngineConfig(outbound_quality_filter=QualityStatus.NON_CONFORME)
        assert len(memory_store.all_movements()) == 1

    def test_available_for_issue_in_fifo_order(self, movement_service):
        movement_service.receive(
            "P-100", RAW, 5, ["Z1"], lot_id="LATE",
            expiration_date=date(2026, 1, 1), quality_status=QualityStatus.CONFORME,
        )
        movement_service.receive(
            "P-100", RAW, 5, ["Z1"], lot_id="EARLY",
            expiration_date=date(2025, 1, 1), quality_status=QualityStatus.CONFORME,
        )
        movement_service.receive("P-100", RAW, 5, ["Z1"], lot_id="UNCHECKED")
        assert [g.lot_id for g in movement_service.available_for_issue("P-100")] == [
            "EARLY",
            "LATE",
        ]


class TestConflictRetry:
    def test_replans_against_fresh_ledger(self, warehouse, deterministic_clock):
        store = RacingStore([make_record(Direction.ENTREE, 30, lot_id="L1")])
        store.intruders = [make_record(Direction.SORTIE, 5, lot_id="L1", minutes=1)]
        service = service_over(store, warehouse, deterministic_clock)

        result = service.issue("P-100", 10)

        assert result.attempts == 2
        assert store.checked_appends == 2
        assert stock_by_slot(service) == {("L1", "Z1", 1): 15}

    def test_retry_surfaces_new_shortfall(self, warehouse, deterministic_clock):
        store = RacingStore([make_record(Direction.ENTREE, 30, lot_id="L1")])
        store.intruders = [make_record(Direction.SORTIE, 25, lot_id="L1", minutes=1)]
        service = service_over(store, warehouse, deterministic_clock)

        with pytest.raises(InsufficientStockError) as exc_info:
            service.issue("P-100", 10)
        assert exc_info.value.available == 5
        assert stock_by_slot(service) == {("L1", "Z1", 1): 5}

    def test_gives_up_after_max_attempts(self, warehouse, deterministic_clock, captured_logs):
        store = AlwaysStaleStore([make_record(Direction.ENTREE, 30, lot_id="L1")])
        service = service_over(store, warehouse, deterministic_clock, max_append_attempts=2)

        with pytest.raises(LedgerConflictError):
            service.issue("P-100", 10)

        messages = [r["message"] for r in captured_logs()]
        assert messages.count("ledger_conflict_retry") == 1
        assert "operation_conflict_exhausted" in messages


class TestTransfer:
    def test_move_whole_lot(self, movement_service):
        movement_service.receive("P-100", RAW, 30, ["Z1"], lot_id="L1")
        result = movement_service.transfer("P-100", "L1", "Z1", "Z2")

        assert result.lot_id == "L1"
        assert len(result.records) == 2
        assert stock_by_slot(movement_service) == {("L1", "Z2", 11): 30}
        assert stock_by_slot(movement_service, view=StockView.REPORTING) == {("L1", "Z1", 1): 30}
        assert [r.direction for r in movement_service.history("P-100")] == [Direction.ENTREE]

    def test_lot_not_at_source(self, movement_service):
        movement_service.receive("P-100", RAW, 30, ["Z1"], lot_id="L1")
        with pytest.raises(InvalidTransferError):
            movement_service.transfer("P-100", "L3", "Z1", "Z2", quantity=15)


class TestQuality:
    def test_inspection_regrades_in_place(self, movement_service):
        movement_service.receive("P-100", RAW, 30, ["Z1"], lot_id="L1")
        result = movement_service.inspect("P-100", "L1", QualityStatus.CONFORME)

        (verdict,) = result.records
        assert verdict.direction is Direction.INSPECTION
        assert movement_service.stock("P-100")[0].quality_status is QualityStatus.CONFORME
        assert movement_service.issue("P-100", 10).records[0].quantity == 10

    def test_status_accepts_label(self, movement_service):
        movement_service.receive("P-100", RAW, 30, ["Z1"], lot_id="L1")
        movement_service.inspect("P-100", "L1", "non-conforme")
        assert movement_service.stock("P-100")[0].quality_status is QualityStatus.NON_CONFORME

    def test_isolate_then_release(self, movement_service):
        movement_service.receive("P-100", RAW, 150, ["Z1"], lot_id="L1")
        isolated = movement_service.inspect(
            "P-100", "L1", QualityStatus.NON_CONFORME, isolate_to="PRISON"
        )

        assert [r.direction for r in isolated.records] == [
            Direction.INSPECTION,
            Direction.INSPECTION,
            Direction.SORTIE,
            Direction.SORTIE,
            Direction.ENTREE,
        ]
        (held,) = movement_service.stock("P-100")
        assert (held.location_id, held.available) == ("PRISON", 150)
        assert held.quality_status is QualityStatus.NON_CONFORME
        assert movement_service.available_for_issue("P-100") == []

        released = movement_service.release_from_quarantine("P-100", "L1", "PRISON", "Z1")
        assert released.records[0].quality_status is QualityStatus.CONFORME
        assert stock_by_slot(movement_service) == {("L1", "Z1", 1): 100, ("L1", "Z1", 2): 50}
        assert all(g.quality_status is QualityStatus.CONFORME for g in movement_service.stock("P-100"))

    def test_release_beyond_destination_capacity(self, movement_service, memory_store):
        movement_service.receive("P-100", RAW, 150, ["Z1"], lot_id="L1")
        movement_service.inspect("P-100", "L1", QualityStatus.NON_CONFORME, isolate_to="PRISON")
        before = len(memory_store.all_movements())

        with pytest.raises(InsufficientCapacityError):
            movement_service.release_from_quarantine("P-100", "L1", "PRISON", "Z2")
        assert len(memory_store.all_movements()) == before

    def test_isolation_requires_non_conforme(self, movement_service):
        movement_service.receive("P-100", RAW, 5, ["Z1"], lot_id="L1")
        with pytest.raises(ValueError):
            movement_service.inspect("P-100", "L1", QualityStatus.CONFORME, isolate_to="PRISON")

    def test_isolation_target_must_be_quarantine(self, movement_service):
        movement_service.receive("P-100", RAW, 5, ["Z1"], lot_id="L1")
        with pytest.raises(ValueError):
            movement_service.inspect("P-100", "L1", QualityStatus.NON_CONFORME, isolate_to="Z2")

    def test_release_to_quarantine_rejected(self, movement_service):
        with pytest.raises(ValueError):
            movement_service.release_from_quarantine("P-100", "L1", "PRISON", "PRISON")

    def test_inspect_unknown_lot(self, movement_service):
        with pytest.raises(LotNotFoundError):
            movement_service.inspect("P-100", "L404", QualityStatus.CONFORME)


class TestScanSession:
    def _stocked(self, service):
        service.receive(
            "P-100", RAW, 50, ["Z1"], lot_id="L1", quality_status=QualityStatus.CONFORME
        )

    def test_commit_writes_confirmed_takes(self, movement_service):
        self._stocked(movement_service)
        session = movement_service.open_scan_session("P-100", 30)

        outcome = session.scan(ScanPayload("L1", 50, 1))
        assert outcome.status is ScanStatus.NEEDS_CONFIRMATION
        session.confirm_partial()

        result = movement_service.commit_scan_session(session)
        assert result.operation == "scan_commit"
        assert [r.quantity for r in result.records] == [30]
        assert session.state is SessionState.COMMITTED
        assert stock_by_slot(movement_service) == {("L1", "Z1", 1): 20}

    def test_commit_conflict_not_retried(self, movement_service, memory_store):
        self._stocked(movement_service)
        session = movement_service.open_scan_session("P-100", 30)
        session.scan(ScanPayload("L1", 50, 1))
        session.confirm_partial()

        movement_service.issue("P-100", 5)

        with pytest.raises(LedgerConflictError):
            movement_service.commit_scan_session(session)
        assert session.state is SessionState.SATISFIED
        assert stock_by_slot(movement_service) == {("L1", "Z1", 1): 45}

    def test_scan_decodes_label_text(self, movement_service):
        self._stocked(movement_service)
        session = movement_service.open_scan_session("P-100", 50)

        outcome = movement_service.scan(session, "L1|50|1")
        assert outcome.status is ScanStatus.ACCEPTED
        assert session.state is SessionState.SATISFIED

    def test_legacy_label_floor_resolved_through_catalog(self, movement_service):
        self._stocked(movement_service)
        session = movement_service.open_scan_session("P-100", 50)

        label = json.dumps(
            {
                "productId": 100,
                "batchNumber": "L1",
                "quantity": 50,
                "location": "Z1",
                "floors": [{"name": "Etage 1", "quantity": 50}],
                "operationType": "Sortie",
                "timestamp": "2024-03-01T08:00:00.000Z",
            }
        )
        assert movement_service.scan(session, label).status is ScanStatus.ACCEPTED
        assert session.state is SessionState.SATISFIED

    def test_legacy_labels_follow_config(self, memory_store, warehouse, deterministic_clock):
        service = service_over(
            memory_store, warehouse, deterministic_clock, accept_legacy_scan_payload=False
        )
        self._stocked(service)
        session = service.open_scan_session("P-100", 50)

        label = '{"batchNumber": "L1", "quantity": 50, "location": "Z1", "floors": [{"name": "Etage 1"}]}'
        with pytest.raises(ScanPayloadError):
            service.scan(session, label)
        assert service.scan(session, "L1|50|1").status is ScanStatus.ACCEPTED

    def test_short_commit_after_smaller_partial_take(self, movement_service):
        self._stocked(movement_service)
        session = movement_service.open_scan_session("P-100", 30)
        session.scan(ScanPayload("L1", 50, 1))
        session.confirm_partial(20)
        assert session.state is SessionState.OPEN

        with pytest.raises(ScanSessionStateError):
            movement_service.commit_scan_session(session)

        result = movement_service.commit_scan_session(session, allow_short=True)
        assert [r.quantity for r in result.records] == [20]
        assert session.state is SessionState.COMMITTED
        assert stock_by_slot(movement_service) == {("L1", "Z1", 1): 30}

    def test_open_session_without_stock(self, movement_service):
        with pytest.raises(InsufficientStockError):
            movement_service.open_scan_session("P-100", 1)


class TestLogging:
    def test_operation_completed_carries_context(self, movement_service, captured_logs):
        movement_service.receive("P-100", RAW, 5, ["Z1"])

        (done,) = [r for r in captured_logs() if r["message"] == "operation_completed"]
        assert done["operation"] == "receive"
        assert done["product_id"] == "P-100"
        assert done["attempts"] == 1
        assert "operation_id" in done
