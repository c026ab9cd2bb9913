"""
Tests for ScanSession.

Covers:
- Partial-take prompt before accepting
- Duplicate and not-in-plan scans leave the session unchanged
- OPEN -> SATISFIED -> COMMITTED, short commits, and cancellation
- Materialized Sorties use the confirmed quantities
"""

import pytest

from stock_engines.aggregation import aggregate
from stock_engines.fifo import allocate
from stock_kernel.domain.values import Direction, ScanPayload
from stock_kernel.exceptions import (
    DuplicateScanError,
    InsufficientStockError,
    NotInPlanError,
    ScanSessionStateError,
)
from stock_services.scan_session import ScanSession, ScanStatus, SessionState
from tests.factories import BASE_TIME, make_record


def session_for(records, quantity) -> ScanSession:
    plan = allocate(quantity, aggregate(records, "P-100"))
    return ScanSession(plan, session_id="S-1")


@pytest.fixture
def half_slot_session():
    # Plan takes 30 of the 50 held at sub-location 7
    return session_for([make_record(Direction.ENTREE, 50, lot_id="L1", sub_location_id=7)], 30)


@pytest.fixture
def two_slot_session():
    records = [
        make_record(Direction.ENTREE, 10, lot_id="L1", sub_location_id=1),
        make_record(Direction.ENTREE, 10, lot_id="L2", sub_location_id=2),
    ]
    return session_for(records, 20)


class TestPartialTake:
    def test_prompt_before_accepting(self, half_slot_session):
        outcome = half_slot_session.scan(ScanPayload("L1", 50, 7))

        assert outcome.status is ScanStatus.NEEDS_CONFIRMATION
        assert outcome.prompt.requested == 30
        assert outcome.prompt.available == 50
        assert half_slot_session.confirmed == ()
        assert half_slot_session.pending_prompt == outcome.prompt

    def test_confirm_planned_amount_satisfies(self, half_slot_session):
        half_slot_session.scan(ScanPayload("L1", 50, 7))
        outcome = half_slot_session.confirm_partial()

        assert outcome.status is ScanStatus.ACCEPTED
        assert outcome.take.quantity == 30
        assert half_slot_session.state is SessionState.SATISFIED
        assert half_slot_session.pending_prompt is None

    def test_confirm_smaller_amount_stays_open(self, half_slot_session):
        half_slot_session.scan(ScanPayload("L1", 50, 7))
        half_slot_session.confirm_partial(20)
        assert half_slot_session.state is SessionState.OPEN
        assert half_slot_session.remaining == 10

    @pytest.mark.parametrize("bad", [0, 31, -1])
    def test_confirm_out_of_range(self, half_slot_session, bad):
        half_slot_session.scan(ScanPayload("L1", 50, 7))
        with pytest.raises(ValueError):
            half_slot_session.confirm_partial(bad)
        assert half_slot_session.pending_prompt is not None

    def test_scan_blocked_while_prompt_pending(self, half_slot_session):
        half_slot_session.scan(ScanPayload("L1", 50, 7))
        with pytest.raises(ScanSessionStateError):
            half_slot_session.scan(ScanPayload("L1", 50, 7))

    def test_decline_keeps_line_open(self, half_slot_session):
        half_slot_session.scan(ScanPayload("L1", 50, 7))
        half_slot_session.decline_partial()

        assert half_slot_session.pending_prompt is None
        assert half_slot_session.confirmed == ()
        outcome = half_slot_session.scan(ScanPayload("L1", 50, 7))
        assert outcome.status is ScanStatus.NEEDS_CONFIRMATION

    def test_confirm_without_prompt(self, two_slot_session):
        with pytest.raises(ScanSessionStateError):
            two_slot_session.confirm_partial()


class TestRejectedScans:
    def test_not_in_plan(self, two_slot_session):
        with pytest.raises(NotInPlanError) as exc_info:
            two_slot_session.scan(ScanPayload("L9", 10, 1))
        assert exc_info.value.code == "NOT_IN_PLAN"
        assert two_slot_session.confirmed == ()
        assert two_slot_session.state is SessionState.OPEN

    def test_right_lot_wrong_floor(self, two_slot_session):
        with pytest.raises(NotInPlanError):
            two_slot_session.scan(ScanPayload("L1", 10, 2))

    def test_duplicate(self, two_slot_session):
        two_slot_session.scan(ScanPayload("L1", 10, 1))
        with pytest.raises(DuplicateScanError) as exc_info:
            two_slot_session.scan(ScanPayload("L1", 10, 1))
        assert exc_info.value.code == "DUPLICATE_SCAN"
        assert two_slot_session.confirmed_quantity == 10
        assert two_slot_session.state is SessionState.OPEN


class TestLifecycle:
    def test_incomplete_plan_rejected(self):
        records = [make_record(Direction.ENTREE, 5)]
        with pytest.raises(InsufficientStockError):
            session_for(records, 10)

    def test_full_walk_and_commit(self, two_slot_session):
        first = two_slot_session.scan(ScanPayload("L1", 10, 1))
        assert first.status is ScanStatus.ACCEPTED
        assert two_slot_session.state is SessionState.OPEN

        two_slot_session.scan(ScanPayload("L2", 10, 2))
        assert two_slot_session.state is SessionState.SATISFIED
        assert two_slot_session.remaining == 0

        records = two_slot_session.commit(BASE_TIME)
        assert [(r.lot_id, r.quantity) for r in records] == [("L1", 10), ("L2", 10)]
        assert all(r.direction is Direction.SORTIE for r in records)
        assert two_slot_session.state is SessionState.COMMITTED

    def test_scan_after_satisfied(self, two_slot_session):
        two_slot_session.scan(ScanPayload("L1", 10, 1))
        two_slot_session.scan(ScanPayload("L2", 10, 2))
        with pytest.raises(ScanSessionStateError):
            two_slot_session.scan(ScanPayload("L1", 10, 1))

    def test_commit_before_satisfied(self, two_slot_session):
        two_slot_session.scan(ScanPayload("L1", 10, 1))
        with pytest.raises(ScanSessionStateError):
            two_slot_session.commit(BASE_TIME)

    def test_rescan_after_smaller_take_is_duplicate(self, half_slot_session):
        half_slot_session.scan(ScanPayload("L1", 50, 7))
        half_slot_session.confirm_partial(20)
        with pytest.raises(DuplicateScanError):
            half_slot_session.scan(ScanPayload("L1", 50, 7))

    def test_short_commit_after_smaller_take(self, half_slot_session):
        half_slot_session.scan(ScanPayload("L1", 50, 7))
        half_slot_session.confirm_partial(20)

        with pytest.raises(ScanSessionStateError):
            half_slot_session.commit(BASE_TIME)
        records = half_slot_session.commit(BASE_TIME, allow_short=True)

        assert [(r.lot_id, r.sub_location_id, r.quantity) for r in records] == [("L1", 7, 20)]
        assert half_slot_session.state is SessionState.COMMITTED

    def test_short_commit_of_partially_walked_plan(self, two_slot_session, captured_logs):
        two_slot_session.scan(ScanPayload("L1", 10, 1))
        records = two_slot_session.commit(BASE_TIME, allow_short=True)

        assert [(r.lot_id, r.quantity) for r in records] == [("L1", 10)]
        committed = [r for r in captured_logs() if r["message"] == "scan_session_committed"]
        assert committed[0]["shortfall"] == 10

    def test_short_commit_needs_a_take(self, two_slot_session):
        with pytest.raises(ScanSessionStateError):
            two_slot_session.commit(BASE_TIME, allow_short=True)
        assert two_slot_session.state is SessionState.OPEN

    def test_short_commit_blocked_while_prompt_pending(self, half_slot_session):
        half_slot_session.scan(ScanPayload("L1", 50, 7))
        with pytest.raises(ScanSessionStateError):
            half_slot_session.commit(BASE_TIME, allow_short=True)

    def test_session_takes_product_type_from_plan(self, two_slot_session):
        assert two_slot_session.product_type is two_slot_session.plan.lines[0].group.product_type

    def test_cancel_open_session(self, two_slot_session):
        two_slot_session.scan(ScanPayload("L1", 10, 1))
        two_slot_session.cancel()
        assert two_slot_session.state is SessionState.CANCELLED
        with pytest.raises(ScanSessionStateError):
            two_slot_session.scan(ScanPayload("L2", 10, 2))

    def test_cannot_cancel_committed(self, two_slot_session):
        two_slot_session.scan(ScanPayload("L1", 10, 1))
        two_slot_session.scan(ScanPayload("L2", 10, 2))
        two_slot_session.commit(BASE_TIME)
        with pytest.raises(ScanSessionStateError):
            two_slot_session.cancel()

    def test_plan_is_not_modified(self, half_slot_session):
        before = half_slot_session.plan
        half_slot_session.scan(ScanPayload("L1", 50, 7))
        half_slot_session.confirm_partial(20)
        assert half_slot_session.plan is before
        assert before.lines[0].quantity_taken == 30

    def test_logs_carry_session_id(self, two_slot_session, captured_logs):
        two_slot_session.scan(ScanPayload("L1", 10, 1))
        accepted = [r for r in captured_logs() if r["message"] == "scan_accepted"]
        assert accepted
        assert accepted[0]["session_id"] == "S-1"
