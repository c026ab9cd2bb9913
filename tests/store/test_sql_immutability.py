"""
The SQLAlchemy ledger is append-only.

Covers:
- ORM UPDATE of a movement row raises ImmutabilityViolationError
- ORM DELETE of a movement row raises ImmutabilityViolationError
- Version counters stay in step with row counts
"""

import pytest
from sqlalchemy import func, select

from stock_kernel.db.engine import session_scope
from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.models.movement import MovementModel, StockKeyVersion
from tests.factories import make_record

pytestmark = pytest.mark.sql


class TestImmutability:
    def test_update_rejected(self, sql_store, sql_session_factory):
        (stored,) = sql_store.append_movements([make_record(quantity=10)])

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            with session_scope(sql_session_factory) as session:
                row = session.get(MovementModel, stored.record_id)
                row.quantity = 99
                session.flush()
        assert "MovementRecord" in str(exc_info.value)

        (read,) = sql_store.list_movements("P-100")
        assert read.quantity == 10

    def test_delete_rejected(self, sql_store, sql_session_factory):
        (stored,) = sql_store.append_movements([make_record()])

        with pytest.raises(ImmutabilityViolationError):
            with session_scope(sql_session_factory) as session:
                session.delete(session.get(MovementModel, stored.record_id))
                session.flush()

        assert len(sql_store.list_movements("P-100")) == 1


class TestVersionRows:
    def test_version_equals_row_count(self, sql_store, sql_session_factory):
        sql_store.append_movements([make_record(), make_record(minutes=1)])
        sql_store.append_movements([make_record(sub_location_id=2)])

        with session_scope(sql_session_factory) as session:
            versions = dict(
                session.execute(select(StockKeyVersion.stock_key, StockKeyVersion.version)).all()
            )
            rows = session.execute(select(func.count()).select_from(MovementModel)).scalar_one()

        assert versions == {"P-100|L1|Z1|1": 2, "P-100|L1|Z1|2": 1}
        assert rows == 3
