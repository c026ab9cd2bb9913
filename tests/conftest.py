"""
Pytest fixtures for the stock ledger test suite.

Provides:
- Structured logging set up once per suite, plus a ``captured_logs`` fixture
- A deterministic clock
- Record / location factories
- An in-memory store and a SQLite-backed SQL store

Environment Variables:
- DATABASE_URL: SQLAlchemy URL for the SQL store tests.  Defaults to a
  throwaway SQLite file under the pytest tmp directory.
"""

import json
import logging
import os
from io import StringIO

import pytest

from stock_config.schema import EngineConfig
from stock_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stock_kernel.services.location_catalog import StaticLocationCatalog
from stock_kernel.services.movement_store import InMemoryMovementStore, SqlMovementStore
from stock_services.movement_service import MovementService
from tests.factories import BASE_TIME, make_location, make_record


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture stock_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            service.issue("P-100", 10)
            logs = captured_logs()
            assert any(r["message"] == "operation_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Time
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Clock frozen at BASE_TIME; call ``tick()`` to move it forward."""
    return DeterministicClock(BASE_TIME)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def location_factory():
    return make_location


@pytest.fixture
def warehouse():
    """Two regular zones and one quarantine zone, sub-location ids unique."""
    return StaticLocationCatalog(
        [
            make_location("Z1", [100, 100], first_id=1),
            make_location("Z2", [50, 50], first_id=11),
            make_location("PRISON", [500], first_id=91, is_quarantine=True),
        ]
    )


# =============================================================================
# Stores and services
# =============================================================================


@pytest.fixture
def memory_store():
    return InMemoryMovementStore()


@pytest.fixture
def engine_config():
    return EngineConfig()


@pytest.fixture
def movement_service(memory_store, warehouse, engine_config, deterministic_clock):
    return MovementService(
        store=memory_store,
        catalog=warehouse,
        config=engine_config,
        clock=deterministic_clock,
    )


@pytest.fixture
def sql_session_factory(tmp_path):
    """Fresh schema on SQLite (or DATABASE_URL) for one test."""
    url = os.environ.get("DATABASE_URL", f"sqlite:///{tmp_path / 'stock.db'}")
    init_engine_from_url(url, echo=False)
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def sql_store(sql_session_factory):
    return SqlMovementStore(sql_session_factory)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "sql: test uses the SQLAlchemy store")
    config.addinivalue_line("markers", "slow: property-based or threaded test")
