"""
Module: stock_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for
    stock_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import stock_kernel domain types, exceptions and logging.
    MUST NOT import stock_services or stock_config.

Invariants enforced:
    - Purity: engines never read the clock.  ``created_at`` is always an
      explicit parameter supplied by the caller.
    - Integer quantities only.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine`` (see
    ``stock_engines.tracer``), emitting STOCK_ENGINE_TRACE log records.

Usage:
    from stock_engines import aggregate, allocate, distribute

    groups = aggregate(records, "P-100")
    plan = allocate(40, groups).require_complete()
"""

from stock_engines.aggregation import (
    StockGroup,
    aggregate,
    candidates,
    ledger_versions,
    movement_history,
    total_available,
)
from stock_engines.distribution import (
    CapacitySlot,
    DistributionLine,
    DistributionPlan,
    ZoneSelection,
    capacity_by_zone,
    distribute,
    fill_slots,
    slots_for,
)
from stock_engines.fifo import AllocationLine, AllocationPlan, allocate, fifo_sort_key
from stock_engines.materialize import entree_records, inspection_record, sortie_records
from stock_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    # Aggregation
    "StockGroup",
    "aggregate",
    "candidates",
    "ledger_versions",
    "movement_history",
    "total_available",
    # Distribution
    "CapacitySlot",
    "DistributionLine",
    "DistributionPlan",
    "ZoneSelection",
    "capacity_by_zone",
    "distribute",
    "fill_slots",
    "slots_for",
    # FIFO
    "AllocationLine",
    "AllocationPlan",
    "allocate",
    "fifo_sort_key",
    # Materialization
    "entree_records",
    "inspection_record",
    "sortie_records",
    # Tracing
    "compute_input_fingerprint",
    "traced_engine",
]
