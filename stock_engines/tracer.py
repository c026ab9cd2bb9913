"""
stock_engines.tracer -- Engine invocation tracer emitting STOCK_ENGINE_TRACE.

Responsibility:
    Provide a lightweight decorator (``@traced_engine``) that wraps pure
    engine invocations with structured trace logging.  The trace captures
    engine_name, engine_version, input_fingerprint (deterministic SHA-256
    hash of selected inputs), and duration_ms.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Does NOT introduce I/O into engines; emits a log record only.
    Uses its own logger namespace (``stock_kernel.engines.tracer``).

Invariants enforced:
    - Fingerprint computation is deterministic: _canonicalize produces
      stable string representations; dict keys are sorted; sets are
      sorted by their canonical form.
    - Engine purity: the decorator only reads arguments and emits a log
      record; it does not mutate inputs.

Failure modes:
    - Fingerprint fields that are not parameters of the wrapped function
      are recorded as "null".

Usage:
    from stock_engines.tracer import traced_engine

    @traced_engine("fifo", "1.0", fingerprint_fields=("quantity", "quality_filter"))
    def allocate(quantity, candidates, quality_filter=QualityStatus.CONFORME):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any

_logger = logging.getLogger("stock_kernel.engines.tracer")


def _canonicalize(value: Any) -> str:
    """Produce a stable string representation of a value for fingerprinting."""
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (bool, int, float)):
        return str(value)
    if isinstance(value, str):
        return value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Mapping):
        items = sorted((_canonicalize(k), _canonicalize(v)) for k, v in value.items())
        return "{" + ",".join(f"{k}:{v}" for k, v in items) + "}"
    if isinstance(value, (set, frozenset)):
        return "{" + ",".join(sorted(_canonicalize(v) for v in value)) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """
    Compute a 16-char SHA-256 prefix over the selected input fields.

    Missing fields are recorded as "null".  Identical inputs always give
    the same fingerprint.
    """
    parts: list[str] = []
    for name in fingerprint_fields:
        parts.append(f"{name}={_canonicalize(arguments.get(name))}")
    canonical = "|".join(parts)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits STOCK_ENGINE_TRACE for pure engine invocations.

    Args:
        engine_name: Engine identifier (e.g., "aggregation").
        engine_version: Engine version (e.g., "1.0").
        fingerprint_fields: Parameter names to include in the input
            fingerprint hash.  Positional and keyword arguments are both
            resolved against the function signature.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                bound.apply_defaults()
                fp = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.info(
                "STOCK_ENGINE_TRACE",
                extra={
                    "trace_type": "STOCK_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
