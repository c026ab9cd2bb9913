"""Lot number generation for Entrée operations."""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime


def generate_lot_id(
    product_id: str,
    at: datetime,
    prefix: str = "LOT",
    existing: Collection[str] = (),
) -> str:
    """
    Build a lot number of the form ``LOT-YYYYMMDD-HHMMSS-<product_id>``.

    Two receipts of the same product within one second would collide, so a
    ``-2``, ``-3``... suffix is appended until the id is absent from
    ``existing``.

    Raises:
        ValueError: if ``product_id`` or ``prefix`` is blank.
    """
    if not str(product_id).strip():
        raise ValueError("product_id is required to build a lot number")
    if not prefix.strip():
        raise ValueError("lot prefix cannot be blank")

    base = f"{prefix}-{at:%Y%m%d}-{at:%H%M%S}-{product_id}"
    candidate = base
    suffix = 2
    while candidate in existing:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate
