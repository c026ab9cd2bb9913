"""
Scan payload boundary.

Lot labels have been printed in two text shapes over time:

    pipe     LOT-20240301-081500-P-100|25|7          lot | quantity | floor id
    legacy   {"batchNumber": "...", "quantity": 25, "location": "Z1",
              "floors": [{"name": "Etage 1", "quantity": 25}], ...}

Legacy labels name the floor instead of carrying its id, so decoding them
needs a ``FloorResolver`` that maps (location, floor name) to a
sub-location id.  Both shapes decode into one ``ScanPayload``; nothing past
this module knows which shape was scanned.  Only the text is handled here,
image decoding is the scanner's job.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from stock_kernel.domain.values import ScanPayload
from stock_kernel.exceptions import ScanPayloadError
from stock_kernel.logging_config import get_logger

logger = get_logger("services.scan_payload")

_SEPARATOR = "|"
_LEGACY_LOT_KEYS = ("batchNumber", "lot", "lotId")

# (location id, floor name) -> sub-location id, None when unknown
FloorResolver = Callable[[str, str], int | None]


def _as_int(value: Any, field: str, text: str) -> int:
    if isinstance(value, bool):
        raise ScanPayloadError(text, f"{field} is not an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ScanPayloadError(text, f"{field} is not an integer")


def _build(text: str, lot_id: Any, quantity: Any, sub_location_id: Any) -> ScanPayload:
    if not isinstance(lot_id, str) or not lot_id.strip():
        raise ScanPayloadError(text, "lot is missing")
    qty = _as_int(quantity, "quantity", text)
    if qty <= 0:
        raise ScanPayloadError(text, "quantity must be positive")
    return ScanPayload(
        lot_id=lot_id.strip(),
        quantity=qty,
        sub_location_id=_as_int(sub_location_id, "floor id", text),
    )


def _decode_legacy(text: str, resolve_floor: FloorResolver | None) -> ScanPayload:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ScanPayloadError(text, f"malformed JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ScanPayloadError(text, "JSON payload must be an object")

    lot_id = next((data[k] for k in _LEGACY_LOT_KEYS if data.get(k)), None)
    location_id = data.get("location")
    if not isinstance(location_id, str) or not location_id.strip():
        raise ScanPayloadError(text, "location is missing")
    floors = data.get("floors")
    if not isinstance(floors, list) or not floors or not isinstance(floors[0], dict):
        raise ScanPayloadError(text, "floors is missing")
    floor_name = floors[0].get("name")
    if not isinstance(floor_name, str) or not floor_name.strip():
        raise ScanPayloadError(text, "floor name is missing")

    if resolve_floor is None:
        raise ScanPayloadError(text, "legacy labels need a location catalog to resolve floors")
    sub_location_id = resolve_floor(location_id.strip(), floor_name.strip())
    if sub_location_id is None:
        raise ScanPayloadError(
            text, f"unknown floor {floor_name.strip()!r} in location {location_id.strip()!r}"
        )
    return _build(text, lot_id, data.get("quantity"), sub_location_id)


def decode_scan_payload(
    text: str,
    accept_legacy: bool = True,
    resolve_floor: FloorResolver | None = None,
) -> ScanPayload:
    """
    Decode scanned label text.

    ``resolve_floor`` is only consulted for legacy labels; only the first
    entry of their ``floors`` list identifies the scanned slot.

    Raises:
        ScanPayloadError: text matches neither shape, the legacy shape is
            disabled, or its floor cannot be resolved.
    """
    if text is None or not text.strip():
        raise ScanPayloadError(text or "", "empty payload")
    stripped = text.strip()

    if stripped.startswith("{"):
        if not accept_legacy:
            raise ScanPayloadError(text, "legacy JSON labels are not accepted")
        payload = _decode_legacy(stripped, resolve_floor)
        logger.debug("scan_payload_decoded", extra={"shape": "legacy", "lot_id": payload.lot_id})
        return payload

    parts = [p.strip() for p in stripped.split(_SEPARATOR)]
    if len(parts) != 3:
        raise ScanPayloadError(text, f"expected 3 fields, got {len(parts)}")
    payload = _build(text, parts[0], parts[1], parts[2])
    logger.debug("scan_payload_decoded", extra={"shape": "pipe", "lot_id": payload.lot_id})
    return payload


def encode_scan_payload(payload: ScanPayload) -> str:
    """Label text in the pipe shape."""
    if _SEPARATOR in payload.lot_id:
        raise ValueError(f"lot id {payload.lot_id!r} cannot contain {_SEPARATOR!r}")
    return f"{payload.lot_id}{_SEPARATOR}{payload.quantity}{_SEPARATOR}{payload.sub_location_id}"
