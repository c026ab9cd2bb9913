"""
stock_services -- stateful orchestration over the stock engines.

Transfer coordination, scan reconciliation, the scan payload boundary and
the MovementService operation surface.  May import stock_kernel,
stock_engines and stock_config.
"""

from stock_services.movement_service import MovementService, OperationResult
from stock_services.scan_payload import decode_scan_payload, encode_scan_payload
from stock_services.scan_session import (
    ConfirmedTake,
    PartialTakePrompt,
    ScanOutcome,
    ScanSession,
    ScanStatus,
    SessionState,
)
from stock_services.transfer_coordinator import TransferCoordinator, TransferResult

__all__ = [
    "ConfirmedTake",
    "MovementService",
    "OperationResult",
    "PartialTakePrompt",
    "ScanOutcome",
    "ScanSession",
    "ScanStatus",
    "SessionState",
    "TransferCoordinator",
    "TransferResult",
    "decode_scan_payload",
    "encode_scan_payload",
]
