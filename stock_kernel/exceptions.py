"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock operations fail for a handful of well-understood reasons, and the
caller has to react differently to each of them: show the operator the
shortfall, block the submission, re-aggregate and retry, or abort.
Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (requested vs. available, offending key)

Example:
    try:
        service.issue(product_id="P-1", quantity=40)
    except InsufficientStockError as e:
        render(f"Stock insuffisant: {e.available} disponible, {e.requested} demandé")
    except LedgerConflictError:
        # Stock picture changed under us -- MovementService already retried
        render("Réessayez")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockLedgerError (base)
    |
    +-- InsufficientStockError        recoverable, carries the shortfall
    |   +-- InsufficientCapacityError
    |
    +-- InvalidTransferError          recoverable, blocks submission
    +-- LotNotFoundError              recoverable
    +-- LocationNotFoundError         recoverable
    |
    +-- ScanError                     recoverable, session stays open
    |   +-- DuplicateScanError
    |   +-- NotInPlanError
    |   +-- ScanSessionStateError
    |   +-- ScanPayloadError
    |
    +-- InternalConsistencyError      FATAL, abort the operation
    |
    +-- ConcurrencyError
    |   +-- LedgerConflictError       recoverable by re-aggregating
    |
    +-- ImmutabilityViolationError    FATAL

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                   | When Raised
-----------------------|------------------------------------------------------
INSUFFICIENT_STOCK     | Allocation could not cover the requested quantity
INSUFFICIENT_CAPACITY  | Distribution could not place the requested quantity
INVALID_TRANSFER       | Same source/destination, lot absent at source, ...
LOT_NOT_FOUND          | Complément Stock / release on an unknown lot
LOCATION_NOT_FOUND     | Location id absent from the catalog
DUPLICATE_SCAN         | Key already confirmed in the scan session
NOT_IN_PLAN            | Scanned key is not part of the allocation plan
SCAN_SESSION_STATE     | Action not allowed in the session's current state
SCAN_PAYLOAD_INVALID   | Decoded QR text matches no known payload shape
INTERNAL_CONSISTENCY   | Transfer legs do not balance, negative stock observed
LEDGER_CONFLICT        | Compare-and-append failed: ledger moved underneath
IMMUTABILITY_VIOLATION | UPDATE or DELETE attempted on a ledger row
"""


class StockLedgerError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_LEDGER_ERROR"


# Stock / capacity shortfalls


class InsufficientStockError(StockLedgerError):
    """Allocation could not fully satisfy the requested quantity."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        requested: int,
        available: int,
        product_id: str | None = None,
        lot_id: str | None = None,
    ):
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        self.product_id = product_id
        self.lot_id = lot_id
        scope = f" of lot {lot_id}" if lot_id else ""
        super().__init__(
            f"Insufficient stock{scope}: requested {requested}, "
            f"available {available} (shortfall {self.shortfall})"
        )


class InsufficientCapacityError(InsufficientStockError):
    """Distribution could not place the requested quantity in the targets."""

    code: str = "INSUFFICIENT_CAPACITY"

    def __init__(self, requested: int, available: int):
        super().__init__(requested=requested, available=available)
        self.args = (
            f"Insufficient capacity: requested {requested}, "
            f"capacity {available} (shortfall {self.shortfall})",
        )


# Operation validation


class InvalidTransferError(StockLedgerError):
    """Transfer request cannot be honoured as submitted."""

    code: str = "INVALID_TRANSFER"

    def __init__(
        self,
        reason: str,
        lot_id: str,
        source_location_id: str,
        destination_location_id: str,
    ):
        self.reason = reason
        self.lot_id = lot_id
        self.source_location_id = source_location_id
        self.destination_location_id = destination_location_id
        super().__init__(
            f"Invalid transfer of lot {lot_id} from {source_location_id} "
            f"to {destination_location_id}: {reason}"
        )


class LotNotFoundError(StockLedgerError):
    """Lot has no history for the product."""

    code: str = "LOT_NOT_FOUND"

    def __init__(self, product_id: str, lot_id: str):
        self.product_id = product_id
        self.lot_id = lot_id
        super().__init__(f"Lot {lot_id} not found for product {product_id}")


class LocationNotFoundError(StockLedgerError):
    """Location id is not in the catalog."""

    code: str = "LOCATION_NOT_FOUND"

    def __init__(self, location_id: str):
        self.location_id = location_id
        super().__init__(f"Location not found: {location_id}")


# Scan session


class ScanError(StockLedgerError):
    """Base exception for scan reconciliation errors. Never aborts the session."""

    code: str = "SCAN_ERROR"


class DuplicateScanError(ScanError):
    """The scanned key was already confirmed in this session."""

    code: str = "DUPLICATE_SCAN"

    def __init__(self, key):
        self.key = key
        super().__init__(f"Duplicate scan of {key}")


class NotInPlanError(ScanError):
    """The scanned lot / sub-location is not part of the allocation plan."""

    code: str = "NOT_IN_PLAN"

    def __init__(self, lot_id: str, sub_location_id: int | None):
        self.lot_id = lot_id
        self.sub_location_id = sub_location_id
        super().__init__(
            f"Lot {lot_id} at sub-location {sub_location_id} is not in the plan"
        )


class ScanSessionStateError(ScanError):
    """Action not permitted in the session's current state."""

    code: str = "SCAN_SESSION_STATE"

    def __init__(self, state: str, action: str):
        self.state = state
        self.action = action
        super().__init__(f"Cannot {action} while session is {state}")


class ScanPayloadError(ScanError):
    """Decoded scan text does not match any accepted payload shape."""

    code: str = "SCAN_PAYLOAD_INVALID"

    def __init__(self, payload: str, reason: str):
        self.payload = payload
        self.reason = reason
        super().__init__(f"Invalid scan payload {payload!r}: {reason}")


# Fatal


class InternalConsistencyError(StockLedgerError):
    """
    The engine observed a state that should be impossible.

    Transfer legs that do not balance, or a negative physical availability.
    The operation must be aborted; no partial recovery is attempted.
    """

    code: str = "INTERNAL_CONSISTENCY"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Internal consistency violation: {detail}")


# Concurrency


class ConcurrencyError(StockLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class LedgerConflictError(ConcurrencyError):
    """Compare-and-append failed: one or more touched keys changed since read."""

    code: str = "LEDGER_CONFLICT"

    def __init__(self, stale_keys):
        self.stale_keys = tuple(stale_keys)
        super().__init__(
            f"Ledger conflict on {len(self.stale_keys)} key(s): "
            "stock was modified by another operation"
        )


# Immutability


class ImmutabilityViolationError(StockLedgerError):
    """Attempted to modify or delete an append-only ledger record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
