"""
ORM-Level Immutability Enforcement for the movement ledger.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners registered here reject both for ``MovementModel``:

    session.flush()
         |
         v
    [before_update] --> _reject_movement_update() --> ImmutabilityViolationError
    [before_delete] --> _reject_movement_delete() --> ImmutabilityViolationError

A wrong movement is corrected by appending a compensating record, never by
editing history.  Only code that goes through the ORM is covered; raw SQL is
out of reach of these listeners.
"""

from sqlalchemy import event

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.movement import MovementModel

logger = get_logger("db.immutability")


def _reject_movement_update(mapper, connection, target):
    logger.error(
        "movement_update_blocked",
        extra={"record_id": target.id, "lot_id": target.lot_id},
    )
    raise ImmutabilityViolationError(
        entity_type="MovementRecord",
        entity_id=str(target.id),
        reason="ledger records are append-only",
    )


def _reject_movement_delete(mapper, connection, target):
    logger.error(
        "movement_delete_blocked",
        extra={"record_id": target.id, "lot_id": target.lot_id},
    )
    raise ImmutabilityViolationError(
        entity_type="MovementRecord",
        entity_id=str(target.id),
        reason="ledger records cannot be deleted",
    )


_LISTENERS = (
    ("before_update", _reject_movement_update),
    ("before_delete", _reject_movement_delete),
)


def register_immutability_listeners() -> None:
    """Register the ledger immutability listeners (idempotent)."""
    for name, fn in _LISTENERS:
        if not event.contains(MovementModel, name, fn):
            event.listen(MovementModel, name, fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners. FOR TESTING ONLY."""
    for name, fn in _LISTENERS:
        if event.contains(MovementModel, name, fn):
            event.remove(MovementModel, name, fn)
