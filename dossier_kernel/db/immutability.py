"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Three record types are append-only:

Entity            | When Immutable          | Why
------------------|-------------------------|----------------------------------------
Event             | ALWAYS (from creation)  | Audit trail consumed by timeline UI
DocumentVersion   | ALWAYS (from creation)  | A version is a file snapshot; a new
                  |                         | upload is a new version
DocumentReview    | ALWAYS (from creation)  | Review history of a version

SQLAlchemy fires mapper events before UPDATE/DELETE reaches the database.
The listeners below intercept them and raise ImmutabilityViolationError, so
the flush (and the caller's transaction) is aborted before any SQL is sent.

    session.flush()
         |
         v
    [before_update] --> _block_update() --> ImmutabilityViolationError
    [before_delete] --> _block_delete() --> ImmutabilityViolationError

===============================================================================
USAGE
===============================================================================

    from dossier_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event

from dossier_kernel.exceptions import ImmutabilityViolationError
from dossier_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(target, operation: str) -> None:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} records are append-only ({operation} refused)",
    )


def _block_update(mapper, connection, target):
    _block(target, "UPDATE")


def _block_delete(mapper, connection, target):
    _block(target, "DELETE")


def _append_only_models() -> tuple:
    from dossier_kernel.models.document import DocumentReview, DocumentVersion
    from dossier_kernel.models.event import Event

    return (Event, DocumentVersion, DocumentReview)


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners (idempotent).

    Call this after all models are imported but before any database
    operations begin.
    """
    for model in _append_only_models():
        if not event.contains(model, "before_update", _block_update):
            event.listen(model, "before_update", _block_update)
        if not event.contains(model, "before_delete", _block_delete):
            event.listen(model, "before_delete", _block_delete)


def unregister_immutability_listeners() -> None:
    """Remove all immutability listeners. FOR TESTING ONLY."""
    for model in _append_only_models():
        if event.contains(model, "before_update", _block_update):
            event.remove(model, "before_update", _block_update)
        if event.contains(model, "before_delete", _block_delete):
            event.remove(model, "before_delete", _block_delete)
