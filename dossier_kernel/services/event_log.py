"""
EventLogService -- append-only audit/event log writer.

Responsibility:
    Appends one Event row per state transition: dossier creation and status
    changes, step start/submit/complete/reject, field and document reviews,
    uploads and deliveries, payments received or failed.

Architecture position:
    Kernel > Services -- imperative shell.  Called by every mutating
    service after its primary write has been flushed.

Invariants enforced:
    - Events are appended, never updated or deleted (db/immutability.py).
    - seq comes from SequenceService (locked counter row).
    - payload_hash is the SHA-256 of the canonical JSON payload.

Failure modes:
    - Event writes are best-effort.  The write runs inside a SAVEPOINT; a
      store error rolls back only the savepoint, is logged as a warning and
      ``record`` returns None.  The caller's primary write is untouched.

Audit relevance:
    This is the data source for the audit trail and timeline selectors.
"""

from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dossier_kernel.domain.clock import Clock
from dossier_kernel.domain.identity import Caller
from dossier_kernel.domain.workflow import EventType
from dossier_kernel.logging_config import get_logger
from dossier_kernel.models.event import Event
from dossier_kernel.services.base import BaseService
from dossier_kernel.services.sequence_service import SequenceService
from dossier_kernel.utils.hashing import hash_payload, to_json_safe

logger = get_logger("services.event_log")


class EventLogService(BaseService):
    """Best-effort writer for the event log."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._sequences = SequenceService(session)

    def record(
        self,
        *,
        entity_type: str,
        entity_id: UUID,
        event_type: EventType,
        caller: Caller,
        payload: dict[str, Any] | None = None,
        dossier_id: UUID | None = None,
    ) -> Event | None:
        """
        Append an event inside a savepoint.

        Returns:
            The flushed Event, or None when the write failed (logged).
        """
        body = to_json_safe(payload or {})
        savepoint = self.session.begin_nested()
        try:
            event = Event(
                seq=self._sequences.next_value(SequenceService.EVENT),
                entity_type=entity_type,
                entity_id=entity_id,
                dossier_id=dossier_id,
                event_type=event_type,
                actor_type=caller.actor_type,
                actor_id=caller.id,
                payload=body,
                payload_hash=hash_payload(body),
                created_at=self.clock.now(),
            )
            self.session.add(event)
            self.session.flush()
            savepoint.commit()
        except SQLAlchemyError:
            savepoint.rollback()
            logger.warning(
                "event_write_failed",
                extra={
                    "event_type": EventType(event_type).value,
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                },
                exc_info=True,
            )
            return None

        logger.debug(
            "event_recorded",
            extra={
                "event_type": event.event_type,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "seq": event.seq,
            },
        )
        return event
