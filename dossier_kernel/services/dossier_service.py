"""
DossierService -- the dossier aggregate.

Responsibility:
    Owns the business-process status of a dossier, its cancellation, its
    progress figure and the "current step instance" pointer as steps
    complete.

Architecture position:
    Kernel > Services -- imperative shell.  Called by staff tooling and by
    StepInstanceService after a step completes.

Invariants enforced:
    - Status is a coarse indicator set explicitly (staff or provisioning);
      it is not derived from step validation, except that completing every
      template step moves the dossier to COMPLETED.
    - CLOSED and COMPLETED are terminal.
    - cancel() is idempotent for the same reason; a different reason on an
      already closed dossier is refused.
    - The current pointer only ever references an instance of the same
      dossier (also enforced by a composite foreign key).

Audit relevance:
    Every status change appends DOSSIER_STATUS_CHANGED with from/to.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from dossier_kernel.domain.clock import Clock
from dossier_kernel.domain.dtos import DossierProgress
from dossier_kernel.domain.identity import Caller
from dossier_kernel.domain.workflow import DossierStatus, EventType
from dossier_kernel.exceptions import (
    DossierAlreadyCancelledError,
    DossierClosedError,
    InvalidArgumentError,
)
from dossier_kernel.logging_config import get_logger
from dossier_kernel.models.dossier import Dossier
from dossier_kernel.models.step_instance import StepInstance
from dossier_kernel.services.access import DossierAccess
from dossier_kernel.services.base import BaseService
from dossier_kernel.services.event_log import EventLogService
from dossier_kernel.services.notifications import NotificationDispatcher, NotificationTemplate
from dossier_kernel.services.templates import ordered_steps

logger = get_logger("services.dossier")


class DossierService(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        events: EventLogService | None = None,
        notifications: NotificationDispatcher | None = None,
    ):
        super().__init__(session, clock)
        self.access = DossierAccess(session)
        self.events = events or EventLogService(session, self.clock)
        self.notifications = notifications or NotificationDispatcher()

    def get_dossier(self, dossier_id: UUID, caller: Caller) -> Dossier:
        return self.access.dossier(dossier_id, caller, "read_dossier")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def change_status(
        self,
        dossier_id: UUID,
        status: DossierStatus,
        caller: Caller,
        note: str | None = None,
    ) -> Dossier:
        """Set the business-process status (no-op if unchanged)."""
        target = DossierStatus(status)
        if target is DossierStatus.CLOSED:
            raise InvalidArgumentError("Use cancel() to close a dossier")

        dossier = self.access.dossier(dossier_id, caller, "change_dossier_status", lock=True)
        current = DossierStatus(dossier.status)
        if current is target:
            logger.info(
                "dossier_status_unchanged",
                extra={"dossier_id": str(dossier.id), "status": target.value},
            )
            return dossier
        if dossier.is_terminal:
            raise DossierClosedError(dossier.id, current.value)

        self._set_status(dossier, target, caller, {"note": note})
        return dossier

    def _set_status(
        self,
        dossier: Dossier,
        target: DossierStatus,
        caller: Caller,
        extra_payload: dict,
    ) -> None:
        previous = DossierStatus(dossier.status)
        dossier.status = target
        dossier.updated_by_id = caller.id
        if target is DossierStatus.COMPLETED and dossier.completed_at is None:
            dossier.completed_at = self.clock.now()
        self.session.flush()

        self.events.record(
            entity_type="Dossier",
            entity_id=dossier.id,
            event_type=EventType.DOSSIER_STATUS_CHANGED,
            caller=caller,
            dossier_id=dossier.id,
            payload={"from": previous.value, "to": target.value, **extra_payload},
        )
        self.notifications.notify(
            dossier.client_id,
            NotificationTemplate.DOSSIER_STATUS_CHANGED,
            {"dossier_id": dossier.id, "from": previous.value, "to": target.value},
        )
        logger.info(
            "dossier_status_changed",
            extra={
                "dossier_id": str(dossier.id),
                "from_status": previous.value,
                "to_status": target.value,
            },
        )

    def cancel(self, dossier_id: UUID, reason: str, caller: Caller) -> Dossier:
        """
        Close the dossier with cancellation metadata.

        Re-cancelling with the same reason is a no-op (retried admin request).
        """
        cleaned = (reason or "").strip()
        if not cleaned:
            raise InvalidArgumentError("Cancellation reason is required")

        dossier = self.access.dossier(dossier_id, caller, "cancel_dossier", lock=True)
        current = DossierStatus(dossier.status)

        if current is DossierStatus.CLOSED:
            existing = (dossier.meta or {}).get("cancellation_reason")
            if existing == cleaned:
                logger.info("dossier_cancel_noop", extra={"dossier_id": str(dossier.id)})
                return dossier
            raise DossierAlreadyCancelledError(dossier.id, existing)
        if dossier.is_terminal:
            raise DossierClosedError(dossier.id, current.value)

        now = self.clock.now()
        dossier.meta = {
            **(dossier.meta or {}),
            "cancelled_at": now.isoformat(),
            "cancellation_reason": cleaned,
            "cancelled_by": str(caller.id),
        }
        self._set_status(
            dossier,
            DossierStatus.CLOSED,
            caller,
            {"cancelled": True, "reason": cleaned},
        )
        return dossier

    # ------------------------------------------------------------------
    # Progress and pointer
    # ------------------------------------------------------------------

    def progress(self, dossier_id: UUID, caller: Caller) -> DossierProgress:
        """Completed step instances over total template steps."""
        dossier = self.access.dossier(dossier_id, caller, "read_dossier")
        template = ordered_steps(self.session, dossier.product_id)
        step_ids = [s.step_id for s in template]
        completed = 0
        if step_ids:
            completed = self.session.execute(
                select(func.count(StepInstance.id)).where(
                    StepInstance.dossier_id == dossier.id,
                    StepInstance.step_id.in_(step_ids),
                    StepInstance.completed_at.is_not(None),
                )
            ).scalar_one()
        return DossierProgress(
            dossier_id=dossier.id,
            completed_steps=completed,
            total_steps=len(template),
        )

    def point_to(self, dossier: Dossier, instance: StepInstance) -> None:
        """Repoint the current step instance (same dossier only)."""
        if instance.dossier_id != dossier.id:
            raise InvalidArgumentError(
                f"Step instance {instance.id} does not belong to dossier {dossier.id}"
            )
        dossier.current_step_instance_id = instance.id
        self.session.flush()

    def on_step_completed(
        self,
        dossier: Dossier,
        instance: StepInstance,
        caller: Caller,
    ) -> None:
        """
        Advance the current pointer past a completed instance and complete
        the dossier once every template step is complete.
        """
        template = ordered_steps(self.session, dossier.product_id)
        instances = {
            si.step_id: si
            for si in self.session.execute(
                select(StepInstance)
                .where(StepInstance.dossier_id == dossier.id)
                .execution_options(populate_existing=True)
            ).scalars()
        }
        ordered = [instances.get(t.step_id) for t in template]

        if dossier.current_step_instance_id in (None, instance.id):
            position = next(
                (i for i, si in enumerate(ordered) if si is not None and si.id == instance.id),
                None,
            )
            if position is not None:
                for nxt in ordered[position + 1:]:
                    if nxt is None or nxt.completed_at is not None:
                        continue
                    self.point_to(dossier, nxt)
                    if nxt.started_at is None:
                        nxt.started_at = self.clock.now()
                        self.session.flush()
                        self.events.record(
                            entity_type="StepInstance",
                            entity_id=nxt.id,
                            event_type=EventType.STEP_STARTED,
                            caller=caller,
                            dossier_id=dossier.id,
                            payload={"step_id": nxt.step_id, "via": "advance"},
                        )
                    break

        all_complete = bool(ordered) and all(
            si is not None and si.completed_at is not None for si in ordered
        )
        if all_complete and not dossier.is_terminal:
            self._set_status(
                dossier,
                DossierStatus.COMPLETED,
                caller,
                {"reason": "all_steps_completed"},
            )
