"""
Workflow domain types (``dossier_kernel.domain.workflow``).

Responsibility
--------------
Status vocabularies for dossiers, step instances, field values, documents,
orders and events; the step-instance transition table; and the pure
evaluation of the step approval gate and of the step sequencing rule.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``STEP_TRANSITIONS`` defines the only valid validation-status moves.
  APPROVED is terminal.  REJECTED leads back to SUBMITTED (resubmission),
  never to a fresh DRAFT.
* ``evaluate_approval_gate`` is the single gating rule for step approval:
  every field value and every required document must be APPROVED.
* ``can_start_after`` only excludes a missing or DRAFT predecessor;
  SUBMITTED, UNDER_REVIEW, REJECTED and APPROVED all unblock the next step.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# =========================================================================
# Status vocabularies
# =========================================================================


class StepStatus(str, Enum):
    """Validation status of a step instance."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class FieldStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class DocumentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    OUTDATED = "OUTDATED"


class ReviewDecision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"

    @property
    def field_status(self) -> FieldStatus:
        return FieldStatus.APPROVED if self is ReviewDecision.APPROVE else FieldStatus.REJECTED

    @property
    def document_status(self) -> DocumentStatus:
        return (
            DocumentStatus.APPROVED
            if self is ReviewDecision.APPROVE
            else DocumentStatus.REJECTED
        )


class DossierStatus(str, Enum):
    """
    Coarse business-process status of a dossier.

    Set by staff or by provisioning; independent of step validation status.
    COMPLETED is reached when every template step is complete.
    """

    QUALIFICATION = "QUALIFICATION"
    FORM_SUBMITTED = "FORM_SUBMITTED"
    NM_PENDING = "NM_PENDING"
    LLC_ACCEPTED = "LLC_ACCEPTED"
    EIN_PENDING = "EIN_PENDING"
    BANK_PREPARATION = "BANK_PREPARATION"
    BANK_OPENED = "BANK_OPENED"
    WAITING_48H = "WAITING_48H"
    COMPLETED = "COMPLETED"
    CLOSED = "CLOSED"
    ERROR = "ERROR"


TERMINAL_DOSSIER_STATUSES: frozenset[DossierStatus] = frozenset({
    DossierStatus.COMPLETED,
    DossierStatus.CLOSED,
})


class DossierType(str, Enum):
    LLC = "LLC"
    CORP = "CORP"
    DUBAI = "DUBAI"
    BANKING = "BANKING"
    COMPLIANCE = "COMPLIANCE"
    OTHER = "OTHER"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"


class ClientStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class StepActorType(str, Enum):
    """Who performs a template step."""

    CLIENT = "CLIENT"
    ADMIN = "ADMIN"


class ActorType(str, Enum):
    """Who performed a recorded action."""

    USER = "USER"
    AGENT = "AGENT"
    SYSTEM = "SYSTEM"


class EventType(str, Enum):
    DOSSIER_CREATED = "DOSSIER_CREATED"
    DOSSIER_STATUS_CHANGED = "DOSSIER_STATUS_CHANGED"
    STEP_STARTED = "STEP_STARTED"
    STEP_SUBMITTED = "STEP_SUBMITTED"
    STEP_STATUS_CHANGED = "STEP_STATUS_CHANGED"
    STEP_COMPLETED = "STEP_COMPLETED"
    STEP_REJECTED = "STEP_REJECTED"
    FIELD_REVIEWED = "FIELD_REVIEWED"
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    DOCUMENT_REVIEWED = "DOCUMENT_REVIEWED"
    DOCUMENT_DELIVERED = "DOCUMENT_DELIVERED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    ERROR = "ERROR"


# =========================================================================
# Step instance lifecycle
# =========================================================================


STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.DRAFT: frozenset({StepStatus.SUBMITTED}),
    StepStatus.SUBMITTED: frozenset({
        StepStatus.SUBMITTED,
        StepStatus.UNDER_REVIEW,
        StepStatus.APPROVED,
        StepStatus.REJECTED,
    }),
    StepStatus.UNDER_REVIEW: frozenset({
        StepStatus.SUBMITTED,
        StepStatus.APPROVED,
        StepStatus.REJECTED,
    }),
    StepStatus.REJECTED: frozenset({StepStatus.SUBMITTED}),
    StepStatus.APPROVED: frozenset(),
}

# Statuses a reviewer can act on (UNDER_REVIEW gates like SUBMITTED)
REVIEWABLE_STEP_STATUSES: frozenset[StepStatus] = frozenset({
    StepStatus.SUBMITTED,
    StepStatus.UNDER_REVIEW,
})


def can_transition(current: StepStatus | str, target: StepStatus | str) -> bool:
    return StepStatus(target) in STEP_TRANSITIONS[StepStatus(current)]


def can_start_after(preceding_status: StepStatus | str | None) -> bool:
    """A step may start once its predecessor has been submitted at least once."""
    if preceding_status is None:
        return False
    return StepStatus(preceding_status) is not StepStatus.DRAFT


# =========================================================================
# Approval gate
# =========================================================================


@dataclass(frozen=True)
class FieldGateInput:
    field_key: str
    is_required: bool
    status: FieldStatus | None  # None: no value submitted


@dataclass(frozen=True)
class DocumentGateInput:
    document_type_code: str
    live_statuses: tuple[DocumentStatus, ...]  # non-OUTDATED documents


def evaluate_approval_gate(
    fields: list[FieldGateInput],
    documents: list[DocumentGateInput],
) -> list[str]:
    """
    Return the blockers preventing step approval; empty means approvable.

    Blockers:
        ``field:<key>:missing``     required field without a value
        ``field:<key>:<STATUS>``    submitted value not APPROVED
        ``document:<code>:missing`` required type with no live document
        ``document:<code>:<STATUS>`` a live document not APPROVED
    """
    blockers: list[str] = []
    for f in fields:
        if f.status is None:
            if f.is_required:
                blockers.append(f"field:{f.field_key}:missing")
            continue
        status = FieldStatus(f.status)
        if status is not FieldStatus.APPROVED:
            blockers.append(f"field:{f.field_key}:{status.value}")

    for d in documents:
        if not d.live_statuses:
            blockers.append(f"document:{d.document_type_code}:missing")
            continue
        for status in sorted({DocumentStatus(s) for s in d.live_statuses}, key=lambda s: s.value):
            if status is not DocumentStatus.APPROVED:
                blockers.append(f"document:{d.document_type_code}:{status.value}")

    return blockers
