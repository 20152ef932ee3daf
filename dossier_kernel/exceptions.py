"""
Typed Exception Hierarchy for the Dossier Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every operation in the kernel is invoked on behalf of a caller (a client
filling in a step, a reviewer approving a field, the provisioning pipeline
reacting to a payment).  Callers need to tell apart "that id does not exist",
"you may not do that", "your input is malformed" and "the entity is not in a
state that allows this" without parsing message strings.

Rules:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE class attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        steps.approve_step(step_instance_id, caller)
    except StepApprovalBlockedError as e:
        return {"error": e.code, "blockers": e.blockers}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    DossierKernelError (base)
    |
    +-- NotFoundError
    |   +-- DossierNotFoundError
    |   +-- StepInstanceNotFoundError
    |   +-- StepNotFoundError
    |   +-- FieldNotFoundError
    |   +-- FieldValueNotFoundError
    |   +-- DocumentNotFoundError
    |   +-- DocumentTypeNotFoundError
    |   +-- OrderNotFoundError
    |   +-- ProductNotFoundError
    |   +-- ClientNotFoundError
    |   +-- ParentMismatchError
    |
    +-- ForbiddenError
    |   +-- RoleNotPermittedError
    |   +-- OwnershipMismatchError
    |
    +-- InvalidArgumentError
    |   +-- RejectionReasonError
    |   +-- InvalidFieldValueError
    |   +-- UnknownFieldKeyError
    |   +-- MissingRequiredFieldsError
    |   +-- InvalidDocumentError
    |
    +-- PreconditionFailedError
    |   +-- StepApprovalBlockedError
    |   +-- InvalidStepTransitionError
    |   +-- StepNotStartableError
    |   +-- StepAlreadyCompletedError
    |   +-- StepLockedError
    |   +-- NotAdminStepError
    |   +-- DocumentHasNoVersionError
    |   +-- DossierClosedError
    |   +-- DossierAlreadyCancelledError
    |
    +-- ConflictError
    |   +-- DuplicateDossierError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Not found       | NOT_FOUND                   | Id does not resolve, or belongs to
                |                             | another parent than the one expected
----------------|-----------------------------|-----------------------------------------
Forbidden       | FORBIDDEN                   | Role insufficient / not the owner
----------------|-----------------------------|-----------------------------------------
Invalid         | INVALID_ARGUMENT            | Short rejection reason, malformed
                |                             | field value, unknown field key
----------------|-----------------------------|-----------------------------------------
Precondition    | PRECONDITION_FAILED         | Approving while a field/document is
                |                             | not approved, illegal transition
----------------|-----------------------------|-----------------------------------------
Conflict        | CONFLICT                    | Uniqueness violation during
                |                             | provisioning; re-read and retry
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an event, version or review

Subclasses share their category's code so that transport layers can map a
whole category to one response; the class name carries the detail.

===============================================================================
HANDLING PATTERNS
===============================================================================

1. RE-CANCEL IS SUCCESS, NOT AN ERROR:

    dossiers.cancel(dossier_id, "client request", caller)
    dossiers.cancel(dossier_id, "client request", caller)   # no-op

2. CONFLICT MEANS RE-READ:

    except ConflictError:
        session.rollback()
        pipeline.provision(signal)   # idempotent, re-checks from scratch

3. NEVER RETRY REVIEW DECISIONS BLINDLY:

    A duplicate click must not double-apply a review.  Review errors are
    surfaced to the caller as-is.

===============================================================================
"""

from uuid import UUID


class DossierKernelError(Exception):
    """
    Base exception for all dossier kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "DOSSIER_KERNEL_ERROR"


# Not found


class NotFoundError(DossierKernelError):
    """Entity id does not resolve (or is outside the expected parent)."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str | UUID):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


class DossierNotFoundError(NotFoundError):
    def __init__(self, dossier_id: str | UUID):
        super().__init__("Dossier", dossier_id)


class StepInstanceNotFoundError(NotFoundError):
    def __init__(self, step_instance_id: str | UUID):
        super().__init__("StepInstance", step_instance_id)


class StepNotFoundError(NotFoundError):
    """Template step is not part of the dossier's product."""

    def __init__(self, step_id: str | UUID, product_id: str | UUID | None = None):
        self.product_id = str(product_id) if product_id else None
        super().__init__("Step", step_id)


class FieldNotFoundError(NotFoundError):
    """Field does not belong to the step instance's template step."""

    def __init__(self, field_id: str | UUID, step_instance_id: str | UUID):
        self.step_instance_id = str(step_instance_id)
        super().__init__("StepField", field_id)


class FieldValueNotFoundError(NotFoundError):
    def __init__(self, field_value_id: str | UUID):
        super().__init__("StepFieldValue", field_value_id)


class DocumentNotFoundError(NotFoundError):
    def __init__(self, document_id: str | UUID):
        super().__init__("Document", document_id)


class DocumentTypeNotFoundError(NotFoundError):
    def __init__(self, document_type: str | UUID):
        super().__init__("DocumentType", document_type)


class OrderNotFoundError(NotFoundError):
    """No order carries the given processor checkout session id."""

    def __init__(self, checkout_session_id: str):
        self.checkout_session_id = checkout_session_id
        super().__init__("Order", checkout_session_id)


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: str | UUID):
        super().__init__("Product", product_id)


class ClientNotFoundError(NotFoundError):
    def __init__(self, client_id: str | UUID):
        super().__init__("ClientProfile", client_id)


class ParentMismatchError(NotFoundError):
    """
    Entity exists but belongs to another parent than the one expected.

    Reported as NOT_FOUND so that callers cannot probe ids across dossiers.
    """

    def __init__(
        self,
        entity_type: str,
        entity_id: str | UUID,
        expected_parent_id: str | UUID,
        actual_parent_id: str | UUID | None,
    ):
        super().__init__(entity_type, entity_id)
        self.expected_parent_id = str(expected_parent_id)
        self.actual_parent_id = str(actual_parent_id) if actual_parent_id else None


# Forbidden


class ForbiddenError(DossierKernelError):
    """Caller is not allowed to perform the operation."""

    code: str = "FORBIDDEN"


class RoleNotPermittedError(ForbiddenError):
    """Caller's role is not among the roles allowed for the operation."""

    def __init__(self, caller_id: str | UUID, role: str, operation: str, allowed: tuple[str, ...]):
        self.caller_id = str(caller_id)
        self.role = str(role)
        self.operation = operation
        self.allowed = allowed
        super().__init__(
            f"Role {role} may not perform {operation} (allowed: {', '.join(allowed)})"
        )


class OwnershipMismatchError(ForbiddenError):
    """Client caller tried to act on a dossier it does not own."""

    def __init__(self, caller_id: str | UUID, entity_type: str, entity_id: str | UUID):
        self.caller_id = str(caller_id)
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"Caller {caller_id} does not own {entity_type} {entity_id}")


# Invalid argument


class InvalidArgumentError(DossierKernelError):
    """Caller input is malformed or incomplete."""

    code: str = "INVALID_ARGUMENT"


class RejectionReasonError(InvalidArgumentError):
    """Rejection reason is missing or shorter than the review policy minimum."""

    def __init__(self, min_length: int, actual_length: int):
        self.min_length = min_length
        self.actual_length = actual_length
        super().__init__(
            f"Rejection reason must be at least {min_length} characters "
            f"(got {actual_length})"
        )


class InvalidFieldValueError(InvalidArgumentError):
    """Submitted value fails the field's validation rules."""

    def __init__(self, field_key: str, errors: list[str]):
        self.field_key = field_key
        self.errors = errors
        super().__init__(f"Invalid value for field {field_key}: {'; '.join(errors)}")


class UnknownFieldKeyError(InvalidArgumentError):
    def __init__(self, step_instance_id: str | UUID, field_keys: list[str]):
        self.step_instance_id = str(step_instance_id)
        self.field_keys = field_keys
        super().__init__(
            f"Unknown field key(s) for step instance {step_instance_id}: "
            f"{', '.join(field_keys)}"
        )


class MissingRequiredFieldsError(InvalidArgumentError):
    def __init__(self, step_instance_id: str | UUID, field_keys: list[str]):
        self.step_instance_id = str(step_instance_id)
        self.field_keys = field_keys
        super().__init__(f"Missing required field(s): {', '.join(field_keys)}")


class InvalidDocumentError(InvalidArgumentError):
    """Uploaded file does not satisfy its document type (size, extension)."""

    def __init__(self, document_type_code: str, reason: str):
        self.document_type_code = document_type_code
        self.reason = reason
        super().__init__(f"Invalid document for type {document_type_code}: {reason}")


# Precondition failed


class PreconditionFailedError(DossierKernelError):
    """Entity is not in a state that allows the operation."""

    code: str = "PRECONDITION_FAILED"


class StepApprovalBlockedError(PreconditionFailedError):
    """
    Step approval gate failed.

    ``blockers`` lists every reason found at approval time, e.g.
    ``field:company_name:REJECTED`` or ``document:PASSPORT:missing``.
    """

    def __init__(self, step_instance_id: str | UUID, blockers: list[str]):
        self.step_instance_id = str(step_instance_id)
        self.blockers = blockers
        super().__init__(
            f"Step instance {step_instance_id} cannot be approved: {', '.join(blockers)}"
        )


class InvalidStepTransitionError(PreconditionFailedError):
    def __init__(self, step_instance_id: str | UUID, from_status: str, to_status: str):
        self.step_instance_id = str(step_instance_id)
        self.from_status = str(from_status)
        self.to_status = str(to_status)
        super().__init__(
            f"Step instance {step_instance_id} cannot move from "
            f"{from_status} to {to_status}"
        )


class StepNotStartableError(PreconditionFailedError):
    """The preceding step has never been submitted."""

    def __init__(self, step_id: str | UUID, preceding_step_id: str | UUID, preceding_status: str | None):
        self.step_id = str(step_id)
        self.preceding_step_id = str(preceding_step_id)
        self.preceding_status = preceding_status
        super().__init__(
            f"Step {step_id} cannot start before step {preceding_step_id} "
            f"is submitted (status: {preceding_status})"
        )


class StepAlreadyCompletedError(PreconditionFailedError):
    def __init__(self, step_instance_id: str | UUID):
        self.step_instance_id = str(step_instance_id)
        super().__init__(f"Step instance {step_instance_id} is already completed")


class StepLockedError(PreconditionFailedError):
    """Step instance is APPROVED; its fields and documents are frozen."""

    def __init__(self, step_instance_id: str | UUID):
        self.step_instance_id = str(step_instance_id)
        super().__init__(f"Step instance {step_instance_id} is approved and locked")


class NotAdminStepError(PreconditionFailedError):
    def __init__(self, step_instance_id: str | UUID, actor_type: str):
        self.step_instance_id = str(step_instance_id)
        self.actor_type = str(actor_type)
        super().__init__(
            f"Step instance {step_instance_id} is a {actor_type} step, not an ADMIN step"
        )


class DocumentHasNoVersionError(PreconditionFailedError):
    def __init__(self, document_id: str | UUID):
        self.document_id = str(document_id)
        super().__init__(f"Document {document_id} has no current version to review")


class DossierClosedError(PreconditionFailedError):
    """Dossier is in a terminal status and refuses further changes."""

    def __init__(self, dossier_id: str | UUID, status: str):
        self.dossier_id = str(dossier_id)
        self.status = str(status)
        super().__init__(f"Dossier {dossier_id} is terminal ({status})")


class DossierAlreadyCancelledError(PreconditionFailedError):
    """Dossier was already cancelled with a different reason."""

    def __init__(self, dossier_id: str | UUID, existing_reason: str | None):
        self.dossier_id = str(dossier_id)
        self.existing_reason = existing_reason
        super().__init__(
            f"Dossier {dossier_id} already closed (reason: {existing_reason!r})"
        )


# Conflict


class ConflictError(DossierKernelError):
    """Concurrent write detected; re-read and retry the idempotent check."""

    code: str = "CONFLICT"


class DuplicateDossierError(ConflictError):
    """
    Dossier insert hit the (client, product) uniqueness constraint but the
    winning row could not be re-read (its transaction has not committed).
    """

    def __init__(self, client_id: str | UUID, product_id: str | UUID):
        self.client_id = str(client_id)
        self.product_id = str(product_id)
        super().__init__(
            f"Dossier for client {client_id} and product {product_id} "
            "is being created concurrently"
        )


# Immutability


class ImmutabilityError(DossierKernelError):
    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
