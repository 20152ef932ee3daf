"""
DossierAccess -- the single authorized data-access path to dossier entities.

Responsibility:
    Every service resolves dossiers, step instances, field values and
    documents through this class.  Each lookup takes the explicit Caller
    and the operation name.  It checks the caller's role, then that the
    entity exists, then that it belongs to the expected parent, and
    finally that a CLIENT caller owns the dossier.

Architecture position:
    Kernel > Services.  Replaces implicit row-level security: there is one
    data-access layer, and the caller's role (``Caller.acting_as``) decides
    what it may reach.

Invariants enforced:
    - Role checks run before any row is read.
    - An entity outside the expected dossier is reported as NOT_FOUND
      (ParentMismatchError), never as a different entity.
    - ``lock=True`` issues ``SELECT ... FOR UPDATE`` with populate_existing,
      so the returned instance reflects the latest committed row.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dossier_kernel.domain.identity import Caller, require_owner, require_role
from dossier_kernel.exceptions import (
    DocumentNotFoundError,
    DossierNotFoundError,
    FieldValueNotFoundError,
    ParentMismatchError,
    StepInstanceNotFoundError,
)
from dossier_kernel.models.document import Document
from dossier_kernel.models.dossier import Dossier
from dossier_kernel.models.step_instance import StepFieldValue, StepInstance


class DossierAccess:
    def __init__(self, session: Session):
        self.session = session

    def _get(self, model, entity_id: UUID, lock: bool):
        stmt = select(model).where(model.id == entity_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def _owned_dossier(self, dossier_id: UUID, caller: Caller, lock: bool = False) -> Dossier:
        dossier = self._get(Dossier, dossier_id, lock)
        if dossier is None:
            raise DossierNotFoundError(dossier_id)
        require_owner(caller, dossier.client_id, "Dossier", dossier.id)
        return dossier

    def dossier(
        self,
        dossier_id: UUID,
        caller: Caller,
        operation: str,
        lock: bool = False,
    ) -> Dossier:
        require_role(caller, operation)
        return self._owned_dossier(dossier_id, caller, lock)

    def step_instance(
        self,
        step_instance_id: UUID,
        caller: Caller,
        operation: str,
        dossier_id: UUID | None = None,
        lock: bool = False,
    ) -> tuple[StepInstance, Dossier]:
        require_role(caller, operation)
        instance = self._get(StepInstance, step_instance_id, lock)
        if instance is None:
            raise StepInstanceNotFoundError(step_instance_id)
        if dossier_id is not None and instance.dossier_id != dossier_id:
            raise ParentMismatchError(
                "StepInstance", step_instance_id, dossier_id, instance.dossier_id
            )
        dossier = self._owned_dossier(instance.dossier_id, caller)
        return instance, dossier

    def field_value(
        self,
        field_value_id: UUID,
        caller: Caller,
        operation: str,
        dossier_id: UUID | None = None,
        lock_step: bool = False,
    ) -> tuple[StepFieldValue, StepInstance, Dossier]:
        """
        Resolve a field value with its step instance and dossier.

        With ``lock_step`` the parent step instance row is locked before the
        value is re-read, serializing field review with step approval.
        """
        require_role(caller, operation)
        value = self._get(StepFieldValue, field_value_id, False)
        if value is None:
            raise FieldValueNotFoundError(field_value_id)
        instance, dossier = self.step_instance(
            value.step_instance_id, caller, operation, dossier_id=dossier_id, lock=lock_step
        )
        if lock_step:
            value = self._get(StepFieldValue, field_value_id, True)
        return value, instance, dossier

    def document(
        self,
        document_id: UUID,
        caller: Caller,
        operation: str,
        dossier_id: UUID | None = None,
        lock: bool = False,
    ) -> tuple[Document, Dossier]:
        require_role(caller, operation)
        document = self._get(Document, document_id, lock)
        if document is None:
            raise DocumentNotFoundError(document_id)
        if dossier_id is not None and document.dossier_id != dossier_id:
            raise ParentMismatchError("Document", document_id, dossier_id, document.dossier_id)
        dossier = self._owned_dossier(document.dossier_id, caller)
        return document, dossier
