"""
Module: dossier_kernel.selectors.base
Responsibility: Base class for read-only query selectors over dossiers.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only: selectors never add, flush, delete or commit.
    - DTO return convention: frozen dataclasses from domain/dtos.py, never
      ORM instances.
    - Every public query is scoped to one dossier and checks the caller
      (read_dossier role, CLIENT ownership) before returning anything.
"""

from abc import ABC
from uuid import UUID

from sqlalchemy.orm import Session

from dossier_kernel.domain.identity import Caller, require_owner, require_role
from dossier_kernel.exceptions import DossierNotFoundError
from dossier_kernel.models.dossier import Dossier


class BaseSelector(ABC):
    def __init__(self, session: Session):
        self.session = session

    def _readable_dossier(self, dossier_id: UUID, caller: Caller) -> Dossier:
        require_role(caller, "read_dossier")
        dossier = self.session.get(Dossier, dossier_id)
        if dossier is None:
            raise DossierNotFoundError(dossier_id)
        require_owner(caller, dossier.client_id, "Dossier", dossier.id)
        return dossier
