"""Domain models for the dossier kernel."""

from dossier_kernel.models.client import ClientProfile
from dossier_kernel.models.document import Document, DocumentReview, DocumentVersion
from dossier_kernel.models.dossier import Dossier
from dossier_kernel.models.event import Event
from dossier_kernel.models.order import Order
from dossier_kernel.models.sequence import SequenceCounter
from dossier_kernel.models.step_instance import StepFieldValue, StepInstance
from dossier_kernel.models.template import (
    DocumentType,
    Product,
    ProductStep,
    StepDocumentType,
    StepField,
    StepTemplate,
)

__all__ = [
    "ClientProfile",
    "Document",
    "DocumentReview",
    "DocumentType",
    "DocumentVersion",
    "Dossier",
    "Event",
    "Order",
    "Product",
    "ProductStep",
    "SequenceCounter",
    "StepDocumentType",
    "StepField",
    "StepFieldValue",
    "StepInstance",
    "StepTemplate",
    "import_all_models",
]


def import_all_models() -> None:
    """Make sure every table is registered on Base.metadata (idempotent)."""
    # Importing this package is sufficient; the function documents intent
    # at call sites such as create_tables().
    return None
