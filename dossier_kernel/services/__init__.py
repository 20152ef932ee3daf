"""Services for the dossier kernel (write side)."""

from dossier_kernel.services.access import DossierAccess
from dossier_kernel.services.document_delivery import DeliveryFile, DocumentDeliveryService
from dossier_kernel.services.document_review import DocumentReviewTracker, UploadedFile
from dossier_kernel.services.dossier_service import DossierService
from dossier_kernel.services.event_log import EventLogService
from dossier_kernel.services.field_validation import FieldValidationTracker
from dossier_kernel.services.notifications import NotificationDispatcher, NotificationTemplate
from dossier_kernel.services.sequence_service import SequenceService
from dossier_kernel.services.step_instance_service import StepInstanceService

__all__ = [
    "DeliveryFile",
    "DocumentDeliveryService",
    "DocumentReviewTracker",
    "DossierAccess",
    "DossierService",
    "EventLogService",
    "FieldValidationTracker",
    "NotificationDispatcher",
    "NotificationTemplate",
    "SequenceService",
    "StepInstanceService",
    "UploadedFile",
]
