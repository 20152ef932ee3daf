"""
dossier_services -- Package init and public API.

Responsibility:
    Orchestration that sits above the kernel and owns transactions: the
    provisioning pipeline and its push (notification) and pull
    (reconciliation) entry points.

Architecture position:
    Services -- may import dossier_kernel; dossier_kernel never imports
    from here.
"""

from dossier_services.provisioning import (
    PaymentNotificationHandler,
    PaymentSignal,
    ProvisioningOutcome,
    ProvisioningPipeline,
    ProvisioningResult,
)
from dossier_services.reconciliation import PaymentReconciler, ReconciliationReport

__all__ = [
    "PaymentNotificationHandler",
    "PaymentReconciler",
    "PaymentSignal",
    "ProvisioningOutcome",
    "ProvisioningPipeline",
    "ProvisioningResult",
    "ReconciliationReport",
]
