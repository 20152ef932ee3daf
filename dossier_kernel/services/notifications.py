"""
NotificationDispatcher -- fire-and-forget wrapper around the notification sink.

Notification delivery never fails the primary operation: any exception
raised by the sink is logged and swallowed.  With no sink configured,
notifications are dropped (logged at DEBUG).
"""

from enum import Enum
from typing import Any
from uuid import UUID

from dossier_kernel.domain.ports import NotificationSink
from dossier_kernel.logging_config import get_logger
from dossier_kernel.utils.hashing import to_json_safe

logger = get_logger("services.notifications")


class NotificationTemplate(str, Enum):
    STEP_COMPLETED = "STEP_COMPLETED"
    STEP_REJECTED = "STEP_REJECTED"
    ADMIN_STEP_COMPLETED = "ADMIN_STEP_COMPLETED"
    ADMIN_DOCUMENT_DELIVERED = "ADMIN_DOCUMENT_DELIVERED"
    DOSSIER_STATUS_CHANGED = "DOSSIER_STATUS_CHANGED"


class NotificationDispatcher:
    def __init__(self, sink: NotificationSink | None = None):
        self._sink = sink

    def notify(
        self,
        user_id: UUID,
        template: NotificationTemplate,
        payload: dict[str, Any],
    ) -> bool:
        """Enqueue a notification. Returns False if it was dropped or failed."""
        if self._sink is None:
            logger.debug(
                "notification_dropped_no_sink",
                extra={"template_code": template.value, "user_id": str(user_id)},
            )
            return False
        try:
            self._sink.enqueue(user_id, template.value, to_json_safe(payload))
        except Exception:
            logger.warning(
                "notification_enqueue_failed",
                extra={"template_code": template.value, "user_id": str(user_id)},
                exc_info=True,
            )
            return False
        logger.info(
            "notification_enqueued",
            extra={"template_code": template.value, "user_id": str(user_id)},
        )
        return True
