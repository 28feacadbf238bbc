# backend/core/notification_service.py

from enum import Enum
from typing import Any, Dict, Optional
import logging

from .notification_adapter import LoggingAdapter, NotificationAdapter, NotificationMessage


logger = logging.getLogger(__name__)


class NotificationTemplate(str, Enum):
    RESERVATION_CREATED = "reservation_created"
    RESERVATION_CONFIRMED = "reservation_confirmed"
    RESERVATION_CANCELLED = "reservation_cancelled"
    RESERVATION_EXPIRED = "reservation_expired"
    RESERVATION_COMPLETED = "reservation_completed"
    PAYMENT_FAILED = "payment_failed"
    BANK_TRANSFER_REQUESTED = "bank_transfer_requested"
    REFUND_ISSUED = "refund_issued"
    PARTICIPANT_JOINED = "participant_joined"
    PARTICIPANT_REMOVED = "participant_removed"


class NotificationService:
    """
    Fire-and-forget notifications for reservation lifecycle events

    Delivery failures are logged and never propagate into the
    reservation flow.
    """

    def __init__(self, adapter: Optional[NotificationAdapter] = None):
        self._adapter = adapter or LoggingAdapter()

    def set_adapter(self, adapter: NotificationAdapter):
        """Set a custom notification adapter"""
        self._adapter = adapter

    async def notify(
        self,
        user_id: int,
        template: NotificationTemplate,
        data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        template_name = template.value if isinstance(template, Enum) else str(template)
        message = NotificationMessage(template=template_name, data=data or {})
        try:
            return await self._adapter.send_to_user(user_id, message)
        except Exception as e:
            logger.error(
                f"Failed to send {template_name} notification to user {user_id} "
                f"via {self._adapter.get_adapter_name()}: {e}"
            )
            return False
