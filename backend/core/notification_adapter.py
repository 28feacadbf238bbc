# backend/core/notification_adapter.py

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict
import logging

from .clock import utcnow


logger = logging.getLogger(__name__)


@dataclass
class NotificationMessage:
    """Standard notification message structure"""

    template: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = utcnow()


class NotificationAdapter(ABC):
    """
    Abstract base class for notification adapters

    Implement this interface to deliver reservation notifications
    over a real channel (email, push, SMS).
    """

    @abstractmethod
    async def send_to_user(self, user_id: int, message: NotificationMessage) -> bool:
        """Send notification to a specific user"""
        pass

    @abstractmethod
    def get_adapter_name(self) -> str:
        """Return the name of this adapter"""
        pass


class LoggingAdapter(NotificationAdapter):
    """
    Default logging adapter for notifications

    Used in development and tests, and as the fallback when no
    delivery channel is configured.
    """

    def __init__(self, log_level: int = logging.INFO):
        self.log_level = log_level

    async def send_to_user(self, user_id: int, message: NotificationMessage) -> bool:
        logger.log(
            self.log_level,
            f"[NOTIFICATION] To User {user_id} - {message.template}: {message.data}",
            extra={
                "notification_type": "user",
                "user_id": user_id,
                "template": message.template,
                "timestamp": message.timestamp.isoformat(),
            },
        )
        return True

    def get_adapter_name(self) -> str:
        return "logging"
