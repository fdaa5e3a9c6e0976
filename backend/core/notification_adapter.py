# backend/core/notification_adapter.py

from abc import ABC, abstractmethod
from typing import Dict, Optional, Any
from dataclasses import dataclass
from enum import Enum
import json
import logging
from datetime import datetime

import httpx


logger = logging.getLogger(__name__)


class NotificationPriority(str, Enum):
    """Notification priority levels"""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


@dataclass
class NotificationMessage:
    """Standard notification message structure"""

    subject: str
    message: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "message": self.message,
            "priority": self.priority.value,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata or {},
        }


class NotificationAdapter(ABC):
    """
    Abstract base class for notification adapters

    Implement this interface to add new notification channels.
    ``send_to_user`` returns True only when delivery was confirmed.
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

    Logs every notification; used in development and as a fallback
    """

    def __init__(self, log_level: int = logging.INFO):
        self.log_level = log_level

    async def send_to_user(self, user_id: int, message: NotificationMessage) -> bool:
        logger.log(
            self.log_level,
            f"[NOTIFICATION] To User {user_id} - {message.subject}: {message.message}",
            extra={
                "notification_type": "user",
                "user_id": user_id,
                "subject": message.subject,
                "priority": message.priority.value,
                "timestamp": message.timestamp.isoformat(),
                "metadata": message.metadata,
            },
        )
        return True

    def get_adapter_name(self) -> str:
        return "logging"


class WebhookAdapter(NotificationAdapter):
    """
    Posts notifications as JSON to an HTTP endpoint.

    Delivery counts as confirmed on any 2xx response.
    """

    def __init__(self, url: str, timeout_seconds: float = 10.0, headers: Optional[Dict[str, str]] = None):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.headers = {"Content-Type": "application/json", **(headers or {})}

    async def send_to_user(self, user_id: int, message: NotificationMessage) -> bool:
        payload = {"user_id": user_id, **message.to_payload()}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    self.url,
                    content=json.dumps(payload, default=str),
                    headers=self.headers,
                )
        except httpx.HTTPError as e:
            logger.warning(f"Webhook notification to {self.url} failed: {str(e)}")
            return False

        if 200 <= response.status_code < 300:
            return True

        logger.warning(
            f"Webhook notification to {self.url} rejected: HTTP {response.status_code}"
        )
        return False

    def get_adapter_name(self) -> str:
        return "webhook"

