"""Status and notification sinks."""

import logging
import os
from dataclasses import asdict
from typing import Dict, List, Optional, Tuple

import httpx

from shared.models import Notification, StatusEvent

logger = logging.getLogger(__name__)


class StatusBoard:
    """Keeps the latest status per job for the UI layer to render."""

    def __init__(self):
        self.latest: Dict[str, StatusEvent] = {}
        self.history: List[Tuple[str, StatusEvent]] = []

    def set_status(self, job_id: str, event: StatusEvent) -> None:
        logger.debug(f"Status for job {job_id}: {event.kind}")
        self.latest[job_id] = event
        self.history.append((job_id, event))

    def get(self, job_id: str) -> Optional[StatusEvent]:
        return self.latest.get(job_id)

    def kinds(self, job_id: str) -> List[str]:
        """Sequence of status kinds reported for a job, oldest first."""
        return [event.kind for recorded_id, event in self.history if recorded_id == job_id]


class NotificationService:
    """Delivers user-facing success and error messages."""

    def __init__(self, webhook_url: Optional[str] = None, enabled: Optional[bool] = None):
        """Initialize notification service."""
        if enabled is None:
            enabled = os.getenv("ENABLE_NOTIFICATIONS", "false").lower() == "true"
        self.notification_enabled = enabled
        self.notification_webhook = webhook_url or os.getenv("NOTIFICATION_WEBHOOK_URL")
        self.sent: List[Notification] = []

    async def notify(self, notification: Notification):
        """
        Deliver a notification.

        Every notification is logged; when enabled and a webhook is
        configured it is also posted there. Delivery failures are logged
        and never raised.

        Args:
            notification: The message to deliver
        """
        self.sent.append(notification)

        text = f"{notification.title} (job {notification.job_number})"
        if notification.message:
            text += f": {notification.message}"
        if notification.link:
            text += f" [{notification.link}]"

        if notification.level == "error":
            logger.error(f"NOTIFICATION: {text}")
        else:
            logger.info(f"NOTIFICATION: {text}")

        if not self.notification_enabled or not self.notification_webhook:
            return

        try:
            async with httpx.AsyncClient() as client:
                await client.post(
                    self.notification_webhook,
                    json={"text": text, **asdict(notification)},
                    timeout=10.0
                )
            logger.info(f"Notification sent for job {notification.job_number}")
        except Exception as e:
            logger.error(f"Failed to send notification: {e}")
