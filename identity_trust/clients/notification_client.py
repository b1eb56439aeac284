"""Client that hands verification events to the notification subsystem."""

import logging
from typing import Optional

import httpx

from identity_trust.config import settings
from identity_trust.models.internal_models import VerificationNotification

logger = logging.getLogger(__name__)


class NotificationClient:
    """
    Emits decision events to the notification webhook.

    Delivery (push, email, SMS) belongs to the notification subsystem, so a
    failed hand-off is logged and reported through the return value instead
    of failing the decision that triggered it.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self.timeout = timeout if timeout is not None else settings.notification_timeout
        self._transport = transport

    async def notify(self, notification: VerificationNotification) -> bool:
        """
        Send one notification event.

        Returns:
            True if the event was accepted (or only logged because no
            webhook is configured), False if the hand-off failed
        """
        payload = notification.to_payload()

        if not self.webhook_url:
            logger.info(
                f"Notification for user {notification.user_id}: "
                f"{notification.channel.value} is now {notification.status.value}"
            )
            return True

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
            logger.info(f"Notification delivered for user {notification.user_id}")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to hand off notification for user {notification.user_id}: {e}")
            return False
