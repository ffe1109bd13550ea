"""
Email client for sending notifications through the Communications Service.

The Communications Service owns templates and delivery. This client only
forwards a recipient, a subject and a rendered body.

Usage:
    from libs.common.emails.client import EmailClient

    email_client = EmailClient(settings)
    await email_client.send(
        recipient="owner@example.com",
        content="Order #123 was paid.",
        subject="New order",
    )
"""

from typing import Any, Optional

import httpx
from libs.common.config import Settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


class EmailClient:
    """
    HTTP client for the Communications Service ``/email/send`` endpoint.

    ``send`` never raises: a failed delivery is logged and reported as
    ``False`` so callers on the notification path cannot be broken by it.
    """

    def __init__(self, settings: Settings):
        self.base_url = settings.COMMUNICATIONS_SERVICE_URL.rstrip("/")
        self.timeout = settings.NOTIFICATION_TIMEOUT_SECONDS

    async def send(
        self,
        recipient: str,
        content: str,
        subject: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> bool:
        """
        Send a single email.

        Args:
            recipient: Recipient email address
            content: Rendered body (plain text or HTML)
            subject: Email subject line
            reply_to: Optional reply-to address

        Returns:
            True if the Communications Service accepted the email.
        """
        payload: dict[str, Any] = {
            "to_email": recipient,
            "subject": subject or "",
            "body": content,
        }
        if reply_to:
            payload["reply_to"] = reply_to

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}/email/send", json=payload)
        except httpx.HTTPError as e:
            logger.error("Failed to reach Communications Service: %s", e)
            return False

        if response.status_code >= 400:
            logger.error(
                "Email API returned %d: %s", response.status_code, response.text
            )
            return False
        return bool(response.json().get("success", True))
