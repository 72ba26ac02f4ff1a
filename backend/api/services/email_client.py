"""Transactional email client (Brevo SMTP API)."""

from __future__ import annotations

import logging
from datetime import datetime

import httpx

from .message_templates import NotificationPayload, email_content
from .sms_client import DispatchResult

logger = logging.getLogger(__name__)


class EmailClient:
    """Renders a template and posts it to Brevo's ``/v3/smtp/email``."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.brevo.com",
        sender_name: str = "Elaiza G. Beauty Lounge",
        sender_email: str = "glowpointcapstone@gmail.com",
        timeout: float = 10.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.sender_name = sender_name
        self.sender_email = sender_email
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._http.aclose()

    async def send(
        self,
        email_type: str,
        payload: NotificationPayload,
        schedule_at: datetime | None = None,
    ) -> DispatchResult:
        """Send one templated email.

        Raises:
            ValueError: unknown *email_type*.
        """
        if not self.api_key:
            return DispatchResult(success=False, error="Brevo API key not configured.")

        content = email_content(email_type, payload)
        body: dict = {
            "to": [{"email": payload.email, "name": payload.name}],
            "sender": {"name": self.sender_name, "email": self.sender_email},
            "subject": content.subject,
            "htmlContent": content.html,
            "textContent": content.text,
        }
        if schedule_at:
            body["scheduledAt"] = schedule_at.isoformat()

        try:
            response = await self._http.post(
                f"{self.base_url}/v3/smtp/email",
                json=body,
                headers={"Accept": "application/json", "api-key": self.api_key},
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to send {email_type} email: {type(e).__name__}: {e}")
            return DispatchResult(success=False, error=f"Failed to send email: {e}")

        if response.is_error:
            return DispatchResult(
                success=False,
                error=f"Brevo API error: {response.status_code} - {response.text}",
            )

        try:
            message_id = response.json().get("messageId")
        except ValueError:
            message_id = None
        return DispatchResult(success=True, message_id=message_id)
