"""SMS gateway client (iProgTech SMS API).

Immediate messages go to ``/api/v1/sms_messages``; scheduled ones to
``/api/v1/message-reminders`` with ``scheduled_at`` in gateway-local
``YYYY-MM-DD HH:MM`` form.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime

import httpx

logger = logging.getLogger(__name__)

_PHONE_NOISE_RE = re.compile(r"[\s\-()]")


@dataclass
class DispatchResult:
    """Outcome of one outbound notification. Never raised, always returned."""

    success: bool
    error: str | None = None
    message_id: str | None = None


def normalize_phone(phone: str) -> str:
    """Convert a Philippine mobile number to the local ``09XXXXXXXXX`` form."""
    number = _PHONE_NOISE_RE.sub("", phone)
    if number.startswith("+63"):
        return "0" + number[3:]
    if number.startswith("63"):
        return "0" + number[2:]
    if not number.startswith("0"):
        return "0" + number
    return number


def format_schedule(when: datetime) -> str:
    return when.strftime("%Y-%m-%d %H:%M")


class SmsClient:
    """Sends SMS through a shared httpx client."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://sms.iprogtech.com",
        sender_name: str = "Elaiza G. Beauty",
        provider: int = 2,
        timeout: float = 10.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.sender_name = sender_name
        self.provider = provider
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._http.aclose()

    async def send(
        self, phone: str, message: str, schedule_at: datetime | None = None
    ) -> DispatchResult:
        if not self.api_key:
            logger.error("SMS_API_KEY is not set.")
            return DispatchResult(success=False, error="SMS service is not configured.")

        endpoint = "message-reminders" if schedule_at else "sms_messages"
        payload: dict[str, str | int] = {
            "api_token": self.api_key,
            "phone_number": normalize_phone(phone),
            "message": message,
            "sms_provider": self.provider,
            "sender_name": self.sender_name,
        }
        if schedule_at:
            payload["scheduled_at"] = format_schedule(schedule_at)

        try:
            response = await self._http.post(f"{self.base_url}/api/v1/{endpoint}", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send SMS: {type(e).__name__}: {e}")
            return DispatchResult(success=False, error=str(e) or type(e).__name__)

        if response.is_error:
            logger.error(f"SMS API error: {response.status_code} - {response.text}")
            return DispatchResult(success=False, error=f"Failed to send SMS: {response.text}")

        logger.debug(f"SMS sent via {endpoint}")
        return DispatchResult(success=True)
