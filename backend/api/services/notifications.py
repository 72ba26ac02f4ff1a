"""Best-effort customer notifications over SMS and email.

Each channel succeeds or fails on its own, and nothing here raises into the
caller: a queue that moved stays moved even when the customer could not be
told. Callers surface ``DispatchReport.summary()`` to the admin instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from .email_client import EmailClient
from .message_templates import NotificationPayload, sms_message
from .sms_client import DispatchResult, SmsClient

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    """Per-channel results of one notification event."""

    results: dict[str, DispatchResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(r.success for r in self.results.values())

    @property
    def attempted(self) -> bool:
        return bool(self.results)

    def summary(self) -> str:
        """Join the failed channels' errors, e.g. ``"SMS: timeout; Email: 401"``."""
        return "; ".join(
            f"{channel}: {result.error or 'unknown error'}"
            for channel, result in self.results.items()
            if not result.success
        )


class NotificationDispatcher:
    def __init__(self, sms: SmsClient, email: EmailClient) -> None:
        self.sms = sms
        self.email = email

    async def close(self) -> None:
        await self.sms.close()
        await self.email.close()

    async def send_sms(
        self, sms_type: str, payload: NotificationPayload, schedule_at: datetime | None = None
    ) -> DispatchResult:
        try:
            return await self.sms.send(payload.phone, sms_message(sms_type, payload), schedule_at)
        except Exception as e:
            logger.exception(f"Unexpected error sending {sms_type} SMS: {e}")
            return DispatchResult(success=False, error=str(e) or type(e).__name__)

    async def send_email(
        self, email_type: str, payload: NotificationPayload, schedule_at: datetime | None = None
    ) -> DispatchResult:
        try:
            return await self.email.send(email_type, payload, schedule_at)
        except Exception as e:
            logger.exception(f"Unexpected error sending {email_type} email: {e}")
            return DispatchResult(success=False, error=str(e) or type(e).__name__)

    async def _dispatch(
        self,
        kind: str,
        payload: NotificationPayload,
        schedule_at: datetime | None = None,
    ) -> DispatchReport:
        report = DispatchReport()
        if payload.phone:
            report.results["SMS"] = await self.send_sms(kind, payload, schedule_at)
        if payload.email:
            report.results["Email"] = await self.send_email(kind, payload, schedule_at)

        if not report.attempted:
            logger.info(f"No contact details for {payload.name}, {kind} notification skipped")
        elif not report.ok:
            logger.warning(f"{kind} notification for {payload.name} failed: {report.summary()}")
        return report

    async def notify_now_serving(self, payload: NotificationPayload) -> DispatchReport:
        """Tell the customer at the front of the queue to come to the counter."""
        return await self._dispatch("now_serving", payload)

    async def notify_confirmation(self, payload: NotificationPayload) -> DispatchReport:
        return await self._dispatch("confirmation", payload)

    async def schedule_reminder(
        self, payload: NotificationPayload, remind_at: datetime
    ) -> DispatchReport:
        """Queue a reminder with both gateways for delivery at *remind_at*."""
        return await self._dispatch("reminder", payload, remind_at)
