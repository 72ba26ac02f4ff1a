"""Dependency injection utilities for FastAPI"""

import logging
from functools import lru_cache

import asyncpg
from fastapi import Depends, HTTPException

from api.core.config import get_settings
from api.core.database import get_database_manager
from api.services import (
    ChangeRelay,
    EmailClient,
    NotificationDispatcher,
    QueueService,
    SmsClient,
)
from shared.crypto import ContactCipher

logger = logging.getLogger(__name__)


# ============================================
# Infrastructure
# ============================================


def get_db_pool() -> asyncpg.Pool:
    db_manager = get_database_manager()
    if not db_manager.is_connected:
        raise HTTPException(status_code=503, detail="Database not ready")
    return db_manager.pool


@lru_cache
def get_contact_cipher() -> ContactCipher:
    """Shared cipher for contact fields (key read once from settings)."""
    return ContactCipher(get_settings().encryption_key)


_dispatcher: NotificationDispatcher | None = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get shared NotificationDispatcher singleton (one httpx client per gateway)."""
    global _dispatcher
    if _dispatcher is None:
        settings = get_settings()
        _dispatcher = NotificationDispatcher(
            sms=SmsClient(
                settings.sms_api_key,
                base_url=settings.sms_api_url,
                sender_name=settings.sms_sender_name,
                provider=settings.sms_provider,
                timeout=settings.notification_timeout,
            ),
            email=EmailClient(
                settings.brevo_api_key,
                base_url=settings.brevo_api_url,
                sender_name=settings.email_sender_name,
                sender_email=settings.email_sender_address,
                timeout=settings.notification_timeout,
            ),
        )
    return _dispatcher


async def close_notification_dispatcher() -> None:
    """Close the gateway clients. Call on app shutdown."""
    global _dispatcher
    if _dispatcher is not None:
        await _dispatcher.close()
        _dispatcher = None


_change_relay: ChangeRelay | None = None


def get_change_relay() -> ChangeRelay:
    """Get the process-wide queue change relay."""
    global _change_relay
    if _change_relay is None:
        _change_relay = ChangeRelay(get_settings().queue_channel)
    return _change_relay


# ============================================
# Service Dependencies
# ============================================


def get_queue_service(
    pool: asyncpg.Pool = Depends(get_db_pool),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    cipher: ContactCipher = Depends(get_contact_cipher),
) -> QueueService:
    """Get QueueService instance (dependency injection)"""
    return QueueService(pool, dispatcher=dispatcher, cipher=cipher)
