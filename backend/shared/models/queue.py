"""Data models for queue_entries and queue_settings tables."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class QueueEntry:
    """Walk-in queue entry record."""

    id: int
    user_id: str
    position: int
    estimated_wait_time: int = 0
    email: str | None = None  # encrypted at rest
    phone: str | None = None  # encrypted at rest
    qr_code: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class QueueSettings:
    """Singleton queue settings record (id = 1)."""

    id: int
    current_serving: int = 0
    is_active: bool = True
    last_reset: datetime | None = None
    updated_at: datetime | None = None
