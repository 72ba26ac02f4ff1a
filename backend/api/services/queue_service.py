"""Walk-in queue service: the operations that mutate and read the queue.

Concurrency model: many API processes share one PostgreSQL database. Writes
that belong together (serve plus counter bump, clear plus counter reset) run
in one repository transaction. Beyond that, correctness comes from two rules:

* serving is a conditional write (only while the row is still active at
  position 1), so concurrent advances cannot serve the same customer twice;
* every renumbering pass recomputes positions from a fresh read taken after
  the preceding write, so a gap or duplicate left by a race is repaired by
  the next advance, removal or leave.

Notifications go out only after the store writes are done, and their
failures are reported in the result instead of raised.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

import asyncpg

from shared.crypto import ContactCipher
from shared.models.queue import QueueEntry, QueueSettings
from shared.repositories.profile import ProfileRepository
from shared.repositories.queue import (
    QueueEntryRepository,
    QueueSettingsRepository,
    SettingsRowMissingError,
)

from .errors import (
    AlreadyQueuedError,
    EmptyQueueError,
    EntryNotFoundError,
    QueueClosedError,
    StoreError,
)
from .message_templates import NotificationPayload
from .notifications import DispatchReport, NotificationDispatcher

logger = logging.getLogger(__name__)

WAIT_MINUTES_PER_SLOT = 20
FALLBACK_DISPLAY_NAME = "Valued Customer"

_STORE_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    TimeoutError,
    SettingsRowMissingError,
)


def estimated_wait(position: int) -> int:
    return max(0, position * WAIT_MINUTES_PER_SLOT)


def _round_half_up(total: int, count: int) -> int:
    return (2 * total + count) // (2 * count)


@asynccontextmanager
async def _store(action: str) -> AsyncIterator[None]:
    """Re-raise database and connectivity failures as StoreError."""
    try:
        yield
    except _STORE_ERRORS as e:
        logger.error(f"Store failure while trying to {action}: {type(e).__name__}: {e}")
        raise StoreError(f"Failed to {action}", e) from e


@dataclass
class QueueState:
    entries: list[QueueEntry]
    current_serving: int


@dataclass
class QueueStats:
    total_today: int
    average_wait_time: int
    current_queue_length: int


@dataclass
class AdvanceResult:
    current_serving: int
    served_entry_id: int | None = None
    notification: DispatchReport | None = None

    @property
    def notification_failed(self) -> bool:
        return self.notification is not None and not self.notification.ok

    @property
    def message(self) -> str:
        if self.notification_failed:
            return f"Queue advanced, but notification failed: {self.notification.summary()}"
        return "Queue advanced"


@dataclass
class ResetResult:
    cleared_count: int
    settings: QueueSettings


@dataclass
class ContactMigrationResult:
    updated_count: int
    errors: list[tuple[int, str]]


class QueueService:
    """Queue engine over the entry/settings repositories.

    Repositories can be swapped through the keyword arguments; by default
    they are built on *pool*.
    """

    def __init__(
        self,
        pool: asyncpg.Pool | None,
        *,
        dispatcher: NotificationDispatcher,
        cipher: ContactCipher,
        entries: QueueEntryRepository | None = None,
        settings: QueueSettingsRepository | None = None,
        profiles: ProfileRepository | None = None,
    ) -> None:
        self.pool = pool
        self.entry_repo = entries or QueueEntryRepository(pool)
        self.settings_repo = settings or QueueSettingsRepository(pool)
        self.profile_repo = profiles or ProfileRepository(pool)
        self.dispatcher = dispatcher
        self.cipher = cipher

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _decrypted(self, entry: QueueEntry) -> QueueEntry:
        return replace(
            entry,
            email=self.cipher.decrypt(entry.email),
            phone=self.cipher.decrypt(entry.phone),
        )

    def _encrypt_if_plain(self, value: str | None) -> str | None:
        """Ciphertext for a plaintext value, None when nothing needs writing."""
        if not value or self.cipher.is_encrypted(value):
            return None
        return self.cipher.encrypt(value)

    async def _display_name(self, user_id: str) -> str:
        # A missing name must never block a notification
        try:
            name = await self.profile_repo.get_display_name(user_id)
        except Exception as e:
            logger.error(f"Error fetching profile {user_id} for notification: {e}")
            return FALLBACK_DISPLAY_NAME
        return name or FALLBACK_DISPLAY_NAME

    async def _payload_for(self, entry: QueueEntry) -> NotificationPayload:
        contact = self._decrypted(entry)
        return NotificationPayload(
            name=await self._display_name(entry.user_id),
            email=contact.email or "",
            phone=contact.phone or "",
            position=entry.position,
        )

    async def _renumber(self, exclude_id: int | None = None) -> int:
        """Compact the active set to positions 1..N from a fresh read.

        Only rows whose position or wait actually change are written, in one
        batch. Returns the resulting queue length.
        """
        async with _store("read active queue"):
            entries = await self.entry_repo.get_active_entries()

        remaining = [e for e in entries if e.id != exclude_id]
        updates = [
            (e.id, pos, estimated_wait(pos))
            for pos, e in enumerate(remaining, start=1)
            if e.position != pos or e.estimated_wait_time != estimated_wait(pos)
        ]
        if updates:
            async with _store("renumber queue"):
                await self.entry_repo.renumber(updates)
            logger.debug(f"Renumbered {len(updates)} of {len(remaining)} queue entries")
        return len(remaining)

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    async def advance(self) -> AdvanceResult:
        """Serve whoever is at position 1, bump the counter, compact the rest.

        The counter advances even when nobody is waiting: it is a ticket
        number, not a count of customers served.
        """
        async with _store("read queue settings"):
            before = await self.settings_repo.get()
        async with _store("read front of queue"):
            front = await self.entry_repo.get_front_entry()

        served: QueueEntry | None = None
        if front is None:
            async with _store("advance serving counter"):
                current = await self.settings_repo.increment_serving()
        else:
            async with _store(f"serve entry {front.id}"):
                won, current = await self.entry_repo.serve_and_increment(front.id)
            if won:
                served = front
            else:
                logger.warning(f"Entry {front.id} was served by a concurrent advance, skipping")

        remaining = await self._renumber(exclude_id=served.id if served else None)
        logger.info(
            f"Queue advanced: serving {before.current_serving} -> {current}, "
            f"served={served.id if served else None}, waiting={remaining}"
        )

        report = None
        if served is not None:
            report = await self.dispatcher.notify_now_serving(await self._payload_for(served))
        return AdvanceResult(
            current_serving=current,
            served_entry_id=served.id if served else None,
            notification=report,
        )

    async def notify_next(self) -> DispatchReport:
        """Re-send the now-serving notification to position 1. Read only.

        Raises:
            EmptyQueueError: nobody is waiting.
        """
        async with _store("read front of queue"):
            front = await self.entry_repo.get_front_entry()
        if front is None:
            raise EmptyQueueError()
        return await self.dispatcher.notify_now_serving(await self._payload_for(front))

    async def reset(self) -> ResetResult:
        """End-of-day reset: deactivate every entry and zero the counter.

        Both writes commit together or not at all. No undo.
        """
        async with _store("reset queue"):
            cleared, settings = await self.entry_repo.reset_queue()
        logger.info(f"Queue reset: {cleared} entries cleared")
        return ResetResult(cleared_count=cleared, settings=settings)

    async def remove_entry(self, entry_id: int) -> int:
        """Soft-delete one entry and compact. Returns the new queue length."""
        async with _store(f"remove entry {entry_id}"):
            removed = await self.entry_repo.deactivate_entry(entry_id)
        if not removed:
            raise EntryNotFoundError(entry_id)
        return await self._renumber()

    async def set_open(self, is_active: bool) -> QueueSettings:
        async with _store("update queue settings"):
            settings = await self.settings_repo.set_open(is_active)
        logger.info(f"Queue {'opened' if is_active else 'closed'}")
        return settings

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_state(self) -> QueueState:
        """Active entries in order with contacts decrypted, plus the counter.

        Positions are presented densely (1..N in stored order) so a transient
        gap left by a concurrent write never reaches the dashboard.
        """
        async with _store("read active queue"):
            entries = await self.entry_repo.get_active_entries()
        async with _store("read queue settings"):
            settings = await self.settings_repo.get()

        view = [
            replace(self._decrypted(e), position=pos, estimated_wait_time=estimated_wait(pos))
            for pos, e in enumerate(entries, start=1)
        ]
        return QueueState(entries=view, current_serving=settings.current_serving or 0)

    async def get_stats(self, now: datetime | None = None) -> QueueStats:
        """Dashboard counters; "today" is the server's local calendar day."""
        now = (now or datetime.now()).astimezone()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        day_end = day_start + timedelta(days=1)

        async with _store("count today's entries"):
            total_today = await self.entry_repo.count_created_between(day_start, day_end)
        async with _store("read active queue"):
            entries = await self.entry_repo.get_active_entries()

        waits = [e.estimated_wait_time for e in entries]
        average = _round_half_up(sum(waits), len(waits)) if waits else 0
        return QueueStats(
            total_today=total_today or 0,
            average_wait_time=average,
            current_queue_length=len(entries),
        )

    # ------------------------------------------------------------------
    # Customer operations
    # ------------------------------------------------------------------

    async def join(
        self,
        user_id: str,
        *,
        email: str | None = None,
        phone: str | None = None,
        qr_code: str | None = None,
    ) -> QueueEntry:
        """Append a customer at position N + 1.

        Raises:
            QueueClosedError: the queue is not accepting entries.
            AlreadyQueuedError: the customer already has an active entry.
        """
        async with _store("read queue settings"):
            settings = await self.settings_repo.get()
        if not settings.is_active:
            raise QueueClosedError()

        async with _store("look up existing entry"):
            existing = await self.entry_repo.find_active_by_user(user_id)
        if existing is not None:
            raise AlreadyQueuedError(user_id, existing.position)

        async with _store("add queue entry"):
            entry = await self.entry_repo.add_entry(
                user_id,
                email=self.cipher.encrypt(email),
                phone=self.cipher.encrypt(phone),
                qr_code=qr_code,
                wait_per_slot=WAIT_MINUTES_PER_SLOT,
            )
        logger.info(f"User {user_id} joined the queue at position {entry.position}")
        return self._decrypted(entry)

    async def leave(self, user_id: str) -> int:
        """Withdraw a customer's own entry. Returns the new queue length."""
        async with _store("look up existing entry"):
            entry = await self.entry_repo.find_active_by_user(user_id)
        if entry is None:
            raise EntryNotFoundError(user_id)
        return await self.remove_entry(entry.id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def encrypt_legacy_contacts(self) -> ContactMigrationResult:
        """Encrypt any contact field still stored as plaintext."""
        if not self.cipher.enabled:
            raise ValueError("Encryption key is not configured")

        async with _store("read queue contacts"):
            rows = await self.entry_repo.list_contacts()

        updated = 0
        errors: list[tuple[int, str]] = []
        for entry_id, email, phone in rows:
            new_email = self._encrypt_if_plain(email)
            new_phone = self._encrypt_if_plain(phone)
            if new_email is None and new_phone is None:
                continue
            try:
                await self.entry_repo.update_contacts(entry_id, email=new_email, phone=new_phone)
                updated += 1
            except _STORE_ERRORS as e:
                logger.error(f"Failed to update queue entry {entry_id}: {e}")
                errors.append((entry_id, str(e)))

        logger.info(f"Contact migration complete: {updated} queue entries updated")
        return ContactMigrationResult(updated_count=updated, errors=errors)
