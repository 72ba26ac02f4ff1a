"""Repository for queue_entries and queue_settings tables."""

from __future__ import annotations

import logging
from datetime import datetime

import asyncpg

from shared.models.queue import QueueEntry, QueueSettings

logger = logging.getLogger(__name__)

_ENTRY_COLUMNS = (
    "id, user_id::text AS user_id, position, estimated_wait_time, email, phone, "
    "qr_code, is_active, created_at, updated_at"
)

_SETTINGS_COLUMNS = "id, current_serving, is_active, last_reset, updated_at"

# Fixed identity of the singleton settings row
SETTINGS_ID = 1

_INCREMENT_SERVING_SQL = (
    "UPDATE queue_settings "
    "SET current_serving = current_serving + 1, updated_at = NOW() "
    "WHERE id = $1 RETURNING current_serving"
)


class SettingsRowMissingError(RuntimeError):
    """The queue_settings singleton has not been seeded (run migrations)."""

    def __init__(self) -> None:
        super().__init__(f"queue_settings row {SETTINGS_ID} is missing, run db_migrate.py")


def _affected(result: str) -> int:
    # asyncpg status strings look like "UPDATE 3"
    return int(result.split()[-1])


class QueueEntryRepository:
    """Pure SQL operations for queue_entries."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get_active_entries(self) -> list[QueueEntry]:
        """Get all active entries ordered by position ASC."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_ENTRY_COLUMNS} FROM queue_entries "
                "WHERE is_active = TRUE "
                "ORDER BY position ASC, id ASC"
            )
            return [QueueEntry(**dict(row)) for row in rows]

    async def get_front_entry(self) -> QueueEntry | None:
        """Get the active entry currently holding position 1."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_ENTRY_COLUMNS} FROM queue_entries "
                "WHERE is_active = TRUE AND position = 1 "
                "ORDER BY id ASC LIMIT 1"
            )
            if not row:
                return None
            return QueueEntry(**dict(row))

    async def find_active_by_user(self, user_id: str) -> QueueEntry | None:
        """Find the active entry owned by a customer."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_ENTRY_COLUMNS} FROM queue_entries "
                "WHERE user_id::text = $1 AND is_active = TRUE "
                "ORDER BY id ASC LIMIT 1",
                user_id,
            )
            if not row:
                return None
            return QueueEntry(**dict(row))

    async def add_entry(
        self,
        user_id: str,
        *,
        email: str | None = None,
        phone: str | None = None,
        qr_code: str | None = None,
        wait_per_slot: int = 20,
    ) -> QueueEntry:
        """Append an entry at the end of the active set (position N + 1)."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO queue_entries
                    (user_id, position, estimated_wait_time, email, phone, qr_code)
                SELECT $1, n.next_position, n.next_position * $5, $2, $3, $4
                FROM (
                    SELECT COALESCE(MAX(position), 0) + 1 AS next_position
                    FROM queue_entries WHERE is_active = TRUE
                ) AS n
                RETURNING {_ENTRY_COLUMNS}
                """,
                user_id,
                email,
                phone,
                qr_code,
                wait_per_slot,
            )
            return QueueEntry(**dict(row))

    async def deactivate_entry(self, entry_id: int) -> bool:
        """Soft-delete a single active entry. Returns True if removed."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "UPDATE queue_entries "
                "SET is_active = FALSE, updated_at = NOW() "
                "WHERE id = $1 AND is_active = TRUE",
                entry_id,
            )
            return result == "UPDATE 1"

    async def renumber(self, updates: list[tuple[int, int, int]]) -> int:
        """Write ``(id, position, estimated_wait_time)`` for many rows at once.

        Runs as one statement so the batch lands atomically. Rows that went
        inactive in the meantime are left alone.
        """
        if not updates:
            return 0
        ids = [u[0] for u in updates]
        positions = [u[1] for u in updates]
        waits = [u[2] for u in updates]
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE queue_entries AS q
                SET position = u.position,
                    estimated_wait_time = u.wait,
                    updated_at = NOW()
                FROM unnest($1::bigint[], $2::int[], $3::int[]) AS u(id, position, wait)
                WHERE q.id = u.id AND q.is_active = TRUE
                """,
                ids,
                positions,
                waits,
            )
            return _affected(result)

    async def serve_and_increment(self, entry_id: int) -> tuple[bool, int]:
        """Serve the front entry and bump current_serving in one transaction.

        The serve is conditional (still active, still at position 1); the
        counter moves either way. Returns ``(served, current_serving)``.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                result = await conn.execute(
                    "UPDATE queue_entries "
                    "SET is_active = FALSE, updated_at = NOW() "
                    "WHERE id = $1 AND is_active = TRUE AND position = 1",
                    entry_id,
                )
                current = await conn.fetchval(_INCREMENT_SERVING_SQL, SETTINGS_ID)
                if current is None:
                    raise SettingsRowMissingError()
            return result == "UPDATE 1", current

    async def reset_queue(self) -> tuple[int, QueueSettings]:
        """Soft-delete every active entry and zero the counter, atomically.

        Returns ``(cleared_count, settings)``.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                result = await conn.execute(
                    "UPDATE queue_entries "
                    "SET is_active = FALSE, updated_at = NOW() "
                    "WHERE is_active = TRUE"
                )
                row = await conn.fetchrow(
                    f"""
                    UPDATE queue_settings
                    SET current_serving = 0, last_reset = NOW(), updated_at = NOW()
                    WHERE id = $1
                    RETURNING {_SETTINGS_COLUMNS}
                    """,
                    SETTINGS_ID,
                )
                if not row:
                    # Rolls back the clear above
                    raise SettingsRowMissingError()
            return _affected(result), QueueSettings(**dict(row))

    async def count_created_between(self, start: datetime, end: datetime) -> int:
        """Count entries (active or not) created in ``[start, end)``."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM queue_entries WHERE created_at >= $1 AND created_at < $2",
                start,
                end,
            )

    async def list_contacts(self) -> list[tuple[int, str | None, str | None]]:
        """Return ``(id, email, phone)`` for every entry, active or not."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT id, email, phone FROM queue_entries ORDER BY id")
            return [(row["id"], row["email"], row["phone"]) for row in rows]

    async def update_contacts(
        self, entry_id: int, *, email: str | None = None, phone: str | None = None
    ) -> bool:
        """Overwrite the stored contact fields. Only provided fields are updated."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "UPDATE queue_entries SET "
                "email = COALESCE($2, email), phone = COALESCE($3, phone), updated_at = NOW() "
                "WHERE id = $1",
                entry_id,
                email,
                phone,
            )
            return result == "UPDATE 1"


class QueueSettingsRepository:
    """Pure SQL operations for the singleton queue_settings row.

    Never cached: every server instance must see the same counter.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get(self) -> QueueSettings:
        """Read the settings row. Pure SELECT; the row is seeded by migration 001."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_SETTINGS_COLUMNS} FROM queue_settings WHERE id = $1",
                SETTINGS_ID,
            )
            if not row:
                raise SettingsRowMissingError()
            return QueueSettings(**dict(row))

    async def increment_serving(self) -> int:
        """Atomically bump current_serving by one. Returns the new value."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(_INCREMENT_SERVING_SQL, SETTINGS_ID)

    async def set_open(self, is_active: bool) -> QueueSettings:
        """Open or close the queue for joining."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE queue_settings
                SET is_active = $2, updated_at = NOW()
                WHERE id = $1
                RETURNING {_SETTINGS_COLUMNS}
                """,
                SETTINGS_ID,
                is_active,
            )
            if not row:
                raise SettingsRowMissingError()
            return QueueSettings(**dict(row))
