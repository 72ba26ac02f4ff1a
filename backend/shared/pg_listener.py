"""PostgreSQL LISTEN/NOTIFY loop with keepalive and auto-reconnect."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

import asyncpg

logger = logging.getLogger(__name__)

NotifyHandler = Callable[[asyncpg.Connection, int, str, str], Coroutine[Any, Any, None] | None]


async def _drop_connection(
    pool: asyncpg.Pool, connection: asyncpg.Connection, channel: str, handler: NotifyHandler
) -> None:
    """Detach the listener and hand the connection back, terminating it if needed."""
    try:
        await connection.remove_listener(channel, handler)
    except Exception as e:
        logger.debug(f"remove_listener('{channel}') failed: {e}")
    try:
        await pool.release(connection)
    except Exception:
        connection.terminate()


async def pg_listen(
    pool: asyncpg.Pool,
    channel: str,
    handler: NotifyHandler,
    *,
    keepalive_interval: int = 30,
    reconnect_delay: int = 10,
    on_connected: Callable[[], None] | None = None,
    on_disconnected: Callable[[], None] | None = None,
) -> None:
    """Listen on a PostgreSQL NOTIFY channel until cancelled.

    Args:
        pool: asyncpg connection pool. One connection is held for the
            lifetime of the listener.
        channel: NOTIFY channel name.
        handler: asyncpg listener callback ``(connection, pid, channel, payload)``.
        keepalive_interval: Seconds between ``SELECT 1`` pings. Must stay
            below the pooler's idle timeout or the LISTEN connection is dropped.
        reconnect_delay: Seconds to wait before re-acquiring after an error.
        on_connected / on_disconnected: Optional hooks for health reporting.
    """
    while True:
        connection: asyncpg.Connection | None = None
        try:
            connection = await pool.acquire()
            await connection.add_listener(channel, handler)
            logger.info(f"PostgreSQL LISTEN active on '{channel}'")
            if on_connected:
                on_connected()

            while True:
                await asyncio.sleep(keepalive_interval)
                await connection.execute("SELECT 1")

        except asyncio.CancelledError:
            logger.info(f"PostgreSQL LISTEN '{channel}' shutting down")
            if connection is not None:
                await _drop_connection(pool, connection, channel, handler)
            raise
        except Exception as e:
            logger.error(f"Error in pg_listen('{channel}'): {type(e).__name__}: {e}")
            logger.warning(f"Reconnecting to LISTEN '{channel}' in {reconnect_delay}s...")
            if on_disconnected:
                on_disconnected()
            if connection is not None:
                await _drop_connection(pool, connection, channel, handler)
            await asyncio.sleep(reconnect_delay)
