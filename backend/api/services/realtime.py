"""Realtime change relay for admin dashboards.

Two independent paths keep every connected dashboard current:

* push: database triggers ``pg_notify('queue_changes', {"table": ...})``;
  ``ChangeRelay`` listens once per process and signals subscribers by table;
* poll: each ``DashboardFeed`` also refreshes on a fixed timer, which keeps
  running while the LISTEN connection is down or a notification is lost.

Signals carry no row data. Subscribers always refetch full state.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from contextlib import suppress
from typing import Any

import asyncpg

from shared.pg_listener import pg_listen

from .errors import QueueError

logger = logging.getLogger(__name__)

QUEUE_TABLES = ("queue_entries", "queue_settings")

ChangeCallback = Callable[[str], Awaitable[None]]


class Subscription:
    """Handle returned by ``ChangeRelay.subscribe``."""

    def __init__(self, relay: ChangeRelay, tables: frozenset[str], callback: ChangeCallback):
        self._relay = relay
        self.tables = tables
        self.callback = callback

    @property
    def active(self) -> bool:
        return self in self._relay._subscriptions

    def unsubscribe(self) -> None:
        self._relay._subscriptions.discard(self)


class ChangeRelay:
    """Fans queue table change signals out to in-process subscribers."""

    def __init__(
        self,
        channel: str = "queue_changes",
        *,
        keepalive_interval: int = 30,
        reconnect_delay: int = 10,
    ) -> None:
        self.channel = channel
        self.keepalive_interval = keepalive_interval
        self.reconnect_delay = reconnect_delay
        self._subscriptions: set[Subscription] = set()
        self._task: asyncio.Task | None = None
        self.listening = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, tables: Iterable[str], callback: ChangeCallback) -> Subscription:
        sub = Subscription(self, frozenset(tables), callback)
        self._subscriptions.add(sub)
        return sub

    async def publish(self, table: str) -> None:
        """Signal every subscriber interested in *table*; one bad subscriber
        does not stop the others."""
        for sub in list(self._subscriptions):
            if table not in sub.tables:
                continue
            try:
                await sub.callback(table)
            except Exception as e:
                logger.exception(f"Queue change subscriber failed on '{table}': {e}")

    async def _on_notify(
        self, connection: asyncpg.Connection, pid: int, channel: str, payload: str
    ) -> None:
        try:
            tables = [json.loads(payload)["table"]]
        except (ValueError, KeyError, TypeError):
            # Unknown shape: treat it as a change to everything
            logger.debug(f"Unparseable payload on '{channel}': {payload!r}")
            tables = list(QUEUE_TABLES)
        for table in tables:
            await self.publish(table)

    def _set_listening(self, value: bool) -> None:
        self.listening = value

    def start(self, pool: asyncpg.Pool) -> None:
        """Start the LISTEN loop (idempotent)."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(
            pg_listen(
                pool,
                self.channel,
                self._on_notify,
                keepalive_interval=self.keepalive_interval,
                reconnect_delay=self.reconnect_delay,
                on_connected=lambda: self._set_listening(True),
                on_disconnected=lambda: self._set_listening(False),
            )
        )
        logger.info(f"Queue change relay started on '{self.channel}'")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self.listening = False
        logger.info("Queue change relay stopped")


class DashboardFeed:
    """Pushes full queue snapshots to one dashboard connection.

    Refreshes on every relay signal and, independently, every
    ``poll_interval`` seconds. Refreshes are serialised so snapshots are
    sent whole and in order.
    """

    def __init__(
        self,
        relay: ChangeRelay,
        fetch_snapshot: Callable[[], Awaitable[dict[str, Any]]],
        send: Callable[[dict[str, Any]], Awaitable[None]],
        *,
        poll_interval: float = 10.0,
    ) -> None:
        self.relay = relay
        self.fetch_snapshot = fetch_snapshot
        self.send = send
        self.poll_interval = poll_interval
        self._changed = asyncio.Event()
        self._lock = asyncio.Lock()
        self._subscription: Subscription | None = None
        self._tasks: list[asyncio.Task] = []

    async def _on_change(self, table: str) -> None:
        self._changed.set()

    async def refresh(self, reason: str) -> None:
        async with self._lock:
            try:
                snapshot = await self.fetch_snapshot()
            except QueueError as e:
                logger.warning(f"Dashboard refresh ({reason}) failed: {e}")
                await self.send({"type": "error", "detail": str(e)})
                return
            await self.send(snapshot)

    async def _push_loop(self) -> None:
        while True:
            await self._changed.wait()
            self._changed.clear()
            await self.refresh("push")

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            await self.refresh("poll")

    async def run(self) -> None:
        """Send an initial snapshot, then keep refreshing until cancelled
        or until sending fails (client gone)."""
        self._subscription = self.relay.subscribe(QUEUE_TABLES, self._on_change)
        try:
            await self.refresh("initial")
            self._tasks = [
                asyncio.create_task(self._push_loop()),
                asyncio.create_task(self._poll_loop()),
            ]
            done, _ = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                task.result()
        finally:
            await self.close()

    async def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
