"""PostgreSQL connection pool management for the queue backend.

Supabase connection modes:
  - Session Pooler  (port 5432) : persistent servers, supports prepared statements
                                  and LISTEN (needed by the change relay)
  - Transaction Pooler (port 6543) : serverless/edge, no prepared statements, no LISTEN
"""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass, fields
from typing import Any, ClassVar
from urllib.parse import urlparse

import asyncpg

logger = logging.getLogger(__name__)


@dataclass
class PoolConfig:
    """Database pool configuration with sensible defaults."""

    min_size: int = 1
    max_size: int = 5
    timeout: float = 5.0
    command_timeout: float = 15.0
    max_inactive_connection_lifetime: float = 30.0
    max_retries: int = 3
    retry_delay: float = 3.0
    ssl: str | None = "require"

    # Keep-alive settings (Session Pooler only)
    tcp_keepalives_idle: int = 30
    tcp_keepalives_interval: int = 10
    tcp_keepalives_count: int = 3

    # - api: one connection is pinned by the LISTEN loop, so keep headroom
    # - scripts: one-off maintenance jobs
    _SERVICE_PRESETS: ClassVar[dict[str, dict]] = {
        "api": {"min_size": 1, "max_size": 10},
        "scripts": {"min_size": 1, "max_size": 2, "max_retries": 1},
    }

    @classmethod
    def for_service(cls, service: str, **overrides) -> PoolConfig:
        """Create a PoolConfig with service-specific presets applied."""
        valid_keys = {f.name for f in fields(cls) if not f.name.startswith("_")}
        preset = dict(cls._SERVICE_PRESETS.get(service, {}))
        preset.update(overrides)
        return cls(**{k: v for k, v in preset.items() if k in valid_keys})


class DatabaseManager:
    """Manages the asyncpg pool lifecycle.

    Detects Transaction vs Session Pooler from the port, retries the initial
    connection with exponential backoff and exposes a cheap health check.
    """

    def __init__(self, database_url: str, config: PoolConfig | None = None):
        self.database_url = database_url
        self.config = config or PoolConfig()
        self._pool: asyncpg.Pool | None = None
        self._pooler_mode: str = "transaction" if ":6543" in database_url else "session"

    @property
    def supports_listen(self) -> bool:
        """LISTEN needs a session-level connection; PgBouncer transaction mode drops it."""
        return self._pooler_mode == "session"

    async def _init_session_connection(self, conn: asyncpg.Connection) -> None:
        timeout_ms = int(self.config.command_timeout * 1000)
        await conn.execute(f"SET statement_timeout = {timeout_ms}")

    def _session_pool_kwargs(self) -> dict[str, Any]:
        cfg = self.config
        return {
            "dsn": self.database_url,
            "min_size": cfg.min_size,
            "max_size": cfg.max_size,
            "timeout": cfg.timeout,
            "command_timeout": cfg.command_timeout,
            "ssl": cfg.ssl,
            "statement_cache_size": 100,
            "max_inactive_connection_lifetime": cfg.max_inactive_connection_lifetime,
            "server_settings": {
                "tcp_keepalives_idle": str(cfg.tcp_keepalives_idle),
                "tcp_keepalives_interval": str(cfg.tcp_keepalives_interval),
                "tcp_keepalives_count": str(cfg.tcp_keepalives_count),
            },
            "init": self._init_session_connection,
        }

    def _transaction_pool_kwargs(self) -> dict[str, Any]:
        """PgBouncer transaction mode: no prepared statements, no session state."""
        cfg = self.config
        return {
            "dsn": self.database_url,
            "min_size": 0,
            "max_size": cfg.max_size,
            "timeout": cfg.timeout,
            "command_timeout": cfg.command_timeout,
            "ssl": cfg.ssl,
            "statement_cache_size": 0,
            "max_inactive_connection_lifetime": 0,
        }

    def _diagnose_connection(self) -> None:
        """Log DNS/TCP reachability when the first connection attempt fails."""
        parsed = urlparse(self.database_url)
        host = parsed.hostname or "unknown"
        port = parsed.port or 5432
        logger.info(f"[DB Diag] host={host}, port={port}, user={parsed.username or 'unknown'}")

        try:
            addrs = socket.getaddrinfo(host, port, socket.AF_UNSPEC, socket.SOCK_STREAM)
        except socket.gaierror as e:
            logger.error(f"[DB Diag] DNS FAILED: {e}")
            return
        logger.info(f"[DB Diag] DNS OK: {({a[4][0] for a in addrs})}")

        family, _, _, _, sockaddr = addrs[0]
        try:
            with socket.socket(family, socket.SOCK_STREAM) as sock:
                sock.settimeout(5)
                sock.connect(sockaddr)
            logger.info(f"[DB Diag] TCP OK: {sockaddr[0]}:{sockaddr[1]}")
        except OSError as e:
            logger.error(f"[DB Diag] TCP FAILED to {sockaddr[0]}:{sockaddr[1]}: {e}")

    async def connect(self) -> None:
        """Initialize the connection pool with retry."""
        if self._pool is not None:
            logger.warning("Database pool already initialized")
            return

        builders = {
            "session": self._session_pool_kwargs,
            "transaction": self._transaction_pool_kwargs,
        }
        pool_kwargs = builders[self._pooler_mode]()
        logger.info(f"Connecting with {self._pooler_mode} pooler mode")

        cfg = self.config
        for attempt in range(1, cfg.max_retries + 1):
            try:
                self._pool = await asyncpg.create_pool(**pool_kwargs)
                async with self._pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")
                logger.info(
                    f"Database pool created and verified "
                    f"(mode={self._pooler_mode}, size={pool_kwargs['min_size']}-{cfg.max_size})"
                )
                return
            except Exception as e:
                if self._pool is not None:
                    await self._pool.close()
                    self._pool = None
                if attempt >= cfg.max_retries:
                    logger.exception(
                        f"Database connection failed after {cfg.max_retries} attempts: "
                        f"{type(e).__name__}: {e or repr(e)}"
                    )
                    raise
                delay = cfg.retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"Database connection attempt {attempt}/{cfg.max_retries} failed: "
                    f"{type(e).__name__}: {e or repr(e)}, retrying in {delay}s..."
                )
                if attempt == 1:
                    await asyncio.to_thread(self._diagnose_connection)
                await asyncio.sleep(delay)

    async def disconnect(self) -> None:
        if self._pool is None:
            return
        try:
            await self._pool.close()
            logger.info("Database pool closed")
        except Exception as e:
            logger.exception(f"Error closing database pool: {e}")
        finally:
            self._pool = None

    async def check_health(self) -> bool:
        """Test if the pool can actually execute a query."""
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire(timeout=2.0) as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception:
            return False

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool. Raises if not initialized."""
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call connect() first.")
        return self._pool

