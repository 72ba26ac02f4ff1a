"""FastAPI application factory"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from api.core.config import get_settings
from api.core.database import get_database_manager, init_database_manager
from api.core.dependencies import close_notification_dispatcher, get_change_relay
from api.core.logging import setup_logging
from api.routers import queue_router
from shared.database import DatabaseManager

logger = logging.getLogger(__name__)

SERVICE_NAME = "glowpoint-queue-api"
VERSION = "1.0.0"

# Track server start time
_start_time: float = 0.0
_heartbeat_task: asyncio.Task | None = None
_pool_heartbeat_task: asyncio.Task | None = None
_db_retry_task: asyncio.Task | None = None


def _start_change_relay(db_manager: DatabaseManager) -> None:
    """Start LISTEN on the queue channel once the pool is up.

    Dashboards fall back to polling alone when the pooler cannot hold LISTEN.
    """
    if not db_manager.supports_listen:
        logger.warning("Transaction pooler detected, queue change relay disabled (polling only)")
        return
    get_change_relay().start(db_manager.pool)


async def _heartbeat(interval: int = 300) -> None:
    """Periodic heartbeat: log uptime, DB and relay status"""
    while True:
        await asyncio.sleep(interval)
        uptime = int(time.time() - _start_time)
        db_manager = get_database_manager()
        db_ok = db_manager is not None and await db_manager.check_health()
        relay = get_change_relay()
        logger.info(
            f"Heartbeat: uptime={uptime}s, db={db_ok}, "
            f"relay={relay.listening}, dashboards={relay.subscriber_count}"
        )


async def _pool_heartbeat_loop() -> None:
    """Periodically ping the DB pool to keep idle connections alive.

    Constraint chain: heartbeat(15s) < max_inactive(45s) < Supavisor(~30-60s).
    On failure, backs off to avoid flooding logs and wasting connections.
    """
    interval = 15
    fail_count = 0
    while True:
        await asyncio.sleep(interval)
        try:
            db_manager = get_database_manager()
            if db_manager.is_connected:
                async with db_manager.pool.acquire(timeout=30.0) as conn:
                    await conn.fetchval("SELECT 1")
                if fail_count > 0:
                    logger.info(f"Pool heartbeat recovered after {fail_count} failures")
                fail_count = 0
                interval = 15
        except asyncio.CancelledError:
            break
        except Exception as e:
            fail_count += 1
            if fail_count <= 3:
                logger.warning(f"Pool heartbeat failed ({fail_count}): {type(e).__name__}: {e}")
            elif fail_count == 4:
                logger.warning(
                    f"Pool heartbeat still failing ({fail_count}x), suppressing until recovery"
                )
            # Backoff: 15s -> 30s -> 60s -> 120s max
            interval = min(15 * (2 ** min(fail_count - 1, 3)), 120)


async def _db_retry_loop(db_manager: DatabaseManager) -> None:
    """Background loop to retry DB connection after startup timeout."""
    delay = 5
    max_delay = 60
    while True:
        await asyncio.sleep(delay)
        if db_manager.is_connected:
            logger.info("DB retry loop: pool already connected, stopping")
            _start_change_relay(db_manager)
            return
        try:
            await db_manager.connect()
            logger.info("Database connected (background retry)")
            _start_change_relay(db_manager)
            return
        except asyncio.CancelledError:
            return
        except Exception as e:
            logger.warning(
                f"DB background retry failed: {type(e).__name__}: {e}, "
                f"next retry in {min(delay * 2, max_delay)}s"
            )
            delay = min(delay * 2, max_delay)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle startup and shutdown"""
    global _start_time, _heartbeat_task, _pool_heartbeat_task, _db_retry_task
    _start_time = time.time()

    settings = get_settings()

    # Startup
    logger.info("Starting queue API server")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Frontend URL: {settings.frontend_url}")

    # Wait up to 30s for the pool before accepting requests; on timeout keep
    # serving and connect in the background (queue routes answer 503 meanwhile).
    db_manager = init_database_manager(settings.database_url, ssl=settings.database_ssl)

    try:
        await asyncio.wait_for(db_manager.connect(), timeout=30)
        logger.info("Database connected")
        _start_change_relay(db_manager)
    except TimeoutError:
        logger.warning("DB connection timed out during startup, retrying in background")
        _db_retry_task = asyncio.create_task(_db_retry_loop(db_manager))
    except Exception as e:
        logger.error(
            f"DB connection failed during startup: {type(e).__name__}: {e}, retrying in background"
        )
        _db_retry_task = asyncio.create_task(_db_retry_loop(db_manager))

    if settings.enable_keep_alive:
        _heartbeat_task = asyncio.create_task(_heartbeat(settings.keep_alive_interval))
        logger.info(f"Heartbeat started (interval={settings.keep_alive_interval}s)")

    # Pool heartbeat prevents Supavisor idle kills
    _pool_heartbeat_task = asyncio.create_task(_pool_heartbeat_loop())

    yield

    # Shutdown
    logger.info("Shutting down queue API server")
    for task in (_db_retry_task, _pool_heartbeat_task, _heartbeat_task):
        if task:
            task.cancel()
    try:
        await get_change_relay().stop()
        await close_notification_dispatcher()
        await db_manager.disconnect()
        logger.info("Database disconnected")
    except Exception as e:
        logger.exception(f"Error during shutdown: {e}")


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    settings = get_settings()

    # Setup logging first
    setup_logging(settings)

    app = FastAPI(
        title="Glowpoint Queue API",
        description="Walk-in queue management for the salon front desk",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(queue_router.router)

    @app.get("/")
    async def root():
        """Root endpoint - minimal service info"""
        return {"service": SERVICE_NAME, "status": "running"}

    # Liveness probe: always 200, no external dependency
    @app.get("/health")
    async def health():
        """Liveness check for Render / Docker / K8s (no DB dependency)"""
        return {
            "status": "healthy",
            "uptime_seconds": int(time.time() - _start_time),
        }

    @app.get("/status")
    async def status():
        """Readiness / status endpoint with DB health and relay state"""
        db_manager = get_database_manager()
        db_ok = False
        if db_manager is not None and db_manager.is_connected:
            db_ok = await db_manager.check_health()
        relay = get_change_relay()
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "uptime_seconds": int(time.time() - _start_time),
            "db_connected": db_ok,
            "relay_listening": relay.listening,
            "dashboard_subscribers": relay.subscriber_count,
            "environment": settings.environment,
        }

    @app.api_route("/ping", methods=["GET", "HEAD"], response_class=PlainTextResponse)
    async def ping():
        """Ping endpoint"""
        return "pong"

    logger.info("FastAPI application configured")

    return app
