"""Walk-in queue API routes."""

import asyncio
import logging
from contextlib import suppress
from dataclasses import asdict
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from api.core.config import get_settings
from api.core.dependencies import get_change_relay, get_queue_service
from api.services import (
    AlreadyQueuedError,
    ChangeRelay,
    DashboardFeed,
    EmptyQueueError,
    EntryNotFoundError,
    QueueClosedError,
    QueueService,
    StoreError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/queue", tags=["queue"])


# ============================================
# Response / Request Models
# ============================================


class QueueEntryResponse(BaseModel):
    id: int
    user_id: str
    position: int
    estimated_wait_time: int
    email: str | None = None
    phone: str | None = None
    qr_code: str | None = None
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class QueueStateResponse(BaseModel):
    queue: list[QueueEntryResponse]
    current_serving: int


class QueueStatsResponse(BaseModel):
    total_today: int
    average_wait_time: int
    current_queue_length: int


class AdvanceResponse(BaseModel):
    current_serving: int
    served_entry_id: int | None = None
    notification_failed: bool = False
    message: str


class NotifyResponse(BaseModel):
    success: bool
    message: str


class ResetRequest(BaseModel):
    confirm: bool = Field(..., description="Must be true; a reset cannot be undone")


class ResetResponse(BaseModel):
    cleared_count: int
    current_serving: int
    message: str


class JoinRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    email: str | None = None
    phone: str | None = None
    qr_code: str | None = None


class LeaveRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class RemoveResponse(BaseModel):
    current_queue_length: int


class QueueSettingsResponse(BaseModel):
    id: int
    current_serving: int
    is_active: bool
    last_reset: datetime | None = None
    updated_at: datetime | None = None


class QueueSettingsUpdate(BaseModel):
    is_active: bool


async def build_snapshot(service: QueueService) -> dict:
    """State + stats as one JSON-ready message for dashboard feeds."""
    state = await service.get_state()
    stats = await service.get_stats()
    return {
        "type": "snapshot",
        "state": QueueStateResponse(
            queue=[QueueEntryResponse(**asdict(e)) for e in state.entries],
            current_serving=state.current_serving,
        ).model_dump(mode="json"),
        "stats": QueueStatsResponse(**asdict(stats)).model_dump(mode="json"),
    }


def _store_failure(action: str, e: StoreError) -> HTTPException:
    logger.error(f"Failed to {action}: {e}")
    return HTTPException(status_code=500, detail=str(e))


# ============================================
# Dashboard Reads
# ============================================


@router.get("/state", response_model=QueueStateResponse)
async def get_queue_state(
    service: QueueService = Depends(get_queue_service),
) -> QueueStateResponse:
    """Active queue in position order plus the current serving number."""
    try:
        state = await service.get_state()
        return QueueStateResponse(
            queue=[QueueEntryResponse(**asdict(e)) for e in state.entries],
            current_serving=state.current_serving,
        )
    except StoreError as e:
        raise _store_failure("fetch queue state", e) from None
    except Exception as e:
        logger.exception(f"Failed to get queue state: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch queue state") from None


@router.get("/stats", response_model=QueueStatsResponse)
async def get_queue_stats(
    service: QueueService = Depends(get_queue_service),
) -> QueueStatsResponse:
    try:
        stats = await service.get_stats()
        return QueueStatsResponse(**asdict(stats))
    except StoreError as e:
        raise _store_failure("fetch queue stats", e) from None
    except Exception as e:
        logger.exception(f"Failed to get queue stats: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch queue stats") from None


# ============================================
# Admin Actions
# ============================================


@router.post("/advance", response_model=AdvanceResponse)
async def advance_queue(
    service: QueueService = Depends(get_queue_service),
) -> AdvanceResponse:
    """Serve the customer at position 1 and move everyone up."""
    try:
        result = await service.advance()
        return AdvanceResponse(
            current_serving=result.current_serving,
            served_entry_id=result.served_entry_id,
            notification_failed=result.notification_failed,
            message=result.message,
        )
    except StoreError as e:
        raise _store_failure("advance queue", e) from None
    except Exception as e:
        logger.exception(f"Failed to advance queue: {e}")
        raise HTTPException(status_code=500, detail="Failed to advance queue") from None


@router.post("/notify-next", response_model=NotifyResponse)
async def notify_next_in_queue(
    service: QueueService = Depends(get_queue_service),
) -> NotifyResponse:
    """Re-send the now-serving notification to the customer at position 1."""
    try:
        report = await service.notify_next()
    except EmptyQueueError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
    except StoreError as e:
        raise _store_failure("notify next in queue", e) from None
    except Exception as e:
        logger.exception(f"Failed to notify next in queue: {e}")
        raise HTTPException(status_code=500, detail="Failed to notify next in queue") from None

    if not report.ok:
        raise HTTPException(status_code=502, detail=f"Notification failed: {report.summary()}")
    if not report.attempted:
        return NotifyResponse(success=True, message="No contact details on file")
    return NotifyResponse(success=True, message="Customer notified")


@router.post("/reset", response_model=ResetResponse)
async def reset_queue(
    body: ResetRequest,
    service: QueueService = Depends(get_queue_service),
) -> ResetResponse:
    """End-of-day reset. Irreversible, so the request must carry confirm=true."""
    if not body.confirm:
        raise HTTPException(status_code=400, detail="Reset must be confirmed")
    try:
        result = await service.reset()
        return ResetResponse(
            cleared_count=result.cleared_count,
            current_serving=result.settings.current_serving,
            message="Queue reset successfully",
        )
    except StoreError as e:
        raise _store_failure("reset queue", e) from None
    except Exception as e:
        logger.exception(f"Failed to reset queue: {e}")
        raise HTTPException(status_code=500, detail="Failed to reset queue") from None


@router.delete("/entries/{entry_id}", response_model=RemoveResponse)
async def remove_entry(
    entry_id: int,
    service: QueueService = Depends(get_queue_service),
) -> RemoveResponse:
    """Remove a specific customer from the queue."""
    try:
        remaining = await service.remove_entry(entry_id)
        logger.info(f"Removed queue entry {entry_id}")
        return RemoveResponse(current_queue_length=remaining)
    except EntryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
    except StoreError as e:
        raise _store_failure("remove queue entry", e) from None
    except Exception as e:
        logger.exception(f"Failed to remove queue entry: {e}")
        raise HTTPException(status_code=500, detail="Failed to remove queue entry") from None


@router.put("/settings", response_model=QueueSettingsResponse)
async def update_settings(
    body: QueueSettingsUpdate,
    service: QueueService = Depends(get_queue_service),
) -> QueueSettingsResponse:
    """Open or close the queue for new customers."""
    try:
        settings = await service.set_open(body.is_active)
        return QueueSettingsResponse(**asdict(settings))
    except StoreError as e:
        raise _store_failure("update queue settings", e) from None
    except Exception as e:
        logger.exception(f"Failed to update queue settings: {e}")
        raise HTTPException(status_code=500, detail="Failed to update queue settings") from None


# ============================================
# Customer Actions
# ============================================


@router.post("/join", response_model=QueueEntryResponse, status_code=201)
async def join_queue(
    body: JoinRequest,
    service: QueueService = Depends(get_queue_service),
) -> QueueEntryResponse:
    try:
        entry = await service.join(
            body.user_id, email=body.email, phone=body.phone, qr_code=body.qr_code
        )
        return QueueEntryResponse(**asdict(entry))
    except (QueueClosedError, AlreadyQueuedError) as e:
        raise HTTPException(status_code=409, detail=str(e)) from None
    except StoreError as e:
        raise _store_failure("join queue", e) from None
    except Exception as e:
        logger.exception(f"Failed to join queue: {e}")
        raise HTTPException(status_code=500, detail="Failed to join queue") from None


@router.post("/leave", response_model=RemoveResponse)
async def leave_queue(
    body: LeaveRequest,
    service: QueueService = Depends(get_queue_service),
) -> RemoveResponse:
    try:
        remaining = await service.leave(body.user_id)
        return RemoveResponse(current_queue_length=remaining)
    except EntryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
    except StoreError as e:
        raise _store_failure("leave queue", e) from None
    except Exception as e:
        logger.exception(f"Failed to leave queue: {e}")
        raise HTTPException(status_code=500, detail="Failed to leave queue") from None


# ============================================
# Realtime Dashboard Feed
# ============================================


@router.websocket("/ws")
async def queue_feed(
    websocket: WebSocket,
    service: QueueService = Depends(get_queue_service),
    relay: ChangeRelay = Depends(get_change_relay),
) -> None:
    """Stream full snapshots on every queue change and on a fallback timer.

    Any text the client sends triggers an immediate refresh.
    """
    await websocket.accept()
    feed = DashboardFeed(
        relay,
        fetch_snapshot=lambda: build_snapshot(service),
        send=websocket.send_json,
        poll_interval=get_settings().queue_poll_interval,
    )
    feed_task = asyncio.create_task(feed.run())
    try:
        while True:
            await websocket.receive_text()
            await feed.refresh("client")
    except WebSocketDisconnect:
        logger.debug("Queue dashboard disconnected")
    finally:
        feed_task.cancel()
        with suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            await feed_task
