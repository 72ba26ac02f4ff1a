"""Services layer - Business logic

Services are initialized with their dependencies and accessed through
dependency injection (see ``api.core.dependencies``).
"""

from .email_client import EmailClient
from .errors import (
    AlreadyQueuedError,
    EmptyQueueError,
    EntryNotFoundError,
    QueueClosedError,
    QueueError,
    StoreError,
)
from .notifications import DispatchReport, NotificationDispatcher
from .queue_service import QueueService
from .realtime import ChangeRelay, DashboardFeed
from .sms_client import DispatchResult, SmsClient

__all__ = [
    "AlreadyQueuedError",
    "ChangeRelay",
    "DashboardFeed",
    "DispatchReport",
    "DispatchResult",
    "EmailClient",
    "EmptyQueueError",
    "EntryNotFoundError",
    "NotificationDispatcher",
    "QueueClosedError",
    "QueueError",
    "QueueService",
    "SmsClient",
    "StoreError",
]
