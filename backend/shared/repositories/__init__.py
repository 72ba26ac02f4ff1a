"""Shared repository layer for the queue backend."""

from .profile import ProfileRepository
from .queue import QueueEntryRepository, QueueSettingsRepository

__all__ = [
    "ProfileRepository",
    "QueueEntryRepository",
    "QueueSettingsRepository",
]
