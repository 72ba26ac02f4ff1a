"""Shared data models for the queue backend."""

from .profile import Profile
from .queue import QueueEntry, QueueSettings

__all__ = [
    "Profile",
    "QueueEntry",
    "QueueSettings",
]
