"""Queue engine error taxonomy.

Notification failures are deliberately absent: they are reported through
``DispatchReport`` results and never raised past the dispatcher.
"""

from __future__ import annotations


class QueueError(Exception):
    """Base class for queue engine failures."""


class StoreError(QueueError):
    """A read or write against the backing store failed."""

    def __init__(self, action: str, cause: BaseException) -> None:
        self.action = action
        self.cause = cause
        super().__init__(f"{action}: {cause}")


class EmptyQueueError(QueueError):
    """No active entry holds position 1."""

    def __init__(self) -> None:
        super().__init__("Queue is empty.")


class QueueClosedError(QueueError):
    """The queue is not accepting new entries."""

    def __init__(self) -> None:
        super().__init__("Queue is closed.")


class AlreadyQueuedError(QueueError):
    def __init__(self, user_id: str, position: int) -> None:
        self.user_id = user_id
        self.position = position
        super().__init__(f"User {user_id} is already in the queue at position {position}.")


class EntryNotFoundError(QueueError):
    def __init__(self, ref: int | str) -> None:
        super().__init__(f"No active queue entry for {ref}.")
