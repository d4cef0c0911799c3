"""Exceptions raised by the replay queue."""
from typing import List, Optional, Tuple


class ReplayQueueError(Exception):
    """Base class for replay queue errors."""


class StoreUnavailableError(ReplayQueueError):
    """The durable store could not be opened. Nothing else can succeed after this."""


class ReplayResponseError(ReplayQueueError):
    """A replayed request got a response that does not count as delivered."""

    def __init__(self, response, reason: Optional[str] = None):
        self.response = response
        self.status = response.status_code
        message = reason or f"Replay got HTTP {self.status}"
        super().__init__(message)


class ReplayFailedError(ReplayQueueError):
    """One or more entries failed during a replay pass.

    `errors` holds (entry_id, exception) pairs in the order the entries were
    attempted.
    """

    def __init__(self, queue_name: str, errors: List[Tuple[str, Exception]]):
        self.queue_name = queue_name
        self.errors = list(errors)
        super().__init__(f"{len(self.errors)} replay(s) failed for queue {queue_name}")

    def __len__(self):
        return len(self.errors)
