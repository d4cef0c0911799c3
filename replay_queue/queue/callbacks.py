"""Lifecycle callbacks supplied by the code that owns a queue."""
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional

from replay_queue.logging_conf import logger


@dataclass
class QueueCallbacks:
    """Optional hooks, each either a plain function or a coroutine function.

    on_enqueue_success(entry_id, url)
    on_enqueue_failure(entry_id, url)
    on_replay_success(entry_id, response)
    on_replay_failure(entry_id, error)
    request_will_enqueue(record)  -- may mutate the record or return a replacement
    request_will_dequeue(record)  -- same, right before a replay is sent

    A callback that raises is logged; it never changes what the queue does.
    """

    on_enqueue_success: Optional[Callable[..., Any]] = None
    on_enqueue_failure: Optional[Callable[..., Any]] = None
    on_replay_success: Optional[Callable[..., Any]] = None
    on_replay_failure: Optional[Callable[..., Any]] = None
    request_will_enqueue: Optional[Callable[..., Any]] = None
    request_will_dequeue: Optional[Callable[..., Any]] = None

    async def invoke(self, name: str, *args) -> Any:
        """Call the named callback if it is set, awaiting it when needed."""
        callback = getattr(self, name)
        if callback is None:
            return None
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            logger.error(f"Callback {name} failed: {e}", exc_info=True)
            return None
