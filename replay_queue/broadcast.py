"""Fire-and-forget notifications about queue activity."""
import asyncio
import inspect
import json
from typing import Any, Callable, Dict, List, Optional, Set

from replay_queue import settings
from replay_queue.db import Database
from replay_queue.logging_conf import logger

Listener = Callable[[Dict[str, Any]], Any]


class BroadcastChannel:
    """Named pub/sub channel for `{"type": "added"|"failed", "id", "url"}` messages.

    There is no delivery guarantee and no acknowledgment: a listener that
    raises is logged and skipped. Asynchronous work started by a publish is
    tracked so `drain()` can wait for it.
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name or settings.BROADCAST_CHANNEL
        self._listeners: List[Listener] = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Add a listener. Returns a function that removes it again."""
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def post_message(self, payload: Dict[str, Any]) -> None:
        """Deliver a message to every listener; never raises."""
        message = dict(payload)
        for listener in list(self._listeners):
            try:
                result = listener(dict(message))
                if inspect.isawaitable(result):
                    self._track(result)
            except Exception as e:
                logger.warning(f"Broadcast listener on {self.name} failed: {e}")
        self._publish(message)

    async def drain(self) -> None:
        """Wait until every background publish has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _publish(self, message: Dict[str, Any]) -> None:
        """Hook for channels that reach listeners outside the process."""

    def _track(self, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop; dropping async broadcast work on {self.name}")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = loop.create_task(self._guard(awaitable))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _guard(self, awaitable) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.warning(f"Broadcast delivery on {self.name} failed: {e}")


class PostgresBroadcastChannel(BroadcastChannel):
    """Channel that also publishes through PostgreSQL NOTIFY.

    Any process connected to the same database can `LISTEN <name>` to follow
    enqueue events.
    """

    def __init__(self, name: Optional[str] = None, database: Optional[Database] = None):
        super().__init__(name)
        self.database = database or Database(settings.DATABASE_URL)

    def _publish(self, message: Dict[str, Any]) -> None:
        payload = json.dumps(message)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._notify(payload)
            return
        self._track(asyncio.to_thread(self._notify, payload))

    def _notify(self, payload: str) -> None:
        try:
            self.database.notify(self.name, payload)
        except Exception as e:
            logger.error(f"Failed to NOTIFY {self.name}: {e}", exc_info=True)


def make_broadcast_channel(name: Optional[str] = None) -> BroadcastChannel:
    """Return a NOTIFY-backed channel when a database is configured, else an in-process one."""
    if settings.DATABASE_URL:
        return PostgresBroadcastChannel(name)
    return BroadcastChannel(name)
