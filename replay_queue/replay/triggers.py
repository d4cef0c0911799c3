"""One-shot "connectivity restored" triggers."""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from replay_queue import settings
from replay_queue.errors import ReplayFailedError
from replay_queue.logging_conf import logger
from replay_queue.store.durable_store import DurableStore, open_store

ARMED_TAGS_KEY = "armed_tags"

TriggerHandler = Callable[[str], Awaitable[Any]]


class SyncManager:
    """Arms tagged triggers and fires each one once when connectivity returns.

    Registering a tag that is already armed does nothing. When
    `connectivity_restored()` runs, every armed tag is disarmed and its
    handler called exactly once. A handler that raises gets its tag armed
    again, so the work is retried on the next restore. With a store, the armed
    set is persisted and survives a restart (call `load()` on startup).
    """

    def __init__(self, store: Optional[DurableStore] = None):
        self.store = store
        self._armed: List[str] = []
        self._handlers: Dict[str, TriggerHandler] = {}
        self._lock = asyncio.Lock()

    @property
    def armed_tags(self) -> List[str]:
        return list(self._armed)

    def is_armed(self, tag: str) -> bool:
        return tag in self._armed

    async def load(self) -> List[str]:
        """Restore armed tags from the store."""
        if self.store is None:
            return self.armed_tags
        stored = await self.store.get(ARMED_TAGS_KEY) or []
        async with self._lock:
            for tag in stored:
                if tag not in self._armed:
                    self._armed.append(tag)
        if stored:
            logger.info(f"Restored {len(stored)} armed trigger(s)")
        return self.armed_tags

    async def register(self, tag: str) -> None:
        """Arm a one-shot trigger for `tag`."""
        async with self._lock:
            if tag in self._armed:
                return
            self._armed.append(tag)
            await self._persist()
        logger.debug(f"Armed trigger {tag}")

    def on_trigger(self, tag: str, handler: TriggerHandler) -> None:
        """Set the coroutine function called when `tag` fires."""
        current = self._handlers.get(tag)
        if current is not None and current is not handler:
            logger.warning(f"Replacing handler for trigger {tag}")
        self._handlers[tag] = handler

    async def dispatch(self, tag: str) -> bool:
        """Run the handler for one fired tag. Returns True if it completed."""
        handler = self._handlers.get(tag)
        if handler is None:
            logger.warning(f"No handler for trigger {tag}; keeping it armed")
            await self.register(tag)
            return False
        try:
            await handler(tag)
            return True
        except ReplayFailedError as e:
            logger.warning(f"Trigger {tag} finished with failures ({e}); re-arming")
        except Exception as e:
            logger.error(f"Trigger {tag} failed: {e}; re-arming", exc_info=True)
        await self.register(tag)
        return False

    async def connectivity_restored(self) -> Dict[str, bool]:
        """Fire every armed trigger once. Returns tag -> completed."""
        async with self._lock:
            tags = list(self._armed)
            self._armed.clear()
            if tags:
                await self._persist()
        if not tags:
            logger.debug("Connectivity restored; no armed triggers")
            return {}
        logger.info(f"Connectivity restored; dispatching {len(tags)} trigger(s)")
        results = await asyncio.gather(*(self.dispatch(tag) for tag in tags))
        return dict(zip(tags, results))

    async def _persist(self) -> None:
        if self.store is not None:
            await self.store.put(ARMED_TAGS_KEY, list(self._armed))


_sync_manager: Optional[SyncManager] = None


def get_sync_manager() -> SyncManager:
    """Process-wide sync manager persisting its armed tags in the sync store."""
    global _sync_manager
    if _sync_manager is None:
        _sync_manager = SyncManager(open_store(settings.SYNC_STORE_NAME))
    return _sync_manager


def reset_sync_manager() -> None:
    global _sync_manager
    _sync_manager = None
