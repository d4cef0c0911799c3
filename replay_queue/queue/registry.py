"""Persistent set of queue names, used to replay every queue at once."""
from typing import List

from replay_queue.logging_conf import logger
from replay_queue.store.durable_store import DurableStore

QUEUE_REGISTRY_KEY = "__queue_registry__"


class QueueRegistry:
    """Records which named queues exist in a store."""

    def __init__(self, store: DurableStore):
        self.store = store

    async def register(self, queue_name: str) -> None:
        """Add a queue name; a no-op when it is already registered."""
        async with self.store.lock_for(QUEUE_REGISTRY_KEY):
            names = await self._load()
            if queue_name in names:
                return
            names.append(queue_name)
            await self.store.put(QUEUE_REGISTRY_KEY, names)
        logger.info(f"Registered queue {queue_name}")

    async def list_all(self) -> List[str]:
        """Return every registered queue name."""
        return await self._load()

    async def _load(self) -> List[str]:
        names = await self.store.get(QUEUE_REGISTRY_KEY) or []
        # Persisted as a list; read back as an insertion-ordered set
        return list(dict.fromkeys(names))
