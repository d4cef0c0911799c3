"""Named, durable FIFO queue of failed requests."""
import itertools
import time
from typing import Any, Callable, Dict, List, Optional, Union

from replay_queue.broadcast import BroadcastChannel
from replay_queue.errors import StoreUnavailableError
from replay_queue.logging_conf import logger
from replay_queue.queue.callbacks import QueueCallbacks
from replay_queue.queue.codec import QueueableRequest, to_snapshot
from replay_queue.queue.models import QueueConfig, QueueEntryRecord
from replay_queue.queue.registry import QUEUE_REGISTRY_KEY, QueueRegistry
from replay_queue.store.durable_store import DurableStore, open_store

DEFAULT_QUEUE_NAME = "DEFAULT_QUEUE"
TAG_PREFIX = "bgqueue-"
REPLAY_ALL_TAG = "bgqueue:replay-all"

_default_names = itertools.count()


def tag_for_queue(queue_name: str) -> str:
    """Trigger tag that replays a single queue."""
    return f"{TAG_PREFIX}{queue_name}"


def queue_name_for_tag(tag: str) -> Optional[str]:
    """Inverse of tag_for_queue; None for tags that do not name a queue."""
    if tag.startswith(TAG_PREFIX):
        return tag[len(TAG_PREFIX):]
    return None


class RequestQueue:
    """Ordered list of entry ids persisted under the queue name.

    Each id keys a QueueEntryRecord in the same store. The order of the list
    is the replay order. Mutations of the list (push, cleanup, attaching a
    response) hold the per-queue lock and read the persisted list before
    writing it back, so overlapping pushes never lose an append.
    """

    def __init__(
        self,
        queue_name: Optional[str] = None,
        config: Union[QueueConfig, Dict[str, Any], None] = None,
        store: Optional[DurableStore] = None,
        callbacks: Optional[QueueCallbacks] = None,
        broadcast_channel: Optional[BroadcastChannel] = None,
        sync_manager=None,
        clock: Callable[[], float] = time.time,
    ):
        if queue_name is None:
            queue_name = f"{DEFAULT_QUEUE_NAME}_{next(_default_names)}"
        if not isinstance(queue_name, str) or not queue_name:
            raise ValueError(f"queue_name must be a non-empty string, got {queue_name!r}")
        if queue_name == QUEUE_REGISTRY_KEY:
            raise ValueError(f"{QUEUE_REGISTRY_KEY!r} is reserved and cannot be a queue name")

        self._queue_name = queue_name
        self.config = QueueConfig().merged(config)
        self.store = store or open_store()
        self.registry = QueueRegistry(self.store)
        self.callbacks = callbacks or QueueCallbacks()
        self.broadcast_channel = broadcast_channel
        self.sync_manager = sync_manager
        self._clock = clock

        self._entry_ids: List[str] = []
        self._loaded = False
        self._sequence = 0

    @property
    def queue_name(self) -> str:
        return self._queue_name

    @property
    def tag(self) -> str:
        return tag_for_queue(self._queue_name)

    @property
    def entry_ids(self) -> List[str]:
        """Current order list. A copy; mutating it does not touch the queue."""
        return list(self._entry_ids)

    @property
    def lock(self):
        """Lock serializing mutations of this queue's order list."""
        return self.store.lock_for(self._queue_name)

    async def initialize(self) -> None:
        """(Re)load the order list from the store."""
        async with self.lock:
            await self._hydrate()

    async def push(self, request: QueueableRequest,
                   config_override: Union[QueueConfig, Dict[str, Any], None] = None) -> Optional[str]:
        """Queue a request for replay.

        Returns the new entry id, or None when the request could not be
        recorded (a "failed" broadcast and on_enqueue_failure report it).
        Raises TypeError/ValueError for an invalid request or config and
        StoreUnavailableError when the store cannot be opened.
        """
        # Prepares the request, so a malformed URL raises here as a ValueError
        snapshot = to_snapshot(request)
        config = self.config.merged(config_override)
        url = request.url

        await self._ensure_loaded()
        entry_id = self._next_entry_id(url)
        try:
            record = QueueEntryRecord.create(snapshot, config, self._clock())
            replacement = await self.callbacks.invoke("request_will_enqueue", record)
            if isinstance(replacement, QueueEntryRecord):
                record = replacement

            async with self.lock:
                entry_ids = list(await self.store.get(self._queue_name) or [])
                entry_ids.append(entry_id)
                await self.store.put(self._queue_name, entry_ids)
                self._entry_ids = entry_ids
                await self.store.put(entry_id, record.to_dict())

            await self.registry.register(self._queue_name)
            if self.sync_manager is not None:
                await self.sync_manager.register(self.tag)
        except StoreUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Failed to queue {url} in {self._queue_name}: {e}", exc_info=True)
            await self._discard(entry_id)
            self._broadcast("failed", entry_id, url)
            await self.callbacks.invoke("on_enqueue_failure", entry_id, url)
            return None

        logger.info(
            f"Queued {url} in {self._queue_name}",
            extra={"queue": self._queue_name, "entry_id": entry_id}
        )
        self._broadcast("added", entry_id, url)
        await self.callbacks.invoke("on_enqueue_success", entry_id, url)
        return entry_id

    async def get_request_from_queue(self, entry_id: str) -> Optional[QueueEntryRecord]:
        """Return the record for an id listed in this queue, else None."""
        await self._ensure_loaded()
        if entry_id not in self._entry_ids:
            return None
        return self._parse(entry_id, await self.store.get(entry_id))

    async def is_listed(self, entry_id: str) -> bool:
        """Check the persisted order list. Hold `lock` when the answer guards a write."""
        return entry_id in (await self.store.get(self._queue_name) or [])

    async def cleanup(self) -> List[str]:
        """Drop entries whose record is missing or whose max_age has elapsed.

        Returns the removed ids.
        """
        removed = []
        async with self.lock:
            stored = list(await self.store.get(self._queue_name) or [])
            keep = []
            now = self._clock()
            for entry_id in stored:
                data = await self.store.get(entry_id)
                if data is None:
                    logger.debug(f"Dropping {entry_id} from {self._queue_name}: no record")
                    removed.append(entry_id)
                    continue
                record = self._parse(entry_id, data)
                if record is None or record.is_expired(now):
                    await self.store.delete(entry_id)
                    removed.append(entry_id)
                    continue
                keep.append(entry_id)

            if keep != stored:
                await self.store.put(self._queue_name, keep)
            self._entry_ids = keep
            self._loaded = True

        if removed:
            logger.info(f"Cleaned up {len(removed)} entries from {self._queue_name}")
        return removed

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self.lock:
            if not self._loaded:
                await self._hydrate()

    async def _hydrate(self) -> None:
        stored = await self.store.get(self._queue_name)
        self._entry_ids = list(stored) if stored else []
        self._loaded = True
        logger.debug(f"Loaded {len(self._entry_ids)} entries for {self._queue_name}")

    async def _discard(self, entry_id: str) -> None:
        """Undo a partial push so a reported failure really means "not queued"."""
        try:
            async with self.lock:
                entry_ids = list(await self.store.get(self._queue_name) or [])
                if entry_id in entry_ids:
                    entry_ids.remove(entry_id)
                    await self.store.put(self._queue_name, entry_ids)
                self._entry_ids = entry_ids
                await self.store.delete(entry_id)
        except Exception as e:
            logger.error(f"Failed to roll back {entry_id}; cleanup will reclaim it: {e}")
            if entry_id in self._entry_ids:
                self._entry_ids.remove(entry_id)

    def _parse(self, entry_id: str, data: Any) -> Optional[QueueEntryRecord]:
        if not data:
            return None
        try:
            return QueueEntryRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Unreadable record {entry_id} in {self._queue_name}: {e}")
            return None

    def _next_entry_id(self, url: str) -> str:
        entry_id = f"{url}!{time.time_ns()}!{self._sequence}"
        self._sequence += 1
        return entry_id

    def _broadcast(self, event_type: str, entry_id: str, url: str) -> None:
        if self.broadcast_channel is not None:
            self.broadcast_channel.post_message({"type": event_type, "id": entry_id, "url": url})
