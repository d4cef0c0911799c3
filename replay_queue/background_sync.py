"""Caller-facing background sync queue."""
from typing import Any, Dict, List, Optional, Union

from replay_queue import settings
from replay_queue.broadcast import BroadcastChannel, make_broadcast_channel
from replay_queue.fetcher import ReplayFetcher
from replay_queue.queue.callbacks import QueueCallbacks
from replay_queue.queue.codec import QueueableRequest
from replay_queue.queue.models import QueueConfig, ResponseSnapshot
from replay_queue.queue.request_queue import RequestQueue
from replay_queue.replay.coordinator import ReplayCoordinator, get_coordinator
from replay_queue.replay.triggers import SyncManager, get_sync_manager
from replay_queue.store.durable_store import DurableStore, open_store


class BackgroundSyncQueue:
    """Queue failed requests and replay them when connectivity comes back.

    Example:
        >>> bg_queue = BackgroundSyncQueue(
        ...     queue_name="form-posts",
        ...     callbacks=QueueCallbacks(on_replay_success=notify_user),
        ... )
        >>> try:
        ...     session.send(prepared)
        ... except requests.ConnectionError:
        ...     await bg_queue.push(prepared)
        >>> # Later, once a connectivity monitor calls
        >>> # sync_manager.connectivity_restored(), the request is replayed.
    """

    def __init__(
        self,
        queue_name: Optional[str] = None,
        max_retention_time: Optional[float] = None,
        callbacks: Optional[QueueCallbacks] = None,
        store: Optional[DurableStore] = None,
        sync_manager: Optional[SyncManager] = None,
        broadcast_channel: Optional[BroadcastChannel] = None,
        fetcher: Optional[ReplayFetcher] = None,
        coordinator: Optional[ReplayCoordinator] = None,
    ):
        """Initialize the queue.

        Args:
            queue_name: Name of the queue inside the store; generated if omitted
            max_retention_time: Seconds an entry is kept, replayed or not
            callbacks: Enqueue/replay callbacks and request mutation hooks
            store: Durable store; the configured default store if omitted
            sync_manager: Trigger host; the process-wide one if omitted
            broadcast_channel: Where "added"/"failed" messages go
            fetcher: Network fetch for a dedicated coordinator
            coordinator: Replay coordinator; the store's shared one if omitted
        """
        if max_retention_time is None:
            max_retention_time = settings.DEFAULT_MAX_AGE_SECONDS
        if isinstance(max_retention_time, bool) or not isinstance(max_retention_time, (int, float)) \
                or max_retention_time < 0:
            raise ValueError(f"max_retention_time must be a non-negative number, got {max_retention_time!r}")

        if coordinator is not None:
            store = store or coordinator.store
        self.store = store or open_store()
        if coordinator is None:
            coordinator = ReplayCoordinator(self.store, fetcher) if fetcher is not None \
                else get_coordinator(self.store)
        self.coordinator = coordinator
        self.sync_manager = sync_manager or get_sync_manager()
        self.broadcast_channel = broadcast_channel or make_broadcast_channel()
        self.callbacks = callbacks or QueueCallbacks()

        self.queue = RequestQueue(
            queue_name,
            config=QueueConfig(max_age=float(max_retention_time)),
            store=self.store,
            callbacks=self.callbacks,
            broadcast_channel=self.broadcast_channel,
            sync_manager=self.sync_manager,
        )
        self.coordinator.attach(self.queue)
        self.coordinator.install(self.sync_manager)

    @property
    def queue_name(self) -> str:
        return self.queue.queue_name

    @property
    def tag(self) -> str:
        return self.queue.tag

    async def initialize(self) -> None:
        """Load the queue from the store and drop expired entries."""
        await self.queue.initialize()
        await self.queue.cleanup()

    async def push(self, request: QueueableRequest,
                   config: Union[QueueConfig, Dict[str, Any], None] = None) -> Optional[str]:
        """Queue a request. Returns its entry id, or None if it could not be queued."""
        return await self.queue.push(request, config)

    async def replay_requests(self) -> List[str]:
        """Replay this queue now, without waiting for a trigger.

        Raises ReplayFailedError if any entry failed.
        """
        return await self.coordinator.replay_queue(self.queue_name)

    async def cleanup_queue(self) -> List[str]:
        """Delete expired entries. Returns the removed ids."""
        return await self.queue.cleanup()

    async def get_response(self, entry_id: str) -> Optional[ResponseSnapshot]:
        """Response captured when the entry was replayed, if it has been."""
        return await self.coordinator.response_store.get(entry_id)

    async def close(self) -> None:
        """Wait for outstanding broadcasts."""
        await self.broadcast_channel.drain()
