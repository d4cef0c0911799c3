"""Replays queued requests when a trigger fires."""
import asyncio
from typing import Dict, List, Optional

from replay_queue.errors import ReplayFailedError, ReplayResponseError, StoreUnavailableError
from replay_queue.fetcher import ReplayFetcher
from replay_queue.logging_conf import logger
from replay_queue.queue.codec import allow_redirects, from_snapshot
from replay_queue.queue.models import QueueEntryRecord
from replay_queue.queue.registry import QUEUE_REGISTRY_KEY, QueueRegistry
from replay_queue.queue.request_queue import REPLAY_ALL_TAG, RequestQueue, queue_name_for_tag
from replay_queue.queue.response_store import ResponseStore
from replay_queue.replay.triggers import SyncManager
from replay_queue.store.durable_store import DurableStore, open_store

ALL_QUEUES = "*"


class ReplayCoordinator:
    """Runs replay passes over the queues of one durable store.

    A pass walks a snapshot of a queue's order list strictly in order and
    never stops early: each failed entry is reported through
    on_replay_failure and the pass moves on. Entries that already carry a
    response are skipped. A pass that saw failures ends by raising
    ReplayFailedError, which tells the trigger to arm itself again.

    Only one pass per queue runs at a time; a trigger that arrives while a
    pass is in flight waits for that pass instead of starting another.
    """

    def __init__(
        self,
        store: Optional[DurableStore] = None,
        fetcher: Optional[ReplayFetcher] = None,
        response_store: Optional[ResponseStore] = None,
    ):
        self.store = store or open_store()
        self.fetcher = fetcher or ReplayFetcher()
        self.response_store = response_store or ResponseStore(self.store)
        self.registry = QueueRegistry(self.store)
        self._queues: Dict[str, RequestQueue] = {}
        self._passes: Dict[str, asyncio.Task] = {}
        self._sync_manager: Optional[SyncManager] = None

    def attach(self, queue: RequestQueue) -> None:
        """Make a queue, and the callbacks it carries, known to the coordinator."""
        if queue.store is not self.store:
            raise ValueError(f"Queue {queue.queue_name} uses a different store")
        self._queues[queue.queue_name] = queue
        if self._sync_manager is not None:
            self._sync_manager.on_trigger(queue.tag, self.handle_trigger)

    def install(self, sync_manager: SyncManager) -> None:
        """Route trigger tags for attached queues and for "replay all" to this coordinator."""
        self._sync_manager = sync_manager
        for queue in self._queues.values():
            sync_manager.on_trigger(queue.tag, self.handle_trigger)
        sync_manager.on_trigger(REPLAY_ALL_TAG, self.handle_trigger)

    def get_queue(self, queue_name: str) -> RequestQueue:
        """Return the attached queue, hydrating a callback-less one if needed."""
        queue = self._queues.get(queue_name)
        if queue is None:
            queue = RequestQueue(queue_name, store=self.store)
            self._queues[queue_name] = queue
        return queue

    async def handle_trigger(self, tag: str) -> None:
        if tag == REPLAY_ALL_TAG:
            await self.replay_all()
            return
        queue_name = queue_name_for_tag(tag)
        if not queue_name or queue_name == QUEUE_REGISTRY_KEY:
            logger.warning(f"Ignoring trigger with unknown tag {tag}")
            return
        await self.replay_queue(queue_name)

    async def replay_all(self) -> List[str]:
        """Replay every registered queue; queues run concurrently."""
        names = await self.registry.list_all()
        if not names:
            logger.info("Replay all: no registered queues")
            return []
        logger.info(f"Replay all: {len(names)} queue(s)")
        results = await asyncio.gather(*(self.replay_queue(name) for name in names), return_exceptions=True)

        replayed = []
        errors = []
        for name, result in zip(names, results):
            if isinstance(result, ReplayFailedError):
                errors.extend(result.errors)
            elif isinstance(result, BaseException):
                raise result
            else:
                replayed.extend(result)
        if errors:
            raise ReplayFailedError(ALL_QUEUES, errors)
        return replayed

    async def replay_queue(self, queue_name: str) -> List[str]:
        """Replay one queue, joining a pass that is already running.

        Returns the ids delivered in this pass.
        """
        task = self._passes.get(queue_name)
        if task is None or task.done():
            task = asyncio.ensure_future(self._replay_pass(self.get_queue(queue_name)))
            self._passes[queue_name] = task
            task.add_done_callback(lambda t, name=queue_name: self._forget_pass(name, t))
        else:
            logger.info(f"Replay of {queue_name} already in progress; waiting for it")
        return await asyncio.shield(task)

    def _forget_pass(self, queue_name: str, task: asyncio.Task) -> None:
        if self._passes.get(queue_name) is task:
            del self._passes[queue_name]

    async def _replay_pass(self, queue: RequestQueue) -> List[str]:
        # Entries pushed after this point wait for the next trigger
        await queue.initialize()
        entry_ids = queue.entry_ids
        logger.info(f"Replaying {len(entry_ids)} entries from {queue.queue_name}")

        replayed = []
        errors = []
        for entry_id in entry_ids:
            try:
                delivered = await self._replay_entry(queue, entry_id)
            except StoreUnavailableError:
                raise
            except Exception as e:
                logger.warning(f"Replay of {entry_id} failed: {e}")
                errors.append((entry_id, e))
                await queue.callbacks.invoke("on_replay_failure", entry_id, e)
                continue
            if delivered:
                replayed.append(entry_id)

        logger.info(
            f"Replay of {queue.queue_name} done: {len(replayed)} delivered, {len(errors)} failed"
        )
        if errors:
            raise ReplayFailedError(queue.queue_name, errors)
        return replayed

    async def _replay_entry(self, queue: RequestQueue, entry_id: str) -> bool:
        """Replay one entry. True if it was sent and succeeded, False if skipped."""
        record = await queue.get_request_from_queue(entry_id)
        if record is None:
            logger.debug(f"Skipping {entry_id}: no longer queued")
            return False
        if record.response is not None:
            logger.debug(f"Skipping {entry_id}: already replayed")
            return False

        replacement = await queue.callbacks.invoke("request_will_dequeue", record)
        if isinstance(replacement, QueueEntryRecord):
            record = replacement

        response = await self.fetcher.fetch(
            from_snapshot(record.request),
            allow_redirects=allow_redirects(record.request),
        )
        if record.request.redirect == "error" and response.is_redirect:
            raise ReplayResponseError(response, f"Redirect not allowed (HTTP {response.status_code})")
        if not 200 <= response.status_code < 300:
            raise ReplayResponseError(response)

        async with queue.lock:
            if await queue.is_listed(entry_id):
                await self.response_store.put(entry_id, record, response)
            else:
                logger.info(f"{entry_id} was removed during replay; response not stored")

        await queue.callbacks.invoke("on_replay_success", entry_id, response)
        return True


_coordinators: Dict[DurableStore, ReplayCoordinator] = {}


def get_coordinator(store: Optional[DurableStore] = None) -> ReplayCoordinator:
    """Shared coordinator for a store, so every queue on it is replayed by one owner."""
    store = store or open_store()
    coordinator = _coordinators.get(store)
    if coordinator is None:
        coordinator = _coordinators[store] = ReplayCoordinator(store)
    return coordinator


def reset_coordinators() -> None:
    _coordinators.clear()
