"""Responses captured while replaying queued requests."""
from typing import Optional

import requests

from replay_queue.logging_conf import logger
from replay_queue.queue.codec import capture_response
from replay_queue.queue.models import QueueEntryRecord, ResponseSnapshot
from replay_queue.store.durable_store import DurableStore


class ResponseStore:
    """Attaches replay responses to entry records and reads them back by id."""

    def __init__(self, store: DurableStore):
        self.store = store

    async def put(self, entry_id: str, record: QueueEntryRecord,
                  response: requests.Response) -> QueueEntryRecord:
        """Persist `record` with `response` attached, replacing the response-less record.

        Returns the stored record.
        """
        updated = record.with_response(capture_response(response))
        await self.store.put(entry_id, updated.to_dict())
        logger.debug(f"Stored response {updated.response.status} for {entry_id}")
        return updated

    async def get(self, entry_id: str) -> Optional[ResponseSnapshot]:
        """Return the stored response for an entry, or None if there is none yet."""
        data = await self.store.get(entry_id)
        if not data:
            return None
        try:
            return QueueEntryRecord.from_dict(data).response
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Unreadable record for {entry_id}: {e}")
            return None
