"""Network fetch used to replay queued requests."""
import asyncio
from typing import Optional

import requests

from replay_queue import settings
from replay_queue.logging_conf import logger


class ReplayFetcher:
    """Sends rebuilt requests with a shared requests.Session.

    No retry or backoff happens here: a failed replay stays queued until the
    next trigger.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.session = session or requests.Session()
        if timeout is None:
            timeout = settings.REPLAY_FETCH_TIMEOUT
        # 0 means wait as long as the server takes
        self.timeout = timeout or None

    async def fetch(self, request: requests.Request, allow_redirects: bool = True) -> requests.Response:
        """Send a request from a worker thread.

        Raises requests.RequestException on network errors.
        """
        return await asyncio.to_thread(self._send, request, allow_redirects)

    def close(self) -> None:
        self.session.close()

    def _send(self, request: requests.Request, allow_redirects: bool) -> requests.Response:
        prepared = self.session.prepare_request(request)
        logger.debug(f"Replaying {prepared.method} {prepared.url}")
        response = self.session.send(prepared, timeout=self.timeout, allow_redirects=allow_redirects)
        # Read the body here so it is not streamed on the event loop later
        _ = response.content
        return response
