"""Connectivity polling that fires armed replay triggers."""
import asyncio
from typing import Optional

import requests

from replay_queue import settings
from replay_queue.logging_conf import logger
from replay_queue.replay.triggers import SyncManager


class ConnectivityMonitor:
    """Polls a health URL and signals the sync manager when the network comes back."""

    def __init__(
        self,
        sync_manager: SyncManager,
        check_url: Optional[str] = None,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.sync_manager = sync_manager
        self.check_url = check_url or settings.CONNECTIVITY_CHECK_URL
        self.interval = interval if interval is not None else settings.CONNECTIVITY_CHECK_INTERVAL
        self.timeout = timeout if timeout is not None else settings.CONNECTIVITY_CHECK_TIMEOUT
        self.session = session or requests.Session()
        self.online: Optional[bool] = None  # unknown until the first check
        self.running = False
        self._stop_event: Optional[asyncio.Event] = None

    async def check_once(self) -> bool:
        """Probe the health URL once and react to a state change."""
        online = await asyncio.to_thread(self._probe)
        previous = self.online
        self.online = online

        if online and previous is not True:
            logger.info("Connectivity restored" if previous is False else "Online")
            await self.sync_manager.connectivity_restored()
        elif not online and previous is not False:
            logger.warning(f"Connectivity lost ({self.check_url} unreachable)")
        return online

    async def run(self) -> None:
        """Poll until stop() is called."""
        if self.running:
            logger.warning("Connectivity monitor is already running")
            return

        self.running = True
        self._stop_event = asyncio.Event()
        logger.info(f"Connectivity monitor started (interval: {self.interval}s, url: {self.check_url})")

        while self.running:
            try:
                await self.check_once()
            except Exception as e:
                logger.error(f"Connectivity check error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Connectivity monitor stopped")

    def stop(self) -> None:
        """Stop the polling loop after the current check."""
        if not self.running:
            return
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()

    def _probe(self) -> bool:
        try:
            self.session.head(self.check_url, timeout=self.timeout, allow_redirects=False)
            return True
        except requests.exceptions.RequestException as e:
            logger.debug(f"Connectivity probe failed: {e}")
            return False
