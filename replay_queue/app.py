"""Main application - replays queued requests whenever connectivity returns."""
import asyncio
import signal
import sys

from replay_queue.logging_conf import logger
from replay_queue import settings
from replay_queue.broadcast import make_broadcast_channel
from replay_queue.connectivity import ConnectivityMonitor
from replay_queue.fetcher import ReplayFetcher
from replay_queue.queue.registry import QueueRegistry
from replay_queue.queue.request_queue import REPLAY_ALL_TAG, RequestQueue
from replay_queue.replay.coordinator import ReplayCoordinator
from replay_queue.replay.triggers import SyncManager
from replay_queue.store.durable_store import open_store, reset_stores


class Application:
    """Replay daemon for every queue in the configured store.

    On start it reloads armed triggers, cleans up each registered queue and
    arms a "replay all" trigger, so requests left over from a previous run
    go out on the first successful connectivity check.
    """

    def __init__(self, store=None, sync_manager=None, fetcher=None, monitor=None):
        self.store = store or open_store()
        self.sync_manager = sync_manager or SyncManager(open_store(settings.SYNC_STORE_NAME))
        self.fetcher = fetcher or ReplayFetcher()
        self.coordinator = ReplayCoordinator(self.store, self.fetcher)
        self.broadcast_channel = make_broadcast_channel()
        self.monitor = monitor or ConnectivityMonitor(self.sync_manager)
        self.running = False

    async def start(self):
        """Start the application."""
        logger.info("=" * 50)
        logger.info("Request Replay Queue")
        logger.info("=" * 50)
        logger.info(f"Store: {self.store.label}")
        logger.info(f"Connectivity check: {self.monitor.check_url} every {self.monitor.interval}s")
        logger.info("=" * 50)

        settings.validate_config()

        await self.sync_manager.load()
        names = await QueueRegistry(self.store).list_all()
        for name in names:
            queue = RequestQueue(
                name,
                store=self.store,
                broadcast_channel=self.broadcast_channel,
                sync_manager=self.sync_manager,
            )
            removed = await queue.cleanup()
            logger.info(f"Queue {name}: {len(queue.entry_ids)} pending, {len(removed)} expired")
            self.coordinator.attach(queue)
        self.coordinator.install(self.sync_manager)

        if names:
            await self.sync_manager.register(REPLAY_ALL_TAG)

        self.running = True
        logger.info("Started - waiting for connectivity")

    def stop(self):
        """Stop the application."""
        if not self.running:
            return
        self.running = False
        self.monitor.stop()
        logger.info("Stopping")

    async def run(self):
        """Main loop."""
        await self.start()
        try:
            await self.monitor.run()
        finally:
            await self.broadcast_channel.drain()
            self.fetcher.close()
            reset_stores()
            logger.info("Stopped")


async def _serve(app: Application):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, app, sig)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(_on_signal, app, s))
    await app.run()


def _on_signal(app: Application, sig):
    logger.info(f"Received signal {sig}")
    app.stop()


def main():
    """Entry point."""
    try:
        app = Application()
        asyncio.run(_serve(app))
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
