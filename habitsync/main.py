import asyncio
import logging
import signal
import sys
import uvicorn
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Set

from .config import settings
from .builder import SnapshotBuilder
from .store import SnapshotStore
from .clients.item_store import JsonItemStore
from .clients.surface_client import SurfaceNotifier
from .commands import CommandHandler
from .models import utcnow
from . import server

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
# Silence noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

logger = logging.getLogger("main")

class SyncService:
    """
    Owns the publish side. Builds and publishes run one at a time on a
    single worker thread; reload notifications go back to the event loop.
    """

    def __init__(self,
                 items: Optional[JsonItemStore] = None,
                 store: Optional[SnapshotStore] = None,
                 notifier: Optional[SurfaceNotifier] = None):
        self.running = True
        self.items = items or JsonItemStore(settings.ITEM_STORE_PATH)
        self.builder = SnapshotBuilder(self.items)
        self.store = store or SnapshotStore()
        self.store.on_published = self._on_published
        self.notifier = notifier or SurfaceNotifier()
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="habitsync-sync")
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.commands = CommandHandler(self.items, self.run_in_background, self.request_sync)
        self._reload_tasks: Set[asyncio.Task] = set()

        self.last_successful_sync = 0.0
        self.sync_count = 0
        self.failed_syncs = 0

        # Link service to server module
        server.service = self
        server.store = self.store

    def run_in_background(self, fn, *args):
        loop = self.loop or asyncio.get_running_loop()
        return loop.run_in_executor(self.executor, fn, *args)

    def request_sync(self, reason: str = "state changed") -> Future:
        """Queue a build+publish cycle and return without waiting for it."""
        logger.debug(f"Sync requested: {reason}")
        return self.executor.submit(self.sync_once, reason)

    def sync_once(self, reason: str = "manual") -> bool:
        try:
            now = utcnow()
            items = self.items.active_items()
            snapshots = self.builder.build(items, now)

            error = self.store.publish(snapshots)
            if error is not None:
                self.failed_syncs += 1
                logger.error(f"Sync ({reason}) did not publish: {error!r}")
                return False

            error = self.store.publish_activities(self.builder.build_activities(items, now))
            if error is not None:
                logger.warning(f"Timer activities not published: {error!r}")

            self.sync_count += 1
            self.last_successful_sync = time.time()
            logger.info(f"Published {len(snapshots)} snapshots ({reason})")
            return True

        except Exception as e:
            self.failed_syncs += 1
            logger.error(f"Error in sync ({reason}): {e}", exc_info=True)
            return False

    def _on_published(self):
        # Runs on the worker thread; the notifier belongs to the event loop
        loop = self.loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._schedule_reload)

    def _schedule_reload(self):
        task = self.loop.create_task(self.notifier.reload())
        self._reload_tasks.add(task)
        task.add_done_callback(self._reload_tasks.discard)

    async def sync_loop(self):
        while self.running:
            start_time = time.time()
            try:
                stopped = await self.run_in_background(self.items.stop_finished_timers, utcnow())
                if stopped:
                    logger.info(f"Auto-stopped {len(stopped)} timers at goal")
                self.request_sync("periodic")
            except Exception as e:
                logger.error(f"Error in sync loop: {e}", exc_info=True)

            # Wait for remainder of interval
            elapsed = time.time() - start_time
            sleep_time = max(1, settings.SYNC_INTERVAL_SECONDS - elapsed)
            await asyncio.sleep(sleep_time)

    async def start(self):
        self.loop = asyncio.get_running_loop()

        tasks = [
            asyncio.create_task(self.sync_loop()),
            asyncio.create_task(self.commands.run())
        ]

        if settings.HTTP_SERVER_ENABLED:
            config = uvicorn.Config(server.app, host="0.0.0.0", port=settings.HTTP_SERVER_PORT, log_level="warning")
            server_task = uvicorn.Server(config).serve()
            tasks.append(asyncio.create_task(server_task))

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            pass
        finally:
            self.running = False
            # Let queued publishes finish without stalling the loop
            await self.loop.run_in_executor(None, self.executor.shutdown, True)
            self.items.save()
            await self.notifier.close()

def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)

if __name__ == "__main__":
    signal.signal(signal.SIGTERM, handle_sigterm)
    service = SyncService()
    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
