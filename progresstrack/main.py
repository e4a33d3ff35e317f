import asyncio
import logging
import signal
import sys
import uvicorn
from typing import Optional

from .config import settings
from .state import JsonFileStore, MemoryStore, PersistentStore
from .engine import TrackingEngine
from .models import Notice
from .reconcile import ReconcileTrigger
from . import server

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
# Silence noisy libraries
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

logger = logging.getLogger("main")

class TrackerService:
    def __init__(self, store: Optional[PersistentStore] = None):
        self.running = True
        if store is None:
            store = JsonFileStore(settings.STORE_PATH) if settings.PERSIST_ENABLED else MemoryStore()
        self.store = store
        self.engine = TrackingEngine(self.store)
        self.engine.notifier.subscribe(self.log_notice)

        # Link engine to server module
        server.engine = self.engine

    def log_notice(self, notice: Notice):
        if notice.message:
            logger.info(f"[{notice.kind.value}] {notice.message}")

    async def watch_loop(self):
        """Deliver change notifications for writes made by other contexts."""
        logger.info("Store watch started")
        while self.running:
            try:
                changed = self.store.poll_external_changes()
                if changed:
                    logger.debug(f"External changes: {', '.join(changed)}")
            except Exception as e:
                logger.error(f"Error in store watch: {e}", exc_info=True)

            await asyncio.sleep(settings.STORE_WATCH_INTERVAL_SECONDS)

    async def reconcile_loop(self):
        """
        Fallback poll. Notifications normally keep things consistent; this
        bounds staleness to one interval if one is missed.
        """
        logger.info(f"Reconciliation poll every {settings.RECONCILE_POLL_INTERVAL_SECONDS}s")
        while self.running:
            try:
                self.engine.poll()
            except Exception as e:
                logger.error(f"Error in reconciliation poll: {e}", exc_info=True)

            await asyncio.sleep(settings.RECONCILE_POLL_INTERVAL_SECONDS)

    async def start(self):
        self.engine.reconciler.reconcile_all(ReconcileTrigger.INITIAL_LOAD)

        tasks = [asyncio.create_task(self.watch_loop())]
        if settings.RECONCILE_POLL_ENABLED:
            tasks.append(asyncio.create_task(self.reconcile_loop()))

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
            self.engine.close()

def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)

def run():
    signal.signal(signal.SIGTERM, handle_sigterm)
    service = TrackerService()
    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")

if __name__ == "__main__":
    run()
