import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional
from .config import settings
from .models import WatchTimeRecord
from .state import PersistentStore, read_model, watch_time_key

logger = logging.getLogger(__name__)

class AccumulatorState(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"

class WatchTimeAccumulator:
    """
    Accumulates wall-clock watch time for the single item being played.

    Time is added as the delta between ticks rather than a fixed increment per
    tick, so a late tick still counts the real interval.
    """

    def __init__(
        self,
        store: PersistentStore,
        clock: Callable[[], float] = time.time,
        position_source: Optional[Callable[[], float]] = None,
        interval: Optional[float] = None,
    ):
        self.store = store
        self.clock = clock
        self.position_source = position_source
        self.interval = interval if interval is not None else settings.TICK_INTERVAL_SECONDS
        self.state = AccumulatorState.IDLE
        self.item_id: Optional[str] = None
        self.record: Optional[WatchTimeRecord] = None
        self.last_tick = 0.0
        self._task: Optional[asyncio.Task] = None

    @property
    def tracking(self) -> bool:
        return self.state is AccumulatorState.TRACKING

    def snapshot(self, item_id: str) -> WatchTimeRecord:
        record = read_model(self.store, watch_time_key(item_id), WatchTimeRecord)
        if record is None or record.item_id != item_id:
            return WatchTimeRecord(item_id=item_id)
        return record

    def start(self, item_id: str) -> bool:
        """Begin tracking item_id. Returns False if it was already being tracked."""
        if self.tracking and self.item_id == item_id:
            return False
        if self.tracking:
            self.stop()

        now = self.clock()
        record = self.snapshot(item_id)
        record.play_count += 1
        record.last_update_timestamp = now

        self.item_id = item_id
        self.record = record
        self.last_tick = now
        self.state = AccumulatorState.TRACKING
        self._persist()
        self._schedule()
        logger.info(f"Tracking watch time for {item_id} (play #{record.play_count})")
        return True

    def tick(self) -> Optional[WatchTimeRecord]:
        if not self.tracking:
            return None

        now = self.clock()
        elapsed = now - self.last_tick
        if elapsed < 0:
            logger.warning(f"Clock moved back {-elapsed:.1f}s while tracking {self.item_id}, not counting this interval")
            elapsed = 0.0
        self.last_tick = now

        record = self.record
        record.total_watch_time += elapsed
        record.cumulative_time += elapsed
        record.last_update_timestamp = now
        self._update_position()
        self._persist()
        return record

    def stop(self, item_id: Optional[str] = None) -> Optional[WatchTimeRecord]:
        """Stop tracking and persist the final snapshot. No periodic tick fires after this returns."""
        if not self.tracking:
            return None
        if item_id is not None and item_id != self.item_id:
            return None

        self._cancel()
        record = self.tick()
        record.stop_count += 1
        self._persist()
        logger.info(f"Stopped tracking {record.item_id}: {record.cumulative_time:.1f}s total")
        self._reset()
        return record

    def clear(self, item_id: str):
        """Drop the item's record entirely (completion or deletion)."""
        if self.tracking and self.item_id == item_id:
            self._cancel()
            self._reset()
        self.store.remove(watch_time_key(item_id))

    def _schedule(self):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, ticks are driven by the caller")
            return
        self._task = loop.create_task(self._run(self.item_id))

    async def _run(self, item_id: str):
        while True:
            await asyncio.sleep(self.interval)
            if not self.tracking or self.item_id != item_id:
                return
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in watch-time tick for {item_id}: {e}", exc_info=True)

    def _cancel(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def _reset(self):
        self.state = AccumulatorState.IDLE
        self.item_id = None
        self.record = None

    def _update_position(self):
        if self.position_source is None:
            return
        try:
            self.record.last_position = float(self.position_source())
        except Exception as e:
            logger.debug(f"Could not read player position: {e}")

    def _persist(self):
        self.store.set(watch_time_key(self.record.item_id), self.record.dump())
