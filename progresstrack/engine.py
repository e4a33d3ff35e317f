import logging
import time
from collections import Counter
from typing import Any, Callable, List, Optional
from .accumulator import WatchTimeAccumulator
from .adapter import PlaybackEventAdapter
from .clients.player import PlayerClient
from .config import settings
from .ledger import CompletionLedger
from .models import EngineStatus, EventKind, Item, Notice, NoticeKind, PlaybackEvent
from .notify import Notifier
from .playlists import PlaylistStore
from .reconcile import ReconcileTrigger, ReconciliationEngine
from .sequencer import PlaylistSequencer
from .state import COMPLETED_KEY, PLAYLISTS_KEY, PersistentStore

logger = logging.getLogger(__name__)

class TrackingEngine:
    """
    One execution context's view of the tracker: the host-facing API that the
    UI (or the HTTP surface) calls. Several engines may share one store.
    """

    def __init__(
        self,
        store: PersistentStore,
        player: Optional[PlayerClient] = None,
        clock: Callable[[], float] = time.time,
        notifier: Optional[Notifier] = None,
    ):
        self.store = store
        self.player = player
        self.notifier = notifier or Notifier()
        self.accumulator = WatchTimeAccumulator(
            store,
            clock=clock,
            position_source=player.get_current_time if player is not None else None,
        )
        self.ledger = CompletionLedger(store, clock=clock)
        self.playlists = PlaylistStore(store, self.ledger, self.accumulator)
        self.reconciler = ReconciliationEngine(self.ledger, self.playlists)
        self.sequencer = PlaylistSequencer(self.playlists, self.accumulator, self.notifier)
        self.adapter = PlaybackEventAdapter(self._on_event)
        self.counters: Counter = Counter()

        self._unsubscribe: List[Callable[[], None]] = [
            store.subscribe_to_external_change(PLAYLISTS_KEY, self.on_external_change),
            store.subscribe_to_external_change(COMPLETED_KEY, self.on_external_change),
            self.notifier.subscribe(self._on_notice),
        ]

    def close(self):
        self.accumulator.stop()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    # Session

    def open_playlist(self, playlist_id: str, index: Optional[int] = None) -> Optional[int]:
        """Load a playlist; with no index, resume at the first unfinished item."""
        self.reconciler.reconcile_all(ReconcileTrigger.INITIAL_LOAD)
        playlist = self.playlists.get_playlist(playlist_id)
        if playlist is None:
            raise KeyError(playlist_id)
        if index is None:
            return self.sequencer.select_next(playlist, 0)
        return self.sequencer.select(playlist, index)

    # Player callbacks

    def on_player_ready(self) -> Optional[PlaybackEvent]:
        # A (re)loaded player starts from scratch
        self.adapter.reset()
        return self.adapter.handle_ready()

    def on_player_state_change(self, raw_state) -> Optional[PlaybackEvent]:
        return self.adapter.handle_state_change(raw_state)

    def on_player_error(self, code) -> Optional[PlaybackEvent]:
        return self.adapter.handle_error(code)

    # Host operations

    def mark_complete(self, item_id: Optional[str] = None) -> Optional[int]:
        return self.sequencer.mark_complete(item_id)

    def select_item(self, index: int) -> Optional[int]:
        playlist = self.sequencer.current_playlist()
        if playlist is None:
            raise ValueError("No playlist is open")
        return self.sequencer.select(playlist, index)

    def delete_item(self, item_id: str) -> Optional[int]:
        deleted = self.playlists.delete_item(item_id)
        if deleted.playlist_id != self.sequencer.playlist_id:
            return self.sequencer.current_index()
        return self.sequencer.handle_deleted(deleted)

    def reset_item(self, item_id: str) -> Item:
        return self.set_progress(item_id, 0)

    def set_progress(self, item_id: str, value: float) -> Item:
        if value >= 100 and item_id == self.sequencer.current_item_id:
            self.mark_complete(item_id)
            playlist, index = self.playlists.find_item(item_id)
            return playlist.items[index]
        return self.playlists.set_progress(item_id, value)

    # Reconciliation triggers

    def on_external_change(self, key: str, value: Any = None):
        logger.debug(f"External change to '{key}'")
        self.counters["external_changes"] += 1
        self.reconciler.reconcile_all(ReconcileTrigger.EXTERNAL_CHANGE)
        self.sequencer.revalidate()

    def on_visibility_regained(self):
        self.store.poll_external_changes()
        self.reconciler.reconcile_all(ReconcileTrigger.FOCUS)
        self.sequencer.revalidate()

    def poll(self):
        self.reconciler.reconcile_all(ReconcileTrigger.POLL)
        self.sequencer.revalidate()

    def status(self) -> EngineStatus:
        return EngineStatus(
            playlist_id=self.sequencer.playlist_id,
            current_item_id=self.sequencer.current_item_id,
            current_index=self.sequencer.current_index(),
            sequencer_state=self.sequencer.state,
            tracking_item_id=self.accumulator.item_id,
            last_reconcile=self.reconciler.last_run,
            reconcile_writes=self.reconciler.writes,
            counters=dict(self.counters),
        )

    def _on_notice(self, notice: Notice):
        if notice.kind is NoticeKind.ITEM_SELECTED:
            # New item in the player: its first PLAYING is a real transition
            self.adapter.reset()

    def _on_event(self, event: PlaybackEvent):
        self.counters[event.kind.value] += 1
        item_id = self.sequencer.current_item_id

        if event.kind is EventKind.READY:
            if settings.AUTOPLAY and self.player is not None and item_id is not None:
                self.player.play()

        elif event.kind is EventKind.PLAYING:
            if item_id is None:
                logger.warning("Player is playing but nothing is selected, not tracking")
                return
            self.accumulator.start(item_id)

        elif event.kind in (EventKind.PAUSED, EventKind.BUFFERING):
            self.accumulator.stop()

        elif event.kind is EventKind.ENDED:
            self.accumulator.stop()
            if settings.AUTO_COMPLETE_ON_END and item_id is not None:
                self.mark_complete(item_id)

        elif event.kind is EventKind.ERROR:
            self.accumulator.stop()
            logger.warning(f"Playback error {event.code} on {item_id}: {event.message}")
            self.notifier.emit(Notice(
                kind=NoticeKind.PLAYBACK_ERROR,
                playlist_id=self.sequencer.playlist_id,
                item_id=item_id,
                message=event.message,
            ))
            self.sequencer.skip_failed()
