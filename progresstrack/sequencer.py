import logging
from typing import Iterable, Optional
from .accumulator import WatchTimeAccumulator
from .models import Notice, NoticeKind, Playlist, SequencerState
from .notify import Notifier
from .playlists import DeletedItem, PlaylistStore

logger = logging.getLogger(__name__)

def _first_unfinished(playlist: Playlist, indexes: Iterable[int]) -> Optional[int]:
    for i in indexes:
        if not playlist.items[i].is_complete:
            return i
    return None

class PlaylistSequencer:
    """
    Picks which item plays. The current item is held by id; indexes are
    always looked up again from a fresh playlist.

    Completed items are never selected, whoever asks.
    """

    def __init__(self, playlists: PlaylistStore, accumulator: WatchTimeAccumulator, notifier: Notifier):
        self.playlists = playlists
        self.accumulator = accumulator
        self.notifier = notifier
        self.state = SequencerState.SELECTING
        self.playlist_id: Optional[str] = None
        self.current_item_id: Optional[str] = None
        self.last_index: Optional[int] = None

    def current_playlist(self) -> Optional[Playlist]:
        if self.playlist_id is None:
            return None
        return self.playlists.get_playlist(self.playlist_id)

    def current_index(self, playlist: Optional[Playlist] = None) -> Optional[int]:
        playlist = playlist or self.current_playlist()
        if playlist is None or self.current_item_id is None:
            return None
        return playlist.index_of(self.current_item_id)

    def select_next(self, playlist: Playlist, from_index: int) -> Optional[int]:
        """First unfinished item at or after from_index. None means the playlist is exhausted."""
        self.state = SequencerState.SELECTING
        index = _first_unfinished(playlist, range(max(0, from_index), len(playlist.items)))
        if index is None:
            return self._exhaust(playlist)
        return self._choose(playlist, index)

    def select_previous(self, playlist: Playlist, from_index: int) -> Optional[int]:
        """First unfinished item at or before from_index; selection is unchanged if there is none."""
        index = _first_unfinished(playlist, range(min(from_index, len(playlist.items) - 1), -1, -1))
        if index is None:
            logger.info(f"No unfinished item before position {from_index} in '{playlist.title}'")
            return None
        return self._choose(playlist, index)

    def select(self, playlist: Playlist, index: int) -> Optional[int]:
        """Explicit selection (resume or click). Completed targets are redirected away from."""
        self.state = SequencerState.SELECTING
        items = playlist.items
        if not items:
            return self._exhaust(playlist)

        if 0 <= index < len(items):
            if not items[index].is_complete:
                return self._choose(playlist, index)
            logger.info(f"'{items[index].title}' is already complete, looking for another item")
        else:
            logger.warning(f"Position {index} is outside '{playlist.title}' ({len(items)} items)")
            index = max(0, min(index, len(items) - 1))

        target = _first_unfinished(playlist, range(index, len(items)))
        if target is None:
            target = _first_unfinished(playlist, range(index, -1, -1))
        if target is None:
            return self._exhaust(playlist)
        return self._choose(playlist, target)

    def mark_complete(self, item_id: Optional[str] = None) -> Optional[int]:
        """
        Complete item_id (default: the current item), then advance if it was
        the current one. Completing an already complete item changes nothing.
        """
        playlist = self.current_playlist()
        item_id = item_id or self.current_item_id
        if playlist is None or item_id is None:
            logger.warning("Nothing selected to mark complete")
            return None

        was_current = item_id == self.current_item_id
        index = playlist.index_of(item_id)
        if index is None:
            raise KeyError(item_id)

        self.accumulator.stop(item_id)
        watch_time = self.accumulator.snapshot(item_id).cumulative_time
        self.playlists.complete_item(item_id, watch_time)
        self.accumulator.clear(item_id)

        playlist = self.current_playlist()
        if not was_current:
            return self.current_index(playlist)
        return self.select_next(playlist, index)

    def skip_failed(self) -> Optional[int]:
        """Move past the current item after a playback error without completing it."""
        playlist = self.current_playlist()
        if playlist is None:
            return None
        index = self.current_index(playlist)
        if index is None:
            index = self.last_index if self.last_index is not None else -1
        logger.info(f"Skipping item at position {index} of '{playlist.title}' after playback error")
        return self.select_next(playlist, index + 1)

    def handle_deleted(self, deleted: DeletedItem) -> Optional[int]:
        if deleted.item.id != self.current_item_id:
            return self.current_index()
        self.current_item_id = None
        playlist = self.playlists.get_playlist(deleted.playlist_id)
        if playlist is None:
            return None
        return self.select_next(playlist, deleted.index)

    def revalidate(self) -> Optional[int]:
        """
        Re-apply the guard after the playlist may have changed underneath us
        (another window completed or removed the current item).
        """
        if self.state is SequencerState.EXHAUSTED or self.current_item_id is None:
            return None
        playlist = self.current_playlist()
        if playlist is None:
            logger.warning(f"Playlist {self.playlist_id} disappeared")
            self.accumulator.clear(self.current_item_id)
            self.current_item_id = None
            self.state = SequencerState.SELECTING
            return None

        index = playlist.index_of(self.current_item_id)
        if index is not None and not playlist.items[index].is_complete:
            return index
        logger.info(f"Current item {self.current_item_id} changed elsewhere, reselecting")
        # Its record was cleared by whoever completed or deleted it; stopping would write it back
        self.accumulator.clear(self.current_item_id)
        return self.select(playlist, index if index is not None else (self.last_index or 0))

    def _choose(self, playlist: Playlist, index: int) -> int:
        item = playlist.items[index]
        if self.accumulator.tracking and self.accumulator.item_id != item.id:
            self.accumulator.stop()

        changed = item.id != self.current_item_id
        self.playlist_id = playlist.id
        self.current_item_id = item.id
        self.last_index = index
        self.state = SequencerState.PLAYING
        if changed:
            logger.info(f"Selected '{item.title}' ({index + 1}/{len(playlist.items)}) in '{playlist.title}'")
            self.notifier.emit(Notice(
                kind=NoticeKind.ITEM_SELECTED,
                playlist_id=playlist.id,
                item_id=item.id,
                index=index,
            ))
        return index

    def _exhaust(self, playlist: Playlist) -> None:
        if self.accumulator.tracking:
            self.accumulator.stop()
        self.playlist_id = playlist.id
        self.current_item_id = None
        self.state = SequencerState.EXHAUSTED
        logger.info(f"Playlist '{playlist.title}' has no unfinished items left")
        self.notifier.emit(Notice(
            kind=NoticeKind.EXHAUSTED,
            playlist_id=playlist.id,
            message=f"Playlist '{playlist.title}' fully complete!",
        ))
        return None
