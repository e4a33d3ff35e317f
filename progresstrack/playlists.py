import logging
import uuid
from typing import List, NamedTuple, Optional, Tuple
from .accumulator import WatchTimeAccumulator
from .ledger import CompletionLedger
from .models import Item, Playlist
from .state import PLAYLISTS_KEY, PersistentStore, read_model_list, watch_time_key, write_model_list

logger = logging.getLogger(__name__)

class DeletedItem(NamedTuple):
    playlist_id: str
    index: int
    item: Item

class PlaylistStore:
    def __init__(self, store: PersistentStore, ledger: CompletionLedger, accumulator: Optional[WatchTimeAccumulator] = None):
        self.store = store
        self.ledger = ledger
        self.accumulator = accumulator

    def list_playlists(self) -> List[Playlist]:
        return read_model_list(self.store, PLAYLISTS_KEY, Playlist)

    def save_all(self, playlists: List[Playlist]):
        write_model_list(self.store, PLAYLISTS_KEY, playlists, Playlist)

    def get_playlist(self, playlist_id: str) -> Optional[Playlist]:
        for playlist in self.list_playlists():
            if playlist.id == playlist_id:
                return playlist
        return None

    def find_item(self, item_id: str) -> Optional[Tuple[Playlist, int]]:
        for playlist in self.list_playlists():
            index = playlist.index_of(item_id)
            if index is not None:
                return playlist, index
        return None

    def add_playlist(self, playlist: Playlist) -> Playlist:
        if not playlist.id or not playlist.title:
            raise ValueError("Playlist needs an id and a title")
        if playlist.kind == "video" and not playlist.items:
            raise ValueError("Video playlist must have at least one item")

        playlists = self.list_playlists()
        if any(p.id == playlist.id for p in playlists):
            raise ValueError(f"Playlist {playlist.id} already exists")

        known = {i.id for p in playlists for i in p.items}
        ids = [i.id for i in playlist.items]
        if len(set(ids)) != len(ids) or known.intersection(ids):
            raise ValueError(f"Playlist {playlist.id} reuses an existing item id")

        playlists.append(playlist)
        self.save_all(playlists)
        logger.info(f"Added playlist '{playlist.title}' with {len(playlist.items)} items")
        return playlist

    def update_playlist(self, playlist: Playlist):
        playlists = self.list_playlists()
        for i, existing in enumerate(playlists):
            if existing.id == playlist.id:
                playlists[i] = playlist
                self.save_all(playlists)
                return
        raise KeyError(playlist.id)

    def delete_playlist(self, playlist_id: str) -> Playlist:
        """Remove a playlist and its items' watch-time records. Ledger entries stay."""
        playlists = self.list_playlists()
        target = next((p for p in playlists if p.id == playlist_id), None)
        if target is None:
            raise KeyError(playlist_id)

        self.save_all([p for p in playlists if p.id != playlist_id])
        for item in target.items:
            self._clear_watch_time(item.id)
        logger.info(f"Deleted playlist '{target.title}'")
        return target

    def add_item(self, playlist_id: str, item: Item) -> Item:
        if not item.id:
            item = item.model_copy(update={"id": uuid.uuid4().hex})
        if self.find_item(item.id) is not None:
            raise ValueError(f"Item {item.id} already exists")

        playlists = self.list_playlists()
        for playlist in playlists:
            if playlist.id == playlist_id:
                playlist.items.append(item)
                self.save_all(playlists)
                logger.info(f"Added '{item.title}' to '{playlist.title}'")
                return item
        raise KeyError(playlist_id)

    def delete_item(self, item_id: str) -> DeletedItem:
        """
        Remove an item and cascade to its watch-time record and ledger entry.
        Re-sequencing (if it was the current item) is the caller's job.
        """
        playlists = self.list_playlists()
        for playlist in playlists:
            index = playlist.index_of(item_id)
            if index is None:
                continue
            item = playlist.items.pop(index)
            self.save_all(playlists)
            self._clear_watch_time(item_id)
            self.ledger.reset(item_id)
            logger.info(f"Deleted '{item.title}' from '{playlist.title}'")
            return DeletedItem(playlist.id, index, item)
        raise KeyError(item_id)

    def set_progress(self, item_id: str, value: float) -> Item:
        value = max(0.0, min(100.0, float(value)))
        if value >= 100:
            return self.complete_item(item_id)

        # Un-completing must clear the ledger too, or reconciliation puts it back
        self.ledger.reset(item_id)
        return self._write_progress(item_id, value)

    def complete_item(self, item_id: str, watch_time: Optional[float] = None) -> Item:
        """The one write path to progress == 100: ledger first, then the cached field."""
        found = self.find_item(item_id)
        if found is None:
            raise KeyError(item_id)
        playlist, index = found
        if watch_time is None:
            watch_time = self._watch_time(item_id)
        self.ledger.record_completion(playlist.items[index], playlist, watch_time)
        return self._write_progress(item_id, 100)

    def _write_progress(self, item_id: str, value: float) -> Item:
        playlists = self.list_playlists()
        for playlist in playlists:
            index = playlist.index_of(item_id)
            if index is None:
                continue
            item = playlist.items[index]
            if item.progress != value:
                item.progress = value
                self.save_all(playlists)
            return item
        raise KeyError(item_id)

    def _watch_time(self, item_id: str) -> float:
        if self.accumulator is not None:
            return self.accumulator.snapshot(item_id).cumulative_time
        return 0.0

    def _clear_watch_time(self, item_id: str):
        if self.accumulator is not None:
            self.accumulator.clear(item_id)
        else:
            self.store.remove(watch_time_key(item_id))
