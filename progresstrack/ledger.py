import logging
import time
from typing import Callable, List, Set
from .models import CompletionLedgerEntry, Item, Playlist
from .state import COMPLETED_KEY, PersistentStore, read_model_list, write_model_list

logger = logging.getLogger(__name__)

class CompletionLedger:
    """
    Authoritative record of completed items, stored under `completedItems`.

    Only explicit completion and reset write here; Item.progress is never
    consulted, so editing or deleting playlists cannot corrupt it.
    """

    def __init__(self, store: PersistentStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def entries(self) -> List[CompletionLedgerEntry]:
        return read_model_list(self.store, COMPLETED_KEY, CompletionLedgerEntry)

    def completed_ids(self) -> Set[str]:
        return {e.item_id for e in self.entries()}

    def is_complete(self, item_id: str) -> bool:
        return item_id in self.completed_ids()

    def record_completion(self, item: Item, playlist: Playlist, watch_time: float = 0.0) -> bool:
        """Insert an entry for item unless one exists. Returns True if inserted."""
        entries = self.entries()
        if any(e.item_id == item.id for e in entries):
            logger.debug(f"{item.id} already in completion ledger")
            return False

        entries.append(CompletionLedgerEntry(
            item_id=item.id,
            title=item.title,
            playlist_id=playlist.id,
            playlist_title=playlist.title,
            completed_at=self.clock(),
            watch_time=watch_time,
        ))
        write_model_list(self.store, COMPLETED_KEY, entries, CompletionLedgerEntry)
        logger.info(f"Recorded completion of '{item.title}' ({item.id}) in '{playlist.title}'")
        return True

    def reset(self, item_id: str) -> bool:
        entries = self.entries()
        remaining = [e for e in entries if e.item_id != item_id]
        if len(remaining) == len(entries):
            return False
        write_model_list(self.store, COMPLETED_KEY, remaining, CompletionLedgerEntry)
        logger.info(f"Removed {item_id} from completion ledger")
        return True
