import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Optional
from .ledger import CompletionLedger
from .models import Playlist

if TYPE_CHECKING:
    from .playlists import PlaylistStore

logger = logging.getLogger(__name__)

class ReconcileTrigger(str, Enum):
    INITIAL_LOAD = "initial_load"
    POLL = "poll"
    EXTERNAL_CHANGE = "external_change"
    FOCUS = "focus"

class ReconciliationEngine:
    """Projects the completion ledger onto the cached Item.progress values."""

    def __init__(self, ledger: CompletionLedger, playlists: "PlaylistStore"):
        self.ledger = ledger
        self.playlists = playlists
        self.last_run = 0.0
        self.writes = 0

    def reconcile(self, playlist: Playlist, completed: Optional[Iterable[str]] = None) -> Playlist:
        """
        Returns `playlist` itself when nothing needed fixing, otherwise a new
        Playlist. Callers should test the result with `is`.
        """
        completed = set(completed) if completed is not None else self.ledger.completed_ids()

        changed = False
        items = []
        for item in playlist.items:
            if item.id in completed and item.progress != 100:
                logger.info(f"Ledger marks {item.id} complete but progress is {item.progress:g}, fixing")
                item = item.model_copy(update={"progress": 100})
                changed = True
            items.append(item)

        if not changed:
            return playlist
        return playlist.model_copy(update={"items": items})

    def reconcile_all(self, trigger: ReconcileTrigger = ReconcileTrigger.POLL) -> List[str]:
        """Reconcile every stored playlist; write back only if something changed."""
        self.last_run = time.time()
        completed = self.ledger.completed_ids()
        current = self.playlists.list_playlists()

        updated = []
        changed_ids = []
        for playlist in current:
            result = self.reconcile(playlist, completed)
            if result is not playlist:
                changed_ids.append(playlist.id)
            updated.append(result)

        if changed_ids:
            self.playlists.save_all(updated)
            self.writes += 1
            logger.info(f"Reconciliation ({trigger.value}) updated {len(changed_ids)} playlist(s)")
        else:
            logger.debug(f"Reconciliation ({trigger.value}): nothing to do")
        return changed_ids
