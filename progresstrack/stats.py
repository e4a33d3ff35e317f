import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional
from .models import CompletionLedgerEntry, DailyActivity, Playlist, PlaylistStats, WatchTimeRecord

def playlist_stats(playlist: Playlist, records: Optional[Dict[str, WatchTimeRecord]] = None) -> PlaylistStats:
    records = records or {}
    items = playlist.items
    stats = PlaylistStats(playlist_id=playlist.id, total_items=len(items))
    if not items:
        return stats

    stats.completed_items = sum(1 for i in items if i.is_complete)
    stats.overall_progress = sum(i.progress for i in items) / len(items)
    stats.total_duration = sum(i.duration for i in items)
    stats.watched_duration = sum(i.duration * i.progress / 100 for i in items)
    stats.tracked_seconds = sum(records[i.id].cumulative_time for i in items if i.id in records)
    return stats

def completion_history(
    entries: Iterable[CompletionLedgerEntry],
    days: int = 7,
    now: Optional[float] = None,
) -> List[DailyActivity]:
    """
    Completions per UTC day for the last `days` days (oldest first), taken
    from the ledger. Days without activity are included with zeros.
    """
    if days <= 0:
        return []
    today = datetime.fromtimestamp(now if now is not None else time.time(), tz=timezone.utc).date()
    start = today - timedelta(days=days - 1)

    buckets: Dict[str, DailyActivity] = {}
    for offset in range(days):
        key = (start + timedelta(days=offset)).isoformat()
        buckets[key] = DailyActivity(date=key)

    for entry in entries:
        key = datetime.fromtimestamp(entry.completed_at, tz=timezone.utc).date().isoformat()
        bucket = buckets.get(key)
        if bucket is None:
            continue
        bucket.items_completed += 1
        bucket.watch_time += entry.watch_time

    return list(buckets.values())
