import unittest
from datetime import datetime, timezone
from progresstrack.models import CompletionLedgerEntry, Item, Playlist, WatchTimeRecord
from progresstrack.stats import completion_history, playlist_stats

def ts(day, hour=12):
    return datetime(2024, 3, day, hour, tzinfo=timezone.utc).timestamp()

class TestPlaylistStats(unittest.TestCase):
    def test_stats(self):
        playlist = Playlist(id="p", title="P", items=[
            Item(id="a", duration=10, progress=100),
            Item(id="b", duration=20, progress=50),
            Item(id="c", duration=30, progress=0),
        ])
        records = {"b": WatchTimeRecord(item_id="b", cumulative_time=42.0)}

        stats = playlist_stats(playlist, records)
        self.assertEqual(stats.total_items, 3)
        self.assertEqual(stats.completed_items, 1)
        self.assertAlmostEqual(stats.overall_progress, 50.0)
        self.assertEqual(stats.total_duration, 60)
        self.assertAlmostEqual(stats.watched_duration, 20.0)
        self.assertEqual(stats.tracked_seconds, 42.0)

    def test_empty_playlist(self):
        stats = playlist_stats(Playlist(id="p", title="P", kind="coding"))
        self.assertEqual((stats.total_items, stats.overall_progress), (0, 0.0))

class TestCompletionHistory(unittest.TestCase):
    def test_daily_buckets(self):
        entries = [
            CompletionLedgerEntry(item_id="a", completed_at=ts(10, 1), watch_time=60),
            CompletionLedgerEntry(item_id="b", completed_at=ts(10, 23), watch_time=30),
            CompletionLedgerEntry(item_id="c", completed_at=ts(8)),
            CompletionLedgerEntry(item_id="old", completed_at=ts(1)),
        ]
        history = completion_history(entries, days=3, now=ts(10))

        self.assertEqual([d.date for d in history], ["2024-03-08", "2024-03-09", "2024-03-10"])
        self.assertEqual([d.items_completed for d in history], [1, 0, 2])
        self.assertEqual(history[2].watch_time, 90)

    def test_no_days(self):
        self.assertEqual(completion_history([], days=0), [])

if __name__ == '__main__':
    unittest.main()
