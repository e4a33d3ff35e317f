import unittest
from progresstrack.accumulator import WatchTimeAccumulator
from progresstrack.ledger import CompletionLedger
from progresstrack.models import Item, NoticeKind, Playlist, SequencerState
from progresstrack.notify import Notifier
from progresstrack.playlists import PlaylistStore
from progresstrack.sequencer import PlaylistSequencer
from progresstrack.state import MemoryStore

class TestPlaylistSequencer(unittest.TestCase):
    def setUp(self):
        self.store = MemoryStore()
        self.ledger = CompletionLedger(self.store)
        self.acc = WatchTimeAccumulator(self.store, clock=lambda: 0.0)
        self.playlists = PlaylistStore(self.store, self.ledger, self.acc)
        self.notifier = Notifier()
        self.notices = []
        self.notifier.subscribe(self.notices.append)
        self.seq = PlaylistSequencer(self.playlists, self.acc, self.notifier)

    def add(self, progresses):
        items = [Item(id=chr(ord("a") + i), title=chr(ord("A") + i)) for i in range(len(progresses))]
        self.playlists.add_playlist(Playlist(id="p", title="DSA-101", items=items))
        for item, progress in zip(items, progresses):
            if progress:
                self.playlists.set_progress(item.id, progress)
        return self.fresh()

    def fresh(self):
        return self.playlists.get_playlist("p")

    def test_sequencing_order(self):
        playlist = self.add([100, 40, 0])
        self.assertEqual(self.seq.select_next(playlist, 0), 1)

        self.playlists.complete_item("b")
        self.assertEqual(self.seq.select_next(self.fresh(), 1), 2)

        self.playlists.complete_item("c")
        self.assertIsNone(self.seq.select_next(self.fresh(), 2))
        self.assertEqual(self.seq.state, SequencerState.EXHAUSTED)
        self.assertEqual(self.notices[-1].kind, NoticeKind.EXHAUSTED)

    def test_select_next_does_not_wrap(self):
        playlist = self.add([0, 100, 100])
        self.assertIsNone(self.seq.select_next(playlist, 1))
        self.assertEqual(self.seq.state, SequencerState.EXHAUSTED)

    def test_select_previous(self):
        playlist = self.add([0, 100, 0])
        self.assertEqual(self.seq.select_previous(playlist, 1), 0)
        self.assertEqual(self.seq.select_previous(playlist, 5), 2)

        self.seq.select_next(playlist, 2)
        finished = Playlist(id="q", title="Done", items=[Item(id="x", progress=100), Item(id="y", progress=100)])
        self.assertIsNone(self.seq.select_previous(finished, 1))
        # Nothing earlier: selection unchanged and not exhausted
        self.assertEqual(self.seq.current_item_id, "c")
        self.assertEqual(self.seq.state, SequencerState.PLAYING)

    def test_guard_redirects_completed_selection(self):
        playlist = self.add([100, 40, 0])
        self.assertEqual(self.seq.select(playlist, 0), 1)
        self.assertEqual(self.seq.current_item_id, "b")
        self.assertEqual(self.seq.state, SequencerState.PLAYING)

    def test_guard_redirects_backward_when_nothing_ahead(self):
        playlist = self.add([0, 100, 100])
        self.assertEqual(self.seq.select(playlist, 2), 0)

    def test_guard_exhausts_when_all_complete(self):
        playlist = self.add([100, 100])
        self.assertIsNone(self.seq.select(playlist, 1))
        self.assertEqual(self.seq.state, SequencerState.EXHAUSTED)

    def test_out_of_range_selection_clamped(self):
        playlist = self.add([0, 0])
        self.assertEqual(self.seq.select(playlist, 10), 1)
        self.assertEqual(self.seq.select(playlist, -3), 0)

    def test_selection_notices(self):
        playlist = self.add([0, 0])
        self.seq.select(playlist, 0)
        self.seq.select(playlist, 0)
        selected = [n for n in self.notices if n.kind is NoticeKind.ITEM_SELECTED]
        self.assertEqual(len(selected), 1)
        self.assertEqual(selected[0].item_id, "a")

    def test_mark_complete_advances(self):
        playlist = self.add([0, 0, 0])
        self.seq.select(playlist, 0)
        self.acc.start("a")

        self.assertEqual(self.seq.mark_complete(), 1)
        self.assertEqual(self.fresh().items[0].progress, 100)
        self.assertTrue(self.ledger.is_complete("a"))
        self.assertIsNone(self.store.get("watchTime_a"))
        self.assertFalse(self.acc.tracking)
        self.assertEqual(self.seq.current_item_id, "b")

    def test_mark_complete_twice_is_idempotent(self):
        playlist = self.add([0, 0, 0])
        self.seq.select(playlist, 0)
        self.seq.mark_complete("a")
        self.assertEqual(self.seq.mark_complete("a"), 1)

        self.assertEqual([e.item_id for e in self.ledger.entries()], ["a"])
        self.assertEqual(self.fresh().items[0].progress, 100)
        self.assertEqual(self.seq.current_item_id, "b")

    def test_mark_complete_last_item_exhausts(self):
        playlist = self.add([100, 0])
        self.seq.select(playlist, 1)
        self.assertIsNone(self.seq.mark_complete())
        self.assertEqual(self.seq.state, SequencerState.EXHAUSTED)
        self.assertIn("fully complete", self.notices[-1].message)

    def test_mark_complete_without_selection(self):
        self.assertIsNone(self.seq.mark_complete())

    def test_skip_failed_leaves_item_unfinished(self):
        playlist = self.add([0, 30, 0])
        self.seq.select(playlist, 1)
        self.assertEqual(self.seq.skip_failed(), 2)
        self.assertEqual(self.fresh().items[1].progress, 30)
        self.assertFalse(self.ledger.is_complete("b"))

    def test_skip_failed_on_last_item_exhausts(self):
        playlist = self.add([0, 0])
        self.seq.select(playlist, 1)
        self.assertIsNone(self.seq.skip_failed())
        self.assertEqual(self.seq.state, SequencerState.EXHAUSTED)

    def test_deleting_current_item_reselects(self):
        playlist = self.add([0, 0, 0])
        self.seq.select(playlist, 1)
        deleted = self.playlists.delete_item("b")
        self.assertEqual(self.seq.handle_deleted(deleted), 1)
        self.assertEqual(self.seq.current_item_id, "c")

    def test_deleting_other_item_keeps_selection(self):
        playlist = self.add([0, 0, 0])
        self.seq.select(playlist, 2)
        deleted = self.playlists.delete_item("a")
        self.assertEqual(self.seq.handle_deleted(deleted), 1)
        self.assertEqual(self.seq.current_item_id, "c")

    def test_deleting_last_unfinished_item_exhausts(self):
        playlist = self.add([100, 0])
        self.seq.select(playlist, 1)
        deleted = self.playlists.delete_item("b")
        self.assertIsNone(self.seq.handle_deleted(deleted))
        self.assertEqual(self.seq.state, SequencerState.EXHAUSTED)

    def test_revalidate_after_item_completed_elsewhere(self):
        playlist = self.add([0, 0])
        self.seq.select(playlist, 0)
        self.playlists.complete_item("a")
        self.assertEqual(self.seq.revalidate(), 1)
        self.assertEqual(self.seq.current_item_id, "b")

if __name__ == '__main__':
    unittest.main()
