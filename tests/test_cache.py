import unittest

from bandscope.cache import CacheEntry, LRUCache


class TestLRUCache(unittest.TestCase):

    def setUp(self):
        self.disposed = []
        self.cache = LRUCache(4, 'test')

    def _dispose(self, state):
        self.disposed.append(state)

    def _fill(self, count):
        return [self.cache.set(f"k{i}", f"state{i}", self._dispose) for i in range(count)]

    def test_invalid_size(self):
        with self.assertRaises(ValueError):
            LRUCache(0)

    def test_fifth_insert_evicts_least_recently_used(self):
        self._fill(4)
        self.assertIsNotNone(self.cache.get('k0'))
        self.cache.set('k4', 'state4', self._dispose)

        self.assertEqual(len(self.cache), 4)
        self.assertNotIn('k1', self.cache)
        self.assertEqual(self.disposed, ['state1'])
        self.assertEqual(self.cache.keys(), ['k2', 'k3', 'k0', 'k4'])

    def test_get_counts_hits_and_misses(self):
        self._fill(2)
        self.cache.get('k0')
        self.cache.get('k0')
        self.assertIsNone(self.cache.get('missing'))
        stats = self.cache.get_stats()
        self.assertEqual(stats['hits'], 2)
        self.assertEqual(stats['misses'], 1)
        self.assertAlmostEqual(stats['hit_rate'], 2 / 3)
        self.assertEqual(stats['size'], 2)
        self.assertEqual(stats['max_size'], 4)

    def test_replacing_a_key_releases_previous_state(self):
        self._fill(1)
        self.cache.set('k0', 'newer', self._dispose)
        self.assertEqual(self.disposed, ['state0'])
        self.assertEqual(self.cache.get('k0').state, 'newer')

    def test_pinned_entries_release_on_unpin(self):
        entries = self._fill(4)
        self.cache.pin(entries[0])
        self.cache.set('k4', 'state4', self._dispose)

        self.assertNotIn('k0', self.cache)
        self.assertEqual(self.disposed, [])
        self.assertEqual(entries[0].state, 'state0')
        self.assertEqual(self.cache.get_stats()['deferred_releases'], 1)

        self.cache.unpin(entries[0])
        self.assertEqual(self.disposed, ['state0'])
        self.assertIsNone(entries[0].state)

    def test_unpin_without_eviction_keeps_entry(self):
        entries = self._fill(1)
        self.cache.pin(entries[0])
        self.cache.pin(entries[0])
        self.cache.unpin(entries[0])
        self.assertEqual(self.cache.get_stats()['pinned'], 1)
        self.cache.unpin(entries[0])
        self.assertEqual(self.disposed, [])
        self.assertIn('k0', self.cache)

        with self.assertLogs('bandscope', level='WARNING'):
            self.cache.unpin(entries[0])

    def test_clear_releases_everything_once(self):
        entries = self._fill(3)
        self.cache.pin(entries[2])
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)
        self.assertEqual(sorted(self.disposed), ['state0', 'state1'])

        self.cache.unpin(entries[2])
        self.cache.clear()
        self.assertEqual(sorted(self.disposed), ['state0', 'state1', 'state2'])

    def test_entry_release_is_idempotent(self):
        entry = CacheEntry('k', 'state', self._dispose)
        self.assertTrue(entry.release())
        self.assertFalse(entry.release())
        self.assertEqual(self.disposed, ['state'])

    def test_failing_dispose_is_logged(self):
        def explode(state):
            raise RuntimeError("boom")

        entry = CacheEntry('k', 'state', explode)
        with self.assertLogs('bandscope', level='WARNING'):
            entry.release()
        self.assertTrue(entry.released)


if __name__ == '__main__':
    unittest.main()
