import threading
import unittest
import uuid
from datetime import datetime

from core.db import DB
from core import quota_store


class QuotaStoreTestCase(unittest.TestCase):
    def setUp(self):
        DB.create_tables()
        self.session = DB.get_session()
        self.user_id = str(uuid.uuid4())
        self.now = datetime(2025, 3, 14, 10, 0, 0)
        self.day = quota_store.usage_day(self.now)

    def tearDown(self):
        self.session.close()

    def test_unknown_user_has_zero_usage(self):
        self.assertEqual(quota_store.get_used(self.session, self.user_id, self.day), 0)

    def test_reserve_stops_at_limit(self):
        results = [quota_store.try_reserve(self.session, self.user_id, 3, now=self.now) for _ in range(5)]
        self.assertEqual(results, [True, True, True, False, False])
        self.assertEqual(quota_store.get_used(self.session, self.user_id, self.day), 3)

    def test_zero_limit_never_reserves(self):
        self.assertFalse(quota_store.try_reserve(self.session, self.user_id, 0, now=self.now))
        self.assertEqual(quota_store.get_used(self.session, self.user_id, self.day), 0)

    def test_increment_has_no_cap(self):
        for _ in range(5):
            quota_store.increment(self.session, self.user_id, now=self.now)
        self.assertEqual(quota_store.get_used(self.session, self.user_id, self.day), 5)

    def test_counter_is_keyed_by_day(self):
        quota_store.increment(self.session, self.user_id, now=self.now)
        next_day = datetime(2025, 3, 15, 0, 0, 1)
        self.assertTrue(quota_store.try_reserve(self.session, self.user_id, 1, now=next_day))
        self.assertEqual(quota_store.get_used(self.session, self.user_id, self.day), 1)
        self.assertEqual(quota_store.get_used(self.session, self.user_id, next_day.date()), 1)

    def test_release_never_goes_negative(self):
        quota_store.try_reserve(self.session, self.user_id, 3, now=self.now)
        self.assertTrue(quota_store.release(self.session, self.user_id, self.day, now=self.now))
        self.assertFalse(quota_store.release(self.session, self.user_id, self.day, now=self.now))
        self.assertEqual(quota_store.get_used(self.session, self.user_id, self.day), 0)

    def test_concurrent_reserve_admits_at_most_remaining(self):
        limit, workers = 3, 8
        admitted = []
        lock = threading.Lock()
        barrier = threading.Barrier(workers)

        def worker():
            session = DB.get_session()
            try:
                barrier.wait()
                ok = quota_store.try_reserve(session, self.user_id, limit, now=self.now)
                with lock:
                    admitted.append(ok)
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(admitted), workers)
        self.assertEqual(sum(1 for x in admitted if x), limit)
        self.assertEqual(quota_store.get_used(self.session, self.user_id, self.day), limit)


if __name__ == "__main__":
    unittest.main()
