import unittest
import uuid
from datetime import datetime, timedelta
from unittest import mock

from core.config import cfg, set_config
from core.db import DB
from core.errors import CreditsDepleted, OracleError, QuotaExceeded, RateLimited, StoreUnavailable
from core.generation_service import perform_gated_generation
from core.models.subscription import Subscription, SUBSCRIPTION_STATUS_ACTIVE
from core.ai_service import CaptioningOracle
from core import quota_store

PAYLOAD = {"niche": "fitness", "mood": "motivational", "topic": "morning run", "language": "en"}


class _FakeOracle(CaptioningOracle):
    def __init__(self, error=None):
        self.calls = 0
        self.error = error

    def generate(self, payload):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return {"captions": [f"caption {i}" for i in range(5)], "hashtags": ["#fit"]}

    def trending_hashtags(self, niche, mood, platform="all"):
        return ["#fit"]


class GatedGenerationTestCase(unittest.TestCase):
    def setUp(self):
        DB.create_tables()
        self.session = DB.get_session()
        self.user_id = str(uuid.uuid4())
        self.now = datetime(2025, 7, 4, 9, 30, 0)
        self.day = quota_store.usage_day(self.now)
        self.origin_limit = cfg.get("quota.free_daily_limit", 3)
        set_config("quota.free_daily_limit", 3)

    def tearDown(self):
        set_config("quota.free_daily_limit", self.origin_limit)
        self.session.close()

    def _generate(self, oracle):
        return perform_gated_generation(self.session, self.user_id, dict(PAYLOAD), oracle=oracle, now=self.now)

    def _subscribe(self, tier="monthly"):
        self.session.add(Subscription(
            id=str(uuid.uuid4()),
            user_id=self.user_id,
            tier=tier,
            status=SUBSCRIPTION_STATUS_ACTIVE,
            started_at=self.now - timedelta(days=1),
            expires_at=self.now + timedelta(days=29),
            created_at=self.now,
            updated_at=self.now,
        ))
        self.session.commit()

    def test_freemium_stops_after_daily_limit(self):
        oracle = _FakeOracle()
        for expected_used in (1, 2, 3):
            result = self._generate(oracle)
            self.assertEqual(len(result["content"]["captions"]), 5)
            self.assertEqual(result["usage"].used_today, expected_used)
            self.assertEqual(result["usage"].remaining, 3 - expected_used)
        self.assertEqual(oracle.calls, 3)

        with self.assertRaises(QuotaExceeded) as ctx:
            self._generate(oracle)
        self.assertEqual(oracle.calls, 3)
        body = ctx.exception.to_dict()
        self.assertTrue(body["upgradeRequired"])
        self.assertEqual(body["remaining"], 0)
        self.assertEqual(ctx.exception.status_code, 402)
        self.assertEqual(quota_store.get_used(self.session, self.user_id, self.day), 3)

    def test_lost_reservation_race_is_quota_exceeded(self):
        oracle = _FakeOracle()
        with mock.patch.object(quota_store, "try_reserve", return_value=False):
            with self.assertRaises(QuotaExceeded):
                self._generate(oracle)
        self.assertEqual(oracle.calls, 0)

    def test_paid_user_is_never_gated(self):
        self._subscribe("six_months")
        oracle = _FakeOracle()
        for _ in range(6):
            result = self._generate(oracle)
        self.assertEqual(oracle.calls, 6)
        self.assertEqual(result["usage"].tier, "six_months")
        self.assertEqual(quota_store.get_used(self.session, self.user_id, self.day), 6)

    def test_oracle_error_does_not_consume_quota(self):
        for error in (OracleError("boom"), RateLimited(), CreditsDepleted()):
            with self.assertRaises(type(error)):
                self._generate(_FakeOracle(error=error))
        self.assertEqual(quota_store.get_used(self.session, self.user_id, self.day), 0)
        self.assertEqual(self._generate(_FakeOracle())["usage"].remaining, 2)

    def test_unexpected_oracle_failure_is_wrapped(self):
        with self.assertRaises(OracleError):
            self._generate(_FakeOracle(error=ValueError("bad payload")))
        self.assertEqual(quota_store.get_used(self.session, self.user_id, self.day), 0)

    def test_paid_increment_failure_still_returns_content(self):
        self._subscribe("monthly")
        with mock.patch.object(quota_store, "increment", side_effect=StoreUnavailable()):
            result = self._generate(_FakeOracle())
        self.assertEqual(len(result["content"]["captions"]), 5)
        self.assertEqual(quota_store.get_used(self.session, self.user_id, self.day), 0)

    def test_store_unavailable_blocks_generation(self):
        oracle = _FakeOracle()
        with mock.patch.object(quota_store, "get_used", side_effect=StoreUnavailable()):
            with self.assertRaises(StoreUnavailable):
                self._generate(oracle)
        self.assertEqual(oracle.calls, 0)


if __name__ == "__main__":
    unittest.main()
