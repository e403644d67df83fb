import unittest
import uuid
from datetime import datetime, timedelta

from core.config import cfg, set_config
from core.db import DB
from core.errors import Unauthenticated
from core.models.subscription import Subscription, SUBSCRIPTION_STATUS_ACTIVE, SUBSCRIPTION_STATUS_CANCELLED
from core.plan_service import (
    DEFAULT_PLAN_TIER,
    UNLIMITED_QUOTA,
    daily_limit_for,
    get_plan_catalog,
    normalize_plan_tier,
    resolve_quota,
)
from core import quota_store


class PlanServiceTestCase(unittest.TestCase):
    def setUp(self):
        DB.create_tables()
        self.session = DB.get_session()
        self.user_id = str(uuid.uuid4())
        self.now = datetime(2025, 6, 1, 12, 0, 0)
        self.origin_limit = cfg.get("quota.free_daily_limit", 3)
        set_config("quota.free_daily_limit", 3)

    def tearDown(self):
        set_config("quota.free_daily_limit", self.origin_limit)
        self.session.close()

    def _add_subscription(self, tier="monthly", status=SUBSCRIPTION_STATUS_ACTIVE, expires_in=timedelta(days=10),
                          started_at=None):
        started = started_at or self.now - timedelta(days=1)
        row = Subscription(
            id=str(uuid.uuid4()),
            user_id=self.user_id,
            tier=tier,
            status=status,
            started_at=started,
            expires_at=self.now + expires_in,
            created_at=started,
            updated_at=started,
        )
        self.session.add(row)
        self.session.commit()
        return row

    def test_unknown_tier_falls_back_to_freemium(self):
        self.assertEqual(normalize_plan_tier("gold"), DEFAULT_PLAN_TIER)
        self.assertEqual(normalize_plan_tier(" Yearly "), "yearly")

    def test_limits_per_tier(self):
        self.assertEqual(daily_limit_for("freemium"), 3)
        for tier in ("monthly", "six_months", "yearly"):
            self.assertEqual(daily_limit_for(tier), UNLIMITED_QUOTA)

    def test_catalog_prices(self):
        prices = {x["tier"]: (x["price"], x["duration_months"]) for x in get_plan_catalog()}
        self.assertEqual(prices["monthly"], (99, 1))
        self.assertEqual(prices["six_months"], (549, 6))
        self.assertEqual(prices["yearly"], (999, 12))
        self.assertEqual(prices["freemium"], (0, 0))

    def test_freemium_without_subscription(self):
        snapshot = resolve_quota(self.session, self.user_id, now=self.now)
        self.assertEqual(snapshot.tier, DEFAULT_PLAN_TIER)
        self.assertEqual(snapshot.daily_limit, 3)
        self.assertEqual(snapshot.used_today, 0)
        self.assertEqual(snapshot.remaining, 3)

    def test_remaining_counts_todays_usage(self):
        quota_store.increment(self.session, self.user_id, now=self.now)
        quota_store.increment(self.session, self.user_id, now=self.now)
        snapshot = resolve_quota(self.session, self.user_id, now=self.now)
        self.assertEqual(snapshot.used_today, 2)
        self.assertEqual(snapshot.remaining, 1)
        self.assertEqual(snapshot.usage_payload(), {"used": 2, "limit": 3, "remaining": 1})

    def test_remaining_never_negative(self):
        for _ in range(5):
            quota_store.increment(self.session, self.user_id, now=self.now)
        snapshot = resolve_quota(self.session, self.user_id, now=self.now)
        self.assertEqual(snapshot.remaining, 0)

    def test_active_subscription_is_unlimited(self):
        self._add_subscription("yearly")
        quota_store.increment(self.session, self.user_id, now=self.now)
        snapshot = resolve_quota(self.session, self.user_id, now=self.now)
        self.assertEqual(snapshot.tier, "yearly")
        self.assertEqual(snapshot.daily_limit, UNLIMITED_QUOTA)
        self.assertEqual(snapshot.remaining, UNLIMITED_QUOTA)
        self.assertEqual(snapshot.used_today, 1)
        self.assertTrue(snapshot.unlimited)

    def test_expired_subscription_means_freemium(self):
        self._add_subscription("monthly", expires_in=timedelta(seconds=-1))
        snapshot = resolve_quota(self.session, self.user_id, now=self.now)
        self.assertEqual(snapshot.tier, DEFAULT_PLAN_TIER)

    def test_cancelled_subscription_is_ignored(self):
        self._add_subscription("monthly", status=SUBSCRIPTION_STATUS_CANCELLED)
        snapshot = resolve_quota(self.session, self.user_id, now=self.now)
        self.assertEqual(snapshot.tier, DEFAULT_PLAN_TIER)

    def test_most_recent_subscription_wins(self):
        self._add_subscription("yearly", started_at=self.now - timedelta(days=30))
        self._add_subscription("monthly", started_at=self.now - timedelta(days=2))
        snapshot = resolve_quota(self.session, self.user_id, now=self.now)
        self.assertEqual(snapshot.tier, "monthly")

    def test_missing_user_is_rejected(self):
        with self.assertRaises(Unauthenticated):
            resolve_quota(self.session, "  ", now=self.now)


if __name__ == "__main__":
    unittest.main()
