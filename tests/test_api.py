import unittest
import uuid
from unittest import mock

from fastapi.testclient import TestClient

from core.auth import create_access_token
from core.config import cfg, set_config
from core.db import DB
from core.errors import RateLimited
from core.payment_gateway import sign_payment
from web import app

API = "/api/v1"
KEY_SECRET = "api_test_secret"

VALID_BODY = {
    "niche": "fitness & health",
    "mood": "energetic",
    "topic": "5am workouts",
    "language": "en",
    "captionLengths": {"short": True, "medium": True, "long": False},
}

_OVERRIDES = {
    "quota.free_daily_limit": 3,
    "ai.provider.api_key": "mock",
    "billing.provider.channel": "mock",
    "billing.provider.key_id": "rzp_test_api",
    "billing.provider.key_secret": KEY_SECRET,
}


class ApiTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        DB.create_tables()
        cls.client = TestClient(app)

    def setUp(self):
        self.origin = {k: cfg.get(k) for k in _OVERRIDES}
        for key, value in _OVERRIDES.items():
            set_config(key, value)
        self.user_id = str(uuid.uuid4())
        self.headers = {"Authorization": f"Bearer {create_access_token(self.user_id)}"}

    def tearDown(self):
        for key, value in self.origin.items():
            set_config(key, value)

    def test_requires_bearer_token(self):
        resp = self.client.post(f"{API}/generate-content", json=VALID_BODY)
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["code"], "UNAUTHENTICATED")

        resp = self.client.post(
            f"{API}/generate-content",
            json=VALID_BODY,
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        self.assertEqual(resp.status_code, 401)

    def test_response_headers(self):
        resp = self.client.get(f"{API}/billing/plans", headers={"X-Trace-Id": "abc123"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.headers["X-Trace-Id"], "abc123")
        self.assertIn("X-Version", resp.headers)
        tiers = [x["tier"] for x in resp.json()["plans"]]
        self.assertEqual(tiers, ["freemium", "monthly", "six_months", "yearly"])

    def test_generate_until_quota_exceeded(self):
        for used in (1, 2, 3):
            resp = self.client.post(f"{API}/generate-content", json=VALID_BODY, headers=self.headers)
            self.assertEqual(resp.status_code, 200, resp.text)
            data = resp.json()
            self.assertEqual(len(data["captions"]), 5)
            self.assertTrue(data["hashtags"])
            self.assertEqual(data["usage"], {"used": used, "limit": 3, "remaining": 3 - used})

        resp = self.client.post(f"{API}/generate-content", json=VALID_BODY, headers=self.headers)
        self.assertEqual(resp.status_code, 402)
        body = resp.json()
        self.assertTrue(body["upgradeRequired"])
        self.assertEqual(body["code"], "QUOTA_EXCEEDED")

        usage = self.client.get(f"{API}/usage", headers=self.headers).json()
        self.assertEqual(usage["used_today"], 3)
        self.assertEqual(usage["remaining"], 0)

    def test_invalid_input(self):
        cases = [
            dict(VALID_BODY, mood="angry"),
            dict(VALID_BODY, niche="<script>"),
            dict(VALID_BODY, niche=""),
            dict(VALID_BODY, topic="x" * 1001),
            dict(VALID_BODY, language="eng"),
            dict(VALID_BODY, imageData="http://example.com/cat.png"),
            dict(VALID_BODY, unexpected="field"),
        ]
        for body in cases:
            resp = self.client.post(f"{API}/generate-content", json=body, headers=self.headers)
            self.assertEqual(resp.status_code, 400, body)
            data = resp.json()
            self.assertEqual(data["code"], "VALIDATION_ERROR")
            self.assertTrue(data["details"])

        usage = self.client.get(f"{API}/usage", headers=self.headers).json()
        self.assertEqual(usage["used_today"], 0)

    def test_trending_hashtags(self):
        resp = self.client.post(
            f"{API}/get-trending-hashtags",
            json={"niche": "travel", "mood": "casual", "platform": "instagram"},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 200)
        self.assertIn("#Travel", resp.json()["hashtags"])

        resp = self.client.post(
            f"{API}/get-trending-hashtags",
            json={"niche": "travel", "mood": "casual", "platform": "myspace"},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 400)

    def test_trending_hashtags_provider_error(self):
        oracle = mock.Mock()
        oracle.trending_hashtags.side_effect = RateLimited()
        with mock.patch("apis.generation.get_oracle", return_value=oracle):
            resp = self.client.post(
                f"{API}/get-trending-hashtags",
                json={"niche": "travel", "mood": "casual"},
                headers=self.headers,
            )
        self.assertEqual(resp.status_code, 429)
        self.assertEqual(resp.json()["hashtags"], [])

    def test_order_and_verify(self):
        resp = self.client.post(
            f"{API}/create-razorpay-order",
            json={"amount": 549, "tier": "six_months", "durationMonths": 6},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        order = resp.json()
        self.assertEqual(order["amount"], 54900)
        self.assertEqual(order["currency"], "INR")
        self.assertEqual(order["keyId"], "rzp_test_api")

        payment_id = f"pay_{uuid.uuid4().hex[:12]}"
        verify_body = {
            "razorpay_order_id": order["orderId"],
            "razorpay_payment_id": payment_id,
            "razorpay_signature": sign_payment(order["orderId"], payment_id, key_secret=KEY_SECRET),
            "tier": "six_months",
            "durationMonths": 6,
        }
        resp = self.client.post(f"{API}/verify-razorpay-payment", json=verify_body, headers=self.headers)
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.json(), {"success": True})

        overview = self.client.get(f"{API}/subscription", headers=self.headers).json()
        self.assertEqual(overview["tier"], "six_months")

        for _ in range(5):
            resp = self.client.post(f"{API}/generate-content", json=VALID_BODY, headers=self.headers)
            self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["usage"]["limit"], 999999)

    def test_order_price_mismatch(self):
        resp = self.client.post(
            f"{API}/create-razorpay-order",
            json={"amount": 1, "tier": "yearly", "durationMonths": 12},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "PRICE_MISMATCH")

        resp = self.client.post(
            f"{API}/create-razorpay-order",
            json={"amount": 99, "tier": "freemium", "durationMonths": 1},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 400)

    def test_verify_rejects_bad_signature(self):
        verify_body = {
            "razorpay_order_id": "order_unknown",
            "razorpay_payment_id": "pay_unknown",
            "razorpay_signature": "deadbeef",
            "tier": "monthly",
            "durationMonths": 1,
        }
        resp = self.client.post(f"{API}/verify-razorpay-payment", json=verify_body, headers=self.headers)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "INVALID_SIGNATURE")
        overview = self.client.get(f"{API}/subscription", headers=self.headers).json()
        self.assertEqual(overview["tier"], "freemium")


if __name__ == "__main__":
    unittest.main()
