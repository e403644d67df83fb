"""
支付网关（Razorpay）

channel=razorpay 时调用 POST {base_url}/orders（Basic Auth: key_id:key_secret）；
channel=mock 时在本地生成 order_mock_xxx，方便联调与测试。
"""

import hashlib
import hmac
import os
import uuid
from typing import Any, Dict

import requests

from core.config import cfg
from core.errors import PaymentProviderError
from core.log import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.razorpay.com/v1"
CHANNEL_RAZORPAY = "razorpay"
CHANNEL_MOCK = "mock"


def provider_config() -> Dict[str, Any]:
    try:
        timeout = float(cfg.get("billing.provider.timeout_seconds", 20))
    except (TypeError, ValueError):
        timeout = 20.0
    return {
        "channel": str(cfg.get("billing.provider.channel", CHANNEL_RAZORPAY) or CHANNEL_RAZORPAY).strip().lower(),
        "base_url": str(cfg.get("billing.provider.base_url", DEFAULT_BASE_URL) or DEFAULT_BASE_URL).strip(),
        "key_id": str(cfg.get("billing.provider.key_id", "") or os.getenv("RAZORPAY_KEY_ID", "")).strip(),
        "key_secret": str(cfg.get("billing.provider.key_secret", "") or os.getenv("RAZORPAY_KEY_SECRET", "")).strip(),
        "timeout": max(1.0, timeout),
    }


def sign_payment(order_id: str, payment_id: str, key_secret: str = "") -> str:
    """HMAC-SHA256(key_secret, "{order_id}|{payment_id}") 的十六进制串。"""
    secret = key_secret or provider_config()["key_secret"]
    if not secret:
        raise PaymentProviderError("Payment provider secret is not configured")
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signature_matches(order_id: str, payment_id: str, signature: str, key_secret: str = "") -> bool:
    expected = sign_payment(order_id, payment_id, key_secret=key_secret)
    return hmac.compare_digest(expected.encode("utf-8"), str(signature or "").encode("utf-8"))


class RazorpayClient:
    def __init__(self, config: Dict[str, Any] = None):
        self.config = config or provider_config()

    @property
    def key_id(self) -> str:
        return self.config.get("key_id") or ""

    def create_order(self, amount: int, currency: str, receipt: str, notes: Dict[str, Any]) -> Dict[str, Any]:
        """amount 为最小货币单位（paise）。返回网关的 order 对象（至少含 id/amount/currency）。"""
        if self.config.get("channel") == CHANNEL_MOCK:
            return {
                "id": f"order_mock_{uuid.uuid4().hex[:14]}",
                "amount": int(amount),
                "currency": currency,
                "receipt": receipt,
                "notes": notes,
                "status": "created",
            }

        key_id, key_secret = self.config.get("key_id"), self.config.get("key_secret")
        if not key_id or not key_secret:
            raise PaymentProviderError("Payment provider is not configured")
        endpoint = f"{self.config['base_url'].rstrip('/')}/orders"
        body = {"amount": int(amount), "currency": currency, "receipt": receipt, "notes": notes}
        try:
            resp = requests.post(endpoint, json=body, auth=(key_id, key_secret), timeout=self.config["timeout"])
        except requests.RequestException as e:
            raise PaymentProviderError(f"Razorpay API error: {e}")
        if resp.status_code >= 400:
            logger.error("Razorpay 下单失败 status=%s body=%s", resp.status_code, resp.text[:300])
            raise PaymentProviderError(f"Razorpay API error: {resp.text[:300]}")
        try:
            order = resp.json()
        except ValueError:
            raise PaymentProviderError("Razorpay API returned invalid JSON")
        if not order.get("id"):
            raise PaymentProviderError("Razorpay API returned no order id")
        return order
