"""
业务异常

服务层只抛这些异常，由 web.py 的统一处理器转换成 JSON 响应：
    {"error": message, "code": error_code, ...context}
"""

from typing import Any, Dict, List, Optional


class CaptionCraftError(Exception):
    error_code = "ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if error_code:
            self.error_code = error_code
        if status_code:
            self.status_code = status_code
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.error_code, **self.context}


class Unauthenticated(CaptionCraftError):
    error_code = "UNAUTHENTICATED"
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ValidationError(CaptionCraftError):
    error_code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str = "Invalid input", details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message, context={"details": details or []})
        self.details = details or []


class QuotaExceeded(CaptionCraftError):
    """免费额度用完；带上 tier/daily_limit 让前端渲染升级入口。"""

    error_code = "QUOTA_EXCEEDED"
    status_code = 402

    def __init__(self, tier: str, daily_limit: int, used_today: int):
        super().__init__(
            f"Daily limit reached ({daily_limit} generations per day on the {tier} plan). "
            "Upgrade to keep generating.",
            context={
                "upgradeRequired": True,
                "tier": tier,
                "daily_limit": daily_limit,
                "used": used_today,
                "remaining": 0,
            },
        )
        self.tier = tier
        self.daily_limit = daily_limit
        self.used_today = used_today


class OracleError(CaptionCraftError):
    error_code = "ORACLE_ERROR"
    status_code = 500

    def __init__(self, message: str = "AI generation failed"):
        super().__init__(message)


class RateLimited(OracleError):
    error_code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded. Please try again in a moment."):
        super().__init__(message)


class CreditsDepleted(OracleError):
    error_code = "CREDITS_DEPLETED"
    status_code = 402

    def __init__(self, message: str = "AI credits depleted. Please add credits to continue."):
        super().__init__(message)


class InvalidSignature(CaptionCraftError):
    error_code = "INVALID_SIGNATURE"
    status_code = 400

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class PriceMismatch(CaptionCraftError):
    error_code = "PRICE_MISMATCH"
    status_code = 400

    def __init__(self, tier: str, expected: int, received: int):
        super().__init__(
            f"Amount {received} does not match the price for {tier}",
            context={"tier": tier, "expected_amount": expected, "amount": received},
        )


class PaymentProviderError(CaptionCraftError):
    error_code = "PAYMENT_PROVIDER_ERROR"
    status_code = 500


class StoreUnavailable(CaptionCraftError):
    error_code = "STORE_UNAVAILABLE"
    status_code = 503

    def __init__(self, message: str = "Storage is temporarily unavailable"):
        super().__init__(message)
