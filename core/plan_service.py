from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import cfg
from core.errors import StoreUnavailable, Unauthenticated
from core.log import get_logger
from core.events import log_event, E
from core.models.subscription import Subscription, SUBSCRIPTION_STATUS_ACTIVE
from core import quota_store

logger = get_logger(__name__)


DEFAULT_PLAN_TIER = "freemium"
PAID_TIERS = ("monthly", "six_months", "yearly")

# 付费档位不限量：对外统一报这个值，永远不会被扣减
UNLIMITED_QUOTA = 999999

PLAN_DEFINITIONS: Dict[str, Dict] = {
    "freemium": {
        "tier": "freemium",
        "label": "Freemium",
        "price": 0,
        "duration_months": 0,
        "purchasable": False,
        "highlights": [
            "3 generations per day",
            "5 caption variations",
            "Trending hashtags",
        ],
    },
    "monthly": {
        "tier": "monthly",
        "label": "Monthly Plan",
        "price": 99,
        "duration_months": 1,
        "purchasable": True,
        "highlights": [
            "Unlimited generations",
            "Image and video captions",
            "All languages",
        ],
    },
    "six_months": {
        "tier": "six_months",
        "label": "6 Months Plan",
        "price": 549,
        "duration_months": 6,
        "purchasable": True,
        "highlights": [
            "Unlimited generations",
            "Save ₹45 (₹91.50/month)",
        ],
    },
    "yearly": {
        "tier": "yearly",
        "label": "Yearly Plan",
        "price": 999,
        "duration_months": 12,
        "purchasable": True,
        "highlights": [
            "Unlimited generations",
            "Save ₹189 (₹83.25/month)",
        ],
    },
}


@dataclass
class QuotaSnapshot:
    tier: str
    daily_limit: int
    used_today: int
    remaining: int
    usage_date: date

    @property
    def unlimited(self) -> bool:
        return self.tier != DEFAULT_PLAN_TIER

    def to_dict(self) -> Dict:
        return {
            "tier": self.tier,
            "daily_limit": self.daily_limit,
            "used_today": self.used_today,
            "remaining": self.remaining,
            "unlimited": self.unlimited,
            "date": self.usage_date.isoformat(),
        }

    def usage_payload(self) -> Dict:
        """generate-content 响应里的 usage 字段。"""
        return {"used": self.used_today, "limit": self.daily_limit, "remaining": self.remaining}


def normalize_plan_tier(tier: str) -> str:
    value = str(tier or "").strip().lower()
    return value if value in PLAN_DEFINITIONS else DEFAULT_PLAN_TIER


def get_plan_definition(tier: str) -> Dict:
    return PLAN_DEFINITIONS[normalize_plan_tier(tier)]


def free_daily_limit() -> int:
    try:
        value = int(cfg.get("quota.free_daily_limit", 3))
    except (TypeError, ValueError):
        value = 3
    return max(0, value)


def daily_limit_for(tier: str) -> int:
    if normalize_plan_tier(tier) == DEFAULT_PLAN_TIER:
        return free_daily_limit()
    return UNLIMITED_QUOTA


def get_plan_catalog() -> List[Dict]:
    data = []
    for key in (DEFAULT_PLAN_TIER,) + PAID_TIERS:
        plan = dict(PLAN_DEFINITIONS[key])
        plan["daily_limit"] = daily_limit_for(key)
        plan["unlimited"] = key != DEFAULT_PLAN_TIER
        data.append(plan)
    return data


def _require_user_id(user_id: str) -> str:
    value = str(user_id or "").strip()
    if not value:
        raise Unauthenticated()
    return value


def get_active_subscription(session: Session, user_id: str, now: Optional[datetime] = None) -> Optional[Subscription]:
    """最近一条 status=active 且未过期的订阅；没有则返回 None（即 freemium）。"""
    target = now or datetime.now()
    try:
        return session.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.status == SUBSCRIPTION_STATUS_ACTIVE,
            Subscription.expires_at.isnot(None),
            Subscription.expires_at > target,
        ).order_by(
            Subscription.started_at.desc(),
            Subscription.created_at.desc(),
        ).first()
    except SQLAlchemyError as e:
        try:
            session.rollback()
        except SQLAlchemyError:
            pass
        log_event(logger, E.QUOTA_STORE_UNAVAILABLE, level="error", action="subscription", user_id=user_id, reason=e)
        raise StoreUnavailable()


def resolve_tier(session: Session, user_id: str, now: Optional[datetime] = None) -> str:
    subscription = get_active_subscription(session, user_id, now=now)
    if subscription is None:
        return DEFAULT_PLAN_TIER
    return normalize_plan_tier(subscription.tier)


def snapshot_for(tier: str, used_today: int, usage_date: date) -> QuotaSnapshot:
    used = max(0, int(used_today or 0))
    limit = daily_limit_for(tier)
    if tier == DEFAULT_PLAN_TIER:
        remaining = max(0, limit - used)
    else:
        remaining = UNLIMITED_QUOTA
    return QuotaSnapshot(tier=tier, daily_limit=limit, used_today=used, remaining=remaining, usage_date=usage_date)


def resolve_quota(session: Session, user_id: str, now: Optional[datetime] = None) -> QuotaSnapshot:
    """
    只读：当前档位 + 当天用量。存储不可用时抛 StoreUnavailable，不会当成不限量处理。
    """
    uid = _require_user_id(user_id)
    target = now or datetime.now()
    tier = resolve_tier(session, uid, now=target)
    day = quota_store.usage_day(target)
    used = quota_store.get_used(session, uid, day)
    snapshot = snapshot_for(tier, used, day)
    log_event(
        logger,
        E.QUOTA_CHECK,
        level="debug",
        user_id=uid,
        tier=tier,
        used=snapshot.used_today,
        remaining=snapshot.remaining,
    )
    return snapshot
