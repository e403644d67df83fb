import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import cfg
from core.errors import InvalidSignature, PaymentProviderError, PriceMismatch, StoreUnavailable, ValidationError
from core.log import get_logger
from core.events import log_event, E
from core.models.payment_history import (
    PaymentHistory,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_SUCCESS,
)
from core.models.subscription import (
    Subscription,
    SUBSCRIPTION_STATUS_ACTIVE,
    SUBSCRIPTION_STATUS_EXPIRED,
)
from core.payment_gateway import RazorpayClient, signature_matches
from core.plan_service import (
    DEFAULT_PLAN_TIER,
    PAID_TIERS,
    get_active_subscription,
    get_plan_definition,
)

logger = get_logger(__name__)

RECEIPT_MAX_LENGTH = 40
PAISE_PER_RUPEE = 100


def _currency() -> str:
    return str(cfg.get("billing.currency", "INR") or "INR").upper()


def add_months(dt: datetime, months: int) -> datetime:
    """
    日历月加法，日期溢出顺延到下个月：
    1/31 + 1 个月 → 3/3（闰年 3/2），3/31 + 6 个月 → 10/1，时分秒保持不变。
    """
    month_index = dt.month - 1 + int(months)
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    first_of_month = dt.replace(year=year, month=month, day=1)
    return first_of_month + timedelta(days=dt.day - 1)


def _new_receipt(user_id: str, now: Optional[datetime] = None) -> str:
    millis = str(int((now or datetime.now()).timestamp() * 1000))
    return f"ord_{str(user_id)[:8]}_{millis[5:]}"[:RECEIPT_MAX_LENGTH]


def _paid_plan(tier: str) -> Dict:
    value = str(tier or "").strip().lower()
    if value not in PAID_TIERS:
        raise ValidationError(
            "Invalid input",
            details=[{"field": "tier", "message": f"tier must be one of {', '.join(PAID_TIERS)}"}],
        )
    return get_plan_definition(value)


def _check_duration(plan: Dict, duration_months: int) -> None:
    if int(duration_months or 0) != int(plan["duration_months"]):
        raise ValidationError(
            "Invalid input",
            details=[{
                "field": "durationMonths",
                "message": f"{plan['tier']} is sold for {plan['duration_months']} month(s)",
            }],
        )


def order_to_dict(order: PaymentHistory) -> Dict:
    return {
        "id": order.id,
        "amount": int(order.amount or 0),
        "currency": order.currency,
        "tier": order.tier,
        "duration_months": int(order.duration_months or 0),
        "status": order.status,
        "payment_method": order.payment_method,
        "razorpay_order_id": order.razorpay_order_id,
        "razorpay_payment_id": order.razorpay_payment_id,
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }


def subscription_to_dict(subscription: Optional[Subscription]) -> Optional[Dict]:
    if subscription is None:
        return None
    return {
        "id": subscription.id,
        "tier": subscription.tier,
        "status": subscription.status,
        "started_at": subscription.started_at.isoformat() if subscription.started_at else None,
        "expires_at": subscription.expires_at.isoformat() if subscription.expires_at else None,
        "razorpay_payment_id": subscription.razorpay_payment_id,
        "razorpay_subscription_id": subscription.razorpay_subscription_id,
    }


def create_order(
    session: Session,
    user_id: str,
    tier: str,
    amount: int,
    duration_months: int,
    client: Optional[RazorpayClient] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    amount 是客户端报的卢比价，只用来和服务端价目表核对；真正下单的金额来自价目表（换算成 paise）。
    网关下单成功后写 pending 记录；写库失败不影响返回，只记日志留待对账。
    """
    plan = _paid_plan(tier)
    expected = int(plan["price"])
    if int(amount) != expected:
        log_event(
            logger,
            E.BILLING_ORDER_PRICE_MISMATCH,
            level="warning",
            user_id=user_id,
            tier=plan["tier"],
            expected=expected,
            received=amount,
        )
        raise PriceMismatch(plan["tier"], expected, int(amount))
    _check_duration(plan, duration_months)

    target = now or datetime.now()
    client = client or RazorpayClient()
    currency = _currency()
    amount_paise = expected * PAISE_PER_RUPEE
    receipt = _new_receipt(user_id, target)
    try:
        provider_order = client.create_order(
            amount=amount_paise,
            currency=currency,
            receipt=receipt,
            notes={"user_id": user_id, "tier": plan["tier"], "duration_months": plan["duration_months"]},
        )
    except PaymentProviderError as e:
        log_event(logger, E.BILLING_ORDER_PROVIDER_FAIL, level="error", user_id=user_id, tier=plan["tier"], reason=e.message)
        raise
    provider_order_id = str(provider_order["id"])
    log_event(
        logger,
        E.BILLING_ORDER_CREATE,
        user_id=user_id,
        tier=plan["tier"],
        amount=amount_paise,
        provider_order_id=provider_order_id,
        receipt=receipt,
    )

    order_id = str(uuid.uuid4())
    try:
        session.add(PaymentHistory(
            id=order_id,
            user_id=user_id,
            amount=amount_paise,
            currency=currency,
            tier=plan["tier"],
            duration_months=plan["duration_months"],
            status=PAYMENT_STATUS_PENDING,
            razorpay_order_id=provider_order_id,
            created_at=target,
            updated_at=target,
        ))
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        order_id = None
        log_event(
            logger,
            E.BILLING_ORDER_PERSIST_FAIL,
            level="error",
            user_id=user_id,
            provider_order_id=provider_order_id,
            reason=e,
        )

    return {
        "order_id": order_id,
        "provider_order_id": provider_order_id,
        "amount": int(provider_order.get("amount") or amount_paise),
        "currency": provider_order.get("currency") or currency,
        "key_id": client.key_id,
        "receipt": receipt,
    }


def _find_order(session: Session, provider_order_id: str) -> Optional[PaymentHistory]:
    # order id 全局唯一，不按 user 过滤，归属由调用方判断
    return session.query(PaymentHistory).filter(
        PaymentHistory.razorpay_order_id == provider_order_id,
    ).first()


def _find_payment(session: Session, provider_payment_id: str) -> Optional[Subscription]:
    return session.query(Subscription).filter(
        Subscription.razorpay_payment_id == provider_payment_id,
    ).first()


def _reject_foreign(user_id: str, owner_id: str, order_id: str, payment_id: str) -> None:
    log_event(
        logger,
        E.BILLING_PAYMENT_FOREIGN,
        level="warning",
        user_id=user_id,
        owner_id=owner_id,
        provider_order_id=order_id,
        provider_payment_id=payment_id,
    )
    raise InvalidSignature("Payment does not belong to this account")


def _replayed(user_id: str, existing: Subscription, order_id: str, payment_id: str) -> Dict:
    if existing.user_id != user_id:
        _reject_foreign(user_id, existing.user_id, order_id, payment_id)
    log_event(logger, E.BILLING_PAYMENT_REPLAY, level="warning", user_id=user_id, provider_payment_id=payment_id)
    return {"success": True, "subscription": subscription_to_dict(existing)}


def verify_payment(
    session: Session,
    user_id: str,
    provider_order_id: str,
    provider_payment_id: str,
    provider_signature: str,
    tier: str,
    duration_months: int,
    key_secret: str = "",
    now: Optional[datetime] = None,
) -> Dict:
    target = now or datetime.now()
    order_id = str(provider_order_id or "").strip()
    payment_id = str(provider_payment_id or "").strip()
    if not order_id or not payment_id or not provider_signature:
        raise ValidationError(
            "Invalid input",
            details=[{"field": "razorpay_signature", "message": "order id, payment id and signature are required"}],
        )

    # 签名失败只记日志，订单保持 pending，真实回调仍可落账
    if not signature_matches(order_id, payment_id, provider_signature, key_secret=key_secret):
        log_event(
            logger,
            E.BILLING_PAYMENT_INVALID_SIGNATURE,
            level="warning",
            user_id=user_id,
            provider_order_id=order_id,
            provider_payment_id=payment_id,
        )
        raise InvalidSignature()
    log_event(logger, E.BILLING_PAYMENT_VERIFY, user_id=user_id, provider_order_id=order_id, tier=tier)

    plan = _paid_plan(tier)
    _check_duration(plan, duration_months)

    try:
        order = _find_order(session, order_id)
        if order is not None and order.user_id != user_id:
            _reject_foreign(user_id, order.user_id, order_id, payment_id)
        if order is not None and (order.tier != plan["tier"] or int(order.duration_months) != plan["duration_months"]):
            raise ValidationError(
                "Invalid input",
                details=[{"field": "tier", "message": "tier does not match the order on file"}],
            )

        existing = _find_payment(session, payment_id)
        if existing is not None:
            return _replayed(user_id, existing, order_id, payment_id)

        subscription = Subscription(
            id=str(uuid.uuid4()),
            user_id=user_id,
            tier=plan["tier"],
            status=SUBSCRIPTION_STATUS_ACTIVE,
            started_at=target,
            expires_at=add_months(target, plan["duration_months"]),
            razorpay_payment_id=payment_id,
            razorpay_subscription_id=order_id,
            created_at=target,
            updated_at=target,
        )
        session.add(subscription)

        if order is None:
            log_event(logger, E.BILLING_PAYMENT_HISTORY_GAP, level="warning",
                      user_id=user_id, provider_order_id=order_id, reason="order_missing")
        elif order.status != PAYMENT_STATUS_PENDING:
            log_event(logger, E.BILLING_PAYMENT_HISTORY_GAP, level="warning",
                      user_id=user_id, provider_order_id=order_id, reason=f"order_{order.status}")
        else:
            order.status = PAYMENT_STATUS_SUCCESS
            order.razorpay_payment_id = payment_id
            order.razorpay_signature = provider_signature
            order.payment_method = "razorpay"
            order.updated_at = target
        session.commit()
    except IntegrityError:
        # 并发重放：唯一约束拦下第二次插入，按已落库的那条处理
        session.rollback()
        existing = _find_payment(session, payment_id)
        if existing is None:
            logger.error("支付写库唯一约束冲突但查不到记录 order=%s payment=%s", order_id, payment_id)
            raise StoreUnavailable()
        return _replayed(user_id, existing, order_id, payment_id)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("支付校验通过但写库失败 order=%s payment=%s: %s", order_id, payment_id, e)
        raise StoreUnavailable()

    log_event(
        logger,
        E.BILLING_SUBSCRIPTION_ACTIVATE,
        user_id=user_id,
        tier=subscription.tier,
        expires_at=subscription.expires_at.isoformat(),
    )
    return {"success": True, "subscription": subscription_to_dict(subscription)}


def list_payment_history(session: Session, user_id: str, limit: int = 10) -> List[Dict]:
    rows = session.query(PaymentHistory).filter(
        PaymentHistory.user_id == user_id,
    ).order_by(PaymentHistory.created_at.desc()).limit(max(1, min(int(limit or 10), 100))).all()
    return [order_to_dict(x) for x in rows]


def get_subscription_overview(session: Session, user_id: str, now: Optional[datetime] = None) -> Dict:
    target = now or datetime.now()
    try:
        subscription = get_active_subscription(session, user_id, now=target)
        history = list_payment_history(session, user_id, limit=10)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("读取订阅信息失败 user=%s: %s", user_id, e)
        raise StoreUnavailable()
    tier = subscription.tier if subscription else DEFAULT_PLAN_TIER
    days_remaining = None
    if subscription is not None and subscription.expires_at:
        seconds = (subscription.expires_at - target).total_seconds()
        days_remaining = max(0, int(-(-seconds // 86400)))
    return {
        "tier": tier,
        "plan": get_plan_definition(tier),
        "subscription": subscription_to_dict(subscription),
        "days_remaining": days_remaining,
        "payment_history": history,
    }


def sweep_expired_subscriptions(session: Session, limit: int = 200, now: Optional[datetime] = None) -> Dict:
    """把已过期但仍是 active 的订阅标记为 expired；档位解析本身不依赖这个任务。"""
    target = now or datetime.now()
    rows = session.query(Subscription).filter(
        Subscription.status == SUBSCRIPTION_STATUS_ACTIVE,
        Subscription.expires_at.isnot(None),
        Subscription.expires_at <= target,
    ).limit(max(1, min(int(limit or 200), 1000))).all()
    changed = []
    for row in rows:
        row.status = SUBSCRIPTION_STATUS_EXPIRED
        row.updated_at = target
        changed.append(row.id)
    if changed:
        session.commit()
        log_event(logger, E.BILLING_SUBSCRIPTION_EXPIRE, count=len(changed))
    return {"total": len(changed), "subscriptions": changed}
