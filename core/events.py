"""
core/events.py: 结构化事件日志

格式：event=xxx | key=val | key=val

    from core.log import get_logger
    from core.events import log_event, E

    logger = get_logger(__name__)
    log_event(logger, E.QUOTA_CONSUME, user_id="u1", used=2, limit=3)
    # → event=quota.consume | user_id=u1 | used=2 | limit=3

对账用的事件（*_fail / *_gap）统一用 warning 及以上级别输出，方便 grep。
"""

import logging
from typing import Any


class E:
    """事件类型常量，按模块分组。"""

    # ── 认证 ───────────────────────────────────────────────────────────────────
    AUTH_TOKEN_VERIFY = "auth.token.verify"
    AUTH_TOKEN_REJECT = "auth.token.reject"

    # ── 配额 ───────────────────────────────────────────────────────────────────
    QUOTA_CHECK = "quota.check"
    QUOTA_RESERVE = "quota.reserve"
    QUOTA_EXCEED = "quota.exceed"
    QUOTA_RELEASE = "quota.release"
    QUOTA_RELEASE_FAIL = "quota.release_fail"
    QUOTA_CONSUME = "quota.consume"
    QUOTA_CONSUME_FAIL = "quota.consume_fail"
    QUOTA_STORE_UNAVAILABLE = "quota.store_unavailable"

    # ── AI 生成 ────────────────────────────────────────────────────────────────
    AI_GENERATE_START = "ai.generate.start"
    AI_GENERATE_COMPLETE = "ai.generate.complete"
    AI_GENERATE_FAIL = "ai.generate.fail"
    AI_HASHTAGS_COMPLETE = "ai.hashtags.complete"
    AI_HASHTAGS_FAIL = "ai.hashtags.fail"

    # ── 计费 ───────────────────────────────────────────────────────────────────
    BILLING_ORDER_CREATE = "billing.order.create"
    BILLING_ORDER_PRICE_MISMATCH = "billing.order.price_mismatch"
    BILLING_ORDER_PROVIDER_FAIL = "billing.order.provider_fail"
    BILLING_ORDER_PERSIST_FAIL = "billing.order.persist_fail"
    BILLING_PAYMENT_VERIFY = "billing.payment.verify"
    BILLING_PAYMENT_INVALID_SIGNATURE = "billing.payment.invalid_signature"
    BILLING_PAYMENT_REPLAY = "billing.payment.replay"
    BILLING_PAYMENT_FOREIGN = "billing.payment.foreign"
    BILLING_PAYMENT_HISTORY_GAP = "billing.payment.history_gap"
    BILLING_SUBSCRIPTION_ACTIVATE = "billing.subscription.activate"
    BILLING_SUBSCRIPTION_EXPIRE = "billing.subscription.expire"
    BILLING_SWEEP_START = "billing.sweep.start"
    BILLING_SWEEP_COMPLETE = "billing.sweep.complete"

    # ── 系统 ───────────────────────────────────────────────────────────────────
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_DB_INIT = "system.db_init"


def log_event(
    logger: logging.Logger,
    event: str,
    level: str = "info",
    **fields: Any,
) -> None:
    """
    记录结构化事件日志，超长字段截断到 300 字符。

        log_event(logger, E.BILLING_ORDER_PERSIST_FAIL, level="error",
                  provider_order_id="order_xxx", reason="db down")
        # → event=billing.order.persist_fail | provider_order_id=order_xxx | reason=db down
    """
    parts = [f"event={event}"]
    for k, v in fields.items():
        sv = v if isinstance(v, str) else str(v)
        if len(sv) > 300:
            sv = sv[:297] + "..."
        parts.append(f"{k}={sv}")
    getattr(logger, level)(" | ".join(parts), stacklevel=2)
