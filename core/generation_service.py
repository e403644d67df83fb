"""
受配额控制的文案生成

免费用户：先原子占用一次额度（带上限 +1），再调用 AI；AI 明确失败时撤销占用。
请求在 AI 调用过程中被取消/中断时保留占用，因为上游费用已经产生。
付费用户：不设闸门，AI 成功后原子 +1 记账；记账失败只记日志，照常返回内容。
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from core.ai_service import CaptioningOracle, get_oracle
from core.errors import OracleError, QuotaExceeded, StoreUnavailable, Unauthenticated
from core.log import get_logger
from core.events import log_event, E
from core.plan_service import DEFAULT_PLAN_TIER, QuotaSnapshot, resolve_quota, snapshot_for
from core import quota_store

logger = get_logger(__name__)


def _release_reservation(session: Session, user_id: str, target: datetime, reason: str) -> None:
    try:
        quota_store.release(session, user_id, quota_store.usage_day(target))
        log_event(logger, E.QUOTA_RELEASE, user_id=user_id, reason=reason)
    except StoreUnavailable:
        log_event(logger, E.QUOTA_RELEASE_FAIL, level="error", user_id=user_id, reason=reason)


def _snapshot_after(session: Session, user_id: str, before: QuotaSnapshot, target: datetime) -> QuotaSnapshot:
    try:
        return resolve_quota(session, user_id, now=target)
    except StoreUnavailable:
        return snapshot_for(before.tier, before.used_today + 1, before.usage_date)


def perform_gated_generation(
    session: Session,
    user_id: str,
    payload: Dict[str, Any],
    oracle: Optional[CaptioningOracle] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    返回 {"content": {"captions": [...], "hashtags": [...]}, "usage": QuotaSnapshot}。
    """
    uid = str(user_id or "").strip()
    if not uid:
        raise Unauthenticated()
    target = now or datetime.now()
    oracle = oracle or get_oracle()

    before = resolve_quota(session, uid, now=target)
    reserved = False
    if before.tier == DEFAULT_PLAN_TIER:
        if before.remaining <= 0:
            log_event(logger, E.QUOTA_EXCEED, user_id=uid, used=before.used_today, limit=before.daily_limit)
            raise QuotaExceeded(before.tier, before.daily_limit, before.used_today)
        if not quota_store.try_reserve(session, uid, before.daily_limit, now=target):
            # 并发请求抢先用完了额度
            log_event(logger, E.QUOTA_EXCEED, user_id=uid, used=before.daily_limit, limit=before.daily_limit, race=True)
            raise QuotaExceeded(before.tier, before.daily_limit, before.daily_limit)
        reserved = True
        log_event(logger, E.QUOTA_RESERVE, user_id=uid, limit=before.daily_limit)

    log_event(logger, E.AI_GENERATE_START, user_id=uid, tier=before.tier, niche=payload.get("niche", ""))
    try:
        content = oracle.generate(payload)
    except OracleError as e:
        log_event(logger, E.AI_GENERATE_FAIL, level="warning", user_id=uid, code=e.error_code, reason=e.message)
        if reserved:
            _release_reservation(session, uid, target, e.error_code)
        raise
    except Exception as e:
        logger.exception("AI 调用出现未分类异常 user=%s", uid)
        if reserved:
            _release_reservation(session, uid, target, type(e).__name__)
        raise OracleError(f"AI generation failed: {e}")

    if reserved:
        log_event(logger, E.QUOTA_CONSUME, user_id=uid, tier=before.tier)
    else:
        try:
            quota_store.increment(session, uid, now=target)
            log_event(logger, E.QUOTA_CONSUME, user_id=uid, tier=before.tier)
        except StoreUnavailable:
            log_event(logger, E.QUOTA_CONSUME_FAIL, level="error", user_id=uid, tier=before.tier)

    usage = _snapshot_after(session, uid, before, target)
    log_event(
        logger,
        E.AI_GENERATE_COMPLETE,
        user_id=uid,
        captions=len(content.get("captions") or []),
        used=usage.used_today,
        remaining=usage.remaining,
    )
    return {"content": content, "usage": usage}
