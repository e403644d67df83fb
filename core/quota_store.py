"""
每日用量计数（daily_usage）

generation_count 只在这里被修改，而且每次修改都是单条原子语句：
    INSERT ... ON CONFLICT (user_id, usage_date) DO UPDATE SET generation_count = generation_count + 1
不存在“先读再写”，并发请求不会丢失更新。带上限的版本把上限写进 DO UPDATE 的 WHERE，
超过上限时影响行数为 0。
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.errors import StoreUnavailable
from core.log import get_logger
from core.events import log_event, E
from core.models.daily_usage import DailyUsage

logger = get_logger(__name__)


def usage_day(now: Optional[datetime] = None) -> date:
    return (now or datetime.now()).date()


def _dialect_insert(session: Session):
    name = session.get_bind().dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise StoreUnavailable(f"Unsupported database dialect: {name}")
    return insert(DailyUsage.__table__)


def _store_failure(session: Session, action: str, user_id: str, exc: Exception) -> StoreUnavailable:
    try:
        session.rollback()
    except SQLAlchemyError:
        pass
    log_event(logger, E.QUOTA_STORE_UNAVAILABLE, level="error", action=action, user_id=user_id, reason=exc)
    return StoreUnavailable()


def get_used(session: Session, user_id: str, usage_date: date) -> int:
    try:
        row = session.query(DailyUsage.generation_count).filter(
            DailyUsage.user_id == user_id,
            DailyUsage.usage_date == usage_date,
        ).first()
    except SQLAlchemyError as e:
        raise _store_failure(session, "read", user_id, e)
    return max(0, int(row[0] or 0)) if row else 0


def _upsert_increment(session: Session, user_id: str, usage_date: date, limit: Optional[int], now: datetime) -> int:
    table = DailyUsage.__table__
    stmt = _dialect_insert(session).values(
        user_id=user_id,
        usage_date=usage_date,
        generation_count=1,
        created_at=now,
        updated_at=now,
    )
    update_kwargs = {
        "index_elements": [table.c.user_id, table.c.usage_date],
        "set_": {
            "generation_count": table.c.generation_count + 1,
            "updated_at": now,
        },
    }
    if limit is not None:
        update_kwargs["where"] = table.c.generation_count < limit
    result = session.execute(stmt.on_conflict_do_update(**update_kwargs))
    session.commit()
    return int(result.rowcount or 0)


def try_reserve(session: Session, user_id: str, limit: int, now: Optional[datetime] = None) -> bool:
    """
    带上限的原子 +1：当天计数 < limit 时加一并返回 True，否则不改动并返回 False。

    免费用户在调用 AI 之前先占用一次额度，K 个并发请求最多只有 remaining 个能拿到。
    """
    target = now or datetime.now()
    if int(limit) <= 0:
        return False
    try:
        affected = _upsert_increment(session, user_id, usage_day(target), int(limit), target)
    except SQLAlchemyError as e:
        raise _store_failure(session, "reserve", user_id, e)
    return affected == 1


def increment(session: Session, user_id: str, now: Optional[datetime] = None) -> None:
    """不设上限的原子 +1（付费用户记账用）。"""
    target = now or datetime.now()
    try:
        _upsert_increment(session, user_id, usage_day(target), None, target)
    except SQLAlchemyError as e:
        raise _store_failure(session, "increment", user_id, e)


def release(session: Session, user_id: str, usage_date: date, now: Optional[datetime] = None) -> bool:
    """撤销一次占用（AI 调用失败时），计数不会减到 0 以下。"""
    target = now or datetime.now()
    stmt = (
        update(DailyUsage)
        .where(
            DailyUsage.user_id == user_id,
            DailyUsage.usage_date == usage_date,
            DailyUsage.generation_count > 0,
        )
        .values(generation_count=DailyUsage.generation_count - 1, updated_at=target)
        .execution_options(synchronize_session=False)
    )
    try:
        result = session.execute(stmt)
        session.commit()
    except SQLAlchemyError as e:
        raise _store_failure(session, "release", user_id, e)
    return int(result.rowcount or 0) == 1
