import time
from threading import Thread

from core.config import cfg
from core.db import DB
from core.billing_service import sweep_expired_subscriptions
from core.log import get_logger, trace_ctx
from core.events import log_event, E

logger = get_logger(__name__)


def _sweep_interval() -> int:
    try:
        value = int(cfg.get("billing.subscription_sweep_interval_seconds", 3600))
    except (TypeError, ValueError):
        value = 3600
    return max(300, value)


def run_sweep_once(limit: int = 1000) -> dict:
    log_event(logger, E.BILLING_SWEEP_START, limit=limit)
    with DB.session_scope() as session:
        result = sweep_expired_subscriptions(session=session, limit=limit)
    log_event(logger, E.BILLING_SWEEP_COMPLETE, total=result.get("total", 0))
    return result


def _worker_loop():
    interval = _sweep_interval()
    while True:
        with trace_ctx():
            try:
                run_sweep_once()
            except Exception:
                logger.exception("订阅到期扫描异常")
        time.sleep(interval)


def start_subscription_sweep_worker():
    t = Thread(target=_worker_loop, name="subscription-sweep", daemon=True)
    t.start()
    return t
