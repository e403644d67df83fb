"""
core/log.py: 统一日志

• 根日志器只配置一次，各模块 get_logger(__name__) 即可
• trace_id 走 ContextVar：web 层每个请求设置一次，后台线程用 trace_ctx()
• 格式: 时间 [级别] [trace_id] 模块.函数:行号 - 消息
"""

import logging
import logging.handlers
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

import colorlog

from core.config import cfg

_trace_id_var: ContextVar[str] = ContextVar("trace_id", default="-")


def _new_trace_id() -> str:
    return uuid.uuid4().hex[:8]


def set_trace_id(tid: Optional[str] = None) -> str:
    """设置当前上下文的 trace_id，返回实际值。"""
    tid = str(tid or "").strip()[:16] or _new_trace_id()
    _trace_id_var.set(tid)
    return tid


def get_trace_id() -> str:
    return _trace_id_var.get()


@contextmanager
def trace_ctx(trace_id: Optional[str] = None) -> Generator[str, None, None]:
    """后台任务用：进入时设置 trace_id，退出时恢复。"""
    token = _trace_id_var.set(str(trace_id or "").strip()[:16] or _new_trace_id())
    try:
        yield _trace_id_var.get()
    finally:
        _trace_id_var.reset(token)


_FMT = "%(asctime)s [%(levelname)-5s] [%(trace_id)s] %(name)s.%(funcName)s:%(lineno)d - %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"
_LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}
_APP_HANDLER_MARKER = "_is_app_log_handler"


class _TraceIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = _trace_id_var.get()
        return True


def _resolve_level() -> int:
    name = str(cfg.get("log.level", "INFO")).upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def setup_logging() -> None:
    """向根日志器注册 handler（幂等，uvicorn --reload 重复导入也只加一次）。"""
    root = logging.getLogger()
    if any(getattr(h, _APP_HANDLER_MARKER, False) for h in root.handlers):
        return

    level = _resolve_level()
    root.setLevel(level)
    trace_filter = _TraceIdFilter()

    console = colorlog.StreamHandler(stream=sys.stdout)
    console.setFormatter(
        colorlog.ColoredFormatter("%(log_color)s" + _FMT, datefmt=_DATE_FMT, log_colors=_LOG_COLORS)
    )
    console.setLevel(level)
    console.addFilter(trace_filter)
    setattr(console, _APP_HANDLER_MARKER, True)
    root.addHandler(console)

    log_file = str(cfg.get("log.file", "") or "")
    if log_file:
        fh = logging.handlers.RotatingFileHandler(
            f"{log_file}.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=7,
            encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(_FMT, datefmt=_DATE_FMT))
        fh.addFilter(trace_filter)
        setattr(fh, _APP_HANDLER_MARKER, True)
        root.addHandler(fh)


setup_logging()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
