"""
Bearer token 校验

token 由外部身份服务签发（HS256 JWT，sub = user id），这里只负责校验；
create_access_token 留给运维脚本和测试使用。
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import jwt
from fastapi import Request

from core.config import cfg
from core.errors import Unauthenticated
from core.log import get_logger
from core.events import log_event, E

logger = get_logger(__name__)

SECRET_KEY = str(cfg.get("secret_key", "change-me-in-production"))
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(cfg.get("token_expire_minutes", 60 * 24))


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    return jwt.encode({"sub": str(user_id), "exp": expire}, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Dict[str, str]:
    if not token:
        raise Unauthenticated()
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        log_event(logger, E.AUTH_TOKEN_REJECT, level="warning", reason="expired")
        raise Unauthenticated("Session expired")
    except jwt.InvalidTokenError as e:
        log_event(logger, E.AUTH_TOKEN_REJECT, level="warning", reason=type(e).__name__)
        raise Unauthenticated()
    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise Unauthenticated()
    return {"user_id": user_id}


def parse_bearer(authorization: str) -> str:
    text = str(authorization or "").strip()
    if not text.lower().startswith("bearer "):
        return ""
    return text[7:].strip()


async def get_current_user(request: Request) -> Dict[str, str]:
    """FastAPI 依赖：解析 Authorization: Bearer <token>。"""
    token = parse_bearer(request.headers.get("Authorization", ""))
    user = decode_access_token(token)
    log_event(logger, E.AUTH_TOKEN_VERIFY, level="debug", user_id=user["user_id"])
    return user
