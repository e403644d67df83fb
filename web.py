import json
from typing import Any

from fastapi import FastAPI, Request, APIRouter
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apis.base import error_response, validation_error_from_pydantic
from apis.billing import router as billing_router
from apis.generation import router as generation_router
from core.config import cfg, VERSION, API_BASE
from core.db import DB
from core.errors import CaptionCraftError
from core.events import log_event, E
from core.log import get_logger, set_trace_id

logger = get_logger(__name__)


class UnicodeJSONResponse(JSONResponse):
    """自定义 JSON 响应类，确保非 ASCII 字符不被转义"""
    def render(self, content: Any) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


app = FastAPI(
    title="CaptionCraft API",
    description="Caption generation with daily quotas and Razorpay subscriptions",
    version=VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    default_response_class=UnicodeJSONResponse,
)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_custom_header(request: Request, call_next):
    trace_id = set_trace_id(request.headers.get("X-Trace-Id", ""))
    response = await call_next(request)
    response.headers["X-Version"] = VERSION
    response.headers["X-Trace-Id"] = trace_id
    response.headers["Server"] = cfg.get("app_name", "CaptionCraft")
    return response


@app.exception_handler(CaptionCraftError)
async def handle_app_error(request: Request, exc: CaptionCraftError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s %s", request.method, request.url.path, exc.error_code, exc.message)
    return UnicodeJSONResponse(status_code=exc.status_code, content=error_response(exc))


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    err = validation_error_from_pydantic(exc.errors())
    return UnicodeJSONResponse(status_code=err.status_code, content=error_response(err))


# 创建API路由分组
api_router = APIRouter(prefix=f"{API_BASE}")
api_router.include_router(generation_router)
api_router.include_router(billing_router)
app.include_router(api_router)


@app.on_event("startup")
async def ensure_tables():
    DB.create_tables()
    log_event(logger, E.SYSTEM_STARTUP, version=VERSION, api_base=API_BASE)
    if cfg.get("billing.subscription_sweep_enabled", True):
        from jobs.billing import start_subscription_sweep_worker
        start_subscription_sweep_worker()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "web:app",
        host=str(cfg.get("server.host", "0.0.0.0")),
        port=int(cfg.get("server.port", 8001)),
    )
