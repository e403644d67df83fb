import re
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.ai_service import get_oracle
from core.auth import get_current_user
from core.db import DB
from core.errors import OracleError
from core.events import log_event, E
from core.generation_service import perform_gated_generation
from core.log import get_logger
from core.plan_service import resolve_quota
from core.prompt_templates import MOODS, PLATFORM_GUIDANCE

logger = get_logger(__name__)

router = APIRouter(tags=["generation"])

_NICHE_PATTERN = re.compile(r"^[a-zA-Z0-9\s\-_,.!&]+$")
_WEBSITE_PATTERN = re.compile(r"^[a-zA-Z0-9\-._~:/?#\[\]@!$&'()*+,;=]*$")
_DATA_URL_PREFIXES = ("data:image/", "data:video/")
# 20MB 文件 base64 编码后的上限
MAX_IMAGE_DATA_LENGTH = 28 * 1024 * 1024


class CaptionLengths(BaseModel):
    model_config = ConfigDict(extra="forbid")

    short: bool = False
    medium: bool = False
    long: bool = False


class GenerateContentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    niche: str = Field(min_length=1, max_length=100)
    mood: str
    topic: str = Field(default="", max_length=1000)
    website: str = Field(default="", max_length=255)
    image_data: Optional[str] = Field(default=None, alias="imageData", max_length=MAX_IMAGE_DATA_LENGTH)
    language: str = Field(default="en", min_length=2, max_length=2)
    caption_lengths: Optional[CaptionLengths] = Field(default=None, alias="captionLengths")

    @field_validator("niche", "topic", "website", "language", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("niche")
    @classmethod
    def _check_niche(cls, value: str) -> str:
        if not _NICHE_PATTERN.match(value):
            raise ValueError("Niche contains invalid characters")
        return value

    @field_validator("mood")
    @classmethod
    def _check_mood(cls, value: str) -> str:
        if value not in MOODS:
            raise ValueError(f"mood must be one of {', '.join(MOODS)}")
        return value

    @field_validator("website")
    @classmethod
    def _check_website(cls, value: str) -> str:
        if not _WEBSITE_PATTERN.match(value):
            raise ValueError("Website contains invalid characters")
        return value

    @field_validator("language")
    @classmethod
    def _check_language(cls, value: str) -> str:
        if not value.isalpha():
            raise ValueError("Invalid language code")
        return value.lower()

    @field_validator("image_data")
    @classmethod
    def _check_image_data(cls, value: Optional[str]) -> Optional[str]:
        if value in (None, ""):
            return None
        if not value.startswith(_DATA_URL_PREFIXES):
            raise ValueError("imageData must be an image or video data URL")
        return value

    def to_oracle_payload(self) -> Dict:
        return {
            "niche": self.niche,
            "mood": self.mood,
            "topic": self.topic,
            "website": self.website,
            "imageData": self.image_data or "",
            "language": self.language,
            "captionLengths": self.caption_lengths.model_dump() if self.caption_lengths else None,
        }


class TrendingHashtagsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    niche: str = Field(min_length=1, max_length=100)
    mood: str = Field(max_length=50)
    platform: str = Field(default="all")

    @field_validator("platform")
    @classmethod
    def _check_platform(cls, value: str) -> str:
        if value not in PLATFORM_GUIDANCE:
            raise ValueError(f"platform must be one of {', '.join(PLATFORM_GUIDANCE)}")
        return value


def _generate(user_id: str, payload: Dict) -> Dict:
    session = DB.get_session()
    try:
        return perform_gated_generation(session, user_id, payload)
    finally:
        session.close()


def _current_usage(user_id: str) -> Dict:
    session = DB.get_session()
    try:
        return resolve_quota(session, user_id).to_dict()
    finally:
        session.close()


@router.post("/generate-content", summary="Generate captions and hashtags (quota gated)")
async def generate_content(payload: GenerateContentRequest, current_user: dict = Depends(get_current_user)):
    result = await run_in_threadpool(_generate, current_user["user_id"], payload.to_oracle_payload())
    content = result["content"]
    return {
        "captions": content.get("captions", []),
        "hashtags": content.get("hashtags", []),
        "usage": result["usage"].usage_payload(),
    }


@router.get("/usage", summary="Today's quota for the current user")
async def get_usage(current_user: dict = Depends(get_current_user)):
    return await run_in_threadpool(_current_usage, current_user["user_id"])


@router.post("/get-trending-hashtags", summary="Trending hashtags for a niche (not metered)")
async def get_trending_hashtags(payload: TrendingHashtagsRequest, current_user: dict = Depends(get_current_user)):
    try:
        hashtags = await run_in_threadpool(get_oracle().trending_hashtags, payload.niche, payload.mood, payload.platform)
    except OracleError as e:
        log_event(logger, E.AI_HASHTAGS_FAIL, level="warning", user_id=current_user["user_id"], code=e.error_code)
        return JSONResponse(status_code=e.status_code, content={**e.to_dict(), "hashtags": []})
    log_event(logger, E.AI_HASHTAGS_COMPLETE, user_id=current_user["user_id"], count=len(hashtags))
    return {"hashtags": hashtags}
