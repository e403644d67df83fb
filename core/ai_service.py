"""
AI 文案生成（captioning oracle）

对外只暴露 CaptioningOracle 接口：
    generate(payload) -> {"captions": [...], "hashtags": [...]}
    trending_hashtags(niche, mood, platform) -> [...]

默认实现走 OpenAI 兼容的 /chat/completions；base_url 以 mock:// 开头或
api_key 为 mock 时返回固定的模拟内容，供联调与自动化测试使用。
上游 429 → RateLimited，402 → CreditsDepleted，其余一律 OracleError。
"""

import json
import os
import re
from typing import Any, Dict, List, Optional

import requests

from core.config import cfg
from core.errors import CreditsDepleted, OracleError, RateLimited
from core.log import get_logger
from core.prompt_templates import build_caption_prompt, build_hashtag_prompt

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://ai.gateway.lovable.dev/v1"
DEFAULT_MODEL = "google/gemini-2.5-flash"
MOCK_KEYS = ("mock", "mock-key", "test-mock")

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_BARE_OBJECT = re.compile(r"\{[\s\S]*\}")


def _mask_key(api_key: str) -> str:
    key = str(api_key or "")
    if len(key) <= 8:
        return "*" * len(key)
    return f"{key[:4]}{'*' * (len(key) - 8)}{key[-4:]}"


def _platform_provider_config() -> Dict[str, Any]:
    base_url = str(
        cfg.get("ai.provider.base_url", "")
        or os.getenv("AI_PROVIDER_BASE_URL", "")
        or DEFAULT_BASE_URL
    ).strip()
    model_name = str(cfg.get("ai.provider.model_name", "") or DEFAULT_MODEL).strip()
    api_key = str(
        cfg.get("ai.provider.api_key", "")
        or os.getenv("AI_PROVIDER_API_KEY", "")
        or os.getenv("LOVABLE_API_KEY", "")
    ).strip()
    try:
        temperature = int(cfg.get("ai.provider.temperature", 80))
    except (TypeError, ValueError):
        temperature = 80
    try:
        timeout = float(cfg.get("ai.provider.timeout_seconds", 120))
    except (TypeError, ValueError):
        timeout = 120.0
    return {
        "base_url": base_url,
        "model_name": model_name,
        "api_key": api_key,
        "temperature": max(0, min(100, temperature)),
        "timeout": max(1.0, timeout),
    }


def _is_mock(runtime: Dict[str, Any]) -> bool:
    return str(runtime.get("base_url") or "").lower().startswith("mock://") or \
        str(runtime.get("api_key") or "").lower() in MOCK_KEYS


def extract_json_object(content: str) -> Dict[str, Any]:
    text = str(content or "").strip()
    candidates = []
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    candidates.append(text)
    bare = _BARE_OBJECT.search(text)
    if bare:
        candidates.append(bare.group(0))
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except (TypeError, ValueError):
            continue
        if isinstance(data, dict):
            return data
    raise OracleError("Failed to parse AI response")


def _clean_list(values: Any, limit: int = 20) -> List[str]:
    if not isinstance(values, list):
        return []
    items = [str(v).strip() for v in values if str(v or "").strip()]
    return items[:limit]


def call_openai_compatible(
    system_prompt: str,
    user_prompt: str,
    image_data: str = "",
    runtime: Optional[Dict[str, Any]] = None,
) -> str:
    runtime = runtime or _platform_provider_config()
    api_key = str(runtime.get("api_key") or "").strip()
    if not api_key:
        raise OracleError("AI provider is not configured")

    if image_data:
        user_message = {
            "role": "user",
            "content": [
                {"type": "text", "text": user_prompt},
                {"type": "image_url", "image_url": {"url": image_data}},
            ],
        }
    else:
        user_message = {"role": "user", "content": user_prompt}
    payload = {
        "model": runtime.get("model_name") or DEFAULT_MODEL,
        "temperature": float(runtime.get("temperature", 80)) / 100.0,
        "messages": [{"role": "system", "content": system_prompt}, user_message],
    }
    endpoint = f"{str(runtime.get('base_url') or DEFAULT_BASE_URL).rstrip('/')}/chat/completions"
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json; charset=utf-8",
    }
    try:
        resp = requests.post(
            endpoint,
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers=headers,
            timeout=runtime.get("timeout", 120),
        )
    except requests.RequestException as e:
        raise OracleError(f"AI provider request failed: {e}")

    if resp.status_code == 429:
        raise RateLimited()
    if resp.status_code == 402:
        raise CreditsDepleted()
    if resp.status_code >= 400:
        logger.error("AI 接口返回错误 status=%s key=%s body=%s", resp.status_code, _mask_key(api_key), resp.text[:300])
        raise OracleError(f"AI API error: {resp.status_code}")

    try:
        data = resp.json()
    except ValueError:
        raise OracleError("AI provider returned invalid JSON")
    choices = data.get("choices") or []
    content = ""
    if choices:
        content = str((choices[0].get("message") or {}).get("content") or "").strip()
    if not content:
        raise OracleError("No content generated")
    return content


class CaptioningOracle:
    """外部 AI 服务的抽象；网关只依赖这两个方法。"""

    def generate(self, payload: Dict[str, Any]) -> Dict[str, List[str]]:
        raise NotImplementedError

    def trending_hashtags(self, niche: str, mood: str, platform: str = "all") -> List[str]:
        raise NotImplementedError


class PlatformOracle(CaptioningOracle):
    def __init__(self, runtime: Optional[Dict[str, Any]] = None):
        self.runtime = runtime

    def _runtime(self) -> Dict[str, Any]:
        return self.runtime or _platform_provider_config()

    def generate(self, payload: Dict[str, Any]) -> Dict[str, List[str]]:
        runtime = self._runtime()
        if _is_mock(runtime):
            return _mock_captions(payload)
        system_prompt, user_prompt = build_caption_prompt(payload)
        content = call_openai_compatible(
            system_prompt,
            user_prompt,
            image_data=str(payload.get("imageData") or ""),
            runtime=runtime,
        )
        data = extract_json_object(content)
        captions = _clean_list(data.get("captions"))
        if not captions:
            raise OracleError("AI response did not contain captions")
        return {"captions": captions, "hashtags": _clean_list(data.get("hashtags"))}

    def trending_hashtags(self, niche: str, mood: str, platform: str = "all") -> List[str]:
        runtime = self._runtime()
        if _is_mock(runtime):
            return _mock_hashtags(niche, mood, platform)
        system_prompt, user_prompt = build_hashtag_prompt(niche, mood, platform)
        content = call_openai_compatible(system_prompt, user_prompt, runtime=runtime)
        data = extract_json_object(content)
        if not isinstance(data.get("hashtags"), list):
            raise OracleError("Invalid hashtags format from AI")
        return _clean_list(data.get("hashtags"))


def _slug(text: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "", str(text or "").title()) or "Content"


def _mock_captions(payload: Dict[str, Any]) -> Dict[str, List[str]]:
    niche = str(payload.get("niche") or "content").strip()
    mood = str(payload.get("mood") or "casual").strip()
    topic = str(payload.get("topic") or niche).strip()
    captions = [f"[mock {mood}] {topic} idea #{i} for your {niche} audience" for i in range(1, 6)]
    tag = _slug(niche)
    hashtags = [f"#{tag}", f"#{_slug(mood)}", f"#{tag}Life", "#ContentCreator", "#InstaDaily",
                "#Trending", "#ExplorePage", "#SocialMedia"]
    return {"captions": captions, "hashtags": hashtags}


def _mock_hashtags(niche: str, mood: str, platform: str) -> List[str]:
    tag = _slug(niche)
    return [f"#{tag}", f"#{tag}Tips", f"#{_slug(mood)}Vibes", f"#{_slug(platform)}Trends",
            "#Viral", "#ForYou", "#Trending", "#CreatorCommunity"]


_default_oracle: Optional[CaptioningOracle] = None


def get_oracle() -> CaptioningOracle:
    global _default_oracle
    if _default_oracle is None:
        _default_oracle = PlatformOracle()
    return _default_oracle
