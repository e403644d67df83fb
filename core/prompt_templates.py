"""
文案/话题标签提示词模板
"""

from typing import Dict, List, Optional, Tuple

MOODS = (
    "playful",
    "professional",
    "inspirational",
    "casual",
    "energetic",
    "motivational",
    "educational",
    "celebratory",
)

PLATFORM_GUIDANCE = {
    "all": "Instagram, TikTok, and Twitter",
    "instagram": "Instagram (focus on visual content, aesthetics, and community)",
    "tiktok": "TikTok (focus on viral trends, challenges, and entertainment)",
    "twitter": "Twitter (focus on conversations, news, and concise messaging)",
}

CAPTION_LENGTH_HINTS = {
    "short": "short (under 80 characters)",
    "medium": "medium (1-2 sentences)",
    "long": "long (3-4 sentences, storytelling)",
}

CAPTION_VARIATIONS = 5


def _length_instruction(caption_lengths: Optional[Dict[str, bool]]) -> str:
    selected = [k for k in ("short", "medium", "long") if (caption_lengths or {}).get(k)]
    if not selected:
        return "- Keep captions concise (1-3 sentences)"
    hints = ", ".join(CAPTION_LENGTH_HINTS[k] for k in selected)
    return f"- Mix these caption lengths across the variations: {hints}"


def _language_instruction(language: str) -> str:
    code = str(language or "en").strip().lower()
    if code and code != "en":
        return f"- Generate all captions in {code} language"
    return "- Generate captions in English"


def build_caption_prompt(payload: Dict) -> Tuple[str, str]:
    """返回 (system_prompt, user_prompt)；图片由调用方以 image_url 形式附加。"""
    mood = payload.get("mood") or "casual"
    niche = payload.get("niche") or ""
    topic = str(payload.get("topic") or "").strip()
    website = str(payload.get("website") or "").strip()
    has_image = bool(payload.get("imageData"))

    lines: List[str] = [
        "You are a creative social media content expert. Generate engaging captions and relevant "
        "hashtags for Instagram, Twitter, and other platforms.",
        "",
        "When generating:",
        f"- Captions should be {mood} in tone",
        f"- Content should be relevant to the {niche} niche",
    ]
    if website:
        lines.append(f"- Include or reference the website: {website}")
    if has_image:
        lines.append("- Base the captions on what you see in the image/video provided")
    lines.extend([
        _length_instruction(payload.get("captionLengths")),
        "- Include 8-12 relevant, trending hashtags",
        "- Make hashtags specific and effective for reach",
        f"- Generate {CAPTION_VARIATIONS} DIFFERENT caption variations with the same hashtags",
        _language_instruction(payload.get("language")),
        "",
        "Return ONLY a JSON object with this exact structure:",
        '{"captions": ["Caption 1", "Caption 2", "Caption 3", "Caption 4", "Caption 5"], '
        '"hashtags": ["hashtag1", "hashtag2"]}',
    ])
    system_prompt = "\n".join(lines)

    if topic:
        user_prompt = f"Generate {CAPTION_VARIATIONS} different {mood} social media captions about: {topic} (niche: {niche})"
    else:
        user_prompt = f"Generate {CAPTION_VARIATIONS} different {mood} social media captions for {niche} niche"
    if has_image:
        user_prompt = f"Analyze this image/video and {user_prompt[0].lower()}{user_prompt[1:]}"
    return system_prompt, user_prompt


def build_hashtag_prompt(niche: str, mood: str, platform: str) -> Tuple[str, str]:
    guidance = PLATFORM_GUIDANCE.get(platform, PLATFORM_GUIDANCE["all"])
    system_prompt = (
        "You are a social media expert specializing in trending hashtags. Generate 8-10 currently "
        "trending and relevant hashtags for the given niche, mood, and platform. Focus on:\n"
        f"- Popular hashtags that are actively trending on {guidance}\n"
        "- Niche-specific hashtags with good engagement\n"
        "- Mix of broad and specific hashtags\n"
        "- Hashtags that match the mood/tone\n"
        "- Include the # symbol in each hashtag\n\n"
        "Return ONLY a JSON object with this exact structure:\n"
        '{"hashtags": ["#hashtag1", "#hashtag2"]}'
    )
    user_prompt = (
        "Generate trending hashtags for:\n"
        f"Niche: {niche}\nMood: {mood}\nPlatform: {guidance}\n\n"
        f"Provide 8-10 trending hashtags optimized for {guidance}."
    )
    return system_prompt, user_prompt
