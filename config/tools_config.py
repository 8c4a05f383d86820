"""
Tool Configuration
==================
Credit pricing and storage settings for every generation tool.

Pricing:
- sora2: 20 credits per video
- veo3: 20 credits (fast) / 35 credits (standard)
- avatar (Nano Banana): 7 credits per image
- lipsync: 1 credit per started second of audio
- infinitetalk: 8 credits per started second of audio
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class ToolConfig:
    key: str
    name: str
    bucket_kind: str  # 'videos' or 'images'
    default_extension: str
    default_content_type: str
    base_cost: int = 0
    cost_per_second: int = 0


SORA2_CREDITS = 20
VEO3_FAST_CREDITS = 20
VEO3_STANDARD_CREDITS = 35
AVATAR_CREDITS = 7
LIPSYNC_CREDITS_PER_SECOND = 1
INFINITETALK_CREDITS_PER_SECOND = 8


TOOLS: Dict[str, ToolConfig] = {
    "sora2": ToolConfig("sora2", "Sora 2", "videos", "mp4", "video/mp4", base_cost=SORA2_CREDITS),
    "veo3": ToolConfig("veo3", "Veo 3.1", "videos", "mp4", "video/mp4", base_cost=VEO3_FAST_CREDITS),
    "lipsync": ToolConfig(
        "lipsync", "LipSync", "videos", "mp4", "video/mp4",
        cost_per_second=LIPSYNC_CREDITS_PER_SECOND,
    ),
    "infinitetalk": ToolConfig(
        "infinitetalk", "InfiniteTalk", "videos", "mp4", "video/mp4",
        cost_per_second=INFINITETALK_CREDITS_PER_SECOND,
    ),
    "avatar": ToolConfig("avatar", "Nano Banana Avatar", "images", "png", "image/png", base_cost=AVATAR_CREDITS),
}


def get_tool_config(tool: str) -> Optional[ToolConfig]:
    return TOOLS.get(tool)


def veo3_credits(speed: str) -> int:
    return VEO3_STANDARD_CREDITS if speed == "standard" else VEO3_FAST_CREDITS


def per_second_credits(tool: str, audio_duration: float) -> int:
    """Charge for every started second of audio (minimum one second)."""
    config = TOOLS[tool]
    seconds = max(1, math.ceil(audio_duration))
    return seconds * config.cost_per_second
