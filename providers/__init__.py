"""Provider adapters, one per generation tool"""
from typing import Dict, Optional

from .base import ProviderAdapter, ProviderTaskStatus, SubmitResult
from .infinitetalk import InfiniteTalkAdapter
from .lipsync import LipsyncAdapter
from .nanobanana import NanoBananaAdapter
from .sora2 import Sora2Adapter
from .veo3 import Veo3Adapter

ADAPTER_CLASSES = {
    "sora2": Sora2Adapter,
    "veo3": Veo3Adapter,
    "lipsync": LipsyncAdapter,
    "infinitetalk": InfiniteTalkAdapter,
    "avatar": NanoBananaAdapter,
}

_adapters: Dict[str, ProviderAdapter] = {}


def get_adapter(tool: str) -> Optional[ProviderAdapter]:
    """Get or create the adapter singleton for a tool"""
    if tool not in ADAPTER_CLASSES:
        return None
    if tool not in _adapters:
        _adapters[tool] = ADAPTER_CLASSES[tool]()
    return _adapters[tool]


__all__ = [
    'ProviderAdapter',
    'ProviderTaskStatus',
    'SubmitResult',
    'ADAPTER_CLASSES',
    'get_adapter',
]
