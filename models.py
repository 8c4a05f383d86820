"""
Data models shared by routes, services and provider adapters.

Generation metadata is a tagged union keyed by tool: every variant carries
the lifecycle fields the reconciliation logic reads and writes, plus the
typed request parameters of its tool. Unknown keys are preserved.
"""

import re
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from config.tools_config import per_second_credits, veo3_credits, AVATAR_CREDITS, SORA2_CREDITS


GenerationStatus = Literal["pending", "processing", "completed", "failed"]
ToolName = Literal["sora2", "veo3", "lipsync", "infinitetalk", "avatar"]

TOOL_NAMES = ("sora2", "veo3", "lipsync", "infinitetalk", "avatar")
ACTIVE_STATUSES = ("pending", "processing")
TERMINAL_STATUSES = ("completed", "failed")

ALLOWED_MEDIA_DOMAINS = (
    "supabase.co",
    "supabase.in",
    "supabase.io",
    "storage.googleapis.com",
    "amazonaws.com",
    "cloudflare.com",
)

MAX_PROMPT_LENGTH = 1000
MAX_REFERENCE_IMAGES = 14

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]")
_DATA_URL = re.compile(r"^data:(image|video|audio)/[a-zA-Z0-9+.-]+;base64,")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a Postgres/ISO timestamp into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sanitize_prompt(prompt: str) -> str:
    """Strip control characters (newlines and tabs kept) and surrounding whitespace."""
    return _CONTROL_CHARS.sub("", prompt).strip()[:MAX_PROMPT_LENGTH]


def is_allowed_media_url(url: str) -> bool:
    """HTTPS URL on a known storage host, or a base64 data URL."""
    if url.startswith("data:"):
        return bool(_DATA_URL.match(url))
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme != "https" or not parsed.hostname:
        return False
    host = parsed.hostname
    return any(host == domain or host.endswith("." + domain) for domain in ALLOWED_MEDIA_DOMAINS)


def _validate_media_url(value: Optional[str], field_name: str) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    if len(value) > 2048 and not value.startswith("data:"):
        raise ValueError(f"{field_name} exceeds maximum length of 2048 characters")
    if not is_allowed_media_url(value):
        raise ValueError(
            f"Invalid {field_name}. Must be a valid HTTPS URL from allowed domains or a base64 data URL"
        )
    return value


# =============================================
# CREDITS
# =============================================

class CreditBalance(BaseModel):
    credits: int = 0
    credits_extras: int = 0
    # Purchased credits on record, even when not spendable
    credits_extras_stored: int = 0
    total: int = 0
    subscription_status: str = "inactive"
    subscription_active: bool = False


class DebitResult(BaseModel):
    previous_balance: CreditBalance
    new_balance: CreditBalance
    deducted: int
    from_subscription: int
    from_extras: int


class DebitSplit(BaseModel):
    from_subscription: int = 0
    from_extras: int = 0


class RefundSplit(BaseModel):
    to_subscription: int = 0
    to_extras: int = 0


# =============================================
# GENERATION METADATA (tagged by tool)
# =============================================

class LifecycleMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    task_id: Optional[str] = None
    progress: Optional[int] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    original_url: Optional[str] = None
    storage_error: Optional[str] = None
    refund_error: Optional[str] = None
    poll_errors: int = 0
    debit_split: Optional[DebitSplit] = None
    # Set together with the failed status, cleared once the ledger refund lands
    refund_pending: Optional[bool] = None
    refund_split: Optional[RefundSplit] = None
    # Task id the provider returned after the record was already finalised
    late_task_id: Optional[str] = None


class Sora2Metadata(LifecycleMetadata):
    tool: Literal["sora2"] = "sora2"
    prompt: Optional[str] = None
    model: str = "sora-2"
    size: Optional[str] = None
    seconds: Optional[int] = None
    image_url: Optional[str] = None


class Veo3Metadata(LifecycleMetadata):
    tool: Literal["veo3"] = "veo3"
    prompt: Optional[str] = None
    model: Optional[str] = None
    aspect_ratio: Optional[str] = None
    speed: Optional[str] = None
    image_url: Optional[str] = None
    duration: Optional[float] = None
    resolution: Optional[str] = None


class LipsyncMetadata(LifecycleMetadata):
    tool: Literal["lipsync"] = "lipsync"
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    audio_duration: Optional[float] = None


class InfiniteTalkMetadata(LifecycleMetadata):
    tool: Literal["infinitetalk"] = "infinitetalk"
    prompt: Optional[str] = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    audio_duration: Optional[float] = None
    resolution: Optional[str] = None


class AvatarMetadata(LifecycleMetadata):
    tool: Literal["avatar"] = "avatar"
    prompt: Optional[str] = None
    model: str = "gemini-3-pro-image-preview"
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    reference_image_count: int = 0


GenerationMetadata = Annotated[
    Union[Sora2Metadata, Veo3Metadata, LipsyncMetadata, InfiniteTalkMetadata, AvatarMetadata],
    Field(discriminator="tool"),
]

_metadata_adapter = TypeAdapter(GenerationMetadata)


def parse_metadata(tool: str, raw: Optional[Dict[str, Any]]) -> LifecycleMetadata:
    """Validate a stored metadata document as the variant of its tool."""
    data = dict(raw or {})
    data["tool"] = tool
    return _metadata_adapter.validate_python(data)


def dump_metadata(metadata: LifecycleMetadata) -> Dict[str, Any]:
    """Serialize metadata for storage; the tool tag lives on the row itself."""
    return metadata.model_dump(mode="json", exclude_none=True, exclude={"tool"})


# =============================================
# GENERATION RECORD
# =============================================

class Generation(BaseModel):
    id: str
    user_id: str
    tool: ToolName
    status: GenerationStatus
    credits_used: int
    result_url: Optional[str] = None
    metadata: GenerationMetadata
    created_at: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def tag_metadata(cls, data):
        if isinstance(data, dict):
            meta = data.get("metadata") or {}
            if isinstance(meta, BaseModel):
                meta = meta.model_dump()
            data = {**data, "metadata": {**meta, "tool": data.get("tool")}}
        return data

    @property
    def task_id(self) -> Optional[str]:
        return self.metadata.task_id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def metadata_dict(self) -> Dict[str, Any]:
        return dump_metadata(self.metadata)

    def summary(self) -> Dict[str, Any]:
        """Shape used by status listings."""
        return {
            "id": self.id,
            "status": self.status,
            "result_url": self.result_url,
            "credits_used": self.credits_used,
            "created_at": self.created_at,
            "prompt": getattr(self.metadata, "prompt", None),
            "progress": self.metadata.progress,
            "error": self.metadata.error,
        }

    def detail(self) -> Dict[str, Any]:
        """Shape used when a single generation is requested."""
        return {
            **self.summary(),
            "model": getattr(self.metadata, "model", None),
            "imageUrl": getattr(self.metadata, "image_url", None),
            "task_id": self.metadata.task_id,
            "completed_at": self.metadata.completed_at,
            "failed_at": self.metadata.failed_at,
            "metadata": self.metadata_dict(),
        }


# =============================================
# REQUEST MODELS
# =============================================

class CreditsDeductRequest(BaseModel):
    amount: int = Field(gt=0)
    reason: Optional[str] = Field(default=None, max_length=500)


class CreditsRefundRequest(BaseModel):
    amount: int = Field(gt=0)
    reason: Optional[str] = Field(default=None, max_length=500)


class CreditsPurchaseRequest(BaseModel):
    pack_id: str


class LinkTaskRequest(BaseModel):
    generation_id: Optional[str] = None
    task_id: Optional[str] = None


class GenerateRequest(BaseModel):
    """Fields shared by every tool's generate endpoint."""
    skip_credit_deduction: bool = False

    def credits_required(self) -> int:
        raise NotImplementedError

    def to_metadata(self) -> Dict[str, Any]:
        raise NotImplementedError


class PromptMixin(BaseModel):
    prompt: str = Field(min_length=1, max_length=MAX_PROMPT_LENGTH)

    @field_validator("prompt")
    @classmethod
    def clean_prompt(cls, v: str) -> str:
        cleaned = sanitize_prompt(v)
        if not cleaned:
            raise ValueError("Prompt cannot be empty")
        return cleaned


class Sora2GenerateRequest(PromptMixin, GenerateRequest):
    size: Literal["1280x720", "720x1280"] = "1280x720"
    seconds: int = 15
    image_url: Optional[str] = None

    @field_validator("seconds", mode="before")
    @classmethod
    def check_seconds(cls, v):
        v = int(v)
        if v not in (10, 15):
            raise ValueError("seconds must be 10 or 15")
        return v

    @field_validator("image_url")
    @classmethod
    def check_image_url(cls, v):
        return _validate_media_url(v, "image_url")

    def credits_required(self) -> int:
        return SORA2_CREDITS

    def to_metadata(self) -> Dict[str, Any]:
        return {"prompt": self.prompt, "size": self.size, "seconds": self.seconds, "image_url": self.image_url}


class Veo3GenerateRequest(PromptMixin, GenerateRequest):
    aspect_ratio: Literal["portrait", "landscape"] = "portrait"
    speed: Literal["standard", "fast"] = "fast"
    image_url: Optional[str] = None

    @field_validator("image_url")
    @classmethod
    def check_image_url(cls, v):
        return _validate_media_url(v, "image_url")

    @property
    def model_name(self) -> str:
        """veo-3.1[-landscape][-fast][-fl]; -fl marks first/last frame image input."""
        name = "veo-3.1"
        if self.aspect_ratio == "landscape":
            name += "-landscape"
        if self.speed == "fast":
            name += "-fast"
        if self.image_url:
            name += "-fl"
        return name

    def credits_required(self) -> int:
        return veo3_credits(self.speed)

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "prompt": self.prompt,
            "model": self.model_name,
            "aspect_ratio": self.aspect_ratio,
            "speed": self.speed,
            "image_url": self.image_url,
        }


class LipsyncGenerateRequest(GenerateRequest):
    video_url: str
    audio_url: str
    audio_duration: float = Field(gt=0, le=600)

    @field_validator("video_url", "audio_url")
    @classmethod
    def check_urls(cls, v, info):
        return _validate_media_url(v, info.field_name)

    def credits_required(self) -> int:
        return per_second_credits("lipsync", self.audio_duration)

    def to_metadata(self) -> Dict[str, Any]:
        return {"video_url": self.video_url, "audio_url": self.audio_url, "audio_duration": self.audio_duration}


class InfiniteTalkGenerateRequest(GenerateRequest):
    image_url: str
    audio_url: str
    audio_duration: float = Field(gt=0, le=600)
    resolution: Literal["480p", "720p"] = "720p"
    prompt: Optional[str] = Field(default=None, max_length=MAX_PROMPT_LENGTH)

    @field_validator("image_url", "audio_url")
    @classmethod
    def check_urls(cls, v, info):
        return _validate_media_url(v, info.field_name)

    @field_validator("prompt")
    @classmethod
    def clean_prompt(cls, v):
        if v is None:
            return v
        return sanitize_prompt(v) or None

    def credits_required(self) -> int:
        return per_second_credits("infinitetalk", self.audio_duration)

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "prompt": self.prompt,
            "image_url": self.image_url,
            "audio_url": self.audio_url,
            "audio_duration": self.audio_duration,
            "resolution": self.resolution,
        }


class AvatarGenerateRequest(PromptMixin, GenerateRequest):
    aspect_ratio: Literal["1:1", "16:9", "9:16", "4:3", "3:4", "21:9", "9:21", "2:1", "1:2", "3:2", "2:3"] = "1:1"
    resolution: Literal["1K", "2K", "4K"] = "1K"
    reference_images: List[str] = Field(default_factory=list)

    @field_validator("reference_images")
    @classmethod
    def check_reference_images(cls, v: List[str]) -> List[str]:
        return [_validate_media_url(url, "reference_images") for url in v[:MAX_REFERENCE_IMAGES]]

    def credits_required(self) -> int:
        return AVATAR_CREDITS

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "prompt": self.prompt,
            "aspect_ratio": self.aspect_ratio,
            "resolution": self.resolution,
            "reference_image_count": len(self.reference_images),
        }


GENERATE_REQUEST_MODELS = {
    "sora2": Sora2GenerateRequest,
    "veo3": Veo3GenerateRequest,
    "lipsync": LipsyncGenerateRequest,
    "infinitetalk": InfiniteTalkGenerateRequest,
    "avatar": AvatarGenerateRequest,
}
