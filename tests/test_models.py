import pytest
from pydantic import ValidationError

from models import (
    AvatarGenerateRequest,
    Generation,
    InfiniteTalkGenerateRequest,
    LipsyncMetadata,
    Sora2GenerateRequest,
    Veo3GenerateRequest,
    is_allowed_media_url,
    parse_metadata,
)

MEDIA = "https://abc.supabase.co/storage/v1/object/public/uploads"


def test_metadata_variant_follows_tool():
    metadata = parse_metadata("lipsync", {"audio_duration": 4.5, "task_id": "np-1", "custom": "kept"})

    assert isinstance(metadata, LipsyncMetadata)
    assert metadata.task_id == "np-1"
    assert metadata.model_dump()["custom"] == "kept"


def test_generation_row_round_trips_metadata():
    generation = Generation(
        id="g1", user_id="u1", tool="veo3", status="processing", credits_used=20,
        metadata={"task_id": "t1", "model": "veo-3.1-fast", "prompt": "x"},
    )

    assert generation.task_id == "t1"
    assert generation.metadata_dict() == {"task_id": "t1", "model": "veo-3.1-fast", "prompt": "x", "poll_errors": 0}
    assert generation.detail()["model"] == "veo-3.1-fast"


def test_prompt_is_sanitized():
    request = Sora2GenerateRequest(prompt="  hello\x00 world\x07  ")
    assert request.prompt == "hello world"

    with pytest.raises(ValidationError):
        Sora2GenerateRequest(prompt="\x00\x01")


def test_veo3_pricing_and_model_name():
    fast = Veo3GenerateRequest(prompt="x")
    standard = Veo3GenerateRequest(prompt="x", speed="standard", aspect_ratio="landscape",
                                   image_url=f"{MEDIA}/first.png")

    assert (fast.credits_required(), fast.model_name) == (20, "veo-3.1-fast")
    assert (standard.credits_required(), standard.model_name) == (35, "veo-3.1-landscape-fl")


def test_per_second_pricing_rounds_up():
    request = InfiniteTalkGenerateRequest(
        image_url=f"{MEDIA}/face.png", audio_url=f"{MEDIA}/voice.mp3", audio_duration=2.1,
    )
    assert request.credits_required() == 24


def test_reference_images_are_capped():
    request = AvatarGenerateRequest(prompt="x", reference_images=[f"{MEDIA}/{i}.png" for i in range(20)])

    assert len(request.reference_images) == 14
    assert request.credits_required() == 7


@pytest.mark.parametrize("url,allowed", [
    (f"{MEDIA}/a.png", True),
    ("https://bucket.s3.amazonaws.com/a.png", True),
    ("data:image/png;base64,iVBORw0KGgo=", True),
    ("http://abc.supabase.co/a.png", False),
    ("https://evil.com/a.png", False),
    ("https://supabase.co.evil.com/a.png", False),
    ("data:text/html;base64,PHNjcmlwdD4=", False),
])
def test_media_url_allow_list(url, allowed):
    assert is_allowed_media_url(url) is allowed
