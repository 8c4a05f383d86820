import base64
import json

import httpx
import pytest

from errors import ProviderFailure, ProviderTransient, StorageFailure
from models import (
    AvatarGenerateRequest,
    InfiniteTalkGenerateRequest,
    LipsyncGenerateRequest,
    Sora2GenerateRequest,
    Veo3GenerateRequest,
)
from providers import get_adapter
from providers.infinitetalk import InfiniteTalkAdapter
from providers.lipsync import LipsyncAdapter
from providers.nanobanana import NanoBananaAdapter
from providers.sora2 import Sora2Adapter
from providers.veo3 import Veo3Adapter

MEDIA = "https://abc.supabase.co/storage/v1/object/public/uploads"


def make(adapter_cls, handler, **kwargs):
    return adapter_cls(
        api_key="test-key",
        timeout=5,
        max_retries=kwargs.pop("max_retries", 2),
        transport=httpx.MockTransport(handler),
        retry_delay=0,
        **kwargs,
    )


# =============================================
# SORA 2 / VEO 3 (Laozhang)
# =============================================

@pytest.mark.asyncio
async def test_sora2_submit_sends_model_and_options():
    seen = {}

    def handler(request: httpx.Request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "video_123", "status": "queued"})

    adapter = make(Sora2Adapter, handler)
    result = await adapter.submit(Sora2GenerateRequest(prompt="a lighthouse", seconds=10, size="720x1280"))

    assert result.task_ref == "video_123"
    assert result.status is None
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"] == {"model": "sora-2", "prompt": "a lighthouse", "size": "720x1280", "seconds": "10"}


@pytest.mark.asyncio
async def test_sora2_image_to_video_uses_multipart():
    image = "data:image/png;base64," + base64.b64encode(b"\x89PNGdata").decode()
    seen = {}

    def handler(request: httpx.Request):
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = request.content
        return httpx.Response(200, json={"task_id": "video_9"})

    adapter = make(Sora2Adapter, handler)
    result = await adapter.submit(Sora2GenerateRequest(prompt="animate this", image_url=image))

    assert result.task_ref == "video_9"
    assert seen["content_type"].startswith("multipart/form-data")
    assert b"input_reference" in seen["body"]
    assert b"\x89PNGdata" in seen["body"]


@pytest.mark.asyncio
async def test_veo3_model_name_carries_options():
    seen = {}

    def handler(request: httpx.Request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"id": "veo_1"}})

    adapter = make(Veo3Adapter, handler)
    result = await adapter.submit(Veo3GenerateRequest(prompt="desert", aspect_ratio="landscape", speed="fast"))

    assert result.task_ref == "veo_1"
    assert seen["body"]["model"] == "veo-3.1-landscape-fast"


@pytest.mark.asyncio
async def test_laozhang_status_mapping():
    responses = {
        "t-queued": {"status": "queued"},
        "t-running": {"status": "in_progress", "progress": 42},
        "t-done": {"status": "completed", "video_url": "/files/v.mp4", "duration": 8, "resolution": "720p"},
        "t-failed": {"status": "failed", "error": {"message": "Content policy violation"}},
    }

    def handler(request: httpx.Request):
        task = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(200, json=responses[task])

    adapter = make(Veo3Adapter, handler)

    assert (await adapter.get_status("t-queued")).state == "created"
    running = await adapter.get_status("t-running")
    assert (running.state, running.progress) == ("processing", 42)

    done = await adapter.get_status("t-done")
    assert done.state == "completed"
    assert done.result_url == "https://api.laozhang.ai/files/v.mp4"
    assert done.extra == {"duration": 8, "resolution": "720p"}

    failed = await adapter.get_status("t-failed")
    assert failed.state == "failed"
    assert failed.error == "Content policy violation"


@pytest.mark.asyncio
async def test_completed_without_url_resolves_content_redirect():
    def handler(request: httpx.Request):
        if request.url.path.endswith("/content"):
            return httpx.Response(302, headers={"location": "https://cdn.laozhang.ai/final.mp4"})
        if request.url.host == "cdn.laozhang.ai":
            return httpx.Response(200, content=b"video")
        return httpx.Response(200, json={"status": "completed"})

    adapter = make(Sora2Adapter, handler)
    status = await adapter.get_status("video_1")

    assert status.result_url == "https://cdn.laozhang.ai/final.mp4"


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_transient():
    calls = []

    def handler(request: httpx.Request):
        calls.append(request)
        return httpx.Response(503, json={"error": {"message": "overloaded"}})

    adapter = make(Sora2Adapter, handler, max_retries=2)

    with pytest.raises(ProviderTransient):
        await adapter.get_status("video_1")
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retry_recovers_after_transient_error():
    calls = []

    def handler(request: httpx.Request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(429, json={"error": "rate limited"})
        return httpx.Response(200, json={"status": "in_progress", "progress": 5})

    adapter = make(Sora2Adapter, handler)
    status = await adapter.get_status("video_1")

    assert status.state == "processing"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_client_errors_are_failures_without_retry():
    calls = []

    def handler(request: httpx.Request):
        calls.append(request)
        return httpx.Response(400, json={"error": {"message": "prompt too long"}})

    adapter = make(Sora2Adapter, handler)

    with pytest.raises(ProviderFailure, match="prompt too long"):
        await adapter.submit(Sora2GenerateRequest(prompt="x"))
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_timeouts_are_transient():
    def handler(request: httpx.Request):
        raise httpx.ReadTimeout("timed out", request=request)

    adapter = make(Sora2Adapter, handler, max_retries=0)

    with pytest.raises(ProviderTransient):
        await adapter.get_status("video_1")


@pytest.mark.asyncio
async def test_task_creation_is_sent_once_on_timeout():
    calls = []

    def handler(request: httpx.Request):
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    adapter = make(Sora2Adapter, handler, max_retries=3)

    with pytest.raises(ProviderTransient):
        await adapter.submit(Sora2GenerateRequest(prompt="a lighthouse"))
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_missing_api_key_is_a_failure():
    adapter = Sora2Adapter(api_key="", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    adapter.api_key = None

    with pytest.raises(ProviderFailure):
        await adapter.get_status("video_1")


# =============================================
# LIPSYNC (NewportAI)
# =============================================

@pytest.mark.asyncio
async def test_lipsync_submit_and_poll():
    def handler(request: httpx.Request):
        body = json.loads(request.content)
        if request.url.path.endswith("/async/lipsync"):
            assert body["srcVideoUrl"] == f"{MEDIA}/face.mp4"
            return httpx.Response(200, json={"code": 0, "data": {"taskId": "np-1"}})
        assert body == {"taskId": "np-1"}
        return httpx.Response(200, json={
            "code": 0,
            "data": {
                "task": {"status": 3, "executionTime": 41},
                "videos": [{"videoUrl": "https://np.cdn/out.mp4"}],
            },
        })

    adapter = make(LipsyncAdapter, handler)
    submitted = await adapter.submit(LipsyncGenerateRequest(
        video_url=f"{MEDIA}/face.mp4", audio_url=f"{MEDIA}/voice.mp3", audio_duration=9,
    ))
    status = await adapter.get_status(submitted.task_ref)

    assert submitted.task_ref == "np-1"
    assert status.state == "completed"
    assert status.result_url == "https://np.cdn/out.mp4"
    assert status.extra == {"execution_time": 41}


@pytest.mark.asyncio
async def test_lipsync_rejection_and_failed_task():
    def handler(request: httpx.Request):
        if request.url.path.endswith("/async/lipsync"):
            return httpx.Response(200, json={"code": 1001, "message": "invalid video"})
        return httpx.Response(200, json={"code": 0, "data": {"task": {"status": 4, "reason": "no face found"}}})

    adapter = make(LipsyncAdapter, handler)

    with pytest.raises(ProviderFailure, match="invalid video"):
        await adapter.submit(LipsyncGenerateRequest(
            video_url=f"{MEDIA}/face.mp4", audio_url=f"{MEDIA}/voice.mp3", audio_duration=3,
        ))
    status = await adapter.get_status("np-2")
    assert status.state == "failed"
    assert status.error == "no face found"


# =============================================
# INFINITETALK (WaveSpeed)
# =============================================

@pytest.mark.asyncio
async def test_infinitetalk_submit_and_poll():
    def handler(request: httpx.Request):
        if request.method == "POST":
            body = json.loads(request.content)
            assert body["resolution"] == "480p"
            return httpx.Response(200, json={"code": 200, "data": {"id": "ws-7", "status": "created"}})
        return httpx.Response(200, json={
            "code": 200,
            "data": {"id": "ws-7", "status": "completed", "outputs": ["https://ws.cdn/talk.mp4"]},
        })

    adapter = make(InfiniteTalkAdapter, handler)
    submitted = await adapter.submit(InfiniteTalkGenerateRequest(
        image_url=f"{MEDIA}/face.png", audio_url=f"{MEDIA}/voice.mp3", audio_duration=4, resolution="480p",
    ))
    status = await adapter.get_status(submitted.task_ref)

    assert submitted.task_ref == "ws-7"
    assert status.state == "completed"
    assert status.result_url == "https://ws.cdn/talk.mp4"


@pytest.mark.asyncio
async def test_infinitetalk_error_code_on_poll_is_transient():
    adapter = make(InfiniteTalkAdapter, lambda r: httpx.Response(200, json={"code": 500, "message": "busy"}))

    with pytest.raises(ProviderTransient):
        await adapter.get_status("ws-7")


# =============================================
# NANO BANANA (synchronous)
# =============================================

@pytest.mark.asyncio
async def test_nanobanana_returns_completed_artifact():
    png = b"\x89PNG\r\n\x1a\nimage"

    def handler(request: httpx.Request):
        body = json.loads(request.content)
        assert body["generationConfig"]["imageConfig"] == {"aspectRatio": "9:16", "imageSize": "2K"}
        return httpx.Response(200, json={
            "responseId": "resp-1",
            "candidates": [{"content": {"parts": [{"inlineData": {
                "mimeType": "image/png",
                "data": base64.b64encode(png).decode(),
            }}]}}],
        })

    adapter = make(NanoBananaAdapter, handler)
    result = await adapter.submit(AvatarGenerateRequest(prompt="a knight", aspect_ratio="9:16", resolution="2K"))

    assert result.task_ref == "resp-1"
    assert result.status.state == "completed"
    assert result.status.artifact == png
    assert result.status.content_type == "image/png"


@pytest.mark.asyncio
async def test_nanobanana_is_not_retried():
    calls = []

    def handler(request: httpx.Request):
        calls.append(request)
        return httpx.Response(503, json={"error": "unavailable"})

    adapter = make(NanoBananaAdapter, handler, max_retries=3)

    with pytest.raises(ProviderTransient):
        await adapter.submit(AvatarGenerateRequest(prompt="a knight"))
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_nanobanana_without_image_is_a_failure():
    adapter = make(NanoBananaAdapter, lambda r: httpx.Response(200, json={"candidates": []}))

    with pytest.raises(ProviderFailure):
        await adapter.submit(AvatarGenerateRequest(prompt="a knight"))


# =============================================
# ARTIFACT DOWNLOAD
# =============================================

@pytest.mark.asyncio
async def test_fetch_artifact_returns_bytes_and_type():
    adapter = make(Sora2Adapter, lambda r: httpx.Response(
        200, content=b"video-bytes", headers={"content-type": "video/mp4; charset=binary"}
    ))

    data, content_type = await adapter.fetch_artifact("https://cdn.test/v.mp4")

    assert data == b"video-bytes"
    assert content_type == "video/mp4"


@pytest.mark.asyncio
async def test_fetch_artifact_enforces_size_cap():
    adapter = make(Sora2Adapter, lambda r: httpx.Response(200, content=b"x" * 2048))

    with pytest.raises(StorageFailure):
        await adapter.fetch_artifact("https://cdn.test/v.mp4", max_bytes=1024)


@pytest.mark.asyncio
async def test_fetch_artifact_http_error():
    adapter = make(Sora2Adapter, lambda r: httpx.Response(404))

    with pytest.raises(StorageFailure):
        await adapter.fetch_artifact("https://cdn.test/missing.mp4")


def test_registry_returns_one_adapter_per_tool():
    assert isinstance(get_adapter("avatar"), NanoBananaAdapter)
    assert get_adapter("sora2") is get_adapter("sora2")
    assert get_adapter("unknown") is None
