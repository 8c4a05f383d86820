"""
Nano Banana (Gemini 3 Pro Image) through Laozhang.

Synchronous: the generated image comes back inline (base64) in the create
call, so submit() returns a task reference that is already completed and
the record never needs polling.
"""

import asyncio
import base64
import binascii
import uuid

from errors import ProviderFailure
from providers.base import ProviderAdapter, ProviderTaskStatus, SubmitResult


class NanoBananaAdapter(ProviderAdapter):
    tool = "avatar"
    name = "NanoBanana"
    MODEL = "gemini-3-pro-image-preview"
    BASE_URL = f"https://api.laozhang.ai/v1beta/models/{MODEL}:generateContent"
    API_KEY_SETTING = "LAOZHANG_API_KEY"
    TIMEOUT_SETTING = "PROVIDER_SYNC_TIMEOUT_SECONDS"

    async def _reference_part(self, image_url: str):
        try:
            data, mime_type = await self._load_image(image_url)
        except ProviderFailure as e:
            print(f"⚠️ [{self.name}] Skipping reference image: {e}")
            return None
        return {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(data).decode("ascii")}}

    async def submit(self, request) -> SubmitResult:
        # Downloaded side by side so the submission fits in one download timeout
        references = await asyncio.gather(*(self._reference_part(url) for url in request.reference_images[:14]))
        parts = [{"text": request.prompt}] + [part for part in references if part]

        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseModalities": ["IMAGE"],
                "imageConfig": {
                    "aspectRatio": request.aspect_ratio,
                    "imageSize": request.resolution,
                },
            },
        }

        print(f"🎨 [{self.name}] Generating image ({request.aspect_ratio}, {request.resolution}, "
              f"{len(parts) - 1} reference images)")
        data = await self._create_task("POST", self.BASE_URL, json=payload)

        try:
            inline = data["candidates"][0]["content"]["parts"][0]["inlineData"]
        except (KeyError, IndexError, TypeError):
            inline = None
        if not inline or not inline.get("data"):
            raise ProviderFailure("No image in response")

        try:
            image_bytes = base64.b64decode(inline["data"])
        except (binascii.Error, ValueError):
            raise ProviderFailure("Invalid image data in response")

        task_ref = data.get("responseId") or f"nb-{uuid.uuid4().hex}"
        print(f"✅ [{self.name}] Image generated ({len(image_bytes) // 1024}KB)")

        return SubmitResult(
            task_ref=task_ref,
            status=ProviderTaskStatus(
                state="completed",
                progress=100,
                artifact=image_bytes,
                content_type=inline.get("mimeType") or "image/png",
            ),
        )

    async def get_status(self, task_ref: str) -> ProviderTaskStatus:
        # Results are delivered inline by submit(); there is no task to query
        raise ProviderFailure("Nano Banana generations are synchronous and cannot be polled")
