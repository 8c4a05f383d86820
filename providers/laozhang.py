"""
Laozhang async video API (Sora 2 and Veo 3.1).

POST /v1/videos             -> create task (JSON, or multipart with input_reference)
GET  /v1/videos/{id}        -> status, progress, video_url
GET  /v1/videos/{id}/content -> redirects to the finished video
"""

from typing import Any, Dict, Optional

import httpx

from errors import ProviderFailure
from providers.base import ProviderAdapter, ProviderTaskStatus, SubmitResult


LAOZHANG_HOST = "https://api.laozhang.ai"

STATE_MAP = {
    "submitted": "created",
    "queued": "created",
    "created": "created",
    "in_progress": "processing",
    "processing": "processing",
    "completed": "completed",
    "failed": "failed",
}


class LaozhangVideoAdapter(ProviderAdapter):
    BASE_URL = f"{LAOZHANG_HOST}/v1/videos"
    API_KEY_SETTING = "LAOZHANG_API_KEY"

    def _build_fields(self, request) -> Dict[str, str]:
        raise NotImplementedError

    async def submit(self, request) -> SubmitResult:
        fields = self._build_fields(request)
        image_url = getattr(request, "image_url", None)

        if image_url:
            image_bytes, mime_type = await self._load_image(image_url)
            ext = mime_type.split("/")[-1] or "png"
            files = {"input_reference": (f"image.{ext}", image_bytes, mime_type)}
            print(f"🎬 [{self.name}] Creating image-to-video task: model={fields.get('model')}")
            data = await self._create_task("POST", self.BASE_URL, data=fields, files=files)
        else:
            print(f"🎬 [{self.name}] Creating text-to-video task: model={fields.get('model')}")
            data = await self._create_task("POST", self.BASE_URL, json=fields)

        # The id shows up as id, task_id or data.id depending on the model
        task_id = None
        if isinstance(data, dict):
            task_id = data.get("id") or data.get("task_id") or (data.get("data") or {}).get("id")
        if not task_id:
            raise ProviderFailure("No task ID in response")

        print(f"✅ [{self.name}] Task created: {task_id}")
        return SubmitResult(task_ref=str(task_id))

    def _completed_extra(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    async def get_status(self, task_ref: str) -> ProviderTaskStatus:
        data = await self._request("GET", f"{self.BASE_URL}/{task_ref}")
        api_status = data.get("status")
        state = STATE_MAP.get(api_status, "created")

        status = ProviderTaskStatus(state=state, progress=data.get("progress") or 0)

        if state == "completed":
            video_url = data.get("video_url") or data.get("url")
            if video_url and not video_url.startswith("http"):
                video_url = f"{LAOZHANG_HOST}{video_url}"
            if not video_url:
                video_url = await self.get_content_url(task_ref)
            status.result_url = video_url
            status.extra = {k: v for k, v in self._completed_extra(data).items() if v is not None}

        if state == "failed":
            error = data.get("error")
            if isinstance(error, dict):
                status.error = error.get("message") or "Generation failed"
            else:
                status.error = error or "Generation failed"

        return status

    async def get_content_url(self, task_ref: str) -> Optional[str]:
        """Final download URL behind /content, or None when it is not available."""
        url = f"{self.BASE_URL}/{task_ref}/content"
        try:
            async with self._client(follow_redirects=True) as client:
                async with client.stream("GET", url, headers=self._get_headers()) as response:
                    if response.status_code >= 400:
                        return None
                    return str(response.url)
        except httpx.HTTPError as e:
            print(f"⚠️ [{self.name}] Could not resolve content URL for {task_ref}: {e}")
            return None
