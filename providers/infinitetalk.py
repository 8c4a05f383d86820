"""
WaveSpeed InfiniteTalk API Client

Endpoints (API v3):
- POST /wavespeed-ai/wan-2.2/speech-to-video - Create prediction
- GET  /predictions/{id}/result - Poll status

Predictions move through created -> processing -> completed | failed and
put the generated video URLs in `outputs`.
"""

from typing import Any, Dict

from errors import ProviderFailure, ProviderTransient
from providers.base import ProviderAdapter, ProviderTaskStatus, SubmitResult


class InfiniteTalkAdapter(ProviderAdapter):
    tool = "infinitetalk"
    name = "InfiniteTalk"
    BASE_URL = "https://api.wavespeed.ai/api/v3"
    API_KEY_SETTING = "WAVESPEED_API_KEY"

    @staticmethod
    def _unwrap(raw: Dict[str, Any]) -> Dict[str, Any]:
        """Responses come as {code, message, data: {...}} or as the bare prediction."""
        data = raw.get("data")
        return data if isinstance(data, dict) else raw

    async def submit(self, request) -> SubmitResult:
        payload = {
            "image": request.image_url,
            "audio": request.audio_url,
            "resolution": request.resolution or "720p",
            "prompt": request.prompt or "",
            "seed": -1,
        }

        print(f"🎬 [{self.name}] Creating prediction ({payload['resolution']})")
        raw = await self._create_task(
            "POST", f"{self.BASE_URL}/wavespeed-ai/wan-2.2/speech-to-video", json=payload
        )

        if raw.get("code") and raw.get("code") != 200:
            message = raw.get("message") or raw.get("error") or "API returned error code"
            raise ProviderFailure(f"API error {raw.get('code')}: {message}")

        data = self._unwrap(raw)
        prediction_id = (
            data.get("id") or raw.get("id")
            or data.get("prediction_id") or data.get("request_id")
        )
        if not prediction_id:
            raise ProviderFailure("No prediction ID in response")

        print(f"✅ [{self.name}] Prediction created: {prediction_id}")
        return SubmitResult(task_ref=str(prediction_id))

    async def get_status(self, task_ref: str) -> ProviderTaskStatus:
        raw = await self._request("GET", f"{self.BASE_URL}/predictions/{task_ref}/result")

        if raw.get("code") and raw.get("code") != 200:
            message = raw.get("message") or raw.get("error") or "API returned error code"
            raise ProviderTransient(f"API error {raw.get('code')}: {message}")

        data = self._unwrap(raw)
        api_status = data.get("status")
        state = api_status if api_status in ("created", "processing", "completed", "failed") else "created"

        status = ProviderTaskStatus(state=state)
        if state == "completed":
            outputs = data.get("outputs") or []
            if outputs:
                status.result_url = outputs[0]
        if state == "failed":
            status.error = data.get("error") or "Prediction failed"
        return status
