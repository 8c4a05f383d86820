"""
NewportAI LipSync API Client

Endpoints:
- POST https://api.newportai.com/api/async/lipsync - Create task
- POST https://api.newportai.com/api/getAsyncResult - Poll status

Task status codes: 1 submitted, 2 in progress, 3 success, 4 failure.
"""

from errors import ProviderFailure, ProviderTransient
from providers.base import ProviderAdapter, ProviderTaskStatus, SubmitResult


STATUS_MAP = {
    1: "created",
    2: "processing",
    3: "completed",
    4: "failed",
}


class LipsyncAdapter(ProviderAdapter):
    tool = "lipsync"
    name = "LipSync"
    BASE_URL = "https://api.newportai.com/api"
    API_KEY_SETTING = "NEWPORTAI_API_KEY"

    async def submit(self, request) -> SubmitResult:
        payload = {
            "srcVideoUrl": request.video_url,
            "audioUrl": request.audio_url,
            "videoParams": {
                "video_width": 0,
                "video_height": 0,
                "video_enhance": 1,
            },
        }

        print(f"🎬 [{self.name}] Creating task")
        data = await self._create_task("POST", f"{self.BASE_URL}/async/lipsync", json=payload)

        if data.get("code") != 0:
            raise ProviderFailure(data.get("message") or "Task creation failed")

        task_id = (data.get("data") or {}).get("taskId")
        if not task_id:
            raise ProviderFailure("No task ID in response")

        print(f"✅ [{self.name}] Task created: {task_id}")
        return SubmitResult(task_ref=str(task_id))

    async def get_status(self, task_ref: str) -> ProviderTaskStatus:
        data = await self._request("POST", f"{self.BASE_URL}/getAsyncResult", json={"taskId": task_ref})

        if data.get("code") != 0:
            raise ProviderTransient(data.get("message") or "Failed to get status")

        payload = data.get("data") or {}
        task = payload.get("task")
        if not task:
            raise ProviderTransient("No task data in response")

        code = task.get("status")
        status = ProviderTaskStatus(state=STATUS_MAP.get(code, "created"))

        if code == 3:
            videos = payload.get("videos") or []
            if videos:
                status.result_url = videos[0].get("videoUrl")
            if task.get("executionTime") is not None:
                status.extra = {"execution_time": task.get("executionTime")}

        if code == 4:
            status.error = task.get("reason") or "Task failed"

        return status
