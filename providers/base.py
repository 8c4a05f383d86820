"""
Provider Task Adapter interface.

Every tool talks to its provider through one adapter exposing:
- submit(request) -> SubmitResult (task reference, or an already-terminal status
  for synchronous providers)
- get_status(task_ref) -> ProviderTaskStatus in the shared vocabulary
  created | processing | completed | failed
- fetch_artifact(url) -> (bytes, content_type)

HTTP errors are classified once, in `_request`:
timeouts, connection errors, 429 and 5xx raise ProviderTransient, other 4xx
and explicit provider rejections raise ProviderFailure. Reads go through
`_request` and are retried with backoff; task creation goes through
`_create_task` and is sent exactly once, since a timed-out create may still
have been accepted.
"""

import base64
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import httpx

from config.settings import get_settings
from errors import ProviderFailure, ProviderTransient, StorageFailure
from utils.retry import retry_with_exponential_backoff


PROVIDER_STATES = ("created", "processing", "completed", "failed")

_DATA_URL = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


@dataclass
class ProviderTaskStatus:
    state: str
    result_url: Optional[str] = None
    error: Optional[str] = None
    progress: Optional[int] = None
    # Extra metadata worth keeping on the record (duration, resolution...)
    extra: Dict[str, Any] = field(default_factory=dict)
    # Inline result of synchronous providers
    artifact: Optional[bytes] = None
    content_type: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in ("completed", "failed")


@dataclass
class SubmitResult:
    task_ref: str
    status: Optional[ProviderTaskStatus] = None


def decode_data_url(url: str) -> Optional[Tuple[bytes, str]]:
    """Split a base64 data URL into (bytes, mime type)."""
    match = _DATA_URL.match(url)
    if not match:
        return None
    try:
        return base64.b64decode(match.group(2)), match.group(1)
    except (ValueError, TypeError):
        return None


class ProviderAdapter(ABC):
    tool: str = ""
    name: str = ""
    BASE_URL: str = ""
    API_KEY_SETTING: str = ""
    TIMEOUT_SETTING: str = "PROVIDER_TIMEOUT_SECONDS"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = 1.0,
    ):
        settings = get_settings()
        self.api_key = api_key or getattr(settings, self.API_KEY_SETTING, None)
        self.timeout = timeout if timeout is not None else getattr(settings, self.TIMEOUT_SETTING)
        self.max_retries = max_retries if max_retries is not None else settings.PROVIDER_MAX_RETRIES
        self.download_timeout = settings.ARTIFACT_DOWNLOAD_TIMEOUT_SECONDS
        self.transport = transport
        self.retry_delay = retry_delay

    def _get_headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ProviderFailure(f"{self.API_KEY_SETTING} not configured")
        return {"Authorization": f"Bearer {self.api_key}"}

    def _client(self, timeout: Optional[float] = None, follow_redirects: bool = False) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            transport=self.transport,
            follow_redirects=follow_redirects,
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text[:200] or f"API error: {response.status_code}"
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return error["message"]
            if isinstance(error, str) and error:
                return error
            for key in ("message", "msg"):
                if data.get(key):
                    return str(data[key])
        return f"API error: {response.status_code}"

    async def _request_once(self, method: str, url: str, timeout: Optional[float] = None, **kwargs) -> Any:
        try:
            async with self._client(timeout) as client:
                response = await client.request(method, url, headers=self._get_headers(), **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTransient(f"{self.name} request timed out: {e}")
        except httpx.TransportError as e:
            raise ProviderTransient(f"{self.name} connection error: {e}")

        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderTransient(f"{self.name} HTTP {response.status_code}: {self._error_message(response)}")
        if response.status_code >= 400:
            raise ProviderFailure(self._error_message(response))

        try:
            return response.json()
        except ValueError:
            raise ProviderTransient(f"{self.name} returned a non-JSON response")

    async def _request(self, method: str, url: str, timeout: Optional[float] = None, **kwargs) -> Any:
        """One provider call with an explicit timeout, retried on transient errors."""
        return await retry_with_exponential_backoff(
            self._request_once,
            method,
            url,
            timeout=timeout,
            max_retries=self.max_retries,
            initial_delay=self.retry_delay,
            label=f"{self.name} {method}",
            **kwargs,
        )

    async def _create_task(self, method: str, url: str, timeout: Optional[float] = None, **kwargs) -> Any:
        """Single attempt: the orphan sweeper settles a create that did not come back."""
        return await self._request_once(method, url, timeout=timeout, **kwargs)

    async def fetch_artifact(self, result_url: str, max_bytes: Optional[int] = None) -> Tuple[bytes, str]:
        """Download a result artifact, refusing anything larger than max_bytes."""
        max_bytes = max_bytes or get_settings().MAX_ARTIFACT_BYTES
        try:
            async with self._client(self.download_timeout, follow_redirects=True) as client:
                async with client.stream("GET", result_url) as response:
                    if response.status_code >= 400:
                        raise StorageFailure(f"Failed to download artifact: HTTP {response.status_code}")

                    declared = response.headers.get("content-length")
                    if declared and declared.isdigit() and int(declared) > max_bytes:
                        raise StorageFailure(f"Artifact too large: {declared} bytes")

                    chunks = []
                    received = 0
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        if received > max_bytes:
                            raise StorageFailure(f"Artifact exceeds {max_bytes} bytes")
                        chunks.append(chunk)

                    content_type = response.headers.get("content-type", "application/octet-stream")
                    return b"".join(chunks), content_type.split(";")[0].strip()
        except httpx.HTTPError as e:
            raise StorageFailure(f"Failed to download artifact: {e}")

    async def _load_image(self, image_url: str) -> Tuple[bytes, str]:
        """Bytes and mime type of an image given as data URL or HTTPS URL."""
        decoded = decode_data_url(image_url)
        if decoded:
            return decoded
        if image_url.startswith("data:"):
            raise ProviderFailure("Invalid image data")
        try:
            return await self.fetch_artifact(image_url, max_bytes=20 * 1024 * 1024)
        except StorageFailure as e:
            raise ProviderFailure(f"Could not load input image: {e}")

    @abstractmethod
    async def submit(self, request) -> SubmitResult:
        ...

    @abstractmethod
    async def get_status(self, task_ref: str) -> ProviderTaskStatus:
        ...
