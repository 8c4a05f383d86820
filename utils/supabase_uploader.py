import time
from abc import ABC, abstractmethod
from typing import Optional

from errors import StorageFailure
from supabase_client import object_path_from_public_url, public_object_url


EXTENSIONS = {
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
}


def extension_for(content_type: Optional[str], default: str = "bin") -> str:
    return EXTENSIONS.get((content_type or "").lower(), default)


def artifact_path(user_id: str, generation_id: str, ext: str) -> str:
    """Storage layout: {user_id}/{generation_id}-{timestamp}.{ext}"""
    return f"{user_id}/{generation_id}-{int(time.time() * 1000)}.{ext}"


class ArtifactUploader(ABC):
    @abstractmethod
    async def upload_bytes(
        self,
        data: bytes,
        user_id: str,
        generation_id: str,
        bucket: str,
        content_type: str,
        default_ext: str = "bin",
    ) -> str:
        """Store an artifact and return its stable public URL. Raises StorageFailure."""

    @abstractmethod
    async def remove(self, public_url: str, bucket: str) -> bool:
        """Best-effort removal of a stored artifact. Never raises."""


class SupabaseArtifactUploader(ArtifactUploader):
    """Upload generated videos and images to Supabase Storage"""

    def __init__(self, client):
        self.supabase = client

    async def upload_bytes(self, data, user_id, generation_id, bucket, content_type, default_ext="bin"):
        filename = artifact_path(user_id, generation_id, extension_for(content_type, default_ext))
        print(f"📤 Uploading to Supabase Storage: {bucket}/{filename} ({len(data) // 1024}KB)")

        try:
            await self.supabase.storage.from_(bucket).upload(
                filename,
                data,
                {
                    "content-type": content_type,
                    "cache-control": "public, max-age=31536000",
                    "upsert": "false",
                },
            )
        except Exception as e:
            raise StorageFailure(f"Upload to {bucket} failed: {e}")

        public_url = public_object_url(bucket, filename)
        print(f"✅ Uploaded successfully: {public_url}")
        return public_url

    async def remove(self, public_url, bucket):
        path = object_path_from_public_url(public_url, bucket)
        if not path:
            return False
        try:
            await self.supabase.storage.from_(bucket).remove([path])
            print(f"🗑️ Removed {bucket}/{path}")
            return True
        except Exception as e:
            print(f"⚠️ Could not remove {bucket}/{path}: {e}")
            return False
