from typing import Optional

from supabase import AsyncClient, acreate_client

from config.settings import get_settings


async def get_supabase_client() -> AsyncClient:
    """
    Return an async Supabase client using the service role key.

    The service key bypasses RLS; ownership is enforced by the queries
    themselves (every read/update filters on user_id).
    """
    settings = get_settings()
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY:
        raise ValueError("Missing Supabase credentials (SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY)")

    return await acreate_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)


# Singleton instance
_supabase_client: Optional[AsyncClient] = None


async def get_client() -> AsyncClient:
    """Get or create Supabase client singleton"""
    global _supabase_client
    if _supabase_client is None:
        _supabase_client = await get_supabase_client()
    return _supabase_client


def public_object_url(bucket: str, path: str) -> str:
    """Public URL of a Storage object: {SUPABASE_URL}/storage/v1/object/public/{bucket}/{path}"""
    return f"{get_settings().SUPABASE_URL}/storage/v1/object/public/{bucket}/{path}"


def object_path_from_public_url(public_url: str, bucket: str) -> Optional[str]:
    """Extract the storage object path from a Supabase public URL, or None if it is not one."""
    marker = f"/storage/v1/object/public/{bucket}/"
    if marker not in public_url:
        return None
    path = public_url.split(marker, 1)[1].split("?", 1)[0]
    return path or None
