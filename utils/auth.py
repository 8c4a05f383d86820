import httpx
from fastapi import Request

from config.settings import get_settings
from errors import CreditServiceError, Unauthorized


async def get_current_user_id(request: Request) -> str:
    """Validate the Supabase JWT from the Authorization header and return the user id.

    Supabase Auth `/auth/v1/user` verifies the Bearer token for us.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise Unauthorized("Missing or invalid Authorization header")
    jwt_token = auth_header[len("Bearer "):].strip()

    settings = get_settings()
    if not settings.SUPABASE_URL or not settings.SUPABASE_ANON_KEY:
        raise CreditServiceError("Supabase auth not configured")

    async with httpx.AsyncClient(timeout=10) as client:
        resp = await client.get(
            f"{settings.SUPABASE_URL}/auth/v1/user",
            headers={
                "Authorization": f"Bearer {jwt_token}",
                "apikey": settings.SUPABASE_ANON_KEY,
            },
        )
    if resp.status_code != 200:
        raise Unauthorized("Invalid or expired token")
    try:
        data = resp.json()
        user_id = data.get("id") or data.get("sub")
    except ValueError:
        user_id = None
    if not user_id:
        raise Unauthorized("Unable to resolve user from token")
    return user_id
