"""Supabase JWT validation dependency for FastAPI."""

import asyncio
import logging

from fastapi import Header, HTTPException
from supabase import create_client

from roomstage.config import settings

logger = logging.getLogger(__name__)


async def get_current_user_id(authorization: str = Header(None)) -> str:
    """Validate the Supabase JWT from the Authorization header.

    Returns the authenticated user's id.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid token")

    token = authorization[len("Bearer "):]
    try:
        client = create_client(settings.supabase_url, settings.supabase_anon_key)
        user_response = await asyncio.to_thread(client.auth.get_user, token)
    except Exception as exc:
        logger.warning(f"Token validation failed: {exc}")
        raise HTTPException(status_code=401, detail="Invalid token")

    user = getattr(user_response, "user", None)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user.id
