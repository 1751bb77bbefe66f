"""Service-role Supabase client."""

from supabase import create_client, Client
from roomstage.config import Settings


def get_supabase(settings: Settings) -> Client:
    """Create a Supabase client using the service role key."""
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise RuntimeError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
        )
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
    )
