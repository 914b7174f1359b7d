"""
Supabase access for EduGenie.

Two kinds of client:
- user_client(token): anon key + the user's bearer token, so row-level
  security applies exactly as it would in the browser
- service_client(): service role, bypasses RLS; only for server-owned tables
  (course cache, Google refresh tokens)
"""

from typing import Optional

from supabase import AuthError, Client, create_client

from config import config

_service: Optional[Client] = None


def service_client() -> Client:
    """Lazy-init the Supabase service-role client."""
    global _service
    if _service is None:
        _service = create_client(
            config.require("SUPABASE_URL"),
            config.require("SUPABASE_SERVICE_ROLE_KEY"),
        )
    return _service


def user_client(access_token: str) -> Client:
    """Client whose queries run as the user that owns `access_token`."""
    client = create_client(config.require("SUPABASE_URL"), config.require("SUPABASE_ANON_KEY"))
    client.postgrest.auth(access_token)
    return client


def anon_client() -> Client:
    return create_client(config.require("SUPABASE_URL"), config.require("SUPABASE_ANON_KEY"))


def verify_user(access_token: str, user_id: str) -> bool:
    """True when the bearer token belongs to `user_id`."""
    try:
        response = anon_client().auth.get_user(access_token)
    except AuthError as e:
        print(f"[auth] Token rejected: {e}")
        return False
    user = getattr(response, "user", None) if response else None
    return bool(user and user.id == user_id)


def update_skills(user_id: str, skills: list, updated_at: str) -> list:
    """Replace the skills list on a profile; returns the updated rows."""
    result = (
        anon_client()
        .table("profiles")
        .update({"skills": skills, "updated_at": updated_at})
        .eq("id", user_id)
        .execute()
    )
    return result.data or []
