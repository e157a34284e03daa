import os
import logging
from supabase import create_client, Client
from dotenv import load_dotenv
from jose import jwt, JWTError
from typing import Optional

load_dotenv()

logger = logging.getLogger(__name__)

SUPABASE_URL = os.environ.get("SUPABASE_URL") or os.environ.get("NEXT_PUBLIC_SUPABASE_URL")
SUPABASE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")  # Service role bypasses RLS for backend work
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY") or os.environ.get("NEXT_PUBLIC_SUPABASE_ANON_KEY")

if not SUPABASE_URL:
    logger.warning("SUPABASE_URL not set. Supabase features will be disabled.")
    supabase: Client | None = None
else:
    key_to_use = SUPABASE_KEY or SUPABASE_ANON_KEY
    if key_to_use:
        supabase: Client = create_client(SUPABASE_URL, key_to_use)
    else:
        logger.warning("No Supabase key found. Supabase features will be disabled.")
        supabase = None


def get_supabase() -> Client | None:
    """Get the Supabase client instance."""
    return supabase


def verify_supabase_token(token: str) -> Optional[dict]:
    """
    Decode a Supabase JWT and return the user data.
    Returns None if the token cannot be decoded or has no subject.
    """
    if not token:
        return None

    try:
        # Signature is checked by Supabase/PostgREST on every data call
        decoded = jwt.get_unverified_claims(token)
        user_id = decoded.get("sub")
        if not user_id:
            logger.info("[Auth] No user_id (sub) in decoded token")
            return None
        return {
            "id": user_id,
            "email": decoded.get("email"),
            "role": decoded.get("role", "authenticated"),
        }
    except JWTError as decode_error:
        logger.info(f"[Auth] JWT decode error: {decode_error}")
        return None
    except Exception as e:
        logger.warning(f"[Auth] Token verification error: {e}")
        return None


def get_user_profile(user_id: str) -> dict | None:
    """Get the user's profile row (carries tenant_id)."""
    client = get_supabase()
    if not client:
        return None

    try:
        response = client.table("profiles").select("*").eq("id", user_id).single().execute()
        return response.data
    except Exception as e:
        logger.warning(f"Error fetching profile for {user_id}: {e}")
        return None
