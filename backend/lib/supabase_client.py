"""
Supabase client for backend operations
"""
import os
from typing import Optional
from supabase import create_client, Client
from dotenv import load_dotenv

load_dotenv()
load_dotenv('../.env')  # Also try parent directory

_supabase_client: Optional[Client] = None


def supabase_configured() -> bool:
    """True when SUPABASE_URL and SUPABASE_SERVICE_KEY are both set."""
    return bool(os.getenv("SUPABASE_URL") and os.getenv("SUPABASE_SERVICE_KEY"))


def get_supabase_client() -> Client:
    """Get or create Supabase client singleton"""
    global _supabase_client

    if _supabase_client is None:
        if not supabase_configured():
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment")
        # Service role key: history writes bypass row-level security
        _supabase_client = create_client(os.getenv("SUPABASE_URL"), os.getenv("SUPABASE_SERVICE_KEY"))

    return _supabase_client


def get_optional_supabase_client() -> Optional[Client]:
    """Supabase client, or None in development without credentials."""
    return get_supabase_client() if supabase_configured() else None
