"""
Database helpers for the ingestion services and job scripts.
"""

from mango_backend.db.supabase import create_supabase_admin_client

__all__ = [
    "create_supabase_admin_client",
]
