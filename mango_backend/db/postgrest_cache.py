"""
PostgREST schema cache reloads.

After a migration adds columns (for example a new card schema version adding
`works_meta.trailers`), PostgREST keeps serving its old schema cache and rejects
writes with PGRST204 until it is told to reload. The reload signal needs a direct
Postgres connection (`SUPABASE_DB_URL` or `DATABASE_URL`).
"""
from __future__ import annotations

import logging
import os

import psycopg2

logger = logging.getLogger(__name__)

DATABASE_URL_ENV_VARS = ("SUPABASE_DB_URL", "DATABASE_URL")

_SCHEMA_CACHE_MARKERS = ("pgrst204", "schema cache", "could not find the")


class PostgrestCacheError(RuntimeError):
    pass


def resolve_database_url() -> str:
    for name in DATABASE_URL_ENV_VARS:
        url = (os.getenv(name) or "").strip()
        if url:
            return url
    raise PostgrestCacheError(
        "No direct database URL configured; set SUPABASE_DB_URL (or DATABASE_URL) "
        "to reload the PostgREST schema cache."
    )


def reload_postgrest_schema(database_url: str | None = None) -> None:
    """
    Send `pg_notify('pgrst', 'reload schema')`.

    Raises:
        PostgrestCacheError: no database URL, or the notify could not be sent.
    """
    url = database_url or resolve_database_url()
    try:
        conn = psycopg2.connect(url, connect_timeout=10)
    except psycopg2.Error as exc:
        raise PostgrestCacheError(f"Failed to connect for schema reload: {exc}") from exc
    try:
        conn.autocommit = True
        with conn.cursor() as cur:
            cur.execute("SELECT pg_notify('pgrst', 'reload schema');")
    except psycopg2.Error as exc:
        raise PostgrestCacheError(f"Failed to reload PostgREST schema cache: {exc}") from exc
    finally:
        conn.close()
    logger.info("Requested PostgREST schema cache reload")


def is_pgrst204_error(error: Exception) -> bool:
    """True when `error` reports a column missing from PostgREST's schema cache."""
    if getattr(error, "code", None) == "PGRST204":
        return True
    message = str(error).lower()
    return any(marker in message for marker in _SCHEMA_CACHE_MARKERS)
