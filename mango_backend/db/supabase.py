from __future__ import annotations

from supabase import Client, create_client

from mango_backend.config import ConfigurationError


def create_supabase_admin_client(*, url: str | None, service_role_key: str | None) -> Client:
    """
    Service-role Supabase client (bypasses RLS).

    Ingestion writes `works`, `works_meta`, `work_cards_cache` and `refresh_queue`,
    none of which are writable with the anon key. Credentials come from `IngestConfig`.
    """

    url = (url or "").strip()
    service_role_key = (service_role_key or "").strip()
    if not url:
        raise ConfigurationError("SUPABASE_URL is required for the ingestion services")
    if not service_role_key:
        raise ConfigurationError("SUPABASE_SERVICE_ROLE_KEY is required for the ingestion services")
    return create_client(url, service_role_key)
