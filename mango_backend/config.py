"""
Process configuration for the ingestion services.

Configuration is resolved once by the entrypoint (`load_ingest_config()`) and handed to
each component explicitly; library modules never read credentials from the environment
on their own.
"""
from __future__ import annotations

import os
from dataclasses import dataclass

from mango_backend.utils.env import env_float, env_int

# Bump together with a new step in `mango_backend.ingestion.schema_upgrades`.
CURRENT_SCHEMA_VERSION = 3

AGGREGATE_METHOD_VERSION = "v1_2025_11"


class ConfigurationError(RuntimeError):
    pass


@dataclass(frozen=True)
class IngestConfig:
    tmdb_api_key: str
    supabase_url: str | None = None
    supabase_service_role_key: str | None = None

    # Provider pacing.
    tmdb_call_delay_seconds: float = 0.25

    # Duplicate-ingestion coalescing.
    poll_interval_seconds: float = 0.5
    poll_timeout_seconds: float = 30.0
    ingestion_lease_seconds: float = 300.0

    # Refresh queue.
    queue_batch_size: int = 10
    queue_max_retries: int = 3
    queue_item_delay_seconds: float = 1.0
    # `processing` rows older than this are treated as abandoned by a crashed worker.
    queue_processing_lease_seconds: float = 900.0
    stale_enqueue_limit: int = 100
    stale_card_priority: int = 5

    # Discovery.
    discovery_max_pages_per_source: int = 5
    discovery_candidate_factor: float = 1.5
    discovery_ingest_delay_seconds: float = 1.0
    discovery_page_delay_seconds: float = 0.5

    # Similar-movie fan-out.
    similar_max_ids: int = 10
    similar_max_concurrent: int = 3
    similar_start_delay_seconds: float = 0.25

    # Asset materialization caps.
    max_person_photos: int = 15
    max_still_images: int = 5


def _require_env(name: str) -> str:
    value = (os.getenv(name) or "").strip()
    if not value:
        raise ConfigurationError(f"Missing required environment variable: {name}")
    return value


def load_ingest_config(*, require_supabase: bool = True) -> IngestConfig:
    """
    Build an `IngestConfig` from the environment.

    Required: TMDB_API_KEY, and (unless `require_supabase=False`) SUPABASE_URL and
    SUPABASE_SERVICE_ROLE_KEY. Tunables may be overridden with `MANGO_*` variables.
    """

    tmdb_api_key = _require_env("TMDB_API_KEY")
    supabase_url = (os.getenv("SUPABASE_URL") or "").strip() or None
    service_key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip() or None
    if require_supabase:
        supabase_url = _require_env("SUPABASE_URL")
        service_key = _require_env("SUPABASE_SERVICE_ROLE_KEY")

    try:
        return IngestConfig(
            tmdb_api_key=tmdb_api_key,
            supabase_url=supabase_url,
            supabase_service_role_key=service_key,
            tmdb_call_delay_seconds=env_float("MANGO_TMDB_CALL_DELAY_SECONDS", 0.25),
            poll_interval_seconds=env_float("MANGO_POLL_INTERVAL_SECONDS", 0.5),
            poll_timeout_seconds=env_float("MANGO_POLL_TIMEOUT_SECONDS", 30.0),
            ingestion_lease_seconds=env_float("MANGO_INGESTION_LEASE_SECONDS", 300.0),
            queue_batch_size=env_int("MANGO_QUEUE_BATCH_SIZE", 10),
            queue_max_retries=env_int("MANGO_QUEUE_MAX_RETRIES", 3),
            queue_item_delay_seconds=env_float("MANGO_QUEUE_ITEM_DELAY_SECONDS", 1.0),
            queue_processing_lease_seconds=env_float("MANGO_QUEUE_PROCESSING_LEASE_SECONDS", 900.0),
            discovery_max_pages_per_source=env_int("MANGO_DISCOVERY_MAX_PAGES", 5),
        )
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
