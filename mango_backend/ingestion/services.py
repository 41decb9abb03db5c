from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from supabase import Client

from mango_backend.config import IngestConfig, load_ingest_config
from mango_backend.db.supabase import create_supabase_admin_client
from mango_backend.integrations.tmdb.client import TmdbCall, TmdbClient
from mango_backend.media.assets import AssetMaterializer
from mango_backend.repositories.tmdb_api_logs import insert_tmdb_api_log

logger = logging.getLogger(__name__)


def tmdb_call_recorder(db: Client) -> Callable[[TmdbCall], None]:
    """`TmdbClient.call_logger` that appends each call to `tmdb_api_logs`."""

    def record(call: TmdbCall) -> None:
        insert_tmdb_api_log(db, call.to_row())

    return record


@dataclass
class IngestionServices:
    """
    Everything an ingestion component needs, built once by the entrypoint.

    `materializer` is optional: without object storage configured, cards keep the
    TMDb-hosted image URLs.
    """

    db: Client
    tmdb: TmdbClient
    config: IngestConfig
    materializer: AssetMaterializer | None = None

    @classmethod
    def from_env(cls, *, require_storage: bool = False) -> "IngestionServices":
        config = load_ingest_config()
        db = create_supabase_admin_client(url=config.supabase_url, service_role_key=config.supabase_service_role_key)
        tmdb = TmdbClient(
            api_key=config.tmdb_api_key,
            call_delay_seconds=config.tmdb_call_delay_seconds,
            call_logger=tmdb_call_recorder(db),
        )
        try:
            materializer = AssetMaterializer.from_env()
        except RuntimeError as exc:
            if require_storage:
                raise
            logger.warning(f"Object storage not configured; serving provider image URLs ({exc})")
            materializer = None
        return cls(db=db, tmdb=tmdb, config=config, materializer=materializer)
