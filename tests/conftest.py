from __future__ import annotations

import pytest

from mango_backend.config import IngestConfig
from mango_backend.ingestion.movie_ingest import MovieIngestor
from mango_backend.ingestion.services import IngestionServices
from tests.fakes import FakeSupabase, FakeTmdb, stale_rpc


@pytest.fixture
def ingest_config() -> IngestConfig:
    """Config with every pacing delay disabled."""
    return IngestConfig(
        tmdb_api_key="test-key",
        tmdb_call_delay_seconds=0.0,
        poll_interval_seconds=0.0,
        poll_timeout_seconds=0.0,
        queue_item_delay_seconds=0.0,
        discovery_ingest_delay_seconds=0.0,
        discovery_page_delay_seconds=0.0,
        similar_start_delay_seconds=0.0,
    )


@pytest.fixture
def fake_db() -> FakeSupabase:
    db = FakeSupabase()
    db.rpc_handlers["is_stale"] = stale_rpc()
    return db


@pytest.fixture
def fake_tmdb() -> FakeTmdb:
    return FakeTmdb()


@pytest.fixture
def services(fake_db: FakeSupabase, fake_tmdb: FakeTmdb, ingest_config: IngestConfig) -> IngestionServices:
    return IngestionServices(db=fake_db, tmdb=fake_tmdb, config=ingest_config, materializer=None)


@pytest.fixture
def ingestor(services: IngestionServices) -> MovieIngestor:
    return MovieIngestor(services=services, sleep=lambda _seconds: None)
