from __future__ import annotations

from pathlib import Path

from mango_backend.ingestion.card_builder import MaterializedAssets, build_meta_row
from mango_backend.integrations.tmdb.client import TmdbCall
from tests.fakes import load_fixture

MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "supabase" / "migrations"


def _sql(name: str) -> str:
    return (MIGRATIONS_DIR / name).read_text()


def test_catalog_migration_has_tables() -> None:
    sql = _sql("0001_movie_catalog.sql")
    for table in (
        "public.works",
        "public.works_meta",
        "public.rating_sources",
        "public.aggregates",
        "public.work_cards_cache",
        "public.sync_state",
    ):
        assert f"create table if not exists {table} (" in sql


def test_works_meta_has_every_built_column() -> None:
    sql = _sql("0001_movie_catalog.sql")
    meta_block = sql.split("create table if not exists public.works_meta (", 1)[1].split(");", 1)[0]
    row = build_meta_row(
        1,
        load_fixture("movie_details"),
        load_fixture("movie_credits"),
        load_fixture("movie_videos"),
        assets=MaterializedAssets(),
        certification=None,
        similar_ids=None,
        schema_version=3,
        fetched_at="2026-01-01T00:00:00+00:00",
    )
    for column in row:
        assert f"\n  {column} " in meta_block, column


def test_queue_migration_enforces_one_row_per_work() -> None:
    sql = _sql("0002_refresh_queue_and_runs.sql")
    assert "public.refresh_queue" in sql
    assert "work_id bigint not null unique" in sql
    assert "public.scheduled_ingestion_log" in sql


def test_staleness_functions_reload_schema_cache() -> None:
    sql = _sql("0003_staleness_functions.sql")
    assert "function public.is_stale(work_id_input bigint)" in sql
    assert "function public.get_stale_movies(limit_count integer" in sql
    assert "notify pgrst, 'reload schema';" in sql


def test_tmdb_api_logs_has_every_recorded_column() -> None:
    sql = _sql("0004_tmdb_api_logs.sql")
    block = sql.split("create table if not exists public.tmdb_api_logs (", 1)[1].split(");", 1)[0]
    for column in TmdbCall(endpoint="/movie/1", operation="movie_details").to_row():
        assert f"\n  {column} " in block, column
