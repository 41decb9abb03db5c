from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from mango_backend.config import CURRENT_SCHEMA_VERSION
from mango_backend.ingestion.movie_ingest import (
    IngestionError,
    IngestionInProgressError,
    MovieIngestor,
    normalize_tmdb_id,
)
from mango_backend.integrations.tmdb.client import TmdbClientError
from tests.fakes import FakeTmdb, stale_rpc

FIXED_NOW = datetime(2026, 1, 1, tzinfo=UTC)


def _tmdb_calls(fake_tmdb: FakeTmdb) -> int:
    return len(fake_tmdb.calls)


@pytest.mark.parametrize("value", ["0", "-3", "abc", "", None, "12.5"])
def test_normalize_tmdb_id_rejects_invalid(value) -> None:
    with pytest.raises(ValueError):
        normalize_tmdb_id(value)


def test_normalize_tmdb_id_strips_padding() -> None:
    assert normalize_tmdb_id(" 0027205 ") == "27205"
    assert normalize_tmdb_id(27205) == "27205"


def test_first_ingest_builds_canonical_rows_and_card(ingestor, fake_db, fake_tmdb) -> None:
    result = ingestor.ingest("27205")

    assert result.status == "ingested"
    works = fake_db.rows("works")
    assert len(works) == 1
    work = works[0]
    assert work["tmdb_id"] == "27205"
    assert work["title"] == "Inception"
    assert work["year"] == 2010
    assert work["ingestion_status"] == "complete"
    assert work["last_refreshed_at"] is not None

    meta = fake_db.row("works_meta", work_id=work["work_id"])
    assert meta["schema_version"] == CURRENT_SCHEMA_VERSION
    assert meta["certification"] == "PG-13"
    assert meta["similar_movie_ids"] == [157336, 155, 603]
    assert len(meta["still_images"]) == 5
    assert all(s["file_path"] != "/8ZTVqvKDQ8emSGUEMjsS4yHAwrp.jpg" for s in meta["still_images"])

    rating = fake_db.row("rating_sources", work_id=work["work_id"], source_name="TMDB")
    assert rating["value_0_100"] == pytest.approx(83.69)
    assert fake_db.row("aggregates", work_id=work["work_id"]) is not None

    card = result.card
    assert card["title"] == "Inception"
    assert card["genres"] == ["Action", "Science Fiction", "Adventure"]
    assert card["runtime_display"] == "2h 28m"
    assert card["director"] == "Christopher Nolan"
    cached = fake_db.row("work_cards_cache", work_id=work["work_id"])
    assert cached["payload"] == card
    assert cached["etag"] == result.etag


def test_second_ingest_serves_cache_without_provider_calls(ingestor, fake_tmdb) -> None:
    first = ingestor.ingest("27205")
    calls_after_first = _tmdb_calls(fake_tmdb)

    second = ingestor.ingest("27205")

    assert second.status == "cached"
    assert second.card == first.card
    assert second.etag == first.etag
    assert _tmdb_calls(fake_tmdb) == calls_after_first


def test_force_refresh_reruns_pipeline(ingestor, fake_db, fake_tmdb) -> None:
    first = ingestor.ingest("27205")
    calls_after_first = _tmdb_calls(fake_tmdb)

    again = ingestor.ingest("27205", force_refresh=True)

    assert again.status == "ingested"
    assert again.work_id == first.work_id
    assert _tmdb_calls(fake_tmdb) > calls_after_first
    assert len(fake_db.rows("works")) == 1


def test_stale_complete_work_is_reingested(ingestor, fake_db, fake_tmdb) -> None:
    first = ingestor.ingest("27205")
    fake_db.rpc_handlers["is_stale"] = stale_rpc({first.work_id})

    again = ingestor.ingest("27205")

    assert again.status == "ingested"


def test_concurrent_ingestion_times_out(ingestor, fake_db, fake_tmdb) -> None:
    fake_db.insert_row(
        "works",
        {"tmdb_id": "27205", "ingestion_status": "ingesting", "ingestion_started_at": datetime.now(UTC).isoformat()},
    )

    with pytest.raises(IngestionInProgressError):
        ingestor.ingest("27205")

    assert fake_tmdb.calls == []


def test_waits_for_concurrent_ingestion_to_finish(services, fake_db, fake_tmdb) -> None:
    work = fake_db.insert_row(
        "works",
        {"tmdb_id": "27205", "ingestion_status": "ingesting", "ingestion_started_at": datetime.now(UTC).isoformat()},
    )
    owner = MovieIngestor(services=services, sleep=lambda _s: None)
    result = owner._run_pipeline("27205", work)
    calls_after_owner = _tmdb_calls(fake_tmdb)
    fake_db.row("works", work_id=work["work_id"])["ingestion_status"] = "ingesting"

    def finish_other(_seconds: float) -> None:
        fake_db.row("works", work_id=work["work_id"])["ingestion_status"] = "complete"

    waiter = MovieIngestor(services=services, sleep=finish_other)

    served = waiter.ingest("27205")

    assert served.status == "cached"
    assert served.etag == result.etag
    assert _tmdb_calls(fake_tmdb) == calls_after_owner


def test_waiter_restarts_ingestion_when_other_caller_fails(services, fake_db, fake_tmdb) -> None:
    work = fake_db.insert_row(
        "works",
        {"tmdb_id": "27205", "ingestion_status": "ingesting", "ingestion_started_at": datetime.now(UTC).isoformat()},
    )
    polls: list[float] = []

    def other_caller_fails(seconds: float) -> None:
        polls.append(seconds)
        fake_db.row("works", work_id=work["work_id"])["ingestion_status"] = "failed"

    waiter = MovieIngestor(services=services, sleep=other_caller_fails)

    result = waiter.ingest("27205")

    assert polls == [services.config.poll_interval_seconds]
    assert result.status == "ingested"
    assert result.work_id == work["work_id"]
    assert len(fake_db.rows("works")) == 1
    assert fake_db.row("works", tmdb_id="27205")["ingestion_status"] == "complete"
    assert ("fetch_movie_details", "27205") in fake_tmdb.calls


def test_abandoned_ingestion_is_reclaimed(services, fake_db, fake_tmdb) -> None:
    fake_db.insert_row(
        "works",
        {"tmdb_id": "27205", "ingestion_status": "ingesting", "ingestion_started_at": "2025-12-31T23:00:00+00:00"},
    )
    ingestor = MovieIngestor(services=services, sleep=lambda _s: None, now=lambda: FIXED_NOW)

    result = ingestor.ingest("27205")

    assert result.status == "ingested"
    assert len(fake_db.rows("works")) == 1


def test_fatal_provider_failure_marks_work_failed(services, fake_db) -> None:
    services.tmdb = FakeTmdb(fail={"fetch_movie_credits": TmdbClientError("HTTP 500", status_code=500)})
    ingestor = MovieIngestor(services=services, sleep=lambda _s: None)

    with pytest.raises(IngestionError, match="HTTP 500"):
        ingestor.ingest("27205")

    work = fake_db.row("works", tmdb_id="27205")
    assert work["ingestion_status"] == "failed"
    assert fake_db.rows("work_cards_cache") == []
    assert fake_db.rows("works_meta") == []


def test_failed_work_is_retried_on_next_request(services, fake_db, fake_tmdb) -> None:
    services.tmdb = FakeTmdb(fail={"fetch_movie_details": TmdbClientError("HTTP 404", status_code=404)})
    with pytest.raises(IngestionError):
        MovieIngestor(services=services, sleep=lambda _s: None).ingest("27205")

    services.tmdb = fake_tmdb
    result = MovieIngestor(services=services, sleep=lambda _s: None).ingest("27205")

    assert result.status == "ingested"
    assert fake_db.row("works", tmdb_id="27205")["ingestion_status"] == "complete"


def test_best_effort_failures_leave_nulls(services, fake_db) -> None:
    error = TmdbClientError("HTTP 503", status_code=503)
    services.tmdb = FakeTmdb(
        fail={"fetch_similar_movies": error, "fetch_movie_release_dates": error, "fetch_movie_images": error}
    )

    result = MovieIngestor(services=services, sleep=lambda _s: None).ingest("27205")

    assert result.status == "ingested"
    assert result.card["certification"] is None
    assert result.card["similar_movie_ids"] is None
    assert result.card["still_images"] == []
    assert fake_db.row("works", tmdb_id="27205")["ingestion_status"] == "complete"


def test_cache_write_failure_marks_work_failed(ingestor, fake_db) -> None:
    fake_db.failures[("work_cards_cache", "upsert")] = RuntimeError("connection reset")

    with pytest.raises(IngestionError):
        ingestor.ingest("27205")

    assert fake_db.row("works", tmdb_id="27205")["ingestion_status"] == "failed"


def test_get_card_ingests_unknown_movie(ingestor) -> None:
    result = ingestor.get_card(27205)
    assert result.status == "ingested"
    assert result.card["title"] == "Inception"


def test_get_card_serves_stale_card_and_queues_refresh(ingestor, fake_db, fake_tmdb) -> None:
    first = ingestor.ingest("27205")
    calls_after_first = _tmdb_calls(fake_tmdb)
    fake_db.rpc_handlers["is_stale"] = stale_rpc({first.work_id})

    result = ingestor.get_card("27205")

    assert result.status == "cached"
    assert result.card == first.card
    assert _tmdb_calls(fake_tmdb) == calls_after_first
    queued = fake_db.row("refresh_queue", work_id=first.work_id)
    assert queued["status"] == "queued"
    assert queued["priority"] == 5


def test_get_card_upgrades_old_schema(ingestor, fake_db, fake_tmdb) -> None:
    first = ingestor.ingest("27205")
    fake_db.row("works_meta", work_id=first.work_id)["schema_version"] = 1
    calls_before = len(fake_tmdb.calls)

    result = ingestor.get_card("27205")

    assert result.status == "cached_upgraded"
    assert result.card["schema_version"] == CURRENT_SCHEMA_VERSION
    assert result.card["title"] == "Inception"
    assert fake_db.row("works_meta", work_id=first.work_id)["schema_version"] == CURRENT_SCHEMA_VERSION
    new_calls = [method for method, _ in fake_tmdb.calls[calls_before:]]
    assert "fetch_movie_details" not in new_calls
    assert "fetch_movie_videos" in new_calls


def test_get_card_serves_old_card_when_upgrade_fails(ingestor, fake_db) -> None:
    first = ingestor.ingest("27205")
    fake_db.row("works_meta", work_id=first.work_id)["schema_version"] = 1
    fake_db.failures[("work_cards_cache", "upsert")] = RuntimeError("connection reset")

    result = ingestor.get_card("27205")

    assert result.status == "cached"
    assert result.card == first.card
    assert result.upgrade_error
    assert result.to_dict()["upgrade_error"]


def test_get_card_treats_failed_staleness_check_as_stale(ingestor, fake_db) -> None:
    first = ingestor.ingest("27205")
    fake_db.failures[("rpc", "is_stale")] = RuntimeError("timeout")

    result = ingestor.get_card("27205")

    assert result.status == "cached"
    assert fake_db.row("refresh_queue", work_id=first.work_id) is not None


def test_lease_expiry_uses_clock(services) -> None:
    ingestor = MovieIngestor(services=services, now=lambda: FIXED_NOW)
    fresh = {"ingestion_status": "ingesting", "ingestion_started_at": (FIXED_NOW - timedelta(seconds=60)).isoformat()}
    expired = {"ingestion_status": "ingesting", "ingestion_started_at": (FIXED_NOW - timedelta(seconds=600)).isoformat()}
    assert ingestor._is_held_by_other(fresh) is True
    assert ingestor._is_held_by_other(expired) is False
    assert ingestor._is_held_by_other({"ingestion_status": "complete"}) is False
