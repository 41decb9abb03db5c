from __future__ import annotations

import pytest

from mango_backend.config import CURRENT_SCHEMA_VERSION
from mango_backend.ingestion import schema_upgrades
from mango_backend.ingestion.schema_upgrades import (
    SchemaUpgradeError,
    UpgradeContext,
    apply_upgrade_steps,
    needs_upgrade,
    upgrade_cached_card,
)
from mango_backend.integrations.tmdb.client import TmdbClientError
from mango_backend.models.works import CachedCard
from tests.fakes import FakeTmdb

V1_PAYLOAD = {
    "work_id": 1,
    "tmdb_id": "27205",
    "title": "Inception",
    "year": 2010,
    "poster": {"small": None, "medium": "https://cdn.example.com/p.jpg", "large": None},
    "ai_score": 83.69,
    "schema_version": 1,
}


def _seed_v1_card(db) -> CachedCard:
    db.insert_row("works_meta", {"work_id": 1, "schema_version": 1})
    db.insert_row("work_cards_cache", {"work_id": 1, "payload": dict(V1_PAYLOAD), "etag": "old"})
    return CachedCard(work_id=1, payload=dict(V1_PAYLOAD), etag="old", schema_version=1)


def test_needs_upgrade() -> None:
    assert needs_upgrade(1)
    assert needs_upgrade(None)
    assert not needs_upgrade(CURRENT_SCHEMA_VERSION)


def test_upgrade_v1_card_adds_fields_and_keeps_existing(services, fake_db, fake_tmdb) -> None:
    cached = _seed_v1_card(fake_db)

    upgraded = upgrade_cached_card(services, "27205", cached)

    payload = upgraded.payload
    for key, value in V1_PAYLOAD.items():
        if key != "schema_version":
            assert payload[key] == value
    assert payload["schema_version"] == CURRENT_SCHEMA_VERSION
    assert [t["key"] for t in payload["trailers"]] == ["YoHD9XEInc0", "8hP9D6kZseM"]
    assert payload["trailer_thumbnail"] is None
    assert payload["certification"] == "PG-13"
    assert payload["similar_movie_ids"] == [157336, 155, 603]
    assert len(payload["still_images"]) == services.config.max_still_images
    assert upgraded.schema_version == CURRENT_SCHEMA_VERSION
    assert upgraded.etag != "old"

    stored = fake_db.row("work_cards_cache", work_id=1)
    assert stored["payload"] == payload
    assert stored["etag"] == upgraded.etag
    meta = fake_db.row("works_meta", work_id=1)
    assert meta["schema_version"] == CURRENT_SCHEMA_VERSION
    assert meta["certification"] == "PG-13"
    assert ("fetch_movie_details", "27205") not in fake_tmdb.calls


def test_failed_enrichment_yields_nulls(services, fake_db) -> None:
    services.tmdb = FakeTmdb(
        fail={
            "fetch_movie_videos": TmdbClientError("down", status_code=503),
            "fetch_movie_release_dates": TmdbClientError("down", status_code=503),
        }
    )
    cached = _seed_v1_card(fake_db)

    payload = upgrade_cached_card(services, "27205", cached).payload

    assert payload["trailers"] is None
    assert payload["trailer_thumbnail"] is None
    assert payload["certification"] is None
    assert payload["similar_movie_ids"] == [157336, 155, 603]
    assert payload["schema_version"] == CURRENT_SCHEMA_VERSION


def test_current_card_is_returned_untouched(services, fake_db) -> None:
    cached = CachedCard(work_id=1, payload={"schema_version": CURRENT_SCHEMA_VERSION}, schema_version=CURRENT_SCHEMA_VERSION)
    assert upgrade_cached_card(services, "27205", cached) is cached
    assert fake_db.calls == []


def test_card_write_failure_leaves_meta_version(services, fake_db) -> None:
    cached = _seed_v1_card(fake_db)
    fake_db.failures[("work_cards_cache", "upsert")] = RuntimeError("connection reset")

    with pytest.raises(SchemaUpgradeError):
        upgrade_cached_card(services, "27205", cached)

    assert fake_db.row("works_meta", work_id=1)["schema_version"] == 1
    assert fake_db.row("work_cards_cache", work_id=1)["etag"] == "old"


def test_missing_step_raises(services, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(schema_upgrades, "UPGRADE_STEPS", {2: schema_upgrades.UPGRADE_STEPS[2]})
    ctx = UpgradeContext(work_id=1, tmdb_id="27205", services=services)

    with pytest.raises(SchemaUpgradeError, match="version 3"):
        apply_upgrade_steps({}, 1, ctx, to_version=3)


def test_partial_upgrade_runs_only_later_steps(services, fake_tmdb) -> None:
    ctx = UpgradeContext(work_id=1, tmdb_id="27205", services=services)

    merged, added = apply_upgrade_steps({"trailers": []}, 2, ctx, to_version=3)

    assert merged["trailers"] == []
    assert "trailers" not in added
    assert added["schema_version"] == 3
    assert not any(method == "fetch_movie_videos" for method, _ in fake_tmdb.calls)


def test_upgrade_v1_card_stills_skip_main_backdrop(services, fake_db) -> None:
    cached = _seed_v1_card(fake_db)
    cached.payload["backdrop"] = "https://image.tmdb.org/t/p/w1280/8ZTVqvKDQ8emSGUEMjsS4yHAwrp.jpg"

    upgraded = upgrade_cached_card(services, "27205", cached)

    stills = upgraded.payload["still_images"]
    assert stills
    assert all(s["file_path"] != "/8ZTVqvKDQ8emSGUEMjsS4yHAwrp.jpg" for s in stills)


def test_upgrade_stills_fall_back_to_mobile_backdrop_when_main_is_on_cdn(services, fake_db) -> None:
    cached = _seed_v1_card(fake_db)
    cached.payload["backdrop"] = "https://cdn.example.com/movies/27205/backdrop.jpg"
    fake_db.row("works_meta", work_id=1)["backdrop_url_mobile"] = (
        "https://image.tmdb.org/t/p/w780/8ZTVqvKDQ8emSGUEMjsS4yHAwrp.jpg"
    )

    upgraded = upgrade_cached_card(services, "27205", cached)

    assert all(s["file_path"] != "/8ZTVqvKDQ8emSGUEMjsS4yHAwrp.jpg" for s in upgraded.payload["still_images"])
