from __future__ import annotations

import json

import pytest

from scripts import enqueue_stale_works, ingest_movie, run_discovery, run_refresh_worker


@pytest.fixture
def patched_ingestor(monkeypatch: pytest.MonkeyPatch, ingestor):
    for module in (ingest_movie, run_discovery, run_refresh_worker, enqueue_stale_works):
        monkeypatch.setattr(module, "load_env_and_ingestor", lambda **_kwargs: ingestor)
    return ingestor


def _last_json(capsys: pytest.CaptureFixture[str]):
    out = capsys.readouterr().out
    start = min(i for i in (out.find("["), out.find("{")) if i >= 0)
    return json.loads(out[start:])


def test_ingest_movie_prints_cards(patched_ingestor, capsys) -> None:
    assert ingest_movie.main(["27205"]) == 0
    results = _last_json(capsys)
    assert results[0]["status"] == "ingested"
    assert results[0]["card"]["title"] == "Inception"


def test_ingest_movie_reports_invalid_id(patched_ingestor, capsys) -> None:
    assert ingest_movie.main(["abc"]) == 1
    assert "ERROR: tmdb_id=abc" in capsys.readouterr().out


def test_run_discovery_script(patched_ingestor, fake_tmdb, fake_db, capsys) -> None:
    fake_tmdb.list_pages = {"popular": [{"results": [{"id": 7, "title": "Movie 7"}]}]}

    assert run_discovery.main(["--source", "popular", "--max-movies", "1"]) == 0

    summary = _last_json(capsys)
    assert summary["movies_ingested"] == 1
    assert fake_db.rows("scheduled_ingestion_log")[0]["trigger_type"] == "manual"


def test_run_refresh_worker_stops_on_empty_queue(patched_ingestor, capsys) -> None:
    assert run_refresh_worker.main(["--batches", "3"]) == 0
    summaries = _last_json(capsys)
    assert len(summaries) == 1
    assert summaries[0]["processed"] == 0


def test_enqueue_specific_work_ids(patched_ingestor, fake_db, capsys) -> None:
    fake_db.insert_row("refresh_queue", {"work_id": 4, "status": "failed"})

    assert enqueue_stale_works.main(["--work-id", "4", "--requeue-failed", "--priority", "2"]) == 0

    assert _last_json(capsys) == {"queued": {"4": True}}
    row = fake_db.row("refresh_queue", work_id=4)
    assert (row["status"], row["priority"]) == ("queued", 2)
