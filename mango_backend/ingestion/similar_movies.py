from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Iterable, Mapping

from mango_backend.config import AGGREGATE_METHOD_VERSION
from mango_backend.ingestion.movie_ingest import IngestionError, MovieIngestor, normalize_tmdb_id
from mango_backend.models.works import INGESTION_COMPLETE, INGESTION_INGESTING
from mango_backend.repositories._common import RepositoryError
from mango_backend.repositories.ratings import get_aggregate
from mango_backend.repositories.works import find_work_by_tmdb_id, get_work
from mango_backend.repositories.works_meta import get_work_meta

logger = logging.getLogger(__name__)


def _summarize(ingestor: MovieIngestor, tmdb_id: str, work: Mapping[str, Any]) -> dict[str, Any]:
    db = ingestor.services.db
    work_id = int(work["work_id"])
    meta = get_work_meta(db, work_id) or {}
    aggregate = get_aggregate(db, work_id, method_version=AGGREGATE_METHOD_VERSION) or {}
    ai_score = aggregate.get("ai_score")
    return {
        "tmdb_id": int(tmdb_id),
        "title": work.get("title") or "Unknown",
        "year": work.get("year"),
        "poster_url": meta.get("poster_url_medium"),
        "rating": round(float(ai_score) / 10, 1) if ai_score else None,
    }


def _normalize_ids(tmdb_ids: Iterable[Any], *, limit: int) -> list[str]:
    ids: list[str] = []
    for value in tmdb_ids:
        if len(ids) >= limit:
            break
        try:
            tmdb_id = normalize_tmdb_id(value)
        except ValueError:
            logger.warning(f"Ignoring invalid similar-movie id {value!r}")
            continue
        if tmdb_id not in ids:
            ids.append(tmdb_id)
    return ids


def resolve_similar_movies(ingestor: MovieIngestor, tmdb_ids: Iterable[Any]) -> list[dict[str, Any]]:
    """
    Summaries for up to `similar_max_ids` movies, in input order.

    Catalogued movies are read from the store, movies mid-ingestion are awaited, and
    unknown movies are ingested concurrently (at most `similar_max_concurrent` at a
    time). Movies that cannot be resolved are omitted.
    """

    services = ingestor.services
    config = services.config
    ids = _normalize_ids(tmdb_ids, limit=config.similar_max_ids)
    logger.info(f"Resolving {len(ids)} similar movies")

    results: dict[str, dict[str, Any]] = {}
    to_ingest: list[str] = []
    for tmdb_id in ids:
        try:
            work = find_work_by_tmdb_id(services.db, tmdb_id)
            if work is not None and work.get("ingestion_status") == INGESTION_INGESTING:
                work = ingestor.wait_for_ingestion(tmdb_id)
                if work is None or work.get("ingestion_status") != INGESTION_COMPLETE:
                    logger.warning(f"Ingestion of similar movie tmdb_id={tmdb_id} did not complete")
                    continue
            if work is not None and work.get("ingestion_status") == INGESTION_COMPLETE:
                results[tmdb_id] = _summarize(ingestor, tmdb_id, work)
            else:
                to_ingest.append(tmdb_id)
        except (RepositoryError, IngestionError) as exc:
            logger.warning(f"Skipping similar movie tmdb_id={tmdb_id}: {exc}")

    if to_ingest:
        semaphore = threading.BoundedSemaphore(config.similar_max_concurrent)

        def run_one(tmdb_id: str) -> tuple[str, dict[str, Any] | None, str | None]:
            with semaphore:
                ingestor.sleep(config.similar_start_delay_seconds)
                try:
                    result = ingestor.ingest(tmdb_id)
                    work = get_work(services.db, int(result.work_id)) if result.work_id is not None else None
                    if work is None:
                        return tmdb_id, None, "work missing after ingestion"
                    return tmdb_id, _summarize(ingestor, tmdb_id, work), None
                except (IngestionError, RepositoryError, ValueError) as exc:
                    return tmdb_id, None, str(exc)

        with ThreadPoolExecutor(max_workers=config.similar_max_concurrent) as pool:
            futures = {pool.submit(run_one, tmdb_id): tmdb_id for tmdb_id in to_ingest}
            for fut in as_completed(futures):
                tmdb_id, summary, error = fut.result()
                if error:
                    logger.warning(f"Auto-ingest failed for similar movie tmdb_id={tmdb_id}: {error}")
                    continue
                results[tmdb_id] = summary

    return [results[tmdb_id] for tmdb_id in ids if tmdb_id in results]
