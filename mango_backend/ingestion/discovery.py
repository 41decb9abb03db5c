"""
Proactive catalog discovery: pull TMDb movie lists and ingest titles we don't have yet.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import replace
from typing import Any, Callable

from mango_backend.ingestion.movie_ingest import MovieIngestor
from mango_backend.integrations.tmdb.client import TMDB_MOVIE_LISTS, TmdbClient, TmdbClientError
from mango_backend.models.discovery import (
    DISCOVERY_SOURCES,
    TRIGGER_TYPES,
    DiscoveryCandidate,
    FailedTitle,
    IngestedTitle,
    IngestionRunLog,
)
from mango_backend.repositories._common import RepositoryError, truncate_error
from mango_backend.repositories.ingestion_runs import insert_ingestion_run
from mango_backend.repositories.works import fetch_existing_tmdb_ids

logger = logging.getLogger(__name__)

DEFAULT_MAX_NEW = 20


def _sources_for(source: str) -> list[str]:
    if source not in DISCOVERY_SOURCES:
        raise ValueError(f"Unknown discovery source {source!r}; expected one of {', '.join(DISCOVERY_SOURCES)}")
    if source == "all":
        return list(TMDB_MOVIE_LISTS)
    return [source]


def collect_candidates(
    tmdb: TmdbClient,
    list_name: str,
    *,
    target: int,
    max_pages: int,
    page_delay_seconds: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> list[DiscoveryCandidate]:
    """
    Page through one TMDb list until `target` unique candidates are collected.

    Stops early at `max_pages`, the provider's `total_pages`, or the first failing page.
    """

    candidates: list[DiscoveryCandidate] = []
    seen: set[str] = set()
    page = 1
    while len(candidates) < target and page <= max_pages:
        if page_delay_seconds > 0:
            sleep(page_delay_seconds)
        try:
            payload = tmdb.fetch_movie_list_page(list_name, page=page)
        except TmdbClientError as exc:
            logger.error(f"Failed to fetch {list_name} page {page}: {exc}")
            break

        for item in payload.get("results") or []:
            if not isinstance(item, dict) or item.get("id") is None:
                continue
            tmdb_id = str(item["id"])
            if tmdb_id in seen:
                continue
            seen.add(tmdb_id)
            candidates.append(
                DiscoveryCandidate(
                    tmdb_id=tmdb_id,
                    title=str(item.get("title") or item.get("original_title") or tmdb_id),
                    release_date=item.get("release_date") or None,
                    source=list_name,
                )
            )
            if len(candidates) >= target:
                break

        total_pages = payload.get("total_pages")
        if isinstance(total_pages, int) and page >= total_pages:
            break
        page += 1

    logger.info(f"Collected {len(candidates)} candidates from {list_name} ({page} page(s))")
    return candidates


def dedupe_candidates(candidates: list[DiscoveryCandidate]) -> list[DiscoveryCandidate]:
    unique: dict[str, DiscoveryCandidate] = {}
    for candidate in candidates:
        unique.setdefault(candidate.tmdb_id, candidate)
    return list(unique.values())


def run_discovery(
    ingestor: MovieIngestor,
    *,
    source: str = "all",
    max_new: int = DEFAULT_MAX_NEW,
    trigger_type: str = "scheduled",
) -> IngestionRunLog:
    """
    Ingest up to `max_new` movies from the selected TMDb lists that are not catalogued yet.

    A run-log row is written even when nothing new is found.
    """

    if trigger_type not in TRIGGER_TYPES:
        raise ValueError(f"Unknown trigger type {trigger_type!r}; expected one of {', '.join(TRIGGER_TYPES)}")
    if max_new < 0:
        raise ValueError("max_new must be >= 0")
    list_names = _sources_for(source)

    services = ingestor.services
    config = services.config
    started = time.monotonic()
    logger.info(f"Starting discovery: source={source} max_new={max_new} trigger={trigger_type}")

    target = math.ceil(max_new * config.discovery_candidate_factor)
    collected: list[DiscoveryCandidate] = []
    for list_name in list_names:
        collected.extend(
            collect_candidates(
                services.tmdb,
                list_name,
                target=target,
                max_pages=config.discovery_max_pages_per_source,
                page_delay_seconds=config.discovery_page_delay_seconds,
                sleep=ingestor.sleep,
            )
        )

    candidates = dedupe_candidates(collected)
    existing = fetch_existing_tmdb_ids(services.db, [c.tmdb_id for c in candidates]) if candidates else set()
    new_candidates = [c for c in candidates if c.tmdb_id not in existing]
    to_ingest = new_candidates[:max_new]
    logger.info(
        f"{len(candidates)} unique candidates, {len(existing)} already catalogued, ingesting {len(to_ingest)}"
    )

    ingested: list[IngestedTitle] = []
    failed: list[FailedTitle] = []
    for index, candidate in enumerate(to_ingest):
        if index and config.discovery_ingest_delay_seconds > 0:
            ingestor.sleep(config.discovery_ingest_delay_seconds)
        prefix = f"[{index + 1}/{len(to_ingest)}]"
        try:
            ingestor.ingest(candidate.tmdb_id)
        except Exception as exc:
            logger.error(f"{prefix} Failed: {candidate.title} ({candidate.tmdb_id}): {exc}")
            failed.append(FailedTitle(candidate.tmdb_id, candidate.title, truncate_error(exc) or type(exc).__name__))
            continue
        logger.info(f"{prefix} Ingested: {candidate.title} ({candidate.tmdb_id})")
        ingested.append(IngestedTitle(candidate.tmdb_id, candidate.title, candidate.year))

    run = IngestionRunLog(
        source=source,
        trigger_type=trigger_type,
        movies_checked=len(candidates),
        movies_skipped=len(existing),
        movies_ingested=len(ingested),
        movies_failed=len(failed),
        duration_ms=int((time.monotonic() - started) * 1000),
        ingested=ingested,
        failed=failed,
    )

    log_id: Any = None
    try:
        row = insert_ingestion_run(services.db, run.to_row())
        log_id = (row or {}).get("id")
    except RepositoryError as exc:
        logger.error(f"Failed to write discovery run log: {exc}")

    logger.info(
        f"Discovery done: checked={run.movies_checked} skipped={run.movies_skipped} "
        f"ingested={run.movies_ingested} failed={run.movies_failed} duration_ms={run.duration_ms}"
    )
    if log_id is None:
        return run
    return replace(run, log_id=int(log_id))
