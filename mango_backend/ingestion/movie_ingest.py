"""
Per-movie ingestion pipeline and cache-first card reads.

State machine per work: `pending`/absent -> `ingesting` -> `complete` | `failed`.
The transition to `ingesting` is a conditional update; a caller that loses the race
polls the persisted status instead of starting a duplicate pipeline.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Mapping

from mango_backend.ingestion.card_builder import (
    build_aggregate_row,
    build_card,
    build_card_cache_row,
    build_meta_row,
    build_rating_row,
    build_work_upsert,
)
from mango_backend.ingestion.movie_assets import materialize_movie_assets
from mango_backend.ingestion.refresh_worker import enqueue
from mango_backend.ingestion.schema_upgrades import SchemaUpgradeError, needs_upgrade, upgrade_cached_card
from mango_backend.ingestion.services import IngestionServices
from mango_backend.ingestion.staleness import current_schema_version, is_stale
from mango_backend.integrations.tmdb.client import TmdbClientError, extract_certification, extract_similar_ids
from mango_backend.models.works import (
    INGESTION_COMPLETE,
    INGESTION_INGESTING,
    RESULT_CACHED,
    RESULT_CACHED_UPGRADED,
    RESULT_INGESTED,
    RESULT_UPGRADED,
    CachedCard,
    IngestResult,
)
from mango_backend.repositories._common import RepositoryError
from mango_backend.repositories.card_cache import get_card_row, upsert_card
from mango_backend.repositories.ratings import upsert_aggregate, upsert_rating_source
from mango_backend.repositories.works import (
    claim_work_for_ingestion,
    find_work_by_tmdb_id,
    insert_work_placeholder,
    mark_work_complete,
    mark_work_failed,
    upsert_work,
)
from mango_backend.repositories.works_meta import get_work_meta, upsert_work_meta

logger = logging.getLogger(__name__)

# Claim attempts per request: the initial claim plus one retry after a polled `failed`.
MAX_CLAIM_ATTEMPTS = 2


class IngestionError(RuntimeError):
    pass


class IngestionInProgressError(IngestionError):
    """
    Another caller is ingesting the same movie and did not finish within the poll timeout.
    """


def normalize_tmdb_id(value: Any) -> str:
    text = str(value if value is not None else "").strip()
    if not text.isdigit() or int(text) <= 0:
        raise ValueError(f"Invalid TMDb id: {value!r}")
    return str(int(text))


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass
class MovieIngestor:
    services: IngestionServices
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic
    now: Callable[[], datetime] = _utcnow

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def ingest(self, tmdb_id: str | int, *, force_refresh: bool = False) -> IngestResult:
        """
        Return a current card for `tmdb_id`, running the pipeline only when needed.

        Raises `IngestionInProgressError` when a concurrent ingestion does not finish
        within the poll timeout, and `IngestionError` when the pipeline fails.
        """

        tmdb_id = normalize_tmdb_id(tmdb_id)
        db = self.services.db

        for _ in range(MAX_CLAIM_ATTEMPTS):
            work = find_work_by_tmdb_id(db, tmdb_id)
            polled = False
            if work is not None and not force_refresh and self._is_held_by_other(work):
                logger.info(f"tmdb_id={tmdb_id} is being ingested elsewhere; waiting")
                work = self.wait_for_ingestion(tmdb_id)
                polled = True

            if work is not None and not force_refresh and work.get("ingestion_status") == INGESTION_COMPLETE:
                served = self._serve_complete(tmdb_id, work, check_staleness=not polled)
                if served is not None:
                    return served

            claimed = self._claim(tmdb_id, work, force=force_refresh)
            if claimed is None:
                logger.info(f"Lost ingestion claim for tmdb_id={tmdb_id}; another caller is ingesting")
                continue
            return self._run_pipeline(tmdb_id, claimed)

        raise IngestionInProgressError(f"Ingestion for tmdb_id={tmdb_id} is still in progress")

    def get_card(self, tmdb_id: str | int) -> IngestResult:
        """
        Cache-first read. Missing cards are ingested synchronously; cards behind the
        current schema are upgraded inline; stale cards are served as-is and queued
        for a background refresh.
        """

        tmdb_id = normalize_tmdb_id(tmdb_id)
        db = self.services.db

        work = find_work_by_tmdb_id(db, tmdb_id)
        if work is None or self._is_held_by_other(work):
            return self.ingest(tmdb_id)

        work_id = int(work["work_id"])
        cached = self._load_cached_card(work_id)
        if cached is None:
            return self.ingest(tmdb_id)

        status = RESULT_CACHED
        upgrade_error = None
        if needs_upgrade(cached.schema_version):
            try:
                cached = upgrade_cached_card(self.services, tmdb_id, cached)
                status = RESULT_CACHED_UPGRADED
            except SchemaUpgradeError as exc:
                logger.warning(f"Serving v{cached.schema_version} card for work_id={work_id}: {exc}")
                upgrade_error = str(exc)

        if is_stale(db, work_id):
            try:
                enqueue(db, work_id, priority=self.services.config.stale_card_priority)
            except RepositoryError as exc:
                logger.warning(f"Failed to queue stale work_id={work_id} for refresh: {exc}")

        return IngestResult(
            status=status,
            work_id=work_id,
            card=cached.payload,
            etag=cached.etag,
            upgrade_error=upgrade_error,
        )

    # ------------------------------------------------------------------
    # Claiming and coalescing
    # ------------------------------------------------------------------

    def _lease_cutoff(self) -> datetime:
        return self.now() - timedelta(seconds=self.services.config.ingestion_lease_seconds)

    def _is_held_by_other(self, work: Mapping[str, Any]) -> bool:
        if work.get("ingestion_status") != INGESTION_INGESTING:
            return False
        started = _parse_timestamp(work.get("ingestion_started_at"))
        if started is None:
            return True
        return started >= self._lease_cutoff()

    def wait_for_ingestion(self, tmdb_id: str) -> dict[str, Any] | None:
        config = self.services.config
        deadline = self.clock() + config.poll_timeout_seconds
        while True:
            self.sleep(config.poll_interval_seconds)
            work = find_work_by_tmdb_id(self.services.db, tmdb_id)
            if work is None or work.get("ingestion_status") != INGESTION_INGESTING:
                return work
            if self.clock() >= deadline:
                raise IngestionInProgressError(
                    f"Ingestion for tmdb_id={tmdb_id} still in progress after {config.poll_timeout_seconds:.0f}s"
                )

    def _claim(self, tmdb_id: str, work: Mapping[str, Any] | None, *, force: bool) -> dict[str, Any] | None:
        db = self.services.db
        started_at = self.now().isoformat()
        if work is None:
            return insert_work_placeholder(db, tmdb_id, started_at=started_at)
        return claim_work_for_ingestion(
            db,
            int(work["work_id"]),
            started_at=started_at,
            lease_cutoff=self._lease_cutoff().isoformat(),
            force=force,
        )

    # ------------------------------------------------------------------
    # Cached reads
    # ------------------------------------------------------------------

    def _load_cached_card(self, work_id: int) -> CachedCard | None:
        db = self.services.db
        row = get_card_row(db, work_id)
        if row is None or not isinstance(row.get("payload"), dict):
            return None
        meta = get_work_meta(db, work_id) or {}
        version = meta.get("schema_version") or row["payload"].get("schema_version") or 1
        return CachedCard(
            work_id=work_id,
            payload=row["payload"],
            payload_short=row.get("payload_short"),
            etag=row.get("etag"),
            computed_at=row.get("computed_at"),
            schema_version=int(version),
        )

    def _serve_complete(self, tmdb_id: str, work: Mapping[str, Any], *, check_staleness: bool) -> IngestResult | None:
        work_id = int(work["work_id"])
        cached = self._load_cached_card(work_id)
        if cached is None:
            return None
        if check_staleness and is_stale(self.services.db, work_id):
            return None
        if not needs_upgrade(cached.schema_version):
            logger.info(f"Serving cached card for tmdb_id={tmdb_id} (work_id={work_id})")
            return IngestResult(status=RESULT_CACHED, work_id=work_id, card=cached.payload, etag=cached.etag)
        try:
            upgraded = upgrade_cached_card(self.services, tmdb_id, cached)
        except SchemaUpgradeError as exc:
            logger.warning(f"Schema upgrade failed for work_id={work_id}; running full ingestion: {exc}")
            return None
        return IngestResult(status=RESULT_UPGRADED, work_id=work_id, card=upgraded.payload, etag=upgraded.etag)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _best_effort(self, label: str, tmdb_id: str, fetch: Callable[[], Any]) -> Any:
        try:
            return fetch()
        except TmdbClientError as exc:
            logger.warning(f"Skipping {label} for tmdb_id={tmdb_id}: {exc}")
            return None

    def _mark_failed(self, work_id: int) -> None:
        try:
            mark_work_failed(self.services.db, work_id)
        except RepositoryError as exc:
            logger.error(f"Failed to mark work_id={work_id} as failed: {exc}")

    def _run_pipeline(self, tmdb_id: str, claimed: Mapping[str, Any]) -> IngestResult:
        services = self.services
        db = services.db
        tmdb = services.tmdb
        config = services.config
        work_id = int(claimed["work_id"])
        logger.info(f"Ingesting tmdb_id={tmdb_id} (work_id={work_id})")

        try:
            details = tmdb.fetch_movie_details(tmdb_id)
            credits = tmdb.fetch_movie_credits(tmdb_id)
            videos = tmdb.fetch_movie_videos(tmdb_id)
            similar_ids = self._best_effort(
                "similar movies", tmdb_id, lambda: extract_similar_ids(tmdb.fetch_similar_movies(tmdb_id))
            )
            certification = self._best_effort(
                "certification", tmdb_id, lambda: extract_certification(tmdb.fetch_movie_release_dates(tmdb_id))
            )
            images = self._best_effort("images", tmdb_id, lambda: tmdb.fetch_movie_images(tmdb_id))

            assets = materialize_movie_assets(
                services.materializer,
                tmdb_id,
                details,
                credits,
                videos,
                images,
                max_person_photos=config.max_person_photos,
                max_still_images=config.max_still_images,
            )

            now = self.now().isoformat()
            work = upsert_work(db, build_work_upsert(tmdb_id, details))
            meta = upsert_work_meta(
                db,
                build_meta_row(
                    work_id,
                    details,
                    credits,
                    videos,
                    assets=assets,
                    certification=certification,
                    similar_ids=similar_ids,
                    schema_version=current_schema_version(),
                    fetched_at=now,
                ),
            )
            rating = build_rating_row(work_id, details, seen_at=now)
            upsert_rating_source(db, rating)
            aggregate = build_aggregate_row(work_id, [rating], computed_at=now)
            upsert_aggregate(db, aggregate)

            card = build_card({**work, "work_id": work_id}, meta, aggregate, last_updated=now)
            cache_row = build_card_cache_row(work_id, card, computed_at=now)
            upsert_card(db, cache_row)
            mark_work_complete(db, work_id, refreshed_at=now)
        except (TmdbClientError, RepositoryError) as exc:
            logger.error(f"Ingestion failed for tmdb_id={tmdb_id} (work_id={work_id}): {exc}")
            self._mark_failed(work_id)
            raise IngestionError(f"Ingestion failed for tmdb_id={tmdb_id}: {exc}") from exc
        except Exception:
            self._mark_failed(work_id)
            raise

        logger.info(f"Ingested tmdb_id={tmdb_id} (work_id={work_id}): {card.get('title')}")
        return IngestResult(status=RESULT_INGESTED, work_id=work_id, card=card, etag=cache_row["etag"])
