"""
Version-gated, additive upgrades of cached movie cards.

Each card schema increment registers one step function in `UPGRADE_STEPS`. A step
receives the stored card payload and an `UpgradeContext`, and returns only the fields
that version introduces. Steps never remove or rewrite existing fields; an enrichment
call that fails inside a step yields explicit nulls for that step's fields.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from mango_backend.config import CURRENT_SCHEMA_VERSION
from mango_backend.ingestion.card_builder import build_card_short, build_trailer_fields, compute_etag
from mango_backend.ingestion.movie_assets import materialize_still_images, materialize_trailer_thumbnail
from mango_backend.ingestion.services import IngestionServices
from mango_backend.integrations.tmdb.client import (
    TmdbClientError,
    extract_certification,
    extract_similar_ids,
    image_path_from_url,
)
from mango_backend.models.works import CachedCard
from mango_backend.repositories._common import RepositoryError
from mango_backend.repositories.card_cache import upsert_card
from mango_backend.repositories.works_meta import get_work_meta, update_work_meta

logger = logging.getLogger(__name__)


class SchemaUpgradeError(RuntimeError):
    pass


@dataclass(frozen=True)
class UpgradeContext:
    work_id: int
    tmdb_id: str
    services: IngestionServices


UpgradeStep = Callable[[Mapping[str, Any], UpgradeContext], dict[str, Any]]


def _upgrade_to_v2(payload: Mapping[str, Any], ctx: UpgradeContext) -> dict[str, Any]:
    try:
        videos = ctx.services.tmdb.fetch_movie_videos(ctx.tmdb_id)
    except TmdbClientError as exc:
        logger.warning(f"v2 upgrade: videos unavailable for tmdb_id={ctx.tmdb_id}: {exc}")
        return {"trailers": None, "trailer_thumbnail": None}
    thumbnail = materialize_trailer_thumbnail(ctx.services.materializer, ctx.tmdb_id, videos)
    return build_trailer_fields(videos, trailer_thumbnail=thumbnail)


def _main_backdrop_path(payload: Mapping[str, Any], ctx: UpgradeContext) -> str | None:
    path = image_path_from_url(payload.get("backdrop"))
    if path:
        return path
    # A materialized backdrop is a CDN URL; the mobile variant always points at TMDb.
    try:
        meta = get_work_meta(ctx.services.db, ctx.work_id)
    except RepositoryError as exc:
        logger.warning(f"v3 upgrade: works_meta unavailable for work_id={ctx.work_id}: {exc}")
        return None
    return image_path_from_url((meta or {}).get("backdrop_url_mobile"))


def _upgrade_to_v3(payload: Mapping[str, Any], ctx: UpgradeContext) -> dict[str, Any]:
    tmdb = ctx.services.tmdb
    fields: dict[str, Any] = {"certification": None, "similar_movie_ids": None, "still_images": None}

    try:
        fields["certification"] = extract_certification(tmdb.fetch_movie_release_dates(ctx.tmdb_id))
    except TmdbClientError as exc:
        logger.warning(f"v3 upgrade: release dates unavailable for tmdb_id={ctx.tmdb_id}: {exc}")

    try:
        fields["similar_movie_ids"] = extract_similar_ids(tmdb.fetch_similar_movies(ctx.tmdb_id))
    except TmdbClientError as exc:
        logger.warning(f"v3 upgrade: similar movies unavailable for tmdb_id={ctx.tmdb_id}: {exc}")

    try:
        images = tmdb.fetch_movie_images(ctx.tmdb_id)
    except TmdbClientError as exc:
        logger.warning(f"v3 upgrade: images unavailable for tmdb_id={ctx.tmdb_id}: {exc}")
    else:
        fields["still_images"] = materialize_still_images(
            ctx.services.materializer,
            ctx.tmdb_id,
            images,
            limit=ctx.services.config.max_still_images,
            exclude_path=_main_backdrop_path(payload, ctx),
        )
    return fields


UPGRADE_STEPS: dict[int, UpgradeStep] = {
    2: _upgrade_to_v2,
    3: _upgrade_to_v3,
}


def current_schema_version() -> int:
    return CURRENT_SCHEMA_VERSION


def needs_upgrade(schema_version: int | None) -> bool:
    return int(schema_version or 1) < CURRENT_SCHEMA_VERSION


def apply_upgrade_steps(
    payload: Mapping[str, Any],
    from_version: int,
    ctx: UpgradeContext,
    *,
    to_version: int = CURRENT_SCHEMA_VERSION,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Run every step after `from_version` up to `to_version`.

    Returns `(merged_payload, added_fields)`; `added_fields` also carries the new
    `schema_version`.
    """

    added: dict[str, Any] = {}
    merged = dict(payload)
    for version in range(int(from_version) + 1, int(to_version) + 1):
        step = UPGRADE_STEPS.get(version)
        if step is None:
            raise SchemaUpgradeError(f"No upgrade step registered for schema version {version}")
        fields = step(merged, ctx)
        merged.update(fields)
        added.update(fields)
    added["schema_version"] = int(to_version)
    merged["schema_version"] = int(to_version)
    return merged, added


def upgrade_cached_card(services: IngestionServices, tmdb_id: str, cached: CachedCard) -> CachedCard:
    """
    Upgrade a stored card to the current schema and persist it.

    The card row is written before `works_meta.schema_version` is bumped, so a failed
    meta write only causes the (idempotent) upgrade to run again next time. Raises
    `SchemaUpgradeError`; the previously stored card is untouched when the card write
    fails.
    """

    if not needs_upgrade(cached.schema_version):
        return cached

    ctx = UpgradeContext(work_id=cached.work_id, tmdb_id=str(tmdb_id), services=services)
    merged, added = apply_upgrade_steps(cached.payload, cached.schema_version, ctx)
    computed_at = datetime.now(timezone.utc).isoformat()
    etag = compute_etag(merged)
    payload_short = build_card_short(merged)

    try:
        upsert_card(
            services.db,
            {
                "work_id": cached.work_id,
                "payload": merged,
                "payload_short": payload_short,
                "etag": etag,
                "computed_at": computed_at,
            },
        )
        update_work_meta(services.db, cached.work_id, {**added, "updated_at": computed_at})
    except RepositoryError as exc:
        raise SchemaUpgradeError(f"Failed to persist schema upgrade for work_id={cached.work_id}: {exc}") from exc

    logger.info(
        f"Upgraded card work_id={cached.work_id} from schema v{cached.schema_version} to v{CURRENT_SCHEMA_VERSION}"
    )
    return CachedCard(
        work_id=cached.work_id,
        payload=merged,
        payload_short=payload_short,
        etag=etag,
        computed_at=computed_at,
        schema_version=CURRENT_SCHEMA_VERSION,
    )
