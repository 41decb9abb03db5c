from __future__ import annotations

import logging
from typing import Any, Mapping

from mango_backend.ingestion.card_builder import CAST_LIMIT, KEY_CREW_JOBS, MaterializedAssets, select_still_images
from mango_backend.integrations.tmdb.client import build_image_url, pick_trailer
from mango_backend.media.assets import AssetMaterializer
from mango_backend.media.storage import (
    build_movie_image_s3_key,
    build_person_photo_s3_key,
    build_trailer_thumbnail_s3_key,
    ext_from_url,
    get_person_s3_prefix,
)

logger = logging.getLogger(__name__)

PERSON_PHOTO_SIZE = "w185"


def _people_for_photos(credits: Mapping[str, Any], *, limit: int) -> list[dict[str, Any]]:
    """
    Billed cast first, then key crew, deduplicated by person id.
    """

    people: list[dict[str, Any]] = []
    seen: set[str] = set()
    cast = [p for p in (credits.get("cast") or [])[:CAST_LIMIT] if isinstance(p, Mapping)]
    crew = [p for p in (credits.get("crew") or []) if isinstance(p, Mapping) and p.get("job") in KEY_CREW_JOBS]
    for person in cast + crew:
        if len(people) >= limit:
            break
        if person.get("id") is None or not person.get("profile_path"):
            continue
        person_id = str(person["id"])
        if person_id in seen:
            continue
        seen.add(person_id)
        people.append({"person_id": person_id, "profile_path": person["profile_path"]})
    return people


def materialize_trailer_thumbnail(
    materializer: AssetMaterializer | None,
    tmdb_id: str | int,
    videos: Mapping[str, Any],
) -> str | None:
    trailer = pick_trailer(videos)
    key = str(trailer.get("key") or "").strip() if trailer else ""
    if not key or (trailer or {}).get("site") != "YouTube":
        return None
    if materializer is None:
        return None
    return materializer.materialize_video_thumbnail(key, build_trailer_thumbnail_s3_key(tmdb_id, key))


def materialize_still_images(
    materializer: AssetMaterializer | None,
    tmdb_id: str | int,
    images: Mapping[str, Any],
    *,
    limit: int,
    exclude_path: str | None = None,
) -> list[dict[str, Any]]:
    stills = select_still_images(images, limit=limit, exclude_path=exclude_path)
    if materializer is None:
        return stills
    for index, still in enumerate(stills):
        path = str(still["file_path"])
        stored = materializer.materialize(
            still["url"],
            build_movie_image_s3_key(tmdb_id, "stills", f"{index}_{path.lstrip('/').rsplit('.', 1)[0]}", ext_from_url(path)),
        )
        if stored:
            still["url"] = stored
    return stills


def materialize_movie_assets(
    materializer: AssetMaterializer | None,
    tmdb_id: str | int,
    details: Mapping[str, Any],
    credits: Mapping[str, Any],
    videos: Mapping[str, Any],
    images: Mapping[str, Any] | None,
    *,
    max_person_photos: int,
    max_still_images: int,
) -> MaterializedAssets:
    """
    Copy the card's images into our bucket. Every entry is optional; a failed asset stays
    None and the card falls back to the TMDb URL.
    """

    assets = MaterializedAssets()
    poster_path = details.get("poster_path")
    backdrop_path = details.get("backdrop_path")

    if images is not None:
        assets.still_images = materialize_still_images(
            materializer,
            tmdb_id,
            images,
            limit=max_still_images,
            exclude_path=backdrop_path if isinstance(backdrop_path, str) else None,
        )

    if materializer is None:
        return assets

    if isinstance(poster_path, str) and poster_path:
        ext = ext_from_url(poster_path)
        assets.poster_medium = materializer.materialize(
            build_image_url(poster_path, "w342"),
            build_movie_image_s3_key(tmdb_id, "poster", "w342", ext),
        )
        assets.poster_large = materializer.materialize(
            build_image_url(poster_path, "w500"),
            build_movie_image_s3_key(tmdb_id, "poster", "w500", ext),
        )
    if isinstance(backdrop_path, str) and backdrop_path:
        assets.backdrop = materializer.materialize(
            build_image_url(backdrop_path, "w1280"),
            build_movie_image_s3_key(tmdb_id, "backdrop", "w1280", ext_from_url(backdrop_path)),
        )

    assets.trailer_thumbnail = materialize_trailer_thumbnail(materializer, tmdb_id, videos)

    for person in _people_for_photos(credits, limit=max_person_photos):
        person_id = person["person_id"]
        profile_path = str(person["profile_path"])
        stored = materializer.materialize_person_photo(
            build_image_url(profile_path, PERSON_PHOTO_SIZE),
            build_person_photo_s3_key(person_id, PERSON_PHOTO_SIZE, ext_from_url(profile_path)),
            person_prefix=get_person_s3_prefix(person_id),
        )
        if stored:
            assets.person_photos[person_id] = stored

    stored_count = sum(
        1 for v in (assets.poster_medium, assets.poster_large, assets.backdrop, assets.trailer_thumbnail) if v
    )
    logger.info(
        f"Materialized assets for tmdb_id={tmdb_id}: "
        f"{stored_count} movie images, {len(assets.person_photos)} person photos, {len(assets.still_images)} stills"
    )
    return assets
