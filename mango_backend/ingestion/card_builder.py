"""
Pure builders turning TMDb payloads into canonical rows and the cached card document.

Nothing here performs I/O; URLs of materialized assets are passed in by the caller.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Mapping

from mango_backend.config import AGGREGATE_METHOD_VERSION
from mango_backend.integrations.tmdb.client import build_image_url, pick_trailer
from mango_backend.models.works import WorkUpsert

CARD_CAST_LIMIT = 8
CAST_LIMIT = 15
CREW_LIMIT = 10
OVERVIEW_SHORT_LENGTH = 150
AGGREGATE_BAND = 5.0

KEY_CREW_JOBS = (
    "Director",
    "Writer",
    "Screenplay",
    "Producer",
    "Director of Photography",
    "Original Music Composer",
)

YOUTUBE_HQ_THUMBNAIL_URL = "https://img.youtube.com/vi/{key}/hqdefault.jpg"


@dataclass
class MaterializedAssets:
    """
    Stable URLs produced by the asset materializer; missing entries fall back to TMDb.
    """

    poster_medium: str | None = None
    poster_large: str | None = None
    backdrop: str | None = None
    trailer_thumbnail: str | None = None
    person_photos: dict[str, str] = field(default_factory=dict)
    still_images: list[dict[str, Any]] = field(default_factory=list)


def _as_str(value: Any) -> str | None:
    if isinstance(value, str):
        text = value.strip()
        return text or None
    return None


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def extract_year(release_date: str | None) -> int | None:
    text = _as_str(release_date)
    if text and len(text) >= 4 and text[:4].isdigit():
        return int(text[:4])
    return None


def format_runtime(minutes: int | None) -> str | None:
    if not isinstance(minutes, int) or minutes <= 0:
        return None
    hours, mins = divmod(minutes, 60)
    if hours and mins:
        return f"{hours}h {mins}m"
    if hours:
        return f"{hours}h"
    return f"{mins}m"


def shorten_overview(overview: str | None, *, length: int = OVERVIEW_SHORT_LENGTH) -> str | None:
    text = _as_str(overview)
    if text is None:
        return None
    if len(text) <= length:
        return text
    return text[:length] + "..."


def _gender_label(value: Any) -> str:
    if value == 1:
        return "female"
    if value == 2:
        return "male"
    return "unknown"


def build_cast_members(
    credits: Mapping[str, Any],
    *,
    photo_urls: Mapping[str, str] | None = None,
    limit: int = CAST_LIMIT,
) -> list[dict[str, Any]]:
    photo_urls = photo_urls or {}
    members: list[dict[str, Any]] = []
    for person in (credits.get("cast") or [])[:limit]:
        if not isinstance(person, Mapping) or person.get("id") is None:
            continue
        person_id = str(person["id"])
        profile_path = person.get("profile_path")
        members.append(
            {
                "person_id": person_id,
                "name": person.get("name"),
                "character": person.get("character"),
                "order": person.get("order"),
                "photo_url_small": build_image_url(profile_path, "w92"),
                "photo_url_medium": photo_urls.get(person_id) or build_image_url(profile_path, "w185"),
                "photo_url_large": build_image_url(profile_path, "h632"),
                "gender": _gender_label(person.get("gender")),
            }
        )
    return members


def build_crew_members(
    credits: Mapping[str, Any],
    *,
    photo_urls: Mapping[str, str] | None = None,
    limit: int = CREW_LIMIT,
) -> list[dict[str, Any]]:
    photo_urls = photo_urls or {}
    members: list[dict[str, Any]] = []
    for person in credits.get("crew") or []:
        if len(members) >= limit:
            break
        if not isinstance(person, Mapping) or person.get("job") not in KEY_CREW_JOBS or person.get("id") is None:
            continue
        person_id = str(person["id"])
        profile_path = person.get("profile_path")
        members.append(
            {
                "person_id": person_id,
                "name": person.get("name"),
                "job": person.get("job"),
                "department": person.get("department"),
                "photo_url_small": build_image_url(profile_path, "w92"),
                "photo_url_medium": photo_urls.get(person_id) or build_image_url(profile_path, "w185"),
            }
        )
    return members


def build_trailers(videos: Mapping[str, Any], *, thumbnails: Mapping[str, str] | None = None) -> list[dict[str, Any]]:
    """
    YouTube trailers and teasers, official ones first.
    """

    thumbnails = thumbnails or {}
    items = [
        v
        for v in (videos.get("results") or [])
        if isinstance(v, Mapping) and v.get("site") == "YouTube" and v.get("type") in ("Trailer", "Teaser") and v.get("key")
    ]
    items.sort(key=lambda v: (0 if v.get("official") else 1, 0 if v.get("type") == "Trailer" else 1))
    trailers: list[dict[str, Any]] = []
    for video in items:
        key = str(video["key"])
        trailers.append(
            {
                "key": key,
                "name": video.get("name"),
                "type": video.get("type"),
                "official": bool(video.get("official")),
                "published_at": video.get("published_at"),
                "thumbnail_url": thumbnails.get(key) or YOUTUBE_HQ_THUMBNAIL_URL.format(key=key),
            }
        )
    return trailers


def build_trailer_fields(videos: Mapping[str, Any], *, trailer_thumbnail: str | None) -> dict[str, Any]:
    trailer = pick_trailer(videos)
    key = _as_str(trailer.get("key")) if trailer else None
    thumbnails = {key: trailer_thumbnail} if key and trailer_thumbnail else {}
    return {
        "trailers": build_trailers(videos, thumbnails=thumbnails),
        "trailer_thumbnail": trailer_thumbnail,
    }


def select_still_images(images: Mapping[str, Any], *, limit: int, exclude_path: str | None = None) -> list[dict[str, Any]]:
    """
    Pick up to `limit` backdrops (highest voted first) to use as stills.
    """

    backdrops = [
        b
        for b in (images.get("backdrops") or [])
        if isinstance(b, Mapping) and _as_str(b.get("file_path")) and b.get("file_path") != exclude_path
    ]
    backdrops.sort(key=lambda b: (_as_float(b.get("vote_average")) or 0.0, b.get("vote_count") or 0), reverse=True)
    stills: list[dict[str, Any]] = []
    seen: set[str] = set()
    for item in backdrops:
        path = str(item["file_path"])
        if path in seen:
            continue
        seen.add(path)
        stills.append(
            {
                "file_path": path,
                "url": build_image_url(path, "w1280"),
                "width": item.get("width"),
                "height": item.get("height"),
            }
        )
        if len(stills) >= limit:
            break
    return stills


def build_work_upsert(tmdb_id: str | int, details: Mapping[str, Any]) -> WorkUpsert:
    release_date = _as_str(details.get("release_date"))
    return WorkUpsert(
        tmdb_id=str(tmdb_id),
        title=_as_str(details.get("title")) or _as_str(details.get("original_title")) or f"TMDb {tmdb_id}",
        original_title=_as_str(details.get("original_title")),
        imdb_id=_as_str(details.get("imdb_id")),
        year=extract_year(release_date),
        release_date=release_date,
    )


def build_meta_row(
    work_id: int,
    details: Mapping[str, Any],
    credits: Mapping[str, Any],
    videos: Mapping[str, Any],
    *,
    assets: MaterializedAssets,
    certification: str | None,
    similar_ids: list[int] | None,
    schema_version: int,
    fetched_at: str,
) -> dict[str, Any]:
    poster_path = details.get("poster_path")
    backdrop_path = details.get("backdrop_path")
    runtime = details.get("runtime") if isinstance(details.get("runtime"), int) else None
    genres = [g.get("name") for g in (details.get("genres") or []) if isinstance(g, Mapping) and g.get("name")]
    trailer = pick_trailer(videos)

    row: dict[str, Any] = {
        "work_id": int(work_id),
        "runtime_minutes": runtime or None,
        "runtime_display": format_runtime(runtime),
        "tagline": _as_str(details.get("tagline")),
        "overview": _as_str(details.get("overview")),
        "overview_short": shorten_overview(details.get("overview")),
        "genres": genres,
        "certification": certification,
        "poster_url_small": build_image_url(poster_path, "w154"),
        "poster_url_medium": assets.poster_medium or build_image_url(poster_path, "w342"),
        "poster_url_large": assets.poster_large or build_image_url(poster_path, "w500"),
        "poster_url_original": build_image_url(poster_path, "original"),
        "backdrop_url": assets.backdrop or build_image_url(backdrop_path, "w1280"),
        "backdrop_url_mobile": build_image_url(backdrop_path, "w780"),
        "trailer_youtube_id": _as_str(trailer.get("key")) if trailer else None,
        "cast_members": build_cast_members(credits, photo_urls=assets.person_photos),
        "crew_members": build_crew_members(credits, photo_urls=assets.person_photos),
        "similar_movie_ids": list(similar_ids) if similar_ids is not None else None,
        "still_images": list(assets.still_images),
        "schema_version": int(schema_version),
        "fetched_at": fetched_at,
        "updated_at": fetched_at,
    }
    row.update(build_trailer_fields(videos, trailer_thumbnail=assets.trailer_thumbnail))
    return row


def build_rating_row(work_id: int, details: Mapping[str, Any], *, seen_at: str) -> dict[str, Any]:
    vote_average = _as_float(details.get("vote_average")) or 0.0
    return {
        "work_id": int(work_id),
        "source_name": "TMDB",
        "scale_type": "0_10",
        "value_raw": vote_average,
        "value_0_100": round(vote_average * 10, 2),
        "votes_count": details.get("vote_count") if isinstance(details.get("vote_count"), int) else None,
        "last_seen_at": seen_at,
    }


def build_aggregate_row(work_id: int, rating_rows: list[Mapping[str, Any]], *, computed_at: str) -> dict[str, Any]:
    """
    Vote-weighted mean of the 0-100 source scores with a fixed confidence band.
    """

    source_scores: dict[str, Any] = {}
    weighted_total = 0.0
    weight_sum = 0
    plain_scores: list[float] = []
    for rating in rating_rows:
        score = _as_float(rating.get("value_0_100"))
        if score is None:
            continue
        votes = rating.get("votes_count") if isinstance(rating.get("votes_count"), int) else 0
        source_scores[str(rating.get("source_name") or "unknown").lower()] = {"score": score, "votes": votes}
        plain_scores.append(score)
        if votes > 0:
            weighted_total += score * votes
            weight_sum += votes

    if weight_sum:
        ai_score = round(weighted_total / weight_sum, 2)
    elif plain_scores:
        ai_score = round(sum(plain_scores) / len(plain_scores), 2)
    else:
        ai_score = None

    return {
        "work_id": int(work_id),
        "method_version": AGGREGATE_METHOD_VERSION,
        "n_audience": len(plain_scores),
        "audience_score": ai_score,
        "ai_score": ai_score,
        "ai_score_low": max(0.0, ai_score - AGGREGATE_BAND) if ai_score is not None else None,
        "ai_score_high": min(100.0, ai_score + AGGREGATE_BAND) if ai_score is not None else None,
        "source_scores": source_scores,
        "computed_at": computed_at,
    }


def build_card(
    work: Mapping[str, Any],
    meta: Mapping[str, Any],
    aggregate: Mapping[str, Any] | None,
    *,
    last_updated: str,
) -> dict[str, Any]:
    aggregate = aggregate or {}
    crew = meta.get("crew_members") or []
    director = next((c.get("name") for c in crew if isinstance(c, Mapping) and c.get("job") == "Director"), None)
    ai_low = aggregate.get("ai_score_low")
    ai_high = aggregate.get("ai_score_high")
    return {
        "work_id": work.get("work_id"),
        "tmdb_id": str(work.get("tmdb_id")),
        "imdb_id": work.get("imdb_id"),
        "title": work.get("title"),
        "original_title": work.get("original_title"),
        "year": work.get("year"),
        "release_date": work.get("release_date"),
        "runtime_minutes": meta.get("runtime_minutes"),
        "runtime_display": meta.get("runtime_display"),
        "tagline": meta.get("tagline"),
        "overview": meta.get("overview"),
        "overview_short": meta.get("overview_short"),
        "genres": list(meta.get("genres") or []),
        "poster": {
            "small": meta.get("poster_url_small"),
            "medium": meta.get("poster_url_medium"),
            "large": meta.get("poster_url_large"),
        },
        "backdrop": meta.get("backdrop_url"),
        "trailer_youtube_id": meta.get("trailer_youtube_id"),
        "trailer_thumbnail": meta.get("trailer_thumbnail"),
        "trailers": meta.get("trailers"),
        "certification": meta.get("certification"),
        "cast": list(meta.get("cast_members") or [])[:CARD_CAST_LIMIT],
        "director": director,
        "ai_score": aggregate.get("ai_score"),
        "ai_score_range": [ai_low, ai_high] if ai_low is not None and ai_high is not None else None,
        "source_scores": aggregate.get("source_scores") or {},
        "similar_movie_ids": meta.get("similar_movie_ids"),
        "still_images": meta.get("still_images"),
        "schema_version": meta.get("schema_version"),
        "last_updated": last_updated,
    }


def build_card_short(card: Mapping[str, Any]) -> dict[str, Any]:
    poster = card.get("poster") or {}
    return {
        "work_id": card.get("work_id"),
        "title": card.get("title"),
        "year": card.get("year"),
        "poster": poster.get("medium") if isinstance(poster, Mapping) else None,
        "ai_score": card.get("ai_score"),
    }


def compute_etag(payload: Mapping[str, Any]) -> str:
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()[:32]


def build_card_cache_row(work_id: int, card: Mapping[str, Any], *, computed_at: str) -> dict[str, Any]:
    payload = dict(card)
    return {
        "work_id": int(work_id),
        "payload": payload,
        "payload_short": build_card_short(payload),
        "etag": compute_etag(payload),
        "computed_at": computed_at,
    }
