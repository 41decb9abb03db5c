"""
Movie endpoints: ingestion, cache-first card reads and similar-movie lookups.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, Field

from api.deps import Ingestor, in_progress_response, raise_for_ingestion_error
from mango_backend.ingestion.movie_ingest import IngestionError, IngestionInProgressError
from mango_backend.ingestion.similar_movies import resolve_similar_movies
from mango_backend.integrations.tmdb.client import TmdbClientError
from mango_backend.models.works import IngestResult
from mango_backend.repositories._common import RepositoryError

router = APIRouter(prefix="/movies", tags=["movies"])

_HANDLED_ERRORS = (ValueError, IngestionError, TmdbClientError, RepositoryError)


# --- Pydantic models ---

class IngestRequest(BaseModel):
    tmdb_id: int | str
    force_refresh: bool = False


class MovieResponse(BaseModel):
    status: str
    work_id: int | None
    card: dict[str, Any] | None
    upgrade_error: str | None = None


class SimilarRequest(BaseModel):
    tmdb_ids: list[int | str] = Field(default_factory=list)


class SimilarMovie(BaseModel):
    tmdb_id: int
    title: str
    year: int | None
    poster_url: str | None
    rating: float | None


class SimilarResponse(BaseModel):
    movies: list[SimilarMovie]


def _with_etag(response: Response, result: IngestResult) -> dict[str, Any]:
    if result.etag:
        response.headers["ETag"] = f'"{result.etag}"'
    return result.to_dict()


# --- Endpoints ---

@router.post("/ingest", response_model=MovieResponse)
def ingest_movie(ingestor: Ingestor, body: IngestRequest, response: Response):
    """Ingest a movie by TMDb id, or return its cached card when current."""
    try:
        result = ingestor.ingest(body.tmdb_id, force_refresh=body.force_refresh)
    except IngestionInProgressError as exc:
        return in_progress_response(exc)
    except _HANDLED_ERRORS as exc:
        raise_for_ingestion_error(exc, "movie ingestion")
    return _with_etag(response, result)


@router.get("/{tmdb_id}/card", response_model=MovieResponse)
def get_movie_card(ingestor: Ingestor, tmdb_id: str, request: Request, response: Response):
    """Cache-first card read; honours If-None-Match."""
    try:
        result = ingestor.get_card(tmdb_id)
    except IngestionInProgressError as exc:
        return in_progress_response(exc)
    except _HANDLED_ERRORS as exc:
        raise_for_ingestion_error(exc, "card lookup")

    if result.etag and request.headers.get("If-None-Match", "").strip('"') == result.etag:
        return Response(status_code=304, headers={"ETag": f'"{result.etag}"'})
    return _with_etag(response, result)


@router.post("/similar", response_model=SimilarResponse)
def get_similar_movies(ingestor: Ingestor, body: SimilarRequest) -> dict:
    """Resolve (and auto-ingest) up to ten similar movies."""
    if not body.tmdb_ids:
        raise_for_ingestion_error(ValueError("tmdb_ids array required"), "similar movies")
    try:
        movies = resolve_similar_movies(ingestor, body.tmdb_ids)
    except _HANDLED_ERRORS as exc:
        raise_for_ingestion_error(exc, "similar movies")
    return {"movies": movies}
