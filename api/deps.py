"""
Dependency injection for the ingestion services and shared error translation.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from mango_backend.config import ConfigurationError
from mango_backend.ingestion.movie_ingest import IngestionError, IngestionInProgressError, MovieIngestor
from mango_backend.ingestion.services import IngestionServices
from mango_backend.integrations.tmdb.client import TmdbClientError
from mango_backend.models.works import RESULT_ERROR
from mango_backend.repositories._common import RepositoryError
from mango_backend.utils.env import load_env

load_env()

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """
    Error surfaced to API clients as `{"status": "error", "error": ...}`.

    Rendered by `api_error_handler`, registered on the app in `api.main`.
    """

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def api_error_handler(_request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"status": RESULT_ERROR, "error": exc.message})


@lru_cache
def get_ingestion_services() -> IngestionServices:
    """
    Build the shared services bundle once per process.

    Raises ApiError (500) when required configuration is missing.
    """
    try:
        return IngestionServices.from_env()
    except RuntimeError as exc:
        logger.error(f"Ingestion services unavailable: {exc}")
        raise ApiError(500, f"Server misconfigured: {exc}") from exc


def get_movie_ingestor(services: Annotated[IngestionServices, Depends(get_ingestion_services)]) -> MovieIngestor:
    return MovieIngestor(services=services)


# Type aliases for dependency injection
Services = Annotated[IngestionServices, Depends(get_ingestion_services)]
Ingestor = Annotated[MovieIngestor, Depends(get_movie_ingestor)]


def in_progress_response(exc: IngestionInProgressError) -> JSONResponse:
    """
    202 with a retryable error body; the client should retry shortly.
    """
    return JSONResponse(
        status_code=202,
        content={"status": RESULT_ERROR, "retryable": True, "error": str(exc)},
    )


def raise_for_ingestion_error(exc: Exception, context: str) -> None:
    """
    Translate ingestion-layer exceptions into API errors.

    Raises:
        ApiError: 400 for invalid input, 502 for provider/persistence errors,
        500 for configuration errors.
    """
    if isinstance(exc, ValueError):
        raise ApiError(400, str(exc)) from exc
    if isinstance(exc, ConfigurationError):
        raise ApiError(500, f"Server misconfigured: {exc}") from exc
    if isinstance(exc, (IngestionError, TmdbClientError, RepositoryError)):
        logger.error(f"Error during {context}: {exc}")
        raise ApiError(502, f"Upstream error during {context}: {exc}") from exc
    raise exc
