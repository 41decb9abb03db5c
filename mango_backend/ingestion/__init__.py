"""
Ingestion pipeline, refresh queue and discovery for the movie catalog.
"""

from mango_backend.ingestion.movie_ingest import (
    IngestionError,
    IngestionInProgressError,
    MovieIngestor,
    normalize_tmdb_id,
)
from mango_backend.ingestion.services import IngestionServices

__all__ = [
    "IngestionError",
    "IngestionInProgressError",
    "IngestionServices",
    "MovieIngestor",
    "normalize_tmdb_id",
]
