"""
Repository layer for DB access patterns.
"""

from mango_backend.repositories._common import RepositoryError
from mango_backend.repositories.works import (
    WorkRepositoryError,
    fetch_existing_tmdb_ids,
    find_work_by_tmdb_id,
    get_work,
    upsert_work,
)

__all__ = [
    "RepositoryError",
    "WorkRepositoryError",
    "fetch_existing_tmdb_ids",
    "find_work_by_tmdb_id",
    "get_work",
    "upsert_work",
]
