from __future__ import annotations

from typing import Any, Mapping

from supabase import Client

from mango_backend.repositories._common import RepositoryError, execute


class TmdbApiLogRepositoryError(RepositoryError):
    pass


def insert_tmdb_api_log(db: Client, row: Mapping[str, Any]) -> None:
    """Append one provider call to `tmdb_api_logs`."""
    if not row.get("endpoint"):
        raise TmdbApiLogRepositoryError("tmdb_api_logs insert requires endpoint.")
    execute(
        lambda: db.table("tmdb_api_logs").insert(dict(row)),
        context=f"inserting tmdb_api_logs row for {row.get('endpoint')}",
        error_cls=TmdbApiLogRepositoryError,
    )
