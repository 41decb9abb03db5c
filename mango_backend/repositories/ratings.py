from __future__ import annotations

from typing import Any, Mapping

from supabase import Client

from mango_backend.repositories._common import RepositoryError, execute, first_row


class RatingRepositoryError(RepositoryError):
    pass


def upsert_rating_source(db: Client, row: Mapping[str, Any]) -> None:
    payload = dict(row)
    execute(
        lambda: db.table("rating_sources").upsert(payload, on_conflict="work_id,source_name"),
        context=f"upserting rating source {payload.get('source_name')}",
        error_cls=RatingRepositoryError,
    )


def upsert_aggregate(db: Client, row: Mapping[str, Any]) -> None:
    payload = dict(row)
    execute(
        lambda: db.table("aggregates").upsert(payload, on_conflict="work_id,method_version"),
        context="upserting aggregate",
        error_cls=RatingRepositoryError,
    )


def get_aggregate(db: Client, work_id: int, *, method_version: str) -> dict[str, Any] | None:
    response = execute(
        lambda: db.table("aggregates")
        .select("*")
        .eq("work_id", int(work_id))
        .eq("method_version", method_version)
        .limit(1),
        context="reading aggregate",
        error_cls=RatingRepositoryError,
    )
    return first_row(response)
