from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from supabase import Client

from mango_backend.models.works import (
    INGESTION_COMPLETE,
    INGESTION_FAILED,
    INGESTION_INGESTING,
    WorkUpsert,
)
from mango_backend.repositories._common import RepositoryError, execute, first_row, rows_of


class WorkRepositoryError(RepositoryError):
    pass


def _execute(build_query, context: str) -> Any:
    return execute(build_query, context=context, error_cls=WorkRepositoryError)


def find_work_by_tmdb_id(db: Client, tmdb_id: str | int) -> dict[str, Any] | None:
    response = _execute(
        lambda: db.table("works").select("*").eq("tmdb_id", str(tmdb_id)).limit(1),
        "finding work by tmdb id",
    )
    return first_row(response)


def get_work(db: Client, work_id: int) -> dict[str, Any] | None:
    response = _execute(
        lambda: db.table("works").select("*").eq("work_id", int(work_id)).limit(1),
        "reading work",
    )
    return first_row(response)


def insert_work_placeholder(db: Client, tmdb_id: str | int, *, started_at: str) -> dict[str, Any] | None:
    """
    Create a Work already claimed for ingestion.

    Returns None when another caller inserted the same tmdb id first.
    """

    payload = {
        "tmdb_id": str(tmdb_id),
        "ingestion_status": INGESTION_INGESTING,
        "ingestion_started_at": started_at,
    }
    response = _execute(
        lambda: db.table("works").upsert(payload, on_conflict="tmdb_id", ignore_duplicates=True),
        "inserting work placeholder",
    )
    return first_row(response)


def claim_work_for_ingestion(
    db: Client,
    work_id: int,
    *,
    started_at: str,
    lease_cutoff: str,
    force: bool = False,
) -> dict[str, Any] | None:
    """
    Move a Work to `ingesting` with a status precondition.

    The claim succeeds when the Work is not `ingesting`, or when its
    `ingestion_started_at` is older than `lease_cutoff` (an abandoned pipeline).
    `force=True` claims unconditionally. Returns the claimed row, or None when another
    caller holds the claim.
    """

    patch = {"ingestion_status": INGESTION_INGESTING, "ingestion_started_at": started_at}
    if force:
        response = _execute(
            lambda: db.table("works").update(patch).eq("work_id", int(work_id)),
            "force-claiming work",
        )
        return first_row(response)

    response = _execute(
        lambda: db.table("works")
        .update(patch)
        .eq("work_id", int(work_id))
        .neq("ingestion_status", INGESTION_INGESTING),
        "claiming work",
    )
    row = first_row(response)
    if row is not None:
        return row

    response = _execute(
        lambda: db.table("works")
        .update(patch)
        .eq("work_id", int(work_id))
        .eq("ingestion_status", INGESTION_INGESTING)
        .lt("ingestion_started_at", lease_cutoff),
        "reclaiming abandoned work",
    )
    return first_row(response)


def upsert_work(db: Client, work: WorkUpsert) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "tmdb_id": str(work.tmdb_id),
        "imdb_id": work.imdb_id,
        "title": work.title,
        "original_title": work.original_title,
        "year": work.year,
        "release_date": work.release_date,
    }
    response = _execute(
        lambda: db.table("works").upsert(payload, on_conflict="tmdb_id"),
        "upserting work",
    )
    row = first_row(response)
    if row is None:
        raise WorkRepositoryError("Supabase upsert returned no data for work.")
    return row


def mark_work_complete(db: Client, work_id: int, *, refreshed_at: str) -> None:
    _execute(
        lambda: db.table("works")
        .update({"ingestion_status": INGESTION_COMPLETE, "last_refreshed_at": refreshed_at})
        .eq("work_id", int(work_id)),
        "marking work complete",
    )


def mark_work_failed(db: Client, work_id: int) -> None:
    _execute(
        lambda: db.table("works").update({"ingestion_status": INGESTION_FAILED}).eq("work_id", int(work_id)),
        "marking work failed",
    )


def fetch_existing_tmdb_ids(db: Client, tmdb_ids: Iterable[str | int], *, chunk_size: int = 200) -> set[str]:
    """
    Return the subset of `tmdb_ids` that already have a Work row.
    """

    ids = list(dict.fromkeys(str(v).strip() for v in tmdb_ids if str(v).strip()))
    existing: set[str] = set()
    step = max(1, int(chunk_size))
    for i in range(0, len(ids), step):
        chunk = ids[i : i + step]
        response = _execute(
            lambda: db.table("works").select("tmdb_id").in_("tmdb_id", chunk),
            "listing existing works",
        )
        for row in rows_of(response):
            value = row.get("tmdb_id")
            if value is not None:
                existing.add(str(value))
    return existing


def is_work_stale(db: Client, work_id: int) -> bool:
    response = _execute(
        lambda: db.rpc("is_stale", {"work_id_input": int(work_id)}),
        "checking staleness",
    )
    data = getattr(response, "data", None)
    if isinstance(data, list):
        data = data[0] if data else None
    return bool(data)


def list_stale_works(db: Client, *, limit: int = 100) -> list[dict[str, Any]]:
    response = _execute(
        lambda: db.rpc("get_stale_movies", {"limit_count": int(limit)}),
        "listing stale works",
    )
    return rows_of(response)
