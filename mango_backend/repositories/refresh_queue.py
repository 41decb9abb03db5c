from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from supabase import Client

from mango_backend.models.queue import (
    QUEUE_COMPLETED,
    QUEUE_FAILED,
    QUEUE_PROCESSING,
    QUEUE_QUEUED,
)
from mango_backend.repositories._common import RepositoryError, execute, first_row, rows_of, truncate_error


class RefreshQueueRepositoryError(RepositoryError):
    pass


def _execute(build_query, context: str) -> Any:
    return execute(build_query, context=context, error_cls=RefreshQueueRepositoryError)


def get_queue_item(db: Client, work_id: int) -> dict[str, Any] | None:
    response = _execute(
        lambda: db.table("refresh_queue").select("*").eq("work_id", int(work_id)).limit(1),
        "reading refresh_queue item",
    )
    return first_row(response)


def insert_queue_item(db: Client, work_id: int, *, priority: int, queued_at: str) -> dict[str, Any] | None:
    """
    Insert a queued row unless one already exists for the work (unique `work_id`).

    Returns the inserted row, or None when the work already had a row.
    """

    payload = {
        "work_id": int(work_id),
        "priority": int(priority),
        "status": QUEUE_QUEUED,
        "retry_count": 0,
        "queued_at": queued_at,
    }
    response = _execute(
        lambda: db.table("refresh_queue").upsert(payload, on_conflict="work_id", ignore_duplicates=True),
        "inserting refresh_queue item",
    )
    return first_row(response)


def rearm_queue_item(
    db: Client,
    work_id: int,
    *,
    priority: int,
    queued_at: str,
    from_statuses: Iterable[str],
) -> dict[str, Any] | None:
    """
    Put an existing finished row back in `queued`, only if its status is in `from_statuses`.
    """

    statuses = [s for s in from_statuses if s in (QUEUE_COMPLETED, QUEUE_FAILED)]
    if not statuses:
        return None
    patch = {
        "priority": int(priority),
        "status": QUEUE_QUEUED,
        "retry_count": 0,
        "queued_at": queued_at,
        "processed_at": None,
        "last_error": None,
    }
    response = _execute(
        lambda: db.table("refresh_queue").update(patch).eq("work_id", int(work_id)).in_("status", statuses),
        "re-queueing refresh_queue item",
    )
    return first_row(response)


def list_queued_candidates(db: Client, *, limit: int, stale_before: str | None = None) -> list[dict[str, Any]]:
    """
    Next items to work on, ordered by `(priority desc, queued_at asc)`.

    With `stale_before`, `processing` rows claimed before that timestamp are included
    too: their worker died between the claim and the final status write.
    """

    limit = max(1, int(limit))
    columns = "id,work_id,priority,status,retry_count,queued_at,processed_at"
    rows = rows_of(
        _execute(
            lambda: db.table("refresh_queue")
            .select(columns)
            .eq("status", QUEUE_QUEUED)
            .order("priority", desc=True)
            .order("queued_at", desc=False)
            .limit(limit),
            "listing queued refresh items",
        )
    )
    if stale_before is None:
        return rows

    abandoned = rows_of(
        _execute(
            lambda: db.table("refresh_queue")
            .select(columns)
            .eq("status", QUEUE_PROCESSING)
            .lt("processed_at", stale_before)
            .order("priority", desc=True)
            .order("queued_at", desc=False)
            .limit(limit),
            "listing abandoned refresh items",
        )
    )
    if not abandoned:
        return rows
    merged = sorted(rows + abandoned, key=lambda r: str(r.get("queued_at") or ""))
    merged.sort(key=lambda r: int(r.get("priority") or 0), reverse=True)
    return merged[:limit]


def claim_queue_items(
    db: Client,
    item_ids: Iterable[int],
    *,
    claimed_at: str,
    stale_before: str | None = None,
) -> list[dict[str, Any]]:
    """
    Move the given items to `processing` with conditional updates.

    Only rows still `queued` (or, with `stale_before`, `processing` rows claimed before
    it) are touched; the returned rows are the ones this caller now owns. Rows another
    worker claimed in the meantime are simply absent.
    """

    ids = [int(i) for i in item_ids]
    if not ids:
        return []
    patch = {"status": QUEUE_PROCESSING, "processed_at": claimed_at}
    claimed = rows_of(
        _execute(
            lambda: db.table("refresh_queue").update(patch).in_("id", ids).eq("status", QUEUE_QUEUED),
            "claiming refresh_queue items",
        )
    )
    if stale_before is None:
        return claimed

    remaining = [i for i in ids if i not in {int(row["id"]) for row in claimed}]
    if remaining:
        claimed += rows_of(
            _execute(
                lambda: db.table("refresh_queue")
                .update(patch)
                .in_("id", remaining)
                .eq("status", QUEUE_PROCESSING)
                .lt("processed_at", stale_before),
                "reclaiming abandoned refresh_queue items",
            )
        )
    return claimed


def mark_queue_item_completed(db: Client, item_id: int, *, processed_at: str) -> None:
    _execute(
        lambda: db.table("refresh_queue")
        .update({"status": QUEUE_COMPLETED, "processed_at": processed_at, "last_error": None})
        .eq("id", int(item_id)),
        "marking refresh_queue item completed",
    )


def mark_queue_item_retry(db: Client, item_id: int, *, retry_count: int, error: object) -> None:
    _execute(
        lambda: db.table("refresh_queue")
        .update(
            {
                "status": QUEUE_QUEUED,
                "retry_count": int(retry_count),
                "last_error": truncate_error(error),
                "processed_at": None,
            }
        )
        .eq("id", int(item_id)),
        "re-queueing failed refresh_queue item",
    )


def mark_queue_item_failed(db: Client, item_id: int, *, retry_count: int, error: object, processed_at: str) -> None:
    _execute(
        lambda: db.table("refresh_queue")
        .update(
            {
                "status": QUEUE_FAILED,
                "retry_count": int(retry_count),
                "last_error": truncate_error(error),
                "processed_at": processed_at,
            }
        )
        .eq("id", int(item_id)),
        "dead-lettering refresh_queue item",
    )
