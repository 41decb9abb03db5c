from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from supabase import Client

from mango_backend.config import CURRENT_SCHEMA_VERSION
from mango_backend.ingestion.refresh_worker import enqueue
from mango_backend.models.queue import StaleEnqueueResult
from mango_backend.repositories._common import RepositoryError
from mango_backend.repositories.sync_state import touch_sync_state
from mango_backend.repositories.works import is_work_stale, list_stale_works

logger = logging.getLogger(__name__)

STALE_SYNC_TYPE = "daily_refresh_stale"
DEFAULT_STALE_PRIORITY = 0


def current_schema_version() -> int:
    return CURRENT_SCHEMA_VERSION


def is_stale(db: Client, work_id: int) -> bool:
    """
    Ask the data store whether a work is due for refresh.

    An unanswerable check counts as stale: refreshing is preferred over serving data of
    unknown age.
    """

    try:
        return is_work_stale(db, work_id)
    except RepositoryError as exc:
        logger.warning(f"Staleness check failed for work_id={work_id}; treating as stale: {exc}")
        return True


def enqueue_stale_works(db: Client, *, limit: int = 100) -> StaleEnqueueResult:
    """
    Queue every stale work reported by `get_stale_movies` at default priority.

    Works already queued or processing are counted in `already_queued`; dead-lettered
    items are left alone.
    """

    started = time.monotonic()
    rows = list_stale_works(db, limit=limit)
    logger.info(f"Found {len(rows)} stale works (limit={limit})")

    queued = 0
    already_queued = 0
    for row in rows:
        work_id = row.get("work_id")
        if work_id is None:
            continue
        if enqueue(db, int(work_id), priority=DEFAULT_STALE_PRIORITY):
            queued += 1
        else:
            already_queued += 1

    try:
        touch_sync_state(db, sync_type=STALE_SYNC_TYPE, synced_at=datetime.now(timezone.utc).isoformat())
    except RepositoryError as exc:
        logger.warning(f"Stale works queued but sync_state was not updated: {exc}")
    result = StaleEnqueueResult(
        found=len(rows),
        queued=queued,
        already_queued=already_queued,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    logger.info(f"Stale enqueue done: queued={queued} already_queued={already_queued}")
    return result
