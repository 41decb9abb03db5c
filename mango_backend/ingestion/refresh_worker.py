"""
Producer and consumer sides of the refresh queue.

`enqueue()` deduplicates per work: a row that is `queued` or `processing` is left as
is, a `completed` row is re-armed, and a dead-lettered `failed` row is re-armed only on
explicit request. `run_worker_batch()` claims a batch with one conditional update and
re-ingests each claimed work serially. A `processing` row older than the queue lease
belongs to a worker that died mid-batch and is claimed again.
"""
from __future__ import annotations

import logging
import time
from datetime import UTC, datetime, timedelta
from typing import Callable

from supabase import Client

from mango_backend.config import IngestConfig
from mango_backend.models.queue import (
    QUEUE_COMPLETED,
    QUEUE_FAILED,
    QUEUE_PENDING_STATUSES,
    QueueItemOutcome,
    WorkerBatchResult,
)
from mango_backend.models.works import IngestResult
from mango_backend.repositories._common import RepositoryError, truncate_error
from mango_backend.repositories.refresh_queue import (
    claim_queue_items,
    get_queue_item,
    insert_queue_item,
    list_queued_candidates,
    mark_queue_item_completed,
    mark_queue_item_failed,
    mark_queue_item_retry,
    rearm_queue_item,
)
from mango_backend.repositories.works import get_work

logger = logging.getLogger(__name__)

IngestFn = Callable[..., IngestResult]


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def enqueue(db: Client, work_id: int, *, priority: int = 0, requeue_failed: bool = False) -> bool:
    """
    Returns True when the work was (re-)queued by this call.
    """

    now = _now_iso()
    existing = get_queue_item(db, work_id)
    if existing is None:
        if insert_queue_item(db, work_id, priority=priority, queued_at=now) is not None:
            logger.info(f"Queued work_id={work_id} for refresh (priority={priority})")
            return True
        # Another producer inserted the row between the read and the insert.
        existing = get_queue_item(db, work_id)
        if existing is None:
            return False

    status = str(existing.get("status") or "")
    if status in QUEUE_PENDING_STATUSES:
        return False

    rearmable = [QUEUE_COMPLETED]
    if requeue_failed:
        rearmable.append(QUEUE_FAILED)
    if status not in rearmable:
        logger.info(f"Not re-queueing work_id={work_id}: status={status}")
        return False

    row = rearm_queue_item(db, work_id, priority=priority, queued_at=now, from_statuses=rearmable)
    if row is not None:
        logger.info(f"Re-queued work_id={work_id} from {status} (priority={priority})")
    return row is not None


def _record_outcome(write: Callable[[], None], *, queue_id: int, status: str) -> None:
    try:
        write()
    except RepositoryError as exc:
        # The row stays `processing`; the next batch reclaims it once the lease runs out.
        logger.error(f"Failed to mark refresh_queue item {queue_id} as {status}: {exc}")


def _process_item(
    db: Client,
    item: dict,
    ingest: IngestFn,
    *,
    max_retries: int,
) -> QueueItemOutcome:
    queue_id = int(item["id"])
    work_id = int(item["work_id"])
    retry_count = int(item.get("retry_count") or 0)

    try:
        work = get_work(db, work_id)
        if work is None or not work.get("tmdb_id"):
            raise LookupError(f"work_id={work_id} not found")
        ingest(str(work["tmdb_id"]), force_refresh=True)
    except Exception as exc:
        retry_count += 1
        error = truncate_error(exc)
        if retry_count < max_retries:
            logger.warning(f"Refresh failed for work_id={work_id} (attempt {retry_count}/{max_retries}): {exc}")
            _record_outcome(
                lambda: mark_queue_item_retry(db, queue_id, retry_count=retry_count, error=error),
                queue_id=queue_id,
                status="retry",
            )
            return QueueItemOutcome(queue_id, work_id, "retry", retry_count, error)
        logger.error(f"Refresh failed for work_id={work_id}; giving up after {retry_count} attempts: {exc}")
        _record_outcome(
            lambda: mark_queue_item_failed(db, queue_id, retry_count=retry_count, error=error, processed_at=_now_iso()),
            queue_id=queue_id,
            status=QUEUE_FAILED,
        )
        return QueueItemOutcome(queue_id, work_id, QUEUE_FAILED, retry_count, error)

    _record_outcome(
        lambda: mark_queue_item_completed(db, queue_id, processed_at=_now_iso()),
        queue_id=queue_id,
        status=QUEUE_COMPLETED,
    )
    return QueueItemOutcome(queue_id, work_id, QUEUE_COMPLETED, retry_count)


def run_worker_batch(
    db: Client,
    config: IngestConfig,
    ingest: IngestFn,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> WorkerBatchResult:
    """
    Claim up to `config.queue_batch_size` queued items and refresh them one by one.

    `ingest` is called as `ingest(tmdb_id, force_refresh=True)` and must raise on
    failure.
    """

    started = time.monotonic()
    now = datetime.now(UTC)
    stale_before = (now - timedelta(seconds=config.queue_processing_lease_seconds)).isoformat()
    candidates = list_queued_candidates(db, limit=config.queue_batch_size, stale_before=stale_before)
    if not candidates:
        logger.info("Refresh queue empty")
        return WorkerBatchResult(processed=0, succeeded=0, failed=0, retried=0, duration_ms=0)

    order = {int(row["id"]): index for index, row in enumerate(candidates)}
    claimed = claim_queue_items(db, order.keys(), claimed_at=now.isoformat(), stale_before=stale_before)
    claimed.sort(key=lambda row: order.get(int(row["id"]), len(order)))
    logger.info(f"Claimed {len(claimed)} of {len(candidates)} queued refresh items")

    outcomes: list[QueueItemOutcome] = []
    for index, item in enumerate(claimed):
        if index and config.queue_item_delay_seconds > 0:
            sleep(config.queue_item_delay_seconds)
        outcomes.append(_process_item(db, item, ingest, max_retries=config.queue_max_retries))

    result = WorkerBatchResult(
        processed=len(outcomes),
        succeeded=sum(1 for o in outcomes if o.status == QUEUE_COMPLETED),
        failed=sum(1 for o in outcomes if o.status == QUEUE_FAILED),
        retried=sum(1 for o in outcomes if o.status == "retry"),
        duration_ms=int((time.monotonic() - started) * 1000),
        items=outcomes,
    )
    logger.info(
        f"Refresh batch done: processed={result.processed} succeeded={result.succeeded} "
        f"failed={result.failed} retried={result.retried}"
    )
    return result
