from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# refresh_queue.status
QUEUE_QUEUED = "queued"
QUEUE_PROCESSING = "processing"
QUEUE_COMPLETED = "completed"
QUEUE_FAILED = "failed"

QUEUE_PENDING_STATUSES = (QUEUE_QUEUED, QUEUE_PROCESSING)


@dataclass(frozen=True)
class QueueItemOutcome:
    queue_id: int
    work_id: int
    status: str
    retry_count: int
    error: str | None = None


@dataclass(frozen=True)
class WorkerBatchResult:
    processed: int
    succeeded: int
    failed: int
    retried: int
    duration_ms: int
    items: list[QueueItemOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "retried": self.retried,
            "duration_ms": self.duration_ms,
            "items": [
                {
                    "queue_id": item.queue_id,
                    "work_id": item.work_id,
                    "status": item.status,
                    "retry_count": item.retry_count,
                    "error": item.error,
                }
                for item in self.items
            ],
        }


@dataclass(frozen=True)
class StaleEnqueueResult:
    found: int
    queued: int
    already_queued: int
    duration_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "queued": self.queued,
            "already_queued": self.already_queued,
            "duration_ms": self.duration_ms,
        }
