from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# works.ingestion_status
INGESTION_PENDING = "pending"
INGESTION_INGESTING = "ingesting"
INGESTION_COMPLETE = "complete"
INGESTION_FAILED = "failed"

# Result discriminators returned by the ingest / get-card entry points.
RESULT_INGESTED = "ingested"
RESULT_CACHED = "cached"
RESULT_CACHED_UPGRADED = "cached_upgraded"
RESULT_UPGRADED = "upgraded"
RESULT_ERROR = "error"


@dataclass(frozen=True)
class WorkUpsert:
    tmdb_id: str
    title: str
    original_title: str | None = None
    imdb_id: str | None = None
    year: int | None = None
    release_date: str | None = None  # YYYY-MM-DD when available


@dataclass(frozen=True)
class CachedCard:
    """
    One `work_cards_cache` row plus the schema version recorded in `works_meta`.
    """

    work_id: int
    payload: dict[str, Any]
    payload_short: dict[str, Any] | None = None
    etag: str | None = None
    computed_at: str | None = None
    schema_version: int = 1


@dataclass(frozen=True)
class IngestResult:
    status: str
    work_id: int | None
    card: dict[str, Any] | None = None
    etag: str | None = None
    upgrade_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"status": self.status, "work_id": self.work_id, "card": self.card}
        if self.upgrade_error:
            out["upgrade_error"] = self.upgrade_error
        return out
