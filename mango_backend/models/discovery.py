from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DISCOVERY_SOURCES = ("popular", "now_playing", "trending", "all")
TRIGGER_TYPES = ("scheduled", "manual")


@dataclass(frozen=True)
class DiscoveryCandidate:
    tmdb_id: str
    title: str
    release_date: str | None = None
    source: str | None = None

    @property
    def year(self) -> int | None:
        if self.release_date and len(self.release_date) >= 4 and self.release_date[:4].isdigit():
            return int(self.release_date[:4])
        return None


@dataclass(frozen=True)
class IngestedTitle:
    tmdb_id: str
    title: str
    year: int | None


@dataclass(frozen=True)
class FailedTitle:
    tmdb_id: str
    title: str
    error: str


@dataclass(frozen=True)
class IngestionRunLog:
    """
    Summary of one discovery run (maps to `scheduled_ingestion_log`).
    """

    source: str
    trigger_type: str
    movies_checked: int
    movies_skipped: int
    movies_ingested: int
    movies_failed: int
    duration_ms: int
    ingested: list[IngestedTitle] = field(default_factory=list)
    failed: list[FailedTitle] = field(default_factory=list)
    log_id: int | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "source": "mixed" if self.source == "all" else self.source,
            "movies_checked": self.movies_checked,
            "movies_skipped": self.movies_skipped,
            "movies_ingested": self.movies_ingested,
            "movies_failed": self.movies_failed,
            "ingested_titles": [f"{m.title} ({m.year or '?'})" for m in self.ingested],
            "failed_titles": [f"{f.title}: {f.error}" for f in self.failed],
            "duration_ms": self.duration_ms,
            "trigger_type": self.trigger_type,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "log_id": self.log_id,
            "source": self.source,
            "trigger_type": self.trigger_type,
            "movies_checked": self.movies_checked,
            "movies_skipped": self.movies_skipped,
            "movies_ingested": self.movies_ingested,
            "movies_failed": self.movies_failed,
            "ingested": [{"tmdb_id": m.tmdb_id, "title": m.title, "year": m.year} for m in self.ingested],
            "failed": [{"tmdb_id": f.tmdb_id, "title": f.title, "error": f.error} for f in self.failed],
            "duration_ms": self.duration_ms,
        }
