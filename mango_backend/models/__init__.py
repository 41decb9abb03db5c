"""
Domain models shared across services and job scripts.
"""

from mango_backend.models.discovery import DiscoveryCandidate, IngestionRunLog
from mango_backend.models.queue import WorkerBatchResult
from mango_backend.models.works import CachedCard, IngestResult, WorkUpsert

__all__ = [
    "CachedCard",
    "DiscoveryCandidate",
    "IngestResult",
    "IngestionRunLog",
    "WorkUpsert",
    "WorkerBatchResult",
]
