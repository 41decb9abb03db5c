"""
Scheduled job triggers: catalog discovery, refresh worker batches and the daily stale pass.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.auth import require_job_token
from api.deps import Ingestor, raise_for_ingestion_error
from mango_backend.ingestion.discovery import DEFAULT_MAX_NEW, run_discovery
from mango_backend.ingestion.refresh_worker import run_worker_batch
from mango_backend.ingestion.staleness import enqueue_stale_works
from mango_backend.repositories._common import RepositoryError

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(require_job_token)])


class DiscoveryRequest(BaseModel):
    source: str = "all"
    max_movies: int = DEFAULT_MAX_NEW
    trigger_type: str = "scheduled"


@router.post("/discovery")
def trigger_discovery(ingestor: Ingestor, body: DiscoveryRequest | None = None) -> dict:
    """Ingest new movies from the TMDb popular / now playing / trending lists."""
    body = body or DiscoveryRequest()
    try:
        run = run_discovery(
            ingestor,
            source=body.source,
            max_new=body.max_movies,
            trigger_type=body.trigger_type,
        )
    except (ValueError, RepositoryError) as exc:
        raise_for_ingestion_error(exc, "discovery")
    return {"success": True, **run.to_dict()}


@router.post("/refresh-worker")
def trigger_refresh_worker(ingestor: Ingestor) -> dict:
    """Process one batch of the refresh queue."""
    services = ingestor.services
    try:
        result = run_worker_batch(services.db, services.config, ingestor.ingest, sleep=ingestor.sleep)
    except RepositoryError as exc:
        raise_for_ingestion_error(exc, "refresh worker")
    return {"success": True, **result.to_dict()}


@router.post("/daily-refresh")
def trigger_daily_refresh(ingestor: Ingestor) -> dict:
    """Queue every stale movie for refresh."""
    services = ingestor.services
    try:
        result = enqueue_stale_works(services.db, limit=services.config.stale_enqueue_limit)
    except RepositoryError as exc:
        raise_for_ingestion_error(exc, "daily refresh")
    return {"success": True, **result.to_dict()}
