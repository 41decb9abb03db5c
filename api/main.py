"""
Mango Backend API - FastAPI application.

Provides endpoints for:
- Ingesting movies and reading cached movie cards
- Resolving similar movies
- Triggering discovery, refresh-queue and stale-refresh jobs
"""
from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.deps import ApiError, api_error_handler
from api.routers import jobs, movies

logger = logging.getLogger(__name__)


def get_cors_origins() -> list[str]:
    """
    Get CORS allowed origins from environment.
    Set CORS_ALLOW_ORIGINS as comma-separated list of origins.
    """
    origins_str = os.getenv("CORS_ALLOW_ORIGINS", "")
    if not origins_str:
        return []
    return [origin.strip() for origin in origins_str.split(",") if origin.strip()]


app = FastAPI(
    title="Mango Backend API",
    description="Movie metadata ingestion and card service",
    version="0.1.0",
)

# If no origins configured, allows all origins but disables credentials
cors_origins = get_cors_origins()
allow_credentials = len(cors_origins) > 0

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins if cors_origins else ["*"],
    allow_credentials=allow_credentials,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["ETag"],
)

app.add_exception_handler(ApiError, api_error_handler)

app.include_router(movies.router, prefix="/api/v1")
app.include_router(jobs.router, prefix="/api/v1")


@app.get("/")
def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "mango-backend"}


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "healthy"}
