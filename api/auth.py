"""
Authentication for job endpoints.

Job triggers (discovery, refresh worker, daily refresh) are invoked by a scheduler
with a shared bearer token from `MANGO_JOBS_TOKEN`.
"""

from __future__ import annotations

import hmac
import logging
import os

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)


def get_bearer_token(request: Request) -> str | None:
    """
    Extract Bearer token from Authorization header.

    Returns None if no token is present.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None

    return parts[1]


def require_job_token(request: Request) -> None:
    """
    Dependency that rejects job requests without the configured token.

    Raises 500 if the server has no token configured, 401 otherwise.
    """
    expected = (os.getenv("MANGO_JOBS_TOKEN") or "").strip()
    if not expected:
        logger.error("MANGO_JOBS_TOKEN is not set; refusing job request")
        raise HTTPException(status_code=500, detail="Server misconfigured: MANGO_JOBS_TOKEN is not set")

    token = get_bearer_token(request)
    if not token or not hmac.compare_digest(token, expected):
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
