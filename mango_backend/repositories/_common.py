from __future__ import annotations

import logging
import time
from typing import Any, Callable

from mango_backend.db.postgrest_cache import PostgrestCacheError, is_pgrst204_error, reload_postgrest_schema

logger = logging.getLogger(__name__)

SCHEMA_RELOAD_RETRY_DELAY_SECONDS = 0.5


class RepositoryError(RuntimeError):
    pass


def raise_for_supabase_error(
    response: Any,
    context: str,
    error_cls: type[RepositoryError] = RepositoryError,
) -> None:
    if hasattr(response, "error") and response.error:
        raise error_cls(f"Supabase error during {context}: {response.error}")


def rows_of(response: Any) -> list[dict[str, Any]]:
    data = getattr(response, "data", None) or []
    if isinstance(data, dict):
        return [data]
    return [row for row in data if isinstance(row, dict)] if isinstance(data, list) else []


def first_row(response: Any) -> dict[str, Any] | None:
    rows = rows_of(response)
    return rows[0] if rows else None


def truncate_error(value: object, *, max_length: int = 1000) -> str | None:
    if value is None:
        return None
    text = str(value)
    if not text:
        return None
    return text[: max(1, int(max_length))]


def _handle_pgrst204_with_retry(
    error: Exception,
    *,
    attempt: int,
    context: str,
    error_cls: type[RepositoryError] = RepositoryError,
) -> bool:
    """
    Returns True when the caller should retry after a PostgREST schema reload.

    Raises `error_cls` when the schema cache is still stale after one retry.
    """

    if not is_pgrst204_error(error):
        return False

    if attempt >= 1:
        raise error_cls(
            f"Supabase error during {context}: {error}\n\n"
            "PostgREST schema cache may still be stale after retry. "
            "Wait 30-60s and try again, or run:\n"
            '  psql "$SUPABASE_DB_URL" -c "NOTIFY pgrst, \'reload schema\';"'
        ) from error

    logger.warning(f"PGRST204 during {context}; reloading PostgREST schema cache and retrying")
    try:
        reload_postgrest_schema()
    except PostgrestCacheError as exc:
        logger.warning(f"Schema cache reload failed: {exc}")
    time.sleep(SCHEMA_RELOAD_RETRY_DELAY_SECONDS)
    return True


def execute(
    build_query: Callable[[], Any],
    *,
    context: str,
    error_cls: type[RepositoryError] = RepositoryError,
) -> Any:
    """
    Build and execute a PostgREST query, normalizing failures into `error_cls`.

    `build_query` is called again for the single PGRST204 retry.
    """

    attempt = 0
    while True:
        try:
            response = build_query().execute()
        except RepositoryError:
            raise
        except Exception as exc:
            if _handle_pgrst204_with_retry(exc, attempt=attempt, context=context, error_cls=error_cls):
                attempt += 1
                continue
            raise error_cls(f"Supabase error during {context}: {exc}") from exc
        raise_for_supabase_error(response, context, error_cls)
        return response
