from __future__ import annotations

import logging
import random
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import requests

logger = logging.getLogger(__name__)

TMDB_API_BASE_URL = "https://api.themoviedb.org/3"
TMDB_IMAGE_BASE_URL = "https://image.tmdb.org/t/p"

# list name -> endpoint path
TMDB_MOVIE_LISTS = {
    "popular": "/movie/popular",
    "now_playing": "/movie/now_playing",
    "trending": "/trending/movie/week",
}


class TmdbClientError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, body_snippet: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body_snippet = body_snippet


TMDB_MOVIE_PATH_RE = re.compile(r"^/movie/(\d+)")


@dataclass
class TmdbCall:
    """
    One TMDb request as recorded in `tmdb_api_logs`; retries are folded into `retry_count`.
    """

    endpoint: str
    operation: str
    query_params: dict[str, Any] = field(default_factory=dict)
    http_status: int | None = None
    response_time_ms: int = 0
    response_size_bytes: int | None = None
    results_count: int | None = None
    retry_count: int = 0
    error_message: str | None = None

    @property
    def tmdb_id(self) -> str | None:
        match = TMDB_MOVIE_PATH_RE.match(self.endpoint)
        return match.group(1) if match else None

    def to_row(self) -> dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "method": "GET",
            "operation": self.operation,
            "query_params": self.query_params or None,
            "http_status": self.http_status,
            "response_time_ms": self.response_time_ms,
            "response_size_bytes": self.response_size_bytes,
            "results_count": self.results_count,
            "tmdb_id": self.tmdb_id,
            "retry_count": self.retry_count,
            "error_message": self.error_message,
        }


def build_image_url(path: str | None, size: str = "w500") -> str | None:
    if not isinstance(path, str) or not path.strip():
        return None
    return f"{TMDB_IMAGE_BASE_URL}/{size}{path}"


def image_path_from_url(url: str | None) -> str | None:
    """Inverse of `build_image_url`: `.../t/p/w780/abc.jpg` -> `/abc.jpg`."""

    if not isinstance(url, str) or not url.startswith(f"{TMDB_IMAGE_BASE_URL}/"):
        return None
    name = url.rstrip("/").rsplit("/", 1)[-1]
    return f"/{name}" if name else None


def _request_json(
    session: requests.Session,
    url: str,
    *,
    params: Mapping[str, Any] | None = None,
    timeout_seconds: float = 20.0,
    call: TmdbCall | None = None,
) -> dict[str, Any]:
    headers = {
        "accept": "application/json",
        "user-agent": "mango-backend/0.1",
    }
    max_attempts = 3

    last_response: requests.Response | None = None
    for attempt in range(max_attempts):
        if call is not None:
            call.retry_count = attempt
        try:
            resp = session.get(url, params=params, headers=headers, timeout=timeout_seconds)
        except requests.RequestException as exc:
            if attempt < max_attempts - 1:
                delay = 1.0 * (2**attempt)
                jitter = random.uniform(0.0, delay * 0.25)
                time.sleep(delay + jitter)
                continue
            raise TmdbClientError(f"TMDb request failed: {exc}") from exc

        last_response = resp
        if call is not None:
            call.http_status = resp.status_code
        if resp.status_code == 200:
            break

        retryable = resp.status_code == 429 or 500 <= resp.status_code < 600
        if retryable and attempt < max_attempts - 1:
            delay = 1.0 * (2**attempt)
            retry_after = (resp.headers.get("Retry-After") or "").strip()
            if retry_after.isdigit():
                delay = max(delay, float(retry_after))
            jitter = random.uniform(0.0, delay * 0.25)
            time.sleep(delay + jitter)
            continue

        raise TmdbClientError(
            f"TMDb request failed with HTTP {resp.status_code}.",
            status_code=resp.status_code,
            body_snippet=(resp.text or "")[:400],
        )

    if last_response is None:
        raise TmdbClientError("TMDb request failed (no response).")
    resp = last_response
    if call is not None:
        call.response_size_bytes = len(resp.content or b"")

    try:
        payload = resp.json()
    except ValueError as exc:
        raise TmdbClientError(
            "TMDb returned non-JSON response.",
            status_code=resp.status_code,
            body_snippet=(resp.text or "")[:400],
        ) from exc

    if not isinstance(payload, dict):
        raise TmdbClientError("TMDb returned unexpected JSON shape (not an object).")
    return payload


@dataclass
class TmdbClient:
    """
    Movie endpoints of the TMDb v3 API.

    Every request goes through `_get`, which sleeps `call_delay_seconds` since the
    previous request made by this client, so every caller sharing an instance (including
    concurrent threads) stays under the provider's rate limit.
    """

    api_key: str
    session: requests.Session = field(default_factory=requests.Session)
    call_delay_seconds: float = 0.25
    language: str = "en-US"
    # Receives a `TmdbCall` after every request (success or failure); errors are logged and ignored.
    call_logger: Callable[[TmdbCall], None] | None = None
    _last_call_at: float | None = field(default=None, init=False, repr=False)
    _pace_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if not (self.api_key or "").strip():
            raise TmdbClientError("TMDB_API_KEY is not set.")

    def _pace(self) -> None:
        with self._pace_lock:
            if self._last_call_at is not None and self.call_delay_seconds > 0:
                elapsed = time.monotonic() - self._last_call_at
                remaining = self.call_delay_seconds - elapsed
                if remaining > 0:
                    time.sleep(remaining)
            self._last_call_at = time.monotonic()

    def _get(self, path: str, params: Mapping[str, Any] | None = None, *, operation: str) -> dict[str, Any]:
        self._pace()
        merged: dict[str, Any] = {"api_key": self.api_key}
        merged.update(params or {})
        call = TmdbCall(endpoint=path, operation=operation, query_params=dict(params or {}))
        started = time.monotonic()
        try:
            payload = _request_json(self.session, f"{TMDB_API_BASE_URL}{path}", params=merged, call=call)
            results = payload.get("results")
            if isinstance(results, list):
                call.results_count = len(results)
            return payload
        except TmdbClientError as exc:
            call.error_message = str(exc)[:1000]
            raise
        finally:
            call.response_time_ms = int((time.monotonic() - started) * 1000)
            logger.debug(f"TMDb GET {path} -> {call.http_status} in {call.response_time_ms}ms")
            self._report(call)

    def _report(self, call: TmdbCall) -> None:
        if self.call_logger is None:
            return
        try:
            self.call_logger(call)
        except Exception as exc:
            logger.warning(f"Failed to record TMDb call {call.endpoint}: {exc}")

    def fetch_movie_details(self, tmdb_id: int | str) -> dict[str, Any]:
        return self._get(f"/movie/{int(tmdb_id)}", {"language": self.language}, operation="movie_details")

    def fetch_movie_credits(self, tmdb_id: int | str) -> dict[str, Any]:
        return self._get(f"/movie/{int(tmdb_id)}/credits", {"language": self.language}, operation="movie_credits")

    def fetch_movie_videos(self, tmdb_id: int | str) -> dict[str, Any]:
        return self._get(f"/movie/{int(tmdb_id)}/videos", {"language": self.language}, operation="movie_videos")

    def fetch_similar_movies(self, tmdb_id: int | str, *, page: int = 1) -> dict[str, Any]:
        return self._get(
            f"/movie/{int(tmdb_id)}/similar",
            {"language": self.language, "page": page},
            operation="similar_movies",
        )

    def fetch_movie_release_dates(self, tmdb_id: int | str) -> dict[str, Any]:
        return self._get(f"/movie/{int(tmdb_id)}/release_dates", operation="movie_release_dates")

    def fetch_movie_images(self, tmdb_id: int | str, *, include_image_language: str = "en,null") -> dict[str, Any]:
        return self._get(
            f"/movie/{int(tmdb_id)}/images",
            {"include_image_language": include_image_language},
            operation="movie_images",
        )

    def fetch_movie_list_page(self, list_name: str, *, page: int = 1) -> dict[str, Any]:
        """
        Fetch one page of a TMDb movie list (`popular`, `now_playing`, `trending`).
        """

        path = TMDB_MOVIE_LISTS.get(list_name)
        if path is None:
            raise ValueError(f"Unknown TMDb movie list: {list_name!r}")
        return self._get(path, {"language": self.language, "page": int(page)}, operation=f"movie_list_{list_name}")


def pick_trailer(videos: Mapping[str, Any]) -> dict[str, Any] | None:
    """
    Official YouTube trailer first, then any YouTube trailer, then the first video.
    """

    results = [v for v in (videos.get("results") or []) if isinstance(v, Mapping)]
    if not results:
        return None
    for predicate in (
        lambda v: v.get("type") == "Trailer" and v.get("site") == "YouTube" and v.get("official"),
        lambda v: v.get("type") == "Trailer" and v.get("site") == "YouTube",
    ):
        for video in results:
            if predicate(video):
                return dict(video)
    return dict(results[0])


def extract_certification(release_dates: Mapping[str, Any], *, region: str = "US") -> str | None:
    """
    Return the first non-empty certification for `region` from a `/release_dates` payload.

    Theatrical releases (type 3) are preferred over other release types.
    """

    for country in release_dates.get("results") or []:
        if not isinstance(country, Mapping) or country.get("iso_3166_1") != region:
            continue
        entries = [e for e in (country.get("release_dates") or []) if isinstance(e, Mapping)]
        entries.sort(key=lambda e: 0 if e.get("type") == 3 else 1)
        for entry in entries:
            cert = str(entry.get("certification") or "").strip()
            if cert:
                return cert
    return None


def extract_similar_ids(similar: Mapping[str, Any], *, limit: int = 20) -> list[int]:
    ids: list[int] = []
    for item in similar.get("results") or []:
        if not isinstance(item, Mapping):
            continue
        value = item.get("id")
        if isinstance(value, int) and value not in ids:
            ids.append(value)
        if len(ids) >= limit:
            break
    return ids
