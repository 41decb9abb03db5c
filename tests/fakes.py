"""
In-memory stand-ins for the Supabase client and the TMDb client.

`FakeSupabase` implements the subset of the PostgREST query builder used by
`mango_backend.repositories`: select/insert/upsert/update with eq/neq/in_/lt filters,
order, limit, and registered RPC handlers.
"""
from __future__ import annotations

import copy
import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

FIXTURES_DIR = Path(__file__).parent / "fixtures" / "tmdb"

IDENTITY_COLUMNS = {
    "works": "work_id",
    "refresh_queue": "id",
    "scheduled_ingestion_log": "id",
}

COLUMN_DEFAULTS: dict[str, dict[str, Any]] = {
    "works": {"ingestion_status": "pending", "ingestion_started_at": None, "last_refreshed_at": None},
    "refresh_queue": {"status": "queued", "retry_count": 0, "priority": 0, "processed_at": None, "last_error": None},
}


@dataclass
class FakeResponse:
    data: Any
    error: Any = None
    count: int | None = None


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._on_conflict: list[str] = []
        self._ignore_duplicates = False
        self._filters: list[Callable[[dict[str, Any]], bool]] = []
        self._orders: list[tuple[str, bool]] = []
        self._limit: int | None = None

    # --- operations ---

    def select(self, *_columns: str, **_kwargs: Any) -> "FakeQuery":
        self._op = "select"
        return self

    def insert(self, payload: Any, **_kwargs: Any) -> "FakeQuery":
        self._op = "insert"
        self._payload = payload
        return self

    def upsert(self, payload: Any, *, on_conflict: str = "", ignore_duplicates: bool = False, **_kwargs: Any) -> "FakeQuery":
        self._op = "upsert"
        self._payload = payload
        self._on_conflict = [c.strip() for c in on_conflict.split(",") if c.strip()]
        self._ignore_duplicates = ignore_duplicates
        return self

    def update(self, patch: dict[str, Any], **_kwargs: Any) -> "FakeQuery":
        self._op = "update"
        self._payload = patch
        return self

    # --- filters ---

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: row.get(column) is not None and row.get(column) == value)
        return self

    def neq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: row.get(column) is not None and row.get(column) != value)
        return self

    def in_(self, column: str, values: Any) -> "FakeQuery":
        allowed = list(values)
        self._filters.append(lambda row: row.get(column) in allowed)
        return self

    def lt(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: row.get(column) is not None and row.get(column) < value)
        return self

    def order(self, column: str, *, desc: bool = False, **_kwargs: Any) -> "FakeQuery":
        self._orders.append((column, desc))
        return self

    def limit(self, count: int, **_kwargs: Any) -> "FakeQuery":
        self._limit = int(count)
        return self

    # --- execution ---

    def _matches(self, row: dict[str, Any]) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self) -> FakeResponse:
        with self._db.lock:
            self._db.calls.append((self._table, self._op))
            failure = self._db.failures.get((self._table, self._op))
            if failure is not None:
                raise failure
            rows = self._db.tables.setdefault(self._table, [])
            if self._op == "select":
                data = self._select(rows)
            elif self._op == "insert":
                data = [self._db.insert_row(self._table, item) for item in self._items()]
            elif self._op == "upsert":
                data = self._upsert(rows)
            else:
                data = self._update(rows)
            return FakeResponse(data=copy.deepcopy(data))

    def _items(self) -> list[dict[str, Any]]:
        payload = self._payload
        return [dict(p) for p in payload] if isinstance(payload, list) else [dict(payload)]

    def _select(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        selected = [row for row in rows if self._matches(row)]
        for column, desc in reversed(self._orders):
            present = [r for r in selected if r.get(column) is not None]
            missing = [r for r in selected if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=desc)
            selected = present + missing
        if self._limit is not None:
            selected = selected[: self._limit]
        return selected

    def _upsert(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for item in self._items():
            existing = next(
                (r for r in rows if self._on_conflict and all(r.get(c) == item.get(c) for c in self._on_conflict)),
                None,
            )
            if existing is None:
                out.append(self._db.insert_row(self._table, item))
            elif not self._ignore_duplicates:
                existing.update(copy.deepcopy(item))
                out.append(existing)
        return out

    def _update(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        updated = []
        for row in rows:
            if self._matches(row):
                row.update(copy.deepcopy(self._payload))
                updated.append(row)
        return updated


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: dict[str, Any]) -> None:
        self._db = db
        self._name = name
        self._params = params

    def execute(self) -> FakeResponse:
        self._db.calls.append(("rpc", self._name))
        failure = self._db.failures.get(("rpc", self._name))
        if failure is not None:
            raise failure
        handler = self._db.rpc_handlers.get(self._name)
        if handler is None:
            raise RuntimeError(f"no rpc handler registered for {self._name}")
        return FakeResponse(data=handler(self._db, **self._params))


@dataclass
class FakeSupabase:
    tables: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    rpc_handlers: dict[str, Callable[..., Any]] = field(default_factory=dict)
    failures: dict[tuple[str, str], Exception] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    lock: Any = field(default_factory=threading.RLock)
    _next_ids: dict[str, int] = field(default_factory=dict)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict[str, Any] | None = None) -> FakeRpc:
        return FakeRpc(self, name, dict(params or {}))

    def insert_row(self, table: str, item: dict[str, Any]) -> dict[str, Any]:
        row = {**COLUMN_DEFAULTS.get(table, {}), **copy.deepcopy(item)}
        identity = IDENTITY_COLUMNS.get(table)
        if identity and row.get(identity) is None:
            next_id = self._next_ids.get(table, 1)
            existing_ids = [r.get(identity) for r in self.tables.get(table, []) if isinstance(r.get(identity), int)]
            next_id = max([next_id, *[i + 1 for i in existing_ids]])
            row[identity] = next_id
            self._next_ids[table] = next_id + 1
        self.tables.setdefault(table, []).append(row)
        return row

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.get(table, [])

    def row(self, table: str, **match: Any) -> dict[str, Any] | None:
        return next((r for r in self.rows(table) if all(r.get(k) == v for k, v in match.items())), None)

    def ops(self, table: str, op: str | None = None) -> int:
        return sum(1 for t, o in self.calls if t == table and (op is None or o == op))


def stale_rpc(stale_ids: set[int] | None = None) -> Callable[..., Any]:
    """
    `is_stale` handler: only the given work ids are stale.
    """

    stale_ids = stale_ids or set()

    def handler(_db: FakeSupabase, work_id_input: int) -> bool:
        return int(work_id_input) in stale_ids

    return handler


def load_fixture(name: str) -> dict[str, Any]:
    return json.loads((FIXTURES_DIR / f"{name}.json").read_text())


class FakeTmdb:
    """
    Serves fixture payloads for any movie id; records every call.

    `fail` maps a method name to an exception raised on every call.
    """

    def __init__(self, *, fail: dict[str, Exception] | None = None, list_pages: dict[str, list[Any]] | None = None) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail = dict(fail or {})
        self.list_pages = dict(list_pages or {})
        self._lock = threading.Lock()

    def _record(self, method: str, arg: Any) -> None:
        with self._lock:
            self.calls.append((method, str(arg)))
        error = self.fail.get(method)
        if error is not None:
            raise error

    def _details(self, tmdb_id: Any) -> dict[str, Any]:
        details = load_fixture("movie_details")
        if str(tmdb_id) != str(details["id"]):
            details = {**details, "id": int(tmdb_id), "title": f"Movie {tmdb_id}", "imdb_id": None}
        return details

    def fetch_movie_details(self, tmdb_id: Any) -> dict[str, Any]:
        self._record("fetch_movie_details", tmdb_id)
        return self._details(tmdb_id)

    def fetch_movie_credits(self, tmdb_id: Any) -> dict[str, Any]:
        self._record("fetch_movie_credits", tmdb_id)
        return load_fixture("movie_credits")

    def fetch_movie_videos(self, tmdb_id: Any) -> dict[str, Any]:
        self._record("fetch_movie_videos", tmdb_id)
        return load_fixture("movie_videos")

    def fetch_similar_movies(self, tmdb_id: Any, *, page: int = 1) -> dict[str, Any]:
        self._record("fetch_similar_movies", tmdb_id)
        return load_fixture("movie_similar")

    def fetch_movie_release_dates(self, tmdb_id: Any) -> dict[str, Any]:
        self._record("fetch_movie_release_dates", tmdb_id)
        return load_fixture("movie_release_dates")

    def fetch_movie_images(self, tmdb_id: Any, *, include_image_language: str = "en,null") -> dict[str, Any]:
        self._record("fetch_movie_images", tmdb_id)
        return load_fixture("movie_images")

    def fetch_movie_list_page(self, list_name: str, *, page: int = 1) -> dict[str, Any]:
        self._record("fetch_movie_list_page", f"{list_name}:{page}")
        pages = self.list_pages.get(list_name, [])
        if page > len(pages):
            return {"page": page, "results": [], "total_pages": len(pages)}
        entry = pages[page - 1]
        if isinstance(entry, Exception):
            raise entry
        return {**entry, "page": page, "total_pages": len(pages)}
