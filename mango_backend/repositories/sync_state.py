from __future__ import annotations

from datetime import UTC, datetime

from supabase import Client

from mango_backend.repositories._common import RepositoryError, execute


class SyncStateRepositoryError(RepositoryError):
    pass


def touch_sync_state(db: Client, *, sync_type: str, synced_at: str | None = None) -> None:
    sync_type = str(sync_type or "").strip()
    if not sync_type:
        raise SyncStateRepositoryError("sync_state update requires sync_type.")
    now = synced_at or datetime.now(UTC).isoformat()
    payload = {"sync_type": sync_type, "last_sync_at": now, "updated_at": now}
    execute(
        lambda: db.table("sync_state").upsert(payload, on_conflict="sync_type"),
        context=f"upserting sync_state {sync_type}",
        error_cls=SyncStateRepositoryError,
    )
