from __future__ import annotations

from typing import Any, Mapping

from supabase import Client

from mango_backend.repositories._common import RepositoryError, execute, first_row


class WorkMetaRepositoryError(RepositoryError):
    pass


def get_work_meta(db: Client, work_id: int) -> dict[str, Any] | None:
    response = execute(
        lambda: db.table("works_meta").select("*").eq("work_id", int(work_id)).limit(1),
        context="reading work meta",
        error_cls=WorkMetaRepositoryError,
    )
    return first_row(response)


def upsert_work_meta(db: Client, row: Mapping[str, Any]) -> dict[str, Any]:
    payload = dict(row)
    if payload.get("work_id") is None:
        raise WorkMetaRepositoryError("works_meta upsert requires work_id.")
    response = execute(
        lambda: db.table("works_meta").upsert(payload, on_conflict="work_id"),
        context="upserting work meta",
        error_cls=WorkMetaRepositoryError,
    )
    return first_row(response) or payload


def update_work_meta(db: Client, work_id: int, patch: Mapping[str, Any]) -> dict[str, Any] | None:
    response = execute(
        lambda: db.table("works_meta").update(dict(patch)).eq("work_id", int(work_id)),
        context="updating work meta",
        error_cls=WorkMetaRepositoryError,
    )
    return first_row(response)
