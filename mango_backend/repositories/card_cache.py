from __future__ import annotations

from typing import Any, Mapping

from supabase import Client

from mango_backend.repositories._common import RepositoryError, execute, first_row


class CardCacheRepositoryError(RepositoryError):
    pass


def get_card_row(db: Client, work_id: int) -> dict[str, Any] | None:
    response = execute(
        lambda: db.table("work_cards_cache").select("*").eq("work_id", int(work_id)).limit(1),
        context="reading cached card",
        error_cls=CardCacheRepositoryError,
    )
    return first_row(response)


def upsert_card(db: Client, row: Mapping[str, Any]) -> None:
    payload = dict(row)
    if payload.get("work_id") is None or not isinstance(payload.get("payload"), dict):
        raise CardCacheRepositoryError("work_cards_cache upsert requires work_id and a payload object.")
    execute(
        lambda: db.table("work_cards_cache").upsert(payload, on_conflict="work_id"),
        context="upserting cached card",
        error_cls=CardCacheRepositoryError,
    )
