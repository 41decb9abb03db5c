from __future__ import annotations

from typing import Any, Mapping

from supabase import Client

from mango_backend.repositories._common import RepositoryError, execute, first_row


class IngestionRunRepositoryError(RepositoryError):
    pass


def insert_ingestion_run(db: Client, row: Mapping[str, Any]) -> dict[str, Any] | None:
    """
    Append one `scheduled_ingestion_log` row. Rows are never updated.
    """

    payload = dict(row)
    response = execute(
        lambda: db.table("scheduled_ingestion_log").insert(payload),
        context="inserting scheduled ingestion log",
        error_cls=IngestionRunRepositoryError,
    )
    return first_row(response)
