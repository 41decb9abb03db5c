#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys

from mango_backend.ingestion.movie_ingest import IngestionError, IngestionInProgressError
from mango_backend.integrations.tmdb.client import TmdbClientError
from mango_backend.repositories._common import RepositoryError
from scripts._common import add_common_args, configure_logging, load_env_and_ingestor, print_summary


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ingest_movie",
        description="Ingest one or more movies by TMDb id and print the resulting cards.",
    )
    parser.add_argument("tmdb_id", nargs="+", help="TMDb movie id. Repeatable.")
    parser.add_argument("--force-refresh", action="store_true", help="Re-run the pipeline even when the card is current.")
    parser.add_argument("--card-only", action="store_true", help="Cache-first read (get-card) instead of ingest.")
    parser.add_argument(
        "--require-storage",
        action="store_true",
        help="Fail when S3 is not configured instead of keeping TMDb image URLs.",
    )
    add_common_args(parser)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging(args.verbose)
    ingestor = load_env_and_ingestor(require_storage=args.require_storage)

    failures = 0
    results = []
    for tmdb_id in args.tmdb_id:
        try:
            if args.card_only:
                result = ingestor.get_card(tmdb_id)
            else:
                result = ingestor.ingest(tmdb_id, force_refresh=args.force_refresh)
        except IngestionInProgressError as exc:
            failures += 1
            print(f"IN PROGRESS tmdb_id={tmdb_id}: {exc}")
            continue
        except (ValueError, IngestionError, TmdbClientError, RepositoryError) as exc:
            failures += 1
            print(f"ERROR: tmdb_id={tmdb_id} error={exc}")
            continue
        results.append(result.to_dict())

    print_summary(results)
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
