#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys

from mango_backend.ingestion.discovery import DEFAULT_MAX_NEW, run_discovery
from mango_backend.models.discovery import DISCOVERY_SOURCES, TRIGGER_TYPES
from scripts._common import add_common_args, configure_logging, load_env_and_ingestor, print_summary


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="run_discovery",
        description="Ingest new movies from TMDb popular / now playing / trending lists.",
    )
    parser.add_argument("--source", choices=DISCOVERY_SOURCES, default="all", help="Which TMDb list(s) to scan.")
    parser.add_argument("--max-movies", type=int, default=DEFAULT_MAX_NEW, help="Cap on new movies to ingest.")
    parser.add_argument("--trigger-type", choices=TRIGGER_TYPES, default="manual", help="Recorded in the run log.")
    add_common_args(parser)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging(args.verbose)
    ingestor = load_env_and_ingestor()

    run = run_discovery(ingestor, source=args.source, max_new=args.max_movies, trigger_type=args.trigger_type)
    print_summary(run.to_dict())
    return 1 if run.movies_failed and not run.movies_ingested else 0


if __name__ == "__main__":
    raise SystemExit(main())
