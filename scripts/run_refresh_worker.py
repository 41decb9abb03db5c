#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys

from mango_backend.ingestion.refresh_worker import run_worker_batch
from scripts._common import add_common_args, configure_logging, load_env_and_ingestor, print_summary


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="run_refresh_worker",
        description="Process queued refresh items (one batch by default).",
    )
    parser.add_argument("--batches", type=int, default=1, help="Number of batches to run; stops early when empty.")
    add_common_args(parser)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging(args.verbose)
    ingestor = load_env_and_ingestor()
    services = ingestor.services

    summaries = []
    for _ in range(max(1, args.batches)):
        result = run_worker_batch(services.db, services.config, ingestor.ingest)
        summaries.append(result.to_dict())
        if result.processed == 0:
            break

    print_summary(summaries)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
