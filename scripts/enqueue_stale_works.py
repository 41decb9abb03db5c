#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys

from mango_backend.ingestion.refresh_worker import enqueue
from mango_backend.ingestion.staleness import enqueue_stale_works
from scripts._common import add_common_args, configure_logging, load_env_and_ingestor, print_summary


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="enqueue_stale_works",
        description="Queue stale movies for refresh, or re-queue specific works.",
    )
    parser.add_argument("--limit", type=int, default=None, help="Max stale works to queue (default from config).")
    parser.add_argument("--work-id", action="append", type=int, default=[], help="Queue this work id. Repeatable.")
    parser.add_argument("--priority", type=int, default=0, help="Priority for --work-id items.")
    parser.add_argument(
        "--requeue-failed",
        action="store_true",
        help="Also re-arm dead-lettered (failed) items given with --work-id.",
    )
    add_common_args(parser)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging(args.verbose)
    services = load_env_and_ingestor().services

    if args.work_id:
        queued = {
            work_id: enqueue(services.db, work_id, priority=args.priority, requeue_failed=args.requeue_failed)
            for work_id in args.work_id
        }
        print_summary({"queued": queued})
        return 0

    limit = args.limit if args.limit is not None else services.config.stale_enqueue_limit
    print_summary(enqueue_stale_works(services.db, limit=limit).to_dict())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
