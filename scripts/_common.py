from __future__ import annotations

import argparse
import json
import logging
from typing import Any

from mango_backend.ingestion.movie_ingest import MovieIngestor
from mango_backend.ingestion.services import IngestionServices
from mango_backend.utils.env import load_env


def add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_env_and_ingestor(*, require_storage: bool = False) -> MovieIngestor:
    load_env()
    services = IngestionServices.from_env(require_storage=require_storage)
    return MovieIngestor(services=services)


def print_summary(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))
