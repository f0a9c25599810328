#!/usr/bin/env python3
"""
Command line entry point for the prospect data service.

    python main.py serve
    python main.py collect --name "Jane Doe" --city Austin --state TX
    python main.py show --name "Jane Doe" --city Austin --state TX
    python main.py cleanup
"""

import argparse
import asyncio
import json
import sys

from models import ProspectInput
from services.data_collector import (
    ProspectDataCollector,
    get_data_summary,
    get_prospect_search_queries,
    is_cache_stale,
)
from services.prospect_cache import ProspectDataCacheStore
from utils.config import Config
from utils.logging_config import setup_logging, get_logger

logger = get_logger(__name__)


def _add_prospect_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", required=True, help="Prospect full name")
    parser.add_argument("--address", help="Street address")
    parser.add_argument("--city", help="City")
    parser.add_argument("--state", help="State")
    parser.add_argument("--spouse", help="Spouse or partner name")


def _prospect_from_args(args: argparse.Namespace) -> ProspectInput:
    return ProspectInput(
        name=args.name,
        address=args.address,
        city=args.city,
        state=args.state,
        spouse_name=getattr(args, "spouse", None),
    )


async def collect(config: Config, args: argparse.Namespace) -> int:
    store = ProspectDataCacheStore.from_config(config)
    collector = ProspectDataCollector(store, tool_timeout_ms=config.collector.tool_timeout_ms)
    prospect = _prospect_from_args(args)

    result = await collector.collect_prospect_data(prospect, force_refresh=args.force_refresh)
    output = result.to_dict()
    output["search_queries"] = get_prospect_search_queries(prospect)
    print(json.dumps(output, indent=2))
    return 0


async def show(config: Config, args: argparse.Namespace) -> int:
    store = ProspectDataCacheStore.from_config(config)
    record = await store.get_cached_prospect_data(_prospect_from_args(args))
    if record is None:
        print(f"No cached record for {args.name}", file=sys.stderr)
        return 1

    print(json.dumps({
        "data": record.model_dump(mode="json"),
        "stale": is_cache_stale(record),
        "summary": get_data_summary(record).model_dump(),
    }, indent=2))
    return 0


async def cleanup(config: Config, args: argparse.Namespace) -> int:
    store = ProspectDataCacheStore.from_config(config)
    removed = await store.cleanup_expired()
    print(f"Removed {removed} expired prospect records")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Prospect data cache service")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="Run the HTTP API")

    collect_parser = subparsers.add_parser("collect", help="Fetch or initialize a prospect record")
    _add_prospect_args(collect_parser)
    collect_parser.add_argument("--force-refresh", action="store_true", help="Ignore the cached record")

    show_parser = subparsers.add_parser("show", help="Print a cached prospect record")
    _add_prospect_args(show_parser)

    subparsers.add_parser("cleanup", help="Delete expired prospect records")

    args = parser.parse_args(argv)

    config = Config.load_from_file(args.config)
    config.ensure_directories()
    setup_logging(
        log_file=config.logging.log_file,
        console_level=config.logging.console_level,
        file_level=config.logging.file_level
    )
    logger.info(f"Running {args.command} with config {args.config}")

    if args.command == "serve":
        from prospect_server import run_server
        run_server(config)
        return 0

    handlers = {"collect": collect, "show": show, "cleanup": cleanup}
    return asyncio.run(handlers[args.command](config, args))


if __name__ == "__main__":
    sys.exit(main())
