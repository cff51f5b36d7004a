#!/usr/bin/env python
"""CLI for the NewsGlobe breaking-news service."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import uvicorn
from pydantic import BaseModel, field_validator

from newsglobe.api import create_app
from newsglobe.config import (
    NewsGlobeConfig,
    ServiceContext,
    create_from_config,
    get_default_config_path,
    load_config,
)
from newsglobe.stream import StreamRelay

logger = logging.getLogger(__name__)


class CLIArgs(BaseModel):
    """Validated CLI arguments."""

    command: str
    config: Path
    query: str = ""
    refresh: bool = False
    log: bool = False
    log_dir: str = "logs"
    host: str | None = None
    port: int | None = None

    @field_validator("config")
    @classmethod
    def config_must_exist(cls, v: Path) -> Path:
        if not v.exists():
            raise ValueError(f"Config file not found: {v}")
        return v


def serve(args: CLIArgs, config: NewsGlobeConfig) -> None:
    uvicorn.run(
        create_app(config),
        host=args.host or config.server.host,
        port=args.port or config.server.port,
    )


async def discover(args: CLIArgs, context: ServiceContext) -> None:
    """Run one discovery and print what it found.

    Args:
        args: Validated CLI arguments.
        context: Service context built from the config.
    """
    context.require_llm_key()

    if args.refresh:
        normalized, _ = await context.normalizer.normalize(args.query)
        cleared = await context.store.clear_key(normalized.key)
        logger.info(f"Cleared {cleared} cached records for {normalized.key!r}")

    relay = StreamRelay()
    engine = context.create_engine()
    logger.info(f"Running discovery for: {args.query or '(global)'}")

    run = asyncio.create_task(engine.run(args.query, relay))
    async for frame in relay.frames():
        payload = json.loads(frame.removeprefix("data: "))
        if payload["type"] == "status":
            logger.info(f"... {payload['message']}")
        elif payload["type"] == "news":
            news = payload["news"]
            lon, lat = news["coordinates"]
            logger.info(f"[{news['category']}] {news['headline']}")
            logger.info(f"   {news['location']} ({lat:.3f}, {lon:.3f})")
            logger.info(f"   Posts: {len(news['top_tweets'])}")
        elif payload["type"] == "error":
            logger.error(payload["message"])
    result = await run

    logger.info("\n--- Usage Summary ---")
    logger.info(f"Cached events: {result.cached_count}")
    logger.info(f"New events: {result.fetched_count} in {result.attempts} rounds")
    logger.info(f"API calls: {len(result.usage.api_calls)}")
    logger.info(f"Input tokens: {result.usage.input_tokens:,}")
    logger.info(f"Output tokens: {result.usage.output_tokens:,}")
    logger.info(f"Geocode lookups: {result.usage.geocode_lookups}")
    logger.info(f"Social lookups: {result.usage.social_lookups}")

    if result.log_path:
        logger.info(f"\nRun log written to: {result.log_path}")


async def stats(context: ServiceContext) -> None:
    summary = await context.store.stats()
    logger.info(f"Search queries: {summary.query_count}")
    logger.info(f"News events: {summary.event_count}")
    if summary.recent_events:
        logger.info("\nMost recent events:")
    for event in summary.recent_events:
        logger.info(f"- {event.timestamp.isoformat()} [{event.category}] {event.headline}")


def main() -> None:
    """Entry point for the CLI."""
    parser = argparse.ArgumentParser(description="Discover breaking news and place it on a map.")
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="Path to YAML config file (default: configs/default.yaml)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve_parser = sub.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", type=str, default=None)
    serve_parser.add_argument("--port", type=int, default=None)

    discover_parser = sub.add_parser("discover", help="Run one discovery and print the events")
    discover_parser.add_argument(
        "query",
        nargs="?",
        default="",
        help="Topic or place (default: global news)",
    )
    discover_parser.add_argument(
        "--refresh",
        action="store_true",
        default=False,
        help="Drop cached records for the query before running",
    )
    discover_parser.add_argument(
        "--log",
        action="store_true",
        default=False,
        help="Enable per-run logging to a JSON file",
    )
    discover_parser.add_argument(
        "--log-dir",
        type=str,
        default="logs",
        help="Directory for log files (default: logs/)",
    )

    sub.add_parser("stats", help="Print cache statistics")

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)

    ns = parser.parse_args()
    config_path: Path = ns.config if ns.config else get_default_config_path()

    try:
        args = CLIArgs(
            command=ns.command,
            config=config_path,
            query=getattr(ns, "query", ""),
            refresh=getattr(ns, "refresh", False),
            log=getattr(ns, "log", False),
            log_dir=getattr(ns, "log_dir", "logs"),
            host=getattr(ns, "host", None),
            port=getattr(ns, "port", None),
        )
    except Exception as e:
        logger.error(str(e))
        sys.exit(1)

    config = load_config(args.config)
    if args.command == "serve":
        serve(args, config)
        return

    context = create_from_config(
        config,
        log_override=args.log if args.log else None,
        log_dir_override=args.log_dir if args.log_dir != "logs" else None,
    )
    try:
        if args.command == "discover":
            asyncio.run(discover(args, context))
        else:
            asyncio.run(stats(context))
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as e:
        logger.error(str(e))
        sys.exit(1)
    finally:
        context.close()


if __name__ == "__main__":
    main()
