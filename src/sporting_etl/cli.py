from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional

from .api_client import GatedClient
from .batch_writer import BatchWriter
from .config import Config, load_config
from .logging_utils import log_json, setup_logging
from .orchestrate import Orchestrator
from .quota import DEFAULT_STORE_KEY, QuotaStore
from .rate_limiter import RateLimiter
from .retry import RetryPolicy
from .s3_io import S3IO
from .secret_provider import build_secret_provider
from .sources import GatedSource, RapidApiBasketballClient, SportradarClient, build_sources


@dataclass
class Runtime:
    limiter: RateLimiter
    writer: BatchWriter
    sources: Dict[str, GatedSource]
    orchestrator: Orchestrator

    async def close(self) -> None:
        for source in self.sources.values():
            await source.close()


def build_runtime(cfg: Config, logger: logging.Logger) -> Runtime:
    s3 = S3IO(cfg.bucket, cfg.region, put_attempts=int(cfg.quota.get("put_attempts", 3)), logger=logger)
    store = QuotaStore(s3, cfg.quota.get("store_key", DEFAULT_STORE_KEY), logger)
    limiter = RateLimiter(store, logger)
    for quota in cfg.quota_configs():
        limiter.register(quota)
    gate = GatedClient(
        limiter,
        backoff_seconds=float(cfg.gate.get("backoff_seconds", 1.0)),
        max_rate_limit_retries=int(cfg.gate.get("max_rate_limit_retries", 1)),
        logger=logger,
    )
    secrets = build_secret_provider(cfg.secrets, cfg.region)
    sources = build_sources(cfg, gate, secrets, logger)
    writer = BatchWriter(s3, logger)
    orchestrator = Orchestrator(
        cfg,
        logger,
        writer,
        sportradar=_first(sources, SportradarClient),
        rapidapi=_first(sources, RapidApiBasketballClient),
        retry=RetryPolicy.from_config(cfg.retry, logger=logger),
    )
    return Runtime(limiter, writer, sources, orchestrator)


def _first(sources: Dict[str, GatedSource], kind: type) -> Optional[GatedSource]:
    return next((s for s in sources.values() if isinstance(s, kind)), None)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="sporting_etl")
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    pipeline = sub.add_parser("pipeline", help="schedule -> summaries -> profiles for a date range")
    pipeline.add_argument("--start", type=date.fromisoformat)
    pipeline.add_argument("--end", type=date.fromisoformat)

    backfill = sub.add_parser("backfill", help="play-by-play and player statistics for a date range")
    backfill.add_argument("--start", type=date.fromisoformat)
    backfill.add_argument("--end", type=date.fromisoformat)

    serve = sub.add_parser("serve", help="run the pipeline periodically over a rolling window")
    serve.add_argument("--interval", type=float, help="Seconds between runs")

    sub.add_parser("sync-quotas", help="prune expired usage and write quotas to the store")

    listing = sub.add_parser("list")
    listing.add_argument("--pattern", required=True, help="Key glob, e.g. sr_gamedata/2024/01/*")

    find = sub.add_parser("find")
    find.add_argument("--type", dest="data_type", required=True)
    find.add_argument("--id", dest="record_id", required=True)

    return parser.parse_args(argv)


async def _run(args: argparse.Namespace, cfg: Config, runtime: Runtime, logger: logging.Logger) -> None:
    sync_interval = float(cfg.quota.get("sync_interval_seconds", 600))
    sync_task: Optional[asyncio.Task] = None
    if args.command in ("pipeline", "backfill", "serve"):
        sync_task = asyncio.create_task(runtime.limiter.run_sync_loop(sync_interval))
    try:
        if args.command == "pipeline":
            await runtime.orchestrator.run_pipeline(args.start, args.end)
        elif args.command == "backfill":
            await runtime.orchestrator.run_backfill(args.start, args.end)
        elif args.command == "serve":
            interval = args.interval or float(cfg.ingestion.get("interval_seconds", 3600))
            await runtime.orchestrator.run_forever(interval)
        elif args.command == "sync-quotas":
            await runtime.limiter.sync()
        elif args.command == "list":
            for key in runtime.writer.list_by_pattern(args.pattern):
                print(key)
        elif args.command == "find":
            row = runtime.writer.find_record(args.data_type, args.record_id)
            print(json.dumps(row, indent=2) if row is not None else "not found")
    finally:
        if sync_task is not None:
            sync_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sync_task
            await runtime.limiter.sync()
        await runtime.close()
        log_json(logger, "shutdown", command=args.command)


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    logger = setup_logging(args.log_level)
    cfg = load_config(args.config)
    runtime = build_runtime(cfg, logger)
    asyncio.run(_run(args, cfg, runtime, logger))
