"""Tests for CLI argument parsing and runtime wiring."""

from __future__ import annotations

import logging
from datetime import date

import pytest

from sporting_etl.cli import _parse_args, _run, build_runtime
from sporting_etl.sources import RapidApiBasketballClient, SportradarClient


class TestParseArgs:
    def test_pipeline_dates(self):
        args = _parse_args(["pipeline", "--start", "2024-01-15", "--end", "2024-01-16"])
        assert args.command == "pipeline"
        assert (args.start, args.end) == (date(2024, 1, 15), date(2024, 1, 16))
        assert args.config == "config.yaml"

    def test_pipeline_dates_optional(self):
        args = _parse_args(["backfill"])
        assert args.start is None and args.end is None

    def test_list_requires_pattern(self):
        with pytest.raises(SystemExit):
            _parse_args(["list"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            _parse_args([])


class TestBuildRuntime:
    async def test_wires_sources_and_quotas(self, sample_config, s3_bucket):
        runtime = build_runtime(sample_config, logging.getLogger("test"))
        try:
            assert isinstance(runtime.orchestrator.sportradar, SportradarClient)
            assert isinstance(runtime.orchestrator.rapidapi, RapidApiBasketballClient)
            assert await runtime.limiter.remaining("sportradar-api") == {"per-second": 1, "per-day": 1000}
            assert runtime.orchestrator.retry.max_attempts == 3
        finally:
            await runtime.close()

    async def test_list_command(self, sample_config, s3_bucket, capsys):
        s3_bucket.put_object(Bucket="sporting-data", Key="sr_gamedata/2024/01/15/summaries_batch_1-a.csv", Body=b"x")
        s3_bucket.put_object(Bucket="sporting-data", Key="sr_gamedata/2024/01/16/summaries_batch_1-a.csv", Body=b"x")
        logger = logging.getLogger("test")
        runtime = build_runtime(sample_config, logger)

        await _run(_parse_args(["list", "--pattern", "sr_gamedata/2024/01/15/*"]), sample_config, runtime, logger)

        assert capsys.readouterr().out.splitlines() == ["sr_gamedata/2024/01/15/summaries_batch_1-a.csv"]

    async def test_sync_quotas_command(self, sample_config, s3_bucket):
        logger = logging.getLogger("test")
        runtime = build_runtime(sample_config, logger)

        await _run(_parse_args(["sync-quotas"]), sample_config, runtime, logger)

        body = s3_bucket.get_object(Bucket="sporting-data", Key="config/rate-limits.yml")["Body"].read()
        assert b"sportradar-api" in body
        assert b"rapidapi-basketball" in body
