"""Tests for config loading."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest
import yaml

from sporting_etl.config import DEFAULT_LAYOUT, Config, load_config
from sporting_etl.quota import TimeUnit


REPO_CONFIG = Path(__file__).resolve().parents[3] / "config.yaml"


def _write(tmp_path: Path, raw: dict) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(raw), encoding="utf-8")
    return str(path)


class TestLoadConfig:
    def test_requires_bucket(self, tmp_path):
        with pytest.raises(ValueError, match="bucket"):
            load_config(_write(tmp_path, {"sources": {"sportradar": {"base_url": "x"}}}))

    def test_requires_sources(self, tmp_path):
        with pytest.raises(ValueError, match="sources"):
            load_config(_write(tmp_path, {"bucket": "b"}))

    def test_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, {"bucket": "b", "sources": {"sportradar": {"base_url": "x"}}}))
        assert cfg.region == "us-east-1"
        assert cfg.batch_size == 2000
        assert cfg.retry == {}
        assert cfg.layout == DEFAULT_LAYOUT

    def test_layout_override_merges(self):
        cfg = Config({"bucket": "b", "sources": {}, "layout": {"summaries": "games_sr"}})
        assert cfg.layout["summaries"] == "games_sr"
        assert cfg.layout["profiles"] == "sr_playerprofile"

    def test_date_range(self, sample_config: Config):
        assert sample_config.date_range() == (date(2024, 1, 15), date(2024, 1, 15))

    def test_date_range_defaults_end_to_start(self):
        cfg = Config({"bucket": "b", "sources": {}, "ingestion": {"start_date": "2024-02-01"}})
        assert cfg.date_range() == (date(2024, 2, 1), date(2024, 2, 1))


class TestQuotaConfigs:
    def test_built_from_source_limits(self, sample_config: Config):
        configs = {c.id: c for c in sample_config.quota_configs()}
        assert set(configs) == {"sportradar-api", "rapidapi-basketball"}
        sr = configs["sportradar-api"]
        assert sr.base_url == "https://api.sportradar.com"
        assert [(w.id, w.max_count, w.time_unit) for w in sr.windows] == [
            ("per-second", 1, TimeUnit.SECONDS),
            ("per-day", 1000, TimeUnit.DAYS),
        ]
        assert sr.has_short_windows

    def test_source_key_is_default_id(self):
        cfg = Config({"bucket": "b", "sources": {"theoddsapi": {"base_url": "https://api.the-odds-api.com"}}})
        (config,) = cfg.quota_configs()
        assert config.id == "theoddsapi"
        assert config.windows == []


class TestShippedConfig:
    def test_repo_config_loads(self):
        cfg = load_config(str(REPO_CONFIG))
        ids = {c.id for c in cfg.quota_configs()}
        assert ids == {"sportradar-api", "rapidapi-basketball", "theoddsapi"}
        odds = next(c for c in cfg.quota_configs() if c.id == "theoddsapi")
        assert [w.time_unit for w in odds.windows] == [TimeUnit.MINUTES, TimeUnit.MONTHS]
