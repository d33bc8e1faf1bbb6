from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Tuple

import yaml

from .quota import QuotaConfig, RateWindow


DEFAULT_LAYOUT = {
    "schedule": "schedule_sr",
    "summaries": "sr_gamedata",
    "profiles": "sr_playerprofile",
    "play_by_play": "sr_playbyplay",
    "games": "games",
    "player_statistics": "player_statistics",
    "meta_prefix": "meta",
    "deadletter_prefix": "deadletter",
}


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def bucket(self) -> str:
        return self.raw["bucket"]

    @property
    def region(self) -> str:
        return self.raw.get("region", "us-east-1")

    @property
    def sources(self) -> Dict[str, Any]:
        return self.raw["sources"]

    @property
    def ingestion(self) -> Dict[str, Any]:
        return self.raw.get("ingestion", {})

    @property
    def retry(self) -> Dict[str, Any]:
        return self.raw.get("retry", {})

    @property
    def gate(self) -> Dict[str, Any]:
        return self.raw.get("gate", {})

    @property
    def quota(self) -> Dict[str, Any]:
        return self.raw.get("quota", {})

    @property
    def secrets(self) -> Dict[str, Any]:
        return self.raw.get("secrets", {})

    @property
    def layout(self) -> Dict[str, str]:
        layout = dict(DEFAULT_LAYOUT)
        layout.update(self.raw.get("layout") or {})
        return layout

    @property
    def batch_size(self) -> int:
        return int(self.ingestion.get("batch_size", 2000))

    def date_range(self) -> Tuple[date, date]:
        start = _as_date(self.ingestion["start_date"])
        end = _as_date(self.ingestion.get("end_date", start))
        return start, end

    def quota_configs(self) -> List[QuotaConfig]:
        configs = []
        for source_id, source in self.sources.items():
            configs.append(
                QuotaConfig(
                    id=source.get("quota_id", source_id),
                    base_url=source["base_url"],
                    windows=[RateWindow.from_dict(w) for w in source.get("limits") or []],
                    api_key_secret_name=source.get("api_key_secret_name"),
                )
            )
        return configs


def load_config(path: str = "config.yaml") -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not raw.get("bucket"):
        raise ValueError("config requires a 'bucket'")
    if not raw.get("sources"):
        raise ValueError("config requires at least one entry under 'sources'")
    return Config(raw)


def _as_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))
