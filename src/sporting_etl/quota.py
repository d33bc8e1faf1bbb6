"""Quota tiers for upstream APIs and their durable store.

Every upstream API is described by a ``QuotaConfig`` holding one or more
``RateWindow`` tiers (e.g. 1/second AND 10/minute AND 1000/day). The whole
set of configs lives in a single YAML document in the pipeline bucket so a
restarted process picks up the usage it recorded before.
"""

from __future__ import annotations

import calendar
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml

from .logging_utils import log_json
from .s3_io import S3IO


DEFAULT_STORE_KEY = "config/rate-limits.yml"


class TimeUnit(str, Enum):
    SECONDS = "SECONDS"
    MINUTES = "MINUTES"
    HOURS = "HOURS"
    DAYS = "DAYS"
    MONTHS = "MONTHS"

    @classmethod
    def parse(cls, raw: str) -> "TimeUnit":
        name = str(raw).strip().upper()
        if not name.endswith("S"):
            name += "S"
        return cls(name)

    @property
    def is_short(self) -> bool:
        return self in (TimeUnit.SECONDS, TimeUnit.MINUTES)

    def cutoff(self, now: datetime) -> datetime:
        """Return ``now`` minus one unit of this tier."""
        if self is TimeUnit.SECONDS:
            return now - timedelta(seconds=1)
        if self is TimeUnit.MINUTES:
            return now - timedelta(minutes=1)
        if self is TimeUnit.HOURS:
            return now - timedelta(hours=1)
        if self is TimeUnit.DAYS:
            return now - timedelta(days=1)
        year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
        day = min(now.day, calendar.monthrange(year, month)[1])
        return now.replace(year=year, month=month, day=day)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RateWindow:
    id: str
    max_count: int
    time_unit: TimeUnit
    usage_timestamps: List[datetime] = field(default_factory=list)

    def count_since(self, now: datetime) -> int:
        cutoff = self.time_unit.cutoff(now)
        return sum(1 for ts in self.usage_timestamps if ts > cutoff)

    def has_capacity(self, now: datetime) -> bool:
        return self.count_since(now) < self.max_count

    def prune(self, now: datetime) -> int:
        """Drop timestamps outside the window; return how many were dropped."""
        cutoff = self.time_unit.cutoff(now)
        kept = [ts for ts in self.usage_timestamps if ts > cutoff]
        dropped = len(self.usage_timestamps) - len(kept)
        if dropped:
            self.usage_timestamps = kept
        return dropped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "maxCount": self.max_count,
            "timeUnit": self.time_unit.value,
            "usageTimestamps": [ts.isoformat() for ts in self.usage_timestamps],
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "RateWindow":
        unit = TimeUnit.parse(raw["timeUnit"])
        return cls(
            id=str(raw.get("id") or f"per-{unit.value.lower()}"),
            max_count=int(raw["maxCount"]),
            time_unit=unit,
            usage_timestamps=[_parse_ts(v) for v in raw.get("usageTimestamps") or []],
        )


@dataclass
class QuotaConfig:
    id: str
    base_url: str
    windows: List[RateWindow] = field(default_factory=list)
    api_key_secret_name: Optional[str] = None
    last_updated: Optional[datetime] = None

    @property
    def has_short_windows(self) -> bool:
        return any(w.time_unit.is_short for w in self.windows)

    def snapshot(self) -> "QuotaConfig":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "baseUrl": self.base_url,
            "limits": [w.to_dict() for w in self.windows],
        }
        if self.api_key_secret_name:
            out["apiKeySecretName"] = self.api_key_secret_name
        if self.last_updated:
            out["lastUpdated"] = self.last_updated.isoformat()
        return out

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "QuotaConfig":
        api_id = raw.get("id") or raw.get("baseUrl")
        if not api_id:
            raise ValueError("quota config requires an id or baseUrl")
        last_updated = raw.get("lastUpdated")
        return cls(
            id=str(api_id),
            base_url=str(raw.get("baseUrl") or api_id),
            windows=[RateWindow.from_dict(w) for w in raw.get("limits") or []],
            api_key_secret_name=raw.get("apiKeySecretName"),
            last_updated=_parse_ts(last_updated) if last_updated else None,
        )


class QuotaStore:
    """Durable home of every ``QuotaConfig``, one YAML object in S3.

    The document is read once and kept in ``_docs``; every ``save`` rewrites
    the whole document so other processes see a consistent set of configs.
    """

    def __init__(self, s3: S3IO, key: str = DEFAULT_STORE_KEY, logger: Optional[logging.Logger] = None) -> None:
        self.s3 = s3
        self.key = key
        self.logger = logger or logging.getLogger(__name__)
        self._docs: Optional[Dict[str, Dict[str, Any]]] = None

    def find(self, api_id: str) -> Optional[QuotaConfig]:
        docs = self._load()
        doc = docs.get(api_id)
        if doc is None:
            doc = next((d for d in docs.values() if d.get("baseUrl") == api_id), None)
        return QuotaConfig.from_dict(doc) if doc else None

    def find_all(self) -> List[QuotaConfig]:
        self._docs = None
        return [QuotaConfig.from_dict(d) for d in self._load().values()]

    def save(self, config: QuotaConfig) -> None:
        self.save_all([config])

    def save_all(self, configs: List[QuotaConfig]) -> None:
        docs = dict(self._load())
        now = utcnow()
        for config in configs:
            doc = config.to_dict()
            doc["lastUpdated"] = now.isoformat()
            docs[config.id] = doc
        body = yaml.safe_dump({"apis": list(docs.values())}, sort_keys=False)
        self.s3.put_bytes(self.key, body.encode("utf-8"), content_type="application/yaml")
        self._docs = docs

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if self._docs is not None:
            return self._docs
        if not self.s3.exists(self.key):
            log_json(self.logger, "quota_store_empty", level=logging.DEBUG, key=self.key)
            self._docs = {}
            return self._docs
        raw = yaml.safe_load(self.s3.get_object_bytes(self.key)) or {}
        docs: Dict[str, Dict[str, Any]] = {}
        for entry in raw.get("apis") or []:
            api_id = entry.get("id") or entry.get("baseUrl")
            if api_id:
                docs[str(api_id)] = entry
        self._docs = docs
        log_json(self.logger, "quota_store_loaded", level=logging.DEBUG, key=self.key, apis=len(docs))
        return docs


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts
