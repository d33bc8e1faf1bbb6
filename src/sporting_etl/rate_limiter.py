from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .logging_utils import log_json
from .quota import QuotaConfig, QuotaStore, utcnow


class RateLimiter:
    """Admission authority for calls to quota-bound upstream APIs.

    The in-memory configs decide admission. Each API id has its own
    ``asyncio.Lock`` so one API's admit-and-record never waits on another's.
    The store only sees deep copies taken under the lock.
    """

    def __init__(
        self,
        store: QuotaStore,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._configs: Dict[str, QuotaConfig] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def register(self, config: QuotaConfig) -> None:
        persisted = self._find_persisted(config.id)
        if persisted is not None:
            usage = {w.id: w.usage_timestamps for w in persisted.windows}
            for window in config.windows:
                window.usage_timestamps = list(usage.get(window.id, window.usage_timestamps))
        self._configs[config.id] = config
        log_json(
            self.logger,
            "quota_registered",
            api=config.id,
            windows=[f"{w.max_count}/{w.time_unit.value}" for w in config.windows],
        )

    async def allow(self, api_id: str) -> bool:
        async with self._lock_for(api_id):
            config = self._get_or_load(api_id)
            now = self._clock()
            for window in config.windows:
                if not window.has_capacity(now):
                    log_json(
                        self.logger,
                        "rate_limit_exceeded",
                        level=logging.WARNING,
                        api=api_id,
                        window=window.id,
                        max_count=window.max_count,
                        time_unit=window.time_unit.value,
                    )
                    return False
            for window in config.windows:
                window.usage_timestamps.append(now)
            snapshot = config.snapshot() if config.has_short_windows else None
        if snapshot is not None:
            self._persist([snapshot])
        return True

    async def sync(self) -> bool:
        snapshots: List[QuotaConfig] = []
        pruned = 0
        for api_id in list(self._configs):
            async with self._lock_for(api_id):
                config = self._configs[api_id]
                now = self._clock()
                pruned += sum(window.prune(now) for window in config.windows)
                snapshots.append(config.snapshot())
        ok = self._persist(snapshots)
        log_json(self.logger, "quota_sync", level=logging.DEBUG, apis=len(snapshots), pruned=pruned, ok=ok)
        return ok

    async def run_sync_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.sync()

    async def remaining(self, api_id: str) -> Dict[str, int]:
        async with self._lock_for(api_id):
            config = self._get_or_load(api_id)
            now = self._clock()
            return {w.id: w.max_count - w.count_since(now) for w in config.windows}

    def _lock_for(self, api_id: str) -> asyncio.Lock:
        return self._locks.setdefault(api_id, asyncio.Lock())

    def _get_or_load(self, api_id: str) -> QuotaConfig:
        config = self._configs.get(api_id)
        if config is not None:
            return config
        config = self._find_persisted(api_id)
        if config is None:
            config = QuotaConfig(id=api_id, base_url=api_id, last_updated=self._clock())
            log_json(self.logger, "quota_default_created", api=api_id)
        self._configs[api_id] = config
        return config

    def _find_persisted(self, api_id: str) -> Optional[QuotaConfig]:
        try:
            return self.store.find(api_id)
        except (BotoCoreError, ClientError) as exc:
            log_json(self.logger, "quota_store_unavailable", level=logging.WARNING, api=api_id, error=str(exc))
            return None

    def _persist(self, snapshots: List[QuotaConfig]) -> bool:
        if not snapshots:
            return True
        try:
            self.store.save_all(snapshots)
            return True
        except (BotoCoreError, ClientError) as exc:
            log_json(
                self.logger,
                "quota_store_unavailable",
                level=logging.WARNING,
                apis=[s.id for s in snapshots],
                error=str(exc),
            )
            return False
