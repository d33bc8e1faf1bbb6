from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

import httpx

from .errors import ProviderRequestError, ProviderResponseError, RateLimitedError
from .logging_utils import log_json
from .rate_limiter import RateLimiter

T = TypeVar("T")


@dataclass
class ApiConfig:
    base_url: str
    timeout_seconds: float = 30.0
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, str] = field(default_factory=dict)


class ApiClient:
    """Thin async JSON client for one upstream provider."""

    def __init__(self, cfg: ApiConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.cfg = cfg
        self._client = httpx.AsyncClient(
            base_url=cfg.base_url.rstrip("/") + "/",
            timeout=cfg.timeout_seconds,
            headers=cfg.headers,
            transport=transport,
        )
        self._logger: Optional[logging.Logger] = None

    def set_logger(self, logger: logging.Logger) -> None:
        self._logger = logger

    async def close(self) -> None:
        await self._client.aclose()

    async def get_json(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        query = dict(self.cfg.params)
        query.update(params or {})
        if self._logger:
            self._logger.debug("http_request_start", extra={"extra": {"path": path}})
        resp = await self._client.get(path.lstrip("/"), params=query)
        if resp.status_code == 429:
            raise RateLimitedError(f"HTTP 429 for GET {path}")
        if resp.status_code >= 400:
            resp.raise_for_status()
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderResponseError(f"Response for GET {path} was not valid JSON") from exc


class GatedClient:
    """Runs outbound calls only when the rate limiter admits them.

    A rejected call returns ``None`` without touching the network. An HTTP 429
    from the provider is retried after a fixed backoff, at most
    ``max_rate_limit_retries`` times; each retry is admitted again.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        backoff_seconds: float = 1.0,
        max_rate_limit_retries: int = 1,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.limiter = limiter
        self.backoff_seconds = backoff_seconds
        self.max_rate_limit_retries = max_rate_limit_retries
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

    async def execute(self, api_id: str, call: Callable[[], Awaitable[T]]) -> Optional[T]:
        retries = 0
        while True:
            if not await self.limiter.allow(api_id):
                log_json(self.logger, "call_rate_limited", level=logging.WARNING, api=api_id)
                return None
            try:
                return await call()
            except RateLimitedError:
                if retries >= self.max_rate_limit_retries:
                    log_json(self.logger, "http_429_exhausted", level=logging.WARNING, api=api_id, retries=retries)
                    raise
                retries += 1
                log_json(
                    self.logger,
                    "http_429_backoff",
                    level=logging.WARNING,
                    api=api_id,
                    retry=retries,
                    delay=self.backoff_seconds,
                )
                await self._sleep(self.backoff_seconds)
            except (ProviderRequestError, httpx.HTTPError) as exc:
                log_json(self.logger, "http_error", level=logging.ERROR, api=api_id, error=str(exc))
                raise
