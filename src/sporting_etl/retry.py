from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx

from .errors import ProviderRequestError
from .logging_utils import log_json

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (ProviderRequestError, httpx.HTTPError)


@dataclass
class RetryPolicy:
    """Exponential backoff for one upstream call: 1s, 2s, 4s... capped at max_delay."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS
    logger: Optional[logging.Logger] = field(default=None, repr=False)

    _sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_config(cls, raw: dict, **kwargs: Any) -> "RetryPolicy":
        return cls(
            max_attempts=int(raw.get("max_attempts", 3)),
            initial_delay=float(raw.get("initial_delay_seconds", 1.0)),
            multiplier=float(raw.get("multiplier", 2.0)),
            max_delay=float(raw.get("max_delay_seconds", 10.0)),
            **kwargs,
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.initial_delay * (self.multiplier ** (attempt - 1)))

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn(*args, **kwargs)
            except self.retry_on as exc:
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                if self.logger:
                    log_json(
                        self.logger,
                        "retry_backoff",
                        call=getattr(fn, "__name__", repr(fn)),
                        attempt=attempt,
                        delay=delay,
                        error=str(exc),
                    )
                await self._sleep(delay)
