"""Typed endpoint methods for each upstream provider.

Every method returns the decoded JSON object, or ``None`` when the rate
limiter refused the call.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from .api_client import ApiClient, ApiConfig, GatedClient
from .config import Config
from .errors import ConfigurationError, ProviderResponseError
from .logging_utils import log_json
from .secret_provider import SecretProvider, resolve_api_key

Json = Dict[str, Any]


class GatedSource:
    kind = ""

    def __init__(self, http: ApiClient, gate: GatedClient, api_id: str) -> None:
        self.http = http
        self.gate = gate
        self.api_id = api_id

    async def close(self) -> None:
        await self.http.close()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Json]:
        data = await self.gate.execute(self.api_id, lambda: self.http.get_json(path, params=params))
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ProviderResponseError(f"Expected JSON object from {self.api_id} {path}, got {type(data).__name__}")
        return data


class SportradarClient(GatedSource):
    kind = "sportradar"

    def __init__(
        self,
        http: ApiClient,
        gate: GatedClient,
        api_id: str = "sportradar",
        access_level: str = "trial",
        language: str = "en",
        version: str = "v8",
    ) -> None:
        super().__init__(http, gate, api_id)
        self._prefix = f"nba/{access_level}/{version}/{language}"

    async def daily_schedule(self, day: date) -> Optional[Json]:
        return await self._get(f"{self._prefix}/games/{day.year}/{day.month:02d}/{day.day:02d}/schedule.json")

    async def season_schedule(self, season_year: int, season_type: str = "REG") -> Optional[Json]:
        return await self._get(f"{self._prefix}/games/{season_year}/{season_type}/schedule.json")

    async def game_summary(self, game_id: str) -> Optional[Json]:
        return await self._get(f"{self._prefix}/games/{game_id}/summary.json")

    async def play_by_play(self, game_id: str) -> Optional[Json]:
        return await self._get(f"{self._prefix}/games/{game_id}/pbp.json")

    async def player_profile(self, player_id: str) -> Optional[Json]:
        return await self._get(f"{self._prefix}/players/{player_id}/profile.json")


class RapidApiBasketballClient(GatedSource):
    kind = "rapidapi"

    async def games_by_date(self, day: date) -> Optional[Json]:
        return await self._get("games", {"date": day.isoformat()})

    async def player_statistics(self, game_id: str) -> Optional[Json]:
        return await self._get("players/statistics", {"game": game_id})


class OddsApiClient(GatedSource):
    kind = "theoddsapi"

    async def sports(self) -> Optional[Json]:
        data = await self.gate.execute(self.api_id, lambda: self.http.get_json("v4/sports"))
        if data is None:
            return None
        return {"sports": data if isinstance(data, list) else [data]}

    async def odds(self, sport: str, regions: str = "us", markets: str = "h2h") -> Optional[Json]:
        data = await self.gate.execute(
            self.api_id,
            lambda: self.http.get_json(f"v4/sports/{sport}/odds", params={"regions": regions, "markets": markets}),
        )
        if data is None:
            return None
        return {"events": data if isinstance(data, list) else [data]}


SOURCE_KINDS = {
    SportradarClient.kind: SportradarClient,
    RapidApiBasketballClient.kind: RapidApiBasketballClient,
    OddsApiClient.kind: OddsApiClient,
}


def _auth(kind: str, source: Dict[str, Any], api_key: str) -> ApiConfig:
    base_url = source["base_url"]
    timeout = float(source.get("timeout_seconds", 30))
    if kind == SportradarClient.kind:
        return ApiConfig(base_url, timeout, headers={"x-api-key": api_key})
    if kind == RapidApiBasketballClient.kind:
        host = source.get("host") or urlparse(base_url).netloc
        return ApiConfig(base_url, timeout, headers={"x-rapidapi-host": host, "x-rapidapi-key": api_key})
    if kind == OddsApiClient.kind:
        return ApiConfig(base_url, timeout, params={"apiKey": api_key})
    raise ConfigurationError(f"Unknown source kind: {kind}")


def build_source(
    source_id: str,
    source: Dict[str, Any],
    gate: GatedClient,
    secrets: SecretProvider,
    logger: Optional[logging.Logger] = None,
) -> GatedSource:
    kind = source.get("kind", source_id)
    if kind not in SOURCE_KINDS:
        raise ConfigurationError(f"Unknown source kind for {source_id}: {kind}")
    api_key = resolve_api_key(source_id, source, secrets, logger)
    http = ApiClient(_auth(kind, source, api_key))
    if logger:
        http.set_logger(logger)
    api_id = source.get("quota_id", source_id)
    if kind == SportradarClient.kind:
        return SportradarClient(
            http,
            gate,
            api_id,
            access_level=source.get("access_level", "trial"),
            language=source.get("language", "en"),
            version=source.get("version", "v8"),
        )
    return SOURCE_KINDS[kind](http, gate, api_id)


def build_sources(
    config: Config,
    gate: GatedClient,
    secrets: SecretProvider,
    logger: logging.Logger,
) -> Dict[str, GatedSource]:
    """Build every configured source; a source without credentials is left out."""
    built: Dict[str, GatedSource] = {}
    for source_id, source in config.sources.items():
        try:
            built[source_id] = build_source(source_id, source, gate, secrets, logger)
        except ConfigurationError as exc:
            log_json(logger, "source_unavailable", level=logging.ERROR, source=source_id, error=str(exc))
    return built
