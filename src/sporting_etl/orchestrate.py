from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .batch_writer import BatchWriter
from .config import Config
from .errors import BackfillHalted
from .logging_utils import log_json
from .quota import utcnow
from .retry import RetryPolicy
from .s3_io import make_part_key, new_run_id
from .sources import RapidApiBasketballClient, SportradarClient
from .utils import extract_ids, iter_days, stable_hash


class Stage(str, Enum):
    PENDING = "pending"
    SCHEDULE_FETCHED = "schedule_fetched"
    SUMMARIES_BATCHING = "summaries_batching"
    PROFILES_BATCHING = "profiles_batching"
    DATE_COMPLETE = "date_complete"


@dataclass
class DateCursor:
    day: date
    stage: Stage = Stage.PENDING
    game_ids: List[str] = field(default_factory=list)
    player_ids: Dict[str, None] = field(default_factory=dict)
    summaries: int = 0
    profiles: int = 0
    keys: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "stage": self.stage.value,
            "games": len(self.game_ids),
            "players": len(self.player_ids),
            "summaries": self.summaries,
            "profiles": self.profiles,
            "files": len(self.keys),
            "failed": len(self.failed),
            "error": self.error,
        }


class BatchBuffer:
    """Accumulates records and writes them as numbered batches of one stage."""

    def __init__(
        self,
        writer: BatchWriter,
        data_type: str,
        day: date,
        stem: str,
        run_tag: str,
        batch_size: int,
        logger: logging.Logger,
    ) -> None:
        self.writer = writer
        self.data_type = data_type
        self.day = day
        self.stem = stem
        self.run_tag = run_tag
        self.batch_size = max(1, batch_size)
        self.logger = logger
        self.batch_num = 1
        self.keys: List[str] = []
        self._records: List[Any] = []

    def add(self, record: Any) -> None:
        self._records.append(record)
        if len(self._records) >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        if not self._records:
            return
        records, self._records = self._records, []
        discriminator = f"{self.stem}_batch_{self.batch_num}-{self.run_tag}"
        self.batch_num += 1
        try:
            self.keys.append(self.writer.write_batch(records, self.data_type, self.day, discriminator))
        except Exception as exc:
            log_json(
                self.logger,
                "batch_write_failed",
                level=logging.ERROR,
                data_type=self.data_type,
                date=self.day.isoformat(),
                batch=discriminator,
                records=len(records),
                error=str(exc),
            )


def extract_player_ids(summary: Any) -> List[str]:
    if not isinstance(summary, dict):
        return []
    ids: Dict[str, None] = {}
    for side in ("home", "away"):
        team = summary.get(side)
        if isinstance(team, dict):
            for pid in extract_ids(team.get("players")):
                ids.setdefault(pid, None)
    return list(ids)


def extract_plays(payload: Any, game_id: str) -> List[Dict[str, Any]]:
    """Play rows of a play-by-play payload, each tagged with ``game_id``."""
    if not isinstance(payload, dict):
        return []
    plays = payload.get("plays")
    if not isinstance(plays, list):
        plays = []
        for period in payload.get("periods") or []:
            if isinstance(period, dict) and isinstance(period.get("events"), list):
                plays.extend(period["events"])
    return [dict(p, game_id=game_id) for p in plays if isinstance(p, dict)]


def _response_items(payload: Any) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict) or not isinstance(payload.get("response"), list):
        return []
    return [item for item in payload["response"] if isinstance(item, dict)]


class Orchestrator:
    def __init__(
        self,
        config: Config,
        logger: logging.Logger,
        writer: BatchWriter,
        sportradar: Optional[SportradarClient],
        rapidapi: Optional[RapidApiBasketballClient] = None,
        retry: Optional[RetryPolicy] = None,
        run_id: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.logger = logger
        self.writer = writer
        self.sportradar = sportradar
        self.rapidapi = rapidapi
        self.retry = retry or RetryPolicy.from_config(config.retry, logger=logger)
        self.layout = config.layout
        self.batch_size = config.batch_size
        self.halt_on_complete = bool(config.ingestion.get("halt_on_complete", False))
        self._clock = clock
        self._sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
        self._run_started = False
        self._begin_run(run_id)

    @property
    def run_id(self) -> str:
        return self._run_id

    def _begin_run(self, run_id: Optional[str] = None) -> None:
        self._run_id = run_id or new_run_id()
        self._run_tag = self._run_id[:8]
        self._summary: Dict[str, Any] = {"run_id": self._run_id, "started_at": self._clock().isoformat()}

    def _next_run(self) -> None:
        """Every pipeline or backfill after the first gets a fresh run id and summary."""
        if self._run_started:
            self._begin_run()
        self._run_started = True

    async def run_pipeline(self, start: Optional[date] = None, end: Optional[date] = None) -> List[DateCursor]:
        start, end = self._resolve_range(start, end)
        self._next_run()
        if self.sportradar is None:
            log_json(self.logger, "pipeline_skipped", level=logging.ERROR, reason="sportradar source unavailable")
            return []
        log_json(self.logger, "pipeline_start", start=start.isoformat(), end=end.isoformat(), run_id=self._run_id)
        cursors = []
        for day in iter_days(start, end):
            cursors.append(await self.process_date(day))
        self._summary["pipeline"] = [c.as_dict() for c in cursors]
        self._finalize_summary()
        log_json(self.logger, "pipeline_done", dates=len(cursors), run_id=self._run_id)
        if self.halt_on_complete:
            raise BackfillHalted(f"pipeline run {self._run_id} complete; halt_on_complete is set")
        return cursors

    async def run_forever(self, interval_seconds: float) -> None:
        """Run the pipeline every ``interval_seconds`` over the last ``rolling_window_days`` days, today included."""
        window_days = max(1, int(self.config.ingestion.get("rolling_window_days", 1)))
        while True:
            today = self._clock().date()
            try:
                await self.run_pipeline(today - timedelta(days=window_days - 1), today)
            except BackfillHalted:
                raise
            except Exception as exc:
                log_json(self.logger, "scheduled_run_failed", level=logging.ERROR, error=str(exc))
            await self._sleep(interval_seconds)

    async def process_date(self, day: date) -> DateCursor:
        cursor = DateCursor(day)
        log_json(self.logger, "date_start", date=day.isoformat())
        try:
            await self._fetch_schedule(cursor)
            if not cursor.game_ids:
                log_json(self.logger, "date_no_games", date=day.isoformat())
            else:
                await self._fetch_summaries(cursor)
                if not cursor.player_ids:
                    log_json(self.logger, "date_no_players", date=day.isoformat())
                else:
                    await self._fetch_profiles(cursor)
        except Exception as exc:
            cursor.error = cursor.error or str(exc)
            log_json(self.logger, "date_failed", level=logging.ERROR, date=day.isoformat(), stage=cursor.stage.value, error=str(exc))
        cursor.stage = Stage.DATE_COMPLETE
        log_json(self.logger, "date_done", **cursor.as_dict())
        return cursor

    async def _fetch_schedule(self, cursor: DateCursor) -> None:
        day = cursor.day
        schedule = await self._fetch_item("schedule", self.sportradar.daily_schedule, day, {"date": day.isoformat()}, cursor.failed)
        if schedule is None:
            cursor.error = "schedule_unavailable"
            return
        games = schedule.get("games")
        if not isinstance(games, list) or not games:
            return
        try:
            key = self.writer.write_batch(games, self.layout["schedule"], day, f"schedule-{self._run_tag}")
            cursor.keys.append(key)
        except Exception as exc:
            log_json(self.logger, "batch_write_failed", level=logging.ERROR, data_type=self.layout["schedule"], date=day.isoformat(), error=str(exc))
        cursor.game_ids = extract_ids(games)
        cursor.stage = Stage.SCHEDULE_FETCHED
        log_json(self.logger, "schedule_fetched", date=day.isoformat(), games=len(cursor.game_ids))

    async def _fetch_summaries(self, cursor: DateCursor) -> None:
        cursor.stage = Stage.SUMMARIES_BATCHING
        buffer = self._buffer(self.layout["summaries"], cursor.day, "summaries")
        for game_id in cursor.game_ids:
            summary = await self._fetch_item("summaries", self.sportradar.game_summary, game_id, {"game_id": game_id}, cursor.failed)
            if summary is None:
                continue
            buffer.add(summary)
            cursor.summaries += 1
            for player_id in extract_player_ids(summary):
                cursor.player_ids.setdefault(player_id, None)
        buffer.flush()
        cursor.keys.extend(buffer.keys)

    async def _fetch_profiles(self, cursor: DateCursor) -> None:
        cursor.stage = Stage.PROFILES_BATCHING
        buffer = self._buffer(self.layout["profiles"], cursor.day, "profiles")
        for player_id in cursor.player_ids:
            profile = await self._fetch_item("profiles", self.sportradar.player_profile, player_id, {"player_id": player_id}, cursor.failed)
            if profile is None:
                continue
            buffer.add(profile)
            cursor.profiles += 1
        buffer.flush()
        cursor.keys.extend(buffer.keys)

    async def run_backfill(self, start: Optional[date] = None, end: Optional[date] = None) -> Dict[str, int]:
        """Play-by-play and player statistics for a date range, as two concurrent families."""
        start, end = self._resolve_range(start, end)
        self._next_run()
        days = list(iter_days(start, end))
        log_json(self.logger, "backfill_start", start=start.isoformat(), end=end.isoformat(), run_id=self._run_id)
        families: List[Tuple[str, Callable[[List[date]], Awaitable[int]]]] = [
            ("play_by_play", self._backfill_play_by_play),
            ("player_statistics", self._backfill_player_statistics),
        ]
        results = await asyncio.gather(*(fn(days) for _, fn in families), return_exceptions=True)
        counts: Dict[str, int] = {}
        for (name, _), result in zip(families, results):
            if isinstance(result, BaseException):
                log_json(self.logger, "backfill_family_failed", level=logging.ERROR, family=name, error=str(result))
                counts[name] = 0
            else:
                counts[name] = result
        self._summary["backfill"] = counts
        self._finalize_summary()
        log_json(self.logger, "backfill_done", run_id=self._run_id, **counts)
        if self.halt_on_complete:
            raise BackfillHalted(f"backfill run {self._run_id} complete; halt_on_complete is set")
        return counts

    def saved_game_ids(self, day: date) -> List[str]:
        pattern = f"{self.layout['schedule']}/{day.year:04d}/{day.month:02d}/{day.day:02d}/*.csv"
        rows: List[Dict[str, str]] = []
        for key in self.writer.list_by_pattern(pattern):
            rows.extend(self.writer.read(key))
        return extract_ids(rows)

    async def _backfill_play_by_play(self, days: List[date]) -> int:
        if self.sportradar is None:
            log_json(self.logger, "backfill_family_skipped", level=logging.WARNING, family="play_by_play")
            return 0
        total = 0
        for day in days:
            game_ids = self.saved_game_ids(day)
            if not game_ids:
                continue
            buffer = self._buffer(self.layout["play_by_play"], day, "pbp")
            for game_id in game_ids:
                payload = await self._fetch_item("play_by_play", self.sportradar.play_by_play, game_id, {"game_id": game_id}, [])
                for play in extract_plays(payload, game_id):
                    buffer.add(play)
                    total += 1
            buffer.flush()
        return total

    async def _backfill_player_statistics(self, days: List[date]) -> int:
        if self.rapidapi is None:
            log_json(self.logger, "backfill_family_skipped", level=logging.WARNING, family="player_statistics")
            return 0
        total = 0
        for day in days:
            payload = await self._fetch_item("games", self.rapidapi.games_by_date, day, {"date": day.isoformat()}, [])
            games = [dict(g, retrieved_date=day.isoformat()) for g in _response_items(payload)]
            if not games:
                continue
            games_buffer = self._buffer(self.layout["games"], day, "games")
            for game in games:
                games_buffer.add(game)
            games_buffer.flush()
            stats_buffer = self._buffer(self.layout["player_statistics"], day, "stats")
            for game_id in extract_ids(games):
                stats = await self._fetch_item("player_statistics", self.rapidapi.player_statistics, game_id, {"game_id": game_id}, [])
                for row in _response_items(stats):
                    stats_buffer.add(dict(row, game_id=game_id))
                    total += 1
            stats_buffer.flush()
        return total

    async def _fetch_item(
        self,
        stage: str,
        fn: Callable[[Any], Awaitable[Optional[Dict[str, Any]]]],
        arg: Any,
        params: Dict[str, Any],
        failed: List[str],
    ) -> Optional[Dict[str, Any]]:
        try:
            data = await self.retry.call(fn, arg)
        except Exception as exc:
            log_json(self.logger, "item_failed", level=logging.ERROR, stage=stage, error=str(exc), **params)
            self._deadletter(stage, params, f"error:{exc}")
            failed.append(f"{stage}:{arg}")
            return None
        if data is None:
            log_json(self.logger, "item_deferred", level=logging.WARNING, stage=stage, **params)
            self._deadletter(stage, params, "quota_deferred")
            failed.append(f"{stage}:{arg}")
        return data

    def _buffer(self, data_type: str, day: date, stem: str) -> BatchBuffer:
        return BatchBuffer(self.writer, data_type, day, stem, self._run_tag, self.batch_size, self.logger)

    def _resolve_range(self, start: Optional[date], end: Optional[date]) -> Tuple[date, date]:
        if start is None:
            start, default_end = self.config.date_range()
            end = end or default_end
        end = end or start
        if end < start:
            raise ValueError("end date must be >= start date")
        return start, end

    def _deadletter(self, stage: str, params: Dict[str, Any], reason: str) -> None:
        key = make_part_key(
            self.layout["deadletter_prefix"],
            stage,
            f"ingested_at={self._clock().date().isoformat()}",
            f"part-{stable_hash(params)[:8]}.json",
        )
        try:
            self.writer.s3.put_json(key, {"reason": reason, "params": params, "stage": stage, "run_id": self._run_id})
        except Exception as exc:
            log_json(self.logger, "deadletter_write_failed", level=logging.ERROR, key=key, error=str(exc))

    def _finalize_summary(self) -> None:
        self._summary["finished_at"] = self._clock().isoformat()
        key = make_part_key(self.layout["meta_prefix"], f"run_id={self._run_id}.json")
        try:
            self.writer.s3.put_json(key, self._summary)
        except Exception as exc:
            log_json(self.logger, "summary_write_failed", level=logging.ERROR, key=key, error=str(exc))
