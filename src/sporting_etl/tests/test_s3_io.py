"""Tests for S3IO using moto mock S3."""

from __future__ import annotations

import json
from typing import List

import pytest

from sporting_etl import s3_io as s3_io_module
from sporting_etl.s3_io import S3IO, make_part_key, new_run_id


class TestPutAndGet:
    def test_put_bytes_roundtrip(self, s3io: S3IO, s3_bucket):
        s3io.put_bytes("schedule_sr/2024/01/15/schedule.csv", b'"id"\n"g1"\n', content_type="text/csv")
        assert s3io.get_object_bytes("schedule_sr/2024/01/15/schedule.csv") == b'"id"\n"g1"\n'
        head = s3_bucket.head_object(Bucket="sporting-data", Key="schedule_sr/2024/01/15/schedule.csv")
        assert head["ContentType"] == "text/csv"

    def test_put_json(self, s3io: S3IO):
        s3io.put_json("meta/run_id=abc.json", {"run_id": "abc", "dates": 2})
        assert json.loads(s3io.get_object_bytes("meta/run_id=abc.json")) == {"run_id": "abc", "dates": 2}


class TestListAndExists:
    def test_list_keys_by_prefix(self, s3io: S3IO):
        for key in ("sr_gamedata/2024/01/15/a.csv", "sr_gamedata/2024/01/16/b.csv", "schedule_sr/2024/01/15/c.csv"):
            s3io.put_bytes(key, b"x")
        assert sorted(s3io.list_keys("sr_gamedata/")) == [
            "sr_gamedata/2024/01/15/a.csv",
            "sr_gamedata/2024/01/16/b.csv",
        ]
        assert s3io.list_keys("nothing/") == []

    def test_exists(self, s3io: S3IO):
        s3io.put_bytes("config/rate-limits.yml", b"apis: []\n")
        assert s3io.exists("config/rate-limits.yml")
        assert not s3io.exists("config/missing.yml")


class FlakyClient:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def put_object(self, **kwargs) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("SlowDown")


class TestPutRetry:
    @pytest.fixture()
    def sleeps(self, monkeypatch) -> List[float]:
        recorded: List[float] = []
        monkeypatch.setattr(s3_io_module.time, "sleep", recorded.append)
        return recorded

    def test_retries_then_succeeds(self, s3io: S3IO, sleeps: List[float], caplog):
        s3io._client = FlakyClient(failures=2)
        s3io.put_bytes("k", b"v")
        assert s3io._client.calls == 3
        assert sleeps == [0.5, 1.0]
        assert caplog.text.count("s3_put_retry") == 2

    def test_raises_after_last_attempt(self, s3io: S3IO, sleeps: List[float]):
        s3io._client = FlakyClient(failures=5)
        with pytest.raises(RuntimeError):
            s3io.put_json("k", {"a": 1})
        assert s3io._client.calls == 3


class TestHelpers:
    def test_make_part_key(self):
        assert make_part_key("/deadletter/", "summaries", "ingested_at=2024-01-15", "part-ab.json") == (
            "deadletter/summaries/ingested_at=2024-01-15/part-ab.json"
        )

    def test_new_run_id(self):
        first, second = new_run_id(), new_run_id()
        assert len(first) == 32
        assert first != second
