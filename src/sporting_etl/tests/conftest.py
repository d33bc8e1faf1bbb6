"""Shared test fixtures for sporting_etl test suite.

Provides moto-based AWS mocks, a controllable clock and realistic sample
payloads matching the Sportradar and RapidAPI response shapes.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import boto3
import pytest
from moto import mock_aws

from sporting_etl.config import Config
from sporting_etl.s3_io import S3IO


# ---------------------------------------------------------------------------
# AWS credential safety - prevent accidental real AWS calls
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True, scope="session")
def aws_credentials():
    """Set fake AWS credentials for the entire test session."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    yield
    for key in (
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
        "AWS_SECURITY_TOKEN",
        "AWS_SESSION_TOKEN",
        "AWS_DEFAULT_REGION",
    ):
        os.environ.pop(key, None)


# ---------------------------------------------------------------------------
# Moto-based AWS service fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def s3_bucket():
    """Create a moto mock S3 bucket named 'sporting-data' in us-east-1.

    Yields the boto3 S3 client so tests can make additional assertions.
    """
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket="sporting-data")
        yield client


@pytest.fixture()
def s3io(s3_bucket) -> S3IO:
    """S3IO bound to the moto bucket."""
    return S3IO("sporting-data", "us-east-1")


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Configuration fixture
# ---------------------------------------------------------------------------

@pytest.fixture()
def sample_config() -> Config:
    """Return a Config object with realistic test values."""
    return Config({
        "bucket": "sporting-data",
        "region": "us-east-1",
        "ingestion": {
            "start_date": "2024-01-15",
            "end_date": "2024-01-15",
            "batch_size": 2,
        },
        "retry": {
            "max_attempts": 3,
            "initial_delay_seconds": 1.0,
            "multiplier": 2.0,
            "max_delay_seconds": 10.0,
        },
        "gate": {"backoff_seconds": 1.0, "max_rate_limit_retries": 1},
        "quota": {"store_key": "config/rate-limits.yml", "sync_interval_seconds": 600},
        "secrets": {"backend": "env"},
        "sources": {
            "sportradar": {
                "kind": "sportradar",
                "quota_id": "sportradar-api",
                "base_url": "https://api.sportradar.com",
                "api_key": "sr-test-key",
                "limits": [
                    {"id": "per-second", "maxCount": 1, "timeUnit": "SECONDS"},
                    {"id": "per-day", "maxCount": 1000, "timeUnit": "DAYS"},
                ],
            },
            "rapidapi": {
                "kind": "rapidapi",
                "quota_id": "rapidapi-basketball",
                "base_url": "https://api-nba-v1.p.rapidapi.com",
                "api_key": "rapid-test-key",
                "limits": [
                    {"id": "per-minute", "maxCount": 10, "timeUnit": "MINUTES"},
                ],
            },
        },
    })


# ---------------------------------------------------------------------------
# Sample data fixtures - realistic provider response shapes
# ---------------------------------------------------------------------------

@pytest.fixture()
def sample_schedule() -> Dict[str, Any]:
    """Sportradar daily schedule with two games."""
    return {
        "date": "2024-01-15",
        "league": {"id": "4353138d-4c22-4396-95d8-5f587d2df25c", "name": "NBA", "alias": "NBA"},
        "games": [
            {
                "id": "g1",
                "status": "closed",
                "scheduled": "2024-01-15T19:00:00Z",
                "home": {"name": "Boston Celtics", "alias": "BOS", "id": "t-bos"},
                "away": {"name": "Houston Rockets", "alias": "HOU", "id": "t-hou"},
            },
            {
                "id": "g2",
                "status": "closed",
                "scheduled": "2024-01-15T22:00:00Z",
                "home": {"name": "Denver Nuggets", "alias": "DEN", "id": "t-den"},
                "away": {"name": "Chicago Bulls", "alias": "CHI", "id": "t-chi"},
            },
        ],
    }

