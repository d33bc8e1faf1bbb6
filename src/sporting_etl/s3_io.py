from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, List, Optional

import boto3

from .logging_utils import log_json


class S3IO:
    """Bucket-scoped object access for batches, quotas and run metadata."""

    def __init__(
        self,
        bucket: str,
        region: str,
        put_attempts: int = 3,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        self.put_attempts = max(1, put_attempts)
        self.logger = logger or logging.getLogger(__name__)
        self._client = boto3.client("s3", region_name=region)

    def _put_with_retry(self, key: str, body: bytes, content_type: Optional[str] = None) -> None:
        delay = 0.5
        extra = {"ContentType": content_type} if content_type else {}
        for attempt in range(1, self.put_attempts + 1):
            try:
                self._client.put_object(Bucket=self.bucket, Key=key, Body=body, **extra)
                return
            except Exception as exc:
                if attempt >= self.put_attempts:
                    raise
                log_json(self.logger, "s3_put_retry", level=logging.WARNING, key=key, attempt=attempt, error=str(exc))
                time.sleep(delay)
                delay = min(8.0, delay * 2)

    def put_bytes(self, key: str, body: bytes, content_type: Optional[str] = None) -> None:
        self._put_with_retry(key, body, content_type)

    def put_json(self, key: str, payload: Any) -> None:
        self._put_with_retry(key, json.dumps(payload, default=str).encode("utf-8"), "application/json")

    def list_keys(self, prefix: str) -> List[str]:
        paginator = self._client.get_paginator("list_objects_v2")
        return [
            obj["Key"]
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix)
            for obj in page.get("Contents", [])
        ]

    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
        except self._client.exceptions.ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in {"404", "NoSuchKey"}:
                return False
            raise
        return True

    def get_object_bytes(self, key: str) -> bytes:
        return self._client.get_object(Bucket=self.bucket, Key=key)["Body"].read()


def make_part_key(prefix: str, *parts: str) -> str:
    return "/".join([prefix.strip("/")] + [p.strip("/") for p in parts])


def new_run_id() -> str:
    return uuid.uuid4().hex
