from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ConfigurationError
from .logging_utils import log_json


class SecretProvider(Protocol):
    def get_secret(self, name: str) -> str:
        ...


class AwsSecretsManager:
    def __init__(self, region: str) -> None:
        self._client = boto3.client("secretsmanager", region_name=region)
        self._cache: Dict[str, str] = {}

    def get_secret(self, name: str) -> str:
        if name in self._cache:
            return self._cache[name]
        resp = self._client.get_secret_value(SecretId=name)
        value = resp.get("SecretString")
        if value is None:
            raise ConfigurationError(f"Secret {name} has no string value")
        self._cache[name] = value
        return value


class EnvSecretProvider:
    """Reads ``rapidapi-basketball-key`` from ``RAPIDAPI_BASKETBALL_KEY``."""

    def get_secret(self, name: str) -> str:
        env_name = re.sub(r"[^A-Za-z0-9]+", "_", name).upper()
        value = os.getenv(env_name)
        if not value:
            raise ConfigurationError(f"Secret {name} not set; export {env_name}")
        return value


def build_secret_provider(raw: Dict[str, Any], region: str) -> SecretProvider:
    backend = (raw or {}).get("backend", "env")
    if backend == "aws":
        return AwsSecretsManager(raw.get("region", region))
    if backend == "env":
        return EnvSecretProvider()
    raise ValueError(f"Unknown secrets backend: {backend}")


def resolve_api_key(
    source_id: str,
    source: Dict[str, Any],
    provider: SecretProvider,
    logger: Optional[logging.Logger] = None,
) -> str:
    """Secret first, then the static ``api_key``, then ``api_key_env``."""
    logger = logger or logging.getLogger(__name__)
    secret_name = source.get("api_key_secret_name")
    if secret_name:
        try:
            return provider.get_secret(secret_name)
        except (ConfigurationError, BotoCoreError, ClientError) as exc:
            log_json(
                logger,
                "secret_lookup_failed",
                level=logging.WARNING,
                source=source_id,
                secret=secret_name,
                error=str(exc),
            )
    if source.get("api_key"):
        return str(source["api_key"])
    env_name = source.get("api_key_env")
    if env_name and os.getenv(env_name):
        return os.environ[env_name]
    raise ConfigurationError(f"No API key resolvable for source {source_id}")
