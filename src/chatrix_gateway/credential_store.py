from __future__ import annotations

import asyncio
import json
from typing import Any

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from .cache import CachedValue
from .errors import ConfigurationError

log = structlog.get_logger()


class SecretsManagerCredentialStore:
    """
    API key held in AWS Secrets Manager as a JSON secret: {"api_key": "..."}.

    The key is fetched on first use and cached for the process lifetime.
    """

    def __init__(self, secret_name: str, region: str, *, client: Any | None = None, key_field: str = "api_key"):
        self.secret_name = secret_name
        self.key_field = key_field
        self._client = client or boto3.client("secretsmanager", region_name=region)
        self._cache: CachedValue[str] = CachedValue(self._fetch)

    async def _fetch(self) -> str:
        log.info("credential_fetch", secret_name=self.secret_name)
        try:
            response = await asyncio.to_thread(self._client.get_secret_value, SecretId=self.secret_name)
            secret = json.loads(response["SecretString"])
        except (ClientError, BotoCoreError, KeyError, ValueError) as e:
            log.error("credential_fetch_failed", secret_name=self.secret_name, error=str(e))
            raise ConfigurationError("Authentication configuration error") from e

        value = secret.get(self.key_field) if isinstance(secret, dict) else None
        if not isinstance(value, str) or not value:
            log.error("credential_missing_field", secret_name=self.secret_name, field=self.key_field)
            raise ConfigurationError("Authentication configuration error")
        log.info("credential_loaded", secret_name=self.secret_name)
        return value

    async def get(self) -> str:
        return await self._cache.get()


class StaticCredentialStore:
    def __init__(self, token: str):
        self._token = token

    async def get(self) -> str:
        return self._token
