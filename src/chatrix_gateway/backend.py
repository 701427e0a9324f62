from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Iterable
from typing import Any

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import AuthenticationError, BackendInvocationError, GatewayError, RateLimitError

log = structlog.get_logger()

_THROTTLING_CODES = {"ThrottlingException", "TooManyRequestsException", "ServiceQuotaExceededException"}
_AUTH_CODES = {
    "AccessDeniedException",
    "UnrecognizedClientException",
    "ExpiredTokenException",
    "InvalidSignatureException",
}

_END = object()


def map_client_error(exc: ClientError) -> GatewayError:
    code = exc.response.get("Error", {}).get("Code", "")
    if code in _THROTTLING_CODES:
        return RateLimitError(f"Backend throttled the request ({code}).")
    if code in _AUTH_CODES:
        return AuthenticationError(f"Backend rejected credentials ({code}).")
    return BackendInvocationError(f"Backend error ({code or 'unknown'}).")


class BedrockBackend:
    """
    Streaming client for the Bedrock runtime.

    boto3 is blocking, so both the invocation and each pull from the event
    stream run in a worker thread. botocore retries are disabled: a failed
    call is surfaced once.
    """

    def __init__(
        self,
        region: str,
        *,
        client: Any | None = None,
        connect_timeout_seconds: float = 10,
        read_timeout_seconds: float = 120,
    ):
        self.region = region
        self._client = client or boto3.client(
            "bedrock-runtime",
            region_name=region,
            config=Config(
                connect_timeout=connect_timeout_seconds,
                read_timeout=read_timeout_seconds,
                retries={"total_max_attempts": 1},
            ),
        )

    async def invoke_streaming(self, payload: dict[str, Any], model_id: str) -> AsyncIterator[bytes]:
        """
        Start a streaming invocation and return its raw chunk payloads.

        Failures that happen before the first event raise here, so callers can
        still answer with an error body.
        """
        try:
            response = await asyncio.to_thread(
                self._client.invoke_model_with_response_stream,
                modelId=model_id,
                contentType="application/json",
                accept="application/json",
                body=json.dumps(payload),
            )
        except ClientError as e:
            raise map_client_error(e) from e
        except BotoCoreError as e:
            raise BackendInvocationError("Backend request failed.") from e

        log.debug("bedrock_stream_opened", model_id=model_id)
        return self._iter_chunks(response["body"])

    async def _iter_chunks(self, stream: Iterable[dict[str, Any]]) -> AsyncIterator[bytes]:
        it = iter(stream)
        try:
            while True:
                try:
                    event = await asyncio.to_thread(next, it, _END)
                except ClientError as e:
                    raise map_client_error(e) from e
                except BotoCoreError as e:
                    raise BackendInvocationError("Backend stream failed.") from e
                if event is _END:
                    return
                chunk = event.get("chunk") if isinstance(event, dict) else None
                if not isinstance(chunk, dict):
                    log.debug("bedrock_stream_non_chunk_event", keys=list(event) if isinstance(event, dict) else None)
                    continue
                yield chunk.get("bytes") or b""
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                close()

    async def close(self) -> None:
        close = getattr(self._client, "close", None)
        if callable(close):
            close()
