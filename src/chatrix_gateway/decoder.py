from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeAlias

import structlog

from .metrics import stream_decode_anomalies_total
from .models import ModelFamily

log = structlog.get_logger()

BEDROCK_METRICS_KEY = "amazon-bedrock-invocationMetrics"


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class UsageFinal:
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class Empty:
    pass


StreamEvent: TypeAlias = TextDelta | UsageFinal | Empty

EMPTY = Empty()


def _token_count(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return max(0, value)


def _usage(source: Any, input_key: str, output_key: str) -> UsageFinal | None:
    if not isinstance(source, dict):
        return None
    input_tokens = _token_count(source.get(input_key))
    output_tokens = _token_count(source.get(output_key))
    if input_tokens is None or output_tokens is None:
        return None
    return UsageFinal(input_tokens=input_tokens, output_tokens=output_tokens)


def _invocation_metrics(event: dict[str, Any]) -> UsageFinal | None:
    return _usage(event.get(BEDROCK_METRICS_KEY), "inputTokenCount", "outputTokenCount")


def _text(value: Any) -> TextDelta | None:
    if isinstance(value, str) and value:
        return TextDelta(text=value)
    return None


def _decode_block_delta(event: dict[str, Any]) -> StreamEvent:
    kind = event.get("type")
    if kind == "content_block_delta":
        delta = event.get("delta")
        if isinstance(delta, dict):
            return _text(delta.get("text")) or EMPTY
        return EMPTY
    if kind == "message_stop":
        return _invocation_metrics(event) or EMPTY
    return EMPTY


def _decode_completion_text(event: dict[str, Any]) -> StreamEvent:
    choices = event.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        found = _text(choices[0].get("text"))
        if found is not None:
            return found
    return EMPTY


def _decode_converse(event: dict[str, Any]) -> StreamEvent:
    block = event.get("contentBlockDelta")
    if isinstance(block, dict):
        delta = block.get("delta")
        if isinstance(delta, dict):
            return _text(delta.get("text")) or EMPTY
        return EMPTY
    metadata = event.get("metadata")
    if isinstance(metadata, dict):
        return _usage(metadata.get("usage"), "inputTokens", "outputTokens") or EMPTY
    return EMPTY


_DECODERS: dict[ModelFamily, Callable[[dict[str, Any]], StreamEvent]] = {
    ModelFamily.CONVERSATIONAL_BLOCK_DELTA: _decode_block_delta,
    ModelFamily.COMPLETION_TEXT: _decode_completion_text,
    ModelFamily.CONVERSE_UNIFIED: _decode_converse,
}


def decode_event(family: ModelFamily, raw: bytes | str | None) -> StreamEvent:
    """
    Decode one backend stream payload into a StreamEvent.

    Never raises: payloads that are not a JSON object, or that carry no
    recognizable content, come back as Empty. Any event without text that
    carries Bedrock invocation metrics yields UsageFinal.
    """
    if not raw:
        return EMPTY
    try:
        event = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        stream_decode_anomalies_total.labels(family=family.value).inc()
        log.debug("stream_event_undecodable", family=family.value, size=len(raw))
        return EMPTY
    if not isinstance(event, dict):
        stream_decode_anomalies_total.labels(family=family.value).inc()
        log.debug("stream_event_not_object", family=family.value)
        return EMPTY

    decoded = _DECODERS[family](event)
    if isinstance(decoded, Empty):
        return _invocation_metrics(event) or EMPTY
    return decoded


class StreamDecoder:
    """Family-bound decoder; the family is fixed for the lifetime of a request."""

    def __init__(self, family: ModelFamily):
        self.family = family

    def decode(self, raw: bytes | str | None) -> StreamEvent:
        return decode_event(self.family, raw)
