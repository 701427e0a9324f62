from __future__ import annotations

import json
import time
from typing import Any

from .anthropic_compat import END_TURN, make_anthropic_usage, new_message_id
from .openai_compat import make_openai_usage, new_completion_id
from .pricing import CostEstimate
from .relay import AggregatedResult

DONE_SENTINEL = "[DONE]"


def sse_encode(data: str) -> bytes:
    return f"data: {data}\n\n".encode("utf-8")


def sse_json(payload: dict[str, Any]) -> bytes:
    return sse_encode(json.dumps(payload, ensure_ascii=False))


def openai_chunk(
    *,
    chunk_id: str,
    created: int,
    model: str,
    delta: dict[str, Any],
    finish_reason: str | None = None,
) -> dict[str, Any]:
    chunk: dict[str, Any] = {
        "id": chunk_id,
        "object": "chat.completion.chunk",
        "created": created,
        "model": model,
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    return chunk


class OpenAIFrameEncoder:
    dialect = "chat_completions"

    def __init__(self, model: str):
        self.model = model
        self.chunk_id = new_completion_id()
        self.created = int(time.time())

    def delta(self, text: str) -> bytes:
        return sse_json(
            openai_chunk(chunk_id=self.chunk_id, created=self.created, model=self.model, delta={"content": text})
        )

    def terminal(self, result: AggregatedResult, estimate: CostEstimate) -> bytes:
        chunk = openai_chunk(
            chunk_id=self.chunk_id,
            created=self.created,
            model=self.model,
            delta={},
            finish_reason="stop",
        )
        chunk["usage"] = make_openai_usage(result, estimate)
        return sse_json(chunk)

    def done(self) -> bytes:
        return sse_encode(DONE_SENTINEL)


class AnthropicFrameEncoder:
    dialect = "messages"

    def __init__(self, model: str):
        self.model = model
        self.message_id = new_message_id()

    def delta(self, text: str) -> bytes:
        return sse_json(
            {
                "type": "content_block_delta",
                "index": 0,
                "delta": {"type": "text_delta", "text": text},
            }
        )

    def terminal(self, result: AggregatedResult, estimate: CostEstimate) -> bytes:
        return sse_json(
            {
                "type": "message_delta",
                "id": self.message_id,
                "model": self.model,
                "delta": {"stop_reason": END_TURN, "stop_sequence": None},
                "usage": make_anthropic_usage(result, estimate),
            }
        )

    def done(self) -> bytes:
        return sse_encode(DONE_SENTINEL)
