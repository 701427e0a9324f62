from __future__ import annotations

import asyncio
import math
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from .decoder import StreamDecoder, StreamEvent, TextDelta, UsageFinal
from .metrics import stream_client_disconnects_total
from .pricing import CostEstimate

log = structlog.get_logger()


def approximate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


@dataclass(frozen=True)
class AggregatedResult:
    full_text: str
    input_tokens: int
    output_tokens: int
    usage_reported: bool = False

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class Aggregator:
    """Append-only accumulator for decoded stream events."""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._usage: UsageFinal | None = None

    def observe(self, event: StreamEvent) -> str | None:
        """Record one event; returns the delta text when the event carried any."""
        if isinstance(event, TextDelta):
            self._parts.append(event.text)
            return event.text
        if isinstance(event, UsageFinal) and self._usage is None:
            self._usage = event
        return None

    @property
    def full_text(self) -> str:
        return "".join(self._parts)

    def result(self, prompt: str) -> AggregatedResult:
        full_text = self.full_text
        if self._usage is not None:
            return AggregatedResult(
                full_text=full_text,
                input_tokens=self._usage.input_tokens,
                output_tokens=self._usage.output_tokens,
                usage_reported=True,
            )
        return AggregatedResult(
            full_text=full_text,
            input_tokens=approximate_tokens(prompt),
            output_tokens=approximate_tokens(full_text),
        )


class FrameEncoder(Protocol):
    dialect: str

    def delta(self, text: str) -> bytes: ...

    def terminal(self, result: AggregatedResult, estimate: CostEstimate) -> bytes: ...

    def done(self) -> bytes: ...


Finalizer = Callable[[AggregatedResult], Awaitable[CostEstimate]]
FailureHook = Callable[[Exception, int], None]


async def _aclose(events: AsyncIterator[bytes]) -> None:
    aclose = getattr(events, "aclose", None)
    if callable(aclose):
        await aclose()


async def _chained(head: list[bytes], events: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    try:
        for raw in head:
            yield raw
        async for raw in events:
            yield raw
    finally:
        await _aclose(events)


async def prefetch_first(events: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """
    Pull the first backend event now and return a stream that replays it.

    A failure before any event therefore raises here, while the caller can
    still answer with an error body instead of an empty stream.
    """
    try:
        first = await events.__anext__()
    except StopAsyncIteration:
        return _chained([], events)
    except BaseException:
        await _aclose(events)
        raise
    return _chained([first], events)


async def aggregate(events: AsyncIterator[bytes], decoder: StreamDecoder, *, prompt: str) -> AggregatedResult:
    """Drain the backend stream without emitting anything."""
    aggregator = Aggregator()
    try:
        async for raw in events:
            aggregator.observe(decoder.decode(raw))
    finally:
        await _aclose(events)
    return aggregator.result(prompt)


async def relay_frames(
    events: AsyncIterator[bytes],
    decoder: StreamDecoder,
    encoder: FrameEncoder,
    *,
    prompt: str,
    finalize: Finalizer,
    on_failure: FailureHook | None = None,
    logger: Any = None,
) -> AsyncIterator[bytes]:
    """
    Re-emit every backend text delta as a client frame, in arrival order.

    Each frame is yielded before the next backend event is pulled. When the
    consumer stops pulling (client gone) the backend stream is closed and
    nothing more is read. A backend failure after frames were flushed ends the
    stream without a terminal frame or sentinel.
    """
    logger = logger or log
    aggregator = Aggregator()
    delivered = 0
    try:
        async for raw in events:
            text = aggregator.observe(decoder.decode(raw))
            if text:
                yield encoder.delta(text)
                delivered += 1
    except (GeneratorExit, asyncio.CancelledError):
        stream_client_disconnects_total.labels(dialect=encoder.dialect).inc()
        logger.info("stream_client_disconnected", dialect=encoder.dialect, frames_delivered=delivered)
        raise
    except Exception as e:
        if on_failure is not None:
            on_failure(e, delivered)
        else:
            logger.error(
                "stream_backend_failed",
                dialect=encoder.dialect,
                frames_delivered=delivered,
                error=str(e),
                error_type=type(e).__name__,
            )
        return
    finally:
        await _aclose(events)

    result = aggregator.result(prompt)
    estimate = await finalize(result)
    yield encoder.terminal(result, estimate)
    yield encoder.done()
