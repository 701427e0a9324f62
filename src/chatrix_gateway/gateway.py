from __future__ import annotations

import time
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from . import anthropic_compat, openai_compat
from .config import GatewayConfig
from .decoder import StreamDecoder
from .errors import GatewayError, InvalidRequestError
from .metrics import backend_invocations_total, backend_latency_seconds, cost_total, tokens_total
from .models import ModelDescriptor, ModelFamily, resolve
from .payloads import GenerationParams, build_payload
from .pricing import CostEstimate, cost
from .prompt import extract_prompt, extract_system, total_chars
from .relay import AggregatedResult, FrameEncoder, aggregate, prefetch_first, relay_frames
from .streaming import AnthropicFrameEncoder, OpenAIFrameEncoder

log = structlog.get_logger()

MISSING_PARAMS_MESSAGE = "Missing required parameters: model and messages"
INTERNAL_ERROR_MESSAGE = "Internal server error"


class StreamingBackend(Protocol):
    async def invoke_streaming(self, payload: dict[str, Any], model_id: str) -> AsyncIterator[bytes]: ...


class TextSource(Protocol):
    async def get(self) -> str: ...


class RateSource(Protocol):
    currency: str

    @property
    def enabled(self) -> bool: ...

    async def get(self) -> float: ...


@dataclass
class GatewayResponse:
    """What an entry point hands back: a JSON body, or a frame stream."""

    status_code: int
    body: dict[str, Any] | None = None
    frames: AsyncIterator[bytes] | None = None

    @property
    def is_stream(self) -> bool:
        return self.frames is not None


@dataclass(frozen=True)
class ChatTurn:
    """A public-dialect request reduced to what the backend needs."""

    model: str
    prompt: str
    system: str | None
    params: GenerationParams
    stream: bool
    message_count: int
    message_chars: int


@dataclass(frozen=True)
class _Dialect:
    name: str
    parse: Callable[[Any], ChatTurn]
    error_body: Callable[..., Any]
    respond: Callable[..., Any]
    encoder: Callable[[str], FrameEncoder]


def _parse_messages(body: Any) -> ChatTurn:
    req = anthropic_compat.MessagesRequest.model_validate(body)
    return ChatTurn(
        model=req.model,
        prompt=extract_prompt(req.messages),
        system=req.system_text(),
        params=anthropic_compat.extract_generation_params(req),
        stream=req.stream,
        message_count=len(req.messages),
        message_chars=total_chars(req.messages),
    )


def _parse_chat_completions(body: Any) -> ChatTurn:
    req = openai_compat.ChatCompletionRequest.model_validate(body)
    return ChatTurn(
        model=req.model,
        prompt=extract_prompt(req.messages),
        system=extract_system(req.messages),
        params=openai_compat.extract_generation_params(req),
        stream=req.stream,
        message_count=len(req.messages),
        message_chars=total_chars(req.messages),
    )


MESSAGES = _Dialect(
    name="messages",
    parse=_parse_messages,
    error_body=anthropic_compat.make_anthropic_error_response,
    respond=anthropic_compat.make_messages_response,
    encoder=AnthropicFrameEncoder,
)

CHAT_COMPLETIONS = _Dialect(
    name="chat_completions",
    parse=_parse_chat_completions,
    error_body=openai_compat.make_openai_error_response,
    respond=openai_compat.make_chat_completion_response,
    encoder=OpenAIFrameEncoder,
)


def _validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    for err in errors:
        loc = err.get("loc") or ()
        if len(loc) == 1 and loc[0] in ("model", "messages") and err.get("type") in (
            "missing",
            "too_short",
            "string_too_short",
        ):
            return MISSING_PARAMS_MESSAGE
    if not errors:
        return "Invalid request."
    first = errors[0]
    where = ".".join(str(p) for p in first.get("loc") or ())
    if not where:
        return "Request body must be a JSON object."
    return f"Invalid request: {where}: {first.get('msg')}"


class Gateway:
    """
    Translates public chat requests into Bedrock streaming calls.

    Collaborators are passed in as long-lived handles; each request only
    reads from them, so one Gateway serves all requests.
    """

    def __init__(
        self,
        cfg: GatewayConfig,
        *,
        backend: StreamingBackend,
        system_prompt: TextSource,
        exchange_rate: RateSource | None = None,
    ):
        self.cfg = cfg
        self.backend = backend
        self.system_prompt = system_prompt
        self.exchange_rate = exchange_rate

    async def handle_messages_request(self, body: Any, *, request_id: str | None = None) -> GatewayResponse:
        return await self._handle(MESSAGES, body, request_id)

    async def handle_chat_completions_request(self, body: Any, *, request_id: str | None = None) -> GatewayResponse:
        return await self._handle(CHAT_COMPLETIONS, body, request_id)

    def _error(
        self, dialect: _Dialect, status_code: int, message: str, type_: str, request_id: str
    ) -> GatewayResponse:
        body = dialect.error_body(message=message, type=type_, code=request_id).model_dump()
        return GatewayResponse(status_code=status_code, body=body)

    def _check_limits(self, turn: ChatTurn) -> None:
        if turn.message_count > self.cfg.max_messages:
            raise InvalidRequestError("Too many messages.")
        if turn.message_chars > self.cfg.max_total_message_chars:
            raise InvalidRequestError("Message content too large.")

    async def _system_for(self, descriptor: ModelDescriptor, turn: ChatTurn) -> str | None:
        if descriptor.family is not ModelFamily.CONVERSE_UNIFIED:
            return None
        return turn.system or await self.system_prompt.get()

    async def _handle(self, dialect: _Dialect, body: Any, request_id: str | None) -> GatewayResponse:
        started = time.monotonic()
        request_id = request_id or uuid.uuid4().hex
        model_name = body.get("model") if isinstance(body, dict) else None
        bound = log.bind(request_id=request_id, dialect=dialect.name)

        def _duration_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            turn = dialect.parse(body)
        except ValidationError as e:
            message = _validation_message(e)
            bound.warning("request_rejected", model=model_name, reason=message, duration_ms=_duration_ms())
            return self._error(dialect, 400, message, "invalid_request_error", request_id)

        descriptor = resolve(turn.model)
        bound = bound.bind(model=turn.model, backend_id=descriptor.backend_id)
        bound.info("chat_request_received", family=descriptor.family.value, stream=turn.stream)

        try:
            self._check_limits(turn)
            system = await self._system_for(descriptor, turn)
            payload = build_payload(descriptor, turn.prompt, turn.params, system=system)
            events = await self.backend.invoke_streaming(payload, descriptor.backend_id)
            if turn.stream:
                events = await prefetch_first(events)
        except InvalidRequestError as e:
            bound.warning("request_rejected", reason=str(e), duration_ms=_duration_ms())
            return self._error(dialect, 400, str(e), "invalid_request_error", request_id)
        except GatewayError as e:
            backend_invocations_total.labels(model=descriptor.backend_id, status="error").inc()
            bound.error("request_failed", error=str(e), error_type=type(e).__name__, duration_ms=_duration_ms())
            return self._error(dialect, 500, INTERNAL_ERROR_MESSAGE, "internal_server_error", request_id)
        except Exception as e:
            bound.exception("request_failed", error=str(e), error_type=type(e).__name__, duration_ms=_duration_ms())
            return self._error(dialect, 500, INTERNAL_ERROR_MESSAGE, "internal_server_error", request_id)

        decoder = StreamDecoder(descriptor.family)

        async def finalize(result: AggregatedResult) -> CostEstimate:
            return await self._finalize(descriptor, result, started, bound)

        if turn.stream:
            def on_failure(exc: Exception, delivered: int) -> None:
                backend_invocations_total.labels(model=descriptor.backend_id, status="error").inc()
                bound.error(
                    "request_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    frames_delivered=delivered,
                    duration_ms=_duration_ms(),
                )

            frames = relay_frames(
                events,
                decoder,
                dialect.encoder(turn.model),
                prompt=turn.prompt,
                finalize=finalize,
                on_failure=on_failure,
                logger=bound,
            )
            return GatewayResponse(status_code=200, frames=frames)

        try:
            result = await aggregate(events, decoder, prompt=turn.prompt)
            estimate = await finalize(result)
        except GatewayError as e:
            backend_invocations_total.labels(model=descriptor.backend_id, status="error").inc()
            bound.error("request_failed", error=str(e), error_type=type(e).__name__, duration_ms=_duration_ms())
            return self._error(dialect, 500, INTERNAL_ERROR_MESSAGE, "internal_server_error", request_id)
        except Exception as e:
            bound.exception("request_failed", error=str(e), error_type=type(e).__name__, duration_ms=_duration_ms())
            return self._error(dialect, 500, INTERNAL_ERROR_MESSAGE, "internal_server_error", request_id)

        response = dialect.respond(model=turn.model, result=result, estimate=estimate)
        return GatewayResponse(status_code=200, body=response.model_dump())

    async def _finalize(
        self, descriptor: ModelDescriptor, result: AggregatedResult, started: float, bound: Any
    ) -> CostEstimate:
        rate: float | None = None
        currency: str | None = None
        if self.exchange_rate is not None and self.exchange_rate.enabled:
            rate = await self.exchange_rate.get()
            currency = self.exchange_rate.currency
        estimate = cost(
            descriptor.backend_id,
            result.input_tokens,
            result.output_tokens,
            exchange_rate=rate,
            currency=currency,
        )

        elapsed = time.monotonic() - started
        backend_invocations_total.labels(model=descriptor.backend_id, status="success").inc()
        backend_latency_seconds.labels(model=descriptor.backend_id).observe(max(0.0, elapsed))
        tokens_total.labels(model=descriptor.backend_id, direction="input").inc(result.input_tokens)
        tokens_total.labels(model=descriptor.backend_id, direction="output").inc(result.output_tokens)
        cost_total.labels(model=descriptor.backend_id, currency=estimate.currency).inc(float(estimate.total_cost))

        bound.info(
            "request_completed",
            response_length=len(result.full_text),
            duration_ms=int(elapsed * 1000),
            usage={
                "input_tokens": result.input_tokens,
                "output_tokens": result.output_tokens,
                "reported": result.usage_reported,
            },
            cost=estimate.to_dict(),
        )
        return estimate
