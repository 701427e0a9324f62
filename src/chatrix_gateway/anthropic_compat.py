from __future__ import annotations

import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .payloads import GenerationParams
from .pricing import CostEstimate
from .prompt import Content, content_text
from .relay import AggregatedResult

END_TURN = "end_turn"


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


class MessagesMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Literal["user", "assistant"]
    content: Content


class MessagesRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    model: str = Field(min_length=1)
    messages: list[MessagesMessage] = Field(min_length=1)
    system: Content | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    stream: bool = False

    @field_validator("max_tokens")
    @classmethod
    def _validate_max_tokens(cls, v: int | None) -> int | None:
        if v is None:
            return None
        if v <= 0:
            raise ValueError("max_tokens must be > 0.")
        return v

    @field_validator("temperature", "top_p")
    @classmethod
    def _validate_unit_interval(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if not (0.0 <= v <= 1.0):
            raise ValueError("value must be between 0 and 1.")
        return v

    def system_text(self) -> str | None:
        return content_text(self.system).strip() or None


def extract_generation_params(req: MessagesRequest) -> GenerationParams:
    return GenerationParams(max_tokens=req.max_tokens, temperature=req.temperature, top_p=req.top_p)


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class MessagesUsage(BaseModel):
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cost: dict[str, Any] | None = None


class MessagesResponse(BaseModel):
    id: str = Field(default_factory=new_message_id)
    type: Literal["message"] = "message"
    role: Literal["assistant"] = "assistant"
    content: list[TextBlock]
    model: str
    stop_reason: str = END_TURN
    stop_sequence: str | None = None
    usage: MessagesUsage


def make_anthropic_usage(result: AggregatedResult, estimate: CostEstimate) -> dict[str, Any]:
    return MessagesUsage(
        input_tokens=result.input_tokens,
        output_tokens=result.output_tokens,
        total_tokens=result.total_tokens,
        cost=estimate.to_dict(),
    ).model_dump()


def make_messages_response(*, model: str, result: AggregatedResult, estimate: CostEstimate) -> MessagesResponse:
    return MessagesResponse(
        content=[TextBlock(text=result.full_text)],
        model=model,
        usage=MessagesUsage(**make_anthropic_usage(result, estimate)),
    )


class AnthropicError(BaseModel):
    message: str
    type: str = "api_error"
    code: str | None = None


class AnthropicErrorResponse(BaseModel):
    type: Literal["error"] = "error"
    error: AnthropicError


def make_anthropic_error_response(
    *,
    message: str,
    type: str = "api_error",
    code: str | None = None,
) -> AnthropicErrorResponse:
    return AnthropicErrorResponse(error=AnthropicError(message=message, type=type, code=code))
