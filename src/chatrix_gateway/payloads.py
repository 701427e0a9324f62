from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .models import NEWER_GENERATION_BACKEND_IDS, ModelDescriptor, ModelFamily

ANTHROPIC_BEDROCK_VERSION = "bedrock-2023-05-31"
CONVERSE_SCHEMA_VERSION = "messages-v1"
COMPLETION_STOP_SEQUENCES = ["</think>", "<|end_of_sentence|>"]


@dataclass(frozen=True)
class GenerationParams:
    """Client-requested sampling parameters; None means "use the family default"."""

    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None


@dataclass(frozen=True)
class FamilyLimits:
    max_tokens_ceiling: int = 1024
    temperature_ceiling: float = 0.3
    top_p_ceiling: float = 0.3
    default_max_tokens: int = 1024
    default_temperature: float = 0.3
    default_top_p: float = 0.3


FAMILY_LIMITS: dict[ModelFamily, FamilyLimits] = {
    ModelFamily.CONVERSATIONAL_BLOCK_DELTA: FamilyLimits(),
    ModelFamily.COMPLETION_TEXT: FamilyLimits(default_max_tokens=512),
    ModelFamily.CONVERSE_UNIFIED: FamilyLimits(),
}


def clamp_params(family: ModelFamily, params: GenerationParams) -> GenerationParams:
    """Cap each value at its family ceiling; values below the cap pass through."""
    limits = FAMILY_LIMITS[family]
    max_tokens = limits.default_max_tokens if params.max_tokens is None else params.max_tokens
    temperature = limits.default_temperature if params.temperature is None else params.temperature
    top_p = limits.default_top_p if params.top_p is None else params.top_p
    return GenerationParams(
        max_tokens=min(max_tokens, limits.max_tokens_ceiling),
        temperature=min(temperature, limits.temperature_ceiling),
        top_p=min(top_p, limits.top_p_ceiling),
    )


def _conversational_block_delta(
    descriptor: ModelDescriptor, prompt: str, params: GenerationParams, system: str | None
) -> dict[str, Any]:
    return {
        "anthropic_version": ANTHROPIC_BEDROCK_VERSION,
        "max_tokens": params.max_tokens,
        "temperature": params.temperature,
        "top_p": params.top_p,
        "messages": [{"role": "user", "content": [{"type": "text", "text": prompt}]}],
    }


def _completion_text(
    descriptor: ModelDescriptor, prompt: str, params: GenerationParams, system: str | None
) -> dict[str, Any]:
    return {
        "prompt": prompt,
        "max_tokens": params.max_tokens,
        "temperature": params.temperature,
        "top_p": params.top_p,
        "stop": list(COMPLETION_STOP_SEQUENCES),
    }


def _converse_unified(
    descriptor: ModelDescriptor, prompt: str, params: GenerationParams, system: str | None
) -> dict[str, Any]:
    inference_config: dict[str, Any] = {
        "maxTokens": params.max_tokens,
        "temperature": params.temperature,
    }
    if descriptor.backend_id not in NEWER_GENERATION_BACKEND_IDS:
        inference_config["topP"] = params.top_p

    payload: dict[str, Any] = {"schemaVersion": CONVERSE_SCHEMA_VERSION}
    if system:
        payload["system"] = [{"text": system}]
    payload["messages"] = [{"role": "user", "content": [{"text": prompt}]}]
    payload["inferenceConfig"] = inference_config
    return payload


PayloadBuilder = Callable[[ModelDescriptor, str, GenerationParams, str | None], dict[str, Any]]

_BUILDERS: dict[ModelFamily, PayloadBuilder] = {
    ModelFamily.CONVERSATIONAL_BLOCK_DELTA: _conversational_block_delta,
    ModelFamily.COMPLETION_TEXT: _completion_text,
    ModelFamily.CONVERSE_UNIFIED: _converse_unified,
}


def build_payload(
    descriptor: ModelDescriptor,
    prompt: str,
    params: GenerationParams | None = None,
    *,
    system: str | None = None,
) -> dict[str, Any]:
    """
    Build the backend-native request body for `descriptor.family`.

    `system` is only used by families that carry a system block
    (currently ConverseUnified); the others ignore it.
    """
    clamped = clamp_params(descriptor.family, params or GenerationParams())
    return _BUILDERS[descriptor.family](descriptor, prompt, clamped, system)
