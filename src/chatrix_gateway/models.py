from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import structlog

log = structlog.get_logger()


class ModelFamily(str, Enum):
    """Request/response shape spoken by a backend model."""

    CONVERSATIONAL_BLOCK_DELTA = "conversational-block-delta"
    COMPLETION_TEXT = "completion-text"
    CONVERSE_UNIFIED = "converse-unified"


@dataclass(frozen=True)
class ModelDescriptor:
    logical_name: str
    backend_id: str
    family: ModelFamily


_REGISTRY: dict[str, ModelDescriptor] = {
    d.logical_name: d
    for d in (
        ModelDescriptor(
            "claude-sonnet-4",
            "us.anthropic.claude-sonnet-4-20250514-v1:0",
            ModelFamily.CONVERSATIONAL_BLOCK_DELTA,
        ),
        ModelDescriptor(
            "claude-sonnet-3",
            "us.anthropic.claude-3-7-sonnet-20250219-v1:0",
            ModelFamily.CONVERSATIONAL_BLOCK_DELTA,
        ),
        ModelDescriptor(
            "claude-3-5-haiku",
            "us.anthropic.claude-3-5-haiku-20241022-v1:0",
            ModelFamily.CONVERSATIONAL_BLOCK_DELTA,
        ),
        ModelDescriptor("deepseek", "us.deepseek.r1-v1:0", ModelFamily.COMPLETION_TEXT),
        ModelDescriptor("nova-pro", "us.amazon.nova-pro-v1:0", ModelFamily.CONVERSE_UNIFIED),
        ModelDescriptor("nova-lite", "us.amazon.nova-lite-v1:0", ModelFamily.CONVERSE_UNIFIED),
        ModelDescriptor("nova-premier", "us.amazon.nova-premier-v1:0", ModelFamily.CONVERSE_UNIFIED),
    )
}

DEFAULT_MODEL = _REGISTRY["claude-sonnet-3"]

# These reject requests that carry both temperature and topP.
NEWER_GENERATION_BACKEND_IDS: frozenset[str] = frozenset({"us.amazon.nova-premier-v1:0"})


def resolve(logical_name: str | None) -> ModelDescriptor:
    """Map a public model name to its backend descriptor; unknown names get the default."""
    descriptor = _REGISTRY.get(logical_name) if isinstance(logical_name, str) else None
    if descriptor is None:
        log.warning(
            "model_unknown_defaulting",
            requested=logical_name,
            default=DEFAULT_MODEL.logical_name,
        )
        return DEFAULT_MODEL
    return descriptor


def list_models() -> list[ModelDescriptor]:
    return list(_REGISTRY.values())
