from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from pydantic import BaseModel, ConfigDict


class ContentPart(BaseModel):
    """One typed content part; only `text` parts contribute to the prompt."""

    model_config = ConfigDict(extra="allow")

    type: str
    text: str | None = None


Content = str | list[ContentPart]


class HasContent(Protocol):
    role: str
    content: Content


def content_text(content: Content | None) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    texts = [p.text for p in content if p.type == "text" and isinstance(p.text, str) and p.text]
    return "\n".join(texts)


def extract_prompt(messages: Sequence[HasContent]) -> str:
    """
    Return the text of the last non-system message.

    Earlier turns are not forwarded; each request is answered from its final
    message alone.
    """
    for message in reversed(messages):
        if message.role != "system":
            return content_text(message.content)
    return ""


def extract_system(messages: Sequence[HasContent]) -> str | None:
    parts = [content_text(m.content) for m in messages if m.role == "system"]
    joined = "\n\n".join(p for p in parts if p).strip()
    return joined or None


def total_chars(messages: Sequence[HasContent]) -> int:
    return sum(len(content_text(m.content)) for m in messages)
