from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from .cache import CachedValue

log = structlog.get_logger()

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant. Answer clearly and concisely."


class SystemPromptSource:
    """System instruction text loaded once from `path`, else the default."""

    def __init__(self, path: str | None = None, *, default: str = DEFAULT_SYSTEM_PROMPT):
        self.path = Path(path) if path else None
        self.default = default
        self._cache: CachedValue[str] = CachedValue(self._load)

    async def _load(self) -> str:
        if self.path is None:
            return self.default
        try:
            text = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        except OSError as e:
            log.warning("system_prompt_unreadable", path=str(self.path), error=str(e))
            return self.default
        return text.strip() or self.default

    async def get(self) -> str:
        return await self._cache.get()
