from __future__ import annotations

import httpx
import structlog

from .cache import CachedValue
from .pricing import BASE_CURRENCY

log = structlog.get_logger()

DEFAULT_EXCHANGE_RATE_URL = "https://open.er-api.com/v6/latest/USD"


class ExchangeRateSource:
    """
    USD -> `currency` conversion factor, refreshed every `ttl_seconds`.

    Expects a JSON body of the form {"rates": {"EUR": 0.92, ...}}. When the
    rate cannot be fetched the configured fallback is returned and nothing is
    cached, so the next request tries again.
    """

    def __init__(
        self,
        currency: str,
        *,
        url: str = DEFAULT_EXCHANGE_RATE_URL,
        fallback: float = 1.0,
        ttl_seconds: float = 3600,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 5,
    ):
        self.currency = currency.upper()
        self.url = url
        self.fallback = fallback
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._cache: CachedValue[float] = CachedValue(self._fetch, ttl_seconds=ttl_seconds)

    @property
    def enabled(self) -> bool:
        return self.currency != BASE_CURRENCY

    async def _fetch(self) -> float:
        resp = await self._client.get(self.url)
        resp.raise_for_status()
        data = resp.json()
        rates = data.get("rates") if isinstance(data, dict) else None
        rate = rates.get(self.currency) if isinstance(rates, dict) else None
        if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0:
            raise ValueError(f"No usable rate for {self.currency}.")
        log.info("exchange_rate_refreshed", currency=self.currency, rate=float(rate))
        return float(rate)

    async def get(self) -> float:
        try:
            return await self._cache.get()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("exchange_rate_unavailable", currency=self.currency, fallback=self.fallback, error=str(e))
            return self.fallback

    async def close(self) -> None:
        await self._client.aclose()
