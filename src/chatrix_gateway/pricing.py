from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

BASE_CURRENCY = "USD"
DEFAULT_PRICE_KEY = "claude-3-5-haiku-20241022"

_SIX_PLACES = Decimal("0.000001")
_PER_TOKENS = Decimal(1000)


@dataclass(frozen=True)
class ModelPrice:
    input_price_per_1k: Decimal
    output_price_per_1k: Decimal


def _price(input_per_1k: str, output_per_1k: str) -> ModelPrice:
    return ModelPrice(Decimal(input_per_1k), Decimal(output_per_1k))


# USD per 1K tokens, keyed by backend model id.
PRICE_TABLE: dict[str, ModelPrice] = {
    DEFAULT_PRICE_KEY: _price("0.0008", "0.004"),
    "us.anthropic.claude-3-5-haiku-20241022-v1:0": _price("0.0008", "0.004"),
    "us.anthropic.claude-3-7-sonnet-20250219-v1:0": _price("0.003", "0.015"),
    "us.anthropic.claude-sonnet-4-20250514-v1:0": _price("0.003", "0.015"),
    "us.deepseek.r1-v1:0": _price("0.00135", "0.0054"),
    "us.amazon.nova-pro-v1:0": _price("0.0008", "0.0032"),
    "us.amazon.nova-lite-v1:0": _price("0.00006", "0.00024"),
    "us.amazon.nova-premier-v1:0": _price("0.0025", "0.0125"),
}


@dataclass(frozen=True)
class CostEstimate:
    input_cost: Decimal
    output_cost: Decimal
    total_cost: Decimal
    currency: str = BASE_CURRENCY
    exchange_rate: float | None = None
    # Pre-conversion estimate, set only when exchange_rate is applied.
    original: CostEstimate | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "input_cost": float(self.input_cost),
            "output_cost": float(self.output_cost),
            "total_cost": float(self.total_cost),
            "currency": self.currency,
        }
        if self.exchange_rate is not None:
            out["exchange_rate"] = self.exchange_rate
        if self.original is not None:
            out["original"] = self.original.to_dict()
        return out


def _round(value: Decimal) -> Decimal:
    return value.quantize(_SIX_PLACES, rounding=ROUND_HALF_UP)


def price_for(backend_id: str) -> ModelPrice:
    return PRICE_TABLE.get(backend_id) or PRICE_TABLE[DEFAULT_PRICE_KEY]


def cost(
    backend_id: str,
    input_tokens: int,
    output_tokens: int,
    *,
    exchange_rate: float | None = None,
    currency: str | None = None,
) -> CostEstimate:
    """
    Price a request from its token counts.

    Unknown backend ids are priced at the default (cheapest) tier. When an
    exchange rate is given every amount is multiplied by it, rounded again to
    six places, and the USD figures are kept under `original`.
    """
    price = price_for(backend_id)
    input_cost = _round(Decimal(max(0, input_tokens)) / _PER_TOKENS * price.input_price_per_1k)
    output_cost = _round(Decimal(max(0, output_tokens)) / _PER_TOKENS * price.output_price_per_1k)
    base = CostEstimate(
        input_cost=input_cost,
        output_cost=output_cost,
        total_cost=_round(input_cost + output_cost),
    )
    if exchange_rate is None:
        return base

    rate = Decimal(str(exchange_rate))
    return CostEstimate(
        input_cost=_round(base.input_cost * rate),
        output_cost=_round(base.output_cost * rate),
        total_cost=_round(base.total_cost * rate),
        currency=currency or BASE_CURRENCY,
        exchange_rate=exchange_rate,
        original=base,
    )
