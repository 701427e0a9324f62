from __future__ import annotations

import os

from pydantic import BaseModel, Field

from .exchange_rate import DEFAULT_EXCHANGE_RATE_URL
from .system_prompt import DEFAULT_SYSTEM_PROMPT


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class GatewayConfig(BaseModel):
    # Backend
    aws_region: str = Field(default_factory=lambda: os.getenv("AWS_REGION", "us-west-2"))
    backend_connect_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("BACKEND_CONNECT_TIMEOUT_SECONDS", "10"))
    )
    backend_read_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("BACKEND_READ_TIMEOUT_SECONDS", "120"))
    )

    # Client authentication: a static token wins over the Secrets Manager secret.
    server_auth_token: str | None = Field(default_factory=lambda: os.getenv("SERVER_AUTH_TOKEN"))
    api_key_secret_name: str | None = Field(default_factory=lambda: os.getenv("API_KEY_SECRET_NAME"))

    # Prompting
    system_prompt_path: str | None = Field(default_factory=lambda: os.getenv("SYSTEM_PROMPT_PATH"))
    default_system_prompt: str = Field(
        default_factory=lambda: os.getenv("DEFAULT_SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT)
    )

    # Cost reporting
    cost_currency: str = Field(default_factory=lambda: os.getenv("COST_CURRENCY", "USD").upper())
    exchange_rate_url: str = Field(
        default_factory=lambda: os.getenv("EXCHANGE_RATE_URL", DEFAULT_EXCHANGE_RATE_URL)
    )
    exchange_rate_fallback: float = Field(
        default_factory=lambda: float(os.getenv("EXCHANGE_RATE_FALLBACK", "1.0"))
    )
    exchange_rate_ttl_seconds: float = Field(
        default_factory=lambda: float(os.getenv("EXCHANGE_RATE_TTL_SECONDS", "3600"))
    )

    # Observability
    enable_metrics: bool = Field(default_factory=lambda: _env_flag("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    # Server hardening
    enable_api_docs: bool = Field(default_factory=lambda: _env_flag("ENABLE_API_DOCS"))
    allowed_hosts: list[str] = Field(default_factory=lambda: _parse_csv(os.getenv("ALLOWED_HOSTS")))
    cors_allow_origins: list[str] = Field(default_factory=lambda: _parse_csv(os.getenv("CORS_ALLOW_ORIGINS")))
    cors_allow_credentials: bool = Field(default_factory=lambda: _env_flag("CORS_ALLOW_CREDENTIALS"))
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(1024 * 1024)))
    )
    max_messages: int = Field(default_factory=lambda: int(os.getenv("MAX_MESSAGES", "64")))
    max_total_message_chars: int = Field(
        default_factory=lambda: int(os.getenv("MAX_TOTAL_MESSAGE_CHARS", "100000"))
    )
