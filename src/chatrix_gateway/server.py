import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog

from .backend import BedrockBackend
from .config import GatewayConfig
from .credential_store import SecretsManagerCredentialStore, StaticCredentialStore
from .exchange_rate import ExchangeRateSource
from .gateway import Gateway, GatewayResponse
from .http_security import CredentialSource, error_body_for_path, install_middlewares
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_errors_total, server_request_latency_seconds, server_requests_total
from .models import list_models
from .system_prompt import SystemPromptSource

log = structlog.get_logger()


def _credentials_from_config(cfg: GatewayConfig) -> CredentialSource | None:
    if cfg.server_auth_token:
        return StaticCredentialStore(cfg.server_auth_token)
    if cfg.api_key_secret_name:
        return SecretsManagerCredentialStore(cfg.api_key_secret_name, cfg.aws_region)
    return None


def build_gateway(cfg: GatewayConfig) -> Gateway:
    backend = BedrockBackend(
        cfg.aws_region,
        connect_timeout_seconds=cfg.backend_connect_timeout_seconds,
        read_timeout_seconds=cfg.backend_read_timeout_seconds,
    )
    exchange_rate = ExchangeRateSource(
        cfg.cost_currency,
        url=cfg.exchange_rate_url,
        fallback=cfg.exchange_rate_fallback,
        ttl_seconds=cfg.exchange_rate_ttl_seconds,
    )
    return Gateway(
        cfg,
        backend=backend,
        system_prompt=SystemPromptSource(cfg.system_prompt_path, default=cfg.default_system_prompt),
        exchange_rate=exchange_rate,
    )


def create_app(
    cfg: GatewayConfig | None = None,
    gateway: Gateway | None = None,
    credentials: CredentialSource | None = None,
):
    try:
        # Route annotations are read by FastAPI at runtime, so this module has no
        # postponed annotations.
        from fastapi import FastAPI, Request
        from fastapi.responses import JSONResponse, StreamingResponse
    except ImportError as e:  # pragma: no cover
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    cfg = cfg or GatewayConfig()
    configure_logging(
        level=cfg.log_level,
        fmt=cfg.log_format,
        secrets=[s for s in (cfg.server_auth_token,) if s],
    )
    gateway = gateway or build_gateway(cfg)
    credentials = credentials or _credentials_from_config(cfg)

    def _request_id(request) -> str | None:
        return getattr(getattr(request, "state", None), "request_id", None)

    def _observe(path: str, status_code: int, started_at: float) -> None:
        server_requests_total.labels(path=path, status=str(status_code)).inc()
        server_request_latency_seconds.labels(path=path).observe(max(0.0, time.monotonic() - started_at))

    async def _close_collaborators() -> None:
        for collaborator in (gateway.backend, gateway.exchange_rate):
            close = getattr(collaborator, "close", None)
            if callable(close):
                await close()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        log.info("gateway_started", region=cfg.aws_region, auth=credentials is not None)
        try:
            yield
        finally:
            await _close_collaborators()

    app = FastAPI(
        title="chatrix-gateway",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.enable_api_docs else None,
        redoc_url="/redoc" if cfg.enable_api_docs else None,
        openapi_url="/openapi.json" if cfg.enable_api_docs else None,
    )
    install_middlewares(app, cfg=cfg, credentials=credentials)

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request, exc: Exception):
        server_errors_total.labels(type="internal_server_error").inc()
        log.error("unhandled_error", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(
            status_code=500,
            content=error_body_for_path(
                request.url.path,
                message="Internal server error",
                type="internal_server_error",
                code=_request_id(request),
            ),
        )

    async def _read_json(request: Request):
        try:
            return await request.json()
        except ValueError:
            return None

    def _to_response(path: str, result: GatewayResponse, started_at: float):
        _observe(path, result.status_code, started_at)
        if result.frames is not None:
            return StreamingResponse(
                result.frames,
                media_type="text/event-stream",
                headers={"X-Accel-Buffering": "no"},
            )
        if result.status_code >= 400:
            error = (result.body or {}).get("error") or {}
            server_errors_total.labels(type=str(error.get("type", "api_error"))).inc()
        return JSONResponse(status_code=result.status_code, content=result.body)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/v1/models")
    async def models() -> dict:
        return {
            "object": "list",
            "data": [
                {"id": d.logical_name, "object": "model", "owned_by": "bedrock", "backend_id": d.backend_id}
                for d in list_models()
            ],
        }

    @app.post("/v1/messages")
    async def messages(request: Request):
        started_at = time.monotonic()
        body = await _read_json(request)
        result = await gateway.handle_messages_request(body, request_id=_request_id(request))
        return _to_response("/v1/messages", result, started_at)

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request):
        started_at = time.monotonic()
        body = await _read_json(request)
        result = await gateway.handle_chat_completions_request(body, request_id=_request_id(request))
        return _to_response("/v1/chat/completions", result, started_at)

    return app


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3000"))
    uvicorn.run("chatrix_gateway.server:create_app", host=host, port=port, factory=True)


if __name__ == "__main__":  # pragma: no cover
    main()
