from __future__ import annotations

import re
import secrets as secrets_module
import uuid
from typing import Any, Protocol

import structlog

from .errors import ConfigurationError

log = structlog.get_logger()

MESSAGES_PATH = "/v1/messages"

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")


class CredentialSource(Protocol):
    async def get(self) -> str: ...


def coerce_request_id(value: str | None) -> str:
    if value and _REQUEST_ID_RE.fullmatch(value):
        return value
    return f"req-{uuid.uuid4().hex}"


def parse_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2:
        return None
    scheme, token = parts[0].strip(), parts[1].strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def constant_time_equals(a: str, b: str) -> bool:
    return secrets_module.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def _is_protected_path(path: str) -> bool:
    return path.startswith("/v1/")


def error_body_for_path(path: str, *, message: str, type: str, code: str | None = None) -> dict[str, Any]:
    """Error envelope in the dialect the route speaks."""
    from .anthropic_compat import make_anthropic_error_response
    from .openai_compat import make_openai_error_response

    if path.startswith(MESSAGES_PATH):
        return make_anthropic_error_response(message=message, type=type, code=code).model_dump()
    return make_openai_error_response(message=message, type=type, code=code).model_dump()


def install_middlewares(app, *, cfg, credentials: CredentialSource | None = None) -> None:
    """
    Install request-id, security-header, body-size and bearer-auth middleware,
    plus trusted-host and CORS when configured.
    """
    from fastapi.responses import JSONResponse
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.requests import Request

    def _request_id(request: Request) -> str | None:
        return getattr(request.state, "request_id", None)

    class RequestIdMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            request_id = coerce_request_id(request.headers.get("x-request-id"))
            request.state.request_id = request_id
            structlog.contextvars.bind_contextvars(request_id=request_id)
            try:
                response = await call_next(request)
            finally:
                structlog.contextvars.clear_contextvars()
            response.headers.setdefault("X-Request-Id", request_id)
            return response

    class SecurityHeadersMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            response = await call_next(request)
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
            response.headers.setdefault("X-Frame-Options", "DENY")
            response.headers.setdefault("Referrer-Policy", "no-referrer")
            if getattr(cfg, "enable_api_docs", True) is False:
                response.headers.setdefault("X-Robots-Tag", "noindex, nofollow")
            if _is_protected_path(request.url.path):
                response.headers.setdefault("Cache-Control", "no-store")
                response.headers.setdefault("Pragma", "no-cache")
            return response

    class MaxBodySizeMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            limit = int(getattr(cfg, "max_request_body_bytes", 0) or 0)
            if limit > 0 and request.method == "POST" and _is_protected_path(request.url.path):
                too_large = JSONResponse(
                    status_code=413,
                    content=error_body_for_path(
                        request.url.path,
                        message="Request body too large.",
                        type="invalid_request_error",
                        code=_request_id(request),
                    ),
                )
                content_length = request.headers.get("content-length")
                if content_length and content_length.isdigit() and int(content_length) > limit:
                    return too_large
                body = await request.body()
                if len(body) > limit:
                    return too_large
            return await call_next(request)

    class BearerAuthMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            if credentials is None or not _is_protected_path(request.url.path) or request.method == "OPTIONS":
                return await call_next(request)

            path = request.url.path
            try:
                expected = await credentials.get()
            except ConfigurationError:
                return JSONResponse(
                    status_code=500,
                    content=error_body_for_path(
                        path,
                        message="Internal server error",
                        type="internal_server_error",
                        code=_request_id(request),
                    ),
                )

            auth_header = request.headers.get("authorization")
            token = parse_bearer_token(auth_header) or request.headers.get("x-api-key")
            if not token or not constant_time_equals(token, expected):
                log.warning(
                    "auth_rejected",
                    path=path,
                    client_ip=request.client.host if request.client else None,
                    has_auth=bool(auth_header or request.headers.get("x-api-key")),
                )
                return JSONResponse(
                    status_code=401,
                    headers={"WWW-Authenticate": 'Bearer realm="chatrix-gateway"'},
                    content=error_body_for_path(
                        path,
                        message="Invalid API key",
                        type="authentication_error",
                        code=_request_id(request),
                    ),
                )
            return await call_next(request)

    app.add_middleware(MaxBodySizeMiddleware)
    app.add_middleware(BearerAuthMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    # Outermost, so X-Request-Id is set even when inner middleware short-circuits.
    app.add_middleware(RequestIdMiddleware)

    allowed_hosts: list[str] = list(getattr(cfg, "allowed_hosts", []) or [])
    if allowed_hosts:
        from starlette.middleware.trustedhost import TrustedHostMiddleware

        app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)

    cors_allow_origins: list[str] = list(getattr(cfg, "cors_allow_origins", []) or [])
    if cors_allow_origins:
        from fastapi.middleware.cors import CORSMiddleware

        allow_credentials = bool(getattr(cfg, "cors_allow_credentials", False))
        if allow_credentials and "*" in cors_allow_origins:
            raise ValueError("CORS_ALLOW_ORIGINS cannot include '*' when CORS_ALLOW_CREDENTIALS=true.")
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_allow_origins,
            allow_credentials=allow_credentials,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "X-Request-Id", "X-API-Key", "anthropic-version"],
            max_age=600,
        )
