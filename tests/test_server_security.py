import httpx
import pytest

from chatrix_gateway.config import GatewayConfig
from chatrix_gateway.errors import ConfigurationError
from chatrix_gateway.gateway import Gateway
from fakes import FakeBackend, FakeTextSource, claude_delta

CHAT_BODY = {"model": "claude-sonnet-4", "messages": [{"role": "user", "content": "hi"}]}


def _cfg(**overrides):
    base = dict(enable_metrics=False, server_auth_token=None, api_key_secret_name=None)
    base.update(overrides)
    return GatewayConfig(**base)


def _fake_gateway(cfg, content="ok"):
    return Gateway(cfg, backend=FakeBackend([claude_delta(content)]), system_prompt=FakeTextSource())


def _app(cfg, **kwargs):
    from chatrix_gateway.server import create_app

    return create_app(cfg=cfg, gateway=kwargs.pop("gateway", None) or _fake_gateway(cfg), **kwargs)


@pytest.mark.asyncio
async def test_server_requires_bearer_token_when_configured():
    pytest.importorskip("fastapi")

    app = _app(_cfg(server_auth_token="sekret"))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post("/v1/chat/completions", json=CHAT_BODY)
        assert resp.status_code == 401
        assert resp.headers.get("WWW-Authenticate", "").lower().startswith("bearer")
        assert resp.json()["error"]["type"] == "authentication_error"
        assert resp.json()["error"]["message"] == "Invalid API key"

        resp_bad = await client.post("/v1/chat/completions", headers={"Authorization": "Bearer nope"}, json=CHAT_BODY)
        assert resp_bad.status_code == 401

        resp_ok = await client.post(
            "/v1/chat/completions",
            headers={"Authorization": "Bearer sekret"},
            json=CHAT_BODY,
        )
        assert resp_ok.status_code == 200


@pytest.mark.asyncio
async def test_messages_route_accepts_x_api_key_and_rejects_in_its_own_shape():
    pytest.importorskip("fastapi")

    app = _app(_cfg(server_auth_token="sekret"))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post("/v1/messages", json=CHAT_BODY)
        assert resp.status_code == 401
        body = resp.json()
        assert body["type"] == "error"
        assert body["error"]["type"] == "authentication_error"

        resp_ok = await client.post("/v1/messages", headers={"x-api-key": "sekret"}, json=CHAT_BODY)
        assert resp_ok.status_code == 200
        assert resp_ok.json()["content"][0]["text"] == "ok"


@pytest.mark.asyncio
async def test_health_is_not_authenticated():
    pytest.importorskip("fastapi")

    app = _app(_cfg(server_auth_token="sekret"))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_credential_lookup_failure_is_500():
    pytest.importorskip("fastapi")

    class BrokenCredentials:
        async def get(self):
            raise ConfigurationError("Authentication configuration error")

    app = _app(_cfg(), credentials=BrokenCredentials())
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post("/v1/chat/completions", headers={"Authorization": "Bearer x"}, json=CHAT_BODY)
        assert resp.status_code == 500
        assert resp.json()["error"]["type"] == "internal_server_error"


@pytest.mark.asyncio
async def test_server_enforces_max_body_size_413():
    pytest.importorskip("fastapi")

    app = _app(_cfg(max_request_body_bytes=60))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        payload = b'{"model":"m","messages":[{"role":"user","content":"' + (b"x" * 200) + b'"}]}'
        for path in ("/v1/chat/completions", "/v1/messages"):
            resp = await client.post(path, content=payload, headers={"Content-Type": "application/json"})
            assert resp.status_code == 413
            assert resp.json()["error"]["type"] == "invalid_request_error"


@pytest.mark.asyncio
async def test_server_sets_security_headers_and_request_id():
    pytest.importorskip("fastapi")

    app = _app(_cfg())
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/health", headers={"X-Request-Id": "req_12345678"})
        assert resp.status_code == 200
        assert resp.headers.get("X-Request-Id") == "req_12345678"
        assert resp.headers.get("X-Content-Type-Options") == "nosniff"
        assert resp.headers.get("X-Frame-Options") == "DENY"
        assert resp.headers.get("Referrer-Policy") == "no-referrer"

        resp2 = await client.post("/v1/chat/completions", headers={"X-Request-Id": "bad id!"}, json=CHAT_BODY)
        assert resp2.headers.get("Cache-Control") == "no-store"
        assert resp2.headers.get("X-Request-Id", "").startswith("req-")


@pytest.mark.asyncio
async def test_server_cors_allowlist_applies():
    pytest.importorskip("fastapi")

    app = _app(_cfg(cors_allow_origins=["https://example.com"], server_auth_token="sekret"))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.options(
            "/v1/chat/completions",
            headers={
                "Origin": "https://example.com",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert resp.status_code in (200, 204)
        assert resp.headers.get("access-control-allow-origin") == "https://example.com"


@pytest.mark.asyncio
async def test_trusted_hosts_reject_unknown_host():
    pytest.importorskip("fastapi")

    app = _app(_cfg(allowed_hosts=["api.example.com"]))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/health")
        assert resp.status_code == 400


def test_cors_wildcard_with_credentials_is_rejected():
    pytest.importorskip("fastapi")

    with pytest.raises(ValueError):
        _app(_cfg(cors_allow_origins=["*"], cors_allow_credentials=True))
