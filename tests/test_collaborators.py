import json

import httpx
import pytest
from botocore.exceptions import ClientError

from chatrix_gateway.cache import CachedValue
from chatrix_gateway.credential_store import SecretsManagerCredentialStore, StaticCredentialStore
from chatrix_gateway.errors import ConfigurationError
from chatrix_gateway.exchange_rate import ExchangeRateSource
from chatrix_gateway.system_prompt import DEFAULT_SYSTEM_PROMPT, SystemPromptSource


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_cached_value_fetches_once():
    calls = []

    async def fetch():
        calls.append(1)
        return "v"

    cached = CachedValue(fetch)
    assert await cached.get() == "v"
    assert await cached.get() == "v"
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_cached_value_expires_after_ttl():
    clock = FakeClock()
    values = iter(["a", "b"])

    async def fetch():
        return next(values)

    cached = CachedValue(fetch, ttl_seconds=10, clock=clock)
    assert await cached.get() == "a"
    clock.now = 9.9
    assert await cached.get() == "a"
    clock.now = 10.0
    assert await cached.get() == "b"


@pytest.mark.asyncio
async def test_cached_value_does_not_store_failures():
    attempts = []

    async def fetch():
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("first call fails")
        return 7

    cached = CachedValue(fetch)
    with pytest.raises(RuntimeError):
        await cached.get()
    assert await cached.get() == 7
    assert await cached.get() == 7
    assert len(attempts) == 2


class FakeSecretsClient:
    def __init__(self, secret_string=None, *, error=None):
        self.secret_string = secret_string
        self.error = error
        self.calls = []

    def get_secret_value(self, SecretId):
        self.calls.append(SecretId)
        if self.error is not None:
            raise self.error
        return {"Name": SecretId, "SecretString": self.secret_string}


@pytest.mark.asyncio
async def test_secrets_manager_store_reads_and_caches_key():
    client = FakeSecretsClient(json.dumps({"api_key": "sk-live"}))
    store = SecretsManagerCredentialStore("chatrix/api-key", "us-west-2", client=client)
    assert await store.get() == "sk-live"
    assert await store.get() == "sk-live"
    assert client.calls == ["chatrix/api-key"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "client",
    [
        FakeSecretsClient("not json"),
        FakeSecretsClient(json.dumps({"other": "x"})),
        FakeSecretsClient(json.dumps({"api_key": ""})),
        FakeSecretsClient(json.dumps(["sk"])),
        FakeSecretsClient(error=ClientError({"Error": {"Code": "ResourceNotFoundException"}}, "GetSecretValue")),
    ],
)
async def test_secrets_manager_store_failures_are_configuration_errors(client):
    store = SecretsManagerCredentialStore("chatrix/api-key", "us-west-2", client=client)
    with pytest.raises(ConfigurationError, match="Authentication configuration error"):
        await store.get()


@pytest.mark.asyncio
async def test_static_store_returns_token():
    assert await StaticCredentialStore("t0k").get() == "t0k"


@pytest.mark.asyncio
async def test_system_prompt_reads_file_once(tmp_path):
    path = tmp_path / "system.txt"
    path.write_text("  Reply in French.\n", encoding="utf-8")
    source = SystemPromptSource(str(path))
    assert await source.get() == "Reply in French."

    path.write_text("changed", encoding="utf-8")
    assert await source.get() == "Reply in French."


@pytest.mark.asyncio
async def test_system_prompt_falls_back_to_default(tmp_path):
    assert await SystemPromptSource().get() == DEFAULT_SYSTEM_PROMPT
    assert await SystemPromptSource(str(tmp_path / "missing.txt")).get() == DEFAULT_SYSTEM_PROMPT

    empty = tmp_path / "empty.txt"
    empty.write_text("   ", encoding="utf-8")
    assert await SystemPromptSource(str(empty), default="fallback").get() == "fallback"


def _rate_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_exchange_rate_fetches_and_caches():
    hits = []

    def handler(request):
        hits.append(str(request.url))
        return httpx.Response(200, json={"result": "success", "rates": {"USD": 1, "EUR": 0.92}})

    source = ExchangeRateSource("eur", client=_rate_client(handler))
    assert source.enabled is True
    assert await source.get() == 0.92
    assert await source.get() == 0.92
    assert hits == ["https://open.er-api.com/v6/latest/USD"]
    await source.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,kwargs",
    [
        (503, {"text": "unavailable"}),
        (200, {"text": "<html>"}),
        (200, {"json": {"rates": {"GBP": 0.8}}}),
        (200, {"json": {"rates": {"EUR": "0.9"}}}),
        (200, {"json": [1, 2]}),
    ],
)
async def test_exchange_rate_falls_back_without_caching(status, kwargs):
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(status, **kwargs)

    source = ExchangeRateSource("EUR", fallback=1.0, client=_rate_client(handler))
    assert await source.get() == 1.0
    assert await source.get() == 1.0
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_exchange_rate_network_error_falls_back():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    source = ExchangeRateSource("EUR", fallback=0.9, client=_rate_client(handler))
    assert await source.get() == 0.9


def test_usd_needs_no_conversion():
    source = ExchangeRateSource("USD", client=_rate_client(lambda request: httpx.Response(500)))
    assert source.enabled is False
