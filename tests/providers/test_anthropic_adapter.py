from http import HTTPStatus

import pytest

from crm_ai.core.config import ProviderModel
from crm_ai.core.exceptions import AdapterError, InvalidResponseError, ProviderAuthError
from crm_ai.providers.anthropic import AnthropicProvider
from crm_ai.router.classifier import MODEL_OVERLOADED, classify_error

API_KEY = "sk-ant-test-key-0123456789"
SITE_OVERLOADED = 529


class FakeResponse:
    def __init__(self, status_code: int, payload: dict | None = None) -> None:
        self.status_code = status_code
        self._payload = payload or {}

    def json(self) -> dict:
        return self._payload

    @property
    def is_error(self) -> bool:
        return self.status_code >= HTTPStatus.BAD_REQUEST

    @property
    def text(self) -> str:
        return ""


def _stub_async_client(response, recorder):
    class _DummyAsyncClient:
        def __init__(self, *args, **kwargs) -> None:
            self.timeout = kwargs.get("timeout")

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, json=None, headers=None):
            recorder["url"] = url
            recorder["json"] = json
            recorder["headers"] = headers
            return response

    return _DummyAsyncClient


@pytest.fixture
def provider_model() -> ProviderModel:
    return ProviderModel(
        id="anthropic",
        name="Claude",
        base_url="https://api.anthropic.com",
        path="/v1/messages",
        api_version="2023-06-01",
        models={"default": "claude-3-5-sonnet-20241022"},
    )


@pytest.mark.asyncio
async def test_anthropic_adapter_success(monkeypatch, provider_model):
    adapter = AnthropicProvider(provider_model, timeout=60)
    recorder: dict = {}
    payload = {
        "id": "msg_1",
        "type": "message",
        "content": [
            {"type": "text", "text": "Follow up "},
            {"type": "tool_use", "id": "t1", "name": "noop", "input": {}},
            {"type": "text", "text": "on Friday."},
        ],
        "stop_reason": "end_turn",
    }
    monkeypatch.setattr(
        "crm_ai.providers.base.httpx.AsyncClient",
        _stub_async_client(FakeResponse(HTTPStatus.OK, payload), recorder),
    )

    text = await adapter.call(API_KEY, "Next step?", system_prompt="Be brief.", max_tokens=200)

    assert text == "Follow up on Friday."
    assert recorder["url"] == "https://api.anthropic.com/v1/messages"
    assert recorder["headers"]["x-api-key"] == API_KEY
    assert recorder["headers"]["anthropic-version"] == "2023-06-01"
    assert "Authorization" not in recorder["headers"]
    body = recorder["json"]
    assert body["system"] == "Be brief."
    assert body["messages"] == [{"role": "user", "content": "Next step?"}]
    assert body["max_tokens"] == 200
    assert body["model"] == "claude-3-5-sonnet-20241022"


@pytest.mark.asyncio
async def test_anthropic_adapter_omits_system_when_absent(monkeypatch, provider_model):
    adapter = AnthropicProvider(provider_model, timeout=60)
    recorder: dict = {}
    payload = {"content": [{"type": "text", "text": "ok"}]}
    monkeypatch.setattr(
        "crm_ai.providers.base.httpx.AsyncClient",
        _stub_async_client(FakeResponse(HTTPStatus.OK, payload), recorder),
    )

    await adapter.call(API_KEY, "Ping")

    assert "system" not in recorder["json"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"content": []},
        {"content": [{"type": "tool_use", "id": "t1"}]},
        {"content": "text"},
        {"type": "message"},
    ],
)
async def test_anthropic_adapter_rejects_missing_text(monkeypatch, provider_model, payload):
    adapter = AnthropicProvider(provider_model, timeout=60)
    monkeypatch.setattr(
        "crm_ai.providers.base.httpx.AsyncClient",
        _stub_async_client(FakeResponse(HTTPStatus.OK, payload), {}),
    )

    with pytest.raises(InvalidResponseError):
        await adapter.call(API_KEY, "Ping")


@pytest.mark.asyncio
async def test_anthropic_overloaded_is_an_adapter_error(monkeypatch, provider_model):
    adapter = AnthropicProvider(provider_model, timeout=60)
    payload = {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}
    monkeypatch.setattr(
        "crm_ai.providers.base.httpx.AsyncClient",
        _stub_async_client(FakeResponse(SITE_OVERLOADED, payload), {}),
    )

    with pytest.raises(AdapterError) as excinfo:
        await adapter.call(API_KEY, "Ping")

    assert excinfo.value.status_code == SITE_OVERLOADED
    assert "Anthropic API error: 529" in str(excinfo.value)
    assert classify_error(excinfo.value).error_kind == MODEL_OVERLOADED


@pytest.mark.asyncio
async def test_anthropic_invalid_key(monkeypatch, provider_model):
    adapter = AnthropicProvider(provider_model, timeout=60)
    payload = {"type": "error", "error": {"type": "authentication_error", "message": "invalid x-api-key"}}
    monkeypatch.setattr(
        "crm_ai.providers.base.httpx.AsyncClient",
        _stub_async_client(FakeResponse(HTTPStatus.UNAUTHORIZED, payload), {}),
    )

    with pytest.raises(ProviderAuthError):
        await adapter.call(API_KEY, "Ping")


def test_anthropic_key_format(provider_model):
    adapter = AnthropicProvider(provider_model, timeout=60)

    assert adapter.check_key_format(API_KEY)
    assert not adapter.check_key_format("sk-openai-style-key-0123456789")
    assert not adapter.check_key_format("sk-ant-short")
