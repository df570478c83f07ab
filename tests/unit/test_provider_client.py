"""Unit tests for the single-attempt ProviderClient.

Tests cover:
1. classify_status: HTTP status → ErrorKind mapping
2. OpenAI-compatible wire format: URL, headers, body, text extraction
3. Failure classification: status codes, transport errors, timeouts, bad shapes
4. Pre-flight checks: unknown provider, disabled provider, missing credential
5. Anthropic wire format: SDK call arguments and error mapping
6. check_connection: success and failure probes

No real network calls: OpenAI-compatible traffic goes through
``httpx.MockTransport`` and the Anthropic SDK client is patched.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest

from src.schemas.generation import ErrorKind, GenerationRequest
from src.services.provider_client import ProviderClient, classify_status
from tests.fixtures.provider_doubles import make_settings

_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"


def _chat_response(content) -> dict:
    return {"id": "gen-1", "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


def _request(**overrides) -> GenerationRequest:
    values = {"prompt": "Tạo bài học", "provider": "openrouter", "timeout_ms": 5000}
    values.update(overrides)
    return GenerationRequest(**values)


async def _send_via(handler, request: GenerationRequest, settings=None, attempt: int = 1):
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = ProviderClient(settings or make_settings(), http_client=http)
        return await client.send(request, attempt)


# ---------------------------------------------------------------------------
# Test group 1: classify_status
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "status, kind",
    [
        (429, ErrorKind.RATE_LIMITED),
        (408, ErrorKind.TIMED_OUT),
        (500, ErrorKind.SERVICE_UNAVAILABLE),
        (502, ErrorKind.SERVICE_UNAVAILABLE),
        (503, ErrorKind.SERVICE_UNAVAILABLE),
        (529, ErrorKind.SERVICE_UNAVAILABLE),
        (400, ErrorKind.REQUEST_REJECTED),
        (401, ErrorKind.REQUEST_REJECTED),
        (404, ErrorKind.REQUEST_REJECTED),
        (422, ErrorKind.REQUEST_REJECTED),
        (302, ErrorKind.INVALID_RESPONSE_SHAPE),
    ],
)
def test_classify_status(status, kind):
    assert classify_status(status) is kind


def test_retryable_kinds():
    retryable = {k for k in ErrorKind if k.retryable}

    assert retryable == {
        ErrorKind.RATE_LIMITED,
        ErrorKind.SERVICE_UNAVAILABLE,
        ErrorKind.CONNECTION_FAILURE,
        ErrorKind.TIMED_OUT,
    }


# ---------------------------------------------------------------------------
# Test group 2: OpenAI-compatible wire format
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_openai_request_shape_and_success():
    """One POST with bearer auth, attribution headers and the full body."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_chat_response('{"title": "T"}'))

    outcome = await _send_via(
        handler, _request(system_prompt="Bạn là chuyên gia", temperature=0.3, top_p=0.9), attempt=2
    )

    assert len(seen) == 1
    sent = seen[0]
    assert sent.method == "POST"
    assert str(sent.url) == "https://openrouter.ai/api/v1/chat/completions"
    assert sent.headers["Authorization"] == "Bearer or-key"
    assert sent.headers["HTTP-Referer"] == "https://marx-edu.netlify.app"
    assert sent.headers["X-Title"] == "Marx-Edu Lesson Generator"

    body = json.loads(sent.content)
    assert body["model"] == "x-ai/grok-4-fast:free"
    assert body["messages"] == [
        {"role": "system", "content": "Bạn là chuyên gia"},
        {"role": "user", "content": "Tạo bài học"},
    ]
    assert body["temperature"] == 0.3
    assert body["top_p"] == 0.9
    assert body["max_tokens"] == 4000
    assert body["stream"] is False
    assert body["response_format"] == {"type": "json_object"}

    assert outcome.succeeded is True
    assert outcome.raw_text == '{"title": "T"}'
    assert outcome.status_code == 200
    assert outcome.attempt == 2
    assert outcome.provider == "openrouter"


@pytest.mark.asyncio
async def test_openai_body_without_hint_or_system_prompt():
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=_chat_response("ok"))

    await _send_via(handler, _request(provider="groq", json_hint=False))

    assert "response_format" not in seen[0]
    assert seen[0]["messages"] == [{"role": "user", "content": "Tạo bài học"}]
    assert seen[0]["model"] == "llama-3.3-70b-versatile"


# ---------------------------------------------------------------------------
# Test group 3: failure classification
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, kind, retryable",
    [
        (429, ErrorKind.RATE_LIMITED, True),
        (503, ErrorKind.SERVICE_UNAVAILABLE, True),
        (401, ErrorKind.REQUEST_REJECTED, False),
    ],
)
async def test_status_errors_are_classified(status, kind, retryable):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": {"message": "nope"}})

    outcome = await _send_via(handler, _request())

    assert outcome.succeeded is False
    assert outcome.error_kind is kind
    assert outcome.retryable is retryable
    assert outcome.status_code == status
    assert str(status) in outcome.detail


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [{"choices": []}, {"error": "no choices"}, _chat_response(""), _chat_response(None)],
)
async def test_missing_message_content_is_invalid_shape(payload):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    outcome = await _send_via(handler, _request())

    assert outcome.error_kind is ErrorKind.INVALID_RESPONSE_SHAPE
    assert outcome.retryable is False


@pytest.mark.asyncio
async def test_non_json_body_is_invalid_shape():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    outcome = await _send_via(handler, _request())

    assert outcome.error_kind is ErrorKind.INVALID_RESPONSE_SHAPE


@pytest.mark.asyncio
async def test_connection_error_is_retryable_connection_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection reset", request=request)

    outcome = await _send_via(handler, _request())

    assert outcome.error_kind is ErrorKind.CONNECTION_FAILURE
    assert outcome.retryable is True


@pytest.mark.asyncio
async def test_transport_timeout_is_timed_out():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    outcome = await _send_via(handler, _request())

    assert outcome.error_kind is ErrorKind.TIMED_OUT


@pytest.mark.asyncio
async def test_per_attempt_timeout_bounds_the_whole_exchange():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json=_chat_response("late"))

    outcome = await _send_via(handler, _request(timeout_ms=20))

    assert outcome.error_kind is ErrorKind.TIMED_OUT
    assert outcome.retryable is True
    assert "20ms" in outcome.detail


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_internal_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise RuntimeError("boom")

    outcome = await _send_via(handler, _request())

    assert outcome.error_kind is ErrorKind.INTERNAL_ERROR
    assert "boom" in outcome.detail


# ---------------------------------------------------------------------------
# Test group 4: pre-flight checks (no network)
# ---------------------------------------------------------------------------


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise AssertionError("network must not be touched")


@pytest.mark.asyncio
async def test_unknown_provider():
    outcome = await _send_via(_unreachable, _request(provider="mistral"))

    assert outcome.error_kind is ErrorKind.UNKNOWN_PROVIDER
    assert "mistral" in outcome.detail


@pytest.mark.asyncio
async def test_disabled_provider_returns_without_network():
    settings = make_settings(disabled_providers=["groq"])

    outcome = await _send_via(_unreachable, _request(provider="groq"), settings=settings)

    assert outcome.error_kind is ErrorKind.PROVIDER_DISABLED
    assert outcome.retryable is False


@pytest.mark.asyncio
async def test_missing_credential_returns_without_network():
    settings = make_settings(openrouter_api_key="")

    outcome = await _send_via(_unreachable, _request(), settings=settings)

    assert outcome.error_kind is ErrorKind.MISSING_CREDENTIAL
    assert outcome.retryable is False


# ---------------------------------------------------------------------------
# Test group 5: Anthropic wire format
# ---------------------------------------------------------------------------


def _anthropic_message(*texts: str) -> MagicMock:
    message = MagicMock()
    message.content = [MagicMock(text=t) for t in texts]
    return message


@pytest.mark.asyncio
async def test_anthropic_success_uses_sdk_without_retries():
    with patch("anthropic.AsyncAnthropic") as mock_cls:
        mock_cls.return_value.messages.create = AsyncMock(
            return_value=_anthropic_message('{"title": "T"}')
        )
        client = ProviderClient(make_settings())
        outcome = await client.send(
            _request(provider="anthropic", system_prompt="Bạn là chuyên gia")
        )

    assert outcome.succeeded is True
    assert outcome.raw_text == '{"title": "T"}'

    init_kwargs = mock_cls.call_args.kwargs
    assert init_kwargs["api_key"] == "anthropic-key"
    assert init_kwargs["max_retries"] == 0

    create_kwargs = mock_cls.return_value.messages.create.call_args.kwargs
    assert create_kwargs["model"] == "claude-sonnet-4-6"
    assert create_kwargs["system"] == "Bạn là chuyên gia"
    assert create_kwargs["messages"] == [{"role": "user", "content": "Tạo bài học"}]
    assert create_kwargs["max_tokens"] == 4000


@pytest.mark.asyncio
async def test_anthropic_client_is_closed_after_each_attempt():
    with patch("anthropic.AsyncAnthropic") as mock_cls:
        sdk = mock_cls.return_value
        sdk.messages.create = AsyncMock(return_value=_anthropic_message("OK"))
        client = ProviderClient(make_settings())
        await client.send(_request(provider="anthropic"), attempt=1)

        sdk.messages.create = AsyncMock(
            side_effect=anthropic.APIConnectionError(request=httpx.Request("POST", _ANTHROPIC_URL))
        )
        outcome = await client.send(_request(provider="anthropic"), attempt=2)

    assert outcome.error_kind is ErrorKind.CONNECTION_FAILURE
    assert sdk.__aenter__.await_count == 2
    assert sdk.__aexit__.await_count == 2


def _anthropic_response(status: int) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", _ANTHROPIC_URL))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, kind",
    [
        (
            anthropic.RateLimitError("rate limited", response=_anthropic_response(429), body=None),
            ErrorKind.RATE_LIMITED,
        ),
        (
            anthropic.InternalServerError("overloaded", response=_anthropic_response(529), body=None),
            ErrorKind.SERVICE_UNAVAILABLE,
        ),
        (
            anthropic.AuthenticationError("bad key", response=_anthropic_response(401), body=None),
            ErrorKind.REQUEST_REJECTED,
        ),
        (
            anthropic.APIConnectionError(request=httpx.Request("POST", _ANTHROPIC_URL)),
            ErrorKind.CONNECTION_FAILURE,
        ),
        (
            anthropic.APITimeoutError(request=httpx.Request("POST", _ANTHROPIC_URL)),
            ErrorKind.TIMED_OUT,
        ),
    ],
)
async def test_anthropic_errors_are_classified(error, kind):
    with patch("anthropic.AsyncAnthropic") as mock_cls:
        mock_cls.return_value.messages.create = AsyncMock(side_effect=error)
        outcome = await ProviderClient(make_settings()).send(_request(provider="anthropic"))

    assert outcome.error_kind is kind


@pytest.mark.asyncio
async def test_anthropic_without_text_block_is_invalid_shape():
    with patch("anthropic.AsyncAnthropic") as mock_cls:
        message = MagicMock()
        message.content = []
        mock_cls.return_value.messages.create = AsyncMock(return_value=message)
        outcome = await ProviderClient(make_settings()).send(_request(provider="anthropic"))

    assert outcome.error_kind is ErrorKind.INVALID_RESPONSE_SHAPE


# ---------------------------------------------------------------------------
# Test group 6: check_connection
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_check_connection_success():
    def handler(request: httpx.Request) -> httpx.Response:
        assert "response_format" not in json.loads(request.content)
        return httpx.Response(200, json=_chat_response("OK"))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        check = await ProviderClient(make_settings(), http_client=http).check_connection("groq")

    assert check.success is True
    assert check.provider == "groq"
    assert check.response_preview == "OK"
    assert check.error_kind is None


@pytest.mark.asyncio
async def test_check_connection_failure_never_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid key"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        check = await ProviderClient(make_settings(), http_client=http).check_connection("openrouter")

    assert check.success is False
    assert check.error_kind is ErrorKind.REQUEST_REJECTED


@pytest.mark.asyncio
async def test_check_connection_without_provider():
    check = await ProviderClient(make_settings()).check_connection("")

    assert check.success is False
    assert check.error_kind is ErrorKind.UNKNOWN_PROVIDER
